#!/usr/bin/env python3
"""Process-wide session directory and the routing built on top of it.

Lock order is always ``GroupRegistry.lock`` -> a session's writer lock; the
hub's own lock is only held for single dictionary operations.
"""

from __future__ import annotations

import itertools
import threading
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from . import protocol as proto
from .groups import GroupRegistry
from .history import HistoryLog
from .util import LOG

if TYPE_CHECKING:                     # pragma: no cover
    from .session import Session


class Hub:
    """Maps session id -> Session and routes text / voice notes between them."""

    def __init__(self, history: Optional[HistoryLog] = None, groups: Optional[GroupRegistry] = None) -> None:
        self._sessions: Dict[int, "Session"] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)    # Ids are never reused

        self.history = history
        self.groups = groups if groups is not None else GroupRegistry()
        self.groups.is_live = self.is_live

    # ============================================================ directory ===
    def register(self, session: "Session", greet: Optional[Callable[[], object]] = None) -> int:
        """Assign the next id, run *greet*, then make the session routable.

        Nothing can be routed to the session before *greet* returns, so the
        greeting is always the first thing written to its stream.
        """
        with self._lock:
            session_id = next(self._ids)
        session.session_id = session_id
        if greet is not None:
            greet()
        with self._lock:
            self._sessions[session_id] = session
        return session_id

    def lookup(self, session_id: int) -> Optional["Session"]:
        return self._sessions.get(session_id)

    def deregister(self, session_id: int) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def is_live(self, session: "Session") -> bool:
        return self.lookup(session.session_id) is session

    def sessions(self) -> List["Session"]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def _notify(self, session_id: int, text: str) -> None:
        sender = self.lookup(session_id)
        if sender is not None:
            sender.send_line(text)

    # ============================================================== routing ===
    def send_private(self, from_id: int, to_id: int, text: str) -> bool:
        target = self.lookup(to_id)
        if target is None:
            self._notify(from_id, proto.USER_NOT_FOUND.format(id=to_id))
            return False
        if self.history is not None:
            self.history.log_private_text(from_id, to_id, text)
        target.send_line(proto.PRIVATE_FRAME.format(sender=from_id, text=text))
        return True

    def send_group(self, name: str, from_id: int, text: str) -> bool:
        with self.groups.lock:
            members = self.groups.deliverable(name)
            if members is None:
                self._notify(from_id, proto.GROUP_NOT_FOUND.format(name=name))
                return False
            if not members:
                self._notify(from_id, proto.GROUP_EMPTY.format(name=name))
                return False

            if self.history is not None:
                self.history.log_group_text(name, from_id, text)
            frame = proto.GROUP_FRAME.format(group=name, sender=from_id, text=text)
            for member in members:
                if member.session_id != from_id:
                    member.send_line(frame)
        return True

    def send_voice_user(self, from_id: int, to_id: int, filename: str, data: bytes) -> bool:
        # Persisted even when the target is gone: the conversation key is known.
        if self.history is not None:
            self.history.log_private_voice(from_id, to_id, filename, data)

        target = self.lookup(to_id)
        if target is None:
            LOG.info("Voice note from %d: user %d not found", from_id, to_id)
            self._notify(from_id, proto.USER_NOT_FOUND.format(id=to_id))
            return False
        target.send_voice_note(from_id, filename, data)
        LOG.info("Voice note '%s' (%d bytes) sent from %d to user %d", filename, len(data), from_id, to_id)
        return True

    def send_voice_group(self, from_id: int, name: str, filename: str, data: bytes) -> bool:
        with self.groups.lock:
            members = self.groups.deliverable(name)
            if members is None:
                LOG.info("Voice note from %d: group '%s' not found", from_id, name)
                self._notify(from_id, proto.GROUP_NOT_FOUND.format(name=name))
                return False

            if self.history is not None:
                self.history.log_group_voice(name, from_id, filename, data)
            if not members:
                self._notify(from_id, proto.GROUP_EMPTY.format(name=name))
                return False

            for member in members:
                if member.session_id != from_id:
                    member.send_voice_note(from_id, filename, data)
        LOG.info("Voice note '%s' (%d bytes) sent to group '%s' by %d", filename, len(data), name, from_id)
        return True

    # ============================================================= shutdown ===
    def close_all(self) -> None:
        """Close every live session's stream, which unblocks its reader."""
        for session in self.sessions():
            session.close()
