#!/usr/bin/env python3
"""Named groups of sessions.

Groups live for the whole process; members are added by ``join`` and never
removed.  A member whose session has been torn down is skipped whenever the
group is used: ``is_live`` (normally ``Hub.is_live``) decides who still counts.

One re-entrant lock serialises every mutation *and* every group fan-out, so a
join can never race a send to the same group.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from . import protocol as proto
from .util import LOG

if TYPE_CHECKING:                     # pragma: no cover
    from .session import Session


@dataclass
class Group:
    name: str
    members: List["Session"] = field(default_factory=list)


class GroupRegistry:
    """Process-wide map of group name -> Group."""

    def __init__(self, is_live: Optional[Callable[["Session"], bool]] = None) -> None:
        self.lock = threading.RLock()
        self.is_live: Callable[["Session"], bool] = is_live or (lambda session: True)
        self._groups: Dict[str, Group] = {}

    def create(self, name: str, session: "Session") -> bool:
        """Register *name* with *session* as its first member."""
        with self.lock:
            if name in self._groups:
                session.send_line(proto.GROUP_EXISTS.format(name=name))
                return False
            self._groups[name] = Group(name, [session])
            session.send_line(proto.GROUP_CREATED.format(name=name))
            session.send_line(proto.GROUP_JOIN_HINT.format(name=name))
        LOG.info("Group '%s' created by user %d", name, session.session_id)
        return True

    def join(self, name: str, session: "Session") -> bool:
        """Add *session* to an existing group and tell the other live members."""
        with self.lock:
            group = self._groups.get(name)
            if group is None:
                session.send_line(proto.GROUP_NOT_FOUND_ES.format(name=name))
                return False
            if any(member is session for member in group.members):
                session.send_line(proto.GROUP_ALREADY_MEMBER.format(name=name))
                return False

            group.members.append(session)
            session.send_line(proto.GROUP_JOINED.format(name=name))
            notice = proto.GROUP_MEMBER_JOINED.format(id=session.session_id)
            for member in group.members:
                if member is not session and self.is_live(member):
                    member.send_line(notice)
        LOG.info("User %d joined group '%s'", session.session_id, name)
        return True

    def deliverable(self, name: str) -> Optional[List["Session"]]:
        """Live members of *name*, or None when the group does not exist."""
        with self.lock:
            group = self._groups.get(name)
            if group is None:
                return None
            return [member for member in group.members if self.is_live(member)]

    def listing(self) -> List[str]:
        """Lines answering ``/listGroups``."""
        with self.lock:
            if not self._groups:
                return [proto.GROUP_LIST_NONE]
            lines = [proto.GROUP_LIST_HEADER]
            for name, group in self._groups.items():
                count = sum(1 for member in group.members if self.is_live(member))
                lines.append(proto.GROUP_LIST_ENTRY.format(name=name, count=count))
            lines.append(proto.GROUP_LIST_FOOTER)
            return lines
