#!/usr/bin/env python3
"""Append-only conversation history on disk.

Layout under the history root::

    user-1_2.log                 private conversation between ids 1 and 2
    user-1_2_voice/<filename>    voice notes of that conversation
    group-<name>.log
    group-<name>_voice/<filename>

Writing is best-effort: an ``OSError`` is logged and swallowed so that a full
disk never breaks message delivery.  A repeated voice-note filename inside one
conversation overwrites the earlier file.  Group names and filenames are
percent-encoded (see :func:`safe_component`), so path separators never leave
the history root and distinct names never share a file.
"""

from __future__ import annotations

import os
import threading
from datetime import datetime
from typing import Dict
from urllib.parse import quote

from .util import LOG

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_PATH_SAFE = " !'()+,;=@[]{}#$&"


def private_key(a: int, b: int) -> str:
    """Conversation key of a private chat; the same in both directions."""
    return f"user-{min(a, b)}_{max(a, b)}"


def group_key(name: str) -> str:
    return f"group-{safe_component(name)}"


def safe_component(name: str) -> str:
    """Make a client-supplied name usable as a single path component.

    Percent-encoding keeps the mapping reversible, so two distinct names never
    share a file (``a/b`` -> ``a%2Fb``, while ``a_b`` stays ``a_b``).
    """
    encoded = quote(name, safe=_PATH_SAFE)
    if encoded in (".", ".."):
        encoded = encoded.replace(".", "%2E")
    return encoded


class HistoryLog:
    """Per-conversation ``.log`` files plus ``_voice`` directories."""

    def __init__(self, root: str = "history") -> None:
        self.root = root
        os.makedirs(self.root, exist_ok=True)

        # One lock per file path; _locks_guard protects the dict itself.
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ---------------------------------------------------------------- public
    def log_private_text(self, from_id: int, to_id: int, text: str) -> None:
        self._append(private_key(from_id, to_id), f"user-{from_id} -> user-{to_id} | {text}")

    def log_group_text(self, group: str, from_id: int, text: str) -> None:
        self._append(group_key(group), f"user-{from_id} @{group} | {text}")

    def log_private_voice(self, from_id: int, to_id: int, filename: str, data: bytes) -> None:
        key = private_key(from_id, to_id)
        self._save_voice(key, filename, data)
        self._append(key, f"user-{from_id} -> user-{to_id} | [voice] {filename}")

    def log_group_voice(self, group: str, from_id: int, filename: str, data: bytes) -> None:
        key = group_key(group)
        self._save_voice(key, filename, data)
        self._append(key, f"user-{from_id} @{group} | [voice] {filename}")

    def log_path(self, key: str) -> str:
        return os.path.join(self.root, f"{key}.log")

    def voice_path(self, key: str, filename: str) -> str:
        return os.path.join(self.root, f"{key}_voice", safe_component(os.path.basename(filename) or filename))

    # ---------------------------------------------------------------- internals
    def _lock_for(self, path: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock

    def _append(self, key: str, entry: str) -> None:
        path = self.log_path(key)
        stamp = datetime.now().strftime(TIMESTAMP_FORMAT)
        try:
            with self._lock_for(path):
                with open(path, "a", encoding="utf-8", newline="\n") as fh:
                    fh.write(f"[{stamp}] {entry}\n")
        except OSError as exc:
            LOG.error("History write to %s failed: %s", path, exc)

    def _save_voice(self, key: str, filename: str, data: bytes) -> None:
        path = self.voice_path(key, filename)
        try:
            with self._lock_for(path):
                os.makedirs(os.path.dirname(path), exist_ok=True)
                with open(path, "wb") as fh:
                    fh.write(data)
        except OSError as exc:
            LOG.error("Voice note %s could not be saved: %s", path, exc)
