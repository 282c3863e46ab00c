#!/usr/bin/env python3
"""One client connection: command decoder, dispatcher and framed writer.

A Session's ``run`` loop owns the read side of its socket.  The write side is
shared: any thread routing a message to this client goes through
``send_line`` / ``send_voice_note``, and the writer lock keeps every frame
(header, length and body of a voice note included) contiguous on the wire.
"""

from __future__ import annotations

import socket
import threading
from typing import TYPE_CHECKING, Optional, Tuple, Union

from . import protocol as proto
from .protocol import FrameReader, ProtocolError
from .util import LOG

if TYPE_CHECKING:                     # pragma: no cover
    from .hub import Hub


class Session:
    """Server side of one client connection."""

    def __init__(
        self,
        sock: socket.socket,
        hub: "Hub",
        udp_port: int,
        addr: Optional[Tuple[str, int]] = None,
        max_line_bytes: int = proto.DEFAULT_MAX_LINE_BYTES,
        max_voice_bytes: int = proto.DEFAULT_MAX_VOICE_BYTES,
    ) -> None:
        self.session_id: int = 0              # Assigned by Hub.register()
        self.sock = sock
        self.addr = addr
        self.hub = hub
        self.udp_port = udp_port

        self._rfile = sock.makefile("rb")
        self._wfile = sock.makefile("wb")
        self._write_lock = threading.Lock()
        self.reader = FrameReader(self._rfile, max_line_bytes, max_voice_bytes)

        self.closed = threading.Event()

    def __repr__(self) -> str:
        return f"<Session id={self.session_id} addr={self.addr}>"

    # ================================================================= main ===
    def greet(self) -> None:
        """Write the id greeting and the UDP advert; called before routing starts."""
        self.send_line(proto.GREETING.format(id=self.session_id))
        self.send_line(proto.UDP_ADVERT.format(port=self.udp_port))

    def run(self) -> None:
        """Decode commands until EOF, BYE or a framing error."""
        try:
            while not self.closed.is_set():
                line = self.reader.read_line()
                if line is None:
                    break
                if not self.handle_line(line):
                    break
        except ProtocolError as exc:
            LOG.warning("Client %d broke framing (%s), closing", self.session_id, exc)
        except OSError as exc:
            LOG.debug("Client %d stream error: %s", self.session_id, exc)
        finally:
            self._teardown()

    def handle_line(self, line: str) -> bool:
        """Dispatch one command line; False means the session should end."""
        text = line.strip()
        if not text:
            return True
        if text == proto.BYE:
            LOG.info("Client %d said BYE", self.session_id)
            return False

        verb, _, rest = text.partition(" ")
        if verb == proto.CREATE_GROUP:
            self._create_group(rest.strip())
        elif verb == proto.JOIN_GROUP:
            self._join_group(rest.strip())
        elif verb == proto.LIST_GROUPS:
            for entry in self.hub.groups.listing():
                self.send_line(entry)
        elif verb == proto.MSG:
            self._private_message(text)
        elif verb == proto.MSG_GROUP:
            self._group_message(text)
        elif text.startswith(proto.VOICE_USER):
            self._voice_note_user(text)
        elif text.startswith(proto.VOICE_GROUP):
            self._voice_note_group(text)
        else:
            LOG.debug("Client %d sent unknown command %r", self.session_id, verb)
        return True

    # ---------------------------------------------------------------- commands
    def _create_group(self, name: str) -> None:
        if not name:
            self.send_line(proto.USAGE_CREATE_GROUP)
            return
        self.hub.groups.create(name, self)

    def _join_group(self, name: str) -> None:
        if not name:
            self.send_line(proto.USAGE_JOIN_GROUP)
            return
        self.hub.groups.join(name, self)

    def _private_message(self, text: str) -> None:
        parts = text.split(" ", 2)
        if len(parts) < 3:
            self.send_line(proto.USAGE_MSG)
            return
        target = _parse_id(parts[1])
        if target is None:
            self.send_line(proto.INVALID_USER_ID)
            return
        self.hub.send_private(self.session_id, target, parts[2])

    def _group_message(self, text: str) -> None:
        parts = text.split(" ", 2)
        if len(parts) < 3 or not parts[1]:
            self.send_line(proto.USAGE_MSG_GROUP)
            return
        self.hub.send_group(parts[1], self.session_id, parts[2])

    def _voice_note_user(self, text: str) -> None:
        pieces = proto.split_voice_header(text)
        if pieces is None:
            self.send_line(proto.USAGE_VOICE_USER)
            return
        data = self.reader.read_body(self.reader.read_length())

        # The body is consumed before validating so the stream stays in sync.
        target, filename = pieces
        target_id = _parse_id(target)
        if target_id is None:
            self.send_line(proto.INVALID_USER_ID)
            return
        if not filename:
            self.send_line(proto.USAGE_VOICE_USER)
            return
        self.hub.send_voice_user(self.session_id, target_id, filename, data)

    def _voice_note_group(self, text: str) -> None:
        pieces = proto.split_voice_header(text)
        if pieces is None:
            self.send_line(proto.USAGE_VOICE_GROUP)
            return
        data = self.reader.read_body(self.reader.read_length())

        group, filename = pieces
        if not group or not filename:
            self.send_line(proto.USAGE_VOICE_GROUP)
            return
        self.hub.send_voice_group(self.session_id, group, filename, data)

    # ================================================================ writer ===
    def send_line(self, text: str) -> bool:
        return self._write(proto.encode_line(text))

    def send_voice_note(self, sender: Union[int, str], filename: str, data: bytes) -> bool:
        header = proto.encode_line(proto.incoming_voice_header(sender, filename))
        return self._write(header, proto.encode_line(str(len(data))), data)

    def _write(self, *chunks: bytes) -> bool:
        """Write *chunks* as one frame; failures are logged, never raised."""
        with self._write_lock:
            try:
                for chunk in chunks:
                    self._wfile.write(chunk)
                self._wfile.flush()
                return True
            except (OSError, ValueError) as exc:   # ValueError: file already closed
                LOG.debug("Write to client %d failed: %s", self.session_id, exc)
                return False

    # ============================================================= teardown ===
    def close(self) -> None:
        """Shut the socket down; wakes a reader blocked in ``run``."""
        if self.closed.is_set():
            return
        self.closed.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass                              # Peer already gone
        self.sock.close()

    def _teardown(self) -> None:
        self.close()
        self.hub.deregister(self.session_id)
        with self._write_lock:
            for fh in (self._wfile, self._rfile):
                try:
                    fh.close()
                except (OSError, ValueError):
                    pass                      # Unflushed bytes to a dead peer
        LOG.info("Client %d disconnected", self.session_id)


MAX_ID_DIGITS = 18


def _parse_id(raw: str) -> Optional[int]:
    raw = raw.strip()
    if not (raw.isascii() and raw.isdigit()) or len(raw) > MAX_ID_DIGITS:
        return None
    return int(raw)
