#!/usr/bin/env python3
"""Wire-format constants and helpers shared by server *and* client.

The TCP stream is newline-delimited UTF-8 text.  Two frame kinds carry a
binary body right after the command line:

    voicenoteUser:<id>:<filename>\\n<len>\\n<len bytes>
    voicenoteGroup:<name>:<filename>\\n<len>\\n<len bytes>
    INCOMING_VOICENOTE:<from>:<filename>\\n<len>\\n<len bytes>

Everything that builds or reads those frames lives here so that both ends
agree on the details.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple, Union

# --- Limits ----------------------------------------------------------------
DEFAULT_MAX_VOICE_BYTES: int = 16 * 1024 * 1024   # Largest accepted <len>
DEFAULT_MAX_LINE_BYTES: int = 64 * 1024           # Longest accepted command line
UDP_BUF_SIZE: int = 10 * 1024                     # Bigger datagrams get truncated

ENCODING = "utf-8"

# --- Client -> server verbs ------------------------------------------------
CREATE_GROUP = "/createGroup"
JOIN_GROUP = "/joinGroup"
LIST_GROUPS = "/listGroups"
MSG = "/msg"
MSG_GROUP = "/msgGroup"
VOICE_USER = "voicenoteUser:"
VOICE_GROUP = "voicenoteGroup:"
BYE = "BYE"

# --- Server -> client frames -----------------------------------------------
INCOMING_VOICE = "INCOMING_VOICENOTE:"

GREETING = "Conectado al servidor. Tu id es {id}."
UDP_ADVERT = "Audio UDP puerto servidor: {port}"
PRIVATE_FRAME = "[Privado] de {sender}: {text}"
GROUP_FRAME = "[{group}] Usuario {sender}: {text}"

# --- Status strings --------------------------------------------------------
USER_NOT_FOUND = "User with ID {id} not found."
GROUP_CREATED = "✓ Grupo '{name}' creado exitosamente."
GROUP_JOIN_HINT = "Otros usuarios pueden unirse con: /joinGroup {name}"
GROUP_EXISTS = "El grupo '{name}' ya existe."
GROUP_NOT_FOUND_ES = "El grupo '{name}' no existe."
GROUP_JOINED = "Te has unido al grupo '{name}'."
GROUP_ALREADY_MEMBER = "ℹ Ya estás en el grupo '{name}'."
GROUP_MEMBER_JOINED = "[Sistema] El usuario {id} se ha unido al grupo"
GROUP_NOT_FOUND = "Group '{name}' does not exist."
GROUP_EMPTY = "Group '{name}' has no members."
GROUP_LIST_HEADER = "--- GRUPOS DISPONIBLES ---"
GROUP_LIST_ENTRY = "- {name} ({count} miembros)"
GROUP_LIST_FOOTER = "Únete con: /joinGroup <nombre>"
GROUP_LIST_NONE = "No hay grupos existentes. Crea uno con /createGroup <nombre>"

USAGE_CREATE_GROUP = "Usage: /createGroup <groupName>"
USAGE_JOIN_GROUP = "Usage: /joinGroup <groupName>"
USAGE_MSG = "Usage: /msg <userId> <message>"
USAGE_MSG_GROUP = "Usage: /msgGroup <groupName> <message>"
INVALID_USER_ID = "Invalid user ID format."
USAGE_VOICE_USER = "Formato inválido. Usa: voicenoteUser:<userId>:<filename>"
USAGE_VOICE_GROUP = "Formato inválido. Usa: voicenoteGroup:<groupName>:<filename>"


class ProtocolError(ValueError):
    """The peer broke framing; the stream can no longer be trusted."""


# --- Frame builders ----------------------------------------------------------

def encode_line(text: str) -> bytes:
    """One text frame: UTF-8 text plus the ``\\n`` terminator."""
    return (text + "\n").encode(ENCODING)


def encode_voice_note(header: str, data: bytes) -> bytes:
    """Header line, decimal length line, then the raw body."""
    return encode_line(header) + encode_line(str(len(data))) + data


def incoming_voice_header(sender: Union[int, str], filename: str) -> str:
    return f"{INCOMING_VOICE}{sender}:{filename}"


def split_voice_header(line: str) -> Optional[Tuple[str, str]]:
    """``prefix:<target>:<filename>`` -> ``(target, filename)``.

    The split stops after the second colon so filenames may contain ``:``.
    Returns None when a piece is missing.
    """
    parts = line.split(":", 2)
    if len(parts) < 3:
        return None
    return parts[1], parts[2]


def parse_length(raw: str, limit: int) -> int:
    """Validate a ``<len>`` line: decimal, non-negative, not above *limit*."""
    text = raw.strip()
    if not (text.isascii() and text.isdigit()):
        raise ProtocolError(f"invalid length field {raw!r}")
    if len(text.lstrip("0")) > len(str(limit)):
        raise ProtocolError(f"length field of {len(text)} digits exceeds limit {limit}")
    length = int(text)
    if length > limit:
        raise ProtocolError(f"length {length} exceeds limit {limit}")
    return length


# --- Frame reader ------------------------------------------------------------

@dataclass(slots=True)
class VoiceNote:
    """A decoded ``INCOMING_VOICENOTE`` frame (client side)."""

    sender: str
    filename: str
    data: bytes


class FrameReader:
    """Pull lines and exact-length bodies off a buffered binary stream.

    The same reader serves the server (command lines + voice bodies) and the
    client (``read_frame``).  Bodies are read with ``read(n)`` on the buffered
    file, which returns exactly *n* bytes unless the stream ends first, so no
    byte of the following frame is ever consumed.
    """

    def __init__(
        self,
        stream: BinaryIO,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
        max_voice_bytes: int = DEFAULT_MAX_VOICE_BYTES,
    ) -> None:
        self.stream = stream
        self.max_line_bytes = max_line_bytes
        self.max_voice_bytes = max_voice_bytes

    def read_line(self) -> Optional[str]:
        """Next line without its terminator, or None at end of stream."""
        raw = self.stream.readline(self.max_line_bytes + 1)
        if not raw:
            return None
        if len(raw) > self.max_line_bytes and not raw.endswith(b"\n"):
            raise ProtocolError(f"line longer than {self.max_line_bytes} bytes")
        return raw.rstrip(b"\r\n").decode(ENCODING, errors="replace")

    def read_length(self) -> int:
        raw = self.read_line()
        if raw is None:
            raise ProtocolError("stream ended before length field")
        return parse_length(raw, self.max_voice_bytes)

    def read_body(self, length: int) -> bytes:
        data = self.stream.read(length) if length else b""
        if len(data) != length:
            raise ProtocolError(f"stream ended after {len(data)} of {length} body bytes")
        return data

    def read_frame(self) -> Union[str, VoiceNote, None]:
        """Decode one server -> client frame; None at end of stream."""
        line = self.read_line()
        if line is None:
            return None
        if not line.startswith(INCOMING_VOICE):
            return line
        pieces = split_voice_header(line)
        if pieces is None:
            raise ProtocolError(f"malformed voice-note header {line!r}")
        sender, filename = pieces
        data = self.read_body(self.read_length())
        return VoiceNote(sender, filename, data)
