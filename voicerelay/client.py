#!/usr/bin/env python3
"""Command-line client speaking the relay's TCP protocol.

* Protocol lines (``/msg 2 hi``, ``/createGroup team`` ...) are sent as typed.
* ``/voice user <id> <path>`` / ``/voice group <name> <path>`` upload a file as
  a voice note; incoming voice notes are saved under ``downloads/``.
* ``/udp <text>`` sends one datagram to the relay's advertised UDP port.
* ``/quit`` sends ``BYE``.
* ANSI-coloured output via *colorama*.

Usage (after installing package locally):

    voicerelay-client 203.0.113.22 --port 5000
"""

from __future__ import annotations

import argparse                                    # For CLI parsing
import os
import re
import shlex                                       # Robust command splitting
import socket
import sys                                         # Needed for prompt redraw
import threading                                   # Background listener thread
from typing import Optional

from . import protocol as proto
from .history import safe_component
from .protocol import FrameReader, ProtocolError, VoiceNote
from .util import LOG

# 3rd-party: coloured terminal output
from colorama import Fore, Style, init
init(autoreset=True)                               # Reset colour after each print

_GREETING_RE = re.compile(r"Tu id es (\d+)\.")
_UDP_ADVERT_RE = re.compile(r"Audio UDP puerto servidor: (\d+)")


def colour_for(line: str) -> str:
    """Pick the colour a server line is printed in."""
    if line.startswith("[Privado]"):
        return Fore.MAGENTA
    if line.startswith("[Sistema]"):
        return Fore.CYAN
    if line.startswith("["):
        return Fore.GREEN                          # Group delivery
    if line.startswith(("Usage:", "Formato", "Invalid", "User with ID", "Group '", "El grupo")):
        return Fore.RED
    return Fore.YELLOW                             # Other server notices


class RelayClient:
    """Client state machine; usable programmatically or through :meth:`start`."""

    def __init__(self, host: str, port: int = 5000, download_dir: str = "downloads") -> None:
        self.host = host
        self.port = port
        self.download_dir = download_dir

        self.sock: Optional[socket.socket] = None
        self.udp_sock: Optional[socket.socket] = None
        self.reader: Optional[FrameReader] = None
        self._wfile = None
        self._write_lock = threading.Lock()

        self.client_id: Optional[int] = None
        self.udp_port: Optional[int] = None

        self.running = threading.Event()

    # ---------------------------------------------------------------- connection
    def connect(self, timeout: float = 5.0) -> int:
        """Open the TCP stream and consume the two greeting lines; return our id."""
        self.sock = socket.create_connection((self.host, self.port), timeout=timeout)
        self.sock.settimeout(None)
        self.reader = FrameReader(self.sock.makefile("rb"))
        self._wfile = self.sock.makefile("wb")

        greeting = self.reader.read_line() or ""
        advert = self.reader.read_line() or ""
        id_match = _GREETING_RE.search(greeting)
        port_match = _UDP_ADVERT_RE.search(advert)
        if not id_match or not port_match:
            raise ProtocolError(f"unexpected greeting {greeting!r} / {advert!r}")
        self.client_id = int(id_match.group(1))
        self.udp_port = int(port_match.group(1))
        self.running.set()
        LOG.info("Connected to %s:%d as user %d", self.host, self.port, self.client_id)
        return self.client_id

    def close(self) -> None:
        self.running.clear()
        for sock in (self.sock, self.udp_sock):
            if sock is not None:
                try:
                    sock.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
                sock.close()

    # ---------------------------------------------------------------- sending
    def send_line(self, line: str) -> None:
        self._write(proto.encode_line(line))

    def send_voice_note_to_user(self, user_id: int | str, filename: str, data: bytes) -> None:
        self._write(proto.encode_voice_note(f"{proto.VOICE_USER}{user_id}:{filename}", data))

    def send_voice_note_to_group(self, group: str, filename: str, data: bytes) -> None:
        self._write(proto.encode_voice_note(f"{proto.VOICE_GROUP}{group}:{filename}", data))

    def send_datagram(self, payload: bytes) -> None:
        """Send one live-voice datagram; the relay learns us from it."""
        if self.udp_sock is None:
            self.udp_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.udp_sock.sendto(payload, (self.host, self.udp_port))

    def _write(self, payload: bytes) -> None:
        with self._write_lock:
            self._wfile.write(payload)
            self._wfile.flush()

    # ---------------------------------------------------------------- receiving
    def save_voice_note(self, note: VoiceNote) -> str:
        os.makedirs(self.download_dir, exist_ok=True)
        path = os.path.join(self.download_dir, safe_component(os.path.basename(note.filename) or note.filename))
        with open(path, "wb") as fh:
            fh.write(note.data)
        return path

    def _recv_loop(self) -> None:
        """Background thread: print inbound frames then redraw the prompt."""
        while self.running.is_set():
            try:
                frame = self.reader.read_frame()
            except (OSError, ProtocolError) as exc:
                LOG.error("Connection lost: %s", exc)
                break
            if frame is None:
                print(f"\r{Fore.RED}[server closed the connection]{Style.RESET_ALL}")
                break

            if isinstance(frame, VoiceNote):
                path = self.save_voice_note(frame)
                print(f"\r{Fore.BLUE}[Nota de voz de {frame.sender}]{Style.RESET_ALL} "
                      f"{len(frame.data)} bytes -> {path}")
            else:
                print(f"\r{colour_for(frame)}{frame}{Style.RESET_ALL}")
            sys.stdout.write("> ")
            sys.stdout.flush()
        self.running.clear()

    # ================================================================== main ===
    def start(self) -> None:
        """Blocking run-loop: read stdin while a background thread prints frames."""
        self.connect()
        print(f"{Fore.GREEN}Tu id es {self.client_id}. UDP: {self.udp_port}{Style.RESET_ALL}")
        threading.Thread(target=self._recv_loop, daemon=True).start()

        try:
            while self.running.is_set():
                try:
                    line = input("> ")
                except EOFError:
                    break
                if not line.strip():
                    continue
                if not self._handle_command(line):
                    break
        except KeyboardInterrupt:
            pass
        finally:
            self.close()
            LOG.info("Disconnected")

    def _handle_command(self, line: str) -> bool:
        """Run local commands; forward everything else verbatim. False quits."""
        if not line.startswith(("/voice", "/udp", "/quit")):
            self.send_line(line)
            return True

        try:
            cmd, *args = shlex.split(line)
        except ValueError as exc:
            print(f"Parse error: {exc}")
            return True

        match cmd:
            case "/quit":
                self.send_line(proto.BYE)
                return False

            case "/udp":
                self.send_datagram(" ".join(args).encode(proto.ENCODING))

            case "/voice":
                if len(args) != 3 or args[0] not in ("user", "group"):
                    print("Usage: /voice user <id> <path> | /voice group <name> <path>")
                    return True
                kind, target, path = args
                try:
                    with open(path, "rb") as fh:
                        data = fh.read()
                except OSError as exc:
                    print(f"{Fore.RED}Cannot read {path}: {exc}{Style.RESET_ALL}")
                    return True
                filename = os.path.basename(path)
                if kind == "user":
                    self.send_voice_note_to_user(target, filename, data)
                else:
                    self.send_voice_note_to_group(target, filename, data)
                print(f"Nota de voz enviada ({len(data)} bytes)")

            case _:
                self.send_line(line)
        return True


# ======================================================================
#  Command-line entry point
# ======================================================================

def main() -> None:
    """Parse CLI args then instantiate & run the relay client."""
    parser = argparse.ArgumentParser("voicerelay-client")
    parser.add_argument("host", help="address of the relay server")
    parser.add_argument("--port", type=int, default=5000, help="TCP port of server")
    parser.add_argument("--downloads", default="downloads", help="where incoming voice notes go")
    args = parser.parse_args()
    RelayClient(args.host, args.port, args.downloads).start()


if __name__ == "__main__":
    main()
