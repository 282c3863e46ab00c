#!/usr/bin/env python3
"""Live-voice relay: every datagram is copied to every *other* known peer.

Peers are learned from traffic: the first datagram from an address makes it
part of the call, and it stays known until the process exits.  Nothing is
inspected or added to the payload; loss, reorder and duplication are accepted.
"""

from __future__ import annotations

import socket
import threading
from typing import List, Optional, Set, Tuple

from .protocol import UDP_BUF_SIZE
from .util import LOG

Address = Tuple[str, int]


class UDPRelay:
    """Datagram socket + learned endpoint set + one relay thread."""

    def __init__(self, host: str = "0.0.0.0", port: int = 6000, poll_interval: float = 0.5) -> None:
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.sock.bind((host, port))
        except OSError:
            self.sock.close()
            raise
        # Timeout lets the loop notice stop() even where close() does not wake recvfrom().
        self.sock.settimeout(poll_interval)

        self._endpoints: Set[Address] = set()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        self.running = threading.Event()

    @property
    def port(self) -> int:
        """Port actually bound (differs from the requested one when that was 0)."""
        return self.sock.getsockname()[1]

    @property
    def endpoints(self) -> List[Address]:
        with self._lock:
            return list(self._endpoints)

    # ================================================================= main ===
    def start(self) -> None:
        self.running.set()
        self._thread = threading.Thread(target=self._loop, name="udp-relay", daemon=True)
        self._thread.start()
        LOG.info("UDP relay listening on port %d", self.port)

    def close(self) -> None:
        self.running.clear()
        self.sock.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2)

    # ---------------------------------------------------------------- internals
    def _loop(self) -> None:
        while self.running.is_set():
            try:
                data, addr = self.sock.recvfrom(UDP_BUF_SIZE)
            except socket.timeout:
                continue
            except OSError as exc:
                if not self.running.is_set() or self.sock.fileno() == -1:
                    break                       # Socket closed: clean exit
                LOG.warning("UDP relay receive error: %s", exc)
                continue
            self.relay(data, addr)

    def relay(self, data: bytes, src: Address) -> int:
        """Learn *src*, forward *data* to everyone else; return the fan-out count."""
        with self._lock:
            if src not in self._endpoints:
                self._endpoints.add(src)
                LOG.info("UDP relay learned endpoint %s:%d", src[0], src[1])
            targets = [dst for dst in self._endpoints if dst != src]

        sent = 0
        for dst in targets:
            try:
                self.sock.sendto(data, dst)
                sent += 1
            except OSError as exc:              # One bad peer never stops the loop
                LOG.debug("UDP relay send to %s failed: %s", dst, exc)
        return sent
