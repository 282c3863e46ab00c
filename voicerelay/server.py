#!/usr/bin/env python3
"""Relay server: TCP acceptor for chat sessions plus the UDP live-voice relay.

* Every accepted connection becomes a :class:`Session` with the next id and
  runs on a bounded worker pool (extra sessions queue until a worker frees).
* Text and voice notes are routed by the :class:`Hub`; history goes to disk.
* The UDP relay runs on its own thread and knows nothing about sessions.

Usage::

    voicerelay-server 5000 6000 8
"""

from __future__ import annotations

import logging
import socket
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from .config import ServerConfig, parse_args
from .history import HistoryLog
from .hub import Hub
from .session import Session
from .udp_relay import UDPRelay
from .util import LOG, local_ipv4_addresses


class ChatServer:
    """Binds both sockets on construction; ``serve_forever`` runs the accept loop."""

    def __init__(self, config: ServerConfig, poll_interval: float = 0.5) -> None:
        self.config = config
        self.poll_interval = poll_interval

        # ------ bind sockets (OSError here is fatal for the caller) ------
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.listener.bind((config.host, config.tcp_port))
            self.listener.listen()
            self.udp_relay = UDPRelay(config.host, config.udp_port, poll_interval)
        except OSError:
            self.listener.close()
            raise
        self.listener.settimeout(poll_interval)

        # ------ runtime state ------
        self.history = HistoryLog(config.history_dir)
        self.hub = Hub(self.history)
        self.pool = ThreadPoolExecutor(max_workers=config.pool_size, thread_name_prefix="session")

        self.running = threading.Event()
        self.stopped = threading.Event()

    @property
    def tcp_port(self) -> int:
        return self.listener.getsockname()[1]

    @property
    def udp_port(self) -> int:
        return self.udp_relay.port

    # ================================================================= main ===
    def start(self) -> None:
        """Blocking: run until Ctrl-C or :meth:`shutdown`."""
        try:
            self.serve_forever()
        except KeyboardInterrupt:
            LOG.info("Shutdown requested")
        finally:
            self.shutdown()

    def serve_forever(self) -> None:
        self.running.set()
        self.udp_relay.start()
        self._announce()
        try:
            while self.running.is_set():
                try:
                    conn, addr = self.listener.accept()
                except socket.timeout:
                    continue
                except OSError as exc:
                    if not self.running.is_set() or self.listener.fileno() == -1:
                        break                   # Listener closed by shutdown()
                    LOG.error("Accept failed: %s", exc)
                    time.sleep(self.poll_interval)
                    continue
                self._accept(conn, addr)
        finally:
            self.stopped.set()

    def _accept(self, conn: socket.socket, addr) -> Session:
        conn.settimeout(None)
        conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        session = Session(
            conn,
            self.hub,
            self.udp_port,
            addr=addr,
            max_line_bytes=self.config.max_line_bytes,
            max_voice_bytes=self.config.max_voice_bytes,
        )
        session_id = self.hub.register(session, greet=session.greet)
        self.pool.submit(session.run)
        LOG.info("Client %d connected from %s:%d", session_id, addr[0], addr[1])
        return session

    def _announce(self) -> None:
        try:
            ips: List[str] = local_ipv4_addresses()
        except OSError:
            ips = []                            # Operator aid only
        if ips:
            LOG.info("Local IPs: %s (use one of these from another machine)", ", ".join(ips))
        LOG.info("TCP listening on port %d, UDP listening on port %d", self.tcp_port, self.udp_port)
        LOG.info(
            "If another machine cannot connect, open TCP %d and UDP %d in the firewall.",
            self.tcp_port,
            self.udp_port,
        )

    # ============================================================= shutdown ===
    def shutdown(self) -> None:
        """Close listener, sessions and relay, then stop the pool."""
        was_running = self.running.is_set()
        self.running.clear()
        self.listener.close()
        if was_running:
            self.stopped.wait(timeout=5)
        self.hub.close_all()
        self.udp_relay.close()
        self.pool.shutdown(wait=False, cancel_futures=True)
        LOG.info("Server stopped")


# ======================================================================
#  Command-line entry point
# ======================================================================

def main(argv: Optional[List[str]] = None) -> int:
    config = parse_args(argv)
    LOG.setLevel(logging.getLevelName(config.log_level))
    try:
        server = ChatServer(config)
    except OSError as exc:
        LOG.error("Cannot bind TCP %d / UDP %d: %s", config.tcp_port, config.udp_port, exc)
        return 1
    server.start()
    return 0


if __name__ == "__main__":
    sys.exit(main())
