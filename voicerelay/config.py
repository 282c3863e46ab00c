#!/usr/bin/env python3
"""Server settings and the command line that fills them in.

    voicerelay-server [tcp_port] [udp_port] [pool_size] [--host H]
                      [--history-dir DIR] [--max-voice-bytes N] [--log-level L]

The three positionals may be omitted from the right; missing ones take their
defaults (5000, 6000, 8).
"""

from __future__ import annotations

import argparse                       # CLI parsing
from dataclasses import dataclass
from typing import List, Optional

from .protocol import DEFAULT_MAX_LINE_BYTES, DEFAULT_MAX_VOICE_BYTES

DEFAULT_TCP_PORT: int = 5000
DEFAULT_UDP_PORT: int = 6000
DEFAULT_POOL_SIZE: int = 8
DEFAULT_HISTORY_DIR: str = "history"


@dataclass
class ServerConfig:
    """Everything the server needs to bind its sockets and run its sessions."""

    host: str = "0.0.0.0"
    tcp_port: int = DEFAULT_TCP_PORT
    udp_port: int = DEFAULT_UDP_PORT
    pool_size: int = DEFAULT_POOL_SIZE
    history_dir: str = DEFAULT_HISTORY_DIR
    max_voice_bytes: int = DEFAULT_MAX_VOICE_BYTES
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    log_level: str = "INFO"


def _port(value: str) -> int:
    port = int(value)
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {value}")
    return port


def _positive(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return number


def _non_negative(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("voicerelay-server", description="Chat / voice-note / live-voice relay")
    parser.add_argument("tcp_port", nargs="?", type=_port, default=DEFAULT_TCP_PORT)
    parser.add_argument("udp_port", nargs="?", type=_port, default=DEFAULT_UDP_PORT)
    parser.add_argument("pool_size", nargs="?", type=_positive, default=DEFAULT_POOL_SIZE)
    parser.add_argument("--host", default="0.0.0.0", help="address to bind both sockets to")
    parser.add_argument("--history-dir", default=DEFAULT_HISTORY_DIR)
    parser.add_argument("--max-voice-bytes", type=_non_negative, default=DEFAULT_MAX_VOICE_BYTES)
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> ServerConfig:
    args = build_parser().parse_args(argv)
    return ServerConfig(
        host=args.host,
        tcp_port=args.tcp_port,
        udp_port=args.udp_port,
        pool_size=args.pool_size,
        history_dir=args.history_dir,
        max_voice_bytes=args.max_voice_bytes,
        log_level=args.log_level,
    )
