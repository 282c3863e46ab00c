#!/usr/bin/env python3
"""Logging setup **and** helpers that discover the host's IPv4 addresses."""

from __future__ import annotations
import logging                           # Python stdlib logging framework
import socket                            # Needed for address discovery
import sys                               # For stdout handle
from logging.handlers import RotatingFileHandler
from typing import List

__all__ = ["LOG", "configure_logging", "get_local_ip", "local_ipv4_addresses"]

LOG_FILE = "voicerelay.log"
LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(message)s"

# ----------------------------------------------------------------------
# configure_logging() builds the console + file logger.  It runs once at
# import time and the result is kept in LOG.
# ----------------------------------------------------------------------

def configure_logging(level: int | str = logging.INFO, log_file: str = LOG_FILE) -> logging.Logger:
    """Return the "voicerelay" logger, attaching handlers on first call only."""

    logger = logging.getLogger("voicerelay")
    logger.setLevel(level)

    if logger.handlers:                     # Already configured: only adjust level
        return logger

    sh = logging.StreamHandler(sys.stdout)

    # Rotates once file hits 1 MiB, keeps 3 backups.
    fh = RotatingFileHandler(
        log_file,
        maxBytes=1_048_576,
        backupCount=3,
        encoding="utf-8",
        delay=True,
    )

    # Example: [23:59:59] INFO     Client 3 connected
    fmt = logging.Formatter(LOG_FORMAT, "%H:%M:%S")
    sh.setFormatter(fmt)
    fh.setFormatter(fmt)

    logger.addHandler(sh)
    logger.addHandler(fh)

    return logger


# Importers simply do:  from voicerelay.util import LOG
LOG = configure_logging()

# ----------------------------------------------------------------------
# best-effort address discovery (no external calls, works offline)
# ----------------------------------------------------------------------

def get_local_ip() -> str:
    """Return the host's primary IP, fallback to 127.0.0.1 on failure."""

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # connect() on UDP sends nothing; it only makes the OS pick a source IP.
        sock.connect(("8.8.8.8", 80))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


def local_ipv4_addresses() -> List[str]:
    """List the non-loopback IPv4 addresses of this host, primary first.

    Raises OSError when the host name cannot be resolved; callers treat the
    list as an operator aid and ignore failures.
    """
    found: List[str] = []
    primary = get_local_ip()
    if not primary.startswith("127."):
        found.append(primary)

    infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    for info in infos:
        ip = info[4][0]
        if ip.startswith("127.") or ip in found:
            continue
        found.append(ip)
    return found
