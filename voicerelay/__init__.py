"""Voice relay – a small multi-user chat, voice-note and live-voice relay.

Importing this package exposes :class:`voicerelay.ChatServer` and
:class:`voicerelay.RelayClient`, allowing the server to be embedded in another
application or launched via ``python -m voicerelay``.
"""

# ------------------------ re-exports ------------------------
from .client import RelayClient     # noqa: F401  ── re-export client class
from .config import ServerConfig    # noqa: F401
from .server import ChatServer      # noqa: F401  ── re-export server class

# ------------------------ public API ------------------------
__all__: list[str] = [
    "ChatServer",     # TCP acceptor + UDP relay
    "RelayClient",    # Protocol client
    "ServerConfig",
]
