import socket
import threading
import time
from typing import List, Tuple

import pytest

from voicerelay.config import ServerConfig
from voicerelay.history import HistoryLog
from voicerelay.hub import Hub
from voicerelay.protocol import FrameReader
from voicerelay.server import ChatServer


class FakeSession:
    """Stands in for a Session: records every frame instead of writing it."""

    def __init__(self, session_id: int = 0) -> None:
        self.session_id = session_id
        self.lines: List[str] = []
        self.voice_notes: List[Tuple[str, str, bytes]] = []

    def send_line(self, text: str) -> bool:
        self.lines.append(text)
        return True

    def send_voice_note(self, sender, filename: str, data: bytes) -> bool:
        self.voice_notes.append((str(sender), filename, data))
        return True

    def close(self) -> None:
        pass


def wait_until(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def history(tmp_path):
    return HistoryLog(str(tmp_path / "history"))


@pytest.fixture
def hub(history):
    return Hub(history)


@pytest.fixture
def make_session(hub):
    """Register FakeSessions on the hub; ids come from the hub as usual."""
    def _make() -> FakeSession:
        session = FakeSession()
        hub.register(session)
        return session
    return _make


@pytest.fixture
def make_server(tmp_path):
    """Start ChatServers on loopback; ``wrap`` may replace the listener first."""
    started = []

    def _make(pool_size: int = 4, wrap=None) -> ChatServer:
        config = ServerConfig(
            host="127.0.0.1",
            tcp_port=0,
            udp_port=0,
            pool_size=pool_size,
            history_dir=str(tmp_path / "history"),
            max_voice_bytes=1024,
        )
        srv = ChatServer(config, poll_interval=0.05)
        if wrap is not None:
            srv.listener = wrap(srv.listener)
        thread = threading.Thread(target=srv.serve_forever, daemon=True)
        thread.start()
        assert srv.running.wait(2)
        started.append((srv, thread))
        return srv

    yield _make
    for srv, thread in started:
        srv.shutdown()
        thread.join(timeout=5)


@pytest.fixture
def server(make_server):
    return make_server()


class Peer:
    """Raw protocol client used by the end-to-end tests."""

    def __init__(self, port: int) -> None:
        self.sock = socket.create_connection(("127.0.0.1", port), timeout=5)
        self.reader = FrameReader(self.sock.makefile("rb"))
        self.greeting = self.reader.read_line()
        self.advert = self.reader.read_line()
        self.id = int(self.greeting.split("es ")[1].rstrip("."))

    def send(self, data: bytes) -> None:
        self.sock.sendall(data)

    def line(self, text: str) -> None:
        self.send((text + "\n").encode("utf-8"))

    def read_line(self):
        return self.reader.read_line()

    def read_frame(self):
        return self.reader.read_frame()

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.reader.stream.close()
        self.sock.close()


@pytest.fixture
def connect(server):
    peers: List[Peer] = []

    def _connect() -> Peer:
        peer = Peer(server.tcp_port)
        peers.append(peer)
        return peer

    yield _connect
    for peer in peers:
        peer.close()
