import errno
import logging
import os
import socket

from conftest import Peer, wait_until

from voicerelay.protocol import VoiceNote
from voicerelay.server import main


def history_lines(server, key):
    with open(os.path.join(server.config.history_dir, f"{key}.log"), encoding="utf-8") as fh:
        return fh.read().splitlines()


def test_greeting_advertises_udp_port(server, connect):
    a = connect()
    assert a.greeting == "Conectado al servidor. Tu id es 1."
    assert a.advert == f"Audio UDP puerto servidor: {server.udp_port}"
    b = connect()
    assert b.id == 2


def test_private_text(server, connect):
    a, b = connect(), connect()
    a.line("/msg 2 hello")
    assert b.read_line() == "[Privado] de 1: hello"
    [line] = history_lines(server, "user-1_2")
    assert line.endswith("user-1 -> user-2 | hello")


def test_unknown_recipient(server, connect):
    a = connect()
    a.line("/msg 7 ping")
    assert a.read_line() == "User with ID 7 not found."
    assert not os.path.exists(os.path.join(server.config.history_dir, "user-1_7.log"))


def test_group_fan_out(server, connect):
    a = connect()
    a.line("/createGroup team")
    assert a.read_line() == "✓ Grupo 'team' creado exitosamente."
    assert a.read_line() == "Otros usuarios pueden unirse con: /joinGroup team"

    b = connect()
    b.line("/joinGroup team")
    assert b.read_line() == "Te has unido al grupo 'team'."
    assert a.read_line() == "[Sistema] El usuario 2 se ha unido al grupo"

    b.line("/joinGroup team")
    assert b.read_line() == "ℹ Ya estás en el grupo 'team'."

    a.line("/msgGroup team hi")
    assert b.read_line() == "[team] Usuario 1: hi"

    # The sender got nothing: its next line answers its next command.
    a.line("/listGroups")
    assert a.read_line() == "--- GRUPOS DISPONIBLES ---"
    assert a.read_line() == "- team (2 miembros)"
    assert a.read_line() == "Únete con: /joinGroup <nombre>"


def test_voice_note(server, connect):
    a, b = connect(), connect()
    a.send(b"voicenoteUser:2:clip.wav\n3\nABC")
    assert b.read_frame() == VoiceNote("1", "clip.wav", b"ABC")
    with open(os.path.join(server.config.history_dir, "user-1_2_voice", "clip.wav"), "rb") as fh:
        assert fh.read() == b"ABC"


def test_group_voice_note(server, connect):
    a, b, c = connect(), connect(), connect()
    a.line("/createGroup band")
    a.read_line()
    a.read_line()
    for peer in (b, c):
        peer.line("/joinGroup band")
        assert peer.read_line() == "Te has unido al grupo 'band'."
    assert a.read_line() == "[Sistema] El usuario 2 se ha unido al grupo"
    assert a.read_line() == "[Sistema] El usuario 3 se ha unido al grupo"
    assert b.read_line() == "[Sistema] El usuario 3 se ha unido al grupo"

    b.send(b"voicenoteGroup:band:riff.wav\n4\n\x00\x01\x02\x03")
    assert a.read_frame() == VoiceNote("2", "riff.wav", b"\x00\x01\x02\x03")
    assert c.read_frame() == VoiceNote("2", "riff.wav", b"\x00\x01\x02\x03")
    [line] = history_lines(server, "group-band")
    assert line.endswith("user-2 @band | [voice] riff.wav")


def test_oversize_voice_note_disconnects(server, connect):
    a = connect()
    a.send(b"voicenoteUser:1:big.wav\n1025\n")
    assert a.read_line() is None
    assert wait_until(lambda: server.hub.lookup(1) is None)


def test_disconnect(server, connect):
    a, b = connect(), connect()
    a.close()
    assert wait_until(lambda: server.hub.lookup(1) is None)
    b.line("/msg 1 hey")
    assert b.read_line() == "User with ID 1 not found."


def test_ids_not_reused_after_disconnect(server, connect):
    a = connect()
    a.line("BYE")
    assert a.read_line() is None
    assert wait_until(lambda: len(server.hub) == 0)
    assert connect().id == 2


def test_udp_relay_is_wired(server):
    p = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    q = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        p.settimeout(2)
        target = ("127.0.0.1", server.udp_port)
        p.sendto(b"hello", target)
        assert wait_until(lambda: len(server.udp_relay.endpoints) == 1)
        q.sendto(b"\x01\x02", target)
        assert p.recvfrom(2048)[0] == b"\x01\x02"
    finally:
        p.close()
        q.close()


def test_shutdown_disconnects_clients(server, connect):
    a = connect()
    server.shutdown()
    assert a.read_line() is None
    assert server.stopped.is_set()


def test_main_fails_on_bind_error(tmp_path):
    busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    busy.bind(("127.0.0.1", 0))
    busy.listen()
    try:
        port = busy.getsockname()[1]
        status = main(["--host", "127.0.0.1", "--history-dir", str(tmp_path), str(port), "0"])
        assert status == 1
    finally:
        busy.close()


def test_queued_session_is_greeted_and_routable(make_server):
    srv = make_server(pool_size=1)
    a = Peer(srv.tcp_port)
    b = Peer(srv.tcp_port)                  # No free worker: b's commands wait
    try:
        assert b.greeting == "Conectado al servidor. Tu id es 2."
        b.line("/listGroups")
        a.line("/msg 2 hi")
        assert b.read_line() == "[Privado] de 1: hi"

        a.line("BYE")
        assert a.read_line() is None
        assert b.read_line() == "No hay grupos existentes. Crea uno con /createGroup <nombre>"
    finally:
        a.close()
        b.close()


class FlakyListener:
    """Listening socket whose first accept() fails as if out of descriptors."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self.failures = 0

    def accept(self):
        if not self.failures:
            self.failures += 1
            raise OSError(errno.EMFILE, "Too many open files")
        return self._sock.accept()

    def __getattr__(self, name):
        return getattr(self._sock, name)


def test_accept_error_is_logged_and_serving_continues(make_server, caplog):
    caplog.set_level(logging.ERROR, logger="voicerelay")
    srv = make_server(wrap=FlakyListener)
    peer = Peer(srv.tcp_port)
    try:
        assert peer.id == 1
        assert srv.listener.failures == 1
        assert srv.running.is_set() and not srv.stopped.is_set()
        assert any("Accept failed" in record.getMessage() for record in caplog.records)
    finally:
        peer.close()
