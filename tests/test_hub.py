import os

from conftest import FakeSession

from voicerelay.hub import Hub


def read_lines(path):
    with open(path, encoding="utf-8") as fh:
        return fh.read().splitlines()


def test_ids_are_monotonic_and_never_reused():
    hub = Hub()
    a, b = FakeSession(), FakeSession()
    assert hub.register(a) == 1
    assert hub.register(b) == 2
    hub.deregister(1)
    hub.deregister(1)                      # idempotent
    c = FakeSession()
    assert hub.register(c) == 3
    assert hub.lookup(1) is None
    assert hub.lookup(3) is c
    assert len(hub) == 2


def test_is_live_follows_registration(hub, make_session):
    a = make_session()
    assert hub.is_live(a)
    hub.deregister(a.session_id)
    assert not hub.is_live(a)


def test_private_delivery_and_history(hub, history, make_session):
    a, b = make_session(), make_session()
    assert hub.send_private(a.session_id, b.session_id, "hello")
    assert b.lines == ["[Privado] de 1: hello"]
    [line] = read_lines(history.log_path("user-1_2"))
    assert line.endswith("user-1 -> user-2 | hello")


def test_private_miss_notifies_sender_without_history(hub, history, make_session):
    a = make_session()
    assert not hub.send_private(a.session_id, 7, "ping")
    assert a.lines == ["User with ID 7 not found."]
    assert not os.path.exists(history.log_path("user-1_7"))


def test_group_fan_out_skips_sender(hub, history, make_session):
    a, b, c = make_session(), make_session(), make_session()
    hub.groups.create("team", a)
    hub.groups.join("team", b)
    hub.groups.join("team", c)
    for s in (a, b, c):
        s.lines.clear()

    assert hub.send_group("team", a.session_id, "hi")
    assert a.lines == []
    assert b.lines == ["[team] Usuario 1: hi"]
    assert c.lines == ["[team] Usuario 1: hi"]
    assert len(read_lines(history.log_path("group-team"))) == 1


def test_group_members_gone_after_teardown(hub, make_session):
    a, b = make_session(), make_session()
    hub.groups.create("team", a)
    hub.groups.join("team", b)
    b.lines.clear()
    hub.deregister(b.session_id)

    assert hub.send_group("team", a.session_id, "anyone?")
    assert b.lines == []


def test_group_missing_or_empty(hub, history, make_session):
    a, b = make_session(), make_session()
    assert not hub.send_group("ghost", a.session_id, "x")
    assert a.lines[-1] == "Group 'ghost' does not exist."

    hub.groups.create("lonely", b)
    hub.deregister(b.session_id)
    assert not hub.send_group("lonely", a.session_id, "x")
    assert a.lines[-1] == "Group 'lonely' has no members."
    assert not os.path.exists(history.log_path("group-lonely"))


def test_voice_user_persists_then_delivers(hub, history, make_session):
    a, b = make_session(), make_session()
    assert hub.send_voice_user(a.session_id, b.session_id, "clip.wav", b"ABC")
    assert b.voice_notes == [("1", "clip.wav", b"ABC")]
    with open(history.voice_path("user-1_2", "clip.wav"), "rb") as fh:
        assert fh.read() == b"ABC"


def test_voice_user_miss_still_persists(hub, history, make_session):
    a = make_session()
    assert not hub.send_voice_user(a.session_id, 9, "late.wav", b"zz")
    assert a.lines == ["User with ID 9 not found."]
    assert os.path.exists(history.voice_path("user-1_9", "late.wav"))


def test_voice_group(hub, history, make_session):
    a, b = make_session(), make_session()
    hub.groups.create("team", a)
    hub.groups.join("team", b)

    assert hub.send_voice_group(b.session_id, "team", "v.wav", b"\x00" * 5)
    assert a.voice_notes == [("2", "v.wav", b"\x00" * 5)]
    assert b.voice_notes == []
    [line] = read_lines(history.log_path("group-team"))
    assert line.endswith("user-2 @team | [voice] v.wav")

    assert not hub.send_voice_group(a.session_id, "ghost", "v.wav", b"1")
    assert a.lines[-1] == "Group 'ghost' does not exist."


def test_greet_runs_before_session_is_routable():
    hub = Hub()
    session = FakeSession()
    seen = []

    def greet():
        seen.append((session.session_id, hub.lookup(session.session_id)))

    assert hub.register(session, greet=greet) == 1
    assert seen == [(1, None)]
    assert hub.lookup(1) is session
