import pytest

from desktop_agent.emitter import DeviceInputEmitter, normalize_key, split_combo
from desktop_agent.transport import RecordingTransport

from conftest import RecordingSleep, run


@pytest.fixture
def emitter(transport, sleep):
    return DeviceInputEmitter(transport, sleep=sleep)


def test_press_named_key(emitter, transport):
    outcome = run(emitter.press_key("Return"))

    assert outcome.succeeded
    assert transport.calls == [("key_down", "enter"), ("key_up", "enter")]


def test_unknown_key_is_reported(emitter, transport):
    outcome = run(emitter.press_key("hyperdrive"))

    assert not outcome.succeeded
    assert "hyperdrive" in outcome.message
    assert transport.calls == []


def test_function_keys_in_table():
    assert normalize_key("F5") == "f5"
    assert normalize_key("f12") == "f12"
    assert normalize_key("f13") is None


def test_named_combo(emitter, transport):
    run(emitter.press_key("select_all"))

    assert transport.calls == [
        ("key_down", "ctrl"), ("key_down", "a"), ("key_up", "a"), ("key_up", "ctrl"),
    ]


def test_combo_unknown_modifier(emitter, transport):
    outcome = run(emitter.press_combo(["hyper"], "a"))

    assert not outcome.succeeded
    assert "hyper" in outcome.message
    assert transport.calls == []


def test_combo_failure_still_releases_modifiers(sleep):
    transport = RecordingTransport(fail_on={("key_down", "c")})
    emitter = DeviceInputEmitter(transport, sleep=sleep)

    outcome = run(emitter.press_combo(["ctrl", "shift"], "c"))

    assert not outcome.succeeded
    assert transport.calls == [
        ("key_down", "ctrl"),
        ("key_down", "shift"),
        ("key_down", "c"),
        ("key_up", "shift"),
        ("key_up", "ctrl"),
    ]


def test_double_click_is_single_gesture(emitter, transport, sleep):
    outcome = run(emitter.double_click_at(30, 40))

    assert outcome.succeeded
    assert transport.calls == [("mouse_move", 30, 40), ("mouse_double_click", 30, 40, 1)]
    assert len(sleep.calls) == 1


def test_drag_failure_releases_button():
    transport = RecordingTransport(fail_on={("mouse_move", 9, 9)})
    emitter = DeviceInputEmitter(transport, sleep=RecordingSleep())

    outcome = run(emitter.drag_from(1, 1, 9, 9))

    assert not outcome.succeeded
    assert transport.calls[-1] == ("mouse_up", 1)


def test_device_error_is_reported_not_raised():
    transport = RecordingTransport(fail_on={"type_text"})
    emitter = DeviceInputEmitter(transport, sleep=RecordingSleep())

    outcome = run(emitter.type_string("hello"))

    assert not outcome.succeeded
    assert "rejected" in outcome.message


@pytest.mark.parametrize("raw,expected", [
    ("ctrl+c", (["ctrl"], "c")),
    ("ctrl+shift+t", (["ctrl", "shift"], "t")),
    ("alt + f4", (["alt"], "f4")),
    ("ctrl++", (["ctrl"], "+")),
])
def test_split_combo(raw, expected):
    assert split_combo(raw) == expected
