# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from media.actions import (
    ActionValidationError,
    Dtmf,
    InvalidAction,
    Silence,
    parse_step,
    parse_steps,
)


# ---------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------

def test_actions_are_values():
    assert Silence(200) == Silence(200)
    assert Dtmf("#") == Dtmf("#")
    assert Silence(20).to_step() == "silence:20"
    assert Dtmf("*").to_step() == "dtmf:*"


@pytest.mark.parametrize("duration", [-20, 1.5, "100", True])
def test_silence_rejects_bad_duration(duration):
    with pytest.raises(InvalidAction):
        Silence(duration)


@pytest.mark.parametrize("digit", ["E", "", "12", "a", None])
def test_dtmf_rejects_bad_digit(digit):
    with pytest.raises(InvalidAction):
        Dtmf(digit)


# ---------------------------------------------------------------------
# Step tokens
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    "token, expected",
    [
        ("silence:1000", Silence(1000)),
        ("silence:0", Silence(0)),
        (" SILENCE : 40 ", Silence(40)),
        ("dtmf:5", Dtmf("5")),
        ("dtmf:#", Dtmf("#")),
        ("dtmf:b", Dtmf("B")),
    ],
)
def test_parse_step(token, expected):
    assert parse_step(token) == expected


@pytest.mark.parametrize(
    "token",
    ["wtfbbq:goat", "silence", "silence:", "silence:1s", "silence:-20", "dtmf:E", "dtmf:12", ""],
)
def test_parse_step_rejects(token):
    with pytest.raises(InvalidAction):
        parse_step(token)


def test_parse_step_attributes_index():
    with pytest.raises(InvalidAction) as info:
        parse_step("dtmf:X", action_index=4)

    assert info.value.action_index == 4
    assert "'X'" in info.value.message
    assert str(info.value).startswith("action 4: ")


# ---------------------------------------------------------------------
# Whole timelines
# ---------------------------------------------------------------------

def test_parse_steps_accepts_mixed_input():
    assert parse_steps(["silence:20", Dtmf("1"), "dtmf:2"]) == [Silence(20), Dtmf("1"), Dtmf("2")]


def test_parse_steps_empty_is_valid():
    assert parse_steps([]) == []


def test_parse_steps_collects_every_error():
    with pytest.raises(ActionValidationError) as info:
        parse_steps(["silence:20", "bogus:1", "dtmf:5", "silence:abc", 42])

    assert [e["action_index"] for e in info.value.as_dicts()] == [1, 3, 4]
    assert all(isinstance(e["message"], str) and e["message"] for e in info.value.as_dicts())


def test_parse_steps_offsets_indices():
    with pytest.raises(ActionValidationError) as info:
        parse_steps(["dtmf:E", "silence:20"], start_index=5)

    assert [e["action_index"] for e in info.value.as_dicts()] == [5]
    assert str(info.value.errors[0]).startswith("action 5: ")


def test_to_step_round_trips_through_parser():
    actions = [Silence(0), Silence(1000), Dtmf("#"), Dtmf("D")]

    assert [parse_step(a.to_step()) for a in actions] == actions
