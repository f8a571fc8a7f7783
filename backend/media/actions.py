"""
Timeline actions.

An action is one abstract step of call media: a stretch of silence or a
single DTMF digit. Actions are immutable and validated when constructed.

Step tokens ("silence:1000", "dtmf:5") are the human-authored form used by
scenario files. parse_steps() validates a whole list and reports every bad
token at once, each attributed to its position.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Union

from constants import DTMF_DIGITS
from protocol.errors import MediaError


# -------------------------
# Exceptions
# -------------------------

class InvalidAction(MediaError, ValueError):
    """
    Raised for an unparseable or out-of-range action.

    action_index is the position in the timeline, or None when the
    action was built outside of a list.
    """

    def __init__(self, message: str, action_index: Optional[int] = None) -> None:
        prefix = f"action {action_index}: " if action_index is not None else ""
        super().__init__(prefix + message)
        self.action_index = action_index
        self.message = message

    def at(self, action_index: int) -> InvalidAction:
        """Return a copy attributed to `action_index`."""
        return InvalidAction(self.message, action_index)

    def as_dict(self) -> dict[str, Any]:
        return {"action_index": self.action_index, "message": self.message}


class ActionValidationError(MediaError, ValueError):
    """
    Aggregate of every InvalidAction found in one timeline.
    """

    def __init__(self, errors: Sequence[InvalidAction]) -> None:
        self.errors: List[InvalidAction] = list(errors)
        summary = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} invalid action(s): {summary}")

    def as_dicts(self) -> List[dict[str, Any]]:
        return [e.as_dict() for e in self.errors]


# -------------------------
# Action types
# -------------------------

@dataclass(frozen=True)
class Silence:
    """Silent audio for duration_ms (rounded down to whole packets)."""
    duration_ms: int

    def __post_init__(self) -> None:
        if isinstance(self.duration_ms, bool) or not isinstance(self.duration_ms, int):
            raise InvalidAction(f"silence duration must be an integer, got {self.duration_ms!r}")
        if self.duration_ms < 0:
            raise InvalidAction(f"silence duration must be >= 0, got {self.duration_ms}")

    def to_step(self) -> str:
        return f"silence:{self.duration_ms}"


@dataclass(frozen=True)
class Dtmf:
    """A single RFC 2833 DTMF digit."""
    digit: str

    def __post_init__(self) -> None:
        if self.digit not in DTMF_DIGITS:
            raise InvalidAction(
                f"DTMF digit must be one of {''.join(DTMF_DIGITS)}, got {self.digit!r}"
            )

    def to_step(self) -> str:
        return f"dtmf:{self.digit}"


Action = Union[Silence, Dtmf]

ACTION_KINDS = ("silence", "dtmf")


# -------------------------
# Step parsing
# -------------------------

def parse_step(token: str, action_index: Optional[int] = None) -> Action:
    """
    Parse one "kind:value" step token into an Action.
    """
    if not isinstance(token, str):
        raise InvalidAction(f"step must be a string, got {token!r}", action_index)

    kind, sep, value = token.partition(":")
    kind = kind.strip().lower()
    value = value.strip()

    if kind not in ACTION_KINDS:
        raise InvalidAction(f"unknown action kind in {token!r}", action_index)
    if not sep or not value:
        raise InvalidAction(f"missing value in {token!r}", action_index)

    try:
        if kind == "silence":
            if not (value.isascii() and value.isdigit()):
                raise InvalidAction(f"non-numeric silence duration in {token!r}")
            return Silence(int(value))

        # DTMF letters are case-insensitive in step syntax
        return Dtmf(value.upper())
    except InvalidAction as exc:
        if action_index is None:
            raise
        raise exc.at(action_index) from None


def coerce_action(item: Union[str, Action], action_index: Optional[int] = None) -> Action:
    """
    Accept either a typed Action or a step token.
    """
    if isinstance(item, (Silence, Dtmf)):
        return item
    if isinstance(item, str):
        return parse_step(item, action_index)
    raise InvalidAction(f"unsupported action type {type(item).__name__}", action_index)


def parse_steps(
    items: Iterable[Union[str, Action]],
    start_index: int = 0,
) -> List[Action]:
    """
    Validate a whole timeline.

    Every failure is collected; if any exist a single ActionValidationError
    carrying all of them is raised and nothing is returned. Errors are
    indexed from `start_index`, the position of the first item in the
    timeline it will join.
    """
    actions: List[Action] = []
    errors: List[InvalidAction] = []

    for index, item in enumerate(items, start_index):
        try:
            actions.append(coerce_action(item, index))
        except InvalidAction as exc:
            errors.append(exc)

    if errors:
        raise ActionValidationError(errors)

    return actions
