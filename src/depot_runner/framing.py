"""Control messages embedded in a worker's line-oriented stdout.

A control line is the magic marker followed by NUL-separated fields: the verb
and its string arguments. NUL cannot occur in log text or in JSON-encoded
values, so it never collides with a legitimate argument.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from depot_runner.errors import ControlMessageDecodeError, EncodeError

MAGIC_MARKER = "$DDSPMM*"
DELIMITER = "\0"

_FORBIDDEN_IN_ARGS = (DELIMITER, "\n", "\r")


class ControlVerb(str, Enum):
    """Closed set of verbs understood on the control channel."""

    REQUEST_DEVICE_CODE = "GetDeviceCode"
    REQUEST_EMAIL_CODE = "GetEmailCode"
    REQUEST_DEVICE_CONFIRMATION = "AcceptDeviceConfirmation"
    SET_RETURN_VALUE = "SetReturnValue"


# Positional argument kinds per verb: "bool" must parse as a boolean, "str" is free text.
_ARGUMENT_KINDS: dict[ControlVerb, tuple[str, ...]] = {
    ControlVerb.REQUEST_DEVICE_CODE: ("bool",),
    ControlVerb.REQUEST_EMAIL_CODE: ("str", "bool"),
    ControlVerb.REQUEST_DEVICE_CONFIRMATION: (),
    ControlVerb.SET_RETURN_VALUE: ("str",),
}

AUTHENTICATION_VERBS = frozenset(
    {
        ControlVerb.REQUEST_DEVICE_CODE,
        ControlVerb.REQUEST_EMAIL_CODE,
        ControlVerb.REQUEST_DEVICE_CONFIRMATION,
    },
)


@dataclass(frozen=True, slots=True)
class ControlMessage:
    """Decoded control line."""

    verb: ControlVerb
    args: tuple[str, ...] = ()

    @property
    def is_authentication_request(self) -> bool:
        return self.verb in AUTHENTICATION_VERBS


def format_bool(value: bool) -> str:
    """Render a boolean the way both ends of the channel parse it."""

    return "True" if value else "False"


def parse_bool(text: str) -> bool:
    """Parse a channel boolean, case-insensitively."""

    normalized = text.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise ValueError(f"Not a boolean: {text!r}")


def has_magic_marker(line: str) -> bool:
    """Cheap prefix check performed before any decode attempt."""

    return line.startswith(MAGIC_MARKER)


def encode_control_message(verb: ControlVerb, *args: str | bool | int) -> str:
    """Encode a control message as a single line without a trailing newline."""

    verb = ControlVerb(verb)
    expected = _ARGUMENT_KINDS[verb]
    if len(args) != len(expected):
        raise EncodeError(
            f"{verb.value} takes {len(expected)} argument(s), got {len(args)}.",
        )

    fields = [MAGIC_MARKER, verb.value]
    for value in args:
        text = format_bool(value) if isinstance(value, bool) else str(value)
        if any(char in text for char in _FORBIDDEN_IN_ARGS):
            raise EncodeError(
                f"Control message argument for {verb.value} contains a delimiter or line break.",
            )
        fields.append(text)
    return DELIMITER.join(fields)


def decode_control_message(line: str) -> ControlMessage:
    """Decode a control line, raising ``ControlMessageDecodeError`` on any defect."""

    prefix = MAGIC_MARKER + DELIMITER
    if not line.startswith(prefix):
        raise ControlMessageDecodeError("Line is not a control message.")

    fields = line[len(prefix) :].split(DELIMITER)
    raw_verb, args = fields[0], tuple(fields[1:])
    try:
        verb = ControlVerb(raw_verb)
    except ValueError as error:
        raise ControlMessageDecodeError(f"Unknown control verb: {raw_verb!r}") from error

    expected = _ARGUMENT_KINDS[verb]
    if len(args) != len(expected):
        raise ControlMessageDecodeError(
            f"{verb.value} expects {len(expected)} argument(s), got {len(args)}.",
        )
    for kind, value in zip(expected, args, strict=True):
        if kind == "bool":
            try:
                parse_bool(value)
            except ValueError as error:
                raise ControlMessageDecodeError(
                    f"{verb.value} argument is not a boolean: {value!r}",
                ) from error
    return ControlMessage(verb=verb, args=args)


def try_decode_control_message(line: str) -> ControlMessage | None:
    """Return the decoded control message, or ``None`` for anything else."""

    try:
        return decode_control_message(line)
    except ControlMessageDecodeError:
        return None
