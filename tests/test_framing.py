from __future__ import annotations

import allure
import pytest

from depot_runner.errors import ControlMessageDecodeError, EncodeError
from depot_runner.framing import (
    DELIMITER,
    MAGIC_MARKER,
    ControlMessage,
    ControlVerb,
    decode_control_message,
    encode_control_message,
    format_bool,
    has_magic_marker,
    parse_bool,
    try_decode_control_message,
)

pytestmark = [
    allure.epic("Control Channel"),
    allure.feature("Message Framing"),
]


def test_encode_uses_marker_and_nul_separated_fields() -> None:
    line = encode_control_message(ControlVerb.REQUEST_EMAIL_CODE, "user@example.com", True)

    assert line == "$DDSPMM*\0GetEmailCode\0user@example.com\0True"
    assert "\n" not in line


def test_encode_confirmation_has_no_arguments() -> None:
    assert encode_control_message(ControlVerb.REQUEST_DEVICE_CONFIRMATION) == (
        MAGIC_MARKER + DELIMITER + "AcceptDeviceConfirmation"
    )


def test_decode_returns_verb_and_arguments() -> None:
    line = encode_control_message(ControlVerb.SET_RETURN_VALUE, '{"a":"b c"}')

    assert decode_control_message(line) == ControlMessage(
        verb=ControlVerb.SET_RETURN_VALUE,
        args=('{"a":"b c"}',),
    )


def test_decode_accepts_lowercase_booleans() -> None:
    message = decode_control_message("$DDSPMM*\0GetDeviceCode\0false")

    assert message.verb is ControlVerb.REQUEST_DEVICE_CODE
    assert parse_bool(message.args[0]) is False
    assert message.is_authentication_request


def test_set_return_value_is_not_an_authentication_request() -> None:
    message = decode_control_message(encode_control_message(ControlVerb.SET_RETURN_VALUE, "1"))

    assert not message.is_authentication_request


@pytest.mark.parametrize(
    "line",
    [
        "Downloading depot 11",
        "$DDSPMM*GetDeviceCode\0True",
        "$DDSPMM*\0Frobnicate\0x",
        "$DDSPMM*\0GetDeviceCode",
        "$DDSPMM*\0GetDeviceCode\0True\0extra",
        "$DDSPMM*\0GetDeviceCode\0maybe",
        "$DDSPMM*\0GetEmailCode\0user@example.com\0yes",
    ],
)
def test_decode_rejects_malformed_lines(line: str) -> None:
    with pytest.raises(ControlMessageDecodeError):
        decode_control_message(line)
    assert try_decode_control_message(line) is None


def test_decode_error_is_a_value_error() -> None:
    with pytest.raises(ValueError, match="Unknown control verb"):
        decode_control_message("$DDSPMM*\0Frobnicate")


@pytest.mark.parametrize("value", ["a\nb", "a\rb", "a\0b"])
def test_encode_rejects_delimiters_and_line_breaks(value: str) -> None:
    with pytest.raises(EncodeError):
        encode_control_message(ControlVerb.SET_RETURN_VALUE, value)


def test_encode_rejects_wrong_arity() -> None:
    with pytest.raises(EncodeError, match="takes 1 argument"):
        encode_control_message(ControlVerb.REQUEST_DEVICE_CODE)


def test_marker_check_is_a_prefix_check() -> None:
    assert has_magic_marker("$DDSPMM*\0SetReturnValue\0null")
    assert not has_magic_marker("progress $DDSPMM* 10%")


def test_booleans_use_capitalized_words() -> None:
    assert format_bool(True) == "True"
    assert format_bool(False) == "False"
    assert parse_bool(" TRUE ") is True
    with pytest.raises(ValueError, match="Not a boolean"):
        parse_bool("1")
