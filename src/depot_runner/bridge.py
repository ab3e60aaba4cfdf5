"""Dispatch of decoded control messages: authentication relay and return values."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from depot_runner.auth import Authenticator
from depot_runner.errors import (
    ControlMessageDecodeError,
    ProtocolError,
    ValueDecodeError,
    WorkerUnavailableError,
)
from depot_runner.framing import (
    ControlMessage,
    ControlVerb,
    decode_control_message,
    format_bool,
    has_magic_marker,
    parse_bool,
)
from depot_runner.marshalling import deserialize
from depot_runner.models import OutputLine

logger = logging.getLogger(__name__)


class ReturnValueSlot:
    """Single-slot holder for the value a worker reports before exiting."""

    def __init__(self) -> None:
        self._value: object | None = None
        self._has_value = False

    @property
    def has_value(self) -> bool:
        return self._has_value

    @property
    def value(self) -> object | None:
        return self._value

    def set(self, value: object) -> None:
        if self._has_value:
            logger.warning("Worker reported a return value more than once; keeping the last one")
        self._value = value
        self._has_value = True


class AuthenticationBridge:
    """Relay worker authentication prompts to the caller's authenticator.

    Each answer is written to the worker's stdin as exactly one
    newline-terminated line. Requests are handled one at a time.
    """

    def __init__(
        self,
        authenticator: Authenticator | None,
        stdin: asyncio.StreamWriter,
        is_alive: Callable[[], bool],
    ) -> None:
        self.authenticator = authenticator
        self.stdin = stdin
        self.is_alive = is_alive
        self._lock = asyncio.Lock()

    async def handle(self, message: ControlMessage) -> None:
        if not message.is_authentication_request:
            raise ProtocolError(f"{message.verb.value} is not an authentication request.")
        if self.authenticator is None:
            raise ProtocolError("Authenticator instance is required")

        async with self._lock:
            self._ensure_alive(message)
            answer = await self._ask(self.authenticator, message)
            await self._reply(message, answer)

    async def _ask(self, authenticator: Authenticator, message: ControlMessage) -> str:
        verb = message.verb
        if verb is ControlVerb.REQUEST_DEVICE_CODE:
            previous_code_was_incorrect = parse_bool(message.args[0])
            logger.debug("Worker requested a device code")
            return await _resolve(authenticator.get_device_code(previous_code_was_incorrect))
        if verb is ControlVerb.REQUEST_EMAIL_CODE:
            email = message.args[0]
            previous_code_was_incorrect = parse_bool(message.args[1])
            logger.debug("Worker requested an email code for %s", email)
            return await _resolve(authenticator.get_email_code(email, previous_code_was_incorrect))
        logger.debug("Worker requested device confirmation")
        accepted = await _resolve(authenticator.accept_device_confirmation())
        return format_bool(bool(accepted))

    async def _reply(self, message: ControlMessage, answer: Any) -> None:
        if not isinstance(answer, str):
            raise ProtocolError(
                f"Authenticator answer to {message.verb.value} must be a string, "
                f"got {type(answer).__name__}.",
            )
        if "\n" in answer or "\r" in answer:
            raise ProtocolError(f"Authenticator answer to {message.verb.value} spans lines.")
        self._ensure_alive(message)
        try:
            self.stdin.write((answer + "\n").encode("utf-8"))
            await self.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as error:
            raise WorkerUnavailableError(
                f"Worker exited before the answer to {message.verb.value} was delivered.",
            ) from error

    def _ensure_alive(self, message: ControlMessage) -> None:
        if not self.is_alive() or self.stdin.is_closing():
            raise WorkerUnavailableError(
                f"Worker exited while {message.verb.value} was outstanding.",
            )


class ControlDispatcher:
    """Classify worker output lines and act on control messages."""

    def __init__(
        self,
        bridge: AuthenticationBridge,
        *,
        return_type: type | None = None,
        slot: ReturnValueSlot | None = None,
    ) -> None:
        self.bridge = bridge
        self.return_type = return_type
        self.slot = slot or ReturnValueSlot()

    def classify(self, line: OutputLine) -> ControlMessage | None:
        """Return the control message carried by ``line``, if any.

        Only stdout lines are inspected. Undecodable marker lines are left as
        ordinary output.
        """

        if line.is_error or not has_magic_marker(line.content):
            return None
        try:
            return decode_control_message(line.content)
        except ControlMessageDecodeError as error:
            logger.warning("Treating undecodable control line as output: %s", error)
            return None

    async def dispatch(self, message: ControlMessage) -> None:
        if message.is_authentication_request:
            await self.bridge.handle(message)
            return
        if message.verb is ControlVerb.SET_RETURN_VALUE:
            self._store_return_value(message.args[0])

    def _store_return_value(self, raw: str) -> None:
        if self.return_type is None:
            logger.debug("Ignoring return value for a request without a result type")
            return
        try:
            value = deserialize(raw, self.return_type)
        except ValueDecodeError as error:
            logger.warning("Discarding malformed return value: %s", error)
            return
        self.slot.set(value)


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result
