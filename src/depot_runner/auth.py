"""Authenticator interfaces on both sides of the process boundary."""

from __future__ import annotations

import asyncio
from typing import Protocol

import rich_click as click


class Authenticator(Protocol):
    """Caller-supplied interactive authenticator used by the supervising process."""

    async def get_device_code(self, previous_code_was_incorrect: bool) -> str:
        """Return the code shown by the authenticator app."""

    async def get_email_code(self, email: str, previous_code_was_incorrect: bool) -> str:
        """Return the code sent to ``email``."""

    async def accept_device_confirmation(self) -> bool:
        """Wait for an out-of-band confirmation; return whether to keep waiting on it."""


class EngineAuthenticator(Protocol):
    """Blocking authenticator handed to the download engine inside the worker."""

    def get_device_code(self, previous_code_was_incorrect: bool) -> str: ...

    def get_email_code(self, email: str, previous_code_was_incorrect: bool) -> str: ...

    def accept_device_confirmation(self) -> bool: ...


class ConsoleAuthenticator:
    """Prompt the user on the terminal for login codes."""

    async def get_device_code(self, previous_code_was_incorrect: bool) -> str:
        if previous_code_was_incorrect:
            click.echo("The previous 2-factor auth code you have provided is incorrect.", err=True)
        return await asyncio.to_thread(
            click.prompt,
            "STEAM GUARD! Please enter your 2-factor auth code from your authenticator app",
        )

    async def get_email_code(self, email: str, previous_code_was_incorrect: bool) -> str:
        if previous_code_was_incorrect:
            click.echo("The previous 2-factor auth code you have provided is incorrect.", err=True)
        return await asyncio.to_thread(
            click.prompt,
            f"STEAM GUARD! Please enter the auth code sent to the email at {email}",
        )

    async def accept_device_confirmation(self) -> bool:
        click.echo("STEAM GUARD! Use the Steam Mobile App to confirm your sign in...", err=True)
        return True
