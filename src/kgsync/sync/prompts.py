"""Interactive surface used by the sync manager.

The manager never talks to a terminal itself.  It asks two injected
capabilities for input:

- ``ResolutionPort.prompt_strategy(conflict)`` -- a free-form strategy name
  for one conflict (parsed later with a ``manual`` fallback).
- ``ConfirmationPort.confirm(question)`` -- yes/no before applying changes.

``ConsolePrompt`` implements both on stdin/stderr; ``NonInteractivePrompt``
implements both without any I/O for CI and for the MCP server.  Every prompt
is awaited through ``await_prompt()`` so a ``CancellationToken`` can abort
a pending prompt.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Awaitable, Protocol, TextIO, TypeVar

from ..core.async_utils import run_sync
from ..errors import SyncCancelledError
from .models import Conflict, ConflictStrategy
from .reporter import format_conflict

T = TypeVar("T")
logger = logging.getLogger(__name__)

_YES = {"y", "yes"}


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


class ResolutionPort(Protocol):
    """Supplies a conflict resolution strategy."""

    async def prompt_strategy(self, conflict: Conflict) -> str:
        ...  # pragma: no cover


class ConfirmationPort(Protocol):
    """Answers a yes/no question."""

    async def confirm(self, question: str) -> bool:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class ConsolePrompt:
    """Prompt on the terminal.

    Questions go to stderr so stdout stays clean for ``--json`` output.
    ``input()`` runs in a worker thread so the event loop is not blocked.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stderr

    def _write(self, text: str) -> None:
        print(text, file=self.stream, flush=True)

    async def prompt_strategy(self, conflict: Conflict) -> str:
        self._write(format_conflict(conflict))
        choices = ", ".join(s.value for s in ConflictStrategy)
        self._write(f"Resolution strategy ({choices}) [manual]:")
        answer = await run_sync(input)
        return answer.strip() or ConflictStrategy.MANUAL.value

    async def confirm(self, question: str) -> bool:
        self._write(f"{question} [y/N]")
        answer = await run_sync(input)
        return answer.strip().lower() in _YES


class NonInteractivePrompt:
    """Prompt stand-in that never blocks.

    Args:
        assume_yes: Answer ``True`` to every confirmation.
    """

    def __init__(self, assume_yes: bool = False) -> None:
        self.assume_yes = assume_yes

    async def prompt_strategy(self, conflict: Conflict) -> str:
        logger.info(
            "Non-interactive: leaving conflict on %s for manual resolution",
            conflict.entity.id,
        )
        return ConflictStrategy.MANUAL.value

    async def confirm(self, question: str) -> bool:
        logger.info(
            "Non-interactive: %s -> %s",
            question,
            "yes" if self.assume_yes else "no",
        )
        return self.assume_yes


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationToken:
    """One-shot cancellation signal honoured by ``await_prompt()``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


async def await_prompt(
    awaitable: Awaitable[T], token: CancellationToken | None = None
) -> T:
    """Await a prompt, aborting when *token* is cancelled first.

    Raises:
        SyncCancelledError: If the token is (or becomes) cancelled before
            the prompt completes.
    """
    if token is None:
        return await awaitable

    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise SyncCancelledError("Prompt cancelled")

    prompt_task = asyncio.ensure_future(awaitable)
    cancel_task = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait(
            {prompt_task, cancel_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        cancel_task.cancel()
        if not prompt_task.done():
            prompt_task.cancel()

    if prompt_task.done() and not prompt_task.cancelled():
        return prompt_task.result()
    raise SyncCancelledError("Prompt cancelled")
