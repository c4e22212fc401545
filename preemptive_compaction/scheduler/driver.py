"""Host-side helpers that pair every compaction start with exactly one outcome.

The executor does the actual summarizing; these helpers only make sure the
session returns to idle whether it succeeds, raises, times out or is cancelled.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import Protocol

from ..errors import CompactionTimeoutError
from .registry import SessionRegistry
from .types import CompactionInstruction, Decision

logger = logging.getLogger(__name__)


class CompactionExecutor(Protocol):
    """Performs compaction of a session's history. Supplied by the host."""

    async def __call__(self, instruction: CompactionInstruction) -> None: ...


async def run_compaction(
    registry: SessionRegistry,
    instruction: CompactionInstruction,
    executor: CompactionExecutor,
    timeout: float | None = None,
    clock: Callable[[], float] = time.time,
) -> None:
    """Run one compaction and confirm its outcome with the registry.

    Raises:
        InvalidStateError: If a compaction is already in progress for the session
        CompactionTimeoutError: If the executor does not finish within ``timeout``
        Exception: Whatever the executor raised, after the session is released
    """
    session_id = instruction.session_id
    registry.mark_compaction_started(session_id, clock())

    try:
        finished = await _run_executor(executor, instruction, timeout)
    except asyncio.CancelledError:
        _release(registry, session_id, clock())
        raise
    except Exception as err:
        _release(registry, session_id, clock())
        logger.warning("Compaction for session %s failed: %s", session_id, err)
        raise

    if not finished:
        _release(registry, session_id, clock())
        logger.warning("Compaction for session %s timed out after %ss", session_id, timeout)
        raise CompactionTimeoutError(session_id, timeout)

    state = registry.get_state(session_id)
    if state is not None and state.compaction_in_progress:
        registry.mark_compaction_complete(session_id, clock())
    else:
        # Session ended or a watchdog already released it.
        logger.debug("Session %s was released before its compaction completed", session_id)


async def compact_if_needed(
    registry: SessionRegistry,
    session_id: str,
    tokens_used: int,
    token_limit: int,
    executor: CompactionExecutor,
    timeout: float | None = None,
    clock: Callable[[], float] = time.time,
) -> Decision:
    """Report usage and, when the decision calls for it, run the compaction.

    Returns the decision that was acted on.
    """
    decision = registry.report_usage(session_id, tokens_used, token_limit, clock())
    if decision.requires_compaction:
        await run_compaction(
            registry, decision.to_instruction(session_id), executor, timeout=timeout, clock=clock
        )
    return decision


async def _run_executor(
    executor: CompactionExecutor, instruction: CompactionInstruction, timeout: float | None
) -> bool:
    """Await the executor. Returns False if it was still running after ``timeout`` seconds.

    Errors raised by the executor itself, including its own TimeoutError, propagate as is.
    """
    task = asyncio.ensure_future(executor(instruction))
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if not done:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        return False
    task.result()
    return True


def _release(registry: SessionRegistry, session_id: str, now: float) -> None:
    """Return a session to idle after an aborted compaction, if it still exists."""
    state = registry.get_state(session_id)
    if state is not None and state.compaction_in_progress:
        registry.mark_compaction_failed(session_id, now)
