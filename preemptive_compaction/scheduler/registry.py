"""SessionRegistry: holds one CompactionState per session for a shared process.

The registry lock only guards insertion and removal of sessions. The per-turn
decision path works on the session's own state, which is driven by a single
turn loop per session.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable

from ..errors import ConfigurationError, InvalidStateError
from .scheduler import CompactionScheduler
from .types import (
    CompactionConfig,
    CompactionState,
    Decision,
    NormalizedCompactionConfig,
    SessionUsage,
)

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Per-session compaction bookkeeping on top of a shared scheduler."""

    def __init__(
        self,
        config: CompactionConfig | NormalizedCompactionConfig | None = None,
        scheduler: CompactionScheduler | None = None,
    ) -> None:
        if scheduler is not None and config is not None:
            raise ConfigurationError("Pass either config or scheduler, not both")
        self._scheduler = scheduler or CompactionScheduler(config)
        self._states: dict[str, CompactionState] = {}
        self._lock = threading.Lock()

    @property
    def scheduler(self) -> CompactionScheduler:
        return self._scheduler

    # -- Host runtime API --

    def report_usage(
        self,
        session_id: str,
        tokens_used: int,
        token_limit: int,
        now: float | None = None,
    ) -> Decision:
        """Evaluate one usage sample for a session, creating its state on first sight.

        Raises:
            ConfigurationError: If the usage sample is malformed
        """
        usage = SessionUsage.create(tokens_used, token_limit)
        if now is None:
            now = time.time()

        state = self._get_or_create(session_id)
        decision = self._scheduler.evaluate(usage, state, now)

        if usage.is_over_limit:
            logger.warning(
                "Session %s is already over its context limit (%s/%s tokens)",
                session_id,
                tokens_used,
                token_limit,
            )
        logger.debug(
            "Session %s usage %.1f%% (%s/%s tokens) -> %s",
            session_id,
            usage.usage_ratio * 100,
            tokens_used,
            token_limit,
            decision.value,
        )
        return decision

    def mark_compaction_started(self, session_id: str, now: float | None = None) -> None:
        state = self._get_or_create(session_id)
        self._scheduler.mark_compaction_started(state, time.time() if now is None else now)
        logger.info("Compaction started for session %s", session_id)

    def mark_compaction_complete(self, session_id: str, now: float | None = None) -> None:
        state = self._require(session_id)
        self._scheduler.mark_compaction_complete(state, time.time() if now is None else now)
        logger.info("Compaction completed for session %s", session_id)

    def mark_compaction_failed(self, session_id: str, now: float | None = None) -> None:
        state = self._require(session_id)
        self._scheduler.mark_compaction_failed(state, time.time() if now is None else now)
        logger.info("Compaction failed for session %s, retry allowed", session_id)

    def end_session(self, session_id: str) -> bool:
        """Discard a session's state. Returns False if the session was unknown."""
        with self._lock:
            state = self._states.pop(session_id, None)
        if state is None:
            return False
        if state.compaction_in_progress:
            logger.warning("Session %s ended with a compaction still in progress", session_id)
        return True

    # -- Inspection --

    def get_state(self, session_id: str) -> CompactionState | None:
        return self._states.get(session_id)

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._states

    def find_stalled(self, now: float, timeout: float) -> list[str]:
        """Sessions whose compaction has been in progress for at least ``timeout`` seconds.

        A caller-owned watchdog should force ``mark_compaction_failed`` on these,
        otherwise compaction stays disabled for the session forever.
        """
        with self._lock:
            states = list(self._states.values())
        return [
            state.session_id
            for state in states
            if state.compaction_in_progress
            and state.compaction_started_at is not None
            and now - state.compaction_started_at >= timeout
        ]

    # -- Persistence --

    def snapshot(self) -> list[dict]:
        """Serialize every session state, e.g. before a process restart."""
        with self._lock:
            states = list(self._states.values())
        return [state.model_dump() for state in states]

    def restore(self, states: Iterable[dict | CompactionState]) -> None:
        """Load session states produced by ``snapshot``, replacing existing entries."""
        restored = [
            s if isinstance(s, CompactionState) else CompactionState.model_validate(s)
            for s in states
        ]
        with self._lock:
            for state in restored:
                self._states[state.session_id] = state
        logger.debug("Restored %d session compaction states", len(restored))

    # -- Private helpers --

    def _require(self, session_id: str) -> CompactionState:
        state = self._states.get(session_id)
        if state is None:
            raise InvalidStateError("Unknown session", session_id)
        return state

    def _get_or_create(self, session_id: str) -> CompactionState:
        state = self._states.get(session_id)
        if state is not None:
            return state
        with self._lock:
            # Double-check after acquiring lock
            state = self._states.get(session_id)
            if state is None:
                state = CompactionState(session_id=session_id)
                self._states[session_id] = state
            return state
