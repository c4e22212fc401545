"""Core compaction scheduling logic.

Maps a session's reported token usage to a compaction decision, and enforces
minimum spacing between compactions unless usage crosses the emergency line.
"""

from __future__ import annotations

import math

from ..errors import InvalidStateError
from .types import (
    CompactionConfig,
    CompactionState,
    Decision,
    NormalizedCompactionConfig,
    SessionUsage,
)


class CompactionScheduler:
    """Decides, per usage sample, whether the caller must compact now.

    ``evaluate`` is a pure function of its arguments and the scheduler's config.
    It never mutates state, performs I/O or invokes the compaction executor.
    State only changes through the ``mark_compaction_*`` calls, so a caller that
    vetoes a decision leaves the session untouched.
    """

    def __init__(
        self, config: CompactionConfig | NormalizedCompactionConfig | None = None
    ) -> None:
        if config is None:
            config = CompactionConfig()
        if isinstance(config, CompactionConfig):
            config = config.normalize()
        self._config = config

    @property
    def config(self) -> NormalizedCompactionConfig:
        return self._config

    def evaluate(self, usage: SessionUsage, state: CompactionState, now: float) -> Decision:
        """Decide what to do with one usage sample.

        1. A compaction already in flight -> NO_OP
        2. Under the absolute token floor -> NO_OP
        3. At or past the emergency threshold -> EMERGENCY_COMPACT, ignoring cooldown
        4. In the high-usage band -> COMPACT once the high-usage cooldown elapsed
        5. In the trigger band below it -> COMPACT once the normal cooldown elapsed
        """
        config = self._config

        if state.compaction_in_progress:
            return Decision.NO_OP

        if usage.tokens_used < config.min_tokens_for_compaction:
            return Decision.NO_OP

        ratio = usage.usage_ratio

        # Samples already over the limit land here too.
        if ratio >= config.emergency_threshold:
            return Decision.EMERGENCY_COMPACT

        if ratio >= config.default_threshold:
            cooldown = config.high_usage_cooldown
        elif ratio >= config.effective_trigger_threshold:
            cooldown = config.normal_cooldown
        else:
            return Decision.NO_OP

        if self.elapsed_since_compaction(state, now) >= cooldown:
            return Decision.COMPACT
        return Decision.NO_OP

    @staticmethod
    def elapsed_since_compaction(state: CompactionState, now: float) -> float:
        """Seconds since the last completed compaction; infinite if there was none."""
        if state.last_compaction_at is None:
            return math.inf
        return now - state.last_compaction_at

    def mark_compaction_started(self, state: CompactionState, now: float) -> None:
        """Record that the caller invoked compaction.

        Raises:
            InvalidStateError: If a compaction is already in progress
        """
        if state.compaction_in_progress:
            raise InvalidStateError("Compaction already in progress", state.session_id)
        state.compaction_in_progress = True
        state.compaction_started_at = now

    def mark_compaction_complete(self, state: CompactionState, now: float) -> None:
        """Record a confirmed compaction and start its cooldown.

        Raises:
            InvalidStateError: If no compaction was started
        """
        if not state.compaction_in_progress:
            raise InvalidStateError("No compaction in progress to complete", state.session_id)
        if state.last_compaction_at is not None:
            now = max(now, state.last_compaction_at)
        state.compaction_in_progress = False
        state.compaction_started_at = None
        state.last_compaction_at = now
        state.compaction_count += 1

    def mark_compaction_failed(self, state: CompactionState, now: float) -> None:
        """Return to idle without starting a cooldown, so compaction can be retried.

        Raises:
            InvalidStateError: If no compaction was started
        """
        if not state.compaction_in_progress:
            raise InvalidStateError("No compaction in progress to fail", state.session_id)
        state.compaction_in_progress = False
        state.compaction_started_at = None
        state.failed_compaction_count += 1
