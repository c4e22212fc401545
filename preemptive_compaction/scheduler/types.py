"""Types for the preemptive compaction scheduler.

Two kinds of state:
- SessionUsage: reported by the host runtime every turn, never mutated here
- CompactionState: per-session cooldown bookkeeping, owned by the scheduler
"""

from __future__ import annotations

import math
from enum import Enum

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from ..errors import ConfigurationError
from .tokens import estimate_messages_tokens

# -- Defaults -----------------------------------------------------------------

# Trigger compaction when context reaches this fraction of the limit
DEFAULT_THRESHOLD = 0.70

# Bypass cooldown and compact immediately past this fraction
EMERGENCY_THRESHOLD = 0.90

# Sessions smaller than this are never compacted
MIN_TOKENS_FOR_COMPACTION = 50_000

# Seconds between normal compactions
COMPACTION_COOLDOWN_S = 60.0

# Seconds between compactions once usage is past DEFAULT_THRESHOLD
COMPACTION_COOLDOWN_HIGH_USAGE_S = 10.0


class Decision(Enum):
    """What the caller must do after reporting a usage sample."""

    NO_OP = "no_op"
    COMPACT = "compact"
    EMERGENCY_COMPACT = "emergency_compact"

    @property
    def requires_compaction(self) -> bool:
        return self is not Decision.NO_OP

    def to_instruction(self, session_id: str) -> CompactionInstruction:
        """Build the executor instruction for this decision.

        Raises:
            ValueError: If the decision is NO_OP
        """
        if not self.requires_compaction:
            raise ValueError("NO_OP does not translate to a compaction instruction")
        return CompactionInstruction(
            session_id=session_id, emergency=self is Decision.EMERGENCY_COMPACT
        )


class CompactionInstruction(BaseModel):
    """Instruction handed to the compaction executor.

    Executors may pick a faster, lossier strategy when ``emergency`` is set.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    emergency: bool = False


class SessionUsage(BaseModel):
    """Token usage of a session's live context, as measured by the host."""

    model_config = ConfigDict(frozen=True)

    tokens_used: int
    token_limit: int

    @model_validator(mode="after")
    def _check_bounds(self) -> SessionUsage:
        if self.token_limit <= 0:
            raise ConfigurationError(f"token_limit must be positive, got {self.token_limit}")
        if self.tokens_used < 0:
            raise ConfigurationError(f"tokens_used must be non-negative, got {self.tokens_used}")
        return self

    @property
    def usage_ratio(self) -> float:
        return self.tokens_used / self.token_limit

    @property
    def is_over_limit(self) -> bool:
        """True when the sample was taken after the limit was already breached."""
        return self.tokens_used >= self.token_limit

    @classmethod
    def create(cls, tokens_used: int, token_limit: int) -> SessionUsage:
        """Build a usage sample, reporting any malformed value as a ConfigurationError."""
        try:
            return cls(tokens_used=tokens_used, token_limit=token_limit)
        except ValidationError as err:
            raise ConfigurationError(f"Malformed usage sample: {err}") from err

    @classmethod
    def from_message_tokens(
        cls,
        input_tokens: int,
        output_tokens: int,
        token_limit: int,
        cache_read_tokens: int = 0,
    ) -> SessionUsage:
        """Build usage from the token accounting of the latest assistant message.

        Cached prompt tokens still occupy the context window, so they count
        alongside input and output tokens.
        """
        return cls.create(input_tokens + cache_read_tokens + output_tokens, token_limit)

    @classmethod
    def from_messages(cls, messages: list[dict], token_limit: int) -> SessionUsage:
        """Estimate usage from raw messages when the host reports no counts."""
        return cls.create(estimate_messages_tokens(messages), token_limit)


class CompactionState(BaseModel):
    """Per-session compaction bookkeeping.

    Serializable with ``model_dump()`` so a host can persist it across restarts
    and restore it with ``model_validate()``.
    """

    model_config = ConfigDict(validate_assignment=True)

    session_id: str
    last_compaction_at: float | None = None
    compaction_in_progress: bool = False
    compaction_started_at: float | None = None
    compaction_count: int = 0
    failed_compaction_count: int = 0


class CompactionConfig(BaseModel):
    """User-facing scheduler configuration. Unset fields take the defaults."""

    default_threshold: float | None = None
    emergency_threshold: float | None = None
    min_tokens_for_compaction: int | None = None
    normal_cooldown: float | None = None
    high_usage_cooldown: float | None = None
    trigger_threshold: float | None = None

    def normalize(self) -> NormalizedCompactionConfig:
        """Resolve every field to a concrete value and validate the result.

        Raises:
            ConfigurationError: If a value is mistyped, out of range or inconsistent
        """
        try:
            return self._build_normalized()
        except ValidationError as err:
            raise ConfigurationError(f"Invalid compaction config: {err}") from err

    def _build_normalized(self) -> NormalizedCompactionConfig:
        return NormalizedCompactionConfig(
            default_threshold=(
                self.default_threshold if self.default_threshold is not None else DEFAULT_THRESHOLD
            ),
            emergency_threshold=(
                self.emergency_threshold
                if self.emergency_threshold is not None
                else EMERGENCY_THRESHOLD
            ),
            min_tokens_for_compaction=(
                self.min_tokens_for_compaction
                if self.min_tokens_for_compaction is not None
                else MIN_TOKENS_FOR_COMPACTION
            ),
            normal_cooldown=(
                self.normal_cooldown if self.normal_cooldown is not None else COMPACTION_COOLDOWN_S
            ),
            high_usage_cooldown=(
                self.high_usage_cooldown
                if self.high_usage_cooldown is not None
                else COMPACTION_COOLDOWN_HIGH_USAGE_S
            ),
            trigger_threshold=self.trigger_threshold,
        )


class NormalizedCompactionConfig(BaseModel):
    """Internal - all fields resolved to concrete values.

    Invalid combinations are rejected here, at construction, so evaluation
    never has to fail.
    """

    model_config = ConfigDict(frozen=True)

    default_threshold: float = DEFAULT_THRESHOLD
    emergency_threshold: float = EMERGENCY_THRESHOLD
    min_tokens_for_compaction: int = MIN_TOKENS_FOR_COMPACTION
    normal_cooldown: float = COMPACTION_COOLDOWN_S
    high_usage_cooldown: float = COMPACTION_COOLDOWN_HIGH_USAGE_S
    # Lowest ratio that may compact; None means default_threshold.
    trigger_threshold: float | None = None

    @property
    def effective_trigger_threshold(self) -> float:
        if self.trigger_threshold is None:
            return self.default_threshold
        return self.trigger_threshold

    @model_validator(mode="after")
    def _check_ranges(self) -> NormalizedCompactionConfig:
        for name in ("default_threshold", "emergency_threshold", "trigger_threshold"):
            value = getattr(self, name)
            if value is not None and not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
        if self.emergency_threshold <= self.default_threshold:
            raise ConfigurationError(
                f"emergency_threshold ({self.emergency_threshold}) must be greater than "
                f"default_threshold ({self.default_threshold})"
            )
        if self.trigger_threshold is not None and self.trigger_threshold > self.default_threshold:
            raise ConfigurationError(
                f"trigger_threshold ({self.trigger_threshold}) must not exceed "
                f"default_threshold ({self.default_threshold})"
            )
        if self.min_tokens_for_compaction < 0:
            raise ConfigurationError(
                f"min_tokens_for_compaction must be non-negative, "
                f"got {self.min_tokens_for_compaction}"
            )
        for name in ("normal_cooldown", "high_usage_cooldown"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ConfigurationError(
                    f"Cooldowns must be finite and non-negative, got {name}={value}"
                )
        return self
