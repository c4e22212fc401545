"""Scheduler module - decides when a session must compact its context."""

from .driver import CompactionExecutor, compact_if_needed, run_compaction
from .registry import SessionRegistry
from .scheduler import CompactionScheduler
from .tokens import estimate_message_tokens, estimate_messages_tokens, estimate_tokens
from .types import (
    COMPACTION_COOLDOWN_HIGH_USAGE_S,
    COMPACTION_COOLDOWN_S,
    DEFAULT_THRESHOLD,
    EMERGENCY_THRESHOLD,
    MIN_TOKENS_FOR_COMPACTION,
    CompactionConfig,
    CompactionInstruction,
    CompactionState,
    Decision,
    NormalizedCompactionConfig,
    SessionUsage,
)

__all__ = [
    "COMPACTION_COOLDOWN_HIGH_USAGE_S",
    "COMPACTION_COOLDOWN_S",
    "DEFAULT_THRESHOLD",
    "EMERGENCY_THRESHOLD",
    "MIN_TOKENS_FOR_COMPACTION",
    "CompactionConfig",
    "CompactionExecutor",
    "CompactionInstruction",
    "CompactionScheduler",
    "CompactionState",
    "Decision",
    "NormalizedCompactionConfig",
    "SessionRegistry",
    "SessionUsage",
    "compact_if_needed",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "estimate_tokens",
    "run_compaction",
]
