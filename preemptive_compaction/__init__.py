__version__ = "0.1.0"

from .errors import (
    CompactionError,
    CompactionTimeoutError,
    ConfigurationError,
    InvalidStateError,
)
from .scheduler import (
    CompactionConfig,
    CompactionExecutor,
    CompactionInstruction,
    CompactionScheduler,
    CompactionState,
    Decision,
    NormalizedCompactionConfig,
    SessionRegistry,
    SessionUsage,
    compact_if_needed,
    run_compaction,
)
from .utils import load_config, parse_duration

__all__ = [
    "CompactionConfig",
    "CompactionError",
    "CompactionExecutor",
    "CompactionInstruction",
    "CompactionScheduler",
    "CompactionState",
    "CompactionTimeoutError",
    "ConfigurationError",
    "Decision",
    "InvalidStateError",
    "NormalizedCompactionConfig",
    "SessionRegistry",
    "SessionUsage",
    "compact_if_needed",
    "load_config",
    "parse_duration",
    "run_compaction",
]
