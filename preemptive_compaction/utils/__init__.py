"""Utility functions for preemptive compaction."""

from .config import config_from_env, load_config, parse_duration

__all__ = [
    "config_from_env",
    "load_config",
    "parse_duration",
]
