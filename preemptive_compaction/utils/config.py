"""Process-start configuration for the compaction scheduler."""

from __future__ import annotations

import os
import re
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError
from ..scheduler.types import CompactionConfig, NormalizedCompactionConfig

ENV_PREFIX = "PREEMPTIVE_COMPACTION_"

# Config field -> (environment variable suffix, parser name)
_ENV_FIELDS = {
    "default_threshold": ("DEFAULT_THRESHOLD", "float"),
    "emergency_threshold": ("EMERGENCY_THRESHOLD", "float"),
    "trigger_threshold": ("TRIGGER_THRESHOLD", "float"),
    "min_tokens_for_compaction": ("MIN_TOKENS", "int"),
    "normal_cooldown": ("COOLDOWN", "duration"),
    "high_usage_cooldown": ("HIGH_USAGE_COOLDOWN", "duration"),
}

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?$")


def parse_duration(s: str | float | int) -> float:
    """Parse a cooldown duration to seconds.

    Supports plain numbers (seconds) and ``'500ms'``, ``'10s'``, ``'1m'``,
    ``'1.5h'``, ``'1d'``.

    Raises:
        ConfigurationError: If the format is invalid.
    """
    if isinstance(s, (int, float)):
        return float(s)
    if not isinstance(s, str):
        raise ConfigurationError(f"Invalid duration: {s!r}")
    match = _DURATION_RE.match(s.strip())
    if not match:
        raise ConfigurationError(
            f'Invalid duration: "{s}". Expected format: "30", "10s", "1m", "1h", etc.'
        )
    value = float(match.group(1))
    unit = match.group(2) or "s"
    if unit == "ms":
        return value / 1000
    elif unit == "s":
        return value
    elif unit == "m":
        return value * 60
    elif unit == "h":
        return value * 3600
    return value * 86400


def _parse_env_value(name: str, raw: str, kind: str) -> Any:
    if kind == "duration":
        return parse_duration(raw)
    try:
        if kind == "int":
            return int(raw.replace("_", ""))
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from None


def config_from_env(environ: dict[str, str] | None = None) -> CompactionConfig:
    """Read scheduler tunables from ``PREEMPTIVE_COMPACTION_*`` environment variables."""
    if environ is None:
        environ = dict(os.environ)
    values: dict[str, Any] = {}
    for field, (suffix, kind) in _ENV_FIELDS.items():
        name = ENV_PREFIX + suffix
        raw = environ.get(name)
        if raw is None or raw.strip() == "":
            continue
        values[field] = _parse_env_value(name, raw.strip(), kind)
    return CompactionConfig(**values)


def load_config(
    environ: dict[str, str] | None = None,
    dotenv: bool = True,
    **overrides: Any,
) -> NormalizedCompactionConfig:
    """Build the scheduler config at process start.

    Priority: keyword overrides, then environment variables (including a
    ``.env`` file when ``dotenv`` is set and ``environ`` is not given), then
    defaults.

    Raises:
        ConfigurationError: If a value is unparsable or the combination is invalid
    """
    unknown = set(overrides) - set(_ENV_FIELDS)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    if environ is None and dotenv:
        load_dotenv()

    from_env = config_from_env(environ)
    for key in ("normal_cooldown", "high_usage_cooldown"):
        if overrides.get(key) is not None:
            overrides[key] = parse_duration(overrides[key])
    values = from_env.model_dump()
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        merged = CompactionConfig.model_validate(values)
    except ValidationError as err:
        raise ConfigurationError(f"Invalid compaction config: {err}") from err
    return merged.normalize()
