"""Token estimation for hosts that do not report usage.

Uses a simple heuristic: ~4 characters per token.
"""

from __future__ import annotations

import json
import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate token count for a string using the ~4 chars/token heuristic."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(message: dict) -> int:
    """Estimate the context footprint of one message, including tool calls."""
    total = 0
    content = message.get("content")
    if isinstance(content, str):
        total += estimate_tokens(content)
    elif content is not None:
        try:
            total += estimate_tokens(json.dumps(content))
        except (TypeError, ValueError):
            pass
    tool_calls = message.get("tool_calls")
    if tool_calls:
        try:
            total += estimate_tokens(json.dumps(tool_calls))
        except (TypeError, ValueError):
            pass
    return total


def estimate_messages_tokens(messages: list[dict]) -> int:
    """Estimate total token count for a list of conversation messages."""
    return sum(estimate_message_tokens(msg) for msg in messages)
