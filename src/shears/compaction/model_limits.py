"""Context window inference from model ids.

The table is matched in order; the first pattern found anywhere in the
model id wins.  Claude models get a 1M window when the host opted in
through ``ANTHROPIC_1M_CONTEXT`` or ``VERTEX_ANTHROPIC_1M_CONTEXT``.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping

DEFAULT_CONTEXT_LIMIT = 200_000
EXTENDED_CONTEXT_LIMIT = 1_000_000

_CLAUDE = re.compile(r"claude-(opus|sonnet|haiku)", re.IGNORECASE)

MODEL_CONTEXT_PATTERNS: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"gpt-5", re.IGNORECASE), 1_000_000),
    (re.compile(r"gpt-4-turbo|gpt-4o", re.IGNORECASE), 128_000),
    (re.compile(r"gpt-4(?!o)", re.IGNORECASE), 8_192),
    (re.compile(r"o1|o3", re.IGNORECASE), 200_000),
    (re.compile(r"gemini-3", re.IGNORECASE), 2_000_000),
    (re.compile(r"gemini-2\.5-pro", re.IGNORECASE), 2_000_000),
    (re.compile(r"gemini", re.IGNORECASE), 1_000_000),
)

_EXTENDED_ENV_VARS = ("ANTHROPIC_1M_CONTEXT", "VERTEX_ANTHROPIC_1M_CONTEXT")


def extended_context_enabled(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return any(env.get(name) == "true" for name in _EXTENDED_ENV_VARS)


def infer_context_limit(model_id: str | None, environ: Mapping[str, str] | None = None) -> int:
    """Best-guess context window for a model id.

    Unknown models get ``DEFAULT_CONTEXT_LIMIT``.
    """
    if not model_id:
        return DEFAULT_CONTEXT_LIMIT
    if _CLAUDE.search(model_id):
        return EXTENDED_CONTEXT_LIMIT if extended_context_enabled(environ) else DEFAULT_CONTEXT_LIMIT
    for pattern, limit in MODEL_CONTEXT_PATTERNS:
        if pattern.search(model_id):
            return limit
    return DEFAULT_CONTEXT_LIMIT


def usage_ratio(total_tokens: int, context_limit: int) -> float:
    if context_limit <= 0:
        return 0.0
    return total_tokens / context_limit
