# src/cache/fingerprint.py — v3
"""Deterministic fingerprint of an outbound wire-message list.

The key covers role and content of every message, in order. Model and
sampling parameters are deliberately not part of it: the same
conversation maps to the same key whatever model answers it.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence

from chatpipe.llm.models import WireMessage

KEY_PREFIX = "llm-"


def build_cache_key(messages: Sequence[WireMessage]) -> str:
    """Return ``llm-<sha256>`` over the canonical JSON of ``[{role, content}, ...]``."""
    canonical = json.dumps(
        [m.model_dump(include={"role", "content"}) for m in messages],
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=True,
    )
    return KEY_PREFIX + hashlib.sha256(canonical.encode("utf-8")).hexdigest()
