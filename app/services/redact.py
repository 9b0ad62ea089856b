"""Bounded, masked excerpts of upstream text for logs and error messages."""

from __future__ import annotations

import re
from typing import Iterable, Optional

DEFAULT_LIMIT = 200
MASK = "***"

_TOKEN_PATTERNS = [
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]+"),
    re.compile(r"(?i)(\"?api[-_]?key\"?\s*[:=]\s*\"?)[^\s\",}]+"),
    re.compile(r"(?i)([?&](?:key|code|sig|api-key)=)[^&\s]+"),
]


def excerpt(text: Optional[str], limit: int = DEFAULT_LIMIT, secrets: Iterable[Optional[str]] = ()) -> str:
    """Mask secrets and credential-looking tokens, collapse whitespace, truncate."""
    if text is None:
        return ""
    s = str(text)
    for secret in secrets:
        if secret:
            s = s.replace(secret, MASK)
    for pat in _TOKEN_PATTERNS:
        s = pat.sub(lambda m: m.group(1) + MASK, s)
    s = " ".join(s.split())
    if len(s) > limit:
        s = f"{s[:limit]}... (+{len(s) - limit} chars)"
    return s
