"""Deterministic identifiers for derived blocks and events.

Re-deriving the same evidence must yield the same id so that storage can
upsert by id exactly once. Two encodings are used:

Display blocks:
    ``{prefix}{kind}:{start}:{end}:{source}`` where ``prefix`` is
    ``derived_actual:`` (planned/derived actuals) or ``derived_evidence:``
    (raw evidence), ``start``/``end`` are integer minutes and ``source`` is a
    normalized token (lowercase, runs of non-alphanumerics collapsed to
    ``_``). When normalization loses information a short sha256 digest of the
    raw source is appended, so distinct sources never collide.

Ingestion source ids:
    ``{family}:{window_start_ms}:{key}:{start_ms}``, e.g.
    ``screentime:1741075200000:com.instagram.android:1741075260000``.

Example:
    >>> derived_id(DERIVED_EVIDENCE_PREFIX, "screen_time", 600, 645, "Instagram")
    'derived_evidence:screen_time:600:645:instagram'
"""

from __future__ import annotations

import hashlib
import re
from datetime import datetime

from daytrace.core.intervals import Number, parse_timestamp

DERIVED_ACTUAL_PREFIX = "derived_actual:"
DERIVED_EVIDENCE_PREFIX = "derived_evidence:"
DERIVED_PREFIXES = (DERIVED_ACTUAL_PREFIX, DERIVED_EVIDENCE_PREFIX)

_TOKEN_RE = re.compile(r"[^a-z0-9.]+")


def short_hash(*parts: object, length: int = 8) -> str:
    """Stable short digest of the given parts."""
    joined = "|".join(str(p) for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:length]


def normalize_token(value: str | None) -> str:
    """Normalize free text into an id-safe token."""
    raw = (value or "").strip()
    token = _TOKEN_RE.sub("_", raw.lower()).strip("_") or "none"
    if token.replace("_", " ") != raw.lower().replace("_", " "):
        token = f"{token}-{short_hash(raw)}"
    return token


def derived_id(prefix: str, kind: str, start: Number, end: Number, source: str | None) -> str:
    """Id for a derived display block."""
    return f"{prefix}{kind}:{int(round(start))}:{int(round(end))}:{normalize_token(source)}"


def is_derived_id(block_id: str) -> bool:
    return block_id.startswith(DERIVED_PREFIXES)


def rebound_derived_id(block_id: str, start: Number, end: Number) -> str:
    """Re-encode the bounds of a display-block id; other ids pass through.

    Example:
        >>> rebound_derived_id("derived_evidence:location:540:600:office", 540, 660)
        'derived_evidence:location:540:660:office'
    """
    for prefix in DERIVED_PREFIXES:
        if not block_id.startswith(prefix):
            continue
        parts = block_id[len(prefix):].split(":")
        if len(parts) == 4 and parts[1].isdigit() and parts[2].isdigit():
            kind, _, _, token = parts
            return f"{prefix}{kind}:{int(round(start))}:{int(round(end))}:{token}"
    return block_id


def to_epoch_ms(value: datetime | str) -> int:
    return int(parse_timestamp(value).timestamp() * 1000)


def window_source_id(family: str, window_start: datetime, key: str | None, start: datetime) -> str:
    """Source id for an event derived inside an ingestion window."""
    return f"{family}:{to_epoch_ms(window_start)}:{key or 'unknown'}:{to_epoch_ms(start)}"
