"""Cursor helpers for HighLevel's keyset pagination.

The contacts listing returns its position markers in the page metadata:

    {"meta": {"startAfter": 1700000000000, "startAfterId": "abc123", "total": 242}}

Both markers are required to request the next page. A page that carries only
one of them is malformed; we treat it as the end of the collection rather than
re-requesting the same page forever.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class SyncCursor:
    start_after: Any
    start_after_id: str

    def to_params(self) -> dict[str, Any]:
        return {"startAfter": self.start_after, "startAfterId": self.start_after_id}


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def parse_cursor_pair(meta: dict[str, Any] | None) -> SyncCursor | None:
    """
    Read the next-page cursor from a page's metadata.

    Returns None when the collection is exhausted, including when the pair is
    incomplete.
    """
    if not meta:
        return None

    start_after = meta.get("startAfter")
    start_after_id = meta.get("startAfterId")
    has_value = _is_present(start_after)
    has_id = _is_present(start_after_id)

    if has_value and has_id:
        return SyncCursor(start_after=start_after, start_after_id=str(start_after_id))

    if has_value != has_id:
        logger.warning(
            "Incomplete pagination cursor, treating collection as exhausted",
            has_start_after=has_value,
            has_start_after_id=has_id,
        )
    return None


def parse_total(meta: dict[str, Any] | None) -> int | None:
    """Read a reported total from page metadata, if it is a usable integer."""
    if not meta:
        return None
    raw = meta.get("total")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        total = int(raw)
    except (TypeError, ValueError):
        return None
    return total if total >= 0 else None
