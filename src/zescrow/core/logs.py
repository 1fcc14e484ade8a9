"""Per-context activity feed for wallet session and balance events."""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable, Literal, get_args

ActivityCategory = Literal["session", "balance", "chain", "system"]
ActivitySeverity = Literal["info", "warning", "error"]

CATEGORIES: frozenset[str] = frozenset(get_args(ActivityCategory))
SEVERITIES: frozenset[str] = frozenset(get_args(ActivitySeverity))

DEFAULT_ACTIVITY_ENTRIES = 200

# Transparent and shielded Zcash addresses, implicit and named NEAR accounts.
_ADDRESS_PATTERN = re.compile(
    r"\b(?:"
    r"t[13][1-9A-HJ-NP-Za-km-z]{33}"
    r"|(?:zs|u|utest|ztestsapling)1[02-9ac-hj-np-z]{40,}"
    r"|[0-9a-f]{64}"
    r"|[a-z0-9_-]+(?:\.[a-z0-9_-]+)*\.(?:near|testnet)"
    r")\b"
)


def _mask(token: str) -> str:
    if len(token) <= 8:
        return "••••"
    return f"{token[:4]}…{token[-4:]}"


def redact(text: str) -> str:
    """Mask every wallet address or account id found in `text`."""
    return _ADDRESS_PATTERN.sub(lambda match: _mask(match.group(0)), text)


@dataclass(frozen=True, slots=True)
class ActivityEntry:
    timestamp: datetime
    category: ActivityCategory
    severity: ActivitySeverity
    message: str
    session_id: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "severity": self.severity,
            "message": self.message,
            "sessionId": self.session_id,
        }


class ActivityLog:
    """Bounded feed of redacted activity entries, oldest first.

    One feed belongs to one browsing context. Messages are redacted on the
    way in, so a raw address never reaches the feed or its readers.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_ACTIVITY_ENTRIES,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._entries: deque[ActivityEntry] = deque(maxlen=max(max_entries, 1))
        self._clock = clock or (lambda: datetime.now(UTC))

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        category: str,
        message: str,
        *,
        severity: str = "info",
        session_id: str | None = None,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            timestamp=self._clock(),
            category=category if category in CATEGORIES else "system",  # type: ignore[arg-type]
            severity=severity if severity in SEVERITIES else "info",  # type: ignore[arg-type]
            message=redact(message),
            session_id=session_id,
        )
        self._entries.append(entry)
        return entry

    def recent(self, limit: int = 50, *, category: str | None = None) -> list[ActivityEntry]:
        if limit <= 0:
            return []
        entries = [entry for entry in self._entries if category is None or entry.category == category]
        return entries[-limit:]

    def clear(self) -> None:
        self._entries.clear()


__all__ = [
    "ActivityCategory",
    "ActivityEntry",
    "ActivityLog",
    "ActivitySeverity",
    "CATEGORIES",
    "DEFAULT_ACTIVITY_ENTRIES",
    "SEVERITIES",
    "redact",
]
