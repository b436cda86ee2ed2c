"""Per-key usage metering.

Created: 2026-10-13

The meter appends one UsageEvent per API call and answers windowed queries.
It keeps no counters of its own. Rate-limit and analytics figures are
derived from ``query()`` results with ``summarize()``.

Recording happens after the authorization decision. A failed write is logged
and dropped so it can never change the outcome of the request.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from gapminer.keys.models import UsageEvent, utcnow
from gapminer.keys.store import UsageStore

logger = logging.getLogger(__name__)


@dataclass
class UsageSummary:
    """Aggregates over a list of usage events."""

    total_requests: int = 0
    error_count: int = 0
    avg_response_time_ms: float = 0.0
    requests_last_minute: int = 0
    by_endpoint: dict[str, int] = field(default_factory=dict)

    @property
    def error_rate(self) -> float:
        return self.error_count / self.total_requests if self.total_requests else 0.0


def summarize(events: list[UsageEvent], now: datetime | None = None) -> UsageSummary:
    """Aggregate usage events. Status codes >= 400 count as errors."""
    if not events:
        return UsageSummary()
    now = now or utcnow()
    minute_ago = now - timedelta(minutes=1)
    return UsageSummary(
        total_requests=len(events),
        error_count=sum(1 for e in events if e.status_code >= 400),
        avg_response_time_ms=sum(e.response_time_ms for e in events) / len(events),
        requests_last_minute=sum(1 for e in events if e.timestamp >= minute_ago),
        by_endpoint=dict(Counter(e.endpoint for e in events).most_common()),
    )


class UsageMeter:
    """Records and queries usage events for API keys."""

    def __init__(self, store: UsageStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    async def record(
        self,
        credential_id: str,
        endpoint: str,
        method: str,
        status_code: int,
        response_time_ms: float,
    ) -> UsageEvent | None:
        """Append one usage event. Returns None if it could not be recorded."""
        try:
            event = UsageEvent(
                credential_id=credential_id,
                endpoint=endpoint,
                method=method.upper(),
                status_code=status_code,
                response_time_ms=response_time_ms,
                timestamp=self._clock(),
            )
            await self._store.append(event)
        except Exception as e:
            logger.warning("Dropped usage event for key %s: %s", credential_id, e)
            return None
        return event

    async def query(self, credential_id: str, window_days: int = 7) -> list[UsageEvent]:
        """Events for one key from the trailing *window_days*, newest first."""
        if window_days <= 0:
            raise ValueError("window_days must be positive")
        since = self._clock() - timedelta(days=window_days)
        events = await self._store.list_since(credential_id, since)
        return sorted(
            (e for e in events if e.credential_id == credential_id and e.timestamp >= since),
            key=lambda e: e.timestamp,
            reverse=True,
        )
