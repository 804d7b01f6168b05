"""Upstream API call counter.

Live price APIs are metered; the counter backs the /api/debug/api-usage
endpoint so request volume can be watched against plan limits.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class UpstreamCall:
    timestamp: datetime
    source: str
    kind: str
    ok: bool


@dataclass
class UsageTracker:
    """Counts upstream calls since process start, keeping the most recent ones."""

    max_recent: int = 100
    total: int = 0
    failures: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _started_monotonic: float = field(default_factory=time.monotonic, init=False)
    _recent: deque = field(default_factory=deque, init=False)

    def record(self, source: str, kind: str, ok: bool) -> None:
        self.total += 1
        if not ok:
            self.failures += 1
        self._recent.append(
            UpstreamCall(datetime.now(timezone.utc), source, kind, ok)
        )
        while len(self._recent) > self.max_recent:
            self._recent.popleft()

    def recent(self, limit: int = 10) -> list[UpstreamCall]:
        return list(self._recent)[-limit:]

    def summary(self) -> dict:
        hours = max((time.monotonic() - self._started_monotonic) / 3600, 0.01)
        per_hour = self.total / hours
        return {
            "totalCalls": self.total,
            "failedCalls": self.failures,
            "startTime": self.started_at.isoformat(),
            "hoursSinceStart": round(hours, 1),
            "callsPerHour": round(per_hour, 1),
            "projectedDaily": round(per_hour * 24),
            "projectedMonthly": round(per_hour * 24 * 30),
            "recentCalls": [
                {
                    "timestamp": c.timestamp.isoformat(),
                    "source": c.source,
                    "type": c.kind,
                    "ok": c.ok,
                }
                for c in self.recent()
            ],
        }
