"""
Usage metering over calendar-month periods.

Counters are keyed by (user_id, resource_type, period_key) where period_key
is the UTC month formatted as YYYY_MM. Counters are created lazily on first
increment and never deleted here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from tiergate.membership.records import UsageKey, as_utc
from tiergate.membership.store import MembershipStore

Clock = Callable[[], datetime]

# (user_id, period_start, period_end) -> count
UsageSource = Callable[[int, datetime, datetime], int]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def period_key(at: datetime) -> str:
    return as_utc(at).strftime("%Y_%m")


def period_bounds(at: datetime) -> Tuple[datetime, datetime]:
    moment = as_utc(at)
    start = datetime(moment.year, moment.month, 1, tzinfo=timezone.utc)
    if moment.month == 12:
        end = datetime(moment.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(moment.year, moment.month + 1, 1, tzinfo=timezone.utc)
    return start, end


def previous_period(at: datetime) -> datetime:
    start, _ = period_bounds(at)
    if start.month == 1:
        return start.replace(year=start.year - 1, month=12)
    return start.replace(month=start.month - 1)


class UsageMeter:
    def __init__(self, store: MembershipStore, clock: Optional[Clock] = None):
        self.store = store
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    def key(self, resource_type: str, user_id: int, at: Optional[datetime] = None) -> UsageKey:
        return UsageKey(
            user_id=user_id,
            resource_type=resource_type,
            period_key=period_key(at or self.now()),
        )

    def bounds(self, at: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        return period_bounds(at or self.now())

    def get(self, resource_type: str, user_id: int, at: Optional[datetime] = None) -> int:
        return self.store.get_usage(self.key(resource_type, user_id, at))

    def increment(self, resource_type: str, user_id: int, amount: int = 1) -> int:
        return self.store.increment_usage(self.key(resource_type, user_id), amount)

    def increment_if_below(
        self, resource_type: str, user_id: int, amount: int, limit: int
    ) -> Optional[int]:
        return self.store.increment_usage_if_below(
            self.key(resource_type, user_id), amount, limit
        )

    def history(self, resource_type: str, user_id: int, months: int = 6) -> List[Tuple[str, int]]:
        """Counter values for the last `months` periods, oldest first."""
        points: List[Tuple[str, int]] = []
        cursor = self.now()
        for _ in range(max(months, 0)):
            points.append((period_key(cursor), self.get(resource_type, user_id, cursor)))
            cursor = previous_period(cursor)
        points.reverse()
        return points
