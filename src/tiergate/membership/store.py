"""
Membership Store Interface
Abstract base class for the persisted per-user subscription state, plus an
in-memory implementation used by tests and single-process deployments.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from tiergate.membership.records import (
    MembershipRecord,
    MembershipStatus,
    UsageKey,
    as_utc,
)


class MembershipStore(ABC):
    """Abstract base class for membership persistence."""

    @abstractmethod
    def get_membership(self, user_id: int) -> Optional[MembershipRecord]:
        """
        Reads the user's membership record regardless of its status.
        Returns:
            The record, or None when the user never had one.
        """

    @abstractmethod
    def upsert_membership(self, record: MembershipRecord) -> MembershipRecord:
        """Creates or replaces the record for record.user_id and returns what was stored."""

    @abstractmethod
    def list_expired_active(self, now: datetime) -> List[MembershipRecord]:
        """Active records whose expires_at is set and strictly before now."""

    @abstractmethod
    def transition_status(
        self,
        user_id: int,
        from_status: MembershipStatus,
        to_status: MembershipStatus,
        *,
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Conditionally moves a record between statuses.
        Returns:
            True if the record was in from_status and has been updated.
        """

    @abstractmethod
    def count_entries(self, user_id: int, start: datetime, end: datetime) -> int:
        """Number of module entries the user created in [start, end)."""

    @abstractmethod
    def add_entry(
        self,
        user_id: int,
        module_id: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        created_at: Optional[datetime] = None,
    ) -> int:
        """Stores a module entry and returns its id."""

    @abstractmethod
    def get_usage(self, key: UsageKey) -> int:
        """Current counter value, 0 if the counter does not exist yet."""

    @abstractmethod
    def increment_usage(self, key: UsageKey, amount: int) -> int:
        """Adds amount to the counter (creating it lazily) and returns the new value."""

    @abstractmethod
    def increment_usage_if_below(self, key: UsageKey, amount: int, limit: int) -> Optional[int]:
        """
        Atomically adds amount when the result stays within limit.
        Returns:
            The new value, or None when the increment was refused.
        """


class InMemoryMembershipStore(MembershipStore):
    def __init__(self) -> None:
        self._memberships: Dict[int, MembershipRecord] = {}
        self._usage: Dict[UsageKey, int] = {}
        self._entries: List[Tuple[int, int, str, Dict[str, Any], datetime]] = []
        self._lock = threading.RLock()

    def get_membership(self, user_id: int) -> Optional[MembershipRecord]:
        with self._lock:
            return self._memberships.get(user_id)

    def upsert_membership(self, record: MembershipRecord) -> MembershipRecord:
        with self._lock:
            self._memberships[record.user_id] = record
            return record

    def list_expired_active(self, now: datetime) -> List[MembershipRecord]:
        with self._lock:
            return [
                record
                for record in self._memberships.values()
                if record.is_active and record.is_expired_at(now)
            ]

    def transition_status(
        self,
        user_id: int,
        from_status: MembershipStatus,
        to_status: MembershipStatus,
        *,
        at: Optional[datetime] = None,
    ) -> bool:
        with self._lock:
            record = self._memberships.get(user_id)
            if record is None or record.status != from_status:
                return False
            self._memberships[user_id] = replace(
                record, status=to_status, updated_at=at or datetime.now(timezone.utc)
            )
            return True

    def count_entries(self, user_id: int, start: datetime, end: datetime) -> int:
        lower, upper = as_utc(start), as_utc(end)
        with self._lock:
            return sum(
                1
                for _, owner, _, _, created_at in self._entries
                if owner == user_id and lower <= created_at < upper
            )

    def add_entry(
        self,
        user_id: int,
        module_id: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        created_at: Optional[datetime] = None,
    ) -> int:
        stamp = as_utc(created_at or datetime.now(timezone.utc))
        with self._lock:
            entry_id = len(self._entries) + 1
            self._entries.append((entry_id, user_id, module_id, dict(payload or {}), stamp))
            return entry_id

    def get_usage(self, key: UsageKey) -> int:
        with self._lock:
            return self._usage.get(key, 0)

    def increment_usage(self, key: UsageKey, amount: int) -> int:
        with self._lock:
            total = self._usage.get(key, 0) + amount
            self._usage[key] = total
            return total

    def increment_usage_if_below(self, key: UsageKey, amount: int, limit: int) -> Optional[int]:
        with self._lock:
            current = self._usage.get(key, 0)
            if current + amount > limit:
                return None
            self._usage[key] = current + amount
            return current + amount
