"""
SQLAlchemy-backed membership store.

The store only flushes; committing is left to the session owner
(see tiergate.database.get_db_session).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tiergate.exceptions import InvalidTierError, StoreError, ValidationError
from tiergate.membership.records import (
    MembershipRecord,
    MembershipStatus,
    UsageKey,
    as_utc,
)
from tiergate.membership.store import MembershipStore
from tiergate.models.membership import Membership, ModuleEntry, UsageCounter
from tiergate.tiers import Tier, parse_limits, serialize_limits

logger = logging.getLogger(__name__)


def _opt_utc(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


class SqlMembershipStore(MembershipStore):
    def __init__(self, session: Session):
        self.session = session

    def get_membership(self, user_id: int) -> Optional[MembershipRecord]:
        try:
            row = self.session.query(Membership).filter(Membership.user_id == user_id).first()
        except SQLAlchemyError as exc:
            raise StoreError("read-membership", str(exc)) from exc
        return self._to_record(row) if row else None

    def upsert_membership(self, record: MembershipRecord) -> MembershipRecord:
        try:
            row = self.session.query(Membership).filter(Membership.user_id == record.user_id).first()
            if row is None:
                row = Membership(user_id=record.user_id)
                self.session.add(row)
            row.tier = record.tier.value
            row.status = record.status.value
            row.custom_limits = serialize_limits(record.custom_limits)
            row.starts_at = _opt_utc(record.starts_at) or datetime.now(timezone.utc)
            row.expires_at = _opt_utc(record.expires_at)
            row.provider_customer_ref = record.provider_customer_ref
            row.provider_subscription_ref = record.provider_subscription_ref
            if record.created_at is not None and row.created_at is None:
                row.created_at = as_utc(record.created_at)
            if record.updated_at is not None:
                row.updated_at = as_utc(record.updated_at)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise StoreError("write-membership", str(exc)) from exc
        return self._to_record(row)

    def list_expired_active(self, now: datetime) -> List[MembershipRecord]:
        try:
            rows = (
                self.session.query(Membership)
                .filter(
                    Membership.status == MembershipStatus.ACTIVE.value,
                    Membership.expires_at.isnot(None),
                    Membership.expires_at < as_utc(now),
                )
                .order_by(Membership.user_id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreError("list-expired", str(exc)) from exc
        return [self._to_record(row) for row in rows]

    def transition_status(
        self,
        user_id: int,
        from_status: MembershipStatus,
        to_status: MembershipStatus,
        *,
        at: Optional[datetime] = None,
    ) -> bool:
        stmt = (
            update(Membership)
            .where(
                Membership.user_id == user_id,
                Membership.status == from_status.value,
            )
            .values(status=to_status.value, updated_at=as_utc(at or datetime.now(timezone.utc)))
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
            self.session.expire_all()
        except SQLAlchemyError as exc:
            raise StoreError("write-membership", str(exc)) from exc
        return bool(result.rowcount)

    def count_entries(self, user_id: int, start: datetime, end: datetime) -> int:
        try:
            count = (
                self.session.query(func.count(ModuleEntry.id))
                .filter(
                    ModuleEntry.user_id == user_id,
                    ModuleEntry.created_at >= as_utc(start),
                    ModuleEntry.created_at < as_utc(end),
                )
                .scalar()
            )
        except SQLAlchemyError as exc:
            raise StoreError("count-entries", str(exc)) from exc
        return int(count or 0)

    def add_entry(
        self,
        user_id: int,
        module_id: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        created_at: Optional[datetime] = None,
    ) -> int:
        entry = ModuleEntry(
            user_id=user_id,
            module_id=module_id,
            payload=dict(payload or {}),
            created_at=as_utc(created_at or datetime.now(timezone.utc)),
        )
        try:
            self.session.add(entry)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise StoreError("write-entry", str(exc)) from exc
        return int(entry.id)

    def get_usage(self, key: UsageKey) -> int:
        try:
            count = (
                self.session.query(UsageCounter.count)
                .filter(*self._key_filter(key))
                .scalar()
            )
        except SQLAlchemyError as exc:
            raise StoreError("read-usage", str(exc)) from exc
        return int(count or 0)

    def increment_usage(self, key: UsageKey, amount: int) -> int:
        try:
            self._ensure_counter(key)
            self.session.execute(
                update(UsageCounter)
                .where(*self._key_filter(key))
                .values(count=UsageCounter.count + amount)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise StoreError("write-usage", str(exc)) from exc
        return self.get_usage(key)

    def increment_usage_if_below(self, key: UsageKey, amount: int, limit: int) -> Optional[int]:
        try:
            self._ensure_counter(key)
            # Compare and increment in one statement so concurrent callers
            # cannot both pass the limit check
            result = self.session.execute(
                update(UsageCounter)
                .where(*self._key_filter(key), UsageCounter.count + amount <= limit)
                .values(count=UsageCounter.count + amount)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise StoreError("write-usage", str(exc)) from exc
        if not result.rowcount:
            return None
        return self.get_usage(key)

    def _ensure_counter(self, key: UsageKey) -> None:
        values = {
            "user_id": key.user_id,
            "resource_type": key.resource_type,
            "period_key": key.period_key,
            "count": 0,
        }
        index_elements = ["user_id", "resource_type", "period_key"]
        dialect = self.session.bind.dialect.name if self.session.bind else "unknown"
        # Concurrent first increments of a period must not trip the unique constraint.
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as pg_insert

            self.session.execute(
                pg_insert(UsageCounter).values(**values).on_conflict_do_nothing(
                    index_elements=index_elements
                )
            )
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as sqlite_insert

            self.session.execute(
                sqlite_insert(UsageCounter).values(**values).on_conflict_do_nothing(
                    index_elements=index_elements
                )
            )
        else:
            exists = self.session.query(UsageCounter.id).filter(*self._key_filter(key)).first()
            if exists:
                return
            try:
                with self.session.begin_nested():
                    self.session.add(UsageCounter(**values))
            except IntegrityError:
                logger.debug(f"Usage counter {key} created concurrently")

    @staticmethod
    def _key_filter(key: UsageKey):
        return (
            UsageCounter.user_id == key.user_id,
            UsageCounter.resource_type == key.resource_type,
            UsageCounter.period_key == key.period_key,
        )

    @staticmethod
    def _to_record(row: Membership) -> MembershipRecord:
        try:
            tier = Tier.parse(row.tier)
        except InvalidTierError:
            logger.warning(f"Membership for user {row.user_id} has unknown tier {row.tier!r}; using free")
            tier = Tier.FREE
        try:
            custom_limits = parse_limits(row.custom_limits or {})
        except ValidationError as exc:
            logger.warning(f"Ignoring malformed custom limits for user {row.user_id}: {exc}")
            custom_limits = {}
        return MembershipRecord(
            user_id=int(row.user_id),
            tier=tier,
            status=MembershipStatus(row.status),
            custom_limits=custom_limits,
            starts_at=_opt_utc(row.starts_at),
            expires_at=_opt_utc(row.expires_at),
            provider_customer_ref=row.provider_customer_ref,
            provider_subscription_ref=row.provider_subscription_ref,
            created_at=_opt_utc(row.created_at),
            updated_at=_opt_utc(row.updated_at),
        )
