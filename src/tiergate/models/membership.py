"""
Membership Models
Persisted per-user subscription state, monthly usage counters and the
entries feature modules create (counted for the built-in "episodes" quota).
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB

from tiergate.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Membership(Base):
    __tablename__ = "tiergate_memberships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, unique=True, index=True)

    tier = Column(String(32), nullable=False, default="free")
    status = Column(String(32), nullable=False, default="active", index=True)

    # resource type -> int | "unlimited"
    custom_limits = Column(JSON().with_variant(JSONB, "postgresql"), default=dict)

    starts_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)

    provider_customer_ref = Column(String(255), nullable=True)
    provider_subscription_ref = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class UsageCounter(Base):
    __tablename__ = "tiergate_usage_counters"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "resource_type", "period_key", name="uq_usage_counter_scope"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    resource_type = Column(String(64), nullable=False)
    period_key = Column(String(7), nullable=False)  # YYYY_MM
    count = Column(Integer, nullable=False, default=0)

    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class ModuleEntry(Base):
    __tablename__ = "tiergate_module_entries"
    __table_args__ = (Index("ix_module_entries_user_created", "user_id", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    module_id = Column(String(120), nullable=False, index=True)
    payload = Column(JSON().with_variant(JSONB, "postgresql"), default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
