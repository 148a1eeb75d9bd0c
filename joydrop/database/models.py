"""
joydrop.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- accounts     — Individuals and organizations (one table, ``kind`` column)
- joydrops     — Append-only event log, one row per logged good deed
- memberships  — Append-only record of each individual → organization join

Counts live on ``accounts`` and are only ever changed by atomic SQL
increments in :mod:`joydrop.services.aggregation_service`.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Joydrop ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class AccountKind(enum.StrEnum):
    """The two account variants sharing one identity space."""
    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"


class EventSource(enum.StrEnum):
    """Where a joydrop was logged from."""
    WEB = "web"
    THANK_YOU_GRAM = "thank_you_gram"


# ---------------------------------------------------------------------------
# Accounts — individuals and organizations
# ---------------------------------------------------------------------------
class Account(Base):
    """One row per registered individual or organization.

    ``event_count`` is the Tier 1 count for individuals and the Tier 2
    aggregate for organizations.  ``organization_id`` is set at most
    once and never cleared.
    """
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    slug: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Individual-only
    organization_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("accounts.id"), nullable=True, default=None
    )
    consent_to_join_org: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Organization-only
    member_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Lowercased trimmed org name; NULL for individuals
    name_key: Mapped[str | None] = mapped_column(
        String(200), nullable=True, unique=True, default=None
    )

    city: Mapped[str | None] = mapped_column(String(100), default=None)
    state_province: Mapped[str | None] = mapped_column(String(100), default=None)
    country: Mapped[str | None] = mapped_column(String(100), default=None)
    profile: Mapped[dict | None] = mapped_column(JSONB, nullable=True, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_accounts_kind_count", "kind", "event_count"),
        Index("ix_accounts_organization_id", "organization_id"),
    )

    @property
    def is_organization(self) -> bool:
        return self.kind == AccountKind.ORGANIZATION.value

    @property
    def location(self) -> str:
        parts = [p for p in (self.city, self.country) if p]
        return ", ".join(parts) or "Unknown"

    def __repr__(self) -> str:
        return (
            f"<Account id={self.id} kind={self.kind} slug={self.slug!r} "
            f"count={self.event_count}>"
        )


# ---------------------------------------------------------------------------
# Joydrops — append-only event log
# ---------------------------------------------------------------------------
class Joydrop(Base):
    __tablename__ = "joydrops"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    actor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id"), nullable=False
    )
    # Snapshot of the actor's organization at logging time
    organization_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("accounts.id"), nullable=True
    )
    source: Mapped[str] = mapped_column(
        String(30), nullable=False, default=EventSource.WEB.value
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    # Actor's event_count right after this joydrop
    actor_count: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    url: Mapped[str | None] = mapped_column(Text, default=None)
    comment: Mapped[str | None] = mapped_column(Text, default=None)
    latitude: Mapped[float | None] = mapped_column(Float, default=None)
    longitude: Mapped[float | None] = mapped_column(Float, default=None)
    city: Mapped[str | None] = mapped_column(String(100), default=None)
    state_province: Mapped[str | None] = mapped_column(String(100), default=None)
    country: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index(
            "ix_joydrops_idempotency_key",
            "idempotency_key",
            unique=True,
            postgresql_where=text("idempotency_key IS NOT NULL"),
        ),
        Index("ix_joydrops_actor_time", "actor_id", "created_at"),
        Index("ix_joydrops_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Joydrop id={self.id} actor={self.actor_id} org={self.organization_id}>"


# ---------------------------------------------------------------------------
# Memberships — audit trail of joins
# ---------------------------------------------------------------------------
class Membership(Base):
    __tablename__ = "memberships"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id"), nullable=False
    )
    # One join per individual, ever
    individual_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id"), nullable=False, unique=True
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_memberships_org_joined", "organization_id", "joined_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Membership org={self.organization_id} "
            f"individual={self.individual_id}>"
        )
