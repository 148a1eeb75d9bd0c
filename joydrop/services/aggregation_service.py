"""
joydrop.services.aggregation_service — Tiered Count Aggregation
================================================================

The only code allowed to change ``event_count`` / ``member_count``.

Two rules keep an organization's Tier 2 count equal to the sum of its
members' Tier 1 counts:

* **log_event** — one transaction appends the joydrop, increments the
  individual and, when linked, increments the organization.  The
  individual's increment uses ``UPDATE … RETURNING organization_id`` so
  the link is read under the same row lock that ``add_member`` needs.
* **add_member** — one transaction claims the individual with a
  compare-and-swap on ``organization_id IS NULL``, writes the
  membership, and folds the individual's count (as returned by the
  CAS) into the organization exactly once.

Every increment is a SQL expression (``count = count + n``), never a
Python read-modify-write, so concurrent writers cannot lose updates.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from sqlalchemy import Engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from joydrop.constants import DEFAULT_SLUG_RETRY_ATTEMPTS
from joydrop.database.engine import get_session
from joydrop.database.models import (
    Account,
    AccountKind,
    EventSource,
    Joydrop,
    Membership,
)
from joydrop.engine.slugs import slug_candidates, slugify
from joydrop.errors import (
    AccountNotFound,
    AlreadyMember,
    ConsentRequired,
    EmailTaken,
    IdempotencyConflict,
    MissingField,
    StorageError,
)
from joydrop.services.account_service import (
    add_individual,
    find_individual_by_email,
    load_account,
    normalize_email,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass
class EventResult:
    """Outcome of logging one joydrop."""

    event_id: str
    individual_id: str
    individual_count: int
    organization_id: str | None = None
    organization_updated: bool = False
    duplicate: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MembershipResult:
    """Outcome of linking an individual to an organization."""

    membership_id: str
    organization_id: str
    individual_id: str
    added_historical_count: int
    organization_count: int
    member_count: int
    joined_at: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["joined_at"] = self.joined_at.isoformat()
        return data


@dataclass
class ThankYouGramResult:
    email: str
    individual_id: str
    slug: str
    created_new_user: bool
    event: EventResult

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Atomic counter primitives
# ---------------------------------------------------------------------------
def _increment_individual(session: Session, individual_id: str) -> tuple[int, str | None] | None:
    """Add one to an individual's count.

    Returns ``(new_count, organization_id)`` or ``None`` when no
    individual has that id.
    """
    row = session.execute(
        update(Account)
        .where(
            Account.id == individual_id,
            Account.kind == AccountKind.INDIVIDUAL.value,
        )
        .values(event_count=Account.event_count + 1)
        .returning(Account.event_count, Account.organization_id)
        .execution_options(synchronize_session=False)
    ).one_or_none()
    if row is None:
        return None
    return row.event_count, row.organization_id


def _increment_organization(session: Session, organization_id: str) -> int:
    """Add one to an organization's Tier 2 count; returns the new count."""
    return session.execute(
        update(Account)
        .where(Account.id == organization_id)
        .values(event_count=Account.event_count + 1)
        .returning(Account.event_count)
        .execution_options(synchronize_session=False)
    ).scalar_one()


def _claim_individual(session: Session, individual_id: str, organization_id: str) -> int | None:
    """Compare-and-swap the individual's organization link from NULL.

    Returns the individual's count at the moment of joining, or ``None``
    if another transaction linked them first (or consent was withdrawn).
    """
    return session.execute(
        update(Account)
        .where(
            Account.id == individual_id,
            Account.kind == AccountKind.INDIVIDUAL.value,
            Account.organization_id.is_(None),
            Account.consent_to_join_org.is_(True),
        )
        .values(organization_id=organization_id)
        .returning(Account.event_count)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()


def _fold_into_organization(session: Session, organization_id: str, historical: int) -> tuple[int, int]:
    """One new member plus their history; returns ``(event_count, member_count)``."""
    row = session.execute(
        update(Account)
        .where(Account.id == organization_id)
        .values(
            member_count=Account.member_count + 1,
            event_count=Account.event_count + historical,
        )
        .returning(Account.event_count, Account.member_count)
        .execution_options(synchronize_session=False)
    ).one()
    return row.event_count, row.member_count


# ---------------------------------------------------------------------------
# log_event
# ---------------------------------------------------------------------------
def _find_by_idempotency_key(session: Session, key: str) -> Joydrop | None:
    return session.scalar(select(Joydrop).where(Joydrop.idempotency_key == key))


class _IdempotencyKeyRaced(Exception):
    """Another transaction committed the same key first.

    Raised out of :func:`record_event` so the caller's whole transaction,
    our increments included, is rolled back by whoever owns it.
    """

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key


def _duplicate_result(existing: Joydrop, individual_id: str) -> EventResult:
    """Replay the result the original request returned."""
    if existing.actor_id != individual_id:
        raise IdempotencyConflict()
    return EventResult(
        event_id=existing.id,
        individual_id=existing.actor_id,
        individual_count=existing.actor_count or 0,
        organization_id=existing.organization_id,
        organization_updated=existing.organization_id is not None,
        duplicate=True,
    )


def record_event(
    session: Session,
    individual_id: str,
    *,
    url: str | None = None,
    comment: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    city: str | None = None,
    state_province: str | None = None,
    country: str | None = None,
    source: EventSource = EventSource.WEB,
    idempotency_key: str | None = None,
) -> EventResult:
    """Apply one joydrop inside an open transaction.

    The caller owns the commit; if anything after this call fails the
    whole unit rolls back, event row and counters together.  Losing an
    idempotency-key race raises ``_IdempotencyKeyRaced``; the caller must
    let its transaction roll back and look the key up again.
    """
    if idempotency_key:
        existing = _find_by_idempotency_key(session, idempotency_key)
        if existing is not None:
            return _duplicate_result(existing, individual_id)

    counts = _increment_individual(session, individual_id)
    if counts is None:
        raise AccountNotFound("Individual not found")
    individual_count, organization_id = counts

    event = Joydrop(
        actor_id=individual_id,
        organization_id=organization_id,
        source=source.value,
        idempotency_key=idempotency_key or None,
        actor_count=individual_count,
        url=url or None,
        comment=comment or None,
        latitude=latitude,
        longitude=longitude,
        city=city,
        state_province=state_province,
        country=country,
    )
    if idempotency_key:
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(event)
                session.flush()
        except IntegrityError:
            raise _IdempotencyKeyRaced(idempotency_key) from None
    else:
        session.add(event)
        session.flush()

    organization_updated = False
    if organization_id:
        _increment_organization(session, organization_id)
        organization_updated = True

    return EventResult(
        event_id=event.id,
        individual_id=individual_id,
        individual_count=individual_count,
        organization_id=organization_id,
        organization_updated=organization_updated,
    )


def log_event(
    engine: Engine,
    individual_id: str,
    *,
    url: str | None = None,
    comment: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    city: str | None = None,
    state_province: str | None = None,
    country: str | None = None,
    source: EventSource = EventSource.WEB,
    idempotency_key: str | None = None,
) -> EventResult:
    """Log a joydrop for *individual_id* (Tier 1, and Tier 2 when linked).

    Without an *idempotency_key* a retried call after an ambiguous
    failure may count twice.  With one, a repeat replays the original
    result (same event id and count) flagged ``duplicate=True`` and
    writes nothing.
    """
    if not individual_id:
        raise MissingField("individual_id")

    try:
        with get_session(engine) as session:
            result = record_event(
                session,
                individual_id,
                url=url,
                comment=comment,
                latitude=latitude,
                longitude=longitude,
                city=city,
                state_province=state_province,
                country=country,
                source=source,
                idempotency_key=idempotency_key,
            )
    except _IdempotencyKeyRaced:
        # Our increments were rolled back with the transaction
        with get_session(engine) as session:
            existing = _find_by_idempotency_key(session, idempotency_key)
            if existing is None:
                raise StorageError() from None
            result = _duplicate_result(existing, individual_id)

    if result.duplicate:
        logger.info("Duplicate joydrop ignored: key=%s individual=%s", idempotency_key, individual_id)
    else:
        logger.info(
            "Joydrop %s logged: individual=%s count=%d org=%s",
            result.event_id, individual_id, result.individual_count,
            result.organization_id or "-",
        )
    return result


# ---------------------------------------------------------------------------
# add_member
# ---------------------------------------------------------------------------
def add_member(
    engine: Engine,
    organization_id: str,
    *,
    individual_id: str | None = None,
    email: str | None = None,
) -> MembershipResult:
    """Link an individual (by id or email) to *organization_id*.

    Preconditions, checked before any write: the organization exists,
    the individual exists, has no organization yet, and consented to be
    added.  The CAS on ``organization_id IS NULL`` re-checks the link at
    write time, so of two concurrent calls exactly one succeeds and the
    other raises ``AlreadyMember``.

    The individual's count at the moment of joining is added to the
    organization's count once.  Earlier joydrops are not re-attributed
    and no synthetic joydrop rows are created.
    """
    if not individual_id and not email:
        raise MissingField("individual_email")
    normalized_email = normalize_email(email) if not individual_id else None

    with get_session(engine) as session:
        org = load_account(session, organization_id, AccountKind.ORGANIZATION)

        if individual_id:
            individual = load_account(session, individual_id, AccountKind.INDIVIDUAL)
        else:
            individual = find_individual_by_email(session, normalized_email)
            if individual is None:
                raise AccountNotFound("User not found")

        if individual.organization_id is not None:
            raise AlreadyMember()
        if not individual.consent_to_join_org:
            raise ConsentRequired()

        historical = _claim_individual(session, individual.id, org.id)
        if historical is None:
            raise AlreadyMember()

        joined_at = datetime.now(UTC)
        membership = Membership(
            organization_id=org.id,
            individual_id=individual.id,
            joined_at=joined_at,
        )
        session.add(membership)
        try:
            session.flush()
        except IntegrityError:
            raise AlreadyMember() from None

        org_count, member_count = _fold_into_organization(session, org.id, historical)

        result = MembershipResult(
            membership_id=membership.id,
            organization_id=org.id,
            individual_id=individual.id,
            added_historical_count=historical,
            organization_count=org_count,
            member_count=member_count,
            joined_at=joined_at,
        )

    logger.info(
        "Added %s to organization %s, folded %d joydrops (org total %d)",
        individual.slug, org.slug, historical, org_count,
    )
    return result


# ---------------------------------------------------------------------------
# Inbound ThankYouGrams
# ---------------------------------------------------------------------------
def register_thank_you_gram(
    engine: Engine,
    *,
    email: str,
    city: str | None = None,
    state_province: str | None = None,
    country: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    slug_retry_attempts: int = DEFAULT_SLUG_RETRY_ATTEMPTS,
) -> ThankYouGramResult:
    """Log a joydrop for the individual with *email*, registering them first
    if needed.

    New individuals get their email's local part as name and a slug
    derived from it (with numeric suffixes on collision).  Account
    creation and the joydrop commit together.
    """
    email = normalize_email(email)
    created = False

    with get_session(engine) as session:
        individual = find_individual_by_email(session, email)
        if individual is None:
            local_part = email.split("@")[0] or "friend"
            base = slugify(local_part, fallback_prefix="user")
            try:
                individual = add_individual(
                    session,
                    name=local_part,
                    email=email,
                    slugs=list(slug_candidates(base, slug_retry_attempts)),
                    city=city,
                    state_province=state_province,
                    country=country,
                )
                created = True
            except EmailTaken:
                # Registered concurrently, or the email belongs to an organization.
                individual = find_individual_by_email(session, email)
                if individual is None:
                    raise

        event = record_event(
            session,
            individual.id,
            latitude=latitude,
            longitude=longitude,
            city=city or individual.city,
            state_province=state_province or individual.state_province,
            country=country or individual.country,
            source=EventSource.THANK_YOU_GRAM,
        )
        result = ThankYouGramResult(
            email=email,
            individual_id=individual.id,
            slug=individual.slug,
            created_new_user=created,
            event=event,
        )

    logger.info(
        "ThankYouGram registered for %s (new user: %s, count=%d)",
        result.slug, created, event.individual_count,
    )
    return result
