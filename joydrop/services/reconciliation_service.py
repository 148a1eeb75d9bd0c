"""
joydrop.services.reconciliation_service — Tier Count Reconciliation
====================================================================

Validates the denormalized counters on ``accounts`` against raw rows
and corrects drift if found.

How it works:
    0. Every account row is locked (``SELECT … FOR UPDATE``), individuals
       then organizations, the order ``log_event`` takes them in.  A
       writer that already holds a lock commits first; later writers
       wait until the report is committed.
    1. Individuals: ``event_count`` must equal ``COUNT(*)`` of their
       joydrops.
    2. Organizations: ``member_count`` must equal the number of
       individuals linked to them.
    3. Organizations: ``event_count`` must equal the sum of their
       members' ``event_count`` — history folded at join time plus
       everything logged since.
    4. Mismatches are logged and, unless ``fix=False``, overwritten with
       the recomputed value in one transaction.

Individuals are corrected before organizations so step 3 sums the
corrected member counts.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, Select, func, select, update
from sqlalchemy.orm import Session

from joydrop.database.engine import get_session
from joydrop.database.models import Account, AccountKind, Joydrop

logger = logging.getLogger(__name__)


def accounts_for_update(kind: AccountKind) -> Select:
    """Rows of *kind* in primary-key order, locked until commit."""
    return (
        select(Account)
        .where(Account.kind == kind.value)
        .order_by(Account.id)
        .with_for_update()
    )


def _lock_accounts(session: Session, kind: AccountKind) -> list[Account]:
    return list(session.scalars(accounts_for_update(kind)).all())


def _correction(account: Account, field: str, stored: int, actual: int) -> dict:
    return {
        "account_id": account.id,
        "slug": account.slug,
        "field": field,
        "stored": stored,
        "actual": actual,
        "diff": actual - stored,
    }


def reconcile_counts(engine: Engine, *, fix: bool = True) -> dict:
    """Check every account's counters and optionally fix drift.

    Returns ``{"checked": N, "corrected": M, "corrections": [...],
    "fixed": bool, "timestamp": ...}``.
    """
    corrections: list[dict] = []
    checked = 0

    with get_session(engine) as session:
        individuals = _lock_accounts(session, AccountKind.INDIVIDUAL)
        organizations = _lock_accounts(session, AccountKind.ORGANIZATION)

        # Ground truth: joydrops per actor, read after the locks are held
        event_totals: dict[str, int] = dict(
            session.execute(
                select(Joydrop.actor_id, func.count()).group_by(Joydrop.actor_id)
            ).all()
        )

        true_individual_counts: dict[str, int] = {}
        for individual in individuals:
            checked += 1
            actual = event_totals.get(individual.id, 0)
            true_individual_counts[individual.id] = actual
            if individual.event_count != actual:
                corrections.append(
                    _correction(individual, "event_count", individual.event_count, actual)
                )
                if fix:
                    session.execute(
                        update(Account)
                        .where(Account.id == individual.id)
                        .values(event_count=actual)
                        .execution_options(synchronize_session=False)
                    )

        members_by_org: dict[str, list[str]] = {}
        for individual in individuals:
            if individual.organization_id:
                members_by_org.setdefault(individual.organization_id, []).append(individual.id)

        for org in organizations:
            checked += 1
            member_ids = members_by_org.get(org.id, [])
            actual_members = len(member_ids)
            actual_total = sum(true_individual_counts[m] for m in member_ids)

            values: dict[str, int] = {}
            if org.member_count != actual_members:
                corrections.append(
                    _correction(org, "member_count", org.member_count, actual_members)
                )
                values["member_count"] = actual_members
            if org.event_count != actual_total:
                corrections.append(
                    _correction(org, "event_count", org.event_count, actual_total)
                )
                values["event_count"] = actual_total

            if fix and values:
                session.execute(
                    update(Account)
                    .where(Account.id == org.id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )

    if corrections:
        logger.warning(
            "Count reconciliation: %d drifted counters across %d accounts%s: %s",
            len(corrections), checked, "" if fix else " (dry run)", corrections,
        )
    else:
        logger.info("Count reconciliation: all %d accounts match", checked)

    return {
        "checked": checked,
        "corrected": len(corrections) if fix else 0,
        "corrections": corrections,
        "fixed": fix,
        "timestamp": datetime.now(UTC).isoformat(),
    }
