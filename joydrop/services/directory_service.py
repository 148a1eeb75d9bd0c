"""
joydrop.services.directory_service — Read-only Projections
===========================================================

Leaderboards, organization member lists, public profile stats and map
points.  Nothing here writes; calling any function twice against the
same state returns the same result.  The membership table is an audit
trail only; counts are always read from ``accounts``.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, func, select

from joydrop.constants import DEFAULT_LEADERBOARD_LIMIT, DEFAULT_MAP_POINT_LIMIT, MAX_LEADERBOARD_LIMIT
from joydrop.database.engine import get_session
from joydrop.database.models import Account, AccountKind, Joydrop, Membership
from joydrop.engine.tiers import calculate_contribution, tier_for_event
from joydrop.errors import AccountNotFound, InvalidInput
from joydrop.services.account_service import load_account

logger = logging.getLogger(__name__)


def _parse_kind(kind: str | AccountKind) -> AccountKind:
    try:
        return AccountKind(kind)
    except ValueError:
        raise InvalidInput(f"Unknown leaderboard kind: {kind!r}") from None


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------
def get_leaderboard(
    engine: Engine,
    kind: str | AccountKind = AccountKind.INDIVIDUAL,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
) -> list[dict]:
    """Top *limit* accounts of *kind* by count, ties broken by id."""
    account_kind = _parse_kind(kind)
    if int(limit) < 1:
        raise InvalidInput("Leaderboard limit must be at least 1")
    limit = min(int(limit), MAX_LEADERBOARD_LIMIT)

    with get_session(engine) as session:
        rows = session.scalars(
            select(Account)
            .where(Account.kind == account_kind.value)
            .order_by(Account.event_count.desc(), Account.id)
            .limit(limit)
        ).all()

        board = []
        for rank, account in enumerate(rows, start=1):
            entry = {
                "rank": rank,
                "id": account.id,
                "name": account.name,
                "slug": account.slug,
                "count": account.event_count,
                "location": account.location,
            }
            if account_kind is AccountKind.ORGANIZATION:
                entry["member_count"] = account.member_count
            board.append(entry)
    return board


# ---------------------------------------------------------------------------
# Organization members
# ---------------------------------------------------------------------------
def get_organization_members(engine: Engine, organization_id: str) -> dict:
    """Current members with their Tier 1 counts and the Tier 2 total."""
    with get_session(engine) as session:
        org = load_account(session, organization_id, AccountKind.ORGANIZATION)

        rows = session.execute(
            select(Account, Membership.joined_at)
            .outerjoin(Membership, Membership.individual_id == Account.id)
            .where(
                Account.organization_id == org.id,
                Account.kind == AccountKind.INDIVIDUAL.value,
            )
            .order_by(Account.event_count.desc(), Account.id)
        ).all()

        members = [
            {
                "id": member.id,
                "name": member.name,
                "slug": member.slug,
                "count": member.event_count,
                "city": member.city or "",
                "country": member.country or "",
                "joined_at": joined_at.isoformat() if joined_at else None,
                "contribution_pct": calculate_contribution(
                    member.event_count, org.event_count
                ),
            }
            for member, joined_at in rows
        ]

        return {
            "organization": {
                "id": org.id,
                "name": org.name,
                "slug": org.slug,
                "member_count": org.member_count,
            },
            "members": members,
            "organization_total": org.event_count,
        }


# ---------------------------------------------------------------------------
# Profile + global stats
# ---------------------------------------------------------------------------
def get_profile_stats(engine: Engine, slug: str) -> dict:
    """Public stats for the account behind *slug*."""
    with get_session(engine) as session:
        account = session.scalar(
            select(Account).where(Account.slug == (slug or "").strip().lower())
        )
        if account is None:
            raise AccountNotFound("User not found")

        stats = {
            "id": account.id,
            "name": account.name,
            "slug": account.slug,
            "kind": account.kind,
            "count": account.event_count,
            "location": account.location,
        }
        if account.is_organization:
            stats["member_count"] = account.member_count
        else:
            org = session.get(Account, account.organization_id) if account.organization_id else None
            stats["organization"] = (
                {"id": org.id, "name": org.name, "slug": org.slug} if org else None
            )
            stats["contribution_pct"] = (
                calculate_contribution(account.event_count, org.event_count) if org else 0
            )
        return stats


def get_global_stats(engine: Engine) -> dict:
    """Headline totals for the landing page."""
    with get_session(engine) as session:
        total_joydrops = session.scalar(select(func.count()).select_from(Joydrop)) or 0
        per_kind = dict(
            session.execute(
                select(Account.kind, func.count()).group_by(Account.kind)
            ).all()
        )

    individuals = per_kind.get(AccountKind.INDIVIDUAL.value, 0)
    organizations = per_kind.get(AccountKind.ORGANIZATION.value, 0)
    return {
        "total_joydrops": total_joydrops,
        "total_users": individuals + organizations,
        "total_individuals": individuals,
        "total_organizations": organizations,
    }


# ---------------------------------------------------------------------------
# Map
# ---------------------------------------------------------------------------
def get_map_points(engine: Engine, limit: int = DEFAULT_MAP_POINT_LIMIT) -> list[dict]:
    """Most recent joydrops that carry coordinates, tagged Tier 1 or Tier 2."""
    with get_session(engine) as session:
        rows = session.execute(
            select(Joydrop, Account.name)
            .join(Account, Account.id == Joydrop.actor_id)
            .where(Joydrop.latitude.isnot(None), Joydrop.longitude.isnot(None))
            .order_by(Joydrop.created_at.desc(), Joydrop.id)
            .limit(limit)
        ).all()

        org_ids = {drop.organization_id for drop, _ in rows if drop.organization_id}
        org_names = dict(
            session.execute(
                select(Account.id, Account.name).where(Account.id.in_(org_ids))
            ).all()
        ) if org_ids else {}

    points = [
        {
            "id": drop.id,
            "latitude": drop.latitude,
            "longitude": drop.longitude,
            "user_name": name,
            "organization_name": org_names.get(drop.organization_id),
            "tier": int(tier_for_event(drop.organization_id)),
        }
        for drop, name in rows
    ]
    logger.debug("Map: %d joydrops with coordinates", len(points))
    return points
