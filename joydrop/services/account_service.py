"""
joydrop.services.account_service — Account Store
=================================================

Registration and lookup for the two account kinds.

Both registration paths validate every field before the first write,
then insert the account through the slug registry so slug, email and
organization-name uniqueness are re-verified atomically with the write.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from joydrop.constants import (
    DEFAULT_SLUG_RETRY_ATTEMPTS,
    EMAIL_PATTERN,
    INDIVIDUAL_PROFILE_FIELDS,
    ORGANIZATION_PROFILE_FIELDS,
)
from joydrop.database.engine import get_session
from joydrop.database.models import Account, AccountKind, Membership
from joydrop.engine.slugs import slug_candidates, slugify, validate_slug
from joydrop.errors import (
    AccountNotFound,
    DuplicateName,
    EmailTaken,
    InvalidEmail,
    MissingField,
    SlugTaken,
)
from joydrop.services.registry_service import (
    email_exists,
    insert_account,
    organization_name_exists,
    slug_exists,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def normalize_email(email: str | None) -> str:
    """Lowercase and validate an email address."""
    if not email or not str(email).strip():
        raise MissingField("email")
    normalized = str(email).strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise InvalidEmail()
    return normalized


def _require(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise MissingField(field)
    return str(value).strip()


def _profile(fields: tuple[str, ...], values: dict[str, Any]) -> dict[str, Any]:
    """Keep the known optional profile fields that were actually supplied."""
    return {k: values[k] for k in fields if values.get(k) not in (None, "")}


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def load_account(session: Session, account_id: str, kind: AccountKind | None = None) -> Account:
    """Fetch an account inside an existing session or raise ``AccountNotFound``."""
    account = session.get(Account, account_id) if account_id else None
    if account is None or (kind is not None and account.kind != kind.value):
        label = kind.value.capitalize() if kind else "Account"
        raise AccountNotFound(f"{label} not found")
    return account


def get_by_id(engine: Engine, account_id: str) -> Account:
    with get_session(engine) as session:
        return load_account(session, account_id)


def get_by_slug(engine: Engine, slug: str) -> Account:
    with get_session(engine) as session:
        account = session.scalar(
            select(Account).where(Account.slug == (slug or "").strip().lower())
        )
        if account is None:
            raise AccountNotFound()
        return account


def find_individual_by_email(session: Session, email: str) -> Account | None:
    return session.scalar(
        select(Account).where(
            Account.email == email,
            Account.kind == AccountKind.INDIVIDUAL.value,
        )
    )


def get_by_email(engine: Engine, email: str) -> Account:
    normalized = normalize_email(email)
    with get_session(engine) as session:
        account = session.scalar(select(Account).where(Account.email == normalized))
        if account is None:
            raise AccountNotFound()
        return account


def list_organizations(engine: Engine) -> list[dict]:
    """Organizations for the registration picker, ordered by name."""
    with get_session(engine) as session:
        rows = session.execute(
            select(Account.id, Account.name, Account.slug)
            .where(Account.kind == AccountKind.ORGANIZATION.value)
            .order_by(Account.name_key, Account.id)
        ).all()
    return [{"id": r.id, "name": r.name, "slug": r.slug} for r in rows]


# ---------------------------------------------------------------------------
# Individuals
# ---------------------------------------------------------------------------
def add_individual(
    session: Session,
    *,
    name: str,
    email: str,
    slugs: list[str],
    consent_to_join_org: bool = False,
    city: str | None = None,
    state_province: str | None = None,
    country: str | None = None,
    profile: dict[str, Any] | None = None,
) -> Account:
    """Insert an unlinked individual with a zero count in *session*."""
    return insert_account(
        session,
        lambda slug: Account(
            kind=AccountKind.INDIVIDUAL.value,
            slug=slug,
            email=email,
            name=name,
            event_count=0,
            consent_to_join_org=bool(consent_to_join_org),
            city=city,
            state_province=state_province,
            country=country,
            profile=profile or None,
        ),
        slugs,
    )


def create_individual(
    engine: Engine,
    *,
    name: str,
    email: str,
    slug: str,
    organization_id: str | None = None,
    consent_to_join_org: bool = False,
    city: str | None = None,
    state_province: str | None = None,
    country: str | None = None,
    **profile_fields: Any,
) -> Account:
    """Register an individual with ``event_count = 0``.

    When *organization_id* names an existing organization the individual
    is created already linked: a Membership row is written and the
    organization's ``member_count`` goes up by one.  Nothing is folded
    because a brand-new account has no history.  An unknown
    *organization_id* is logged and the individual is registered
    without an organization.

    Raises ``MissingField``/``InvalidEmail``/``InvalidSlug`` before any
    write, and ``SlugTaken``/``EmailTaken`` if the handle or email is
    already registered (including by a concurrent registration).
    """
    name = _require(name, "name")
    email = normalize_email(email)
    slug = validate_slug(_require(slug, "slug"))

    with get_session(engine) as session:
        # Fail fast; the unique indexes re-check at flush time.
        if slug_exists(session, slug):
            raise SlugTaken()
        if email_exists(session, email):
            raise EmailTaken()

        org = None
        if organization_id:
            org = session.get(Account, organization_id)
            if org is None or not org.is_organization:
                logger.warning(
                    "Organization %s not found, registering %s without org",
                    organization_id, slug,
                )
                org = None

        individual = add_individual(
            session,
            name=name,
            email=email,
            slugs=[slug],
            consent_to_join_org=consent_to_join_org,
            city=city,
            state_province=state_province,
            country=country,
            profile=_profile(INDIVIDUAL_PROFILE_FIELDS, profile_fields),
        )

        if org is not None:
            individual.organization_id = org.id
            session.add(Membership(organization_id=org.id, individual_id=individual.id))
            session.execute(
                update(Account)
                .where(Account.id == org.id)
                .values(member_count=Account.member_count + 1)
            )
            session.flush()

    logger.info(
        "Registered individual %s (%s)%s",
        individual.slug, individual.id,
        f" in organization {org.slug}" if org is not None else "",
    )
    return individual


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------
def create_organization(
    engine: Engine,
    *,
    name: str,
    email: str,
    slug: str | None = None,
    city: str | None = None,
    state_province: str | None = None,
    country: str | None = None,
    slug_retry_attempts: int = DEFAULT_SLUG_RETRY_ATTEMPTS,
    **profile_fields: Any,
) -> Account:
    """Register an organization with zero ``event_count`` and ``member_count``.

    The name is trimmed and must be unique among organizations,
    case-insensitively.  An explicit *slug* must be free; when omitted, a
    slug is generated from the name and retried with numeric suffixes
    until a free one is found.
    """
    name = _require(name, "name")
    email = normalize_email(email)
    name_key = name.lower()

    if slug:
        slugs = [validate_slug(slug)]
    else:
        base = slugify(name, fallback_prefix="org")
        slugs = list(slug_candidates(base, slug_retry_attempts))

    with get_session(engine) as session:
        if len(slugs) == 1 and slug_exists(session, slugs[0]):
            raise SlugTaken()
        if organization_name_exists(session, name_key):
            raise DuplicateName()
        if email_exists(session, email):
            raise EmailTaken()

        org = insert_account(
            session,
            lambda candidate: Account(
                kind=AccountKind.ORGANIZATION.value,
                slug=candidate,
                email=email,
                name=name,
                name_key=name_key,
                event_count=0,
                member_count=0,
                city=city,
                state_province=state_province,
                country=country,
                profile=_profile(ORGANIZATION_PROFILE_FIELDS, profile_fields) or None,
            ),
            slugs,
        )

    logger.info("Registered organization %s (%s)", org.slug, org.id)
    return org
