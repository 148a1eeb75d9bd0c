"""
joydrop.services.registry_service — Slug Registry
==================================================

Maps each human-readable handle to exactly one account.

An availability check is only advisory: two registrations can both see
a slug as free.  The authoritative check is the unique index on
``accounts.slug``, hit when the row is flushed inside a SAVEPOINT.  A
violation there is translated into the matching domain error, or — for
auto-generated slugs — into a retry with the next candidate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from joydrop.database.engine import get_session
from joydrop.database.models import Account, AccountKind
from joydrop.engine.slugs import normalize_slug, slug_problem
from joydrop.errors import (
    DuplicateName,
    EmailTaken,
    JoydropError,
    SlugTaken,
    StorageError,
)

logger = logging.getLogger(__name__)


def slug_exists(session: Session, slug: str) -> bool:
    return session.scalar(select(Account.id).where(Account.slug == slug)) is not None


def email_exists(session: Session, email: str) -> bool:
    return session.scalar(select(Account.id).where(Account.email == email)) is not None


def organization_name_exists(session: Session, name_key: str) -> bool:
    return session.scalar(
        select(Account.id).where(
            Account.kind == AccountKind.ORGANIZATION.value,
            Account.name_key == name_key,
        )
    ) is not None


def check_slug_available(engine: Engine, candidate: str) -> dict:
    """Report whether *candidate* could be registered right now.

    Returns ``{"slug", "available", "reason"}``.  Format is checked
    before uniqueness; ``reason`` is ``None`` when available.
    """
    slug = normalize_slug(candidate) if isinstance(candidate, str) else ""
    problem = slug_problem(slug)
    if problem:
        return {"slug": slug, "available": False, "reason": problem}

    with get_session(engine) as session:
        if slug_exists(session, slug):
            return {"slug": slug, "available": False, "reason": SlugTaken.message}
    return {"slug": slug, "available": True, "reason": None}


def identify_conflict(session: Session, account: Account) -> JoydropError:
    """Work out which unique constraint *account* collided with."""
    if slug_exists(session, account.slug):
        return SlugTaken()
    if email_exists(session, account.email):
        return EmailTaken()
    if account.name_key and organization_name_exists(session, account.name_key):
        return DuplicateName()
    return StorageError()


def insert_account(
    session: Session,
    build: Callable[[str], Account],
    slugs: Iterable[str],
) -> Account:
    """Insert the account produced by ``build(slug)`` for the first free slug.

    Each attempt runs in its own SAVEPOINT so a losing attempt leaves the
    outer transaction usable.  A slug collision moves on to the next
    candidate; any other collision (or running out of candidates) raises
    the matching conflict error.
    """
    candidates = list(slugs)
    for attempt, slug in enumerate(candidates, start=1):
        account = build(slug)
        try:
            with session.begin_nested():
                session.add(account)
                session.flush()
            return account
        except IntegrityError:
            conflict = identify_conflict(session, account)
            if isinstance(conflict, SlugTaken) and attempt < len(candidates):
                logger.debug("Slug %r taken, trying next candidate", slug)
                continue
            raise conflict from None
    raise SlugTaken()
