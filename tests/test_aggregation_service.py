"""
tests/test_aggregation_service.py — Tier 1 / Tier 2 Aggregation Tests
======================================================================
Service-level tests for log_event(), add_member() and
register_thank_you_gram(): the historical fold, atomic rollback,
idempotency and concurrent writers.

Uses SQLite via the shared conftest fixtures.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from joydrop.database.models import Account, EventSource, Joydrop, Membership
from joydrop.errors import (
    AccountNotFound,
    AlreadyMember,
    ConsentRequired,
    EmailTaken,
    IdempotencyConflict,
    InvalidEmail,
    MissingField,
)
from joydrop.services import account_service, aggregation_service


def _individual(engine, slug="alice", consent=True, **kwargs):
    return account_service.create_individual(
        engine,
        name=slug.title(),
        email=f"{slug}@example.com",
        slug=slug,
        consent_to_join_org=consent,
        **kwargs,
    )


def _org(engine, name="Acme"):
    return account_service.create_organization(
        engine, name=name, email=f"{name.lower()}@example.org",
    )


def _count(engine, account_id) -> int:
    with Session(engine) as s:
        return s.get(Account, account_id).event_count


def _member_count(engine, org_id) -> int:
    with Session(engine) as s:
        return s.get(Account, org_id).member_count


def _joydrops(engine, actor_id=None) -> int:
    stmt = select(func.count()).select_from(Joydrop)
    if actor_id:
        stmt = stmt.where(Joydrop.actor_id == actor_id)
    with Session(engine) as s:
        return s.scalar(stmt)


def _log(engine, individual_id, n=1, **kwargs):
    result = None
    for _ in range(n):
        result = aggregation_service.log_event(engine, individual_id, **kwargs)
    return result


# ===========================================================================
# log_event
# ===========================================================================
class TestLogEvent:
    def test_unlinked_individual(self, db_engine):
        alice = _individual(db_engine)
        result = aggregation_service.log_event(
            db_engine, alice.id, url="https://example.com/deed", comment="Helped a neighbour",
        )
        assert result.individual_count == 1
        assert result.organization_id is None
        assert result.organization_updated is False
        assert result.duplicate is False
        assert _joydrops(db_engine, alice.id) == 1

    def test_linked_individual_updates_both_tiers(self, db_engine):
        acme = _org(db_engine)
        alice = _individual(db_engine, organization_id=acme.id)
        result = _log(db_engine, alice.id, n=2)
        assert result.individual_count == 2
        assert result.organization_id == acme.id
        assert result.organization_updated is True
        assert _count(db_engine, acme.id) == 2

    def test_event_row_snapshots_organization(self, db_engine):
        acme = _org(db_engine)
        alice = _individual(db_engine, organization_id=acme.id)
        result = aggregation_service.log_event(
            db_engine, alice.id, latitude=42.36, longitude=-71.06, city="Boston",
        )
        with Session(db_engine) as s:
            event = s.get(Joydrop, result.event_id)
            assert event.organization_id == acme.id
            assert event.source == EventSource.WEB.value
            assert event.city == "Boston"

    def test_unknown_individual(self, db_engine):
        with pytest.raises(AccountNotFound):
            aggregation_service.log_event(db_engine, "ghost")
        assert _joydrops(db_engine) == 0

    def test_organization_cannot_log(self, db_engine):
        acme = _org(db_engine)
        with pytest.raises(AccountNotFound):
            aggregation_service.log_event(db_engine, acme.id)
        assert _count(db_engine, acme.id) == 0

    def test_missing_individual_id(self, db_engine):
        with pytest.raises(MissingField):
            aggregation_service.log_event(db_engine, "")

    def test_failure_before_org_increment_rolls_back_everything(self, db_engine):
        acme = _org(db_engine)
        alice = _individual(db_engine, organization_id=acme.id)
        _log(db_engine, alice.id)

        with patch.object(
            aggregation_service, "_increment_organization",
            side_effect=RuntimeError("boom"),
        ):
            with pytest.raises(RuntimeError):
                aggregation_service.log_event(db_engine, alice.id)

        assert _count(db_engine, alice.id) == 1
        assert _count(db_engine, acme.id) == 1
        assert _joydrops(db_engine, alice.id) == 1


class TestIdempotency:
    def test_repeat_key_counts_once(self, db_engine):
        alice = _individual(db_engine)
        first = aggregation_service.log_event(db_engine, alice.id, idempotency_key="req-1")
        second = aggregation_service.log_event(db_engine, alice.id, idempotency_key="req-1")
        assert second.duplicate is True
        assert second.event_id == first.event_id
        assert second.individual_count == 1
        assert _count(db_engine, alice.id) == 1
        assert _joydrops(db_engine) == 1

    def test_distinct_keys(self, db_engine):
        alice = _individual(db_engine)
        aggregation_service.log_event(db_engine, alice.id, idempotency_key="a")
        aggregation_service.log_event(db_engine, alice.id, idempotency_key="b")
        assert _count(db_engine, alice.id) == 2

    def test_key_reused_by_other_individual(self, db_engine):
        alice = _individual(db_engine)
        bob = _individual(db_engine, slug="bob")
        aggregation_service.log_event(db_engine, alice.id, idempotency_key="shared")
        with pytest.raises(IdempotencyConflict):
            aggregation_service.log_event(db_engine, bob.id, idempotency_key="shared")
        assert _count(db_engine, bob.id) == 0

    def test_repeat_replays_original_count(self, db_engine):
        alice = _individual(db_engine)
        first = aggregation_service.log_event(db_engine, alice.id, idempotency_key="req-1")
        _log(db_engine, alice.id, n=2)

        repeat = aggregation_service.log_event(db_engine, alice.id, idempotency_key="req-1")
        assert repeat.duplicate is True
        assert repeat.event_id == first.event_id
        assert repeat.individual_count == first.individual_count == 1
        assert _count(db_engine, alice.id) == 3

    def test_linked_repeat_reports_original_org_update(self, db_engine):
        acme = _org(db_engine)
        alice = _individual(db_engine, organization_id=acme.id)
        aggregation_service.log_event(db_engine, alice.id, idempotency_key="req-1")

        repeat = aggregation_service.log_event(db_engine, alice.id, idempotency_key="req-1")
        assert repeat.organization_id == acme.id
        assert repeat.organization_updated is True
        assert _count(db_engine, acme.id) == 1

    def test_lost_key_race_rolls_back_own_increment(self, db_engine):
        alice = _individual(db_engine)
        first = aggregation_service.log_event(db_engine, alice.id, idempotency_key="req-1")

        real_find = aggregation_service._find_by_idempotency_key
        lookups = []

        def miss_first_lookup(session, key):
            # The racing request commits between our lookup and our insert
            lookups.append(key)
            return None if len(lookups) == 1 else real_find(session, key)

        with patch.object(
            aggregation_service, "_find_by_idempotency_key", side_effect=miss_first_lookup,
        ):
            result = aggregation_service.log_event(
                db_engine, alice.id, idempotency_key="req-1",
            )

        assert len(lookups) == 2
        assert result.duplicate is True
        assert result.event_id == first.event_id
        assert result.individual_count == 1
        assert _count(db_engine, alice.id) == 1
        assert _joydrops(db_engine) == 1


# ===========================================================================
# add_member
# ===========================================================================
class TestAddMember:
    def test_folds_history_once(self, db_engine):
        acme = _org(db_engine)
        alice = _individual(db_engine)
        _log(db_engine, alice.id, n=3)

        result = aggregation_service.add_member(db_engine, acme.id, individual_id=alice.id)
        assert result.added_historical_count == 3
        assert result.organization_count == 3
        assert result.member_count == 1
        assert _count(db_engine, acme.id) == 3

        _log(db_engine, alice.id, n=2)
        assert _count(db_engine, alice.id) == 5
        assert _count(db_engine, acme.id) == 5

    def test_second_add_fails_and_counts_one_fold(self, db_engine):
        acme = _org(db_engine)
        other = _org(db_engine, name="Other")
        alice = _individual(db_engine)
        _log(db_engine, alice.id, n=3)

        aggregation_service.add_member(db_engine, acme.id, individual_id=alice.id)
        with pytest.raises(AlreadyMember):
            aggregation_service.add_member(db_engine, acme.id, individual_id=alice.id)
        with pytest.raises(AlreadyMember):
            aggregation_service.add_member(db_engine, other.id, individual_id=alice.id)

        assert _count(db_engine, acme.id) == 3
        assert _member_count(db_engine, acme.id) == 1
        assert _count(db_engine, other.id) == 0
        with Session(db_engine) as s:
            assert s.scalar(select(func.count()).select_from(Membership)) == 1

    def test_by_email(self, db_engine):
        acme = _org(db_engine)
        alice = _individual(db_engine)
        result = aggregation_service.add_member(db_engine, acme.id, email=" ALICE@example.com ")
        assert result.individual_id == alice.id
        assert result.added_historical_count == 0
        assert result.joined_at is not None

    def test_requires_consent(self, db_engine):
        acme = _org(db_engine)
        alice = _individual(db_engine, consent=False)
        _log(db_engine, alice.id)
        with pytest.raises(ConsentRequired):
            aggregation_service.add_member(db_engine, acme.id, individual_id=alice.id)
        assert _count(db_engine, acme.id) == 0
        assert _member_count(db_engine, acme.id) == 0

    def test_unknown_organization(self, db_engine):
        alice = _individual(db_engine)
        with pytest.raises(AccountNotFound) as exc_info:
            aggregation_service.add_member(db_engine, "ghost", individual_id=alice.id)
        assert exc_info.value.message == "Organization not found"

    def test_individual_id_cannot_be_organization(self, db_engine):
        acme = _org(db_engine)
        with pytest.raises(AccountNotFound):
            aggregation_service.add_member(db_engine, acme.id, individual_id=acme.id)

    def test_unknown_email(self, db_engine):
        acme = _org(db_engine)
        with pytest.raises(AccountNotFound) as exc_info:
            aggregation_service.add_member(db_engine, acme.id, email="nobody@example.com")
        assert exc_info.value.message == "User not found"

    def test_needs_id_or_email(self, db_engine):
        acme = _org(db_engine)
        with pytest.raises(MissingField):
            aggregation_service.add_member(db_engine, acme.id)
        with pytest.raises(InvalidEmail):
            aggregation_service.add_member(db_engine, acme.id, email="nope")

    def test_already_linked_at_registration(self, db_engine):
        acme = _org(db_engine)
        alice = _individual(db_engine, organization_id=acme.id)
        with pytest.raises(AlreadyMember):
            aggregation_service.add_member(db_engine, acme.id, individual_id=alice.id)
        assert _member_count(db_engine, acme.id) == 1


class TestScenario:
    def test_alice_and_acme(self, db_engine):
        alice = _individual(db_engine)
        assert _log(db_engine, alice.id, n=2).individual_count == 2

        acme = _org(db_engine)
        assert _count(db_engine, acme.id) == 0

        membership = aggregation_service.add_member(db_engine, acme.id, individual_id=alice.id)
        assert membership.organization_count == 2
        assert membership.member_count == 1

        result = aggregation_service.log_event(db_engine, alice.id)
        assert result.individual_count == 3
        assert _count(db_engine, acme.id) == 3


# ===========================================================================
# ThankYouGrams
# ===========================================================================
class TestThankYouGram:
    def test_creates_user_and_logs(self, db_engine):
        result = aggregation_service.register_thank_you_gram(
            db_engine, email="John.Doe@Example.com", city="Boston", country="US",
            latitude=42.36, longitude=-71.06,
        )
        assert result.created_new_user is True
        assert result.email == "john.doe@example.com"
        assert result.slug == "john-doe"
        assert result.event.individual_count == 1

        alice = account_service.get_by_slug(db_engine, "john-doe")
        assert alice.name == "john.doe"
        assert alice.consent_to_join_org is False
        with Session(db_engine) as s:
            event = s.get(Joydrop, result.event.event_id)
            assert event.source == EventSource.THANK_YOU_GRAM.value
            assert event.latitude == 42.36

    def test_existing_user(self, db_engine):
        alice = _individual(db_engine, city="Denver")
        _log(db_engine, alice.id)
        result = aggregation_service.register_thank_you_gram(db_engine, email="alice@example.com")
        assert result.created_new_user is False
        assert result.individual_id == alice.id
        assert result.event.individual_count == 2
        with Session(db_engine) as s:
            assert s.get(Joydrop, result.event.event_id).city == "Denver"

    def test_linked_user_updates_organization(self, db_engine):
        acme = _org(db_engine)
        alice = _individual(db_engine, organization_id=acme.id)
        result = aggregation_service.register_thank_you_gram(db_engine, email="alice@example.com")
        assert result.event.organization_updated is True
        assert _count(db_engine, alice.id) == 1
        assert _count(db_engine, acme.id) == 1

    def test_slug_collision_gets_suffix(self, db_engine):
        _individual(db_engine, slug="sam")
        result = aggregation_service.register_thank_you_gram(db_engine, email="sam@elsewhere.org")
        assert result.slug == "sam-1"

    def test_email_owned_by_organization(self, db_engine):
        _org(db_engine)
        with pytest.raises(EmailTaken):
            aggregation_service.register_thank_you_gram(db_engine, email="acme@example.org")
        assert _joydrops(db_engine) == 0

    def test_email_required(self, db_engine):
        with pytest.raises(MissingField):
            aggregation_service.register_thank_you_gram(db_engine, email="")


# ===========================================================================
# Concurrency (real threads, file-backed SQLite)
# ===========================================================================
class TestConcurrency:
    def test_parallel_events_lose_no_updates(self, threaded_engine):
        acme = _org(threaded_engine)
        alice = _individual(threaded_engine, organization_id=acme.id)
        bob = _individual(threaded_engine, slug="bob", organization_id=acme.id)

        ids = [alice.id, bob.id] * 20
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: aggregation_service.log_event(threaded_engine, i), ids))

        assert _count(threaded_engine, alice.id) == 20
        assert _count(threaded_engine, bob.id) == 20
        assert _count(threaded_engine, acme.id) == 40

    def test_racing_joins_only_one_wins(self, threaded_engine):
        orgs = [_org(threaded_engine, name=f"Org{i}") for i in range(4)]
        alice = _individual(threaded_engine)
        _log(threaded_engine, alice.id, n=3)

        def join(org):
            try:
                return aggregation_service.add_member(
                    threaded_engine, org.id, individual_id=alice.id,
                )
            except AlreadyMember:
                return None

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(join, orgs))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert sum(_count(threaded_engine, o.id) for o in orgs) == 3
        assert sum(_member_count(threaded_engine, o.id) for o in orgs) == 1

    def test_events_during_join_keep_sum(self, threaded_engine):
        acme = _org(threaded_engine)
        alice = _individual(threaded_engine)
        _log(threaded_engine, alice.id, n=2)

        def work(i):
            if i == 5:
                return aggregation_service.add_member(
                    threaded_engine, acme.id, individual_id=alice.id,
                )
            return aggregation_service.log_event(threaded_engine, alice.id)

        with ThreadPoolExecutor(max_workers=6) as pool:
            list(pool.map(work, range(12)))

        # Every event lands either in the fold or as a direct increment
        assert _count(threaded_engine, alice.id) == 13
        assert _count(threaded_engine, acme.id) == 13
