"""Tests for the per-user usage ledger."""

import threading

import pytest

from geo_content_pipeline.auth import AuthRequired
from geo_content_pipeline.config import UNLIMITED_USAGE
from geo_content_pipeline.models import Identity
from geo_content_pipeline.usage_ledger import (
    QUOTA_MESSAGE,
    QuotaExceeded,
    UsageLedger,
    UsageRecordNotFound,
)


class TestGetOrCreate:
    """Tests for lazy usage record creation."""

    def test_creates_default_record(self, ledger: UsageLedger, alice: Identity):
        """First access creates an unprivileged record with the default cap."""
        record = ledger.get_or_create(alice)

        assert record.user_id == "user-alice"
        assert record.email == "alice@example.com"
        assert record.usage_count == 0
        assert record.max_usage == 10
        assert record.is_premium is False

    def test_admin_gets_unlimited_premium(self, ledger: UsageLedger, admin: Identity):
        record = ledger.get_or_create(admin)

        assert record.max_usage == UNLIMITED_USAGE
        assert record.is_premium is True

    def test_admin_email_case_insensitive(self, ledger: UsageLedger):
        record = ledger.get_or_create(Identity(user_id="u-x", email="ADMIN@Example.com"))
        assert record.is_premium is True

    def test_second_call_returns_existing(self, ledger: UsageLedger, alice: Identity):
        ledger.get_or_create(alice)
        ledger.check_and_reserve(alice)

        record = ledger.get_or_create(alice)
        assert record.usage_count == 1
        assert len(ledger.list_records()) == 1

    def test_requires_identity(self, ledger: UsageLedger):
        with pytest.raises(AuthRequired):
            ledger.get_or_create(None)


class TestCheckAndReserve:
    """Tests for the atomic reservation."""

    def test_increments_counter(self, ledger: UsageLedger, alice: Identity):
        record = ledger.check_and_reserve(alice)

        assert record.usage_count == 1
        assert record.last_used_at is not None

    def test_three_of_ten_becomes_four(self, ledger: UsageLedger, alice: Identity):
        ledger.get_or_create(alice)
        for _ in range(3):
            ledger.check_and_reserve(alice)

        record = ledger.check_and_reserve(alice)
        assert (record.usage_count, record.max_usage) == (4, 10)

    def test_exceeded_at_cap(self, ledger: UsageLedger, alice: Identity):
        """At 10/10 the reservation fails and the counter stays put."""
        for _ in range(10):
            ledger.check_and_reserve(alice)

        with pytest.raises(QuotaExceeded) as exc_info:
            ledger.check_and_reserve(alice)

        err = exc_info.value
        assert err.usage_count == 10
        assert err.max_usage == 10
        assert err.message == QUOTA_MESSAGE
        assert err.contact == "admin@example.com"
        assert ledger.get("user-alice").usage_count == 10

    def test_premium_ignores_cap(self, ledger: UsageLedger, alice: Identity):
        ledger.get_or_create(alice)
        ledger.set_limits("user-alice", max_usage=1, is_premium=True)

        for _ in range(3):
            record = ledger.check_and_reserve(alice)
        assert record.usage_count == 3

    def test_zero_cap_blocks_immediately(self, ledger: UsageLedger, alice: Identity):
        ledger.get_or_create(alice)
        ledger.set_limits("user-alice", max_usage=0, is_premium=False)

        with pytest.raises(QuotaExceeded):
            ledger.check_and_reserve(alice)

    def test_concurrent_reservations_never_exceed_cap(self, ledger: UsageLedger, alice: Identity):
        """Eight racing requests against a cap of five: exactly five win."""
        ledger.get_or_create(alice)
        ledger.set_limits("user-alice", max_usage=5, is_premium=False)

        successes = []
        failures = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                ledger.check_and_reserve(alice)
                successes.append(1)
            except QuotaExceeded:
                failures.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(successes) == 5
        assert len(failures) == 3
        assert ledger.get("user-alice").usage_count == 5

    def test_requires_identity(self, ledger: UsageLedger):
        with pytest.raises(AuthRequired):
            ledger.check_and_reserve(None)


class TestAdministration:
    """Tests for reset, limit edits and listing."""

    def test_reset_sets_zero(self, ledger: UsageLedger, alice: Identity):
        for _ in range(4):
            ledger.check_and_reserve(alice)

        record = ledger.reset("user-alice")
        assert record.usage_count == 0
        assert record.max_usage == 10

    def test_reset_unknown_user(self, ledger: UsageLedger):
        with pytest.raises(UsageRecordNotFound):
            ledger.reset("nobody")

    def test_set_limits(self, ledger: UsageLedger, alice: Identity):
        ledger.get_or_create(alice)

        record = ledger.set_limits("user-alice", max_usage=50, is_premium=True)
        assert record.max_usage == 50
        assert record.is_premium is True

    def test_set_limits_rejects_negative(self, ledger: UsageLedger, alice: Identity):
        ledger.get_or_create(alice)

        with pytest.raises(ValueError, match="max_usage"):
            ledger.set_limits("user-alice", max_usage=-1, is_premium=False)

    def test_list_records_newest_first(self, ledger: UsageLedger, alice: Identity, bob: Identity):
        ledger.get_or_create(alice)
        ledger.get_or_create(bob)

        assert [r.user_id for r in ledger.list_records()] == ["user-bob", "user-alice"]
