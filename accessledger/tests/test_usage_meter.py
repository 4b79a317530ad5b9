"""Tests for atomic usage metering under contention."""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from accessledger.core.errors import StorageConflictError
from accessledger.core.metrics import storage_retries_total
from accessledger.features.access.service import check_access
from accessledger.features.grants import service as grants
from accessledger.features.store import service as store
from accessledger.features.usage import service as usage
from accessledger.models.access import AccessState

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _consume_concurrently(n: int, now: datetime):
    barrier = threading.Barrier(n)

    def _check(_):
        barrier.wait()
        return check_access("u1", "p1", consuming=True, now=now)

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(_check, range(n)))


def test_sequential_consumes_count_down_then_exceed(ledger_db):
    grants.grant("u1", "p1", usage_limit=3, access_period_days=30, now=NOW)

    remaining = [check_access("u1", "p1", consuming=True, now=NOW).remaining_usage for _ in range(3)]
    fourth = check_access("u1", "p1", consuming=True, now=NOW)

    assert remaining == [2, 1, 0]
    assert fourth.state == AccessState.QUOTA_EXCEEDED
    assert fourth.remaining_usage == 0
    assert store.get("u1", "p1").usage_count == 3


def test_single_unit_under_ten_concurrent_consumers(ledger_db, fast_retries):
    grants.grant("u1", "p1", usage_limit=1, access_period_days=30, now=NOW)

    decisions = _consume_concurrently(10, NOW)

    states = [d.state for d in decisions]
    assert states.count(AccessState.ACTIVE) == 1
    assert states.count(AccessState.QUOTA_EXCEEDED) == 9
    assert store.get("u1", "p1").usage_count == 1


def test_partial_quota_under_contention(ledger_db, fast_retries):
    g = grants.grant("u1", "p1", usage_limit=5, access_period_days=30, now=NOW)
    for _ in range(3):
        usage.consume(g, NOW)

    decisions = _consume_concurrently(6, NOW)

    assert sum(1 for d in decisions if d.allowed) == 2
    final = store.get("u1", "p1")
    assert final.usage_count == final.usage_limit == 5


def test_usage_never_exceeds_limit(ledger_db, fast_retries):
    grants.grant("u1", "p1", usage_limit=4, access_period_days=30, now=NOW)

    _consume_concurrently(12, NOW)

    for g in store.list_for_user("u1"):
        assert 0 <= g.usage_count <= g.usage_limit


def test_consume_records_last_used_at(ledger_db):
    g = grants.grant("u1", "p1", usage_limit=2, access_period_days=30, now=NOW)
    used_at = NOW + timedelta(hours=3)

    result = usage.consume(g, used_at)

    assert result.allowed is True
    assert result.remaining_usage == 1
    assert result.grant.last_used_at == used_at


def test_consume_on_deleted_grant_is_refused(ledger_db):
    g = grants.grant("u1", "p1", usage_limit=2, access_period_days=30, now=NOW)
    grants.revoke("u1", "p1")

    result = usage.consume(g, NOW)

    assert result.allowed is False
    assert result.remaining_usage == 0
    assert result.grant is None


def test_conflicts_are_retried_then_succeed(ledger_db, fast_retries, monkeypatch):
    g = grants.grant("u1", "p1", usage_limit=2, access_period_days=30, now=NOW)
    real_increment = store.increment_if_available
    calls = {"n": 0}

    def flaky(user_id, product_id, now):
        calls["n"] += 1
        if calls["n"] < 3:
            raise StorageConflictError("increment: storage contention")
        return real_increment(user_id, product_id, now)

    monkeypatch.setattr(store, "increment_if_available", flaky)

    result = usage.consume(g, NOW)

    assert result.allowed is True
    assert calls["n"] == 3
    assert storage_retries_total.value({"operation": "consume"}) == 2


def test_exhausted_retries_raise_instead_of_denying(ledger_db, fast_retries, monkeypatch):
    g = grants.grant("u1", "p1", usage_limit=2, access_period_days=30, now=NOW)

    def always_locked(user_id, product_id, now):
        raise StorageConflictError("increment: storage contention")

    monkeypatch.setattr(store, "increment_if_available", always_locked)

    with pytest.raises(StorageConflictError):
        check_access("u1", "p1", consuming=True, now=NOW)
    assert store.get("u1", "p1").usage_count == 0


def test_consume_refused_once_window_elapsed(ledger_db):
    g = grants.grant("u1", "p1", usage_limit=5, access_period_days=1, now=NOW)

    result = usage.consume(g, NOW + timedelta(days=1))

    assert result.allowed is False
    assert result.remaining_usage == 5
    assert store.get("u1", "p1").usage_count == 0
