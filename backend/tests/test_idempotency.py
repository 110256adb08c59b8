"""Tests for canonical hashing and the idempotency guard."""

from datetime import timedelta

import pytest
from sqlalchemy import insert

from tokengate.database import utcnow
from tokengate.models import IdempotencyRecord
from tokengate.services.canonical import canonical_json, sha256_hex
from tokengate.services.idempotency import IdempotencyGuard, generate_idempotency_key


class TestCanonical:
    def test_key_order_does_not_matter(self):
        assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'

    def test_list_order_matters(self):
        assert sha256_hex({"x": [1, 2]}) != sha256_hex({"x": [2, 1]})

    def test_digest_is_64_hex(self):
        digest = sha256_hex({"a": 1})
        assert len(digest) == 64
        int(digest, 16)


class TestKeys:
    def test_same_payload_same_key(self):
        assert generate_idempotency_key("op", {"a": 1, "b": 2}) == generate_idempotency_key("op", {"b": 2, "a": 1})

    def test_operation_is_part_of_key(self):
        assert generate_idempotency_key("op-a", {"a": 1}) != generate_idempotency_key("op-b", {"a": 1})

    def test_payload_is_part_of_key(self):
        assert generate_idempotency_key("op", {"a": 1}) != generate_idempotency_key("op", {"a": 2})


@pytest.mark.asyncio
class TestGuard:
    async def test_operation_runs_once(self, db_session):
        calls = []

        async def operation():
            calls.append(1)
            return {"id": len(calls)}

        guard = IdempotencyGuard(db_session)
        key = generate_idempotency_key("create", {"x": 1})
        first = await guard.check(key, operation, operation_name="create")
        second = await guard.check(key, operation, operation_name="create")

        assert calls == [1]
        assert first.is_duplicate is False
        assert second.is_duplicate is True
        assert first.result == second.result == {"id": 1}

    async def test_expired_record_runs_again(self, db_session):
        calls = []

        async def operation():
            calls.append(1)
            return len(calls)

        guard = IdempotencyGuard(db_session, ttl_hours=0)
        key = generate_idempotency_key("create", {"x": 1})
        await guard.check(key, operation)
        again = await guard.check(key, operation)

        assert calls == [1, 1]
        assert again.is_duplicate is False
        assert again.result == 2

    async def test_failed_operation_is_not_recorded(self, db_session):
        guard = IdempotencyGuard(db_session)
        key = generate_idempotency_key("create", {"x": 1})

        async def failing():
            raise RuntimeError("boom")

        async def succeeding():
            return "ok"

        with pytest.raises(RuntimeError):
            await guard.check(key, failing)
        outcome = await guard.check(key, succeeding)
        assert outcome.is_duplicate is False
        assert outcome.result == "ok"

    async def test_cleanup_expired(self, db_session):
        async def operation():
            return None

        await IdempotencyGuard(db_session, ttl_hours=0).check("a" * 64, operation)
        await IdempotencyGuard(db_session, ttl_hours=24).check("b" * 64, operation)

        guard = IdempotencyGuard(db_session)
        assert await guard.cleanup_expired() == 1
        assert await guard.cleanup_expired() == 0

    async def test_concurrent_record_wins(self, db_session, monkeypatch):
        guard = IdempotencyGuard(db_session)
        key = generate_idempotency_key("create", {"x": 1})
        lookup = guard.lookup
        calls = []

        async def lookup_then_lose_race(k):
            record = await lookup(k)
            # Another worker stores the same key before this one writes
            now = utcnow()
            await db_session.execute(insert(IdempotencyRecord).values(
                key=k, operation="create", result={"id": "theirs"},
                created_at=now, expires_at=now + timedelta(hours=1),
            ))
            return record

        async def operation():
            calls.append(1)
            return {"id": "ours"}

        monkeypatch.setattr(guard, "lookup", lookup_then_lose_race)
        outcome = await guard.check(key, operation, operation_name="create")

        assert calls == [1]
        assert outcome.is_duplicate is True
        assert outcome.result == {"id": "theirs"}

    async def test_forget_allows_rerun(self, db_session):
        calls = []

        async def operation():
            calls.append(1)
            return len(calls)

        guard = IdempotencyGuard(db_session)
        key = generate_idempotency_key("create", {"x": 1})
        await guard.check(key, operation)
        await guard.forget(key)
        again = await guard.check(key, operation)

        assert again.is_duplicate is False
        assert again.result == 2
        assert (await guard.lookup(key)).result == 2
