"""
Idempotency Guard

At-most-once execution of keyed operations. The key is a SHA-256 over the
canonical JSON of (operation name, payload), so logically identical
requests collide regardless of key order and distinct ones never do.
Stored results live for a fixed TTL; expired records are discarded on
lookup and swept by ``cleanup_expired``.
"""

import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.config import settings
from tokengate.database import utcnow
from tokengate.models import IdempotencyRecord
from tokengate.services.canonical import canonical_json, sha256_hex

logger = logging.getLogger(__name__)


def generate_idempotency_key(operation: str, data: Any) -> str:
    """Deterministic 64-hex key for an operation and its normalized payload."""
    return sha256_hex({"operation": operation, "data": data})


@dataclass
class IdempotencyResult:
    is_duplicate: bool
    result: Any
    key: str


class IdempotencyGuard:
    def __init__(self, session: AsyncSession, ttl_hours: int | None = None):
        self.session = session
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.idempotency_ttl_hours)

    async def check(
        self,
        key: str,
        operation: Callable[[], Awaitable[Any]],
        operation_name: str | None = None,
    ) -> IdempotencyResult:
        """
        Return the stored result for ``key`` or run ``operation`` once.

        ``operation`` must return a JSON-serializable value; it is
        normalized through canonical JSON before being stored so the fresh
        result and any later duplicate read are identical. The operation
        and the key record share a savepoint: when another observer stores
        the same key first, everything the operation wrote is rolled back
        and the winner's result is returned as a duplicate.
        """
        existing = await self.lookup(key)
        now = utcnow()
        if existing is not None:
            if existing.expires_at > now:
                logger.debug("Idempotent replay for %s (%s)", key[:12], existing.operation)
                return IdempotencyResult(is_duplicate=True, result=existing.result, key=key)
            await self.forget(key)

        try:
            async with self.session.begin_nested():
                stored = _normalize(await operation())
                self.session.add(IdempotencyRecord(
                    key=key,
                    operation=operation_name,
                    result=stored,
                    created_at=now,
                    expires_at=now + self.ttl,
                ))
                await self.session.flush()
        except IntegrityError:
            winner = await self.session.get(IdempotencyRecord, key, populate_existing=True)
            if winner is None:
                raise
            logger.info("Key %s (%s) was recorded concurrently; using stored result", key[:12], operation_name)
            return IdempotencyResult(is_duplicate=True, result=winner.result, key=key)

        return IdempotencyResult(is_duplicate=False, result=stored, key=key)

    async def lookup(self, key: str) -> IdempotencyRecord | None:
        return await self.session.get(IdempotencyRecord, key)

    async def forget(self, key: str) -> None:
        """Drop a stored result so the next check runs the operation again."""
        record = await self.lookup(key)
        if record is not None:
            await self.session.delete(record)
            await self.session.flush()

    async def cleanup_expired(self) -> int:
        """Delete expired records. Safe to run repeatedly."""
        result = await self.session.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= utcnow())
        )
        await self.session.flush()
        count = result.rowcount or 0
        if count:
            logger.info("Removed %d expired idempotency records", count)
        return count


def _normalize(value: Any) -> Any:
    return json.loads(canonical_json(value))
