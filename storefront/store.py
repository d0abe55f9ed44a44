# storefront/store.py
# 🗄️ Хранилище заказов: sql, redis или memory; ошибки драйверов -> GatewayFailure
import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError, WatchError
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings
from .database import create_tables, make_engine, make_session_maker
from .errors import GatewayFailure
from .models import IndexEntry, KVEntry

logger = structlog.get_logger(__name__)


def redis_slice(items: Sequence[str], start: int, end: int) -> List[str]:
    """Apply ZRANGE's inclusive, negative-aware start/end to a list."""
    n = len(items)
    if start < 0:
        start = max(n + start, 0)
    if end < 0:
        end = n + end
    if start > end or start >= n:
        return []
    return list(items[start:end + 1])


class KeyValueStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def zadd(self, index_key: str, score: float, member: str) -> None:
        ...

    @abstractmethod
    async def zrange(self, index_key: str, start: int, end: int, reverse: bool = False) -> List[str]:
        ...

    @abstractmethod
    async def compare_and_set(self, key: str, expected: bytes, value: bytes) -> bool:
        """Write ``value`` only if the key currently holds ``expected``."""

    async def close(self) -> None:
        return None


@contextmanager
def _gateway_errors(backend: str, operation: str, key: str):
    try:
        yield
    except (SQLAlchemyError, RedisError, OSError) as e:
        logger.error("store_operation_failed", backend=backend, operation=operation, key=key, error=str(e))
        raise GatewayFailure(f"{backend} store {operation} failed for {key}: {e}") from e


# 🧠 In-memory store
class MemoryStore(KeyValueStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._values: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._indexes: Dict[str, Dict[str, float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[bytes]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._values[key]
            return None
        return value

    async def get(self, key: str) -> Optional[bytes]:
        return self._live(key)

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._values[key] = (value, expires_at)

    async def zadd(self, index_key: str, score: float, member: str) -> None:
        self._indexes.setdefault(index_key, {})[member] = score

    async def zrange(self, index_key: str, start: int, end: int, reverse: bool = False) -> List[str]:
        index = self._indexes.get(index_key, {})
        members = sorted(index, key=lambda m: (index[m], m), reverse=reverse)
        return redis_slice(members, start, end)

    async def compare_and_set(self, key: str, expected: bytes, value: bytes) -> bool:
        async with self._lock:
            if self._live(key) != expected:
                return False
            _, expires_at = self._values[key]
            self._values[key] = (value, expires_at)
            return True


# 🐘 SQLAlchemy store
class SqlStore(KeyValueStore):
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_maker = make_session_maker(engine)

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "SqlStore":
        return cls(make_engine(database_url, echo=echo))

    async def init(self) -> None:
        with _gateway_errors("sql", "init", "-"):
            await create_tables(self.engine)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def get(self, key: str) -> Optional[bytes]:
        with _gateway_errors("sql", "get", key):
            async with self.session_maker() as session:
                res = await session.execute(
                    select(KVEntry.value).where(
                        KVEntry.key == key,
                        or_(KVEntry.expires_at.is_(None), KVEntry.expires_at > self._now()),
                    )
                )
                return res.scalar_one_or_none()

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        expires_at = self._now() + timedelta(seconds=ttl) if ttl else None
        with _gateway_errors("sql", "set", key):
            async with self.session_maker() as session:
                await session.merge(KVEntry(key=key, value=value, expires_at=expires_at))
                await session.commit()

    async def zadd(self, index_key: str, score: float, member: str) -> None:
        with _gateway_errors("sql", "zadd", index_key):
            async with self.session_maker() as session:
                await session.merge(IndexEntry(index_key=index_key, member=member, score=score))
                await session.commit()

    async def zrange(self, index_key: str, start: int, end: int, reverse: bool = False) -> List[str]:
        if reverse:
            order_by = (IndexEntry.score.desc(), IndexEntry.member.desc())
        else:
            order_by = (IndexEntry.score, IndexEntry.member)
        stmt = select(IndexEntry.member).where(IndexEntry.index_key == index_key).order_by(*order_by)
        if start >= 0 and end >= 0:
            if start > end:
                return []
            stmt = stmt.offset(start).limit(end - start + 1)
        with _gateway_errors("sql", "zrange", index_key):
            async with self.session_maker() as session:
                res = await session.execute(stmt)
                members = list(res.scalars().all())
        if start >= 0 and end >= 0:
            return members
        return redis_slice(members, start, end)

    async def compare_and_set(self, key: str, expected: bytes, value: bytes) -> bool:
        with _gateway_errors("sql", "compare_and_set", key):
            async with self.session_maker() as session:
                res = await session.execute(
                    update(KVEntry)
                    .where(KVEntry.key == key, KVEntry.value == expected)
                    .values(value=value)
                )
                await session.commit()
                return res.rowcount == 1

    async def purge_expired(self) -> int:
        """Delete expired rows; Redis does this on its own, SQL needs a sweep."""
        with _gateway_errors("sql", "purge_expired", "-"):
            async with self.session_maker() as session:
                res = await session.execute(
                    delete(KVEntry).where(KVEntry.expires_at.is_not(None), KVEntry.expires_at <= self._now())
                )
                await session.commit()
                return res.rowcount or 0

    async def close(self) -> None:
        await self.engine.dispose()


# 🟥 Redis store
class RedisStore(KeyValueStore):
    def __init__(self, redis_client: aioredis.Redis):
        self.redis = redis_client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisStore":
        return cls(aioredis.from_url(redis_url, decode_responses=False))

    async def get(self, key: str) -> Optional[bytes]:
        with _gateway_errors("redis", "get", key):
            return await self.redis.get(key)

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        with _gateway_errors("redis", "set", key):
            await self.redis.set(key, value, ex=ttl)

    async def zadd(self, index_key: str, score: float, member: str) -> None:
        with _gateway_errors("redis", "zadd", index_key):
            await self.redis.zadd(index_key, {member: score})

    async def zrange(self, index_key: str, start: int, end: int, reverse: bool = False) -> List[str]:
        with _gateway_errors("redis", "zrange", index_key):
            members = await self.redis.zrange(index_key, start, end, desc=reverse)
        return [m.decode("utf-8") if isinstance(m, bytes) else m for m in members]

    async def compare_and_set(self, key: str, expected: bytes, value: bytes) -> bool:
        with _gateway_errors("redis", "compare_and_set", key):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = await pipe.get(key)
                    if current != expected:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    # KEEPTTL: orders carry no TTL, but don't drop one if present
                    pipe.set(key, value, keepttl=True)
                    await pipe.execute()
                    return True
                except WatchError:
                    return False

    async def close(self) -> None:
        await self.redis.aclose()


async def build_store(settings: Settings) -> KeyValueStore:
    if settings.store_backend == "memory":
        logger.warning("memory_store_in_use", note="orders are lost on restart")
        return MemoryStore()
    if settings.store_backend == "redis":
        return RedisStore.from_url(settings.redis_url)
    store = SqlStore.from_url(settings.database_url, echo=settings.database_echo)
    await store.init()
    purged = await store.purge_expired()
    if purged:
        logger.info("expired_entries_purged", count=purged)
    return store
