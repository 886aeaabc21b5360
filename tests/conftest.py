import sys
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from jobs.engine import LifecycleEngine  # noqa: E402
from jobs.queue import RedisWorkQueue  # noqa: E402
from jobs.retry import RetryPolicy  # noqa: E402
from jobs.store import JobStore  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def time(self) -> float:
        return self.now

    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now, tz=timezone.utc)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    """Buffers commands between ``multi`` and ``execute`` like a redis-py pipeline."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._queued: list[tuple[Callable[..., Any], tuple, dict]] = []
        self._buffering = True

    def __enter__(self) -> "FakePipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._queued.clear()

    def watch(self, *keys: str) -> None:
        self._buffering = False

    def multi(self) -> None:
        self._buffering = True

    def __getattr__(self, name: str) -> Callable[..., Any]:
        command = getattr(self._redis, name)
        if not self._buffering:
            return command

        def queue(*args: Any, **kwargs: Any) -> "FakePipeline":
            self._queued.append((command, args, kwargs))
            return self

        return queue

    def execute(self) -> list[Any]:
        with self._redis.lock:
            results = [command(*args, **kwargs) for command, args, kwargs in self._queued]
        self._queued.clear()
        return results


class FakeRedis:
    """In-memory stand-in for the Redis commands the work queue issues."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.sets: dict[str, set[str]] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.lock = threading.RLock()
        self.closed = False

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def transaction(
        self, func: Callable[[FakePipeline], Any], *watches: str, value_from_callable: bool = False
    ) -> Any:
        # Holding the lock for the whole callable stands in for WATCH.
        with self.lock:
            pipe = FakePipeline(self)
            pipe.watch(*watches)
            value = func(pipe)
            results = pipe.execute()
        return value if value_from_callable else results

    def rpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        items.extend(values)
        return len(items)

    def blmove(
        self, source: str, destination: str, timeout: float, src: str = "LEFT", dest: str = "RIGHT"
    ) -> bytes | None:
        with self.lock:
            items = self.lists.get(source)
            if not items:
                return None
            value = items.pop(0 if src == "LEFT" else -1)
            target = self.lists.setdefault(destination, [])
            if dest == "LEFT":
                target.insert(0, value)
            else:
                target.append(value)
            return value.encode()

    def lrem(self, key: str, count: int, value: str) -> int:
        items = self.lists.get(key, [])
        if value in items:
            items.remove(value)
            return 1
        return 0

    def lrange(self, key: str, start: int, end: int) -> list[bytes]:
        items = self.lists.get(key, [])
        stop = None if end == -1 else end + 1
        return [item.encode() for item in items[start:stop]]

    def zadd(self, key: str, mapping: dict[str, float], xx: bool = False) -> int:
        zset = self.zsets.setdefault(key, {})
        added = 0
        for member, score in mapping.items():
            if xx and member not in zset:
                continue
            if member not in zset:
                added += 1
            zset[member] = score
        return added

    def zrem(self, key: str, *members: str | bytes) -> int:
        zset = self.zsets.get(key, {})
        removed = 0
        for member in members:
            if isinstance(member, bytes):
                member = member.decode()
            if zset.pop(member, None) is not None:
                removed += 1
        return removed

    def zscore(self, key: str, member: str) -> float | None:
        return self.zsets.get(key, {}).get(member)

    def zrangebyscore(self, key: str, low: float, high: float) -> list[bytes]:
        zset = self.zsets.get(key, {})
        members = sorted(zset.items(), key=lambda item: item[1])
        return [member.encode() for member, score in members if low <= score <= high]

    def sadd(self, key: str, member: str) -> int:
        members = self.sets.setdefault(key, set())
        if member in members:
            return 0
        members.add(member)
        return 1

    def sismember(self, key: str, member: str) -> bool:
        return member in self.sets.get(key, set())

    def hsetnx(self, key: str, field: str, value: object) -> int:
        fields = self.hashes.setdefault(key, {})
        if field in fields:
            return 0
        fields[field] = str(value)
        return 1

    def hget(self, key: str, field: str) -> bytes | None:
        value = self.hashes.get(key, {}).get(field)
        return None if value is None else value.encode()

    def hkeys(self, key: str) -> list[bytes]:
        return [field.encode() for field in self.hashes.get(key, {})]

    def hdel(self, key: str, *fields: str) -> int:
        values = self.hashes.get(key, {})
        return sum(1 for field in fields if values.pop(field, None) is not None)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


def signed_url(key: str) -> str:
    return f"https://downloads.example.com/{key}?X-Amz-Signature=test"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def queue(fake_redis: FakeRedis, clock: FakeClock) -> RedisWorkQueue:
    return RedisWorkQueue(
        fake_redis, prefix="test:jobs", visibility_timeout=60, clock=clock.time
    )


@pytest.fixture
def store(tmp_path: Path) -> JobStore:
    return JobStore(f"sqlite:///{tmp_path / 'jobs.db'}")


@pytest.fixture
def engine(store: JobStore, queue: RedisWorkQueue, clock: FakeClock) -> LifecycleEngine:
    return LifecycleEngine(
        store,
        queue,
        signed_url,
        retry_policy=RetryPolicy(base_delay=2, max_delay=30, max_attempts=4),
        lease_seconds=60,
        max_files_per_job=5,
        clock=clock.datetime,
    )
