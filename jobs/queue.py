"""Work queue contract and its Redis implementation."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import redis
from redis.client import Pipeline

from .schemas import DeadLetterEntry

LOGGER = logging.getLogger("downloads.queue")


@dataclass(frozen=True)
class Delivery:
    job_id: str
    ack_token: str


class WorkQueue(Protocol):
    def enqueue(self, job_id: str, delay: float = 0) -> None: ...

    def dequeue(self, timeout: int) -> Delivery | None: ...

    def ack(self, ack_token: str) -> bool: ...

    def nack(self, ack_token: str, requeue_delay: float = 0) -> bool: ...

    def extend(self, ack_token: str, seconds: float) -> bool: ...

    def dead_letter(self, job_id: str, reason: str) -> bool: ...

    def dead_letters(self, limit: int = 100) -> list[DeadLetterEntry]: ...


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


def _job_id_from_token(ack_token: str) -> str:
    _, _, job_id = ack_token.partition(":")
    return job_id


class RedisWorkQueue:
    """Redis-backed queue with delayed delivery and a visibility timeout.

    Keys under ``prefix``:

    * ``:ready`` list of job ids ready for delivery
    * ``:processing`` list of ids popped but not yet registered in flight
    * ``:processing:seen`` hash of when a sweep first saw each processing id
    * ``:delayed`` sorted set of job ids scored by due time
    * ``:inflight`` sorted set of ack tokens scored by visibility deadline
    * ``:dead`` list of dead-letter records, ``:dead:ids`` their membership set

    Every move between keys runs inside one MULTI/EXEC, guarded by WATCH where
    the move depends on what was read first, so a crash never drops an id.
    """

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "downloads:jobs",
        visibility_timeout: float = 180.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._visibility_timeout = visibility_timeout
        self._clock = clock

    @property
    def ready_key(self) -> str:
        return f"{self._prefix}:ready"

    @property
    def processing_key(self) -> str:
        return f"{self._prefix}:processing"

    @property
    def processing_seen_key(self) -> str:
        return f"{self._prefix}:processing:seen"

    @property
    def delayed_key(self) -> str:
        return f"{self._prefix}:delayed"

    @property
    def inflight_key(self) -> str:
        return f"{self._prefix}:inflight"

    @property
    def dead_key(self) -> str:
        return f"{self._prefix}:dead"

    @property
    def dead_ids_key(self) -> str:
        return f"{self.dead_key}:ids"

    def _push(self, target: redis.Redis | Pipeline, job_id: str, delay: float) -> None:
        if delay > 0:
            target.zadd(self.delayed_key, {job_id: self._clock() + delay})
        else:
            target.rpush(self.ready_key, job_id)

    def enqueue(self, job_id: str, delay: float = 0) -> None:
        self._push(self._client, job_id, delay)

    def _promote_due(self) -> None:
        now = self._clock()

        def promote(pipe: Pipeline) -> None:
            due = [_decode(m) for m in pipe.zrangebyscore(self.delayed_key, 0, now)]
            expired = [_decode(m) for m in pipe.zrangebyscore(self.inflight_key, 0, now)]
            pipe.multi()
            if due:
                pipe.zrem(self.delayed_key, *due)
                pipe.rpush(self.ready_key, *due)
            if expired:
                pipe.zrem(self.inflight_key, *expired)
                pipe.rpush(self.ready_key, *[_job_id_from_token(t) for t in expired])

        self._client.transaction(promote, self.delayed_key, self.inflight_key)
        self._recover_stranded(now)

    def _recover_stranded(self, now: float) -> None:
        """Requeue ids left in ``:processing`` by a consumer that died mid-dequeue."""

        pending = {_decode(m) for m in self._client.lrange(self.processing_key, 0, -1)}
        forgotten = [
            _decode(key)
            for key in self._client.hkeys(self.processing_seen_key)
            if _decode(key) not in pending
        ]
        if forgotten:
            self._client.hdel(self.processing_seen_key, *forgotten)

        for job_id in pending:
            self._client.hsetnx(self.processing_seen_key, job_id, now)
            seen_at = self._client.hget(self.processing_seen_key, job_id)
            if seen_at is None or now - float(_decode(seen_at)) < self._visibility_timeout:
                continue

            def requeue(pipe: Pipeline, job_id: str = job_id) -> None:
                still_pending = job_id in {
                    _decode(m) for m in pipe.lrange(self.processing_key, 0, -1)
                }
                pipe.multi()
                if still_pending:
                    pipe.lrem(self.processing_key, 1, job_id)
                    pipe.rpush(self.ready_key, job_id)
                pipe.hdel(self.processing_seen_key, job_id)

            self._client.transaction(requeue, self.processing_key)
            LOGGER.warning("stranded delivery requeued", extra={"job_id": job_id})

    def dequeue(self, timeout: int) -> Delivery | None:
        self._promote_due()
        payload = self._client.blmove(
            self.ready_key, self.processing_key, timeout, "LEFT", "RIGHT"
        )
        if payload is None:
            return None
        job_id = _decode(payload)
        ack_token = f"{uuid.uuid4().hex}:{job_id}"
        with self._client.pipeline(transaction=True) as pipe:
            pipe.zadd(
                self.inflight_key, {ack_token: self._clock() + self._visibility_timeout}
            )
            pipe.lrem(self.processing_key, 1, job_id)
            pipe.hdel(self.processing_seen_key, job_id)
            pipe.execute()
        return Delivery(job_id=job_id, ack_token=ack_token)

    def ack(self, ack_token: str) -> bool:
        return bool(self._client.zrem(self.inflight_key, ack_token))

    def nack(self, ack_token: str, requeue_delay: float = 0) -> bool:
        def requeue(pipe: Pipeline) -> bool:
            if pipe.zscore(self.inflight_key, ack_token) is None:
                return False
            pipe.multi()
            pipe.zrem(self.inflight_key, ack_token)
            self._push(pipe, _job_id_from_token(ack_token), requeue_delay)
            return True

        return self._client.transaction(
            requeue, self.inflight_key, value_from_callable=True
        )

    def extend(self, ack_token: str, seconds: float) -> bool:
        def renew(pipe: Pipeline) -> bool:
            if pipe.zscore(self.inflight_key, ack_token) is None:
                return False
            pipe.multi()
            pipe.zadd(self.inflight_key, {ack_token: self._clock() + seconds}, xx=True)
            return True

        return self._client.transaction(renew, self.inflight_key, value_from_callable=True)

    def dead_letter(self, job_id: str, reason: str) -> bool:
        entry = DeadLetterEntry(
            job_id=job_id,
            reason=reason,
            recorded_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
        )

        def record(pipe: Pipeline) -> bool:
            if pipe.sismember(self.dead_ids_key, job_id):
                return False
            pipe.multi()
            pipe.sadd(self.dead_ids_key, job_id)
            pipe.rpush(self.dead_key, entry.model_dump_json())
            return True

        return self._client.transaction(record, self.dead_ids_key, value_from_callable=True)

    def dead_letters(self, limit: int = 100) -> list[DeadLetterEntry]:
        raw = self._client.lrange(self.dead_key, 0, limit - 1)
        return [DeadLetterEntry.model_validate(json.loads(_decode(item))) for item in raw]


__all__ = ["Delivery", "RedisWorkQueue", "WorkQueue"]
