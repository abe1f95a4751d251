"""
Redis-backed outcome queue with visibility timeout and dead letters.
"""

import asyncio
import json
import time
import uuid
from typing import Any, Dict, List, Optional, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import QueueError
from shared.faults import FaultReporter
from shared.logging import get_logger
from shared.queues.base import DeadLetter, OutcomeQueue, check_batch_size
from shared.queues.models import QueueItem, SuccessOutcome, FailureOutcome, dump_outcome, parse_outcome


# KEYS: ready, inflight, receipts, receives, messages, dead
# ARGV: now, visible_until, max_items, max_receive_count, receipt_1..receipt_n
RECEIVE_SCRIPT = """
local expired = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', ARGV[1])
for _, receipt in ipairs(expired) do
  local id = redis.call('HGET', KEYS[3], receipt)
  redis.call('ZREM', KEYS[2], receipt)
  redis.call('HDEL', KEYS[3], receipt)
  if id then
    redis.call('RPUSH', KEYS[1], id)
  end
end

local delivered = {}
local dead = {}
local max_items = tonumber(ARGV[3])
local max_receives = tonumber(ARGV[4])
local n = 0
while n < max_items do
  local id = redis.call('LPOP', KEYS[1])
  if not id then
    break
  end
  local body = redis.call('HGET', KEYS[5], id)
  if body then
    local count = redis.call('HINCRBY', KEYS[4], id, 1)
    if count > max_receives then
      redis.call('RPUSH', KEYS[6], cjson.encode({message_id = id, body = body, receive_count = count - 1}))
      redis.call('HDEL', KEYS[5], id)
      redis.call('HDEL', KEYS[4], id)
      table.insert(dead, id)
    else
      n = n + 1
      local receipt = ARGV[4 + n]
      redis.call('ZADD', KEYS[2], ARGV[2], receipt)
      redis.call('HSET', KEYS[3], receipt, id)
      table.insert(delivered, id)
      table.insert(delivered, receipt)
      table.insert(delivered, tostring(count))
      table.insert(delivered, body)
    end
  end
end
return {delivered, dead}
"""

# KEYS: inflight, receipts, messages, receives
# ARGV: receipt
ACK_SCRIPT = """
local id = redis.call('HGET', KEYS[2], ARGV[1])
if not id then
  return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('HDEL', KEYS[2], ARGV[1])
redis.call('HDEL', KEYS[3], id)
redis.call('HDEL', KEYS[4], id)
return 1
"""


class RedisOutcomeQueue(OutcomeQueue):
    """At-least-once outcome queue stored in Redis.

    Receive and acknowledge run as Lua scripts so an item is never popped
    from the ready list without being recorded as in flight.
    """

    def __init__(self,
                 redis_url: str,
                 name: str,
                 visibility_timeout: float = 30.0,
                 max_receive_count: int = 5,
                 poll_interval: float = 1.0,
                 fault_reporter: Optional[FaultReporter] = None):
        self.redis_url = redis_url
        self.name = name
        self.visibility_timeout = visibility_timeout
        self.max_receive_count = max_receive_count
        self.poll_interval = poll_interval
        self.fault_reporter = fault_reporter
        self.logger = get_logger(f"queues.redis.{name}")
        self.redis: Optional[redis.Redis] = None
        self._receive_script = None
        self._ack_script = None

        prefix = f"queue:{name}"
        self.READY_KEY = f"{prefix}:ready"
        self.INFLIGHT_KEY = f"{prefix}:inflight"
        self.RECEIPTS_KEY = f"{prefix}:receipts"
        self.RECEIVES_KEY = f"{prefix}:receives"
        self.MESSAGES_KEY = f"{prefix}:messages"
        self.DEAD_KEY = f"{prefix}:dead"

    async def start(self):
        """Connect to Redis and register scripts."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
            await self.redis.ping()
        except Exception as e:
            self.logger.error("Failed to start Redis queue", error=str(e))
            raise QueueError(f"Redis queue {self.name} unavailable", details={"error": str(e)}) from e

        self._register_scripts()
        self.logger.info("Redis queue started", queue=self.name)

    def _register_scripts(self):
        self._receive_script = self.redis.register_script(RECEIVE_SCRIPT)
        self._ack_script = self.redis.register_script(ACK_SCRIPT)

    async def stop(self):
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis queue stopped", queue=self.name)

    def _require_client(self) -> redis.Redis:
        if self.redis is None:
            raise QueueError(f"Redis queue {self.name} not started")
        return self.redis

    async def enqueue(self, outcome: Union[SuccessOutcome, FailureOutcome]) -> str:
        client = self._require_client()
        message_id = str(uuid.uuid4())
        body = json.dumps({"outcome": dump_outcome(outcome), "enqueued_at": time.time()})

        try:
            async with client.pipeline(transaction=True) as pipeline:
                pipeline.hset(self.MESSAGES_KEY, message_id, body)
                pipeline.rpush(self.READY_KEY, message_id)
                await pipeline.execute()
        except RedisError as e:
            raise QueueError(f"Enqueue to {self.name} failed", details={"error": str(e)}) from e

        self.logger.debug("Outcome enqueued", message_id=message_id, condition=outcome.condition)
        return message_id

    async def receive_batch(self, max_items: int = 5, wait_seconds: float = 0.0) -> List[QueueItem]:
        check_batch_size(max_items)
        deadline = time.monotonic() + wait_seconds

        while True:
            items = await self._receive_visible(max_items)
            remaining = deadline - time.monotonic()
            if items or remaining <= 0:
                return items
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _receive_visible(self, max_items: int) -> List[QueueItem]:
        self._require_client()
        now = time.time()
        receipts = [str(uuid.uuid4()) for _ in range(max_items)]

        try:
            delivered, dead = await self._receive_script(
                keys=[
                    self.READY_KEY,
                    self.INFLIGHT_KEY,
                    self.RECEIPTS_KEY,
                    self.RECEIVES_KEY,
                    self.MESSAGES_KEY,
                    self.DEAD_KEY,
                ],
                args=[now, now + self.visibility_timeout, max_items, self.max_receive_count, *receipts],
            )
        except RedisError as e:
            raise QueueError(f"Receive from {self.name} failed", details={"error": str(e)}) from e

        for message_id in dead or []:
            self._report_dead_letter(message_id)

        items: List[QueueItem] = []
        for i in range(0, len(delivered or []), 4):
            message_id, receipt, count, body = delivered[i:i + 4]
            stored = json.loads(body)
            items.append(QueueItem(
                message_id=message_id,
                receipt_handle=receipt,
                outcome=parse_outcome(stored["outcome"]),
                receive_count=int(count),
                enqueued_at=float(stored["enqueued_at"]),
            ))
        return items

    async def acknowledge(self, receipt_handle: str) -> bool:
        self._require_client()
        try:
            removed = await self._ack_script(
                keys=[self.INFLIGHT_KEY, self.RECEIPTS_KEY, self.MESSAGES_KEY, self.RECEIVES_KEY],
                args=[receipt_handle],
            )
        except RedisError as e:
            raise QueueError(f"Acknowledge on {self.name} failed", details={"error": str(e)}) from e
        return bool(removed)

    async def dead_letters(self) -> List[DeadLetter]:
        client = self._require_client()
        raw_letters = await client.lrange(self.DEAD_KEY, 0, -1)

        letters = []
        for raw in raw_letters:
            entry: Dict[str, Any] = json.loads(raw)
            stored = json.loads(entry["body"])
            letters.append(DeadLetter(
                message_id=entry["message_id"],
                outcome=parse_outcome(stored["outcome"]),
                receive_count=int(entry["receive_count"]),
                enqueued_at=float(stored["enqueued_at"]),
            ))
        return letters

    async def stats(self) -> Dict[str, int]:
        client = self._require_client()
        async with client.pipeline(transaction=False) as pipeline:
            pipeline.llen(self.READY_KEY)
            pipeline.zcard(self.INFLIGHT_KEY)
            pipeline.llen(self.DEAD_KEY)
            visible, in_flight, dead = await pipeline.execute()
        return {"visible": int(visible), "in_flight": int(in_flight), "dead_lettered": int(dead)}

    async def health_check(self) -> bool:
        try:
            await self._require_client().ping()
            return True
        except (RedisError, QueueError):
            return False

    def _report_dead_letter(self, message_id: str) -> None:
        self.logger.error("Item exceeded max receive count", message_id=message_id, queue=self.name)
        if self.fault_reporter is not None:
            self.fault_reporter.report(
                "dead_letter",
                "Queue item moved to dead letters",
                queue=self.name,
                message_id=message_id,
            )
