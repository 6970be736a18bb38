"""
Stream consumer worker - reads one Redis stream under a consumer group and
hands each entry to a handler.

Delivery is at-least-once:
- an entry is XACKed only after its handler returns
- a failing entry is logged and stays in the group's pending list
- a transport error on XREADGROUP backs off for a fixed delay, then retries

Pending entries are re-claimed after stream_reclaim_idle_ms and retried. Once an
entry has been delivered stream_max_deliveries times it is copied to
"<stream>:dead" and acked. With stream_max_deliveries = 0 nothing is
re-claimed and a failing entry stays pending forever.
"""
import asyncio
import logging
import time
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from redis.exceptions import ResponseError

from campaignhub.config import Settings
from campaignhub.services.ingestion import handle_customer_message, handle_order_message
from campaignhub.services.record_store import RecordStore
from campaignhub.utils.errors import PermanentProcessingError
from campaignhub.utils.logging import correlation_scope
from campaignhub.utils.redis import heartbeat

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, str]], Awaitable[Any]]

RECLAIM_BATCH_SIZE = 10
HEARTBEAT_INTERVAL_SECONDS = 30


class StreamConsumer:
    """Single-identity consumer of one stream/group pair, with explicit start/stop."""

    def __init__(
        self,
        redis,
        stream: str,
        group: str,
        consumer_name: str,
        handler: MessageHandler,
        *,
        name: Optional[str] = None,
        read_count: int = 1,
        block_ms: int = 1000,
        error_backoff_seconds: float = 5.0,
        reclaim_idle_ms: int = 60000,
        max_deliveries: int = 0,
    ):
        self._redis = redis
        self.stream = stream
        self.group = group
        self.consumer_name = consumer_name
        self.name = name or f"{stream}_consumer"
        self._handler = handler
        self.read_count = read_count
        self.block_ms = block_ms
        self.error_backoff_seconds = error_backoff_seconds
        self.reclaim_idle_ms = reclaim_idle_ms
        self.max_deliveries = max_deliveries
        self.dead_letter_stream = f"{stream}:dead"

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._group_ready = False
        self._last_reclaim = 0.0
        self._last_heartbeat = 0.0
        self._last_errors: dict[str, str] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    async def ensure_group(self) -> None:
        """Create the consumer group (and the stream). An existing group is fine."""
        try:
            await self._redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info("Created consumer group %s on %s", self.group, self.stream)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.info("Consumer group %s already exists on %s", self.group, self.stream)
        self._group_ready = True

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self.run(), name=self.name)
        return self._task

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop after the current iteration. Entries already read but not yet
        acked stay pending in the group.
        """
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s did not stop within %.1fs", self.name, timeout)
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        """Main loop. Runs until stop() is called."""
        self._running = True
        logger.info(
            "%s started (group=%s consumer=%s block=%dms)",
            self.name, self.group, self.consumer_name, self.block_ms,
        )

        while self._running:
            try:
                if not self._group_ready:
                    await self.ensure_group()
                if self._reclaim_due():
                    await self.reclaim_pending()
                response = await self._redis.xreadgroup(
                    self.group,
                    self.consumer_name,
                    {self.stream: ">"},
                    count=self.read_count,
                    block=self.block_ms,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Error consuming %s: %s", self.stream, str(e),
                    extra={"stream": self.stream},
                )
                await asyncio.sleep(self.error_backoff_seconds)
                continue

            for _stream, messages in response or []:
                for message_id, fields in messages:
                    await self.process_message(message_id, fields)

            await self._heartbeat()

        logger.info("%s stopped", self.name)

    async def process_message(self, message_id: str, fields: dict[str, str]) -> bool:
        """Run the handler and ack on success. Never raises."""
        with correlation_scope(message_id):
            try:
                await self._handler(fields)
            except asyncio.CancelledError:
                raise
            except PermanentProcessingError as e:
                self._last_errors[message_id] = e.message
                logger.error(
                    "Unprocessable message %s on %s: %s", message_id, self.stream, e.message,
                    extra={"stream": self.stream, "message_id": message_id},
                )
                return False
            except Exception as e:
                self._last_errors[message_id] = str(e)
                logger.error(
                    "Error processing message %s on %s: %s", message_id, self.stream, str(e),
                    exc_info=True,
                    extra={"stream": self.stream, "message_id": message_id},
                )
                return False

        try:
            await self._redis.xack(self.stream, self.group, message_id)
        except Exception as e:
            logger.error(
                "Failed to ack message %s on %s: %s", message_id, self.stream, str(e),
                extra={"stream": self.stream, "message_id": message_id},
            )
            return False

        self._last_errors.pop(message_id, None)
        return True

    def _reclaim_due(self) -> bool:
        if self.max_deliveries <= 0:
            return False
        now = time.monotonic()
        if now - self._last_reclaim < self.reclaim_idle_ms / 1000:
            return False
        self._last_reclaim = now
        return True

    async def reclaim_pending(self) -> int:
        """
        Retry entries that sat unacked for longer than reclaim_idle_ms,
        dead-lettering those already delivered max_deliveries times.
        Returns the number of entries handled.
        """
        entries = await self._redis.xpending_range(
            self.stream,
            self.group,
            min="-",
            max="+",
            count=RECLAIM_BATCH_SIZE,
            idle=self.reclaim_idle_ms,
        )

        handled = 0
        for entry in entries:
            message_id = entry["message_id"]
            deliveries = int(entry["times_delivered"])

            if deliveries >= self.max_deliveries:
                await self._dead_letter(message_id, deliveries)
                handled += 1
                continue

            claimed = await self._redis.xclaim(
                self.stream,
                self.group,
                self.consumer_name,
                min_idle_time=self.reclaim_idle_ms,
                message_ids=[message_id],
            )
            for claimed_id, fields in claimed:
                if not fields:
                    # Entry was trimmed from the stream; nothing left to process
                    await self._redis.xack(self.stream, self.group, claimed_id)
                    continue
                logger.info(
                    "Retrying message %s on %s (delivery %d)", claimed_id, self.stream, deliveries + 1,
                    extra={"stream": self.stream, "message_id": claimed_id},
                )
                await self.process_message(claimed_id, fields)
                handled += 1

        return handled

    async def _dead_letter(self, message_id: str, deliveries: int) -> None:
        entries = await self._redis.xrange(self.stream, min=message_id, max=message_id)
        fields = dict(entries[0][1]) if entries else {}
        fields.update({
            "original_id": message_id,
            "group": self.group,
            "deliveries": str(deliveries),
            "error": self._last_errors.pop(message_id, "unknown"),
        })
        await self._redis.xadd(self.dead_letter_stream, fields)
        await self._redis.xack(self.stream, self.group, message_id)
        logger.error(
            "Message %s on %s dead-lettered after %d deliveries",
            message_id, self.stream, deliveries,
            extra={"stream": self.stream, "message_id": message_id},
        )

    async def _heartbeat(self) -> None:
        now = time.monotonic()
        if now - self._last_heartbeat < HEARTBEAT_INTERVAL_SECONDS:
            return
        self._last_heartbeat = now
        await heartbeat(self.name, ttl=HEARTBEAT_INTERVAL_SECONDS * 4, redis=self._redis)


def build_ingestion_consumers(redis, store: RecordStore, settings: Settings) -> list[StreamConsumer]:
    """One consumer per ingestion stream, sharing a consumer identity."""
    common = dict(
        read_count=settings.stream_read_count,
        block_ms=settings.stream_block_ms,
        error_backoff_seconds=settings.stream_error_backoff_seconds,
        reclaim_idle_ms=settings.stream_reclaim_idle_ms,
        max_deliveries=settings.stream_max_deliveries,
    )
    return [
        StreamConsumer(
            redis,
            settings.customer_stream,
            settings.customer_group,
            settings.stream_consumer_name,
            partial(handle_customer_message, store),
            name="customer_consumer",
            **common,
        ),
        StreamConsumer(
            redis,
            settings.order_stream,
            settings.order_group,
            settings.stream_consumer_name,
            partial(handle_order_message, store),
            name="order_consumer",
            **common,
        ),
    ]
