"""
Delivery receipt aggregator - buffers vendor receipts and applies them in batches.

Receipts are accepted into a bounded queue and drained by a single task:
- a batch is taken every receipt_flush_interval_seconds (or as soon as it is full)
- PENDING log rows and their campaign counters are updated in one transaction
- a campaign whose pending count reaches zero is marked COMPLETED exactly once

A batch that fails to persist is kept and retried first on the next tick,
no sooner than one full flush interval later.
"""
import asyncio
import logging
from collections import OrderedDict
from typing import Optional

from campaignhub.config import Settings
from campaignhub.schemas.campaigns import DeliveryReceipt
from campaignhub.services.record_store import RecordStore
from campaignhub.utils.errors import TransientIOError
from campaignhub.utils.redis import heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "delivery_receipt_aggregator"
HEARTBEAT_EVERY_N_TICKS = 15


def dedupe_receipts(receipts: list[DeliveryReceipt]) -> list[DeliveryReceipt]:
    """Keep one receipt per message_id; the latest one wins."""
    latest: OrderedDict = OrderedDict()
    for receipt in receipts:
        latest.pop(receipt.message_id, None)
        latest[receipt.message_id] = receipt
    return list(latest.values())


class DeliveryReceiptAggregator:
    def __init__(self, store: RecordStore, settings: Settings, redis=None):
        self._store = store
        self._redis = redis
        self.batch_size = max(1, settings.receipt_batch_size)
        self.flush_interval = settings.receipt_flush_interval_seconds
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=settings.receipt_queue_maxsize)
        self._carry_over: list[DeliveryReceipt] = []
        self._flush_lock = asyncio.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._ticks = 0

    @property
    def backlog(self) -> int:
        return self._queue.qsize() + len(self._carry_over)

    def submit(self, receipt: DeliveryReceipt) -> None:
        """Queue one receipt. Raises TransientIOError when the buffer is full."""
        try:
            self._queue.put_nowait(receipt)
        except asyncio.QueueFull:
            logger.warning(
                "Receipt buffer full, rejecting receipt for %s", receipt.message_id,
                extra={"campaign_id": receipt.campaign_id, "message_id": str(receipt.message_id)},
            )
            raise TransientIOError("Delivery receipt buffer is full, retry later")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self.run(), name=WORKER_NAME)
        return self._task

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop the drain loop, then flush whatever is still buffered."""
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        try:
            await asyncio.wait_for(self.flush_now(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Receipt flush on shutdown timed out with %d buffered", self.backlog)
        except Exception as e:
            logger.error("Receipt flush on shutdown failed: %s", str(e), exc_info=True)

    async def run(self) -> None:
        """Drain loop. One batch per tick, ticks every flush_interval."""
        self._running = True
        logger.info(
            "%s started (batch=%d interval=%.1fs)", WORKER_NAME, self.batch_size, self.flush_interval,
        )
        failed = False
        while self._running:
            await self._wait_for_batch(full_interval=failed)
            try:
                await self.flush_once()
                failed = False
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failed = True
                logger.error("Receipt batch failed, will retry: %s", str(e), exc_info=True)

            self._ticks += 1
            if self._ticks % HEARTBEAT_EVERY_N_TICKS == 1:
                await heartbeat(WORKER_NAME, redis=self._redis)

    async def _wait_for_batch(self, full_interval: bool = False) -> None:
        """
        Sleep one interval, returning early once a full batch is buffered.
        After a failed flush the whole interval is slept.
        """
        if full_interval:
            await asyncio.sleep(self.flush_interval)
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.flush_interval
        while self.backlog < self.batch_size:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, 0.1))

    def _take_batch(self) -> list[DeliveryReceipt]:
        batch, self._carry_over = self._carry_over, []
        while len(batch) < self.batch_size:
            try:
                batch.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def flush_once(self) -> int:
        """
        Take and persist one batch. Returns the number of receipts applied.
        On failure the batch is kept for the next call and the error propagates.
        """
        async with self._flush_lock:
            batch = self._take_batch()
            if not batch:
                return 0
            try:
                await self._apply(batch)
            except Exception:
                self._carry_over = batch + self._carry_over
                raise
            return len(batch)

    async def flush_now(self) -> int:
        """Flush until nothing is buffered. Errors propagate."""
        total = 0
        while self.backlog:
            total += await self.flush_once()
        return total

    async def _apply(self, batch: list[DeliveryReceipt]) -> None:
        receipts = dedupe_receipts(batch)
        pending_by_campaign = await self._store.apply_receipts(receipts)

        for campaign_id in dict.fromkeys(r.campaign_id for r in receipts):
            pending = pending_by_campaign.get(campaign_id)
            if pending is None:
                logger.warning(
                    "Receipts for unknown campaign %s", campaign_id,
                    extra={"campaign_id": campaign_id},
                )
                continue
            if pending <= 0 and await self._store.complete_campaign(campaign_id):
                logger.info(
                    "Campaign %s completed", campaign_id,
                    extra={"campaign_id": campaign_id},
                )

        logger.info("Processed %d delivery receipts", len(receipts))
