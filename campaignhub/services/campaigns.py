"""
Campaign dispatcher - creates a campaign over a segment's audience and
pushes every message to the vendor in the background.

Creation is synchronous up to persistence: the campaign row (RUNNING) and one
PENDING communication log per recipient are written, then the call returns.
Sending happens afterwards through a small worker pool:
- message i becomes due at i * dispatch_interval + random jitter
- at most dispatch_concurrency sends are in flight per campaign
- a send that raises is logged only; the log stays PENDING until a receipt arrives
"""
import asyncio
import logging
import math
import random
import uuid
from datetime import datetime, timezone
from typing import Optional

from campaignhub.config import Settings
from campaignhub.models.campaign import Campaign, CAMPAIGN_RUNNING
from campaignhub.models.communication_log import (
    CommunicationLog,
    LOG_FAILED,
    LOG_PENDING,
    LOG_SENT,
)
from campaignhub.schemas.campaigns import (
    CampaignCreated,
    CampaignLogsResponse,
    CampaignStatusResponse,
    CampaignSummary,
    CommunicationLogItem,
    Pagination,
    VendorMessage,
)
from campaignhub.services.record_store import RecordStore
from campaignhub.services.rule_engine import compile_rules
from campaignhub.services.vendor import VendorGateway
from campaignhub.utils.errors import NotFoundError, ValidationError
from campaignhub.utils.logging import set_correlation_id

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "{{name}}"
LOG_STATUSES = (LOG_PENDING, LOG_SENT, LOG_FAILED)
UNKNOWN_SEGMENT_NAME = "Unknown Segment"


def render_message(template: str, name: str) -> str:
    """Substitute {{name}}. Any other placeholder is left as written."""
    return template.replace(NAME_PLACEHOLDER, name)


class CampaignDispatcher:
    def __init__(
        self,
        store: RecordStore,
        gateway: VendorGateway,
        settings: Settings,
        rng: Optional[random.Random] = None,
    ):
        self._store = store
        self._gateway = gateway
        self.interval_ms = settings.dispatch_interval_ms
        self.jitter_ms = settings.dispatch_jitter_ms
        self.concurrency = max(1, settings.dispatch_concurrency)
        self._rng = rng or random.Random()
        self._dispatches: set[asyncio.Task] = set()

    # === CREATE ===

    async def create_campaign(
        self,
        name: str,
        segment_id: str,
        message_template: str,
    ) -> CampaignCreated:
        """
        Resolve the segment audience, persist the campaign and its logs,
        and start dispatch without waiting for it.

        Raises:
            ValidationError: missing fields, or the segment matches nobody
            NotFoundError: no segment with this segment_id
        """
        if not name or not segment_id or not message_template:
            raise ValidationError("Missing required fields: name, segment_id, message_template")

        segment = await self._store.get_segment(segment_id)
        if not segment:
            raise NotFoundError("Segment not found")

        customers = await self._store.find_customers(compile_rules(segment.rules))
        if not customers:
            raise ValidationError("No customers found matching the segment criteria")

        campaign_id = str(uuid.uuid4())
        audience = len(customers)
        campaign_values = {
            "campaign_id": campaign_id,
            "name": name,
            "segment_id": segment_id,
            "message_template": message_template,
            "status": CAMPAIGN_RUNNING,
            "total_audience": audience,
            "sent_count": 0,
            "failed_count": 0,
            "pending_count": audience,
            "started_at": datetime.now(timezone.utc),
        }
        log_values = [
            {
                "campaign_id": campaign_id,
                "customer_id": customer.customer_id,
                "customer_name": customer.name,
                "customer_email": customer.email,
                "message": render_message(message_template, customer.name),
                "status": LOG_PENDING,
            }
            for customer in customers
        ]
        await self._store.insert_campaign(campaign_values, log_values)

        logger.info(
            "Campaign %s created for segment %s: %d recipients",
            campaign_id, segment_id, audience,
            extra={"campaign_id": campaign_id},
        )

        self.start_dispatch(campaign_id)

        return CampaignCreated(
            campaign_id=campaign_id,
            name=name,
            segment_id=segment_id,
            segment_name=segment.name,
            audience_size=audience,
            status=CAMPAIGN_RUNNING,
            message_template=message_template,
        )

    # === DISPATCH ===

    def start_dispatch(self, campaign_id: str) -> asyncio.Task:
        task = asyncio.create_task(self.dispatch(campaign_id), name=f"dispatch:{campaign_id}")
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)
        return task

    def send_delay(self, index: int) -> float:
        """Seconds after dispatch start at which message `index` becomes due."""
        return (index * self.interval_ms + self._rng.uniform(0, self.jitter_ms)) / 1000

    async def dispatch(self, campaign_id: str) -> int:
        """Send every PENDING log of a campaign. Returns the number scheduled. Never raises."""
        set_correlation_id(campaign_id)
        try:
            logs = await self._store.pending_logs(campaign_id)
        except Exception as e:
            logger.error(
                "Delivery initiation error for campaign %s: %s", campaign_id, str(e),
                exc_info=True, extra={"campaign_id": campaign_id},
            )
            return 0

        logger.info(
            "Starting delivery for campaign %s: %d messages", campaign_id, len(logs),
            extra={"campaign_id": campaign_id},
        )
        if not logs:
            return 0

        loop = asyncio.get_running_loop()
        started = loop.time()
        queue: asyncio.Queue = asyncio.Queue()
        for index, log in enumerate(logs):
            queue.put_nowait((started + self.send_delay(index), log))

        workers = [
            asyncio.create_task(self._send_worker(campaign_id, queue))
            for _ in range(min(self.concurrency, len(logs)))
        ]
        await asyncio.gather(*workers)
        return len(logs)

    async def _send_worker(self, campaign_id: str, queue: asyncio.Queue) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                due, log = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            delay = due - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            await self._send_one(campaign_id, log)

    async def _send_one(self, campaign_id: str, log: CommunicationLog) -> None:
        message = VendorMessage(
            messageId=str(log.id),
            campaignId=campaign_id,
            customerId=log.customer_id,
            customerEmail=log.customer_email,
            message=log.message,
        )
        try:
            await self._gateway.send(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Failed to send message %s: %s", message.messageId, str(e),
                extra={"campaign_id": campaign_id, "message_id": message.messageId},
            )

    async def wait_for_dispatches(self) -> None:
        """Wait until every running dispatch has finished."""
        while self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding dispatches. Only used at process exit."""
        tasks = list(self._dispatches)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d in-flight campaign dispatches", len(tasks))

    # === READ ===

    async def list_campaigns(self) -> list[CampaignSummary]:
        campaigns = await self._store.list_campaigns()
        names = await self._store.get_segment_names({c.segment_id for c in campaigns})
        return [_summarize(c, names.get(c.segment_id, UNKNOWN_SEGMENT_NAME)) for c in campaigns]

    async def get_campaign_status(self, campaign_id: str) -> CampaignStatusResponse:
        campaign = await self._store.get_campaign(campaign_id)
        if not campaign:
            raise NotFoundError("Campaign not found")
        names = await self._store.get_segment_names({campaign.segment_id})

        return CampaignStatusResponse(
            campaign_id=campaign.campaign_id,
            name=campaign.name,
            segment_name=names.get(campaign.segment_id, UNKNOWN_SEGMENT_NAME),
            status=campaign.status,
            total_audience=campaign.total_audience,
            sent=campaign.sent_count,
            failed=campaign.failed_count,
            pending=campaign.pending_count,
            started_at=campaign.started_at,
            completed_at=campaign.completed_at,
            message_template=campaign.message_template,
        )

    async def list_campaign_logs(
        self,
        campaign_id: str,
        page: int = 1,
        limit: int = 50,
        status: Optional[str] = None,
    ) -> CampaignLogsResponse:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        status_filter = None
        if status and status.lower() != "all":
            status_filter = status.upper()
            if status_filter not in LOG_STATUSES:
                raise ValidationError(f"Unknown log status: {status}")

        logs, total = await self._store.list_logs(
            campaign_id,
            status=status_filter,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return CampaignLogsResponse(
            logs=[_log_item(log) for log in logs],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit),
            ),
        )


def _summarize(campaign: Campaign, segment_name: str) -> CampaignSummary:
    created = campaign.created_at or datetime.now(timezone.utc)
    return CampaignSummary(
        campaign_id=campaign.campaign_id,
        name=campaign.name,
        segment_name=segment_name,
        date=created.date().isoformat(),
        audience_size=campaign.total_audience or 0,
        sent=campaign.sent_count or 0,
        failed=campaign.failed_count or 0,
        pending=campaign.pending_count or 0,
        status=campaign.status.lower() if campaign.status else "unknown",
        message_template=campaign.message_template or "",
    )


def _log_item(log: CommunicationLog) -> CommunicationLogItem:
    return CommunicationLogItem(
        id=str(log.id),
        campaign_id=log.campaign_id,
        customer_id=log.customer_id,
        customer_name=log.customer_name,
        customer_email=log.customer_email,
        message=log.message,
        status=log.status,
        vendor_message_id=log.vendor_message_id,
        delivery_timestamp=log.delivery_timestamp,
        failure_reason=log.failure_reason,
        created_at=log.created_at,
    )
