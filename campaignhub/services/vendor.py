"""
Vendor gateway - hands one rendered message to the delivery provider.

The provider answers asynchronously: it later POSTs a delivery receipt to
our receipt endpoint. Two gateways:
- HttpVendorGateway: POSTs the send request to a real provider URL
- SimulatedVendorGateway: in-process stand-in (1-4s latency, ~90% success)
  that posts the receipt back itself

When a send raises, a FAILED receipt is reported to our own endpoint as a
fallback, with a bounded timeout. If that fails too, the log stays PENDING.
"""
import asyncio
import logging
import random
import string
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from campaignhub.config import Settings
from campaignhub.schemas.campaigns import VendorMessage

logger = logging.getLogger(__name__)

FALLBACK_FAILURE_REASON = "Vendor API communication error"

SIMULATED_FAILURE_REASONS = (
    "Invalid email address",
    "Network timeout",
    "Rate limit exceeded",
    "Temporary server error",
    "Email bounced",
)


class VendorGateway:
    """Base gateway: subclasses implement _deliver()."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.receipt_callback_url = settings.receipt_callback_url
        self.fallback_timeout = settings.receipt_fallback_timeout_seconds
        self._client = http_client or httpx.AsyncClient(timeout=settings.vendor_timeout_seconds)
        self._owns_client = http_client is None

    async def send(self, message: VendorMessage) -> None:
        """Deliver one message. Errors are logged and reported as a FAILED receipt."""
        logger.info(
            "Sending message %s to vendor", message.messageId,
            extra={"campaign_id": message.campaignId, "message_id": message.messageId},
        )
        try:
            await self._deliver(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Vendor API error for message %s: %s", message.messageId, str(e),
                extra={"campaign_id": message.campaignId, "message_id": message.messageId},
            )
            await self.report_failure(message, FALLBACK_FAILURE_REASON)

    async def _deliver(self, message: VendorMessage) -> None:
        raise NotImplementedError

    async def report_failure(self, message: VendorMessage, reason: str) -> bool:
        """POST a FAILED receipt for a message to our own endpoint. Never raises."""
        payload = {
            "messageId": message.messageId,
            "campaignId": message.campaignId,
            "status": "FAILED",
            "failureReason": reason,
            "deliveryTimestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = await self._client.post(
                self.receipt_callback_url,
                json=payload,
                timeout=self.fallback_timeout,
            )
            response.raise_for_status()
            return True
        except Exception as e:
            logger.error(
                "Failed to report delivery failure for %s: %s", message.messageId, str(e),
                extra={"campaign_id": message.campaignId, "message_id": message.messageId},
            )
            return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class HttpVendorGateway(VendorGateway):
    """Sends the request to an external provider that calls our receipt endpoint back."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(settings, http_client)
        if not settings.vendor_api_url:
            raise ValueError("VENDOR_API_URL must be set when VENDOR_MODE=http")
        self.vendor_api_url = settings.vendor_api_url

    async def _deliver(self, message: VendorMessage) -> None:
        response = await self._client.post(self.vendor_api_url, json=message.model_dump())
        response.raise_for_status()


def make_vendor_message_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"vendor_{int(time.time() * 1000)}_{suffix}"


class SimulatedVendorGateway(VendorGateway):
    """
    Stands in for a real provider: waits 1-4 seconds, succeeds with
    probability success_rate, then posts the receipt to our endpoint.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        min_delay: float = 1.0,
        max_delay: float = 4.0,
    ):
        super().__init__(settings, http_client)
        self.success_rate = settings.vendor_success_rate
        self.min_delay = min_delay
        self.max_delay = max_delay

    async def _deliver(self, message: VendorMessage) -> None:
        await asyncio.sleep(random.uniform(self.min_delay, self.max_delay))

        is_success = random.random() < self.success_rate
        status = "SENT" if is_success else "FAILED"
        failure_reason = None if is_success else random.choice(SIMULATED_FAILURE_REASONS)

        receipt = {
            "messageId": message.messageId,
            "campaignId": message.campaignId,
            "vendorMessageId": make_vendor_message_id(),
            "status": status,
            "failureReason": failure_reason,
            "deliveryTimestamp": datetime.now(timezone.utc).isoformat(),
        }
        response = await self._client.post(self.receipt_callback_url, json=receipt)
        response.raise_for_status()

        logger.info(
            "Message %s %s%s", message.messageId, status,
            f" - {failure_reason}" if failure_reason else "",
            extra={"campaign_id": message.campaignId, "message_id": message.messageId},
        )


def build_vendor_gateway(settings: Settings) -> VendorGateway:
    if settings.vendor_mode == "http":
        return HttpVendorGateway(settings)
    if settings.vendor_mode == "simulated":
        return SimulatedVendorGateway(settings)
    raise ValueError(f"Unknown VENDOR_MODE: {settings.vendor_mode}")
