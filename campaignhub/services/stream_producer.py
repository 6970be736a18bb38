"""
Stream producer - publishes validated creation requests onto Redis streams.

Each entry carries three fields:
- type:      CREATE_CUSTOMER | CREATE_ORDER
- data:      the record as JSON (dates as ISO-8601)
- timestamp: submission time, epoch milliseconds as a string

Persistence happens later in the stream consumer; callers only get the
stream message id back.
"""
import logging
import time

from pydantic import BaseModel

from campaignhub.config import Settings
from campaignhub.schemas.ingestion import CustomerCreate, OrderCreate
from campaignhub.utils.errors import TransientIOError

logger = logging.getLogger(__name__)

CREATE_CUSTOMER = "CREATE_CUSTOMER"
CREATE_ORDER = "CREATE_ORDER"


def build_stream_fields(message_type: str, record: BaseModel) -> dict[str, str]:
    return {
        "type": message_type,
        "data": record.model_dump_json(),
        "timestamp": str(int(time.time() * 1000)),
    }


class StreamProducer:
    """Publishes customer and order records onto their streams."""

    def __init__(self, redis, settings: Settings):
        self._redis = redis
        self.customer_stream = settings.customer_stream
        self.order_stream = settings.order_stream

    async def publish(self, stream: str, message_type: str, record: BaseModel) -> str:
        """XADD one record. Raises TransientIOError when Redis is unavailable."""
        fields = build_stream_fields(message_type, record)
        try:
            message_id = await self._redis.xadd(stream, fields)
        except Exception as e:
            logger.error("Failed to publish %s to %s: %s", message_type, stream, str(e))
            raise TransientIOError(f"Could not publish to {stream}") from e

        logger.info(
            "Published %s to %s id=%s", message_type, stream, message_id,
            extra={"stream": stream, "message_id": message_id},
        )
        return message_id

    async def publish_customer(self, customer: CustomerCreate) -> str:
        return await self.publish(self.customer_stream, CREATE_CUSTOMER, customer)

    async def publish_order(self, order: OrderCreate) -> str:
        return await self.publish(self.order_stream, CREATE_ORDER, order)
