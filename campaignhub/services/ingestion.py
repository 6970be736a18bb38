"""
Ingestion handlers - turn one stream entry into persisted records.

Both handlers are safe to run more than once for the same entry:
- customers are skipped when the customer_id is already stored
- orders are inserted together with the customer aggregate update, so a
  redelivered order hits the order_id unique key and changes nothing
"""
import json
import logging

from pydantic import BaseModel, ValidationError as PydanticValidationError

from campaignhub.schemas.ingestion import CustomerCreate, OrderCreate
from campaignhub.services.record_store import RecordStore
from campaignhub.services.stream_producer import CREATE_CUSTOMER, CREATE_ORDER
from campaignhub.utils.errors import ConflictError, PermanentProcessingError

logger = logging.getLogger(__name__)


def decode_stream_message(fields: dict[str, str], expected_type: str, model: type[BaseModel]) -> BaseModel:
    """Validate the entry type and parse its JSON data. Raises PermanentProcessingError."""
    message_type = fields.get("type")
    if message_type != expected_type:
        raise PermanentProcessingError(
            f"Unexpected message type {message_type!r}, expected {expected_type}"
        )
    raw = fields.get("data")
    if not raw:
        raise PermanentProcessingError("Stream message has no data field")
    try:
        return model.model_validate_json(raw)
    except (PydanticValidationError, json.JSONDecodeError, ValueError) as e:
        raise PermanentProcessingError(f"Malformed {expected_type} payload: {e}") from e


async def handle_customer_message(store: RecordStore, fields: dict[str, str]) -> str:
    """Persist a CREATE_CUSTOMER entry. Returns 'created' or 'skipped'."""
    customer = decode_stream_message(fields, CREATE_CUSTOMER, CustomerCreate)

    existing = await store.get_customer(customer.customer_id)
    if existing:
        logger.info(
            "Customer %s already exists, skipping", customer.customer_id,
            extra={"customer_id": customer.customer_id},
        )
        return "skipped"

    try:
        await store.insert_customer(customer.model_dump())
    except ConflictError:
        # Lost a race with another insert of the same customer_id
        logger.info(
            "Customer %s inserted concurrently, skipping", customer.customer_id,
            extra={"customer_id": customer.customer_id},
        )
        return "skipped"

    logger.info(
        "Customer %s saved", customer.customer_id,
        extra={"customer_id": customer.customer_id},
    )
    return "created"


async def handle_order_message(store: RecordStore, fields: dict[str, str]) -> str:
    """
    Persist a CREATE_ORDER entry and update the customer's aggregates.
    Returns 'created', 'created_without_customer' or 'skipped'.
    """
    order = decode_stream_message(fields, CREATE_ORDER, OrderCreate)

    try:
        customer_updated = await store.record_order(order.model_dump())
    except ConflictError:
        logger.info(
            "Order %s already stored, skipping", order.order_id,
            extra={"order_id": order.order_id},
        )
        return "skipped"

    if not customer_updated:
        logger.warning(
            "Order %s saved but customer %s not found - aggregates not updated",
            order.order_id, order.customer_id,
            extra={"order_id": order.order_id, "customer_id": order.customer_id},
        )
        return "created_without_customer"

    logger.info(
        "Order %s processed (customer %s +%.2f)",
        order.order_id, order.customer_id, order.amount,
        extra={"order_id": order.order_id, "customer_id": order.customer_id},
    )
    return "created"
