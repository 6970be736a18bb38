"""
Record store - the narrow set of reads and writes the pipeline performs
against customers, orders, segments, campaigns and communication logs.

Every method opens its own session and commits before returning, so no
caller holds ORM objects attached to a live session. Delivery receipts move
log rows and campaign counters in the same transaction.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import ColumnElement, Text, bindparam, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campaignhub.models.campaign import Campaign, CAMPAIGN_COMPLETED, CAMPAIGN_RUNNING
from campaignhub.models.communication_log import CommunicationLog, LOG_FAILED, LOG_PENDING, LOG_SENT
from campaignhub.models.customer import Customer
from campaignhub.models.order import Order
from campaignhub.models.segment import Segment
from campaignhub.schemas.campaigns import DeliveryReceipt
from campaignhub.utils.errors import ConflictError

logger = logging.getLogger(__name__)


class RecordStore:
    """Async persistence operations over the SQLAlchemy models."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # === CUSTOMERS ===

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Customer).where(Customer.customer_id == customer_id)
            )
            return result.scalar_one_or_none()

    async def insert_customer(self, values: dict[str, Any]) -> Customer:
        """Insert a customer. Raises ConflictError if customer_id is taken."""
        customer = Customer(**values)
        async with self._session_factory() as db:
            db.add(customer)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise ConflictError(f"Customer {values.get('customer_id')} already exists") from e
        return customer

    async def find_customers(
        self,
        predicate: ColumnElement[bool],
        limit: Optional[int] = None,
    ) -> Sequence[Customer]:
        async with self._session_factory() as db:
            query = select(Customer).where(predicate).order_by(Customer.created_at)
            if limit is not None:
                query = query.limit(limit)
            result = await db.execute(query)
            return result.scalars().all()

    async def count_customers(self, predicate: ColumnElement[bool]) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count()).select_from(Customer).where(predicate)
            )
            return result.scalar() or 0

    async def list_customers(self, offset: int = 0, limit: int = 50) -> Sequence[Customer]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Customer).order_by(Customer.created_at.desc()).offset(offset).limit(limit)
            )
            return result.scalars().all()

    # === ORDERS ===

    async def record_order(self, values: dict[str, Any]) -> bool:
        """
        Insert an order and fold it into its customer's aggregates
        (total_spent += amount, total_orders += 1, last_order_date = order_date)
        in one transaction. The aggregate UPDATE is atomic in the database and
        simply matches nothing when the customer does not exist yet.

        Returns True if a customer was updated.
        Raises ConflictError if order_id is already stored (nothing applied).
        """
        order = Order(**values)
        async with self._session_factory() as db:
            db.add(order)
            try:
                await db.flush()
            except IntegrityError as e:
                await db.rollback()
                raise ConflictError(f"Order {values.get('order_id')} already exists") from e

            result = await db.execute(
                update(Customer)
                .where(Customer.customer_id == order.customer_id)
                .values(
                    total_spent=Customer.total_spent + order.amount,
                    total_orders=Customer.total_orders + 1,
                    last_order_date=order.order_date,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return (result.rowcount or 0) > 0

    async def list_orders(self, offset: int = 0, limit: int = 50) -> Sequence[Order]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Order).order_by(Order.created_at.desc()).offset(offset).limit(limit)
            )
            return result.scalars().all()

    # === SEGMENTS ===

    async def get_segment(self, segment_id: str) -> Optional[Segment]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Segment).where(Segment.segment_id == segment_id)
            )
            return result.scalar_one_or_none()

    async def get_segment_names(self, segment_ids: set[str]) -> dict[str, str]:
        if not segment_ids:
            return {}
        async with self._session_factory() as db:
            result = await db.execute(
                select(Segment.segment_id, Segment.name).where(Segment.segment_id.in_(segment_ids))
            )
            return {segment_id: name for segment_id, name in result.all()}

    async def insert_segment(self, values: dict[str, Any]) -> Segment:
        """Insert a segment snapshot. Raises ConflictError if segment_id is taken."""
        segment = Segment(**values)
        async with self._session_factory() as db:
            db.add(segment)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise ConflictError(f"Segment {values.get('segment_id')} already exists") from e
        return segment

    async def list_segments(self) -> Sequence[Segment]:
        async with self._session_factory() as db:
            result = await db.execute(select(Segment).order_by(Segment.created_at.desc()))
            return result.scalars().all()

    # === CAMPAIGNS ===

    async def insert_campaign(
        self,
        values: dict[str, Any],
        log_values: list[dict[str, Any]],
    ) -> tuple[Campaign, list[CommunicationLog]]:
        """Persist a campaign and its PENDING logs in one transaction."""
        campaign = Campaign(**values)
        logs = [CommunicationLog(**lv) for lv in log_values]
        async with self._session_factory() as db:
            db.add(campaign)
            db.add_all(logs)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise ConflictError(f"Campaign {values.get('campaign_id')} already exists") from e
        return campaign, logs

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Campaign).where(Campaign.campaign_id == campaign_id)
            )
            return result.scalar_one_or_none()

    async def list_campaigns(self) -> Sequence[Campaign]:
        async with self._session_factory() as db:
            result = await db.execute(select(Campaign).order_by(Campaign.created_at.desc()))
            return result.scalars().all()

    async def complete_campaign(self, campaign_id: str) -> bool:
        """
        RUNNING -> COMPLETED, guarded in the WHERE clause so that only one
        caller ever performs the transition. Returns True if this call did.
        """
        now = datetime.now(timezone.utc)
        async with self._session_factory() as db:
            result = await db.execute(
                update(Campaign)
                .where(
                    Campaign.campaign_id == campaign_id,
                    Campaign.status == CAMPAIGN_RUNNING,
                    Campaign.pending_count <= 0,
                )
                .values(status=CAMPAIGN_COMPLETED, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return (result.rowcount or 0) == 1

    # === COMMUNICATION LOGS ===

    async def pending_logs(self, campaign_id: str) -> Sequence[CommunicationLog]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(CommunicationLog)
                .where(
                    CommunicationLog.campaign_id == campaign_id,
                    CommunicationLog.status == LOG_PENDING,
                )
                .order_by(CommunicationLog.created_at)
            )
            return result.scalars().all()

    async def get_log(self, log_id: uuid.UUID) -> Optional[CommunicationLog]:
        async with self._session_factory() as db:
            return await db.get(CommunicationLog, log_id)

    async def list_logs(
        self,
        campaign_id: str,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[CommunicationLog], int]:
        filters = [CommunicationLog.campaign_id == campaign_id]
        if status:
            filters.append(CommunicationLog.status == status)

        async with self._session_factory() as db:
            total_result = await db.execute(
                select(func.count()).select_from(CommunicationLog).where(*filters)
            )
            result = await db.execute(
                select(CommunicationLog)
                .where(*filters)
                .order_by(CommunicationLog.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return result.scalars().all(), total_result.scalar() or 0

    async def apply_receipts(self, receipts: Sequence[DeliveryReceipt]) -> dict[str, int]:
        """
        Apply delivery outcomes and move campaign counters in one transaction.

        Only a PENDING log belonging to the receipt's campaign changes, so a
        replayed receipt or an unknown message id moves no counter. Counters
        move by the SENT/FAILED totals of the rows that changed.
        failure_reason is only overwritten when the receipt carries one.

        Returns campaign_id -> pending_count after the update for every
        campaign the receipts name that exists.
        """
        if not receipts:
            return {}
        by_id = {receipt.message_id: receipt for receipt in receipts}
        table = CommunicationLog.__table__

        async with self._session_factory() as db:
            result = await db.execute(
                select(table.c.id, table.c.campaign_id)
                .where(table.c.id.in_(list(by_id)), table.c.status == LOG_PENDING)
                .with_for_update()
            )
            applied = [
                by_id[log_id]
                for log_id, campaign_id in result.all()
                if by_id[log_id].campaign_id == campaign_id
            ]
            if applied:
                await db.execute(_log_outcome_stmt(table), _log_outcome_rows(applied))

            tally = tally_by_campaign(applied)
            pending_by_campaign: dict[str, int] = {}
            for campaign_id in dict.fromkeys(r.campaign_id for r in receipts):
                sent, failed = tally.get(campaign_id, (0, 0))
                if sent or failed:
                    stmt = (
                        update(Campaign)
                        .where(Campaign.campaign_id == campaign_id)
                        .values(
                            sent_count=Campaign.sent_count + sent,
                            failed_count=Campaign.failed_count + failed,
                            pending_count=Campaign.pending_count - (sent + failed),
                            updated_at=datetime.now(timezone.utc),
                        )
                        .returning(Campaign.pending_count)
                        .execution_options(synchronize_session=False)
                    )
                else:
                    stmt = select(Campaign.pending_count).where(Campaign.campaign_id == campaign_id)
                pending = (await db.execute(stmt)).scalar_one_or_none()
                if pending is not None:
                    pending_by_campaign[campaign_id] = pending

            await db.commit()

        skipped = len(receipts) - len(applied)
        if skipped:
            logger.warning("%d delivery receipts matched no pending log", skipped)
        return pending_by_campaign


def tally_by_campaign(receipts: Sequence[DeliveryReceipt]) -> dict[str, tuple[int, int]]:
    """campaign_id -> (sent, failed)."""
    tally: dict[str, tuple[int, int]] = {}
    for receipt in receipts:
        sent, failed = tally.get(receipt.campaign_id, (0, 0))
        if receipt.status == LOG_SENT:
            sent += 1
        elif receipt.status == LOG_FAILED:
            failed += 1
        tally[receipt.campaign_id] = (sent, failed)
    return tally


def _log_outcome_stmt(table):
    return (
        update(table)
        .where(table.c.id == bindparam("b_id"), table.c.status == LOG_PENDING)
        .values(
            status=bindparam("b_status"),
            vendor_message_id=bindparam("b_vendor_message_id"),
            delivery_timestamp=bindparam("b_delivery_timestamp"),
            failure_reason=func.coalesce(bindparam("b_failure_reason", type_=Text), table.c.failure_reason),
            updated_at=bindparam("b_updated_at"),
        )
    )


def _log_outcome_rows(receipts: Sequence[DeliveryReceipt]) -> list[dict[str, Any]]:
    now = datetime.now(timezone.utc)
    return [
        {
            "b_id": receipt.message_id,
            "b_status": receipt.status,
            "b_vendor_message_id": receipt.vendor_message_id,
            "b_delivery_timestamp": receipt.delivery_timestamp,
            "b_failure_reason": receipt.failure_reason or None,
            "b_updated_at": now,
        }
        for receipt in receipts
    ]
