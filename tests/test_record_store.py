"""
Tests for campaignhub/services/record_store.py - persistence against SQLite.
"""
import uuid
from datetime import datetime, timezone

import pytest

from campaignhub.models.campaign import CAMPAIGN_COMPLETED, CAMPAIGN_RUNNING
from campaignhub.models.communication_log import LOG_FAILED, LOG_PENDING, LOG_SENT
from campaignhub.schemas.campaigns import DeliveryReceipt
from campaignhub.services.rule_engine import compile_rules
from campaignhub.utils.errors import ConflictError


def _order_values(order_id="ORD-1", customer_id="CUST-001", amount=150.0, **overrides):
    values = {
        "order_id": order_id,
        "customer_id": customer_id,
        "amount": amount,
        "items": [{"sku": "SKU-1", "name": "Kurta", "quantity": 1, "price": amount}],
        "order_date": datetime(2025, 2, 10, tzinfo=timezone.utc),
        "status": "pending",
    }
    values.update(overrides)
    return values


async def _make_campaign(store, campaign_id="camp-1", audience=2):
    campaign_values = {
        "campaign_id": campaign_id,
        "name": "Diwali",
        "segment_id": "seg-1",
        "message_template": "Hi {{name}}",
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
            "customer_id": f"CUST-{i}",
            "customer_name": f"Customer {i}",
            "customer_email": f"c{i}@example.com",
            "message": f"Hi Customer {i}",
            "status": LOG_PENDING,
        }
        for i in range(audience)
    ]
    return await store.insert_campaign(campaign_values, log_values)


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


class TestCustomers:
    async def test_insert_and_get(self, store, customer_values):
        await store.insert_customer(customer_values())
        customer = await store.get_customer("CUST-001")
        assert customer is not None
        assert customer.total_spent == 0.0
        assert customer.total_orders == 0

    async def test_get_missing_returns_none(self, store):
        assert await store.get_customer("nope") is None

    async def test_duplicate_raises_conflict(self, store, customer_values):
        await store.insert_customer(customer_values())
        with pytest.raises(ConflictError):
            await store.insert_customer(customer_values())

    async def test_count_and_find_with_predicate(self, store, customer_values):
        await store.insert_customer(customer_values("A", total_spent=100.0))
        await store.insert_customer(customer_values("B", total_spent=9000.0))
        predicate = compile_rules([{"id": "r", "field": "total_spent", "operator": ">", "value": 5000}])

        assert await store.count_customers(predicate) == 1
        found = await store.find_customers(predicate)
        assert [c.customer_id for c in found] == ["B"]

    async def test_list_customers_paged(self, store, customer_values):
        for i in range(3):
            await store.insert_customer(customer_values(f"P{i}"))
        assert len(await store.list_customers(offset=0, limit=2)) == 2
        assert len(await store.list_customers(offset=2, limit=2)) == 1


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class TestRecordOrder:
    async def test_updates_customer_aggregates(self, store, customer_values):
        await store.insert_customer(customer_values(total_spent=1000.0, total_orders=2))

        updated = await store.record_order(_order_values(amount=150.0))

        assert updated is True
        customer = await store.get_customer("CUST-001")
        assert customer.total_spent == 1150.0
        assert customer.total_orders == 3
        assert customer.last_order_date is not None
        assert customer.last_order_date.replace(tzinfo=timezone.utc) == datetime(
            2025, 2, 10, tzinfo=timezone.utc
        )

    async def test_missing_customer_still_stores_order(self, store):
        updated = await store.record_order(_order_values(customer_id="GHOST"))
        assert updated is False
        orders = await store.list_orders()
        assert [o.order_id for o in orders] == ["ORD-1"]

    async def test_duplicate_order_changes_nothing(self, store, customer_values):
        await store.insert_customer(customer_values())
        await store.record_order(_order_values(amount=200.0))

        with pytest.raises(ConflictError):
            await store.record_order(_order_values(amount=200.0))

        customer = await store.get_customer("CUST-001")
        assert customer.total_spent == 200.0
        assert customer.total_orders == 1


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------


class TestSegments:
    async def test_insert_get_and_names(self, store):
        await store.insert_segment({
            "segment_id": "seg-1", "name": "Big spenders",
            "rules": [{"id": "r", "field": "total_spent", "operator": ">", "value": 5000}],
            "audience_size": 4,
        })
        segment = await store.get_segment("seg-1")
        assert segment.rules[0]["operator"] == ">"
        assert await store.get_segment_names({"seg-1", "missing"}) == {"seg-1": "Big spenders"}
        assert await store.get_segment_names(set()) == {}

    async def test_duplicate_segment_id(self, store):
        await store.insert_segment({"segment_id": "seg-1", "name": "A", "rules": []})
        with pytest.raises(ConflictError):
            await store.insert_segment({"segment_id": "seg-1", "name": "B", "rules": []})


# ---------------------------------------------------------------------------
# Campaigns and logs
# ---------------------------------------------------------------------------


class TestCampaignCounters:
    async def test_insert_campaign_with_logs(self, store):
        campaign, logs = await _make_campaign(store, audience=3)
        assert campaign.pending_count == 3
        assert len(logs) == 3
        assert len(await store.pending_logs("camp-1")) == 3

    async def test_apply_receipts_returns_pending(self, store):
        _, logs = await _make_campaign(store, audience=3)
        now = datetime.now(timezone.utc)
        pending = await store.apply_receipts([
            DeliveryReceipt(message_id=logs[0].id, campaign_id="camp-1", status=LOG_SENT, delivery_timestamp=now),
            DeliveryReceipt(message_id=logs[1].id, campaign_id="camp-1", status=LOG_FAILED, delivery_timestamp=now),
        ])
        assert pending == {"camp-1": 1}

        campaign = await store.get_campaign("camp-1")
        assert campaign.sent_count == 1
        assert campaign.failed_count == 1
        assert campaign.sent_count + campaign.failed_count + campaign.pending_count == campaign.total_audience

    async def test_apply_receipts_unknown_campaign(self, store):
        receipt = DeliveryReceipt(
            message_id=uuid.uuid4(), campaign_id="missing", status=LOG_SENT,
            delivery_timestamp=datetime.now(timezone.utc),
        )
        assert await store.apply_receipts([receipt]) == {}

    async def test_complete_campaign_only_once(self, store):
        _, logs = await _make_campaign(store, audience=1)
        await store.apply_receipts([
            DeliveryReceipt(
                message_id=logs[0].id, campaign_id="camp-1", status=LOG_SENT,
                delivery_timestamp=datetime.now(timezone.utc),
            ),
        ])

        assert await store.complete_campaign("camp-1") is True
        assert await store.complete_campaign("camp-1") is False

        campaign = await store.get_campaign("camp-1")
        assert campaign.status == CAMPAIGN_COMPLETED
        assert campaign.completed_at is not None

    async def test_complete_campaign_requires_zero_pending(self, store):
        await _make_campaign(store, audience=2)
        assert await store.complete_campaign("camp-1") is False


class TestApplyReceipts:
    async def test_applies_outcomes(self, store):
        _, logs = await _make_campaign(store, audience=2)
        now = datetime.now(timezone.utc)

        await store.apply_receipts([
            DeliveryReceipt(
                message_id=logs[0].id, campaign_id="camp-1", status=LOG_SENT,
                vendor_message_id="vendor_1", delivery_timestamp=now,
            ),
            DeliveryReceipt(
                message_id=logs[1].id, campaign_id="camp-1", status=LOG_FAILED,
                failure_reason="Network timeout", delivery_timestamp=now,
            ),
        ])

        sent = await store.get_log(logs[0].id)
        failed = await store.get_log(logs[1].id)
        assert sent.status == LOG_SENT
        assert sent.vendor_message_id == "vendor_1"
        assert sent.failure_reason is None
        assert failed.status == LOG_FAILED
        assert failed.failure_reason == "Network timeout"

    async def test_unknown_message_id_ignored(self, store):
        _, logs = await _make_campaign(store, audience=1)
        pending = await store.apply_receipts([
            DeliveryReceipt(
                message_id=uuid.uuid4(), campaign_id="camp-1", status=LOG_SENT,
                delivery_timestamp=datetime.now(timezone.utc),
            ),
        ])
        assert pending == {"camp-1": 1}
        log = await store.get_log(logs[0].id)
        assert log.status == LOG_PENDING
        assert (await store.get_campaign("camp-1")).sent_count == 0

    async def test_empty_batch_is_noop(self, store):
        assert await store.apply_receipts([]) == {}

    async def test_only_pending_logs_change(self, store):
        _, logs = await _make_campaign(store, audience=2)
        now = datetime.now(timezone.utc)
        sent = DeliveryReceipt(message_id=logs[0].id, campaign_id="camp-1", status=LOG_SENT, delivery_timestamp=now)
        assert await store.apply_receipts([sent]) == {"camp-1": 1}

        replay = DeliveryReceipt(
            message_id=logs[0].id, campaign_id="camp-1", status=LOG_FAILED,
            failure_reason="late bounce", delivery_timestamp=now,
        )
        assert await store.apply_receipts([replay]) == {"camp-1": 1}

        log = await store.get_log(logs[0].id)
        assert log.status == LOG_SENT
        campaign = await store.get_campaign("camp-1")
        assert (campaign.sent_count, campaign.failed_count, campaign.pending_count) == (1, 0, 1)

    async def test_list_logs_filters_and_counts(self, store):
        _, logs = await _make_campaign(store, audience=3)
        await store.apply_receipts([
            DeliveryReceipt(
                message_id=logs[0].id, campaign_id="camp-1", status=LOG_SENT,
                delivery_timestamp=datetime.now(timezone.utc),
            ),
        ])

        page, total = await store.list_logs("camp-1", status=LOG_PENDING, offset=0, limit=1)
        assert total == 2
        assert len(page) == 1

        page, total = await store.list_logs("camp-1")
        assert total == 3
