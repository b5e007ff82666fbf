"""Tests for the reconciling fetch coordinator."""

from __future__ import annotations

import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from storefront_sync.database.repository import MemoryKeyValueStore
from storefront_sync.exceptions import (
    AuthenticationFailedError,
    OrderConflictError,
    StorefrontAPIError,
)
from storefront_sync.models.entities import Identity, Order, OrderAction, OrderBucket
from storefront_sync.services.client_api import StorefrontAPI
from storefront_sync.services.collection_cache import CollectionCache
from storefront_sync.services.coordinator import SyncCoordinator
from storefront_sync.services.session_cache import SessionCache
from storefront_sync.services.state import FetchStatus

RAJ_JSON = json.dumps({"id": 7, "name": "Raj"})
ASHA_SNAPSHOT = json.dumps([{"location_id": 1, "customer_name": "Asha", "due_amount": 50}])


def order(order_id: int, status: str, **extra) -> dict:
    return {"id": order_id, "total_price": 80, "customer_name": "Asha", "order_status": status, **extra}


def build(store: MemoryKeyValueStore, api: AsyncMock, **kwargs) -> SyncCoordinator:
    collection_cache = CollectionCache(store)
    session_cache = SessionCache(store, collection_cache)
    kwargs.setdefault("refresh_delay", 0)
    return SyncCoordinator(api, session_cache, collection_cache, **kwargs)


@pytest.fixture
def api():
    return AsyncMock(spec=StorefrontAPI)


@pytest.fixture
def store():
    return MemoryKeyValueStore({"session": RAJ_JSON, "customersSnapshot": ASHA_SNAPSHOT})


async def load_buckets(coordinator: SyncCoordinator, api: AsyncMock, payloads: dict) -> None:
    async def fetch_bucket(supplier, bucket):
        return payloads[bucket]

    api.fetch_bucket.side_effect = fetch_bucket
    await coordinator.refresh_orders()


# ──────────────────────────────────────────────────────────
# Restore, then reconcile (cold start walk-through)
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_restore_then_fetch_replaces_snapshot(store, api):
    coordinator = build(store, api)

    identity = await coordinator.restore()

    assert identity.name == "Raj"
    assert coordinator.customers.status is FetchStatus.OPTIMISTIC
    [asha] = coordinator.customers.records
    assert (asha.customer_name, asha.due_amount) == ("Asha", 50.0)
    assert api.method_calls == []

    api.fetch_customers.return_value = [
        {"customer_name": "Asha", "due_amount": 0},
        {"customer_name": "Vik", "due_amount": 20},
    ]
    assert await coordinator.refresh_customers() is True

    api.fetch_customers.assert_awaited_once_with(7)
    records = coordinator.customers.records
    assert [r.customer_name for r in records] == ["Asha", "Vik"]
    assert records[0].due_amount == 0.0
    assert coordinator.customers.status is FetchStatus.RECONCILED
    stored = json.loads(await store.get("customersSnapshot"))
    assert len(stored) == 2
    assert stored[0]["due_amount"] == 0.0


@pytest.mark.asyncio
async def test_failed_fetch_keeps_optimistic_data(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_customers.side_effect = StorefrontAPIError(500, "boom")

    assert await coordinator.refresh_customers() is False

    assert coordinator.customers.status is FetchStatus.FETCH_FAILED
    assert [r.customer_name for r in coordinator.customers.records] == ["Asha"]
    assert coordinator.customers.error is None
    assert await store.get("customersSnapshot") == ASHA_SNAPSHOT


@pytest.mark.asyncio
async def test_failed_fetch_without_data_surfaces_error(api):
    coordinator = build(MemoryKeyValueStore({"session": RAJ_JSON}), api)
    await coordinator.restore()
    api.fetch_customers.side_effect = StorefrontAPIError(None, "Could not reach the server")

    await coordinator.refresh_customers()

    assert coordinator.customers.records == []
    assert coordinator.customers.error == "Could not reach the server"


@pytest.mark.asyncio
async def test_fetch_without_session_sends_nothing(api):
    coordinator = build(MemoryKeyValueStore(), api)
    await coordinator.restore()

    assert await coordinator.refresh_customers() is False
    await coordinator.on_focus()

    assert api.method_calls == []


@pytest.mark.asyncio
async def test_state_changes_are_notified(store, api):
    coordinator = build(store, api)
    seen = []
    unsubscribe = coordinator.customers.subscribe(lambda: seen.append(coordinator.customers.status))

    await coordinator.restore()
    api.fetch_customers.return_value = []
    await coordinator.refresh_customers()
    unsubscribe()
    await coordinator.refresh_customers()

    assert seen == [
        FetchStatus.RESTORING,
        FetchStatus.OPTIMISTIC,
        FetchStatus.FETCHING,
        FetchStatus.RECONCILED,
    ]


# ──────────────────────────────────────────────────────────
# Order buckets
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_one_bucket_failing_leaves_the_others(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    await load_buckets(
        coordinator,
        api,
        {
            OrderBucket.PENDING: [order(1, "pending")],
            OrderBucket.ACCEPTED: [order(2, "accepted")],
            OrderBucket.COMPLETED: [],
        },
    )

    async def fetch_bucket(supplier, bucket):
        if bucket is OrderBucket.ACCEPTED:
            raise StorefrontAPIError(503, "accepted orders unavailable")
        if bucket is OrderBucket.PENDING:
            return [order(3, "pending")]
        return {"orders": [order(4, "completed")]}

    api.fetch_bucket.side_effect = fetch_bucket
    outcome = await coordinator.refresh_orders()

    assert outcome == {
        OrderBucket.PENDING: True,
        OrderBucket.ACCEPTED: False,
        OrderBucket.COMPLETED: True,
    }
    assert [o.id for o in coordinator.orders.records(OrderBucket.PENDING)] == [3]
    assert [o.id for o in coordinator.orders.records(OrderBucket.ACCEPTED)] == [2]
    assert [o.id for o in coordinator.orders.records(OrderBucket.COMPLETED)] == [4]
    assert coordinator.orders[OrderBucket.ACCEPTED].status is FetchStatus.FETCH_FAILED
    assert coordinator.orders[OrderBucket.ACCEPTED].error is None


@pytest.mark.asyncio
async def test_empty_failed_bucket_reports_error(store, api):
    coordinator = build(store, api)
    await coordinator.restore()

    async def fetch_bucket(supplier, bucket):
        if bucket is OrderBucket.COMPLETED:
            raise StorefrontAPIError(500, "completed orders unavailable")
        return []

    api.fetch_bucket.side_effect = fetch_bucket
    await coordinator.refresh_orders()

    assert coordinator.orders[OrderBucket.COMPLETED].error == "completed orders unavailable"
    assert coordinator.orders[OrderBucket.PENDING].error is None


@pytest.mark.asyncio
async def test_unrepresentable_numbers_do_not_abort_refresh(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    accepted = json.loads('[{"id": 2, "total_price": 1e999, "quantity": 1e999, "order_status": "accepted"}]')

    await load_buckets(
        coordinator,
        api,
        {
            OrderBucket.PENDING: [order(1, "pending", quantity="inf")],
            OrderBucket.ACCEPTED: accepted,
            OrderBucket.COMPLETED: [],
        },
    )

    [pending] = coordinator.orders.records(OrderBucket.PENDING)
    [taken] = coordinator.orders.records(OrderBucket.ACCEPTED)
    assert pending.quantity == 0
    assert (taken.quantity, taken.total_price) == (0, 0.0)
    assert coordinator.orders[OrderBucket.ACCEPTED].status is FetchStatus.RECONCILED


@pytest.mark.asyncio
async def test_order_supplier_is_used_for_mutation(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    await load_buckets(
        coordinator,
        api,
        {
            OrderBucket.PENDING: [order(5, "pending", supplier_id=42)],
            OrderBucket.ACCEPTED: [],
            OrderBucket.COMPLETED: [],
        },
    )
    api.mutate_order.return_value = {"success": True}

    result = await coordinator.accept_order(5)
    await coordinator.drain()

    assert result.ok
    api.mutate_order.assert_awaited_once_with(5, 42, None, OrderAction.ACCEPT, {})
    assert result.order.order_status == "accepted"


@pytest.mark.asyncio
async def test_accept_moves_order_then_refetches(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    payloads = {
        OrderBucket.PENDING: [order(5, "pending")],
        OrderBucket.ACCEPTED: [],
        OrderBucket.COMPLETED: [],
    }
    await load_buckets(coordinator, api, payloads)
    api.mutate_order.return_value = {"success": True}
    # Server state after the write
    payloads[OrderBucket.PENDING] = []
    payloads[OrderBucket.ACCEPTED] = [order(5, "accepted", bill_status="unpaid")]

    result = await coordinator.accept_order(5)

    assert result.ok
    assert coordinator.orders.records(OrderBucket.PENDING) == []
    assert [o.id for o in coordinator.orders.records(OrderBucket.ACCEPTED)] == [5]
    api.mutate_order.assert_awaited_once_with(5, 7, None, OrderAction.ACCEPT, {})

    await coordinator.drain()
    assert api.fetch_bucket.await_count == 6
    [accepted] = coordinator.orders.records(OrderBucket.ACCEPTED)
    assert accepted.bill_status == "unpaid"


@pytest.mark.asyncio
async def test_conflict_triggers_immediate_refetch(store, api):
    coordinator = build(store, api, refresh_delay=60)
    await coordinator.restore()
    payloads = {
        OrderBucket.PENDING: [order(5, "pending")],
        OrderBucket.ACCEPTED: [],
        OrderBucket.COMPLETED: [],
    }
    await load_buckets(coordinator, api, payloads)
    api.mutate_order.side_effect = OrderConflictError(409, "Order 5 is already accepted")
    payloads[OrderBucket.PENDING] = []
    payloads[OrderBucket.ACCEPTED] = [order(5, "accepted", delivery_person_name="Ravi")]

    result = await coordinator.accept_order(5)

    assert not result.ok
    assert result.conflict
    assert api.fetch_bucket.await_count == 6
    [accepted] = coordinator.orders.records(OrderBucket.ACCEPTED)
    assert accepted.delivery_person_name == "Ravi"


@pytest.mark.asyncio
async def test_order_in_wrong_bucket_is_not_sent(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    await load_buckets(
        coordinator,
        api,
        {
            OrderBucket.PENDING: [order(5, "pending")],
            OrderBucket.ACCEPTED: [],
            OrderBucket.COMPLETED: [],
        },
    )

    result = await coordinator.complete_order(5)
    missing = await coordinator.accept_order(999)

    assert not result.ok and "pending" in result.error
    assert not missing.ok
    api.mutate_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_unresolvable_order_is_abandoned_locally(api):
    coordinator = build(MemoryKeyValueStore(), api)
    await coordinator.restore()
    # An order that carries no supplier while nobody is signed in
    coordinator.orders.replace(OrderBucket.PENDING, [Order(id=8, order_status="pending")])

    result = await coordinator.accept_order(8)

    assert not result.ok
    assert "no supplier" in result.error
    api.mutate_order.assert_not_awaited()
    assert [o.id for o in coordinator.orders.records(OrderBucket.PENDING)] == [8]


# ──────────────────────────────────────────────────────────
# Overlapping fetches
# ──────────────────────────────────────────────────────────
async def overlapping_fetches(coordinator: SyncCoordinator, api: AsyncMock) -> None:
    release_slow = asyncio.Event()
    calls = 0

    async def fetch_customers(supplier_id):
        nonlocal calls
        calls += 1
        if calls == 1:
            await release_slow.wait()
            return [{"customer_name": "Old"}]
        return [{"customer_name": "New"}]

    api.fetch_customers.side_effect = fetch_customers
    slow = asyncio.create_task(coordinator.refresh_customers())
    await asyncio.sleep(0)
    await coordinator.refresh_customers()
    release_slow.set()
    await slow


@pytest.mark.asyncio
async def test_last_response_to_settle_wins(store, api):
    coordinator = build(store, api, discard_stale=False)
    await coordinator.restore()

    await overlapping_fetches(coordinator, api)

    assert [r.customer_name for r in coordinator.customers.records] == ["Old"]


@pytest.mark.asyncio
async def test_stale_responses_can_be_discarded(store, api):
    coordinator = build(store, api, discard_stale=True)
    await coordinator.restore()

    await overlapping_fetches(coordinator, api)

    assert [r.customer_name for r in coordinator.customers.records] == ["New"]
    assert json.loads(await store.get("customersSnapshot"))[0]["customer_name"] == "New"


@pytest.mark.asyncio
async def test_logout_during_fetch_keeps_snapshot_gone(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    release = asyncio.Event()

    async def fetch_customers(supplier_id):
        await release.wait()
        return [{"customer_name": "Asha", "due_amount": 10}]

    api.fetch_customers.side_effect = fetch_customers
    pending = asyncio.create_task(coordinator.refresh_customers())
    await asyncio.sleep(0)
    await coordinator.logout()
    release.set()

    assert await pending is False
    assert coordinator.customers.records == []
    assert await store.get("customersSnapshot") is None
    assert await store.get("session") is None


class SlowWriteStore(MemoryKeyValueStore):
    """Holds every write until ``release`` is set."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.writing = asyncio.Event()
        self.release = asyncio.Event()

    async def set(self, key, value):
        self.writing.set()
        await self.release.wait()
        await super().set(key, value)


@pytest.mark.asyncio
async def test_logout_during_session_save_stays_logged_out(api):
    store = SlowWriteStore({"session": RAJ_JSON})
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_session.return_value = {"id": 7, "name": "Raj", "brand_name": "AquaPure"}

    pending = asyncio.create_task(coordinator.refresh_session())
    await store.writing.wait()
    await coordinator.logout()
    store.release.set()

    assert await pending is None
    assert coordinator.session.identity is None
    assert await store.get("session") is None


@pytest.mark.asyncio
async def test_logout_during_snapshot_save_leaves_no_snapshot(api):
    store = SlowWriteStore({"session": RAJ_JSON, "customersSnapshot": ASHA_SNAPSHOT})
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_customers.return_value = [{"customer_name": "Asha", "due_amount": 5}]

    pending = asyncio.create_task(coordinator.refresh_customers())
    await store.writing.wait()
    await coordinator.logout()
    store.release.set()

    assert await pending is False
    assert coordinator.customers.records == []
    assert await store.get("customersSnapshot") is None
    assert await store.get("session") is None
    assert await coordinator.restore() is None


@pytest.mark.asyncio
async def test_sign_in_during_snapshot_save_keeps_new_session(api):
    store = SlowWriteStore({"session": RAJ_JSON})
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_customers.return_value = [{"customer_name": "Asha"}]

    pending = asyncio.create_task(coordinator.refresh_customers())
    await store.writing.wait()
    signing_in = asyncio.create_task(
        coordinator.establish_session(Identity(id=8, name="Meera"), token="t8")
    )
    await asyncio.sleep(0)
    store.release.set()

    assert await pending is False
    assert await signing_in is True
    assert await store.get("customersSnapshot") is None
    assert json.loads(await store.get("session"))["id"] == 8
    assert await store.get("authToken") == "t8"


# ──────────────────────────────────────────────────────────
# Session and customers
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_session_refresh_keeps_known_fields(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_session.return_value = {"id": 7, "name": "Raj", "brand_name": "AquaPure", "phone_no": ""}

    identity = await coordinator.refresh_session()

    assert identity.brand_name == "AquaPure"
    assert json.loads(await store.get("session"))["brand_name"] == "AquaPure"


@pytest.mark.asyncio
async def test_session_for_other_supplier_is_ignored(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_session.return_value = {"id": 8, "name": "Someone else"}

    identity = await coordinator.refresh_session()

    assert identity.id == 7
    assert identity.name == "Raj"


@pytest.mark.asyncio
async def test_auth_failure_logs_out(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_session.side_effect = AuthenticationFailedError(401, "expired")

    await coordinator.on_auth_failure()

    assert not coordinator.session.is_authenticated
    assert await store.get("customersSnapshot") is None
    api.fetch_customers.assert_not_awaited()


@pytest.mark.asyncio
async def test_add_customer_appends_then_refetches(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.create_customer.return_value = {"data": {"location_id": 2, "customer_name": "Vik"}}
    api.fetch_customers.return_value = [
        {"location_id": 1, "customer_name": "Asha"},
        {"location_id": 2, "customer_name": "Vik"},
    ]

    result = await coordinator.add_customer({"customer_name": "Vik", "customer_phone": "9000000002"})

    assert result.ok
    assert [r.customer_name for r in coordinator.customers.records] == ["Asha", "Vik"]
    await coordinator.drain()
    api.fetch_customers.assert_awaited_once_with(7)
    assert coordinator.customers.status is FetchStatus.RECONCILED


@pytest.mark.asyncio
async def test_establish_session_persists_token_and_identity(api):
    store = MemoryKeyValueStore()
    coordinator = build(store, api)
    coordinator.resolver.begin_signup(99)

    await coordinator.establish_session(Identity(id=99, name="Meera"), token="tok")

    assert coordinator.session.identity.name == "Meera"
    assert coordinator.resolver.temporary_id is None
    assert await store.get("authToken") == "tok"
    assert json.loads(await store.get("session"))["id"] == 99


@pytest.mark.asyncio
async def test_update_customer_shows_server_copy_then_refetches(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.update_customer.return_value = {
        "data": {"location_id": 1, "customer_name": "Asha K", "due_amount": 50}
    }
    api.fetch_customers.return_value = [{"location_id": 1, "customer_name": "Asha K"}]

    result = await coordinator.update_customer(1, {"customer_name": "Asha K"})

    assert result.ok
    [asha] = coordinator.customers.records
    assert asha.customer_name == "Asha K"
    api.update_customer.assert_awaited_once_with(1, {"customer_name": "Asha K"})
    await coordinator.drain()
    api.fetch_customers.assert_awaited_once_with(7)


@pytest.mark.asyncio
async def test_failed_update_still_refetches(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.update_customer.side_effect = StorefrontAPIError(404, "Customer not found")
    api.fetch_customers.return_value = []

    result = await coordinator.update_customer(9, {"city": "Pune"})

    assert not result.ok
    assert result.error == "Customer not found"
    await coordinator.drain()
    api.fetch_customers.assert_awaited_once_with(7)


@pytest.mark.asyncio
async def test_customer_details_leave_the_list_alone(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_customer_details.return_value = {
        "location": {"id": 1, "city": "Pune"},
        "customer": {"id": 11, "name": "Asha"},
    }

    detail = await coordinator.fetch_customer_details(1)

    assert detail is not None
    assert detail.location_id == 1
    assert [r.customer_name for r in coordinator.customers.records] == ["Asha"]
    assert await store.get("customersSnapshot") == ASHA_SNAPSHOT


# ──────────────────────────────────────────────────────────
# Payments
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_record_payment_settles_dues_then_refetches(api):
    snapshot = json.dumps(
        [{"location_id": 1, "customer_id": 11, "customer_name": "Asha", "due_amount": 50}]
    )
    coordinator = build(MemoryKeyValueStore({"session": RAJ_JSON, "customersSnapshot": snapshot}), api)
    await coordinator.restore()
    api.create_payment.return_value = {
        "payment": {"id": 9, "amount": 60, "payment_mode": "upi", "status": "completed"},
        "customer": {"id": 11},
    }
    api.fetch_customers.return_value = [
        {"location_id": 1, "customer_id": 11, "customer_name": "Asha", "due_amount": 0, "credit_amount": 10}
    ]
    api.fetch_pending_payments.return_value = {"data": []}

    result = await coordinator.record_payment(11, 60.0, "upi", transaction_id="UPI9")

    assert result.ok
    assert (result.payment.id, result.payment.amount) == (9, 60.0)
    [asha] = coordinator.customers.records
    assert (asha.due_amount, asha.credit_amount) == (0.0, 10.0)
    api.create_payment.assert_awaited_once_with(
        7,
        {"customerId": 11, "amount": 60.0, "paymentMode": "upi", "status": "completed", "transactionId": "UPI9"},
    )
    assert [p.id for p in coordinator.payments.payments] == [9]

    await coordinator.drain()
    api.fetch_customers.assert_awaited_once_with(7)
    api.fetch_pending_payments.assert_awaited_once_with(7)
    assert coordinator.payments.pending == []


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5.0])
async def test_non_positive_payment_is_not_sent(store, api, amount):
    coordinator = build(store, api)
    await coordinator.restore()

    result = await coordinator.record_payment(11, amount)

    assert not result.ok
    api.create_payment.assert_not_awaited()


@pytest.mark.asyncio
async def test_pending_payments_are_normalized(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_pending_payments.return_value = {
        "data": [
            {"payment": {"id": 501, "amount": 50, "status": "pending"}, "customer": {"id": 11}},
            {"id": 502, "customerId": 12, "amount": "35.5", "status": "pending"},
        ]
    }

    assert await coordinator.refresh_pending_payments() is True

    pending = coordinator.payments.pending
    assert [(p.id, p.customer_id, p.amount) for p in pending] == [(501, 11, 50.0), (502, 12, 35.5)]
    assert coordinator.payments.status is FetchStatus.RECONCILED


@pytest.mark.asyncio
async def test_failed_payment_fetch_without_data_surfaces_error(store, api):
    coordinator = build(store, api)
    await coordinator.restore()
    api.fetch_payments.side_effect = StorefrontAPIError(500, "payments unavailable")

    assert await coordinator.refresh_payments() is False

    assert coordinator.payments.status is FetchStatus.FETCH_FAILED
    assert coordinator.payments.error == "payments unavailable"
