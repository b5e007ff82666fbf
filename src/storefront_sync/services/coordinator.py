"""Reconciling fetch coordinator — glues the durable caches to the network.

Lifecycle of the customer collection::

    idle → restoring → optimistic → fetching → reconciled
                                        └────→ fetch_failed (data kept)

Data already on screen is never blanked while a fetch runs.  Fetches for
the same collection may overlap; without ``discard_stale`` the last one to
settle wins, which is safe because every response is a full snapshot.

Every public coroutine here is a catch boundary: API, storage and
resolution errors become state transitions or result objects.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from storefront_sync.config import settings
from storefront_sync.exceptions import (
    AuthenticationFailedError,
    IdentityResolutionError,
    OrderConflictError,
    StorefrontAPIError,
)
from storefront_sync.models.entities import (
    Customer,
    DeliveryPerson,
    Identity,
    Order,
    OrderAction,
    OrderBucket,
    Payment,
)
from storefront_sync.services.client_api import StorefrontAPI
from storefront_sync.services.collection_cache import CollectionCache
from storefront_sync.services.identity import IdentityResolver
from storefront_sync.services.normalizer import (
    normalize_customer,
    normalize_delivery_person,
    normalize_identity,
    normalize_list,
    normalize_order,
    normalize_payment,
    unwrap_entity,
)
from storefront_sync.services.session_cache import SessionCache
from storefront_sync.services.state import (
    CustomerState,
    FetchStatus,
    OrderBuckets,
    PaymentState,
    SessionState,
)

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (SQLAlchemyError, OSError)

CUSTOMERS = "customers"
PAYMENTS = "payments"

_SESSION_CHANGED = "Signed out before the server answered"


@dataclass
class MutationResult:
    """Outcome of a write operation, as shown to the user."""

    ok: bool
    order: Order | None = None
    customer: Customer | None = None
    payment: Payment | None = None
    conflict: bool = False
    error: str | None = None


class SyncCoordinator:
    """Owns the in-memory state holders and keeps them in step with the server."""

    def __init__(
        self,
        api: StorefrontAPI,
        session_cache: SessionCache,
        collection_cache: CollectionCache,
        resolver: IdentityResolver | None = None,
        *,
        refresh_delay: float | None = None,
        discard_stale: bool | None = None,
    ) -> None:
        self._api = api
        self._session_cache = session_cache
        self._collection_cache = collection_cache
        self.resolver = resolver or IdentityResolver()
        self._refresh_delay = (
            settings.refresh_delay_seconds if refresh_delay is None else refresh_delay
        )
        self._discard_stale = (
            settings.discard_stale_responses if discard_stale is None else discard_stale
        )

        self.session = SessionState()
        self.customers = CustomerState()
        self.orders = OrderBuckets()
        self.payments = PaymentState()

        self._issued: dict[str, int] = defaultdict(int)
        self._applied: dict[str, int] = defaultdict(int)
        # Bumped on every sign-in/out so that fetches started under an older
        # session never write into the new one.
        self._epoch = 0
        self._background: set[asyncio.Task[Any]] = set()
        self._token: str | None = None

    # ── Sequencing ───────────────────────────────────────

    def _begin(self, collection: str) -> tuple[int, int]:
        self._issued[collection] += 1
        return self._epoch, self._issued[collection]

    def _should_apply(self, collection: str, ticket: tuple[int, int]) -> bool:
        epoch, sequence = ticket
        if epoch != self._epoch:
            logger.info("Dropping %s response from a previous session", collection)
            return False
        if self._discard_stale:
            if sequence < self._applied[collection]:
                logger.info(
                    "Dropping stale %s response #%d (already applied #%d)",
                    collection,
                    sequence,
                    self._applied[collection],
                )
                return False
            self._applied[collection] = sequence
        return True

    async def _persist(
        self, epoch: int, write: Callable[[], Awaitable[Any]], what: str
    ) -> bool:
        """Run a durable write on behalf of the session current at *epoch*.

        A sign-in or sign-out may land while the write is suspended; the
        cascade has then already run, so the write is rolled back and
        ``False`` returned.  The caller must not touch in-memory state.
        """
        if epoch != self._epoch:
            return False
        try:
            await write()
        except _STORAGE_ERRORS:
            logger.exception("Could not persist %s", what)
        if epoch == self._epoch:
            return True
        logger.info("Session changed while persisting %s, rolling it back", what)
        await self._rewind_storage()
        return False

    async def _rewind_storage(self) -> None:
        """Bring durable storage back in line with the current session."""
        identity = self.session.identity
        try:
            if identity is None:
                await self._session_cache.clear_session()
            else:
                await self._collection_cache.clear_snapshot()
                await self._session_cache.save_session(identity)
                if self._token:
                    await self._session_cache.save_token(self._token)
        except _STORAGE_ERRORS:
            logger.exception("Could not roll back a write from a previous session")

    # ── Session ──────────────────────────────────────────

    async def restore(self) -> Identity | None:
        """Load the last known session and customer snapshot from storage.

        Purely local: no request is made, so the UI can render at once.
        """
        epoch = self._epoch
        self.customers.set_status(FetchStatus.RESTORING)
        try:
            identity = await self._session_cache.restore_session()
            records = await self._collection_cache.restore_snapshot()
        except _STORAGE_ERRORS:
            logger.exception("Durable storage unavailable during restore")
            identity, records = None, []
        if epoch != self._epoch:
            logger.info("Session changed during restore, keeping the newer one")
            return self.session.identity
        self.session.set_identity(identity)
        self.customers.replace(records, FetchStatus.OPTIMISTIC)
        logger.info(
            "Restored %s with %d cached customers",
            f"supplier {identity.id}" if identity else "no session",
            len(records),
        )
        return identity

    async def establish_session(self, identity: Identity, token: str | None = None) -> bool:
        """Adopt a freshly authenticated identity and persist it."""
        if self.session.identity is not None and self.session.identity.id != identity.id:
            await self.logout()
        self._epoch += 1
        epoch = self._epoch
        self.resolver.confirm(identity)
        self._token = token or None
        self.session.set_identity(identity)

        async def write() -> None:
            if token:
                await self._session_cache.save_token(token)
            await self._session_cache.save_session(identity)

        return await self._persist(epoch, write, f"session for supplier {identity.id}")

    async def refresh_session(self) -> Identity | None:
        """Fetch the supplier profile and refresh the stored identity.

        A 401 means the session is gone server-side and logs the user out.
        """
        identity = self.session.identity
        if identity is None:
            return None
        ticket = self._begin("session")
        try:
            payload = await self._api.fetch_session(identity.id)
        except AuthenticationFailedError:
            logger.warning("Session for supplier %s rejected by server", identity.id)
            await self.logout()
            return None
        except StorefrontAPIError as exc:
            logger.warning("Session refresh failed: %s", exc)
            return identity

        fresh = normalize_identity(payload)
        if fresh is None or not self._should_apply("session", ticket):
            return self.session.identity
        if fresh.id != identity.id:
            logger.warning(
                "Server answered with supplier %s for session %s, ignoring",
                fresh.id,
                identity.id,
            )
            return identity

        refreshed = identity.refreshed(fresh)
        saved = await self._persist(
            ticket[0], lambda: self._session_cache.save_session(refreshed), "refreshed session"
        )
        if not saved:
            return None
        self.session.set_identity(refreshed)
        return refreshed

    async def logout(self) -> None:
        """Forget the session, its token and the customer snapshot."""
        self._epoch += 1
        self._token = None
        self.resolver.reset()
        # In-memory state goes first so that a write finishing while the
        # cascade runs rolls back to "no session".
        self.session.set_identity(None)
        self.customers.reset()
        self.orders.reset()
        self.payments.reset()
        try:
            await self._session_cache.clear_session()
        except _STORAGE_ERRORS:
            logger.exception("Could not clear durable session")
        logger.info("Logged out")

    # ── Customers ────────────────────────────────────────

    async def refresh_customers(self) -> bool:
        """Fetch the authoritative customer list and replace the snapshot."""
        try:
            supplier_id = self.resolver.resolve_session_id(self.session.identity)
        except IdentityResolutionError as exc:
            logger.warning("Not fetching customers: %s", exc)
            self.customers.fail(str(exc))
            return False

        ticket = self._begin(CUSTOMERS)
        if self.customers.status is not FetchStatus.FETCHING:
            self.customers.set_status(FetchStatus.FETCHING)

        try:
            payload = await self._api.fetch_customers(supplier_id)
        except StorefrontAPIError as exc:
            logger.warning("Customer fetch failed: %s", exc)
            if self._should_apply(CUSTOMERS, ticket):
                self.customers.fail(exc.message)
            return False

        records = normalize_list(payload, normalize_customer)
        if not self._should_apply(CUSTOMERS, ticket):
            return False

        self.customers.replace(records, FetchStatus.RECONCILED)
        saved = await self._persist(
            ticket[0], lambda: self._collection_cache.save_snapshot(records), "customer snapshot"
        )
        if not saved:
            return False
        logger.info("Customers reconciled (%d records)", len(records))
        return True

    async def add_customer(self, fields: dict[str, Any]) -> MutationResult:
        """Create a customer, append it locally, then refetch the list."""
        try:
            supplier_id = self.resolver.resolve_session_id(self.session.identity)
        except IdentityResolutionError as exc:
            return MutationResult(ok=False, error=str(exc))

        epoch = self._epoch
        try:
            payload = await self._api.create_customer(supplier_id, fields)
        except StorefrontAPIError as exc:
            logger.warning("Adding customer failed: %s", exc)
            return MutationResult(ok=False, error=exc.message)
        if epoch != self._epoch:
            return MutationResult(ok=False, error=_SESSION_CHANGED)

        record = normalize_customer(unwrap_entity(payload, ("data",)))
        if record is not None:
            self.customers.append(record)
        self.schedule_refresh(self.refresh_customers)
        return MutationResult(ok=True, customer=record)

    async def update_customer(self, location_id: int, fields: dict[str, Any]) -> MutationResult:
        """Patch one customer location, show the server's copy, then refetch."""
        try:
            self.resolver.resolve_session_id(self.session.identity)
        except IdentityResolutionError as exc:
            return MutationResult(ok=False, error=str(exc))

        epoch = self._epoch
        try:
            payload = await self._api.update_customer(location_id, fields)
        except StorefrontAPIError as exc:
            logger.warning("Updating customer %s failed: %s", location_id, exc)
            self.schedule_refresh(self.refresh_customers)
            return MutationResult(ok=False, error=exc.message)
        if epoch != self._epoch:
            return MutationResult(ok=False, error=_SESSION_CHANGED)

        record = normalize_customer(unwrap_entity(payload, ("data",)))
        if record is not None and record.location_id:
            self.customers.upsert(record)
        self.schedule_refresh(self.refresh_customers)
        return MutationResult(ok=True, customer=record)

    async def fetch_customer_details(self, location_id: int) -> Customer | None:
        """Fetch one customer location for a detail view.

        The collection and its snapshot are left alone; only a full fetch
        replaces them.
        """
        try:
            payload = await self._api.fetch_customer_details(location_id)
        except StorefrontAPIError as exc:
            logger.warning("Fetching customer %s failed: %s", location_id, exc)
            return None
        return normalize_customer(unwrap_entity(payload, ("data",)))

    # ── Payments ─────────────────────────────────────────

    async def refresh_payments(self) -> bool:
        """Fetch the payment history of the signed-in supplier."""
        return await self._refresh_payment_list(
            PAYMENTS, self._api.fetch_payments, self.payments.replace_payments
        )

    async def refresh_pending_payments(self) -> bool:
        """Fetch the payments customers still owe."""
        return await self._refresh_payment_list(
            f"{PAYMENTS}:pending",
            self._api.fetch_pending_payments,
            self.payments.replace_pending,
        )

    async def _refresh_payment_list(
        self,
        collection: str,
        fetch: Callable[[int], Awaitable[Any]],
        apply: Callable[[list[Payment]], None],
    ) -> bool:
        try:
            supplier_id = self.resolver.resolve_session_id(self.session.identity)
        except IdentityResolutionError as exc:
            logger.warning("Not fetching %s: %s", collection, exc)
            return False

        ticket = self._begin(collection)
        self.payments.set_status(FetchStatus.FETCHING)
        try:
            payload = await fetch(supplier_id)
        except StorefrontAPIError as exc:
            logger.warning("Fetching %s failed: %s", collection, exc)
            if self._should_apply(collection, ticket):
                self.payments.fail(exc.message)
            return False

        records = normalize_list(payload, normalize_payment)
        if not self._should_apply(collection, ticket):
            return False
        apply(records)
        return True

    async def record_payment(
        self,
        customer_id: int,
        amount: float,
        payment_mode: str = "cod",
        *,
        order_id: int | None = None,
        transaction_id: str | None = None,
    ) -> MutationResult:
        """Record a collected payment.

        The payment is appended and the customer's dues are settled locally
        right away; customers and pending payments are refetched after.
        """
        if amount <= 0:
            return MutationResult(ok=False, error="Amount must be positive")
        try:
            supplier_id = self.resolver.resolve_session_id(self.session.identity)
        except IdentityResolutionError as exc:
            return MutationResult(ok=False, error=str(exc))

        fields: dict[str, Any] = {
            "customerId": customer_id,
            "amount": amount,
            "paymentMode": payment_mode,
            "status": "completed",
        }
        if order_id is not None:
            fields["orderId"] = order_id
        if transaction_id:
            fields["transactionId"] = transaction_id

        epoch = self._epoch
        try:
            payload = await self._api.create_payment(supplier_id, fields)
        except StorefrontAPIError as exc:
            logger.warning("Recording payment for customer %s failed: %s", customer_id, exc)
            return MutationResult(ok=False, error=exc.message)
        if epoch != self._epoch:
            return MutationResult(ok=False, error=_SESSION_CHANGED)

        payment = normalize_payment(payload)
        if payment is not None:
            self.payments.append(payment)
        self.customers.apply_payment(customer_id, amount)
        logger.info("Recorded %.2f from customer %s", amount, customer_id)
        self.schedule_refresh(self.refresh_customers)
        self.schedule_refresh(self.refresh_pending_payments)
        return MutationResult(ok=True, payment=payment)

    # ── Orders ───────────────────────────────────────────

    async def refresh_orders(self) -> dict[OrderBucket, bool]:
        """Fetch the three order buckets in parallel.

        A bucket whose request fails keeps what it showed before; the
        other buckets are still updated.
        """
        try:
            supplier_id = self.resolver.resolve_session_id(self.session.identity)
        except IdentityResolutionError as exc:
            logger.warning("Not fetching orders: %s", exc)
            return {bucket: False for bucket in OrderBucket}

        buckets = list(OrderBucket)
        tickets = {bucket: self._begin(f"orders:{bucket.value}") for bucket in buckets}
        self.orders.mark_fetching()

        results = await asyncio.gather(
            *(self._api.fetch_bucket(supplier_id, bucket) for bucket in buckets),
            return_exceptions=True,
        )

        outcome: dict[OrderBucket, bool] = {}
        for bucket, result in zip(buckets, results):
            if not self._should_apply(f"orders:{bucket.value}", tickets[bucket]):
                outcome[bucket] = False
                continue
            if isinstance(result, StorefrontAPIError):
                logger.warning("Fetching %s orders failed: %s", bucket.value, result)
                self.orders.fail(bucket, result.message)
                outcome[bucket] = False
            elif isinstance(result, Exception):
                logger.error("Fetching %s orders crashed", bucket.value, exc_info=result)
                self.orders.fail(bucket, str(result))
                outcome[bucket] = False
            elif isinstance(result, BaseException):
                raise result
            else:
                self.orders.replace(bucket, normalize_list(result, normalize_order))
                outcome[bucket] = True
        self.orders.notify()
        return outcome

    async def accept_order(self, order_id: int, **fields: Any) -> MutationResult:
        return await self._mutate_order(order_id, OrderAction.ACCEPT, fields)

    async def complete_order(self, order_id: int, **fields: Any) -> MutationResult:
        return await self._mutate_order(order_id, OrderAction.COMPLETE, fields)

    async def _mutate_order(
        self, order_id: int, action: OrderAction, fields: dict[str, Any]
    ) -> MutationResult:
        located = self.orders.locate(order_id)
        if located is None:
            return MutationResult(ok=False, error=f"Order {order_id} is not loaded")
        bucket, order = located
        if bucket is not action.source:
            return MutationResult(
                ok=False, order=order, error=f"Order {order_id} is {bucket.value}"
            )

        try:
            ids = self.resolver.resolve_for_order(order, self.session.identity)
        except IdentityResolutionError as exc:
            logger.warning("Not sending %s for order %s: %s", action.value, order_id, exc)
            return MutationResult(ok=False, order=order, error=str(exc))

        epoch = self._epoch
        try:
            await self._api.mutate_order(
                order_id, ids.supplier_id, ids.supplier_code, action, fields
            )
        except OrderConflictError as exc:
            logger.info("Order %s changed on the server, refetching: %s", order_id, exc)
            await self.refresh_orders()
            return MutationResult(ok=False, order=order, conflict=True, error=exc.message)
        except StorefrontAPIError as exc:
            logger.warning("Order %s %s failed: %s", order_id, action.value, exc)
            self.schedule_refresh(self.refresh_orders)
            return MutationResult(ok=False, order=order, error=exc.message)

        if epoch != self._epoch:
            return MutationResult(ok=True, order=order)
        moved = self.orders.move(
            order_id, action.source, action.destination, action.resulting_status
        )
        logger.info(
            "Order %s moved %s → %s", order_id, action.source.value, action.destination.value
        )
        self.schedule_refresh(self.refresh_orders)
        return MutationResult(ok=True, order=moved)

    # ── Delivery staff ───────────────────────────────────

    async def add_delivery_person(self, name: str, phone: str) -> DeliveryPerson | None:
        try:
            supplier_id = self.resolver.resolve_session_id(self.session.identity)
            payload = await self._api.add_delivery_person(supplier_id, name, phone)
        except (IdentityResolutionError, StorefrontAPIError) as exc:
            logger.warning("Adding delivery person failed: %s", exc)
            return None
        return normalize_delivery_person(payload)

    # ── Triggers ─────────────────────────────────────────

    async def on_mount(self) -> None:
        """First render: restore from storage if needed, then fetch."""
        if self.customers.status is FetchStatus.IDLE:
            await self.restore()
        await self.on_focus()

    async def on_focus(self) -> None:
        """Screen regained focus: refetch everything the session owns."""
        if not self.session.is_authenticated:
            logger.debug("Focus without a session, nothing to fetch")
            return
        await asyncio.gather(self.refresh_customers(), self.refresh_orders())

    async def on_auth_failure(self) -> None:
        """Re-validate the session; refetch if it survived."""
        if await self.refresh_session() is not None:
            await self.on_focus()

    # ── Background work ──────────────────────────────────

    def schedule_refresh(
        self, refresh: Callable[[], Awaitable[Any]], delay: float | None = None
    ) -> asyncio.Task[Any]:
        """Run *refresh* after *delay* seconds without awaiting it."""
        delay = self._refresh_delay if delay is None else delay

        async def _delayed() -> None:
            if delay > 0:
                await asyncio.sleep(delay)
            await refresh()

        task = asyncio.create_task(_delayed())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled refresh to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
