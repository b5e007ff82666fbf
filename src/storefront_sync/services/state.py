"""In-memory state holders — one object per concern, each observable.

Screens subscribe to the holder they render; only the coordinator and the
auth/logout flows write to them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from storefront_sync.models.entities import Customer, Identity, Order, OrderBucket, Payment

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class FetchStatus(str, Enum):
    IDLE = "idle"
    RESTORING = "restoring"
    OPTIMISTIC = "optimistic"
    FETCHING = "fetching"
    RECONCILED = "reconciled"
    FETCH_FAILED = "fetch_failed"


class Observable:
    """Minimal change-notification mixin."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("State listener %r failed", listener)


class SessionState(Observable):
    """Who is logged in on this device."""

    def __init__(self) -> None:
        super().__init__()
        self.identity: Identity | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def set_identity(self, identity: Identity | None) -> None:
        self.identity = identity
        self.notify()


class CustomerState(Observable):
    """The customer collection as currently shown."""

    def __init__(self) -> None:
        super().__init__()
        self.records: list[Customer] = []
        self.status = FetchStatus.IDLE
        self.error: str | None = None

    def set_status(self, status: FetchStatus) -> None:
        self.status = status
        self.notify()

    def replace(self, records: list[Customer], status: FetchStatus) -> None:
        self.records = list(records)
        self.status = status
        self.error = None
        self.notify()

    def append(self, record: Customer) -> None:
        self.records = [*self.records, record]
        self.notify()

    def upsert(self, record: Customer) -> None:
        """Replace the record with the same ``location_id``, or append it."""
        records = list(self.records)
        for index, existing in enumerate(records):
            if existing.location_id == record.location_id:
                records[index] = record
                break
        else:
            records.append(record)
        self.records = records
        self.notify()

    def apply_payment(self, customer_id: int, amount: float) -> None:
        """Settle *amount* against the dues of every location of *customer_id*.

        Dues are cleared in list order; whatever is left over becomes credit
        on the last location touched.
        """
        remaining = amount
        records = list(self.records)
        touched = None
        for index, record in enumerate(records):
            if record.customer_id != customer_id:
                continue
            settled = min(record.due_amount, remaining)
            remaining -= settled
            records[index] = record.model_copy(update={"due_amount": record.due_amount - settled})
            touched = index
        if touched is None:
            return
        if remaining > 0:
            last = records[touched]
            records[touched] = last.model_copy(
                update={"credit_amount": last.credit_amount + remaining}
            )
        self.records = records
        self.notify()

    def fail(self, message: str) -> None:
        """Enter ``FETCH_FAILED`` keeping the records already shown.

        The error is only surfaced when there is nothing to show.
        """
        self.status = FetchStatus.FETCH_FAILED
        self.error = None if self.records else message
        self.notify()

    def reset(self) -> None:
        self.records = []
        self.status = FetchStatus.IDLE
        self.error = None
        self.notify()


@dataclass
class BucketView:
    """Contents and fetch status of one order bucket."""

    records: list[Order] = field(default_factory=list)
    status: FetchStatus = FetchStatus.IDLE
    error: str | None = None


class OrderBuckets(Observable):
    """The pending / accepted / completed order working set."""

    def __init__(self) -> None:
        super().__init__()
        self._buckets: dict[OrderBucket, BucketView] = {
            bucket: BucketView() for bucket in OrderBucket
        }

    def __getitem__(self, bucket: OrderBucket) -> BucketView:
        return self._buckets[bucket]

    def records(self, bucket: OrderBucket) -> list[Order]:
        return list(self._buckets[bucket].records)

    def mark_fetching(self) -> None:
        for view in self._buckets.values():
            view.status = FetchStatus.FETCHING
        self.notify()

    def replace(self, bucket: OrderBucket, records: list[Order]) -> None:
        view = self._buckets[bucket]
        view.records = list(records)
        view.status = FetchStatus.RECONCILED
        view.error = None

    def fail(self, bucket: OrderBucket, message: str) -> None:
        """Keep the bucket's previous contents; surface *message* only if it is empty."""
        view = self._buckets[bucket]
        view.status = FetchStatus.FETCH_FAILED
        view.error = None if view.records else message

    def locate(self, order_id: int) -> tuple[OrderBucket, Order] | None:
        for bucket, view in self._buckets.items():
            for order in view.records:
                if order.id == order_id:
                    return bucket, order
        return None

    def move(
        self,
        order_id: int,
        source: OrderBucket,
        destination: OrderBucket,
        order_status: str,
    ) -> Order | None:
        """Optimistically move an order between buckets.

        Removes it from *source*, appends an updated copy to *destination*
        and returns the copy.  Returns ``None`` when *source* does not hold
        the order.
        """
        source_view = self._buckets[source]
        for index, order in enumerate(source_view.records):
            if order.id == order_id:
                break
        else:
            return None
        moved = order.model_copy(update={"order_status": order_status})
        source_view.records = source_view.records[:index] + source_view.records[index + 1 :]
        destination_view = self._buckets[destination]
        destination_view.records = [*destination_view.records, moved]
        destination_view.error = None
        self.notify()
        return moved

    def reset(self) -> None:
        self._buckets = {bucket: BucketView() for bucket in OrderBucket}
        self.notify()


class PaymentState(Observable):
    """Recorded payments and the dues still outstanding."""

    def __init__(self) -> None:
        super().__init__()
        self.payments: list[Payment] = []
        self.pending: list[Payment] = []
        self.status = FetchStatus.IDLE
        self.error: str | None = None

    def set_status(self, status: FetchStatus) -> None:
        self.status = status
        self.notify()

    def replace_payments(self, records: list[Payment]) -> None:
        self.payments = list(records)
        self.status = FetchStatus.RECONCILED
        self.error = None
        self.notify()

    def replace_pending(self, records: list[Payment]) -> None:
        self.pending = list(records)
        self.status = FetchStatus.RECONCILED
        self.error = None
        self.notify()

    def append(self, record: Payment) -> None:
        self.payments = [*self.payments, record]
        self.notify()

    def fail(self, message: str) -> None:
        self.status = FetchStatus.FETCH_FAILED
        self.error = None if (self.payments or self.pending) else message
        self.notify()

    def reset(self) -> None:
        self.payments = []
        self.pending = []
        self.status = FetchStatus.IDLE
        self.error = None
        self.notify()
