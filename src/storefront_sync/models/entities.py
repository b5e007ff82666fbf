"""Canonical records — the one in-memory shape per entity type.

Whatever shape the backend answers with, the rest of the package only ever
sees these models.  They are also what gets persisted to durable storage.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class BillingType(str, Enum):
    DAILY = "daily"
    ALTERNATE_DAYS = "alternate_days"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    UNSPECIFIED = "unspecified"


class OrderBucket(str, Enum):
    """The three independently fetched partitions of the order working set."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"


class OrderAction(str, Enum):
    """Mutations a supplier can apply to an order."""

    ACCEPT = "accept"
    COMPLETE = "complete"

    @property
    def source(self) -> OrderBucket:
        return OrderBucket.PENDING if self is OrderAction.ACCEPT else OrderBucket.ACCEPTED

    @property
    def destination(self) -> OrderBucket:
        return OrderBucket.ACCEPTED if self is OrderAction.ACCEPT else OrderBucket.COMPLETED

    @property
    def resulting_status(self) -> str:
        """Order status string the backend reports after this action."""
        return self.destination.value


class Identity(BaseModel):
    """The authenticated supplier for this device session.

    ``id`` and ``name`` are mandatory so that a persisted identity is never
    half-filled; everything else is optional profile data.
    """

    id: int = Field(gt=0)
    name: str = Field(min_length=1)
    phone_no: str = ""
    brand_name: str | None = None
    fcm_token: str | None = None

    def refreshed(self, other: Identity) -> Identity:
        """Return a copy updated with the non-empty fields of *other*.

        Only applies to the same tenant; a different id means a different
        principal and the caller should replace rather than refresh.
        """
        if other.id != self.id:
            raise ValueError(f"cannot refresh identity {self.id} with {other.id}")
        updates = {
            name: value
            for name, value in other.model_dump().items()
            if value not in (None, "")
        }
        return self.model_copy(update=updates)


class Customer(BaseModel):
    """One service location of a customer account.

    ``location_id`` addresses the record in the UI; a single
    ``customer_id`` may own several locations.
    """

    location_id: int = 0
    customer_id: int = 0
    customer_name: str = ""
    customer_phone: str = ""
    customer_address: str = ""
    customer_area: str = ""
    landmark: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    per_can_amount: float = 0.0
    refill_frequency: int = 0
    billing_type: BillingType = BillingType.UNSPECIFIED
    due_amount: float = 0.0
    credit_amount: float = 0.0
    profile_status: bool = False


class Order(BaseModel):
    """A customer order as seen by the supplier."""

    id: int = 0
    supplier_id: int | None = None
    supplier_code: str | None = None
    customer_name: str = ""
    customer_phone: str = ""
    customer_address: str = ""
    quantity: int = 0
    unit_price: float = 0.0
    total_price: float = 0.0
    billing_type: BillingType = BillingType.UNSPECIFIED
    payment_mode: str = ""
    bill_status: str = ""
    order_status: str = ""
    delivery_person_id: int | None = None
    delivery_person_name: str | None = None


class DeliveryPerson(BaseModel):
    id: int = 0
    name: str = ""
    phone: str = ""
    passcode: str = ""


class Payment(BaseModel):
    """A payment received from a customer.

    ``status`` is ``pending`` for dues the backend is still waiting on and
    ``completed`` once the money is recorded.
    """

    id: int = 0
    order_id: int | None = None
    customer_id: int = 0
    supplier_id: int | None = None
    amount: float = 0.0
    payment_mode: str = ""
    transaction_id: str | None = None
    status: str = ""
    created_at: str = ""
