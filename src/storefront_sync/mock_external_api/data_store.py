"""In-memory storefront data used by the mock backend.

Holds suppliers, customer locations, orders and payments, plus a short-lived OTP
table for the signup flow.  The payload builders deliberately emit the
different response shapes the real backend has used, so clients can be
exercised against schema drift.
"""

from __future__ import annotations

import logging
import random
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# OTP validity period in seconds
OTP_TTL_SECONDS = 300  # 5 minutes


@dataclass
class SupplierRow:
    id: int
    name: str
    phone_no: str
    brand_name: str | None = None
    pin: str | None = None
    confirmed: bool = False


@dataclass
class CustomerRow:
    location_id: int
    customer_id: int
    supplier_id: int
    customer_name: str
    customer_phone: str
    address: str = ""
    area: str = ""
    landmark: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    per_can_amount: float = 0.0
    refill_frequency: int = 1
    billing_type: str = "monthly"
    due_amount: float = 0.0
    credit_amount: float = 0.0
    profile_status: bool = False


@dataclass
class OrderRow:
    id: int
    supplier_id: int
    customer_name: str
    customer_phone: str
    customer_address: str
    quantity: int
    unit_price: float
    status: str = "pending"
    payment_mode: str = "cod"
    bill_status: str = "unpaid"
    billing_type: str = "monthly"
    supplier_code: str | None = None

    @property
    def total_price(self) -> float:
        return self.quantity * self.unit_price


@dataclass
class PaymentRow:
    id: int
    customer_id: int
    supplier_id: int
    amount: float
    payment_mode: str = "cod"
    status: str = "completed"
    order_id: int | None = None
    transaction_id: str | None = None
    created_at: str = ""

@dataclass
class MockStorefront:
    """Mutable backend state; one instance per running mock server."""

    suppliers: dict[int, SupplierRow] = field(default_factory=dict)
    customers: list[CustomerRow] = field(default_factory=list)
    orders: dict[int, OrderRow] = field(default_factory=dict)
    payments: list[PaymentRow] = field(default_factory=list)
    failing_buckets: set[str] = field(default_factory=set)
    otps: dict[str, tuple[str, float]] = field(default_factory=dict)
    _tokens: dict[str, int] = field(default_factory=dict)
    _next_id: int = 1000

    def next_id(self) -> int:
        self._next_id += 1
        return self._next_id

    # ── OTP ──────────────────────────────────────────────

    def generate_otp(self, phone: str) -> str:
        """Generate and store a 6-digit OTP for *phone*."""
        code = "".join(random.choices(string.digits, k=6))
        self.otps[phone] = (code, time.time())
        logger.info("OTP generated for %s: %s", phone, code)
        return code

    def verify_otp(self, phone: str, otp: str) -> bool:
        """Return ``True`` if *otp* matches the stored code and is not expired."""
        entry = self.otps.get(phone)
        if entry is None:
            return False
        stored_otp, created_at = entry
        if time.time() - created_at > OTP_TTL_SECONDS:
            self.otps.pop(phone, None)
            logger.info("OTP expired for %s", phone)
            return False
        if otp == stored_otp:
            # Consume the OTP on successful verification
            self.otps.pop(phone, None)
            return True
        return False

    def issue_token(self, supplier_id: int) -> str:
        token = secrets.token_hex(16)
        self._tokens[token] = supplier_id
        return token

    # ── Lookups ──────────────────────────────────────────

    def supplier_by_phone(self, phone: str) -> SupplierRow | None:
        for supplier in self.suppliers.values():
            if supplier.phone_no == phone:
                return supplier
        return None

    def customers_for(self, supplier_id: int) -> list[CustomerRow]:
        return [row for row in self.customers if row.supplier_id == supplier_id]

    def customer_by_location(self, location_id: int) -> CustomerRow | None:
        for row in self.customers:
            if row.location_id == location_id:
                return row
        return None

    def payments_for(self, supplier_id: int, status: str | None = None) -> list[PaymentRow]:
        return [
            row
            for row in self.payments
            if row.supplier_id == supplier_id and (status is None or row.status == status)
        ]

    def settle(self, customer_id: int, amount: float) -> None:
        """Apply a payment to the customer's dues, oldest location first."""
        remaining = amount
        touched = None
        for row in self.customers:
            if row.customer_id != customer_id:
                continue
            settled = min(row.due_amount, remaining)
            row.due_amount -= settled
            remaining -= settled
            touched = row
        if touched is not None and remaining > 0:
            touched.credit_amount += remaining
        for row in self.payments:
            if row.customer_id == customer_id and row.status == "pending":
                row.status = "completed"

    def orders_for(self, supplier: int | str, status: str) -> list[OrderRow]:
        return [
            row
            for row in self.orders.values()
            if row.status == status
            and (str(row.supplier_id) == str(supplier) or row.supplier_code == supplier)
        ]


# ── Payload builders (one per historical shape) ──────────


def supplier_payload(row: SupplierRow) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "phone_no": row.phone_no,
        "brand_name": row.brand_name,
    }


def customer_flat_payload(row: CustomerRow) -> dict[str, Any]:
    return {
        "location_id": row.location_id,
        "customer_id": row.customer_id,
        "customer_name": row.customer_name,
        "customer_phone": row.customer_phone,
        "customer_address": row.address,
        "customer_area": row.area,
        "landmark": row.landmark,
        "city": row.city,
        "state": row.state,
        "pincode": row.pincode,
        "per_can_amount": row.per_can_amount,
        "refill_frequency": row.refill_frequency,
        "billing_type": row.billing_type,
        "due_amount": row.due_amount,
        "credit_amount": row.credit_amount,
        "profile_status": row.profile_status,
    }


def customer_nested_payload(row: CustomerRow) -> dict[str, Any]:
    return {
        "customer": {
            "id": row.customer_id,
            "name": row.customer_name,
            "phone_no": row.customer_phone,
            "profile_status": row.profile_status,
        },
        "location": {
            "id": row.location_id,
            "address": row.address,
            "area": row.area,
            "landmark": row.landmark,
            "city": row.city,
            "state": row.state,
            "pincode": row.pincode,
            "per_can_amount": row.per_can_amount,
            "refill_frequency": row.refill_frequency,
            "billing_type": row.billing_type,
        },
        "balance": {"due_amount": row.due_amount, "credit_amount": row.credit_amount},
    }


def order_flat_payload(row: OrderRow) -> dict[str, Any]:
    return {
        "id": row.id,
        "supplier_id": row.supplier_id,
        "supplier_code": row.supplier_code,
        "customer_name": row.customer_name,
        "customer_phone": row.customer_phone,
        "customer_address": row.customer_address,
        "quantity": row.quantity,
        "unit_price": row.unit_price,
        "total_price": row.total_price,
        "billing_type": row.billing_type,
        "payment_mode": row.payment_mode,
        "bill_status": row.bill_status,
        "order_status": row.status,
    }


def order_nested_payload(row: OrderRow) -> dict[str, Any]:
    return {
        "order_id": row.id,
        "supplier": {"id": row.supplier_id, "code": row.supplier_code},
        "customer": {
            "customer_name": row.customer_name,
            "customer_phone": row.customer_phone,
            "customer_address": row.customer_address,
        },
        "order_details": {
            "quantity": row.quantity,
            "unit_price": row.unit_price,
            "total_price": row.total_price,
            "billing_type": row.billing_type,
            "order_status": row.status,
        },
        "payment": {"payment_mode": row.payment_mode, "bill_status": row.bill_status},
    }


def payment_nested_payload(row: PaymentRow) -> dict[str, Any]:
    return {
        "payment": {
            "id": row.id,
            "order_id": row.order_id,
            "amount": row.amount,
            "payment_mode": row.payment_mode,
            "transaction_id": row.transaction_id,
            "status": row.status,
            "created_at": row.created_at,
        },
        "customer": {"id": row.customer_id},
        "supplier": {"id": row.supplier_id},
    }


def payment_flat_payload(row: PaymentRow) -> dict[str, Any]:
    return {
        "id": row.id,
        "orderId": row.order_id,
        "customerId": row.customer_id,
        "supplierId": row.supplier_id,
        "amount": row.amount,
        "paymentMode": row.payment_mode,
        "transactionId": row.transaction_id,
        "status": row.status,
        "createdAt": row.created_at,
    }

def demo_storefront() -> MockStorefront:
    """A small, deterministic dataset for the simulator and tests."""
    store = MockStorefront()
    store.suppliers[7] = SupplierRow(
        id=7, name="Raj", phone_no="9876543210", brand_name="AquaPure", pin="1234", confirmed=True
    )
    store.customers = [
        CustomerRow(
            location_id=1, customer_id=11, supplier_id=7, customer_name="Asha",
            customer_phone="9000000001", address="12 Lake Rd", area="Indiranagar",
            city="Bengaluru", state="Karnataka", pincode="560038",
            per_can_amount=40.0, billing_type="monthly", due_amount=50.0,
        ),
        CustomerRow(
            location_id=2, customer_id=12, supplier_id=7, customer_name="Vik",
            customer_phone="9000000002", address="4 Hill St", area="Jayanagar",
            city="Bengaluru", state="Karnataka", pincode="560041",
            per_can_amount=35.0, billing_type="weekly", due_amount=20.0,
            profile_status=True,
        ),
    ]
    for row in (
        OrderRow(101, 7, "Asha", "9000000001", "12 Lake Rd", 2, 40.0),
        OrderRow(102, 7, "Vik", "9000000002", "4 Hill St", 1, 35.0, status="accepted"),
        OrderRow(103, 7, "Asha", "9000000001", "12 Lake Rd", 3, 40.0, status="completed",
                 bill_status="paid"),
    ):
        store.orders[row.id] = row
    store.payments = [
        PaymentRow(501, customer_id=11, supplier_id=7, amount=50.0, status="pending",
                   created_at="2024-05-01T09:00:00Z"),
        PaymentRow(502, customer_id=12, supplier_id=7, amount=35.0, payment_mode="upi",
                   order_id=102, transaction_id="UPI123", created_at="2024-05-02T10:30:00Z"),
    ]
    return store
