"""Mock storefront API router — simulates the supplier backend.

Endpoints
---------
POST  /auth/send-otp                → OTP + temporary supplier id
POST  /auth/verify-otp-signup       → token + supplier
POST  /auth/setup-pin               → register a PIN
POST  /auth/login-pin               → token + supplier
GET   /suppliers/{id}               → supplier profile (flat)
GET   /customers?supplierId=...     → customers, mixed flat and nested
POST  /customers                    → create a customer location
GET   /customers/{id}               → one customer location (nested)
PATCH /customers/{id}               → update a customer location
GET   /orders?supplierId=&status=   → one order bucket
PATCH /orders/{id}                  → move an order to a new status
GET   /payments?supplierId=...      → payment history (flat, camelCase)
GET   /payments/pending?supplierId= → outstanding payments (nested)
POST  /payments                     → record a payment, settles dues
POST  /delivery-person/add          → new delivery person
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storefront_sync.mock_external_api.data_store import (
    CustomerRow,
    MockStorefront,
    PaymentRow,
    SupplierRow,
    customer_flat_payload,
    customer_nested_payload,
    demo_storefront,
    order_flat_payload,
    order_nested_payload,
    payment_flat_payload,
    payment_nested_payload,
    supplier_payload,
)
from storefront_sync.models.entities import OrderBucket

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["mock-storefront-api"])

# Shared backend state (in-memory singleton)
_storefront = demo_storefront()


def get_storefront() -> MockStorefront:
    """Dependency hook; tests override it with a fresh store."""
    return _storefront


# ── Request models ───────────────────────────────────────

class SendOTPRequest(BaseModel):
    phoneNumber: str


class VerifySignupRequest(BaseModel):
    phoneNumber: str
    otp: str
    name: str
    supplierId: int | None = None


class SetupPINRequest(BaseModel):
    supplierId: int
    pin: str


class LoginPINRequest(BaseModel):
    phoneNumber: str
    pin: str


class CreateCustomerRequest(BaseModel):
    supplier_id: int
    customer_name: str
    customer_phone: str
    customer_address: str = ""
    customer_area: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    per_can_amount: float = 0.0
    billing_type: str = "monthly"


class UpdateOrderRequest(BaseModel):
    status: OrderBucket
    supplier_id: int | None = None
    supplier_code: str | None = None
    deliveredAt: str | None = None


class CreatePaymentRequest(BaseModel):
    supplierId: int
    customerId: int
    amount: float
    paymentMode: str = "cod"
    orderId: int | None = None
    transactionId: str | None = None
    status: str = "completed"


class AddDeliveryPersonRequest(BaseModel):
    supplier_id: int
    name: str
    phone: str


# ── Auth ─────────────────────────────────────────────────

@router.post("/auth/send-otp")
async def send_otp(body: SendOTPRequest, store: MockStorefront = Depends(get_storefront)):
    """Generate an OTP and reserve a temporary supplier id.

    In a real system this would send an SMS; here the OTP is only logged.
    """
    supplier = store.supplier_by_phone(body.phoneNumber)
    if supplier is None:
        supplier = SupplierRow(id=store.next_id(), name="", phone_no=body.phoneNumber)
        store.suppliers[supplier.id] = supplier
    code = store.generate_otp(body.phoneNumber)
    logger.info("📱 OTP for %s: %s (temporary supplier %s)", body.phoneNumber, code, supplier.id)
    return {"success": True, "message": "OTP sent", "supplier_id": supplier.id}


@router.post("/auth/verify-otp-signup")
async def verify_otp_signup(
    body: VerifySignupRequest, store: MockStorefront = Depends(get_storefront)
):
    if not store.verify_otp(body.phoneNumber, body.otp):
        raise HTTPException(status_code=400, detail="Invalid or expired OTP")
    supplier = store.supplier_by_phone(body.phoneNumber)
    if supplier is None:
        raise HTTPException(status_code=404, detail="Signup was not started for this phone")
    supplier.name = body.name
    supplier.confirmed = True
    return {"token": store.issue_token(supplier.id), "supplier": supplier_payload(supplier)}


@router.post("/auth/setup-pin")
async def setup_pin(body: SetupPINRequest, store: MockStorefront = Depends(get_storefront)):
    supplier = store.suppliers.get(body.supplierId)
    if supplier is None:
        raise HTTPException(status_code=404, detail="Supplier not found")
    supplier.pin = body.pin
    return {"success": True}


@router.post("/auth/login-pin")
async def login_pin(body: LoginPINRequest, store: MockStorefront = Depends(get_storefront)):
    supplier = store.supplier_by_phone(body.phoneNumber)
    if supplier is None or not supplier.confirmed or supplier.pin != body.pin:
        return JSONResponse(status_code=401, content={"message": "Invalid PIN"})
    return {"token": store.issue_token(supplier.id), "supplier": supplier_payload(supplier)}


@router.get("/suppliers/{supplier_id}")
async def get_supplier(supplier_id: int, store: MockStorefront = Depends(get_storefront)):
    supplier = store.suppliers.get(supplier_id)
    if supplier is None:
        raise HTTPException(status_code=404, detail="Supplier not found")
    return supplier_payload(supplier)


# ── Customers ────────────────────────────────────────────

# Request field → CustomerRow attribute for partial updates
_CUSTOMER_FIELDS = {
    "customer_name": "customer_name",
    "customer_phone": "customer_phone",
    "customer_address": "address",
    "customer_area": "area",
    "landmark": "landmark",
    "city": "city",
    "state": "state",
    "pincode": "pincode",
    "per_can_amount": "per_can_amount",
    "refill_frequency": "refill_frequency",
    "billing_type": "billing_type",
}


@router.get("/customers")
async def list_customers(
    supplier_id: int = Query(..., alias="supplierId"),
    store: MockStorefront = Depends(get_storefront),
):
    """Customers in mixed shapes: older rows flat, newer rows nested."""
    rows = store.customers_for(supplier_id)
    payload = [
        customer_nested_payload(row) if index % 2 else customer_flat_payload(row)
        for index, row in enumerate(rows)
    ]
    return {"customers": payload}


@router.post("/customers", status_code=201)
async def create_customer(
    body: CreateCustomerRequest, store: MockStorefront = Depends(get_storefront)
):
    row = CustomerRow(
        location_id=store.next_id(),
        customer_id=store.next_id(),
        supplier_id=body.supplier_id,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        address=body.customer_address,
        area=body.customer_area,
        city=body.city,
        state=body.state,
        pincode=body.pincode,
        per_can_amount=body.per_can_amount,
        billing_type=body.billing_type,
    )
    store.customers.append(row)
    return {"data": customer_flat_payload(row)}


@router.get("/customers/{location_id}")
async def get_customer(location_id: int, store: MockStorefront = Depends(get_storefront)):
    row = store.customer_by_location(location_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer_nested_payload(row)


@router.patch("/customers/{location_id}")
async def update_customer(
    location_id: int,
    body: dict[str, Any],
    store: MockStorefront = Depends(get_storefront),
):
    """Partial update; accepts the flat field names of the create call."""
    row = store.customer_by_location(location_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    for key, value in body.items():
        attr = _CUSTOMER_FIELDS.get(key)
        if attr is not None:
            setattr(row, attr, value)
    return {"data": customer_flat_payload(row)}


# ── Orders ───────────────────────────────────────────────

# Status an order must be in before it can move to the key status
_PREVIOUS_STATUS = {OrderBucket.ACCEPTED: "pending", OrderBucket.COMPLETED: "accepted"}


@router.get("/orders")
async def list_orders(
    supplier: str = Query(..., alias="supplierId"),
    bucket: OrderBucket = Query(..., alias="status"),
    store: MockStorefront = Depends(get_storefront),
):
    """One order bucket; the accepted bucket uses the nested shape."""
    if bucket.value in store.failing_buckets:
        raise HTTPException(status_code=503, detail=f"{bucket.value} orders unavailable")
    rows = store.orders_for(supplier, bucket.value)
    build = order_nested_payload if bucket is OrderBucket.ACCEPTED else order_flat_payload
    return [build(row) for row in rows]


@router.patch("/orders/{order_id}")
async def update_order(
    order_id: int,
    body: UpdateOrderRequest,
    store: MockStorefront = Depends(get_storefront),
):
    row = store.orders.get(order_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Order not found")
    expected = _PREVIOUS_STATUS.get(body.status)
    if expected is None:
        raise HTTPException(
            status_code=400, detail=f"Cannot move an order to {body.status.value}"
        )
    if row.status != expected:
        return JSONResponse(
            status_code=409,
            content={
                "code": "ORDER_STATUS_CONFLICT",
                "message": f"Order {order_id} is already {row.status}",
            },
        )
    row.status = body.status.value
    logger.info(
        "Order %s %s (supplier %s)", order_id, row.status, body.supplier_id or body.supplier_code
    )
    return {"success": True, "order": order_flat_payload(row)}


# ── Payments ─────────────────────────────────────────

@router.get("/payments")
async def list_payments(
    supplier_id: int = Query(..., alias="supplierId"),
    store: MockStorefront = Depends(get_storefront),
):
    return {"payments": [payment_flat_payload(row) for row in store.payments_for(supplier_id)]}


@router.get("/payments/pending")
async def list_pending_payments(
    supplier_id: int = Query(..., alias="supplierId"),
    store: MockStorefront = Depends(get_storefront),
):
    rows = store.payments_for(supplier_id, status="pending")
    return {"data": [payment_nested_payload(row) for row in rows]}


@router.post("/payments", status_code=201)
async def create_payment(
    body: CreatePaymentRequest, store: MockStorefront = Depends(get_storefront)
):
    if body.amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be positive")
    row = PaymentRow(
        id=store.next_id(),
        customer_id=body.customerId,
        supplier_id=body.supplierId,
        amount=body.amount,
        payment_mode=body.paymentMode,
        status=body.status,
        order_id=body.orderId,
        transaction_id=body.transactionId,
        created_at=datetime.now(UTC).isoformat(),
    )
    if row.status == "completed":
        store.settle(row.customer_id, row.amount)
    store.payments.append(row)
    return payment_nested_payload(row)


# ── Delivery staff ───────────────────────────────────────

@router.post("/delivery-person/add", status_code=201)
async def add_delivery_person(
    body: AddDeliveryPersonRequest, store: MockStorefront = Depends(get_storefront)
):
    passcode = store.generate_otp(f"delivery:{body.phone}")
    return {
        "tenant": {
            "id": store.next_id(),
            "name": body.name,
            "phone": body.phone,
            "passcode": passcode,
        }
    }
