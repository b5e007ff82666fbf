"""Tests for the response normalizer."""

import json

from storefront_sync.models.entities import BillingType
from storefront_sync.services.normalizer import (
    extract_supplier_id,
    extract_token,
    normalize_customer,
    normalize_delivery_person,
    normalize_identity,
    normalize_list,
    normalize_order,
    normalize_payment,
)

FLAT_ORDER = {
    "id": 41,
    "supplier_id": 7,
    "supplier_code": "AQ7",
    "customer_name": "Asha",
    "customer_phone": "9000000001",
    "customer_address": "12 Lake Rd",
    "quantity": 2,
    "unit_price": 40,
    "total_price": 80,
    "billing_type": "monthly",
    "payment_mode": "cod",
    "bill_status": "unpaid",
    "order_status": "pending",
    "delivery_person_id": 3,
    "delivery_person_name": "Ravi",
}

NESTED_ORDER = {
    "order_id": 41,
    "supplier": {"id": 7, "code": "AQ7"},
    "customer": {
        "customer_name": "Asha",
        "customer_phone": "9000000001",
        "customer_address": "12 Lake Rd",
    },
    "order_details": {
        "quantity": "2",
        "unit_price": "40.00",
        "total_price": 80.0,
        "billing_type": "Monthly",
        "order_status": "pending",
    },
    "payment": {"payment_mode": "cod", "bill_status": "unpaid"},
    "delivery_person": {"id": 3, "name": "Ravi"},
}

FLAT_CUSTOMER = {
    "location_id": 1,
    "customer_id": 11,
    "customer_name": "Asha",
    "customer_phone": "9000000001",
    "customer_address": "12 Lake Rd",
    "city": "Bengaluru",
    "per_can_amount": 40,
    "billing_type": "monthly",
    "due_amount": 50,
    "credit_amount": 0,
    "profile_status": True,
}

NESTED_CUSTOMER = {
    "customer": {"id": 11, "name": "Asha", "phone_no": "9000000001", "profile_status": "true"},
    "location": {
        "id": 1,
        "address": "12 Lake Rd",
        "city": "Bengaluru",
        "per_can_amount": "40",
        "billing_type": "monthly",
    },
    "balance": {"due_amount": "50", "credit_amount": None},
}


# ── Shape equivalence ────────────────────────────────────

def test_flat_and_nested_order_are_identical():
    flat = normalize_order(FLAT_ORDER)
    nested = normalize_order(NESTED_ORDER)

    assert flat is not None and nested is not None
    assert flat == nested
    assert flat.model_dump_json() == nested.model_dump_json()
    assert flat.total_price == 80.0
    assert flat.billing_type is BillingType.MONTHLY


def test_flat_and_nested_customer_are_identical():
    flat = normalize_customer(FLAT_CUSTOMER)
    nested = normalize_customer(NESTED_CUSTOMER)

    assert flat == nested
    assert flat.location_id == 1
    assert flat.customer_id == 11
    assert flat.due_amount == 50.0
    assert flat.profile_status is True


def test_camel_case_fields():
    customer = normalize_customer({"customerName": "Vik", "dueAmount": "20.5", "locationId": 9})
    assert customer.customer_name == "Vik"
    assert customer.due_amount == 20.5
    assert customer.location_id == 9


# ── Defaults and null-safety ─────────────────────────────

def test_missing_fields_fall_back_to_defaults():
    customer = normalize_customer({"customer_name": "Asha", "due_amount": "n/a"})
    assert customer.due_amount == 0.0
    assert customer.customer_phone == ""
    assert customer.profile_status is False
    assert customer.billing_type is BillingType.UNSPECIFIED


def test_order_without_supplier_carries_none():
    order = normalize_order({"id": 5, "total_price": 10})
    assert order.supplier_id is None
    assert order.supplier_code is None


def test_none_entity_is_dropped():
    assert normalize_order(None) is None
    assert normalize_customer("garbage") is None


def test_list_drops_null_records():
    records = normalize_list([FLAT_CUSTOMER, None, NESTED_CUSTOMER, "garbage"], normalize_customer)

    assert len(records) == 2
    assert all(record is not None for record in records)


def test_list_envelopes():
    assert len(normalize_list({"customers": [FLAT_CUSTOMER]}, normalize_customer)) == 1
    assert len(normalize_list({"data": {"orders": [FLAT_ORDER]}}, normalize_order)) == 1
    assert normalize_list({"message": "nothing here"}, normalize_order) == []
    assert normalize_list(None, normalize_order) == []


# ── Identity and auth payloads ───────────────────────────

def test_identity_from_login_envelope():
    identity = normalize_identity(
        {"token": "t", "supplier": {"id": 7, "name": "Raj", "phone_no": "9876543210"}}
    )
    assert identity is not None
    assert identity.id == 7
    assert identity.brand_name is None


def test_identity_without_id_is_dropped():
    assert normalize_identity({"name": "Raj"}) is None


def test_extract_supplier_id_and_token():
    assert extract_supplier_id({"success": True, "supplier_id": 12}) == 12
    assert extract_supplier_id({"data": {"supplierId": "13"}}) == 13
    assert extract_supplier_id({"message": "OTP sent"}) is None
    assert extract_token({"token": "abc"}) == "abc"
    assert extract_token({"supplier": {}}) is None


def test_delivery_person_from_either_envelope():
    tenant = normalize_delivery_person({"tenant": {"id": 4, "name": "Ravi", "passcode": "123456"}})
    legacy = normalize_delivery_person({"delivery_person": {"id": 4, "name": "Ravi", "passcode": "123456"}})
    assert tenant == legacy
    assert tenant.passcode == "123456"


# ── Out-of-range numbers ─────────────────────────────────

def test_infinite_and_huge_numbers_fall_back_to_defaults():
    payload = json.loads(
        '[{"id": 1, "total_price": 80, "quantity": 1e999},'
        ' {"id": 2, "total_price": "inf", "quantity": "inf", "unit_price": "nan"}]'
    )

    orders = normalize_list(payload, normalize_order)

    assert [o.id for o in orders] == [1, 2]
    assert [o.quantity for o in orders] == [0, 0]
    assert orders[0].total_price == 80.0
    assert orders[1].total_price == 0.0
    assert orders[1].unit_price == 0.0


def test_huge_integer_ids_fall_back_to_defaults():
    customer = normalize_customer({"customer_name": "Asha", "location_id": 10**400, "due_amount": -1e999})
    assert customer.location_id == 0
    assert customer.due_amount == 0.0
    assert extract_supplier_id({"supplier_id": 1e999}) is None


# ── Payments ─────────────────────────────────────────────

def test_flat_and_nested_payment_are_identical():
    flat = normalize_payment(
        {
            "id": 9,
            "customerId": 11,
            "supplierId": 7,
            "amount": "50",
            "paymentMode": "upi",
            "transactionId": "UPI9",
            "status": "completed",
            "createdAt": "2024-05-01T09:00:00Z",
        }
    )
    nested = normalize_payment(
        {
            "payment": {
                "id": 9,
                "amount": 50,
                "payment_mode": "upi",
                "transaction_id": "UPI9",
                "status": "completed",
                "created_at": "2024-05-01T09:00:00Z",
            },
            "customer": {"id": 11},
            "supplier": {"id": 7},
        }
    )

    assert flat == nested
    assert flat.amount == 50.0
    assert flat.order_id is None


def test_null_text_is_absent_not_the_string_none():
    payment = normalize_payment({"payment": {"id": 3, "amount": 10, "transaction_id": None}})
    assert payment.transaction_id is None
    assert payment.payment_mode == ""
