"""Response normalizer — maps drifting backend payloads onto canonical records.

The storefront backend has answered with several shapes over time: flat
top-level fields (``customer_name``), nested sub-objects
(``customer.customer_name``, ``order_details.total_price``), camelCase
aliases, and different id fields between API versions.  Each entity type
gets a declarative field map listing the candidate locations of every
canonical field; supporting a new shape means adding a path, not a branch.

Everything here is pure.  Missing or malformed fields fall back to the
field's default, and an absent entity yields ``None`` so that list callers
can drop it.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import ValidationError

from storefront_sync.models.entities import (
    BillingType,
    Customer,
    DeliveryPerson,
    Identity,
    Order,
    Payment,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()

# int(float("inf")) raises OverflowError rather than ValueError.
_COERCION_ERRORS = (TypeError, ValueError, OverflowError)

LIST_ENVELOPE_KEYS = ("data", "customers", "orders", "payments", "items", "results")
ENTITY_ENVELOPE_KEYS = (
    "data", "supplier", "tenant", "delivery_person", "customer", "order", "payment",
)


# ── Coercion helpers ──────────────────────────────────────


def _to_str(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        raise TypeError("not a scalar")
    return str(value).strip()


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    return int(float(value))


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("bool is not an amount")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite amount {value!r}")
    return number


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "y", "complete", "completed"}
    return bool(value)


def _to_optional_int(value: Any) -> int | None:
    number = _to_int(value)
    return number if number > 0 else None


def _to_optional_str(value: Any) -> str | None:
    text = _to_str(value)
    return text or None


_BILLING_ALIASES = {
    "alternate": BillingType.ALTERNATE_DAYS,
    "alternate_day": BillingType.ALTERNATE_DAYS,
    "alternate_days": BillingType.ALTERNATE_DAYS,
    "daily": BillingType.DAILY,
    "day": BillingType.DAILY,
    "weekly": BillingType.WEEKLY,
    "week": BillingType.WEEKLY,
    "monthly": BillingType.MONTHLY,
    "month": BillingType.MONTHLY,
}


def _to_billing_type(value: Any) -> BillingType:
    key = _to_str(value).lower().replace("-", "_").replace(" ", "_")
    billing = _BILLING_ALIASES.get(key)
    if billing is None:
        raise ValueError(f"unknown billing type {value!r}")
    return billing


# ── Field maps ────────────────────────────────────────────


@dataclass(frozen=True)
class FieldSpec:
    """Candidate locations for one canonical field, in preference order."""

    flat: tuple[str, ...]
    nested: tuple[str, ...] = ()
    default: Any = ""
    coerce: Callable[[Any], Any] = _to_str


@dataclass(frozen=True)
class EntityMap:
    """Field map for one entity type.

    ``discriminator`` is a top-level field only the flat shape carries;
    when present, flat locations are tried before nested ones.
    """

    discriminator: str
    fields: Mapping[str, FieldSpec]


def _text(*flat: str, nested: tuple[str, ...] = ()) -> FieldSpec:
    return FieldSpec(flat=flat, nested=nested)


def _amount(*flat: str, nested: tuple[str, ...] = ()) -> FieldSpec:
    return FieldSpec(flat=flat, nested=nested, default=0.0, coerce=_to_float)


def _count(*flat: str, nested: tuple[str, ...] = ()) -> FieldSpec:
    return FieldSpec(flat=flat, nested=nested, default=0, coerce=_to_int)


def _billing(*flat: str, nested: tuple[str, ...] = ()) -> FieldSpec:
    return FieldSpec(
        flat=flat, nested=nested, default=BillingType.UNSPECIFIED, coerce=_to_billing_type
    )


CUSTOMER_MAP = EntityMap(
    discriminator="customer_name",
    fields={
        "location_id": _count(
            "location_id", "locationId", "id",
            nested=("location.location_id", "location.id"),
        ),
        "customer_id": _count(
            "customer_id", "customerId",
            nested=("customer.customer_id", "customer.id"),
        ),
        "customer_name": _text(
            "customer_name", "customerName", "name",
            nested=("customer.customer_name", "customer.name"),
        ),
        "customer_phone": _text(
            "customer_phone", "customerPhone", "phone_no", "phone",
            nested=("customer.customer_phone", "customer.phone_no", "customer.phone"),
        ),
        "customer_address": _text(
            "customer_address", "customerAddress", "address",
            nested=("location.address", "location.customer_address"),
        ),
        "customer_area": _text(
            "customer_area", "customerArea", "area",
            nested=("location.area", "location.customer_area"),
        ),
        "landmark": _text("landmark", nested=("location.landmark",)),
        "city": _text("city", nested=("location.city",)),
        "state": _text("state", nested=("location.state",)),
        "pincode": _text(
            "pincode", "pin_code", "pinCode",
            nested=("location.pincode", "location.pin_code"),
        ),
        "per_can_amount": _amount(
            "per_can_amount", "perCanAmount",
            nested=("location.per_can_amount", "pricing.per_can_amount"),
        ),
        "refill_frequency": _count(
            "refill_frequency", "refillFrequency",
            nested=("location.refill_frequency", "pricing.refill_frequency"),
        ),
        "billing_type": _billing(
            "billing_type", "billingType",
            nested=("location.billing_type", "pricing.billing_type"),
        ),
        "due_amount": _amount(
            "due_amount", "dueAmount",
            nested=("balance.due_amount", "customer.due_amount"),
        ),
        "credit_amount": _amount(
            "credit_amount", "creditAmount",
            nested=("balance.credit_amount", "customer.credit_amount"),
        ),
        "profile_status": FieldSpec(
            flat=("profile_status", "profileStatus"),
            nested=("customer.profile_status",),
            default=False,
            coerce=_to_bool,
        ),
    },
)

ORDER_MAP = EntityMap(
    discriminator="total_price",
    fields={
        "id": _count("id", "order_id", "orderId", nested=("order_details.order_id", "order_details.id")),
        "supplier_id": FieldSpec(
            flat=("supplier_id", "supplierId", "tenant_id", "tenantId"),
            nested=("supplier.id", "supplier.supplier_id", "order_details.supplier_id"),
            default=None,
            coerce=_to_optional_int,
        ),
        "supplier_code": FieldSpec(
            flat=("supplier_code", "supplierCode", "tenant_code", "tenantCode"),
            nested=("supplier.code", "supplier.supplier_code"),
            default=None,
            coerce=_to_optional_str,
        ),
        "customer_name": _text(
            "customer_name", "customerName",
            nested=("customer.customer_name", "customer.name"),
        ),
        "customer_phone": _text(
            "customer_phone", "customerPhone",
            nested=("customer.customer_phone", "customer.phone_no", "customer.phone"),
        ),
        "customer_address": _text(
            "customer_address", "customerAddress",
            nested=("customer.customer_address", "customer.address"),
        ),
        "quantity": _count(
            "quantity", "can_quantity", "canQuantity",
            nested=("order_details.quantity", "order_details.can_quantity"),
        ),
        "unit_price": _amount(
            "unit_price", "unitPrice", "per_can_amount",
            nested=("order_details.unit_price", "order_details.per_can_amount"),
        ),
        "total_price": _amount(
            "total_price", "totalPrice", "total_amount", "totalAmount",
            nested=("order_details.total_price", "order_details.total_amount"),
        ),
        "billing_type": _billing(
            "billing_type", "billingType",
            nested=("order_details.billing_type", "customer.billing_type"),
        ),
        "payment_mode": _text(
            "payment_mode", "paymentMode",
            nested=("payment.payment_mode", "order_details.payment_mode"),
        ),
        "bill_status": _text(
            "bill_status", "billStatus", "payment_status",
            nested=("payment.bill_status", "payment.status"),
        ),
        "order_status": _text(
            "order_status", "orderStatus", "status",
            nested=("order_details.order_status", "order_details.status"),
        ),
        "delivery_person_id": FieldSpec(
            flat=("delivery_person_id", "deliveryPersonId"),
            nested=("delivery_person.id", "delivery_person.delivery_person_id"),
            default=None,
            coerce=_to_optional_int,
        ),
        "delivery_person_name": FieldSpec(
            flat=("delivery_person_name", "deliveryPersonName"),
            nested=("delivery_person.name",),
            default=None,
            coerce=_to_optional_str,
        ),
    },
)

IDENTITY_MAP = EntityMap(
    discriminator="phone_no",
    fields={
        "id": _count("id", "supplier_id", "supplierId", nested=("supplier.id", "supplier.supplier_id")),
        "name": _text("name", nested=("supplier.name",)),
        "phone_no": _text("phone_no", "phoneNumber", "phone", nested=("supplier.phone_no", "supplier.phoneNumber")),
        "brand_name": FieldSpec(
            flat=("brand_name", "brandName"),
            nested=("supplier.brand_name",),
            default=None,
            coerce=_to_optional_str,
        ),
        "fcm_token": FieldSpec(
            flat=("fcm_token", "fcmToken"),
            nested=("supplier.fcm_token",),
            default=None,
            coerce=_to_optional_str,
        ),
    },
)

DELIVERY_PERSON_MAP = EntityMap(
    discriminator="passcode",
    fields={
        "id": _count("id", "delivery_person_id", nested=("tenant.id", "delivery_person.id")),
        "name": _text("name", nested=("tenant.name", "delivery_person.name")),
        "phone": _text("phone", "phone_no", nested=("tenant.phone", "delivery_person.phone")),
        "passcode": _text("passcode", nested=("tenant.passcode", "delivery_person.passcode")),
    },
)

PAYMENT_MAP = EntityMap(
    discriminator="amount",
    fields={
        "id": _count("id", "payment_id", "paymentId", nested=("payment.id", "payment.payment_id")),
        "order_id": FieldSpec(
            flat=("order_id", "orderId"),
            nested=("order.id", "payment.order_id"),
            default=None,
            coerce=_to_optional_int,
        ),
        "customer_id": _count(
            "customer_id", "customerId",
            nested=("customer.id", "customer.customer_id", "payment.customer_id"),
        ),
        "supplier_id": FieldSpec(
            flat=("supplier_id", "supplierId", "tenant_id"),
            nested=("supplier.id", "payment.supplier_id"),
            default=None,
            coerce=_to_optional_int,
        ),
        "amount": _amount("amount", nested=("payment.amount",)),
        "payment_mode": _text(
            "payment_mode", "paymentMode", nested=("payment.payment_mode", "payment.mode")
        ),
        "transaction_id": FieldSpec(
            flat=("transaction_id", "transactionId"),
            nested=("payment.transaction_id",),
            default=None,
            coerce=_to_optional_str,
        ),
        "status": _text("status", "payment_status", nested=("payment.status",)),
        "created_at": _text("created_at", "createdAt", nested=("payment.created_at",)),
    },
)


# ── Extraction ────────────────────────────────────────────


def lookup(payload: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted *path* through nested mappings.

    Returns the module-level ``_MISSING`` marker when any step is absent or
    the value found is ``None``.
    """
    node: Any = payload
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return _MISSING
        node = node[part]
    return _MISSING if node is None else node


def _extract(payload: Mapping[str, Any], entity_map: EntityMap) -> dict[str, Any]:
    flat_first = entity_map.discriminator in payload
    values: dict[str, Any] = {}
    for name, spec in entity_map.fields.items():
        paths = spec.flat + spec.nested if flat_first else spec.nested + spec.flat
        values[name] = spec.default
        for path in paths:
            raw = lookup(payload, path)
            if raw is _MISSING:
                continue
            try:
                values[name] = spec.coerce(raw)
            except _COERCION_ERRORS:
                logger.debug("Unusable value for %s at %s: %r", name, path, raw)
                continue
            break
    return values


def normalize_customer(payload: Any) -> Customer | None:
    """Canonicalize one customer location payload; ``None`` means drop it."""
    if not isinstance(payload, Mapping):
        return None
    return Customer(**_extract(payload, CUSTOMER_MAP))


def normalize_order(payload: Any) -> Order | None:
    """Canonicalize one order payload; ``None`` means drop it."""
    if not isinstance(payload, Mapping):
        return None
    return Order(**_extract(payload, ORDER_MAP))


def normalize_identity(payload: Any) -> Identity | None:
    """Canonicalize a supplier payload.

    An identity without a positive id or a name cannot be persisted, so
    such payloads are dropped like absent ones.
    """
    if not isinstance(payload, Mapping):
        return None
    try:
        return Identity(**_extract(payload, IDENTITY_MAP))
    except ValidationError:
        logger.warning("Supplier payload lacks id or name, ignoring it")
        return None


def normalize_delivery_person(payload: Any) -> DeliveryPerson | None:
    if not isinstance(payload, Mapping):
        return None
    return DeliveryPerson(**_extract(payload, DELIVERY_PERSON_MAP))


def normalize_payment(payload: Any) -> Payment | None:
    if not isinstance(payload, Mapping):
        return None
    return Payment(**_extract(payload, PAYMENT_MAP))


def unwrap_list(payload: Any, envelope_keys: Iterable[str] = LIST_ENVELOPE_KEYS) -> list[Any]:
    """Return the list carried by *payload*, looking one envelope deep.

    Accepts a bare list, ``{"data": [...]}``, ``{"customers": [...]}`` and
    ``{"data": {"orders": [...]}}``.  Anything else yields an empty list.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        keys = tuple(envelope_keys)
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
        for key in keys:
            value = payload.get(key)
            if isinstance(value, Mapping):
                return unwrap_list(value, keys)
    if payload is not None:
        logger.warning("Expected a list payload, got %s", type(payload).__name__)
    return []


def unwrap_entity(payload: Any, envelope_keys: Iterable[str] = ENTITY_ENVELOPE_KEYS) -> Any:
    """Return the single entity inside a ``{"data": {...}}``-style envelope."""
    if not isinstance(payload, Mapping):
        return payload
    for key in envelope_keys:
        value = payload.get(key)
        if isinstance(value, Mapping):
            return value
    return payload


def normalize_list(
    payload: Any,
    normalize_one: Callable[[Any], T | None],
    envelope_keys: Iterable[str] = LIST_ENVELOPE_KEYS,
) -> list[T]:
    """Normalize every entry of a list payload, dropping unusable entries."""
    items = unwrap_list(payload, envelope_keys)
    records = [record for record in map(normalize_one, items) if record is not None]
    dropped = len(items) - len(records)
    if dropped:
        logger.warning("Dropped %d of %d records while normalizing", dropped, len(items))
    return records


def extract_supplier_id(payload: Any) -> int | None:
    """Pull the (possibly temporary) supplier id out of an auth response."""
    entity = unwrap_entity(payload)
    if not isinstance(entity, Mapping):
        return None
    for path in ("supplier_id", "supplierId", "id", "tenant_id"):
        raw = lookup(entity, path)
        if raw is _MISSING:
            continue
        try:
            return _to_optional_int(raw)
        except _COERCION_ERRORS:
            continue
    return None


def extract_token(payload: Any) -> str | None:
    """Pull a bearer token out of an auth response, if it carries one."""
    if not isinstance(payload, Mapping):
        return None
    for path in ("token", "access_token", "data.token"):
        raw = lookup(payload, path)
        if isinstance(raw, str) and raw:
            return raw
    return None
