"""Storefront API — async HTTP client for the supplier backend.

Thin wrapper: every method issues one request and hands back the decoded
JSON body untouched.  Shape handling belongs to the normalizer, error
recovery to the coordinator.  Failures are raised as
:class:`~storefront_sync.exceptions.StorefrontAPIError` subclasses.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from storefront_sync.config import settings
from storefront_sync.exceptions import (
    AuthenticationFailedError,
    OrderConflictError,
    StorefrontAPIError,
)
from storefront_sync.models.entities import OrderAction, OrderBucket

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str | None]]

# Error codes the backend uses when an order already moved on
CONFLICT_CODES = frozenset({"ORDER_ALREADY_ACCEPTED", "ORDER_ALREADY_COMPLETED", "ORDER_STATUS_CONFLICT"})


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.reason_phrase or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(
            body.get("message") or body.get("error") or body.get("detail") or resp.reason_phrase
        )
    return resp.reason_phrase


def _error_code(body: Any) -> str | None:
    if isinstance(body, dict):
        code = body.get("code") or body.get("error")
        if isinstance(code, str):
            return code
    return None


class StorefrontAPI:
    """Async HTTP wrapper around the storefront REST endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._token_provider = token_provider
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.api_timeout_seconds

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self._token_provider is not None:
            token = await self._token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                resp = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.exception("%s %s request error: %s", method, path, exc)
            raise StorefrontAPIError(None, f"Could not reach the server: {exc}") from exc
        logger.debug("%s %s -> %s", method, path, resp.status_code)
        return resp

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._request(method, path, **kwargs)
        if resp.status_code == 401:
            raise AuthenticationFailedError(401, _error_message(resp))
        if resp.is_error:
            message = _error_message(resp)
            logger.error("%s %s failed: %s %s", method, path, resp.status_code, message)
            raise StorefrontAPIError(resp.status_code, message)
        try:
            return resp.json()
        except ValueError as exc:
            raise StorefrontAPIError(resp.status_code, "Malformed response body") from exc

    # ── Auth ─────────────────────────────────────────────

    async def send_code(self, phone: str) -> Any:
        """Request a signup OTP; the response carries a temporary supplier id."""
        return await self._json("POST", "/auth/send-otp", json={"phoneNumber": phone})

    async def verify_signup(
        self, phone: str, otp: str, name: str, supplier_id: int | None = None
    ) -> Any:
        body: dict[str, Any] = {"phoneNumber": phone, "otp": otp, "name": name}
        if supplier_id is not None:
            body["supplierId"] = supplier_id
        return await self._json("POST", "/auth/verify-otp-signup", json=body)

    async def setup_pin(self, supplier_id: int, pin: str) -> Any:
        return await self._json(
            "POST", "/auth/setup-pin", json={"supplierId": supplier_id, "pin": pin}
        )

    async def login_with_pin(self, phone: str, pin: str) -> Any:
        return await self._json(
            "POST", "/auth/login-pin", json={"phoneNumber": phone, "pin": pin}
        )

    async def fetch_session(self, supplier_id: int) -> Any:
        """Fetch the supplier profile backing the current session."""
        return await self._json("GET", f"/suppliers/{supplier_id}")

    # ── Customers ────────────────────────────────────────

    async def fetch_customers(self, supplier_id: int) -> Any:
        return await self._json("GET", "/customers", params={"supplierId": supplier_id})

    async def create_customer(self, supplier_id: int, fields: dict[str, Any]) -> Any:
        return await self._json(
            "POST", "/customers", json={**fields, "supplier_id": supplier_id}
        )

    async def update_customer(self, location_id: int, fields: dict[str, Any]) -> Any:
        return await self._json("PATCH", f"/customers/{location_id}", json=fields)

    async def fetch_customer_details(self, location_id: int) -> Any:
        return await self._json("GET", f"/customers/{location_id}")

    # ── Orders ───────────────────────────────────────────

    async def fetch_bucket(self, supplier: int | str, bucket: OrderBucket) -> Any:
        """Fetch one order bucket.  *supplier* is either a tenant id or code."""
        return await self._json(
            "GET", "/orders", params={"supplierId": supplier, "status": bucket.value}
        )

    async def mutate_order(
        self,
        order_id: int,
        supplier_id: int | None,
        supplier_code: str | None,
        action: OrderAction,
        fields: dict[str, Any] | None = None,
    ) -> Any:
        """Accept or complete an order.

        Raises :class:`OrderConflictError` when the backend reports the
        order already left the state this action expects.
        """
        body: dict[str, Any] = {**(fields or {}), "status": action.resulting_status}
        if action is OrderAction.COMPLETE:
            body.setdefault("deliveredAt", datetime.now(UTC).isoformat())
        if supplier_id is not None:
            body["supplier_id"] = supplier_id
        if supplier_code:
            body["supplier_code"] = supplier_code
        path = f"/orders/{order_id}"
        resp = await self._request("PATCH", path, json=body)
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if resp.status_code == 409 or _error_code(payload) in CONFLICT_CODES:
            raise OrderConflictError(resp.status_code, _error_message(resp))
        if resp.status_code == 401:
            raise AuthenticationFailedError(401, _error_message(resp))
        if resp.is_error:
            logger.error("Order %s %s failed: %s", order_id, action.value, resp.status_code)
            raise StorefrontAPIError(resp.status_code, _error_message(resp))
        return payload

    # ── Delivery staff ───────────────────────────────────

    async def add_delivery_person(self, supplier_id: int, name: str, phone: str) -> Any:
        return await self._json(
            "POST",
            "/delivery-person/add",
            json={"supplier_id": supplier_id, "name": name, "phone": phone},
        )

    # ── Payments ─────────────────────────────────────────

    async def fetch_payments(self, supplier_id: int) -> Any:
        return await self._json("GET", "/payments", params={"supplierId": supplier_id})

    async def fetch_pending_payments(self, supplier_id: int) -> Any:
        return await self._json(
            "GET", "/payments/pending", params={"supplierId": supplier_id}
        )

    async def create_payment(self, supplier_id: int, fields: dict[str, Any]) -> Any:
        """Record a payment collected from a customer."""
        return await self._json(
            "POST", "/payments", json={**fields, "supplierId": supplier_id}
        )
