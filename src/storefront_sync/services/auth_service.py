"""Authentication service — signup, PIN setup, PIN login and logout.

Flow
----
1. ``send_code`` asks the backend for a signup OTP.  The response carries a
   temporary supplier id, which the resolver prefers until signup ends.
2. ``verify_signup`` checks the OTP, stores the bearer token and the
   confirmed identity, and retires the temporary id.
3. ``setup_pin`` registers a PIN for the (possibly still temporary) id.
4. ``login_with_pin`` authenticates a returning supplier.
5. ``logout`` clears the session together with the cached customers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from storefront_sync.exceptions import IdentityResolutionError, StorefrontAPIError
from storefront_sync.models.entities import Identity
from storefront_sync.services.client_api import StorefrontAPI
from storefront_sync.services.coordinator import SyncCoordinator
from storefront_sync.services.normalizer import (
    extract_supplier_id,
    extract_token,
    normalize_identity,
)

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    """Value object returned by every auth step."""

    ok: bool
    identity: Identity | None = None
    error: str | None = None


class AuthService:
    """Drives the auth endpoints and hands identities to the coordinator."""

    def __init__(self, api: StorefrontAPI, coordinator: SyncCoordinator) -> None:
        self._api = api
        self._coordinator = coordinator

    async def send_code(self, phone: str) -> AuthResult:
        """Request a signup OTP for *phone*."""
        try:
            payload = await self._api.send_code(phone)
        except StorefrontAPIError as exc:
            logger.warning("Sending signup code to %s failed: %s", phone, exc)
            return AuthResult(ok=False, error=exc.message or "Failed to send OTP")

        temporary_id = extract_supplier_id(payload)
        if temporary_id is not None:
            self._coordinator.resolver.begin_signup(temporary_id)
        logger.info("Signup code sent to %s", phone)
        return AuthResult(ok=True)

    async def verify_signup(self, phone: str, otp: str, name: str) -> AuthResult:
        """Verify the OTP and establish the new supplier's session."""
        try:
            payload = await self._api.verify_signup(
                phone, otp, name, supplier_id=self._coordinator.resolver.temporary_id
            )
        except StorefrontAPIError as exc:
            logger.info("Signup verification for %s failed: %s", phone, exc)
            return AuthResult(ok=False, error=exc.message or "Failed to verify OTP")
        return await self._adopt(payload, "Signup response did not include a supplier")

    async def setup_pin(self, pin: str) -> AuthResult:
        """Register a login PIN for the current (or signing-up) supplier."""
        try:
            supplier_id = self._coordinator.resolver.resolve_session_id(
                self._coordinator.session.identity
            )
        except IdentityResolutionError as exc:
            return AuthResult(ok=False, error=str(exc))

        try:
            await self._api.setup_pin(supplier_id, pin)
        except StorefrontAPIError as exc:
            logger.warning("PIN setup for supplier %s failed: %s", supplier_id, exc)
            return AuthResult(ok=False, error=exc.message or "Failed to setup PIN")
        logger.info("PIN set up for supplier %s", supplier_id)
        return AuthResult(ok=True, identity=self._coordinator.session.identity)

    async def login_with_pin(self, phone: str, pin: str) -> AuthResult:
        try:
            payload = await self._api.login_with_pin(phone, pin)
        except StorefrontAPIError as exc:
            logger.info("PIN login for %s failed: %s", phone, exc)
            return AuthResult(ok=False, error=exc.message or "Invalid PIN")
        return await self._adopt(payload, "Login response did not include a supplier")

    async def logout(self) -> AuthResult:
        await self._coordinator.logout()
        return AuthResult(ok=True)

    # ── Private helpers ──────────────────────────────────

    async def _adopt(self, payload: object, missing_message: str) -> AuthResult:
        identity = normalize_identity(payload)
        if identity is None:
            logger.error(missing_message)
            return AuthResult(ok=False, error=missing_message)
        if not await self._coordinator.establish_session(identity, extract_token(payload)):
            return AuthResult(ok=False, error="Signed out while signing in")
        logger.info("Supplier %s (%s) signed in", identity.id, identity.name)
        return AuthResult(ok=True, identity=identity)
