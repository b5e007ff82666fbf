"""Identity correlation — picks the tenant identifiers for outgoing requests.

Precedence, highest first:

* signup in progress: the temporary id issued by the send-code step, then
  the confirmed session id;
* order mutations: the id/code the order itself carries, then the session
  id.

If nothing resolves, :class:`IdentityResolutionError` is raised before any
request is built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from storefront_sync.exceptions import IdentityResolutionError
from storefront_sync.models.entities import Identity, Order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingIds:
    """Identifiers attached to an order mutation."""

    supplier_id: int | None
    supplier_code: str | None


class IdentityResolver:
    """Tracks the signup-time temporary id and applies the precedence rules."""

    def __init__(self) -> None:
        self._temporary_id: int | None = None

    @property
    def temporary_id(self) -> int | None:
        return self._temporary_id

    def begin_signup(self, temporary_id: int) -> None:
        logger.info("Signup started with temporary supplier id %s", temporary_id)
        self._temporary_id = temporary_id

    def confirm(self, identity: Identity) -> None:
        """Signup finished; the confirmed identity takes over."""
        if self._temporary_id is not None and self._temporary_id != identity.id:
            logger.info(
                "Temporary supplier id %s replaced by confirmed id %s",
                self._temporary_id,
                identity.id,
            )
        self._temporary_id = None

    def reset(self) -> None:
        self._temporary_id = None

    def resolve_session_id(self, identity: Identity | None) -> int:
        """Return the supplier id to use for session-scoped requests."""
        if self._temporary_id is not None:
            return self._temporary_id
        if identity is not None:
            return identity.id
        raise IdentityResolutionError("No supplier is signed in on this device")

    def resolve_for_order(self, order: Order, identity: Identity | None) -> RoutingIds:
        """Return the identifiers to route a mutation of *order* with.

        The order's own partition wins over the acting session's.
        """
        if order.supplier_id is not None or order.supplier_code:
            return RoutingIds(order.supplier_id, order.supplier_code or None)
        if identity is not None:
            logger.debug("Order %s carries no supplier, using session %s", order.id, identity.id)
            return RoutingIds(identity.id, None)
        raise IdentityResolutionError(
            f"Order {order.id} has no supplier and no supplier is signed in"
        )
