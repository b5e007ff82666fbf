"""Tests for the identity correlation resolver."""

import pytest

from storefront_sync.exceptions import IdentityResolutionError
from storefront_sync.models.entities import Identity, Order
from storefront_sync.services.identity import IdentityResolver, RoutingIds

SESSION = Identity(id=7, name="Raj")


@pytest.fixture
def resolver():
    return IdentityResolver()


# ── Session-scoped requests ──────────────────────────────

def test_confirmed_identity_is_used(resolver):
    assert resolver.resolve_session_id(SESSION) == 7


def test_temporary_id_wins_during_signup(resolver):
    resolver.begin_signup(99)
    assert resolver.resolve_session_id(SESSION) == 99


def test_confirmation_discards_temporary_id(resolver):
    resolver.begin_signup(99)
    resolver.confirm(Identity(id=99, name="Meera"))

    assert resolver.temporary_id is None
    assert resolver.resolve_session_id(SESSION) == 7


def test_no_identity_at_all_raises(resolver):
    with pytest.raises(IdentityResolutionError):
        resolver.resolve_session_id(None)


# ── Order mutations ──────────────────────────────────────

def test_order_supplier_beats_session(resolver):
    order = Order(id=5, supplier_id=42)
    assert resolver.resolve_for_order(order, SESSION) == RoutingIds(42, None)


def test_order_code_only_is_not_mixed_with_session(resolver):
    ids = resolver.resolve_for_order(Order(id=5, supplier_code="AQ42"), SESSION)
    assert ids == RoutingIds(None, "AQ42")


def test_session_is_fallback_for_unrouted_order(resolver):
    assert resolver.resolve_for_order(Order(id=5), SESSION) == RoutingIds(7, None)


def test_unroutable_order_raises(resolver):
    with pytest.raises(IdentityResolutionError):
        resolver.resolve_for_order(Order(id=5), None)
