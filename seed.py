"""Seed script — primes the durable cache with a session and a customer snapshot.

After seeding, the simulator restores "Raj" and the cached customers
without touching the network.
"""

import asyncio

from storefront_sync.database.engine import async_session_factory, init_db
from storefront_sync.database.repository import SQLKeyValueStore
from storefront_sync.models.entities import BillingType, Customer, Identity
from storefront_sync.services.collection_cache import CollectionCache
from storefront_sync.services.session_cache import SessionCache

SAMPLE_IDENTITY = Identity(id=7, name="Raj", phone_no="9876543210", brand_name="AquaPure")

SAMPLE_CUSTOMERS = [
    Customer(
        location_id=1,
        customer_id=11,
        customer_name="Asha",
        customer_phone="9000000001",
        customer_address="12 Lake Rd",
        city="Bengaluru",
        per_can_amount=40.0,
        billing_type=BillingType.MONTHLY,
        due_amount=50.0,
    ),
]


async def seed() -> None:
    """Write the sample identity and snapshot into durable storage."""
    await init_db()
    store = SQLKeyValueStore(async_session_factory)
    collection_cache = CollectionCache(store)
    session_cache = SessionCache(store, collection_cache)
    await session_cache.save_session(SAMPLE_IDENTITY)
    await collection_cache.save_snapshot(SAMPLE_CUSTOMERS)
    print(f"✅ Seeded session for {SAMPLE_IDENTITY.name} and {len(SAMPLE_CUSTOMERS)} cached customers.")


if __name__ == "__main__":
    asyncio.run(seed())
