"""Interactive CLI simulator — drive the sync core against the mock backend.

Run ``python seed.py`` first to see a cold start restore cached data
before any request is made.  Pass ``--ephemeral`` to keep the cache in
memory instead of the SQLite file.
"""

import asyncio
import logging
import sys

from storefront_sync.config import settings
from storefront_sync.database.engine import async_session_factory, init_db
from storefront_sync.database.repository import MemoryKeyValueStore, SQLKeyValueStore
from storefront_sync.models.entities import OrderBucket
from storefront_sync.services.auth_service import AuthService
from storefront_sync.services.client_api import StorefrontAPI
from storefront_sync.services.collection_cache import CollectionCache
from storefront_sync.services.coordinator import SyncCoordinator
from storefront_sync.services.session_cache import SessionCache

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"

HELP = (
    "Commands: customers | orders | refresh | accept <id> | complete <id> |\n"
    "          pending | pay <customer_id> <amount> [mode] |\n"
    "          login <phone> <pin> | logout | fail <bucket> | heal | quit"
)


def show_customers(coordinator: SyncCoordinator) -> None:
    state = coordinator.customers
    print(f"{DIM}[{state.status.value}]{RESET}")
    if state.error:
        print(f"{RED}{state.error}{RESET}")
    for customer in state.records:
        print(
            f"  #{customer.location_id:<5} {customer.customer_name:<12} "
            f"due ₹{customer.due_amount:.2f}  credit ₹{customer.credit_amount:.2f}"
        )


def show_orders(coordinator: SyncCoordinator) -> None:
    for bucket in OrderBucket:
        view = coordinator.orders[bucket]
        print(f"{BOLD}{bucket.value}{RESET} {DIM}[{view.status.value}]{RESET}")
        if view.error:
            print(f"  {RED}{view.error}{RESET}")
        for order in view.records:
            print(
                f"  #{order.id:<5} {order.customer_name:<12} x{order.quantity} "
                f"₹{order.total_price:.2f} {order.bill_status}"
            )


def show_pending(coordinator: SyncCoordinator) -> None:
    state = coordinator.payments
    print(f"{DIM}[{state.status.value}]{RESET}")
    if state.error:
        print(f"{RED}{state.error}{RESET}")
    for payment in state.pending:
        print(f"  customer #{payment.customer_id:<5} ₹{payment.amount:.2f}  {payment.created_at}")

async def main() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    print(f"\n{BOLD}{'=' * 52}")
    print("  🚚  Storefront Sync — Simulator")
    print(f"{'=' * 52}{RESET}\n")

    # ── Durable storage ──────────────────────────────────
    if "--ephemeral" in sys.argv:
        store = MemoryKeyValueStore()
    else:
        await init_db()
        store = SQLKeyValueStore(async_session_factory)

    collection_cache = CollectionCache(store)
    session_cache = SessionCache(store, collection_cache)
    api = StorefrontAPI(token_provider=session_cache.restore_token)
    coordinator = SyncCoordinator(api, session_cache, collection_cache)
    auth = AuthService(api, coordinator)

    # ── Cold start: storage only ─────────────────────────
    identity = await coordinator.restore()
    if identity:
        print(f"{GREEN}Restored session for {identity.name}{RESET} (no network yet)")
    else:
        print(f"{YELLOW}No stored session. Try: login 9876543210 1234{RESET}")
    show_customers(coordinator)

    # ── Start the mock backend in the background ─────────
    import uvicorn
    from storefront_sync.main import app
    from storefront_sync.mock_external_api.router import get_storefront

    config = uvicorn.Config(app, host="127.0.0.1", port=8000, log_level="warning")
    server = uvicorn.Server(config)
    server_task = asyncio.create_task(server.serve())

    # Give the server a moment to start
    await asyncio.sleep(0.5)
    await coordinator.on_focus()
    print(f"\n{DIM}{HELP}{RESET}\n")

    while True:
        try:
            line = input(f"{BLUE}{BOLD}>{RESET} ").strip()
        except (KeyboardInterrupt, EOFError):
            print(f"\n{DIM}Goodbye!{RESET}")
            break

        if not line:
            continue
        command, *args = line.split()
        command = command.lower()

        if command == "quit":
            print(f"{DIM}Goodbye!{RESET}")
            break
        elif command == "customers":
            show_customers(coordinator)
        elif command == "orders":
            show_orders(coordinator)
        elif command == "refresh":
            await coordinator.on_focus()
            show_customers(coordinator)
            show_orders(coordinator)
        elif command in ("accept", "complete") and args and args[0].isdigit():
            mutate = coordinator.accept_order if command == "accept" else coordinator.complete_order
            result = await mutate(int(args[0]))
            colour = GREEN if result.ok else RED
            print(f"{colour}{'done' if result.ok else result.error}{RESET}")
            await coordinator.drain()
            show_orders(coordinator)
        elif command == "pending":
            await coordinator.refresh_pending_payments()
            show_pending(coordinator)
        elif command == "pay" and len(args) >= 2 and args[0].isdigit():
            try:
                amount = float(args[1])
            except ValueError:
                print(f"{RED}Amount must be a number{RESET}")
                continue
            mode = args[2] if len(args) > 2 else "cod"
            result = await coordinator.record_payment(int(args[0]), amount, mode)
            colour = GREEN if result.ok else RED
            print(f"{colour}{'recorded' if result.ok else result.error}{RESET}")
            await coordinator.drain()
            show_customers(coordinator)
        elif command == "login" and len(args) == 2:
            result = await auth.login_with_pin(args[0], args[1])
            if result.ok:
                print(f"{GREEN}Welcome, {result.identity.name}{RESET}")
                await coordinator.on_focus()
            else:
                print(f"{RED}{result.error}{RESET}")
        elif command == "logout":
            await auth.logout()
            print(f"{GREEN}👋 Logged out; cached customers removed.{RESET}")
        elif command == "fail" and args:
            get_storefront().failing_buckets.add(args[0])
            print(f"{YELLOW}{args[0]} bucket will now fail{RESET}")
        elif command == "heal":
            get_storefront().failing_buckets.clear()
        else:
            print(f"{DIM}{HELP}{RESET}")

    # Shut down the background server
    await coordinator.drain()
    server.should_exit = True
    await server_task


if __name__ == "__main__":
    asyncio.run(main())
