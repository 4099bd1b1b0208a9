"""
Service layer for Pennybook Backend.

Contains business logic that:
- Validates domain rules before touching the store
- Runs the recurring engine (backfill + catch-up) behind an explicit gateway
- Handles persistence coordination (calling the DB layer under RLS)

Services act as the glue between routes (HTTP layer) and the database.
"""

from .recurrence import RecurringFrequency, advance, first_after
from .recurring_engine import CatchUpGenerator, CatchUpReport, LegacyBackfill
from .recurring_transaction_service import (
    SyncResult,
    create_recurring_transaction,
    delete_recurring_transaction,
    get_all_recurring_transactions,
    get_recurring_transaction_by_id,
    run_startup_sync,
    stop_recurring_transaction,
    sync_recurring_transactions,
    update_recurring_transaction,
)
from .transaction_service import (
    create_transaction,
    delete_transaction,
    get_transaction_by_id,
    get_user_transactions,
    update_transaction,
)

__all__ = [
    "RecurringFrequency",
    "advance",
    "first_after",
    "CatchUpGenerator",
    "CatchUpReport",
    "LegacyBackfill",
    "SyncResult",
    "run_startup_sync",
    "create_transaction",
    "get_user_transactions",
    "get_transaction_by_id",
    "update_transaction",
    "delete_transaction",
    "get_all_recurring_transactions",
    "get_recurring_transaction_by_id",
    "create_recurring_transaction",
    "update_recurring_transaction",
    "stop_recurring_transaction",
    "delete_recurring_transaction",
    "sync_recurring_transactions",
]
