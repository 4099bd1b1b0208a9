"""
Service layer for recurring transaction templates and the startup sync.

Handles business logic for managing recurring templates and for running the
recurring engine (legacy backfill, then catch-up) when a client session starts.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, cast

from supabase import Client

from pennybook.db.gateway import SupabaseTransactionGateway, TransactionGateway
from pennybook.services.recurrence import now_ms, parse_frequency
from pennybook.services.recurring_engine import CatchUpGenerator, LegacyBackfill
from pennybook.services.transaction_service import create_transaction
from pennybook.utils.constants import PAYMENT_METHODS, TRANSACTION_TABLE

logger = logging.getLogger(__name__)

# Fields a user may change on an existing template
_UPDATABLE_FIELDS = {
    "amount",
    "category_id",
    "description",
    "payment_method",
    "notes",
    "recurring_frequency",
    "recurring_end_date",
}

# Nullable fields that an explicit None clears
_CLEARABLE_FIELDS = {"notes", "recurring_end_date"}


async def get_all_recurring_transactions(
    supabase_client: Client,
    user_id: str,
    limit: int = 50,
    offset: int = 0
) -> List[Dict[str, Any]]:
    """
    Retrieve all recurring templates for a user.

    Args:
        supabase_client: Authenticated Supabase client
        user_id: User UUID from auth token
        limit: Maximum number of templates to return (default 50)
        offset: Number of templates to skip for pagination (default 0)

    Returns:
        List of template dicts (ordered by next_occurrence_cursor asc)
    """
    logger.info(f"Fetching recurring templates for user {user_id} (limit={limit}, offset={offset})")

    result = supabase_client.table(TRANSACTION_TABLE) \
        .select("*") \
        .eq("user_id", user_id) \
        .eq("is_recurring_template", True) \
        .order("next_occurrence_cursor") \
        .range(offset, offset + limit - 1) \
        .execute()

    return result.data if result.data else []


async def get_recurring_transaction_by_id(
    supabase_client: Client,
    user_id: str,
    recurring_transaction_id: str
) -> Optional[Dict[str, Any]]:
    """
    Retrieve a single recurring template by ID.

    Returns:
        Template dict or None if not found (or the row is not a template)
    """
    logger.info(f"Fetching recurring template {recurring_transaction_id} for user {user_id}")

    result = supabase_client.table(TRANSACTION_TABLE) \
        .select("*") \
        .eq("id", recurring_transaction_id) \
        .eq("user_id", user_id) \
        .eq("is_recurring_template", True) \
        .execute()

    if result.data and len(result.data) > 0:
        data: dict[str, Any] = result.data[0]
        return data

    return None


async def create_recurring_transaction(
    supabase_client: Client,
    user_id: str,
    category_id: str,
    amount: float,
    date: int,
    recurring_frequency: str,
    description: str = "",
    payment_method: str = "cash",
    notes: Optional[str] = None,
    recurring_end_date: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Create a new recurring template.

    The template's first occurrence is due on date; next_occurrence_cursor is
    seeded to that value and the next sync materializes it once it is due.

    Raises:
        ValueError: If the frequency or dates are invalid
        Exception: If creation fails
    """
    logger.info(f"Creating recurring template for user {user_id} ({recurring_frequency})")

    return await create_transaction(
        supabase_client=supabase_client,
        user_id=user_id,
        category_id=category_id,
        amount=amount,
        date=date,
        description=description,
        payment_method=payment_method,
        notes=notes,
        is_recurring_template=True,
        recurring_frequency=recurring_frequency,
        recurring_end_date=recurring_end_date,
    )


async def update_recurring_transaction(
    supabase_client: Client,
    user_id: str,
    recurring_transaction_id: str,
    **updates: Any
) -> Optional[Dict[str, Any]]:
    """
    Update a recurring template.

    Special handling:
    - next_occurrence_cursor and date are never updatable; the cursor keeps
      its position when the frequency changes and the new cadence applies
      from the next due occurrence onward
    - Already materialized occurrences are not modified
    - recurring_end_date=None removes the end date (the template runs open-ended
      again); notes=None clears the notes

    Returns:
        Updated template dict, or None if not found

    Raises:
        ValueError: If a field is not updatable or a value is invalid
    """
    logger.info(f"Updating recurring template {recurring_transaction_id} for user {user_id}")

    not_allowed = set(updates) - _UPDATABLE_FIELDS
    if not_allowed:
        raise ValueError(f"Fields cannot be updated on a recurring template: {', '.join(sorted(not_allowed))}")

    # None clears a nullable field; other fields ignore it
    update_data: Dict[str, Any] = {
        k: v for k, v in updates.items()
        if v is not None or k in _CLEARABLE_FIELDS
    }

    if "recurring_frequency" in update_data:
        update_data["recurring_frequency"] = parse_frequency(update_data["recurring_frequency"]).value
    if "payment_method" in update_data and update_data["payment_method"] not in PAYMENT_METHODS:
        raise ValueError(f"Invalid payment_method: {update_data['payment_method']}")
    if "amount" in update_data and update_data["amount"] < 0:
        raise ValueError("amount must be >= 0")

    existing = await get_recurring_transaction_by_id(supabase_client, user_id, recurring_transaction_id)
    if existing is None:
        return None

    if not update_data:
        logger.warning(f"No fields to update for recurring template {recurring_transaction_id}")
        return existing

    end_date = update_data.get("recurring_end_date")
    if end_date is not None and end_date < existing["date"]:
        raise ValueError("recurring_end_date must not be before the template date")

    update_data["updated_at"] = now_ms()

    result = supabase_client.table(TRANSACTION_TABLE) \
        .update(update_data) \
        .eq("id", recurring_transaction_id) \
        .eq("user_id", user_id) \
        .eq("is_recurring_template", True) \
        .execute()

    if not result.data or len(result.data) == 0:
        return None

    logger.info(f"Recurring template {recurring_transaction_id} updated successfully")
    return cast(Dict[str, Any], result.data[0])


async def stop_recurring_transaction(
    supabase_client: Client,
    user_id: str,
    recurring_transaction_id: str,
    now: Optional[int] = None
) -> Optional[Dict[str, Any]]:
    """
    Stop a template from generating occurrences after now.

    Sets recurring_end_date to now (or keeps an earlier existing end date).
    Occurrences already due up to now are still materialized by the next sync.

    Returns:
        Updated template dict, or None if not found
    """
    if now is None:
        now = now_ms()

    existing = await get_recurring_transaction_by_id(supabase_client, user_id, recurring_transaction_id)
    if existing is None:
        return None

    end_date = existing.get("recurring_end_date")
    if end_date is not None and end_date <= now:
        logger.info(f"Recurring template {recurring_transaction_id} already ended at {end_date}")
        return existing

    # The end date may not precede the template's own first occurrence
    new_end_date = max(now, existing["date"])

    logger.info(f"Stopping recurring template {recurring_transaction_id} at {new_end_date}")
    return await update_recurring_transaction(
        supabase_client,
        user_id,
        recurring_transaction_id,
        recurring_end_date=new_end_date,
    )


async def delete_recurring_transaction(
    supabase_client: Client,
    user_id: str,
    recurring_transaction_id: str
) -> bool:
    """
    Delete a recurring template.

    Rules:
    1. Stops future generation
    2. Occurrences materialized earlier are independent rows and are preserved

    Returns:
        True if a template was deleted, False if not found
    """
    logger.info(f"Deleting recurring template {recurring_transaction_id} for user {user_id}")

    try:
        result = supabase_client.table(TRANSACTION_TABLE) \
            .delete() \
            .eq("id", recurring_transaction_id) \
            .eq("user_id", user_id) \
            .eq("is_recurring_template", True) \
            .execute()
    except Exception as e:
        logger.error(f"Failed to delete recurring template {recurring_transaction_id}: {e}", exc_info=True)
        raise

    deleted = bool(result.data)
    logger.info(f"Recurring template {recurring_transaction_id} deletion: success={deleted}")
    return deleted


@dataclass
class SyncResult:
    """Summary of one startup sync."""
    templates_backfilled: int = 0
    templates_processed: int = 0
    templates_failed: int = 0
    templates_skipped: int = 0
    occurrences_created: int = 0
    reload_required: bool = False


def run_startup_sync(
    gateway: TransactionGateway,
    now: Optional[int] = None,
    on_new_occurrences: Optional[Callable[[int], None]] = None,
    max_per_template: Optional[int] = None,
) -> SyncResult:
    """
    Run the recurring engine once for a session start.

    Order:
    1. LegacyBackfill - give legacy templates a cursor (no-op once done)
    2. CatchUpGenerator - materialize everything due by now
    3. If anything was created, call on_new_occurrences(count) so the
       transaction view reloads from the store

    Args:
        gateway: Persistence gateway scoped to one user
        now: Reference time in ms (defaults to wall clock)
        on_new_occurrences: Reload hook of the transaction collaborator
        max_per_template: Override of settings.RECURRING_MAX_PER_TEMPLATE

    Returns:
        SyncResult with counts and reload_required
    """
    if now is None:
        now = now_ms()

    backfilled = LegacyBackfill(gateway).run(now)
    report = CatchUpGenerator(gateway, max_per_template=max_per_template).catch_up(now)

    result = SyncResult(
        templates_backfilled=backfilled,
        templates_processed=report.templates_processed,
        templates_failed=report.templates_failed,
        templates_skipped=report.templates_skipped,
        occurrences_created=report.occurrences_created,
        reload_required=report.occurrences_created > 0,
    )

    if result.reload_required and on_new_occurrences is not None:
        on_new_occurrences(result.occurrences_created)

    return result


async def sync_recurring_transactions(
    supabase_client: Client,
    user_id: str,
    now: Optional[int] = None,
    max_per_template: Optional[int] = None,
) -> SyncResult:
    """
    Synchronize recurring templates for a user.

    Generates all pending occurrences up to now (bounded per template) after
    backfilling cursors of legacy templates.

    Args:
        supabase_client: Authenticated Supabase client
        user_id: User UUID from auth token
        now: Reference time in ms (defaults to wall clock)
        max_per_template: Optional lower per-template cap for this run

    Returns:
        SyncResult

    Raises:
        Exception if the template queries fail
    """
    logger.info(f"Syncing recurring transactions for user {user_id}")

    gateway = SupabaseTransactionGateway(supabase_client, user_id)

    try:
        result = run_startup_sync(gateway, now=now, max_per_template=max_per_template)
    except Exception as e:
        logger.error(f"Failed to sync recurring transactions: {e}", exc_info=True)
        raise

    logger.info(
        f"Sync complete: {result.occurrences_created} occurrences generated "
        f"from {result.templates_processed} templates, "
        f"{result.templates_backfilled} legacy templates backfilled"
    )

    return result
