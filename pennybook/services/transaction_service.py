"""
Transaction persistence service.

RULES:
1. All operations MUST respect RLS (user_id = auth.uid())
2. Never trust client-provided user_id - always use authenticated user_id from JWT
3. Recurring templates live in the same table but are never listed as transactions
4. A template's next_occurrence_cursor is never written from user input; it is
   seeded on creation and advanced only by the recurring engine
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, cast

from supabase import Client

from pennybook.services.recurrence import now_ms, parse_frequency
from pennybook.utils.constants import PAYMENT_METHODS, TRANSACTION_TABLE

logger = logging.getLogger(__name__)


def _validate_payment_method(payment_method: str) -> None:
    if payment_method not in PAYMENT_METHODS:
        raise ValueError(
            f"Invalid payment_method: {payment_method}. Must be one of {', '.join(PAYMENT_METHODS)}"
        )


async def create_transaction(
    supabase_client: Client,
    user_id: str,
    category_id: str,
    amount: float,
    date: int,
    description: str = "",
    payment_method: str = "cash",
    notes: Optional[str] = None,
    receipt_uri: Optional[str] = None,
    is_recurring_template: bool = False,
    recurring_frequency: Optional[str] = None,
    recurring_end_date: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Create a transaction record in Supabase.

    This function:
    1. Validates payment_method and, for templates, the recurring frequency
    2. Seeds next_occurrence_cursor at the template's first due date (its date)
    3. Inserts the record into the transaction table (RLS enforced)

    Args:
        supabase_client: Authenticated Supabase client (with user token)
        user_id: The authenticated user's ID (from JWT token)
        category_id: UUID of the spending/earning category
        amount: Transaction amount (must be >= 0)
        date: Timestamp (ms since epoch) of the transaction / first occurrence
        description: Human-readable description
        payment_method: cash, card, bank or other
        notes: Optional free-form notes
        receipt_uri: Optional receipt location
        is_recurring_template: Create a template instead of a one-time transaction
        recurring_frequency: daily/weekly/monthly/yearly (templates only, required)
        recurring_end_date: Optional inclusive end date (templates only)

    Returns:
        The created transaction record from Supabase

    Raises:
        ValueError: If any field is invalid
        Exception: If the database operation fails
    """
    _validate_payment_method(payment_method)
    if amount < 0:
        raise ValueError("amount must be >= 0")

    next_occurrence_cursor: Optional[int] = None
    if is_recurring_template:
        # Rejects unknown frequencies before they are ever persisted
        frequency = parse_frequency(recurring_frequency)
        recurring_frequency = frequency.value
        if recurring_end_date is not None and recurring_end_date < date:
            raise ValueError("recurring_end_date must not be before date")
        next_occurrence_cursor = date
    elif recurring_frequency is not None or recurring_end_date is not None:
        raise ValueError("Recurrence fields are only allowed on recurring templates")

    created_at = now_ms()
    transaction_data = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "category_id": category_id,
        "amount": amount,
        "date": date,
        "description": description,
        "payment_method": payment_method,
        "notes": notes,
        "receipt_uri": receipt_uri,
        "is_recurring_template": is_recurring_template,
        "recurring_frequency": recurring_frequency,
        "recurring_end_date": recurring_end_date,
        "next_occurrence_cursor": next_occurrence_cursor,
        "created_at": created_at,
        "updated_at": created_at,
    }

    logger.info(
        f"Creating {'recurring template' if is_recurring_template else 'transaction'} "
        f"for user {user_id}: category={category_id}"
    )

    result = supabase_client.table(TRANSACTION_TABLE).insert(transaction_data).execute()

    if not result.data or len(result.data) == 0:
        raise Exception("Failed to create transaction: no data returned")

    created_transaction = cast(Dict[str, Any], result.data[0])

    logger.info(
        f"Transaction created successfully: id={created_transaction.get('id')}, "
        f"user_id={user_id}"
    )

    return created_transaction


async def get_user_transactions(
    supabase_client: Client,
    user_id: str,
    limit: int = 50,
    offset: int = 0,
    category_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    from_date: Optional[int] = None,
    to_date: Optional[int] = None,
    search: Optional[str] = None,
    sort_by: str = "date",
    sort_order: str = "desc",
) -> List[Dict[str, Any]]:
    """
    Fetch concrete transactions for the authenticated user with optional filters.

    Recurring templates are excluded; they are listed by the recurring
    transaction service.

    Args:
        supabase_client: Authenticated Supabase client
        user_id: The authenticated user's ID
        limit: Maximum number of transactions to return
        offset: Number of transactions to skip (for pagination)
        category_id: Optional filter by category
        payment_method: Optional filter by payment method
        from_date: Optional inclusive lower bound on date (ms)
        to_date: Optional inclusive upper bound on date (ms)
        search: Optional case-insensitive substring of description
        sort_by: Field to sort by ('date' or 'amount', default 'date')
        sort_order: Sort order ('asc' or 'desc', default 'desc')

    Returns:
        List of transaction records
    """
    logger.debug(
        f"Fetching transactions for user {user_id} "
        f"(limit={limit}, offset={offset}, sort_by={sort_by}, sort_order={sort_order}, "
        f"filters: category={category_id}, payment_method={payment_method})"
    )

    query = (
        supabase_client.table(TRANSACTION_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .eq("is_recurring_template", False)
    )

    if category_id:
        query = query.eq("category_id", category_id)
    if payment_method:
        _validate_payment_method(payment_method)
        query = query.eq("payment_method", payment_method)
    if from_date is not None:
        query = query.gte("date", from_date)
    if to_date is not None:
        query = query.lte("date", to_date)
    if search:
        query = query.ilike("description", f"%{search}%")

    allowed_sort_fields = ["date", "amount"]
    if sort_by not in allowed_sort_fields:
        logger.warning(f"Invalid sort_by '{sort_by}', defaulting to 'date'")
        sort_by = "date"

    if sort_order not in ["asc", "desc"]:
        logger.warning(f"Invalid sort_order '{sort_order}', defaulting to 'desc'")
        sort_order = "desc"

    is_desc = sort_order == "desc"
    result = query.order(sort_by, desc=is_desc).range(offset, offset + limit - 1).execute()

    transactions = cast(List[Dict[str, Any]], result.data or [])

    logger.info(f"Fetched {len(transactions)} transactions for user {user_id}")

    return transactions


async def get_transaction_by_id(
    supabase_client: Client,
    user_id: str,
    transaction_id: str,
) -> Optional[Dict[str, Any]]:
    """
    Fetch a single concrete transaction by its ID.

    Recurring templates are not transactions here; they are served by
    /recurring-transactions and look up as not found.

    Returns:
        Transaction record if found and belongs to user, None otherwise
    """
    logger.debug(f"Fetching transaction {transaction_id} for user {user_id}")

    result = (
        supabase_client.table(TRANSACTION_TABLE)
        .select("*")
        .eq("id", transaction_id)
        .eq("user_id", user_id)
        .eq("is_recurring_template", False)
        .execute()
    )

    if not result.data or len(result.data) == 0:
        logger.warning(
            f"Transaction {transaction_id} not found or not accessible by user {user_id}"
        )
        return None

    return cast(Dict[str, Any], result.data[0])


async def update_transaction(
    supabase_client: Client,
    user_id: str,
    transaction_id: str,
    **updates: Any,
) -> Optional[Dict[str, Any]]:
    """
    Update an existing concrete transaction.

    Only non-None values in updates are written. Materialized occurrences are
    independent records, so editing one never affects its template.

    Returns:
        The updated transaction record, or None if not found (recurring
        templates included)

    Raises:
        ValueError: If a field is invalid
    """
    existing = await get_transaction_by_id(supabase_client, user_id, transaction_id)
    if not existing:
        logger.warning(
            f"Cannot update transaction {transaction_id}: "
            f"not found or not accessible by user {user_id}"
        )
        return None

    update_data: Dict[str, Any] = {k: v for k, v in updates.items() if v is not None}

    if "payment_method" in update_data:
        _validate_payment_method(update_data["payment_method"])
    if "amount" in update_data and update_data["amount"] < 0:
        raise ValueError("amount must be >= 0")

    if not update_data:
        logger.warning(f"No fields to update for transaction {transaction_id}")
        return existing

    update_data["updated_at"] = now_ms()

    logger.info(
        f"Updating transaction {transaction_id} for user {user_id}: "
        f"fields={list(update_data.keys())}"
    )

    result = (
        supabase_client.table(TRANSACTION_TABLE)
        .update(update_data)
        .eq("id", transaction_id)
        .eq("user_id", user_id)
        .eq("is_recurring_template", False)
        .execute()
    )

    if not result.data or len(result.data) == 0:
        logger.warning(f"Failed to update transaction {transaction_id}: no data returned")
        return None

    logger.info(f"Transaction {transaction_id} updated successfully for user {user_id}")

    return cast(Dict[str, Any], result.data[0])


async def delete_transaction(
    supabase_client: Client,
    user_id: str,
    transaction_id: str,
) -> bool:
    """
    Delete a concrete transaction record.

    Deleting a materialized occurrence does not regenerate it: the template's
    cursor has already moved past its date.

    Returns:
        True if deletion was successful, False if not found, not accessible
        or a recurring template
    """
    existing = await get_transaction_by_id(supabase_client, user_id, transaction_id)
    if not existing:
        logger.warning(
            f"Cannot delete transaction {transaction_id}: "
            f"not found or not accessible by user {user_id}"
        )
        return False

    logger.info(f"Deleting transaction {transaction_id} for user {user_id}")

    result = (
        supabase_client.table(TRANSACTION_TABLE)
        .delete()
        .eq("id", transaction_id)
        .eq("user_id", user_id)
        .eq("is_recurring_template", False)
        .execute()
    )

    if not result.data or len(result.data) == 0:
        logger.warning(
            f"Deletion of transaction {transaction_id} returned no rows for user {user_id}"
        )
        return False

    logger.info(f"Transaction {transaction_id} deleted successfully for user {user_id}")

    return True
