"""
Recurring template CRUD and sync API endpoints.

Endpoints:
- GET /recurring-transactions - List all recurring templates
- POST /recurring-transactions - Create a new template
- GET /recurring-transactions/{id} - Get single template
- PATCH /recurring-transactions/{id} - Update template
- POST /recurring-transactions/{id}/stop - Stop generating further occurrences
- DELETE /recurring-transactions/{id} - Delete template (occurrences are kept)
- POST /transactions/sync-recurring - Backfill legacy templates and materialize due occurrences
"""

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status

from pennybook.auth.dependencies import AuthenticatedUser, get_authenticated_user
from pennybook.config import settings
from pennybook.db.client import get_supabase_client
from pennybook.schemas.recurring_transactions import (
    RecurringTransactionCreateRequest,
    RecurringTransactionCreateResponse,
    RecurringTransactionDeleteResponse,
    RecurringTransactionListResponse,
    RecurringTransactionResponse,
    RecurringTransactionUpdateRequest,
    RecurringTransactionUpdateResponse,
    SyncRecurringTransactionsRequest,
    SyncRecurringTransactionsResponse,
)
from pennybook.schemas.transactions import TransactionRecord
from pennybook.services.recurring_transaction_service import (
    create_recurring_transaction,
    delete_recurring_transaction,
    get_all_recurring_transactions,
    get_recurring_transaction_by_id,
    stop_recurring_transaction,
    sync_recurring_transactions,
    update_recurring_transaction,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recurring-transactions", tags=["recurring-transactions"])


def _to_response(row: Dict[str, Any]) -> RecurringTransactionResponse:
    return RecurringTransactionResponse.from_record(TransactionRecord.model_validate(row))


def _not_found(recurring_transaction_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": "not_found",
            "details": f"Recurring transaction {recurring_transaction_id} not found or not accessible"
        }
    )


@router.get(
    "",
    response_model=RecurringTransactionListResponse,
    status_code=status.HTTP_200_OK,
    summary="List all recurring templates",
    description="""
    Retrieve all recurring templates for the authenticated user,
    ordered by next due occurrence.

    Security:
    - Requires valid Authorization Bearer token
    - RLS ensures users only see their own templates
    """
)
async def list_recurring_transactions(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringTransactionListResponse:
    """List all recurring templates for the authenticated user."""
    logger.info(f"Listing recurring templates for user {auth_user.user_id}")

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        rules = await get_all_recurring_transactions(
            supabase_client=supabase_client,
            user_id=auth_user.user_id
        )

        rule_responses = []
        for r in rules:
            try:
                rule_responses.append(_to_response(r))
            except ValueError as e:
                # Malformed legacy rows are listed by neither view until repaired
                logger.warning(f"Skipping malformed recurring template {r.get('id')}: {e}")

        logger.info(f"Returning {len(rule_responses)} recurring templates for user {auth_user.user_id}")

        return RecurringTransactionListResponse(
            recurring_transactions=rule_responses,
            count=len(rule_responses)
        )

    except Exception as e:
        logger.error(f"Failed to fetch recurring templates: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "fetch_error",
                "details": "Failed to retrieve recurring transactions from database"
            }
        )


@router.post(
    "",
    response_model=RecurringTransactionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new recurring template",
    description="""
    Create a new recurring template.

    The first occurrence is due on `date`; it and every later occurrence are
    materialized by POST /transactions/sync-recurring once due.
    Frequency must be one of daily, weekly, monthly, yearly.
    """
)
async def create_new_recurring_transaction(
    request: RecurringTransactionCreateRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringTransactionCreateResponse:
    """Create a new recurring template."""
    logger.info(f"Creating recurring template for user {auth_user.user_id}")

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        created_rule = await create_recurring_transaction(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            category_id=request.category_id,
            amount=request.amount,
            date=request.date,
            recurring_frequency=request.recurring_frequency,
            description=request.description,
            payment_method=request.payment_method,
            notes=request.notes,
            recurring_end_date=request.recurring_end_date,
        )

        return RecurringTransactionCreateResponse(
            status="CREATED",
            recurring_transaction=_to_response(created_rule),
            message="Recurring transaction created successfully"
        )

    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "invalid_request",
                "details": str(e)
            }
        )
    except Exception as e:
        logger.error(f"Failed to create recurring template: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "create_error",
                "details": "Failed to create recurring transaction"
            }
        )


@router.get(
    "/{recurring_transaction_id}",
    response_model=RecurringTransactionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a single recurring template",
)
async def get_recurring_transaction(
    recurring_transaction_id: Annotated[str, Path(description="Recurring template UUID")],
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringTransactionResponse:
    """Get a single recurring template by ID."""
    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        rule = await get_recurring_transaction_by_id(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            recurring_transaction_id=recurring_transaction_id
        )

        if not rule:
            raise _not_found(recurring_transaction_id)

        return _to_response(rule)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to fetch recurring template {recurring_transaction_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "fetch_error",
                "details": "Failed to retrieve recurring transaction"
            }
        )


@router.patch(
    "/{recurring_transaction_id}",
    response_model=RecurringTransactionUpdateResponse,
    status_code=status.HTTP_200_OK,
    summary="Update a recurring template",
    description="""
    Partially update a recurring template.

    The next occurrence cursor is never changed here. A frequency change takes
    effect from the next due occurrence; past occurrences are untouched.
    Sending recurring_end_date: null removes the end date.
    """
)
async def update_existing_recurring_transaction(
    recurring_transaction_id: Annotated[str, Path(description="Recurring template UUID")],
    request: RecurringTransactionUpdateRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringTransactionUpdateResponse:
    """Update a recurring template."""
    logger.info(f"Updating recurring template {recurring_transaction_id} for user {auth_user.user_id}")

    # Only fields the client sent; an explicit null clears notes or the end date
    updates = request.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "invalid_request",
                "details": "At least one field must be provided for update"
            }
        )

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        updated_rule = await update_recurring_transaction(
            supabase_client,
            auth_user.user_id,
            recurring_transaction_id,
            **updates
        )

        if not updated_rule:
            raise _not_found(recurring_transaction_id)

        return RecurringTransactionUpdateResponse(
            status="UPDATED",
            recurring_transaction=_to_response(updated_rule),
            message="Recurring transaction updated successfully"
        )

    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "invalid_request",
                "details": str(e)
            }
        )
    except Exception as e:
        logger.error(f"Failed to update recurring template {recurring_transaction_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "update_error",
                "details": "Failed to update recurring transaction"
            }
        )


@router.post(
    "/{recurring_transaction_id}/stop",
    response_model=RecurringTransactionUpdateResponse,
    status_code=status.HTTP_200_OK,
    summary="Stop a recurring template",
    description="""
    Set the template's end date to now so no occurrence after now is generated.
    Occurrences already due are still materialized by the next sync.
    """
)
async def stop_existing_recurring_transaction(
    recurring_transaction_id: Annotated[str, Path(description="Recurring template UUID")],
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringTransactionUpdateResponse:
    """Stop a recurring template."""
    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        stopped_rule = await stop_recurring_transaction(
            supabase_client,
            auth_user.user_id,
            recurring_transaction_id
        )

        if not stopped_rule:
            raise _not_found(recurring_transaction_id)

        return RecurringTransactionUpdateResponse(
            status="UPDATED",
            recurring_transaction=_to_response(stopped_rule),
            message="Recurring transaction stopped"
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to stop recurring template {recurring_transaction_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "update_error",
                "details": "Failed to stop recurring transaction"
            }
        )


@router.delete(
    "/{recurring_transaction_id}",
    response_model=RecurringTransactionDeleteResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete a recurring template",
    description="""
    Delete a recurring template.

    Future generation stops; occurrences already materialized are preserved.
    """
)
async def delete_existing_recurring_transaction(
    recurring_transaction_id: Annotated[str, Path(description="Recurring template UUID to delete")],
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringTransactionDeleteResponse:
    """Delete a recurring template."""
    logger.info(f"Deleting recurring template {recurring_transaction_id} for user {auth_user.user_id}")

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        success = await delete_recurring_transaction(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            recurring_transaction_id=recurring_transaction_id
        )

        if not success:
            raise _not_found(recurring_transaction_id)

        return RecurringTransactionDeleteResponse(
            status="DELETED",
            recurring_transaction_id=str(recurring_transaction_id),
            message="Recurring transaction deleted successfully. Past occurrences were kept."
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to delete recurring template {recurring_transaction_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "delete_error",
                "details": "Failed to delete recurring transaction"
            }
        )


# Sync endpoint (separate router for transactions)
sync_router = APIRouter(prefix="/transactions", tags=["transactions", "recurring-sync"])


@sync_router.post(
    "/sync-recurring",
    response_model=SyncRecurringTransactionsResponse,
    status_code=status.HTTP_200_OK,
    summary="Synchronize recurring transactions",
    description="""
    Materialize pending occurrences of recurring templates.

    Designed to be called ONCE per session start (splash screen), before the
    transaction list is first loaded:

    1. Backfills a cursor for legacy templates (no historical occurrences)
    2. Materializes every occurrence due up to now, at most
       RECURRING_MAX_PER_TEMPLATE per template; larger backlogs continue on
       the next call
    3. Returns reload_required=true when new occurrences were created

    Calling it again immediately creates nothing.
    """
)
async def sync_recurring_transactions_endpoint(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    request: Optional[SyncRecurringTransactionsRequest] = Body(None),
) -> SyncRecurringTransactionsResponse:
    """Synchronize recurring transactions."""
    logger.info(f"Syncing recurring transactions for user {auth_user.user_id}")

    max_per_template = settings.RECURRING_MAX_PER_TEMPLATE
    if request is not None and request.max_occurrences_per_template is not None:
        max_per_template = min(max_per_template, request.max_occurrences_per_template)

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        result = await sync_recurring_transactions(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            max_per_template=max_per_template
        )

        return SyncRecurringTransactionsResponse(
            status="SYNCED",
            occurrences_created=result.occurrences_created,
            templates_processed=result.templates_processed,
            templates_backfilled=result.templates_backfilled,
            templates_failed=result.templates_failed,
            templates_skipped=result.templates_skipped,
            reload_required=result.reload_required,
            message=(
                f"Generated {result.occurrences_created} transactions from "
                f"{result.templates_processed} recurring templates."
            )
        )

    except Exception as e:
        logger.error(f"Failed to sync recurring transactions: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "sync_error",
                "details": "Failed to synchronize recurring transactions"
            }
        )
