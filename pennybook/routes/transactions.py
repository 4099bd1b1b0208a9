"""
Transaction CRUD API endpoints.

Provides endpoints for managing concrete financial transactions.

Transactions are created manually by users or materialized by the recurring
engine from a template. Templates themselves are managed under
/recurring-transactions and are not visible through these endpoints.
"""

import logging
from typing import Annotated, Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from pennybook.auth.dependencies import AuthenticatedUser, get_authenticated_user
from pennybook.db.client import get_supabase_client
from pennybook.schemas.transactions import (
    PaymentMethod,
    TransactionCreateRequest,
    TransactionCreateResponse,
    TransactionDeleteResponse,
    TransactionDetailResponse,
    TransactionListResponse,
    TransactionRecord,
    TransactionUpdateRequest,
    TransactionUpdateResponse,
)
from pennybook.services import (
    create_transaction,
    delete_transaction,
    get_transaction_by_id,
    get_user_transactions,
    update_transaction,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


def _to_detail(row: Dict[str, Any]) -> TransactionDetailResponse:
    """Validate a stored row and map it to the response model."""
    return TransactionDetailResponse.from_record(TransactionRecord.model_validate(row))


@router.post(
    "",
    response_model=TransactionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new transaction",
    description="""
    Create a new transaction manually, or a recurring template.

    This endpoint:
    - Inserts a one-time transaction, or
    - With is_recurring_template=true, inserts a template whose first
      occurrence is due on `date` (materialized by the next sync)

    Security:
    - Requires valid Authorization Bearer token
    - RLS ensures user can only create transactions for themselves
    """
)
async def create_transaction_record(
    request: TransactionCreateRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> TransactionCreateResponse:
    """Create a new transaction or recurring template."""
    logger.info(
        f"Creating transaction for user_id={auth_user.user_id}, "
        f"category={request.category_id}, template={request.is_recurring_template}"
    )

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        created_transaction = await create_transaction(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            category_id=request.category_id,
            amount=request.amount,
            date=request.date,
            description=request.description,
            payment_method=request.payment_method,
            notes=request.notes,
            receipt_uri=request.receipt_uri,
            is_recurring_template=request.is_recurring_template,
            recurring_frequency=request.recurring_frequency,
            recurring_end_date=request.recurring_end_date,
        )

        transaction_detail = _to_detail(created_transaction)

        logger.info(
            f"Transaction created successfully: "
            f"id={transaction_detail.id}, user_id={auth_user.user_id}"
        )

        return TransactionCreateResponse(
            status="CREATED",
            transaction_id=transaction_detail.id,
            transaction=transaction_detail,
            message="Transaction created successfully"
        )

    except ValueError as e:
        logger.error(f"Invalid transaction data: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "invalid_request",
                "details": str(e)
            }
        )
    except Exception as e:
        logger.error(f"Failed to create transaction: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "persistence_error",
                "details": "Failed to save transaction to database"
            }
        )


@router.get(
    "",
    response_model=TransactionListResponse,
    status_code=status.HTTP_200_OK,
    summary="List user's transactions",
    description="""
    Retrieve concrete transactions belonging to the authenticated user.

    This endpoint:
    - Returns paginated list of transactions (recurring templates excluded)
    - Supports filtering by category, payment method, date range (ms) and
      description search
    - Supports sorting by date or amount, newest first by default

    Security:
    - Requires valid authentication token
    - RLS ensures users only see their own transactions
    """
)
async def list_transactions(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    limit: int = Query(50, ge=1, le=100, description="Maximum number of transactions to return"),
    offset: int = Query(0, ge=0, description="Number of transactions to skip for pagination"),
    category_id: Optional[str] = Query(None, description="Filter by category UUID"),
    payment_method: Optional[PaymentMethod] = Query(None, description="Filter by payment method"),
    from_date: Optional[int] = Query(None, description="Inclusive start date (ms)"),
    to_date: Optional[int] = Query(None, description="Inclusive end date (ms)"),
    search: Optional[str] = Query(None, min_length=1, description="Description contains"),
    sort_by: Literal["date", "amount"] = Query("date", description="Sort field (date|amount)"),
    sort_order: Literal["asc", "desc"] = Query("desc", description="Sort order (asc|desc)"),
) -> TransactionListResponse:
    """List concrete transactions for the authenticated user."""
    logger.info(
        f"Listing transactions for user {auth_user.user_id} "
        f"(limit={limit}, offset={offset}, sort_by={sort_by}, sort_order={sort_order})"
    )

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        transactions = await get_user_transactions(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            limit=limit,
            offset=offset,
            category_id=category_id,
            payment_method=payment_method,
            from_date=from_date,
            to_date=to_date,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
        )

        transaction_responses = [_to_detail(txn) for txn in transactions]

        logger.info(f"Returning {len(transaction_responses)} transactions for user {auth_user.user_id}")

        return TransactionListResponse(
            transactions=transaction_responses,
            count=len(transaction_responses),
            limit=limit,
            offset=offset
        )

    except Exception as e:
        logger.error(f"Failed to fetch transactions: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "fetch_error",
                "details": "Failed to retrieve transactions from database"
            }
        )


@router.get(
    "/{transaction_id}",
    response_model=TransactionDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get transaction details",
    description="""
    Retrieve a single transaction by its ID.

    Returns 404 if the transaction doesn't exist, belongs to another user or
    is a recurring template.
    """
)
async def get_transaction(
    transaction_id: str,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> TransactionDetailResponse:
    """Get details of a single transaction."""
    logger.info(f"Fetching transaction {transaction_id} for user {auth_user.user_id}")

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        transaction = await get_transaction_by_id(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            transaction_id=transaction_id
        )

        if not transaction:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "error": "not_found",
                    "details": f"Transaction {transaction_id} not found or not accessible"
                }
            )

        return _to_detail(transaction)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to fetch transaction {transaction_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "fetch_error",
                "details": "Failed to retrieve transaction from database"
            }
        )


@router.patch(
    "/{transaction_id}",
    response_model=TransactionUpdateResponse,
    status_code=status.HTTP_200_OK,
    summary="Update transaction",
    description="""
    Update an existing concrete transaction.

    Only provided fields are updated. Recurring templates are edited through
    /recurring-transactions and return 404 here.
    """
)
async def update_transaction_record(
    transaction_id: str,
    request: TransactionUpdateRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> TransactionUpdateResponse:
    """Update an existing transaction."""
    logger.info(f"Updating transaction {transaction_id} for user {auth_user.user_id}")

    updates = request.model_dump(exclude_none=True)
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
        updated_transaction = await update_transaction(
            supabase_client,
            auth_user.user_id,
            transaction_id,
            **updates
        )

        if not updated_transaction:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "error": "not_found",
                    "details": f"Transaction {transaction_id} not found or not accessible"
                }
            )

        transaction_detail = _to_detail(updated_transaction)

        logger.info(f"Transaction {transaction_id} updated successfully")

        return TransactionUpdateResponse(
            status="UPDATED",
            transaction_id=transaction_detail.id,
            transaction=transaction_detail,
            message="Transaction updated successfully"
        )

    except HTTPException:
        raise
    except ValueError as e:
        logger.error(f"Invalid update data: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "invalid_request",
                "details": str(e)
            }
        )
    except Exception as e:
        logger.error(f"Failed to update transaction {transaction_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "update_error",
                "details": "Failed to update transaction"
            }
        )


@router.delete(
    "/{transaction_id}",
    response_model=TransactionDeleteResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete transaction",
    description="""
    Delete a concrete transaction.

    Deleting a materialized occurrence does not cause it to be generated again.
    Recurring templates are deleted through /recurring-transactions and
    return 404 here.
    """
)
async def delete_transaction_record(
    transaction_id: str,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> TransactionDeleteResponse:
    """Delete a transaction."""
    logger.info(f"Deleting transaction {transaction_id} for user {auth_user.user_id}")

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        success = await delete_transaction(
            supabase_client,
            auth_user.user_id,
            transaction_id
        )

        if not success:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "error": "not_found",
                    "details": f"Transaction {transaction_id} not found or not accessible"
                }
            )

        return TransactionDeleteResponse(
            status="DELETED",
            transaction_id=transaction_id,
            message="Transaction deleted successfully"
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to delete transaction {transaction_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "delete_error",
                "details": "Failed to delete transaction"
            }
        )
