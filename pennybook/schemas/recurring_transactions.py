"""
Pydantic schemas for recurring template endpoints and the startup sync.

A recurring template is a transaction row with is_recurring_template = true.
The recurring engine materializes one concrete transaction per due occurrence
and keeps the template's next_occurrence_cursor ahead of "now".
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from pennybook.schemas.transactions import (
    PaymentMethod,
    RecurringFrequency,
    TransactionRecord,
)


class RecurringTransactionResponse(BaseModel):
    """
    Complete recurring template representation.

    Returned by GET endpoints and after create/update operations.
    """
    id: str = Field(..., description="Template UUID")
    user_id: Optional[str] = Field(None, description="Owner user UUID")
    category_id: str = Field(..., description="Category UUID for generated transactions")
    amount: float = Field(..., description="Amount copied to each occurrence")
    description: str = Field("", description="Description copied to each occurrence")
    payment_method: PaymentMethod = Field(..., description="Payment method copied to each occurrence")
    notes: Optional[str] = Field(None, description="Notes copied to each occurrence")
    date: int = Field(..., description="First occurrence of the chain (ms)")
    recurring_frequency: RecurringFrequency = Field(..., description="daily/weekly/monthly/yearly")
    recurring_end_date: Optional[int] = Field(None, description="Inclusive end date (ms), NULL = indefinite")
    next_occurrence_cursor: Optional[int] = Field(
        None,
        description="Next occurrence to materialize (ms); NULL on legacy templates until backfilled"
    )
    created_at: int = Field(..., description="Creation timestamp (ms)")
    updated_at: int = Field(..., description="Last update timestamp (ms)")

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "RecurringTransactionResponse":
        """Map a stored template row to the response shape."""
        if not record.is_recurring_template or record.recurring_frequency is None:
            raise ValueError(f"Row {record.id} is not a recurring template")
        return cls(**record.model_dump(exclude={"receipt_uri", "is_recurring_template"}))


class RecurringTransactionListResponse(BaseModel):
    """Paginated list of recurring templates."""
    recurring_transactions: List[RecurringTransactionResponse]
    count: int = Field(..., description="Total number of templates returned")


class RecurringTransactionCreateRequest(BaseModel):
    """
    Request body for creating a new recurring template.

    The first occurrence is due on date.
    """
    category_id: str = Field(..., description="Category UUID")
    amount: float = Field(..., description="Amount per occurrence", ge=0.0)
    description: str = Field("", description="Transaction description")
    payment_method: PaymentMethod = Field("cash", description="cash, card, bank or other")
    notes: Optional[str] = Field(None, description="Free-form notes")
    date: int = Field(..., description="First occurrence (ms since epoch)")
    recurring_frequency: RecurringFrequency = Field(..., description="daily/weekly/monthly/yearly")
    recurring_end_date: Optional[int] = Field(None, description="Inclusive end date (ms) or NULL")

    @model_validator(mode="after")
    def validate_end_date(self) -> "RecurringTransactionCreateRequest":
        """End date may not precede the first occurrence."""
        if self.recurring_end_date is not None and self.recurring_end_date < self.date:
            raise ValueError("recurring_end_date must not be before date")
        return self


class RecurringTransactionCreateResponse(BaseModel):
    """Response after creating a recurring template."""
    status: Literal["CREATED"] = "CREATED"
    recurring_transaction: RecurringTransactionResponse
    message: str = Field(..., description="Success message")


class RecurringTransactionUpdateRequest(BaseModel):
    """
    Request body for partially updating a recurring template.

    All fields are optional. The cursor and the chain start (date) are not
    updatable; a frequency change takes effect from the next due occurrence.
    """
    category_id: Optional[str] = Field(None, description="Category UUID")
    amount: Optional[float] = Field(None, description="Amount per occurrence", ge=0.0)
    description: Optional[str] = Field(None, description="Transaction description")
    payment_method: Optional[PaymentMethod] = Field(None, description="cash, card, bank or other")
    notes: Optional[str] = Field(None, description="Free-form notes")
    recurring_frequency: Optional[RecurringFrequency] = Field(None, description="daily/weekly/monthly/yearly")
    recurring_end_date: Optional[int] = Field(None, description="Inclusive end date (ms); null removes it")


class RecurringTransactionUpdateResponse(BaseModel):
    """Response after updating or stopping a recurring template."""
    status: Literal["UPDATED"] = "UPDATED"
    recurring_transaction: RecurringTransactionResponse
    message: str = Field(..., description="Success message")


class RecurringTransactionDeleteResponse(BaseModel):
    """Response after deleting a recurring template."""
    status: Literal["DELETED"] = "DELETED"
    recurring_transaction_id: str = Field(..., description="UUID of deleted template")
    message: str = Field(..., description="Success message")


class SyncRecurringTransactionsRequest(BaseModel):
    """
    Optional request body for the sync endpoint.
    """
    max_occurrences_per_template: Optional[int] = Field(
        None,
        description="Lower the per-template cap for this run (cannot exceed the server limit)",
        ge=1
    )


class SyncRecurringTransactionsResponse(BaseModel):
    """
    Response from the sync endpoint.

    reload_required tells the client to reload its transaction list.
    """
    status: Literal["SYNCED"] = "SYNCED"
    occurrences_created: int = Field(..., description="Total occurrences materialized")
    templates_processed: int = Field(..., description="Number of due templates processed")
    templates_backfilled: int = Field(0, description="Legacy templates that received a cursor")
    templates_failed: int = Field(0, description="Templates left for retry on the next sync")
    templates_skipped: int = Field(0, description="Malformed templates skipped until repaired")
    reload_required: bool = Field(..., description="True if new occurrences were created")
    message: str = Field(..., description="Success message")
