"""
Pydantic schemas for transaction CRUD endpoints.

These models define the strict request/response contracts for transaction management,
plus TransactionRecord, the shape of a row in the transaction table.

A row is either a concrete transaction (is_recurring_template = false) or a
recurring template (is_recurring_template = true) that the recurring engine
materializes occurrences from. All timestamps are integer milliseconds since epoch.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

PaymentMethod = Literal["cash", "card", "bank", "other"]
RecurringFrequency = Literal["daily", "weekly", "monthly", "yearly"]


# --- Stored row model ---

class TransactionRecord(BaseModel):
    """
    One row of the transaction table.

    Used by the persistence gateway and the recurring engine. Unknown columns
    returned by the store are ignored.
    """
    model_config = {"extra": "ignore"}

    id: str = Field(..., description="Transaction UUID")
    user_id: Optional[str] = Field(None, description="Owner user UUID")
    amount: float = Field(..., description="Transaction amount")
    category_id: str = Field(..., description="Category UUID")
    description: str = Field("", description="Human-readable description")
    payment_method: PaymentMethod = Field("cash", description="How the transaction was paid")
    notes: Optional[str] = Field(None, description="Free-form notes")
    receipt_uri: Optional[str] = Field(None, description="Attached receipt location")
    date: int = Field(..., description="Occurrence timestamp (ms since epoch)")
    is_recurring_template: bool = Field(False, description="True if this row generates occurrences")
    recurring_frequency: Optional[RecurringFrequency] = Field(None, description="Template cadence")
    recurring_end_date: Optional[int] = Field(None, description="Last allowed occurrence (ms, inclusive)")
    next_occurrence_cursor: Optional[int] = Field(None, description="Next due occurrence (ms)")
    created_at: int = Field(..., description="Creation timestamp (ms)")
    updated_at: int = Field(..., description="Last update timestamp (ms)")


# --- Transaction creation models ---

class TransactionCreateRequest(BaseModel):
    """
    Request to create a new transaction manually.

    When is_recurring_template is true the record becomes a template and
    recurring_frequency is required; the template's first occurrence is due on date.
    """
    category_id: str = Field(..., description="UUID of the spending/earning category")
    amount: float = Field(
        ...,
        description="Transaction amount (must be >= 0)",
        ge=0.0,
        examples=[12.99, 1500.00]
    )
    date: int = Field(
        ...,
        description="Timestamp (ms since epoch) when the transaction occurred",
        examples=[1730300000000]
    )
    description: str = Field(
        "",
        description="Human-readable description for this transaction",
        examples=["Netflix"]
    )
    payment_method: PaymentMethod = Field("cash", description="cash, card, bank or other")
    notes: Optional[str] = Field(None, description="Free-form notes")
    receipt_uri: Optional[str] = Field(None, description="Attached receipt location")
    is_recurring_template: bool = Field(False, description="Create a recurring template")
    recurring_frequency: Optional[RecurringFrequency] = Field(
        None,
        description="Required when is_recurring_template is true"
    )
    recurring_end_date: Optional[int] = Field(
        None,
        description="Optional inclusive end date (ms) for a template"
    )

    @model_validator(mode="after")
    def validate_recurrence(self) -> "TransactionCreateRequest":
        """Templates need a frequency; one-time transactions must not carry recurrence fields."""
        if self.is_recurring_template:
            if self.recurring_frequency is None:
                raise ValueError("recurring_frequency is required for recurring templates")
            if self.recurring_end_date is not None and self.recurring_end_date < self.date:
                raise ValueError("recurring_end_date must not be before date")
        elif self.recurring_frequency is not None or self.recurring_end_date is not None:
            raise ValueError(
                "recurring_frequency and recurring_end_date are only allowed on recurring templates"
            )
        return self


# --- Transaction update models ---

class TransactionUpdateRequest(BaseModel):
    """
    Request to update an existing concrete transaction.

    All fields are optional - only provided fields will be updated.
    Recurrence fields are managed through /recurring-transactions.
    """
    category_id: Optional[str] = Field(None, description="Updated category UUID")
    amount: Optional[float] = Field(None, description="Updated amount (must be >= 0)", ge=0.0)
    date: Optional[int] = Field(None, description="Updated timestamp (ms)")
    description: Optional[str] = Field(None, description="Updated description")
    payment_method: Optional[PaymentMethod] = Field(None, description="Updated payment method")
    notes: Optional[str] = Field(None, description="Updated notes")
    receipt_uri: Optional[str] = Field(None, description="Updated receipt location")


# --- Transaction response models ---

class TransactionDetailResponse(BaseModel):
    """
    Response for GET /transactions/{transaction_id} - Single transaction details.
    """
    id: str = Field(..., description="Transaction UUID")
    user_id: Optional[str] = Field(None, description="Owner user UUID")
    category_id: str = Field(..., description="Category UUID")
    amount: float = Field(..., description="Transaction amount")
    date: int = Field(..., description="Timestamp (ms) when transaction occurred")
    description: str = Field("", description="Transaction description")
    payment_method: PaymentMethod = Field(..., description="Payment method")
    notes: Optional[str] = Field(None, description="Free-form notes")
    receipt_uri: Optional[str] = Field(None, description="Attached receipt location")
    is_recurring_template: bool = Field(False, description="True if this is a recurring template")
    recurring_frequency: Optional[RecurringFrequency] = Field(None, description="Template cadence")
    recurring_end_date: Optional[int] = Field(None, description="Template end date (ms)")
    next_occurrence_cursor: Optional[int] = Field(None, description="Next due occurrence (ms)")
    created_at: int = Field(..., description="Timestamp (ms) when record was created")
    updated_at: int = Field(..., description="Timestamp (ms) of last update")

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "TransactionDetailResponse":
        """Map a stored row to the public response shape."""
        return cls(**record.model_dump())


class TransactionListResponse(BaseModel):
    """
    Response for GET /transactions - List of user's concrete transactions.
    """
    transactions: List[TransactionDetailResponse] = Field(..., description="List of transaction records")
    count: int = Field(..., description="Total number of transactions returned")
    limit: int = Field(..., description="Limit used for pagination")
    offset: int = Field(..., description="Offset used for pagination")


class TransactionCreateResponse(BaseModel):
    """
    Response after successfully creating a transaction.
    """
    status: Literal["CREATED"] = Field("CREATED", description="Indicates the transaction was created")
    transaction_id: str = Field(..., description="UUID of created transaction record")
    transaction: TransactionDetailResponse = Field(..., description="Complete transaction details")
    message: str = Field(
        ...,
        description="Success message",
        examples=["Transaction created successfully"]
    )


class TransactionUpdateResponse(BaseModel):
    """
    Response after successfully updating a transaction.
    """
    status: Literal["UPDATED"] = Field("UPDATED", description="Indicates the transaction was updated")
    transaction_id: str = Field(..., description="UUID of updated transaction record")
    transaction: TransactionDetailResponse = Field(..., description="Complete updated transaction details")
    message: str = Field(
        ...,
        description="Success message",
        examples=["Transaction updated successfully"]
    )


class TransactionDeleteResponse(BaseModel):
    """
    Response after successfully deleting a transaction.
    """
    status: Literal["DELETED"] = Field("DELETED", description="Indicates the transaction was deleted")
    transaction_id: str = Field(..., description="UUID of deleted transaction record")
    message: str = Field(
        ...,
        description="Success message",
        examples=["Transaction deleted successfully"]
    )
