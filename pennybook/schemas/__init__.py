"""
Pydantic schemas for API request and response validation.

All FastAPI endpoints use strict Pydantic models with explicit types.
TransactionRecord doubles as the row model of the persistence gateway.
"""
