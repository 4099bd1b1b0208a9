"""
Database access layer for Pennybook Backend.

All database operations MUST:
- Respect Row Level Security (RLS): user_id = auth.uid()
- Never bypass RLS

Includes:
- Supabase client initialization (per-request, user token)
- TransactionGateway: the persistence interface consumed by the recurring engine
- SupabaseTransactionGateway: its Supabase implementation
"""

from .client import get_supabase_client
from .gateway import SupabaseTransactionGateway, TransactionGateway

__all__ = ["get_supabase_client", "SupabaseTransactionGateway", "TransactionGateway"]
