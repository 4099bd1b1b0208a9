"""
Shared constants for the transaction table and the recurring engine.

See: DESIGN.md section "Data model"
"""

# Supabase table holding both concrete transactions and recurring templates
TRANSACTION_TABLE = "transaction"

# RPC that inserts a template's occurrences and advances its cursor in one
# database transaction
MATERIALIZE_RPC = "materialize_recurring_occurrences"

PAYMENT_METHODS = ("cash", "card", "bank", "other")

# Default safety bound for occurrences materialized per template per run
DEFAULT_MAX_PER_TEMPLATE = 60
