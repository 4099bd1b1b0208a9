"""
Persistence gateway for the recurring engine.

The recurring engine never talks to Supabase directly. It receives a
TransactionGateway in its constructor, which keeps the engine testable with
in-memory doubles and keeps the per-user client out of module globals.

Atomicity:
    Everything written inside `with gateway.atomic():` is committed as one
    unit. SupabaseTransactionGateway buffers the writes and flushes them on a
    clean exit through the `materialize_recurring_occurrences` RPC, which
    inserts the occurrences and advances the template cursor in a single
    database transaction. If the block raises, nothing is sent.
"""

import logging
from contextlib import contextmanager
from typing import Any, ContextManager, Dict, Iterator, List, Optional, Protocol

from pydantic import ValidationError
from supabase import Client

from pennybook.schemas.transactions import TransactionRecord
from pennybook.utils.constants import MATERIALIZE_RPC, TRANSACTION_TABLE

logger = logging.getLogger(__name__)


class TransactionGateway(Protocol):
    """Operations the recurring engine needs from the record store."""

    def select_templates_due_by(self, timestamp_ms: int) -> List[TransactionRecord]:
        """Templates whose next_occurrence_cursor is <= timestamp_ms (cursor not null)."""
        ...

    def select_templates_missing_cursor(self) -> List[TransactionRecord]:
        """Templates with a frequency but no next_occurrence_cursor (legacy rows)."""
        ...

    def insert_occurrence(self, record: TransactionRecord) -> None:
        """Persist one materialized occurrence."""
        ...

    def update_template_cursor(
        self,
        template_id: str,
        new_cursor_ms: int,
        updated_at_ms: int,
        expected_cursor_ms: Optional[int] = None,
    ) -> None:
        """
        Set next_occurrence_cursor and updated_at on a template.

        When expected_cursor_ms is given the write is refused unless the stored
        cursor still equals it, so a second run that read the same template
        cannot materialize the same occurrences again.
        """
        ...

    def atomic(self) -> ContextManager[None]:
        """Unit of work: committed on clean exit, discarded on exception."""
        ...


class _PendingWrites:
    """Writes buffered inside an atomic() block."""

    def __init__(self) -> None:
        self.occurrences: List[Dict[str, Any]] = []
        self.template_id: Optional[str] = None
        self.next_cursor: Optional[int] = None
        self.expected_cursor: Optional[int] = None
        self.updated_at: Optional[int] = None


class SupabaseTransactionGateway:
    """
    TransactionGateway backed by the Supabase `transaction` table.

    Args:
        supabase_client: Authenticated Supabase client (RLS enforced)
        user_id: The authenticated user's ID; every query is scoped to it
    """

    def __init__(self, supabase_client: Client, user_id: str):
        self._client = supabase_client
        self._user_id = user_id
        self._pending: Optional[_PendingWrites] = None

    def _parse_rows(self, rows: Optional[List[Dict[str, Any]]]) -> List[TransactionRecord]:
        records: List[TransactionRecord] = []
        for row in rows or []:
            try:
                records.append(TransactionRecord.model_validate(row))
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed transaction row {row.get('id')}: "
                    f"{e.error_count()} validation error(s)"
                )
        return records

    def select_templates_due_by(self, timestamp_ms: int) -> List[TransactionRecord]:
        result = (
            self._client.table(TRANSACTION_TABLE)
            .select("*")
            .eq("user_id", self._user_id)
            .eq("is_recurring_template", True)
            .lte("next_occurrence_cursor", timestamp_ms)
            .order("next_occurrence_cursor")
            .execute()
        )
        templates = self._parse_rows(result.data)
        logger.debug(f"{len(templates)} templates due by {timestamp_ms} for user {self._user_id}")
        return templates

    def select_templates_missing_cursor(self) -> List[TransactionRecord]:
        result = (
            self._client.table(TRANSACTION_TABLE)
            .select("*")
            .eq("user_id", self._user_id)
            .eq("is_recurring_template", True)
            .is_("next_occurrence_cursor", "null")
            .not_.is_("recurring_frequency", "null")
            .order("date")
            .execute()
        )
        return self._parse_rows(result.data)

    def _to_payload(self, record: TransactionRecord) -> Dict[str, Any]:
        payload = record.model_dump(mode="json")
        payload["user_id"] = self._user_id
        return payload

    def insert_occurrence(self, record: TransactionRecord) -> None:
        if record.is_recurring_template:
            raise ValueError("Materialized occurrences must not be recurring templates")

        payload = self._to_payload(record)
        if self._pending is not None:
            self._pending.occurrences.append(payload)
            return

        result = self._client.table(TRANSACTION_TABLE).insert(payload).execute()
        if not result.data:
            raise Exception(f"Failed to insert occurrence {record.id}: no data returned")

    def update_template_cursor(
        self,
        template_id: str,
        new_cursor_ms: int,
        updated_at_ms: int,
        expected_cursor_ms: Optional[int] = None,
    ) -> None:
        if self._pending is not None:
            if self._pending.template_id not in (None, template_id):
                raise ValueError("A unit of work can only advance one template cursor")
            self._pending.template_id = template_id
            self._pending.next_cursor = new_cursor_ms
            self._pending.updated_at = updated_at_ms
            self._pending.expected_cursor = expected_cursor_ms
            return

        query = (
            self._client.table(TRANSACTION_TABLE)
            .update({"next_occurrence_cursor": new_cursor_ms, "updated_at": updated_at_ms})
            .eq("id", template_id)
            .eq("user_id", self._user_id)
            .eq("is_recurring_template", True)
        )
        if expected_cursor_ms is not None:
            query = query.eq("next_occurrence_cursor", expected_cursor_ms)

        result = query.execute()
        if not result.data:
            raise Exception(
                f"Failed to update cursor of template {template_id}: no rows updated "
                "(missing, or cursor changed since it was read)"
            )

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if self._pending is not None:
            raise RuntimeError("Nested units of work are not supported")

        pending = _PendingWrites()
        self._pending = pending
        try:
            yield
        except Exception:
            logger.debug(
                f"Discarding {len(pending.occurrences)} buffered occurrence(s) "
                f"for template {pending.template_id}"
            )
            raise
        else:
            self._pending = None
            self._flush(pending)
        finally:
            self._pending = None

    def _flush(self, pending: _PendingWrites) -> None:
        if pending.template_id is None:
            # No cursor to move: a single multi-row insert is atomic on its own
            if pending.occurrences:
                result = self._client.table(TRANSACTION_TABLE).insert(pending.occurrences).execute()
                if not result.data:
                    raise Exception("Failed to insert occurrences: no data returned")
            return

        result = self._client.rpc(
            MATERIALIZE_RPC,
            {
                "p_user_id": self._user_id,
                "p_template_id": pending.template_id,
                "p_occurrences": pending.occurrences,
                "p_expected_cursor": pending.expected_cursor,
                "p_next_cursor": pending.next_cursor,
                "p_updated_at": pending.updated_at,
            },
        ).execute()

        data = getattr(result, "data", None)
        if not isinstance(data, list) or len(data) == 0:
            raise Exception(
                f"RPC {MATERIALIZE_RPC} returned no rows for template {pending.template_id}"
            )

        inserted = data[0].get("occurrences_inserted") if isinstance(data[0], dict) else None
        if inserted is not None and int(inserted) != len(pending.occurrences):
            raise Exception(
                f"RPC {MATERIALIZE_RPC} inserted {inserted} of "
                f"{len(pending.occurrences)} occurrences for template {pending.template_id}"
            )

        logger.debug(
            f"Committed {len(pending.occurrences)} occurrence(s) for template "
            f"{pending.template_id}, cursor -> {pending.next_cursor}"
        )
