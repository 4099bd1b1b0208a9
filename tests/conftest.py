"""
Pytest configuration for Pennybook backend tests.

Sets up test environment and global fixtures.
"""
import os
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

import pytest
from unittest.mock import MagicMock

# Disable config validation during tests
# This allows tests to run without requiring real environment variables
os.environ["VALIDATE_CONFIG"] = "false"

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_PUBLISHABLE_KEY", "test-publishable-key")
os.environ.setdefault("CALENDAR_TIMEZONE", "UTC")

from pennybook.schemas.transactions import TransactionRecord  # noqa: E402

DAY_MS = 24 * 60 * 60 * 1000


class FakeGateway:
    """
    In-memory TransactionGateway.

    Writes inside atomic() are buffered and applied on a clean exit, like the
    Supabase gateway. fail_insert, when set, is called with every occurrence
    and makes insert_occurrence raise if it returns True.
    """

    def __init__(self) -> None:
        self.rows: Dict[str, TransactionRecord] = {}
        self.fail_insert: Optional[Callable[[TransactionRecord], bool]] = None
        self.commits = 0
        self._pending: Optional[dict] = None

    def add(self, record: TransactionRecord) -> TransactionRecord:
        self.rows[record.id] = record
        return record

    def occurrences(self) -> List[TransactionRecord]:
        rows = [r for r in self.rows.values() if not r.is_recurring_template]
        return sorted(rows, key=lambda r: r.date)

    def select_templates_due_by(self, timestamp_ms: int) -> List[TransactionRecord]:
        due = [
            r for r in self.rows.values()
            if r.is_recurring_template
            and r.next_occurrence_cursor is not None
            and r.next_occurrence_cursor <= timestamp_ms
        ]
        return sorted(due, key=lambda r: r.next_occurrence_cursor)

    def select_templates_missing_cursor(self) -> List[TransactionRecord]:
        legacy = [
            r for r in self.rows.values()
            if r.is_recurring_template
            and r.next_occurrence_cursor is None
            and r.recurring_frequency is not None
        ]
        return sorted(legacy, key=lambda r: r.date)

    def insert_occurrence(self, record: TransactionRecord) -> None:
        if self.fail_insert is not None and self.fail_insert(record):
            raise RuntimeError(f"insert failed for {record.description}")
        if self._pending is not None:
            self._pending["inserts"].append(record)
        else:
            self.rows[record.id] = record

    def update_template_cursor(
        self,
        template_id: str,
        new_cursor_ms: int,
        updated_at_ms: int,
        expected_cursor_ms: Optional[int] = None,
    ) -> None:
        update = (template_id, new_cursor_ms, updated_at_ms, expected_cursor_ms)
        if self._pending is not None:
            self._pending["cursors"].append(update)
        else:
            self._check_cursor(template_id, expected_cursor_ms)
            self._apply_cursor(*update[:3])

    def _check_cursor(self, template_id: str, expected_cursor_ms: Optional[int]) -> None:
        current = self.rows[template_id].next_occurrence_cursor
        if expected_cursor_ms is not None and current != expected_cursor_ms:
            raise RuntimeError(f"cursor of template {template_id} changed since it was read")

    def _apply_cursor(self, template_id: str, new_cursor_ms: int, updated_at_ms: int) -> None:
        template = self.rows[template_id]
        self.rows[template_id] = template.model_copy(
            update={"next_occurrence_cursor": new_cursor_ms, "updated_at": updated_at_ms}
        )

    @contextmanager
    def atomic(self) -> Iterator[None]:
        self._pending = {"inserts": [], "cursors": []}
        try:
            yield
            pending = self._pending
        finally:
            self._pending = None

        for template_id, _, _, expected in pending["cursors"]:
            self._check_cursor(template_id, expected)
        for record in pending["inserts"]:
            self.rows[record.id] = record
        for update in pending["cursors"]:
            self._apply_cursor(*update[:3])
        self.commits += 1


@pytest.fixture
def supabase_client():
    """
    Mock Supabase client for service and gateway tests.
    Returns a MagicMock that simulates Supabase client behavior.
    """
    mock_client = MagicMock()
    return mock_client


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_template():
    """Factory for recurring template records."""
    counter = {"n": 0}

    def _make(
        date: int,
        frequency: Optional[str] = "monthly",
        cursor: Optional[int] = -1,
        end_date: Optional[int] = None,
        description: str = "Rent",
        amount: float = 950.0,
    ) -> TransactionRecord:
        counter["n"] += 1
        return TransactionRecord(
            id=f"template-{counter['n']}",
            user_id="test-user-id",
            amount=amount,
            category_id="category-housing",
            description=description,
            payment_method="bank",
            notes="standing order",
            receipt_uri="receipts/lease.pdf",
            date=date,
            is_recurring_template=True,
            recurring_frequency=frequency,
            recurring_end_date=end_date,
            # -1 means "seed the cursor at date", None means legacy row
            next_occurrence_cursor=date if cursor == -1 else cursor,
            created_at=date,
            updated_at=date,
        )

    return _make
