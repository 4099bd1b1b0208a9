"""
Recurring transaction materialization engine.

CatchUpGenerator turns due templates into concrete occurrences and advances
each template's cursor past "now". LegacyBackfill assigns an initial cursor to
templates created before the cursor column existed.

RULES:
1. A template's next_occurrence_cursor only moves forward
2. Occurrences are never templates (no cascading generation)
3. No occurrence is created with date > recurring_end_date (end date inclusive)
4. At most max_per_template occurrences per template per run; larger backlogs
   are cleared over consecutive runs
5. Occurrence inserts and the cursor update of one template commit together
   (gateway.atomic()); a failed template is retried on the next run
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable, Optional

from pennybook.config import settings
from pennybook.db.gateway import TransactionGateway
from pennybook.schemas.transactions import TransactionRecord
from pennybook.services.recurrence import (
    RecurringFrequency,
    advance,
    calendar_timezone,
    first_after,
    now_ms,
    parse_frequency,
)

logger = logging.getLogger(__name__)


def build_occurrence(template: TransactionRecord, date_ms: int, created_at_ms: int) -> TransactionRecord:
    """Copy a template's financial fields into a new one-time transaction dated date_ms."""
    return TransactionRecord(
        id=str(uuid.uuid4()),
        user_id=template.user_id,
        amount=template.amount,
        category_id=template.category_id,
        description=template.description,
        payment_method=template.payment_method,
        notes=template.notes,
        receipt_uri=None,
        date=date_ms,
        is_recurring_template=False,
        recurring_frequency=None,
        recurring_end_date=None,
        next_occurrence_cursor=None,
        created_at=created_at_ms,
        updated_at=created_at_ms,
    )


@dataclass
class CatchUpReport:
    """Outcome of one catch-up run."""
    occurrences_created: int = 0
    templates_processed: int = 0
    templates_failed: int = 0
    templates_skipped: int = 0


class CatchUpGenerator:
    """
    Materializes overdue occurrences of every due template.

    Args:
        gateway: Persistence gateway scoped to one user
        max_per_template: Safety bound per template per run
            (defaults to settings.RECURRING_MAX_PER_TEMPLATE)
        tz: Calendar timezone for date arithmetic
        clock: Returns wall-clock ms, used for created_at/updated_at
    """

    def __init__(
        self,
        gateway: TransactionGateway,
        max_per_template: Optional[int] = None,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], int] = now_ms,
    ):
        if max_per_template is None:
            max_per_template = settings.RECURRING_MAX_PER_TEMPLATE
        if max_per_template < 1:
            raise ValueError("max_per_template must be >= 1")

        self._gateway = gateway
        self._max_per_template = max_per_template
        self._tz = tz or calendar_timezone()
        self._clock = clock

    def run(self, now: Optional[int] = None) -> int:
        """Materialize everything due by now; returns the number of occurrences created."""
        return self.catch_up(now).occurrences_created

    def catch_up(self, now: Optional[int] = None) -> CatchUpReport:
        if now is None:
            now = self._clock()

        report = CatchUpReport()
        templates = self._gateway.select_templates_due_by(now)
        logger.info(f"Recurring catch-up: {len(templates)} template(s) due by {now}")

        for template in templates:
            try:
                frequency = self._check_template(template)
            except ValueError as e:
                report.templates_skipped += 1
                logger.warning(f"Skipping malformed recurring template {template.id}: {e}")
                continue

            try:
                created = self._materialize(template, frequency, now)
            except Exception as e:
                # Unit of work discarded: cursor untouched, retried next run
                report.templates_failed += 1
                logger.error(
                    f"Failed to materialize occurrences for template {template.id}: {e}",
                    exc_info=True
                )
                continue

            report.templates_processed += 1
            report.occurrences_created += created

        logger.info(
            f"Recurring catch-up complete: {report.occurrences_created} occurrence(s) from "
            f"{report.templates_processed} template(s), {report.templates_failed} failed, "
            f"{report.templates_skipped} skipped"
        )
        return report

    @staticmethod
    def _check_template(template: TransactionRecord) -> RecurringFrequency:
        """Raise ValueError for rows the engine cannot materialize."""
        if not template.is_recurring_template:
            raise ValueError("row is not a recurring template")
        if template.next_occurrence_cursor is None:
            raise ValueError("template has no next_occurrence_cursor")
        return parse_frequency(template.recurring_frequency)

    def _materialize(self, template: TransactionRecord, frequency: RecurringFrequency, now: int) -> int:
        read_cursor = template.next_occurrence_cursor
        cursor = read_cursor
        end_date = template.recurring_end_date
        created = 0

        with self._gateway.atomic():
            while cursor <= now and created < self._max_per_template:
                if end_date is not None and cursor > end_date:
                    break

                self._gateway.insert_occurrence(build_occurrence(template, cursor, self._clock()))
                created += 1
                cursor = advance(cursor, frequency, self._tz)

            self._gateway.update_template_cursor(
                template.id, cursor, self._clock(), expected_cursor_ms=read_cursor
            )

        if created == self._max_per_template and cursor <= now:
            logger.info(
                f"Template {template.id} hit the per-run cap of {self._max_per_template}; "
                "remaining backlog continues on the next run"
            )
        else:
            logger.debug(f"Template {template.id}: {created} occurrence(s), cursor -> {cursor}")

        return created


class LegacyBackfill:
    """
    Assigns next_occurrence_cursor to templates that predate the column.

    The cursor is the first occurrence after "now" on the chain that starts at
    the template's own date. No past occurrences are materialized.
    Running it again is a no-op once every template has a cursor.
    """

    def __init__(
        self,
        gateway: TransactionGateway,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._gateway = gateway
        self._tz = tz or calendar_timezone()
        self._clock = clock

    def run(self, now: Optional[int] = None) -> int:
        """Backfill all legacy templates; returns how many received a cursor."""
        if now is None:
            now = self._clock()

        templates = self._gateway.select_templates_missing_cursor()
        if not templates:
            return 0

        logger.info(f"Backfilling recurring cursor for {len(templates)} legacy template(s)")

        backfilled = 0
        for template in templates:
            try:
                frequency = parse_frequency(template.recurring_frequency)
            except ValueError as e:
                logger.warning(f"Skipping legacy template {template.id}: {e}")
                continue

            cursor = first_after(template.date, frequency, now, self._tz)
            try:
                self._gateway.update_template_cursor(template.id, cursor, self._clock())
            except Exception as e:
                logger.error(f"Failed to backfill cursor for template {template.id}: {e}", exc_info=True)
                continue
            backfilled += 1

        logger.info(f"Backfill complete: {backfilled} of {len(templates)} template(s) updated")
        return backfilled
