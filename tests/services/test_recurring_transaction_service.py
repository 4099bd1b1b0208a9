"""
Tests for the recurring transaction service.

Covers the startup sync orchestration and template management with a mocked
Supabase client.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from pennybook.services.recurring_transaction_service import (
    create_recurring_transaction,
    delete_recurring_transaction,
    run_startup_sync,
    stop_recurring_transaction,
    sync_recurring_transactions,
    update_recurring_transaction,
)


def ms(year, month, day):
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp()) * 1000


@pytest.fixture
def template_row():
    return {
        "id": "template-1",
        "user_id": "test-user-id",
        "amount": 950.0,
        "category_id": "category-housing",
        "description": "Rent",
        "payment_method": "bank",
        "notes": None,
        "receipt_uri": None,
        "date": ms(2024, 1, 1),
        "is_recurring_template": True,
        "recurring_frequency": "monthly",
        "recurring_end_date": None,
        "next_occurrence_cursor": ms(2024, 7, 1),
        "created_at": ms(2024, 1, 1),
        "updated_at": ms(2024, 6, 1),
    }


def _mock_template_lookup(supabase_client, row):
    select_chain = supabase_client.table.return_value.select.return_value.eq.return_value.eq.return_value.eq.return_value
    select_chain.execute.return_value = MagicMock(data=[row] if row else [])


def _mock_template_update(supabase_client, row):
    update = supabase_client.table.return_value.update
    update.return_value.eq.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(
        data=[row] if row else []
    )
    return update


class TestRunStartupSync:
    """Test backfill, catch-up and the reload callback."""

    def test_backfills_then_materializes(self, fake_gateway, make_template):
        now = ms(2024, 7, 1)
        legacy = fake_gateway.add(make_template(date=ms(2024, 1, 3), frequency="weekly", cursor=None))
        fake_gateway.add(make_template(date=ms(2024, 6, 25), frequency="daily", description="Coffee"))

        result = run_startup_sync(fake_gateway, now=now)

        assert result.templates_backfilled == 1
        assert result.templates_processed == 1
        assert result.occurrences_created == 7
        assert result.reload_required is True
        # The backfilled cursor is in the future: nothing materialized for it
        assert fake_gateway.rows[legacy.id].next_occurrence_cursor > now
        assert all(o.description == "Coffee" for o in fake_gateway.occurrences())

    def test_callback_receives_count(self, fake_gateway, make_template):
        fake_gateway.add(make_template(date=ms(2024, 6, 29), frequency="daily"))
        callback = MagicMock()

        run_startup_sync(fake_gateway, now=ms(2024, 7, 1), on_new_occurrences=callback)

        callback.assert_called_once_with(3)

    def test_no_callback_when_nothing_created(self, fake_gateway, make_template):
        fake_gateway.add(make_template(date=ms(2024, 8, 1), frequency="daily"))
        callback = MagicMock()

        result = run_startup_sync(fake_gateway, now=ms(2024, 7, 1), on_new_occurrences=callback)

        assert result.reload_required is False
        assert result.occurrences_created == 0
        callback.assert_not_called()

    def test_max_per_template_override(self, fake_gateway, make_template):
        fake_gateway.add(make_template(date=ms(2024, 6, 1), frequency="daily"))

        result = run_startup_sync(fake_gateway, now=ms(2024, 7, 1), max_per_template=5)

        assert result.occurrences_created == 5

    def test_reports_skipped_and_failed_separately(self, fake_gateway, make_template):
        fake_gateway.add(make_template(date=ms(2024, 6, 1), frequency=None))
        fake_gateway.add(make_template(date=ms(2024, 6, 1), frequency="weekly", description="Gym"))
        fake_gateway.fail_insert = lambda record: record.description == "Gym"

        result = run_startup_sync(fake_gateway, now=ms(2024, 7, 1))

        assert result.templates_skipped == 1
        assert result.templates_failed == 1
        assert result.templates_processed == 0

    def test_second_sync_is_idempotent(self, fake_gateway, make_template):
        fake_gateway.add(make_template(date=ms(2024, 6, 1), frequency="weekly"))

        first = run_startup_sync(fake_gateway, now=ms(2024, 7, 1))
        second = run_startup_sync(fake_gateway, now=ms(2024, 7, 1))

        assert first.occurrences_created == 5
        assert second.occurrences_created == 0
        assert second.reload_required is False


class TestSyncRecurringTransactions:
    """Test the per-user entry point used by the sync endpoint."""

    @pytest.mark.asyncio
    async def test_builds_gateway_for_user(self, supabase_client, fake_gateway, make_template):
        fake_gateway.add(make_template(date=ms(2024, 6, 30), frequency="daily"))

        with patch(
            "pennybook.services.recurring_transaction_service.SupabaseTransactionGateway",
            return_value=fake_gateway
        ) as gateway_cls:
            result = await sync_recurring_transactions(
                supabase_client, "test-user-id", now=ms(2024, 7, 1)
            )

        gateway_cls.assert_called_once_with(supabase_client, "test-user-id")
        assert result.occurrences_created == 2

    @pytest.mark.asyncio
    async def test_query_failure_propagates(self, supabase_client):
        supabase_client.table.side_effect = Exception("connection refused")

        with pytest.raises(Exception, match="connection refused"):
            await sync_recurring_transactions(supabase_client, "test-user-id", now=ms(2024, 7, 1))


class TestCreateRecurringTransaction:
    """Test template creation."""

    @pytest.mark.asyncio
    async def test_seeds_cursor_at_first_occurrence(self, supabase_client, template_row):
        insert = supabase_client.table.return_value.insert
        insert.return_value.execute.return_value = MagicMock(data=[template_row])

        await create_recurring_transaction(
            supabase_client,
            "test-user-id",
            category_id="category-housing",
            amount=950.0,
            date=ms(2024, 1, 1),
            recurring_frequency="monthly",
        )

        payload = insert.call_args[0][0]
        assert payload["is_recurring_template"] is True
        assert payload["recurring_frequency"] == "monthly"
        assert payload["next_occurrence_cursor"] == ms(2024, 1, 1)
        assert payload["user_id"] == "test-user-id"

    @pytest.mark.asyncio
    async def test_rejects_unknown_frequency(self, supabase_client):
        with pytest.raises(ValueError, match="Invalid recurring frequency"):
            await create_recurring_transaction(
                supabase_client,
                "test-user-id",
                category_id="category-housing",
                amount=950.0,
                date=ms(2024, 1, 1),
                recurring_frequency="biweekly",
            )

        supabase_client.table.return_value.insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_end_date_before_date(self, supabase_client):
        with pytest.raises(ValueError):
            await create_recurring_transaction(
                supabase_client,
                "test-user-id",
                category_id="category-housing",
                amount=950.0,
                date=ms(2024, 2, 1),
                recurring_frequency="monthly",
                recurring_end_date=ms(2024, 1, 1),
            )


class TestUpdateRecurringTransaction:
    """Test template updates."""

    @pytest.mark.asyncio
    async def test_updates_allowed_fields(self, supabase_client, template_row):
        _mock_template_lookup(supabase_client, template_row)
        update = _mock_template_update(supabase_client, {**template_row, "amount": 1000.0})

        result = await update_recurring_transaction(
            supabase_client, "test-user-id", "template-1", amount=1000.0
        )

        assert result["amount"] == 1000.0
        update_data = update.call_args[0][0]
        assert update_data["amount"] == 1000.0
        assert "updated_at" in update_data
        assert "next_occurrence_cursor" not in update_data

    @pytest.mark.asyncio
    async def test_cursor_is_not_updatable(self, supabase_client):
        with pytest.raises(ValueError, match="next_occurrence_cursor"):
            await update_recurring_transaction(
                supabase_client, "test-user-id", "template-1", next_occurrence_cursor=0
            )

    @pytest.mark.asyncio
    async def test_end_date_before_template_date(self, supabase_client, template_row):
        _mock_template_lookup(supabase_client, template_row)

        with pytest.raises(ValueError):
            await update_recurring_transaction(
                supabase_client, "test-user-id", "template-1",
                recurring_end_date=ms(2023, 12, 1)
            )

    @pytest.mark.asyncio
    async def test_end_date_can_be_removed(self, supabase_client, template_row):
        ended = {**template_row, "recurring_end_date": ms(2024, 12, 31)}
        _mock_template_lookup(supabase_client, ended)
        update = _mock_template_update(supabase_client, template_row)

        result = await update_recurring_transaction(
            supabase_client, "test-user-id", "template-1", recurring_end_date=None
        )

        assert result["recurring_end_date"] is None
        update_data = update.call_args[0][0]
        assert "recurring_end_date" in update_data
        assert update_data["recurring_end_date"] is None

    @pytest.mark.asyncio
    async def test_none_does_not_clear_required_fields(self, supabase_client, template_row):
        _mock_template_lookup(supabase_client, template_row)
        update = _mock_template_update(supabase_client, template_row)

        result = await update_recurring_transaction(
            supabase_client, "test-user-id", "template-1", amount=None
        )

        assert result == template_row
        update.assert_not_called()

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self, supabase_client):
        _mock_template_lookup(supabase_client, None)

        result = await update_recurring_transaction(
            supabase_client, "test-user-id", "missing", amount=5.0
        )

        assert result is None


class TestStopRecurringTransaction:
    """Test stopping a template."""

    @pytest.mark.asyncio
    async def test_sets_end_date_to_now(self, supabase_client, template_row):
        now = ms(2024, 7, 10)
        _mock_template_lookup(supabase_client, template_row)
        update = _mock_template_update(supabase_client, {**template_row, "recurring_end_date": now})

        result = await stop_recurring_transaction(supabase_client, "test-user-id", "template-1", now=now)

        assert result["recurring_end_date"] == now
        assert update.call_args[0][0]["recurring_end_date"] == now

    @pytest.mark.asyncio
    async def test_already_ended_template_is_unchanged(self, supabase_client, template_row):
        ended = {**template_row, "recurring_end_date": ms(2024, 3, 1)}
        _mock_template_lookup(supabase_client, ended)

        result = await stop_recurring_transaction(
            supabase_client, "test-user-id", "template-1", now=ms(2024, 7, 10)
        )

        assert result == ended
        supabase_client.table.return_value.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_template_starting_in_future_ends_on_its_date(self, supabase_client, template_row):
        future = {**template_row, "date": ms(2024, 9, 1), "next_occurrence_cursor": ms(2024, 9, 1)}
        _mock_template_lookup(supabase_client, future)
        update = _mock_template_update(supabase_client, {**future, "recurring_end_date": ms(2024, 9, 1)})

        await stop_recurring_transaction(supabase_client, "test-user-id", "template-1", now=ms(2024, 7, 10))

        assert update.call_args[0][0]["recurring_end_date"] == ms(2024, 9, 1)


class TestDeleteRecurringTransaction:
    """Test template deletion."""

    @pytest.mark.asyncio
    async def test_delete_only_targets_templates(self, supabase_client, template_row):
        delete = supabase_client.table.return_value.delete
        delete.return_value.eq.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(
            data=[template_row]
        )

        assert await delete_recurring_transaction(supabase_client, "test-user-id", "template-1") is True
        delete.return_value.eq.return_value.eq.return_value.eq.assert_called_with("is_recurring_template", True)

    @pytest.mark.asyncio
    async def test_delete_not_found(self, supabase_client):
        delete = supabase_client.table.return_value.delete
        delete.return_value.eq.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(data=[])

        assert await delete_recurring_transaction(supabase_client, "test-user-id", "missing") is False
