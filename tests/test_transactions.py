"""
Tests for transaction CRUD endpoints.

Tests cover:
- Transaction creation (one-time and recurring template)
- Transaction listing and filters
- Transaction retrieval by ID
- Transaction updates and deletion
- Authentication and error cases
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch, MagicMock
from pennybook.main import app
from pennybook.auth.dependencies import get_authenticated_user, AuthenticatedUser

client = TestClient(app)


async def mock_get_authenticated_user_dependency():
    """Mock dependency that returns test AuthenticatedUser."""
    return AuthenticatedUser(
        user_id="test-user-id",
        access_token="test-access-token"
    )


@pytest.fixture
def mock_auth():
    """Override get_authenticated_user dependency."""
    app.dependency_overrides[get_authenticated_user] = mock_get_authenticated_user_dependency
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def mock_transaction():
    """Mock transaction data with all database fields."""
    return {
        "id": "transaction-123",
        "user_id": "test-user-id",
        "category_id": "category-789",
        "amount": 128.50,
        "date": 1730300000000,
        "description": "Super Despensa Familiar",
        "payment_method": "card",
        "notes": None,
        "receipt_uri": None,
        "is_recurring_template": False,
        "recurring_frequency": None,
        "recurring_end_date": None,
        "next_occurrence_cursor": None,
        "created_at": 1730300000000,
        "updated_at": 1730300000000
    }


@pytest.fixture
def mock_get_supabase_client():
    """Mock get_supabase_client to return a fake client."""
    with patch("pennybook.routes.transactions.get_supabase_client") as mock:
        mock_supabase_client = MagicMock()
        mock.return_value = mock_supabase_client
        yield mock


class TestCreateTransaction:
    """Tests for POST /transactions"""

    @patch("pennybook.routes.transactions.create_transaction")
    def test_create_transaction_success(self, mock_create_txn, mock_auth, mock_get_supabase_client, mock_transaction):
        """Test successful transaction creation."""
        mock_create_txn.return_value = mock_transaction

        request_body = {
            "category_id": "category-789",
            "amount": 128.50,
            "date": 1730300000000,
            "description": "Super Despensa Familiar",
            "payment_method": "card"
        }

        response = client.post("/transactions", json=request_body)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "CREATED"
        assert data["transaction_id"] == "transaction-123"
        assert data["transaction"]["amount"] == 128.50
        assert data["transaction"]["payment_method"] == "card"
        assert data["transaction"]["is_recurring_template"] is False
        assert mock_create_txn.call_args.kwargs["user_id"] == "test-user-id"

    @patch("pennybook.routes.transactions.create_transaction")
    def test_create_recurring_template(self, mock_create_txn, mock_auth, mock_get_supabase_client, mock_transaction):
        """Templates pass their recurrence fields to the service."""
        mock_create_txn.return_value = {
            **mock_transaction,
            "is_recurring_template": True,
            "recurring_frequency": "monthly",
            "next_occurrence_cursor": 1730300000000
        }

        response = client.post("/transactions", json={
            "category_id": "category-789",
            "amount": 15.99,
            "date": 1730300000000,
            "is_recurring_template": True,
            "recurring_frequency": "monthly"
        })

        assert response.status_code == 201
        assert response.json()["transaction"]["next_occurrence_cursor"] == 1730300000000
        assert mock_create_txn.call_args.kwargs["recurring_frequency"] == "monthly"

    def test_template_without_frequency_is_rejected(self, mock_auth, mock_get_supabase_client):
        """Test request validation of recurrence fields."""
        response = client.post("/transactions", json={
            "category_id": "category-789",
            "amount": 15.99,
            "date": 1730300000000,
            "is_recurring_template": True
        })

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_unknown_frequency_is_rejected(self, mock_auth, mock_get_supabase_client):
        response = client.post("/transactions", json={
            "category_id": "category-789",
            "amount": 15.99,
            "date": 1730300000000,
            "is_recurring_template": True,
            "recurring_frequency": "fortnightly"
        })

        assert response.status_code == 422

    @patch("pennybook.routes.transactions.create_transaction")
    def test_create_transaction_missing_required_field(self, mock_create_txn, mock_auth, mock_get_supabase_client):
        """Test transaction creation fails with missing required field."""
        request_body = {
            # Missing category_id
            "amount": 128.50,
            "date": 1730300000000,
        }

        response = client.post("/transactions", json=request_body)

        assert response.status_code == 422
        mock_create_txn.assert_not_called()

    @patch("pennybook.routes.transactions.create_transaction")
    def test_create_transaction_service_error(self, mock_create_txn, mock_auth, mock_get_supabase_client):
        """Persistence failures map to 500."""
        mock_create_txn.side_effect = Exception("database unavailable")

        response = client.post("/transactions", json={
            "category_id": "category-789",
            "amount": 1.0,
            "date": 1730300000000
        })

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "persistence_error"


class TestListTransactions:
    """Tests for GET /transactions"""

    @patch("pennybook.routes.transactions.get_user_transactions")
    def test_list_transactions_success(self, mock_get_txns, mock_auth, mock_get_supabase_client, mock_transaction):
        """Test successful transaction listing."""
        mock_get_txns.return_value = [mock_transaction]

        response = client.get("/transactions")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["limit"] == 50
        assert data["offset"] == 0
        assert data["transactions"][0]["id"] == "transaction-123"

    @patch("pennybook.routes.transactions.get_user_transactions")
    def test_list_transactions_passes_filters(self, mock_get_txns, mock_auth, mock_get_supabase_client):
        """Query parameters are forwarded to the service."""
        mock_get_txns.return_value = []

        response = client.get(
            "/transactions",
            params={
                "category_id": "category-789",
                "payment_method": "cash",
                "from_date": 100,
                "to_date": 200,
                "search": "rent",
                "sort_by": "amount",
                "sort_order": "asc"
            }
        )

        assert response.status_code == 200
        kwargs = mock_get_txns.call_args.kwargs
        assert kwargs["category_id"] == "category-789"
        assert kwargs["payment_method"] == "cash"
        assert kwargs["from_date"] == 100
        assert kwargs["to_date"] == 200
        assert kwargs["search"] == "rent"
        assert kwargs["sort_by"] == "amount"
        assert kwargs["sort_order"] == "asc"

    def test_list_transactions_invalid_sort(self, mock_auth, mock_get_supabase_client):
        response = client.get("/transactions", params={"sort_by": "description"})

        assert response.status_code == 422


class TestGetTransaction:
    """Tests for GET /transactions/{transaction_id}"""

    @patch("pennybook.routes.transactions.get_transaction_by_id")
    def test_get_transaction_success(self, mock_get_txn, mock_auth, mock_get_supabase_client, mock_transaction):
        mock_get_txn.return_value = mock_transaction

        response = client.get("/transactions/transaction-123")

        assert response.status_code == 200
        assert response.json()["description"] == "Super Despensa Familiar"

    @patch("pennybook.routes.transactions.get_transaction_by_id")
    def test_get_transaction_not_found(self, mock_get_txn, mock_auth, mock_get_supabase_client):
        mock_get_txn.return_value = None

        response = client.get("/transactions/nonexistent-id")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    @patch("pennybook.routes.transactions.get_transaction_by_id")
    def test_get_template_is_not_found(self, mock_get_txn, mock_auth, mock_get_supabase_client):
        # Templates are served by /recurring-transactions only
        mock_get_txn.return_value = None

        response = client.get("/transactions/template-1")

        assert response.status_code == 404
        assert mock_get_txn.call_args.kwargs["transaction_id"] == "template-1"


class TestUpdateTransaction:
    """Tests for PATCH /transactions/{transaction_id}"""

    @patch("pennybook.routes.transactions.update_transaction")
    def test_update_transaction_success(self, mock_update_txn, mock_auth, mock_get_supabase_client, mock_transaction):
        mock_update_txn.return_value = {**mock_transaction, "amount": 150.00}

        response = client.patch("/transactions/transaction-123", json={"amount": 150.00})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "UPDATED"
        assert data["transaction"]["amount"] == 150.00

    def test_update_transaction_empty_body(self, mock_auth, mock_get_supabase_client):
        response = client.patch("/transactions/transaction-123", json={})

        assert response.status_code == 400

    @patch("pennybook.routes.transactions.update_transaction")
    def test_update_transaction_invalid_value(self, mock_update_txn, mock_auth, mock_get_supabase_client):
        mock_update_txn.side_effect = ValueError("Invalid payment_method: crypto")

        response = client.patch("/transactions/transaction-123", json={"amount": 10.0})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_request"

    @patch("pennybook.routes.transactions.update_transaction")
    def test_update_transaction_not_found(self, mock_update_txn, mock_auth, mock_get_supabase_client):
        mock_update_txn.return_value = None

        response = client.patch("/transactions/nonexistent-id", json={"amount": 10.0})

        assert response.status_code == 404


class TestDeleteTransaction:
    """Tests for DELETE /transactions/{transaction_id}"""

    @patch("pennybook.routes.transactions.delete_transaction")
    def test_delete_transaction_success(self, mock_delete_txn, mock_auth, mock_get_supabase_client):
        mock_delete_txn.return_value = True

        response = client.delete("/transactions/transaction-123")

        assert response.status_code == 200
        assert response.json()["status"] == "DELETED"

    @patch("pennybook.routes.transactions.delete_transaction")
    def test_delete_transaction_not_found(self, mock_delete_txn, mock_auth, mock_get_supabase_client):
        mock_delete_txn.return_value = False

        response = client.delete("/transactions/nonexistent-id")

        assert response.status_code == 404


class TestAuthentication:
    """Requests without a token are rejected."""

    def test_missing_authorization_header(self):
        response = client.get("/transactions")

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "unauthorized"
