"""
Tests for customer API routes.

Routes run through the FastAPI app with the database session mocked and
service calls patched where the flow needs a specific outcome.
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

from fastapi.testclient import TestClient

from app.exceptions import (
    InsufficientFundsError,
    RunLimitReachedError,
    SubscriptionExpiredError,
    TaskBlockedError,
)
from app.models.domain import CreditPurchaseResult
from app.services.ledger import ledger_entry_to_domain
from app.services.tasks import task_to_domain
from tests.conftest import (
    create_mock_customer,
    create_mock_ledger_entry,
    create_mock_run,
    create_mock_task,
    make_result,
)


def _prefix(customer_id) -> str:
    return f"/v1/customers/{customer_id}"


class TestCustomerRoutes:
    """Tests for profile and onboarding routes."""

    def test_get_customer(self, db_client: TestClient, db_session: AsyncMock):
        """Profile includes wallet and credit balances."""
        customer = create_mock_customer()
        db_session.get = AsyncMock(return_value=customer)

        response = db_client.get(_prefix(customer.id))

        assert response.status_code == 200
        body = response.json()
        assert body["customer_id"] == str(customer.id)
        assert body["wallet_balance_minor"] == 1_000_000
        assert body["ai_credits"] == 500

    def test_get_unknown_customer(self, db_client: TestClient):
        """Unknown customers are 404."""
        response = db_client.get(_prefix(uuid4()))
        assert response.status_code == 404

    def test_onboarding_validates_pin(self, db_client: TestClient):
        """PIN codes must be six digits."""
        response = db_client.post(
            _prefix(uuid4()) + "/onboarding",
            json={
                "phone": "+919800000000",
                "address": "12 MG Road",
                "city": "Pune",
                "pin": "4110AB",
                "state": "Maharashtra",
                "business_name": "Asha Traders",
            },
        )
        assert response.status_code == 422


class TestWalletRoutes:
    """Tests for wallet, renewal and credit routes."""

    def test_top_up_below_minimum(self, db_client: TestClient):
        """Amounts under the minimum are 422."""
        response = db_client.post(_prefix(uuid4()) + "/wallet/top-ups", json={"amount_minor": 1})
        assert response.status_code == 422

    def test_renewal_shortfall_header(self, db_client: TestClient):
        """A failed renewal tells the client how much to top up."""
        with patch(
            "app.api.routes.LedgerService.renew_subscription", new_callable=AsyncMock
        ) as mock_renew:
            mock_renew.side_effect = InsufficientFundsError(1_000_000, 1_179_882)
            response = db_client.post(_prefix(uuid4()) + "/subscription/renewals")

        assert response.status_code == 402
        assert response.headers["X-Shortfall-Minor"] == "179882"

    def test_purchase_credits(self, db_client: TestClient):
        """Purchases return the ledger entry and new balances."""
        customer_id = uuid4()
        entry = ledger_entry_to_domain(create_mock_ledger_entry(customer_id=customer_id))
        result = CreditPurchaseResult(
            entry=entry,
            cost_minor=1_000_000,
            auto_approved=False,
            wallet_balance_minor=0,
            ai_credits=500,
        )
        with patch(
            "app.api.routes.LedgerService.purchase_credits", new_callable=AsyncMock
        ) as mock_purchase:
            mock_purchase.return_value = result
            response = db_client.post(
                _prefix(customer_id) + "/credits/purchases", json={"quantity": 2000}
            )

        assert response.status_code == 201
        body = response.json()
        assert body["auto_approved"] is False
        assert body["entry"]["status"] == "pending"
        mock_purchase.assert_called_once_with(customer_id, 2000)

    def test_purchase_requires_positive_quantity(self, db_client: TestClient):
        """Zero credits is a validation error."""
        response = db_client.post(_prefix(uuid4()) + "/credits/purchases", json={"quantity": 0})
        assert response.status_code == 422


class TestProjectRoutes:
    """Tests for project and run routes."""

    def test_run_refused_when_expired(self, db_client: TestClient):
        """Expired subscriptions cannot run workflows."""
        customer_id = uuid4()
        with patch(
            "app.api.routes.ProjectService.run_workflow", new_callable=AsyncMock
        ) as mock_run:
            mock_run.side_effect = SubscriptionExpiredError(customer_id)
            response = db_client.post(
                _prefix(customer_id) + f"/projects/{uuid4()}/runs",
                json={"workflow": "Lead Scrape", "input": "pune"},
            )

        assert response.status_code == 403

    def test_run_limit_is_conflict(self, db_client: TestClient):
        """Exhausted run allotments are 409."""
        project_id = uuid4()
        with patch(
            "app.api.routes.ProjectService.run_workflow", new_callable=AsyncMock
        ) as mock_run:
            mock_run.side_effect = RunLimitReachedError(project_id, 100, 100)
            response = db_client.post(
                _prefix(uuid4()) + f"/projects/{project_id}/runs", json={"workflow": "Scrape"}
            )

        assert response.status_code == 409

    def test_list_runs(self, db_client: TestClient, db_session: AsyncMock):
        """Run history is returned with a count."""
        run = create_mock_run()
        db_session.execute = AsyncMock(return_value=make_result(rows=[run]))

        response = db_client.get(_prefix(run.customer_id) + "/runs")

        assert response.status_code == 200
        body = response.json()
        assert body["total_count"] == 1
        assert body["runs"][0]["run_id"] == str(run.id)
        assert body["runs"][0]["status"] == "success"

    def test_blank_project_name(self, db_client: TestClient):
        """Project names cannot be blank."""
        response = db_client.post(
            _prefix(uuid4()) + "/projects", json={"template_id": "lead-gen", "name": "   "}
        )
        assert response.status_code == 422


class TestTaskRoutes:
    """Tests for task routes."""

    def test_create_task(self, db_client: TestClient):
        """A plain task is created in todo."""
        response = db_client.post(_prefix(uuid4()) + "/tasks", json={"title": "Call supplier"})

        assert response.status_code == 201
        assert response.json()["status"] == "todo"

    def test_blocked_update_is_conflict(self, db_client: TestClient):
        """Moving a blocked task is 409 and names the blockers."""
        task_id = uuid4()
        with patch("app.api.routes.TaskService.update_task", new_callable=AsyncMock) as mock_update:
            mock_update.side_effect = TaskBlockedError(task_id, ["Collect GST"])
            response = db_client.patch(
                _prefix(uuid4()) + f"/tasks/{task_id}", json={"status": "in-progress"}
            )

        assert response.status_code == 409
        assert "Collect GST" in response.json()["detail"]

    def test_update_passes_only_sent_fields(self, db_client: TestClient):
        """Omitted fields are left out of the update."""
        row = create_mock_task()
        with patch("app.api.routes.TaskService.update_task", new_callable=AsyncMock) as mock_update:
            mock_update.return_value = task_to_domain(row)
            response = db_client.patch(
                _prefix(row.customer_id) + f"/tasks/{row.id}", json={"priority": "high"}
            )

        assert response.status_code == 200
        changes = mock_update.call_args.args[2]
        assert changes.fields_set == frozenset({"priority"})

    def test_delete_unknown_task(self, db_client: TestClient):
        """Deleting a missing task is 404."""
        response = db_client.delete(_prefix(uuid4()) + f"/tasks/{uuid4()}")
        assert response.status_code == 404
