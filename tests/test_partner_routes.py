"""
Tests for partner portal routes.
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

from fastapi.testclient import TestClient

from app.exceptions import InvalidTransitionError, PayoutBelowMinimumError
from app.models.domain import LeadImportResult
from app.services.commission import commission_to_domain, lead_to_domain, payout_to_domain
from tests.conftest import (
    create_mock_commission,
    create_mock_lead,
    create_mock_partner,
    create_mock_payout,
)


def _prefix(partner_id) -> str:
    return f"/v1/partners/{partner_id}"


class TestPartnerProfile:
    """Tests for the partner profile route."""

    def test_get_partner(self, db_client: TestClient, db_session: AsyncMock):
        """Profile includes the referral link and balances."""
        partner = create_mock_partner(code="RAHUL20")
        db_session.get = AsyncMock(return_value=partner)

        response = db_client.get(_prefix(partner.id))

        assert response.status_code == 200
        assert response.json()["code"] == "RAHUL20"
        assert response.json()["referral_link"] == "/?ref=RAHUL20"

    def test_unknown_partner(self, db_client: TestClient):
        """Unknown partners are 404."""
        assert db_client.get(_prefix(uuid4())).status_code == 404


class TestLeadRoutes:
    """Tests for lead routes."""

    def test_import_schedules_delivery(self, db_client: TestClient):
        """An import with a notification delivers the outbox after the response."""
        partner_id = uuid4()
        lead = lead_to_domain(create_mock_lead(partner_id=partner_id))
        result = LeadImportResult(imported=[lead], skipped_rows=1, outbox_event_id=uuid4())
        with (
            patch(
                "app.api.partner_routes.CommissionService.import_partner_leads",
                new_callable=AsyncMock,
            ) as mock_import,
            patch("app.api.partner_routes.deliver_outbox", new_callable=AsyncMock) as mock_deliver,
        ):
            mock_import.return_value = result
            response = db_client.post(
                _prefix(partner_id) + "/leads/import",
                json={"csv_text": "name,email\nKiran Stores,kiran@example.com\n,x@example.com"},
            )

        assert response.status_code == 201
        assert response.json()["skipped_rows"] == 1
        mock_deliver.assert_called_once()

    def test_import_without_notification(self, db_client: TestClient):
        """Nothing is delivered when no event was queued."""
        with (
            patch(
                "app.api.partner_routes.CommissionService.import_partner_leads",
                new_callable=AsyncMock,
            ) as mock_import,
            patch("app.api.partner_routes.deliver_outbox", new_callable=AsyncMock) as mock_deliver,
        ):
            mock_import.return_value = LeadImportResult(
                imported=[], skipped_rows=0, outbox_event_id=None
            )
            db_client.post(_prefix(uuid4()) + "/leads/import", json={"csv_text": "name"})

        mock_deliver.assert_not_called()

    def test_register_lead_validates_name(self, db_client: TestClient):
        """Lead names are required."""
        response = db_client.post(_prefix(uuid4()) + "/leads", json={"name": ""})
        assert response.status_code == 422

    def test_convert_lead(self, db_client: TestClient):
        """Conversion returns the locked one-time commission."""
        partner_id = uuid4()
        commission = commission_to_domain(create_mock_commission(partner_id=partner_id))
        with patch(
            "app.api.partner_routes.CommissionService.convert_partner_lead",
            new_callable=AsyncMock,
        ) as mock_convert:
            mock_convert.return_value = commission
            lead_id = uuid4()
            response = db_client.post(
                _prefix(partner_id) + f"/leads/{lead_id}/conversion",
                json={"plan_name": "Pro", "amount_minor": 50_000},
            )

        assert response.status_code == 201
        mock_convert.assert_called_once_with(partner_id, lead_id, "Pro", 50_000)


class TestCommissionRoutes:
    """Tests for proof of work."""

    def test_submit_proof(self, db_client: TestClient):
        """Proof moves the commission under review."""
        partner_id = uuid4()
        commission = commission_to_domain(create_mock_commission(partner_id=partner_id))
        with patch(
            "app.api.partner_routes.CommissionService.submit_partner_work",
            new_callable=AsyncMock,
        ) as mock_submit:
            mock_submit.return_value = commission
            response = db_client.post(
                _prefix(partner_id) + f"/commissions/{commission.commission_id}/proof",
                json={"description": "Onboarded the client", "checklist": ["Call", "Demo"]},
            )

        assert response.status_code == 200
        proof = mock_submit.call_args.args[2]
        assert proof.checklist == ("Call", "Demo")

    def test_submit_proof_twice(self, db_client: TestClient):
        """Submitting for a commission under review is 409."""
        with patch(
            "app.api.partner_routes.CommissionService.submit_partner_work",
            new_callable=AsyncMock,
        ) as mock_submit:
            mock_submit.side_effect = InvalidTransitionError("commission", "Under Review", "submit")
            response = db_client.post(
                _prefix(uuid4()) + f"/commissions/{uuid4()}/proof",
                json={"description": "Again"},
            )

        assert response.status_code == 409


class TestPayoutRoutes:
    """Tests for payout routes."""

    def test_request_payout(self, db_client: TestClient):
        """A payout request is created pending."""
        partner_id = uuid4()
        payout = payout_to_domain(create_mock_payout(partner_id=partner_id))
        with patch(
            "app.api.partner_routes.CommissionService.request_partner_payout",
            new_callable=AsyncMock,
        ) as mock_request:
            mock_request.return_value = payout
            response = db_client.post(
                _prefix(partner_id) + "/payouts", json={"amount_minor": 150_000}
            )

        assert response.status_code == 201
        assert response.json()["amount_minor"] == 150_000

    def test_below_minimum(self, db_client: TestClient):
        """Payouts under the minimum are 409."""
        with patch(
            "app.api.partner_routes.CommissionService.request_partner_payout",
            new_callable=AsyncMock,
        ) as mock_request:
            mock_request.side_effect = PayoutBelowMinimumError(50_000, 100_000)
            response = db_client.post(_prefix(uuid4()) + "/payouts", json={"amount_minor": 50_000})

        assert response.status_code == 409
