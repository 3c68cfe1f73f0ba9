"""
Tests for ProjectService.

Unit tests for project creation and workflow run billing.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlsplit
from uuid import uuid4

import pytest

from app.config import Settings
from app.db.models import CreditLedgerEntry, Customer, Project, WorkflowRun
from app.exceptions import (
    InsufficientCreditsError,
    PlanLimitReachedError,
    ProjectPausedError,
    ResourceNotFoundError,
    RunLimitReachedError,
    SubscriptionExpiredError,
    TemplateNotAllowedError,
    WebhookUnreachableError,
)
from app.models.api import ProjectStatus, RunStatus, SubscriptionStatus
from app.services.projects import (
    FALLBACK_SUMMARY,
    SIMULATED_SUMMARY,
    ProjectService,
    build_project_webhook_url,
    check_run_preconditions,
)
from app.services.workflow_webhook import WorkflowWebhookClient
from tests.conftest import (
    create_mock_customer,
    create_mock_plan,
    create_mock_project,
    create_mock_template,
    serve_committed_rows,
)


def _added(db_session: AsyncMock, model: type) -> list:
    """Objects of one model type passed to session.add()."""
    return [c.args[0] for c in db_session.add.call_args_list if isinstance(c.args[0], model)]


def _webhook_client(response=None, error: Exception | None = None) -> MagicMock:
    """Webhook client stub answering with response or raising error."""
    client = MagicMock(spec=WorkflowWebhookClient)
    client.dispatch = AsyncMock(return_value=response, side_effect=error)
    return client


class TestWebhookUrl:
    """Tests for per-project webhook URLs."""

    def test_appends_ids(self) -> None:
        """A plain template URL gets both identifiers."""
        customer_id, project_id = uuid4(), uuid4()
        url = build_project_webhook_url("https://hooks.example.com/wh", customer_id, project_id)

        query = parse_qs(urlsplit(url).query)
        assert query == {"userId": [str(customer_id)], "projectId": [str(project_id)]}

    def test_existing_query_keeps_single_ids(self) -> None:
        """Existing parameters are kept and ids appear exactly once."""
        customer_id, project_id = uuid4(), uuid4()
        url = build_project_webhook_url(
            "https://hooks.example.com/wh?source=portal&userId=stale",
            customer_id,
            project_id,
        )

        query = parse_qs(urlsplit(url).query)
        assert query["source"] == ["portal"]
        assert query["userId"] == [str(customer_id)]
        assert query["projectId"] == [str(project_id)]

    def test_no_template_url(self) -> None:
        """Templates without a URL produce projects without one."""
        assert build_project_webhook_url(None, uuid4(), uuid4()) is None


class TestRunPreconditions:
    """Tests for the run gate, in check order."""

    def test_expired_subscription_checked_first(self) -> None:
        """An expired customer is refused even when everything else fails too."""
        customer = create_mock_customer(
            subscription_status=SubscriptionStatus.EXPIRED, ai_credits=0
        )
        project = create_mock_project(status=ProjectStatus.PAUSED, run_count=100)

        with pytest.raises(SubscriptionExpiredError):
            check_run_preconditions(customer, project, datetime.now(UTC))

    def test_past_end_date_is_expired(self) -> None:
        """Active status past its end date is expired."""
        customer = create_mock_customer(
            subscription_end_date=datetime.now(UTC) - timedelta(minutes=1)
        )
        with pytest.raises(SubscriptionExpiredError):
            check_run_preconditions(customer, create_mock_project(), datetime.now(UTC))

    def test_paused_project(self) -> None:
        """Paused projects do not run."""
        with pytest.raises(ProjectPausedError):
            check_run_preconditions(
                create_mock_customer(),
                create_mock_project(status=ProjectStatus.PAUSED),
                datetime.now(UTC),
            )

    def test_run_limit(self) -> None:
        """A project at 100/100 runs is refused."""
        project = create_mock_project(run_count=100, workflow_count_limit=100)
        with pytest.raises(RunLimitReachedError) as exc_info:
            check_run_preconditions(create_mock_customer(), project, datetime.now(UTC))
        assert exc_info.value.limit == 100

    def test_credits(self) -> None:
        """5 credits cannot pay a cost of 10."""
        with pytest.raises(InsufficientCreditsError):
            check_run_preconditions(
                create_mock_customer(ai_credits=5),
                create_mock_project(ai_credit_cost=10),
                datetime.now(UTC),
            )


class TestRunWorkflow:
    """Tests for executing and billing workflow runs."""

    async def _run(
        self,
        service: ProjectService,
        customer: MagicMock,
        project: MagicMock,
    ):
        with (
            patch.object(service, "_get_customer", new_callable=AsyncMock) as mock_get_customer,
            patch.object(service, "_get_project", new_callable=AsyncMock) as mock_get_project,
            patch.object(
                service, "_lock_customer_for_update", new_callable=AsyncMock
            ) as mock_lock_customer,
            patch.object(service, "_lock_project", new_callable=AsyncMock) as mock_lock_project,
        ):
            mock_get_customer.return_value = customer
            mock_get_project.return_value = project
            mock_lock_customer.return_value = customer
            mock_lock_project.return_value = project
            return await service.run_workflow(customer.id, project.id, "Lead Scrape", "pune")

    async def test_simulated_run_without_webhook(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """No webhook URL means a simulated, billed success."""
        customer = create_mock_customer(ai_credits=100)
        project = create_mock_project(customer_id=customer.id, webhook_url=None, template_id=None)
        webhook = _webhook_client()
        service = ProjectService(db_session, test_settings, webhook)

        run = await self._run(service, customer, project)

        assert run.status == RunStatus.SUCCESS
        assert run.simulated is True
        assert run.response_summary == SIMULATED_SUMMARY
        assert run.credits_deducted == 10
        assert run.template_name == "Custom"
        assert customer.ai_credits == 90
        assert project.run_count == 1
        webhook.dispatch.assert_not_called()

        usage = _added(db_session, CreditLedgerEntry)
        assert len(usage) == 1
        assert usage[0].workflow_run_id == run.run_id
        db_session.commit.assert_called_once()

    async def test_webhook_response_is_summarized(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """A real response is recorded as the run summary."""
        customer = create_mock_customer(ai_credits=100)
        project = create_mock_project(customer_id=customer.id)
        db_session.get = AsyncMock(return_value=create_mock_template())
        webhook = _webhook_client(response={"leads": 12})
        service = ProjectService(db_session, test_settings, webhook)

        run = await self._run(service, customer, project)

        assert run.simulated is False
        assert run.response_summary == 'Webhook Response: {"leads": 12}'
        assert run.template_name == "Lead Generation"
        payload = webhook.dispatch.call_args.args[1]
        assert payload.user_id == customer.id
        assert payload.credits == 10

    async def test_unreachable_webhook_falls_back_to_simulation(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """With the fallback on, an unreachable webhook is a simulated success."""
        customer = create_mock_customer(ai_credits=100)
        project = create_mock_project(customer_id=customer.id, template_id=None)
        webhook = _webhook_client(
            error=WebhookUnreachableError(project.webhook_url, "ConnectError")
        )
        service = ProjectService(db_session, test_settings, webhook)

        run = await self._run(service, customer, project)

        assert run.status == RunStatus.SUCCESS
        assert run.simulated is True
        assert run.response_summary == FALLBACK_SUMMARY
        assert customer.ai_credits == 90

    async def test_unreachable_webhook_without_fallback_is_not_billed(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """With the fallback off, the run fails and costs nothing."""
        settings = test_settings.model_copy(update={"webhook_simulation_fallback": False})
        customer = create_mock_customer(ai_credits=100)
        project = create_mock_project(customer_id=customer.id, template_id=None)
        webhook = _webhook_client(
            error=WebhookUnreachableError(project.webhook_url, "HTTP 502", 502)
        )
        service = ProjectService(db_session, settings, webhook)

        run = await self._run(service, customer, project)

        assert run.status == RunStatus.FAILED
        assert run.response_summary.startswith("Execution Failed.")
        assert run.credits_deducted == 0
        assert customer.ai_credits == 100
        assert project.run_count == 0
        assert _added(db_session, CreditLedgerEntry) == []
        assert len(_added(db_session, WorkflowRun)) == 1

    async def test_run_limit_reached_changes_nothing(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """A project at its limit is refused before dispatch."""
        customer = create_mock_customer(ai_credits=100)
        project = create_mock_project(customer_id=customer.id, run_count=100)
        webhook = _webhook_client()
        service = ProjectService(db_session, test_settings, webhook)

        with pytest.raises(RunLimitReachedError):
            await self._run(service, customer, project)

        webhook.dispatch.assert_not_called()
        db_session.add.assert_not_called()
        assert customer.ai_credits == 100

    async def test_insufficient_credits_changes_nothing(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """5 credits cannot pay a cost of 10; no run is recorded."""
        customer = create_mock_customer(ai_credits=5)
        project = create_mock_project(customer_id=customer.id, ai_credit_cost=10)
        service = ProjectService(db_session, test_settings, _webhook_client())

        with pytest.raises(InsufficientCreditsError):
            await self._run(service, customer, project)

        assert customer.ai_credits == 5
        assert project.run_count == 0
        db_session.commit.assert_not_called()

    async def test_unknown_customer(self, db_session: AsyncMock, test_settings: Settings) -> None:
        """Runs need an existing customer."""
        service = ProjectService(db_session, test_settings, _webhook_client())

        with pytest.raises(ResourceNotFoundError):
            await service.run_workflow(uuid4(), uuid4(), "Lead Scrape", "")


class TestRunRecheckAfterDispatch:
    """Runs committed by another request during dispatch are seen under the row lock."""

    def _service(
        self,
        db_session: AsyncMock,
        test_settings: Settings,
        customer: MagicMock,
        project: MagicMock,
        committed_during_dispatch: dict[type, dict],
    ) -> tuple[ProjectService, MagicMock]:
        committed: dict[type, dict] = {
            Customer: {"ai_credits": customer.ai_credits},
            Project: {"run_count": project.run_count},
        }

        async def dispatch(url, payload):
            for model, values in committed_during_dispatch.items():
                committed[model].update(values)
            return {"ok": True}

        db_session.get = AsyncMock(
            side_effect=lambda model, key: customer if model is Customer else None
        )
        serve_committed_rows(db_session, {Customer: customer, Project: project}, committed)
        webhook = MagicMock(spec=WorkflowWebhookClient)
        webhook.dispatch = AsyncMock(side_effect=dispatch)
        return ProjectService(db_session, test_settings, webhook), webhook

    async def test_credits_spent_during_dispatch(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """15 credits loaded, 5 left after a concurrent run: the second run is refused."""
        customer = create_mock_customer(ai_credits=15)
        project = create_mock_project(customer_id=customer.id, ai_credit_cost=10)
        service, webhook = self._service(
            db_session,
            test_settings,
            customer,
            project,
            {Customer: {"ai_credits": 5}, Project: {"run_count": 1}},
        )

        with pytest.raises(InsufficientCreditsError):
            await service.run_workflow(customer.id, project.id, "Lead Scrape", "pune")

        webhook.dispatch.assert_called_once()
        assert customer.ai_credits == 5
        assert project.run_count == 1
        assert _added(db_session, CreditLedgerEntry) == []
        assert _added(db_session, WorkflowRun) == []
        db_session.commit.assert_not_called()

    async def test_run_limit_reached_during_dispatch(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """The last allowed run committed elsewhere leaves no room for this one."""
        customer = create_mock_customer(ai_credits=100)
        project = create_mock_project(
            customer_id=customer.id, workflow_count_limit=3, run_count=2
        )
        service, _ = self._service(
            db_session,
            test_settings,
            customer,
            project,
            {Customer: {"ai_credits": 90}, Project: {"run_count": 3}},
        )

        with pytest.raises(RunLimitReachedError):
            await service.run_workflow(customer.id, project.id, "Lead Scrape", "pune")

        assert customer.ai_credits == 90
        assert project.run_count == 3
        db_session.commit.assert_not_called()

    async def test_bills_from_committed_balance(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """Both runs are billed when credits remain for each."""
        customer = create_mock_customer(ai_credits=100)
        project = create_mock_project(customer_id=customer.id, ai_credit_cost=10)
        service, _ = self._service(
            db_session,
            test_settings,
            customer,
            project,
            {Customer: {"ai_credits": 90}, Project: {"run_count": 1}},
        )

        run = await service.run_workflow(customer.id, project.id, "Lead Scrape", "pune")

        assert run.credits_deducted == 10
        assert customer.ai_credits == 80
        assert project.run_count == 2
        db_session.commit.assert_called_once()


class TestCreateProject:
    """Tests for project creation from templates."""

    async def test_creates_from_template(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """The project copies the template's cost and allotment."""
        customer = create_mock_customer()
        template = create_mock_template(ai_credit_cost=25, default_workflow_count=40)
        service = ProjectService(db_session, test_settings, _webhook_client())

        with (
            patch.object(
                service, "_lock_customer_for_update", new_callable=AsyncMock
            ) as mock_lock,
            patch.object(service, "_get_plan", new_callable=AsyncMock) as mock_plan,
            patch.object(service, "_count_projects", new_callable=AsyncMock) as mock_count,
            patch.object(service, "_get_template", new_callable=AsyncMock) as mock_template,
        ):
            mock_lock.return_value = customer
            mock_plan.return_value = create_mock_plan(max_projects=3)
            mock_count.return_value = 2
            mock_template.return_value = template
            project = await service.create_project(customer.id, template.id, " Leads ")

        assert project.name == "Leads"
        assert project.ai_credit_cost == 25
        assert project.workflow_count_limit == 40
        assert project.run_count == 0
        assert f"projectId={project.project_id}" in project.webhook_url
        assert len(_added(db_session, Project)) == 1

    async def test_plan_limit(self, db_session: AsyncMock, test_settings: Settings) -> None:
        """A customer at max_projects cannot create another."""
        customer = create_mock_customer()
        service = ProjectService(db_session, test_settings, _webhook_client())

        with (
            patch.object(
                service, "_lock_customer_for_update", new_callable=AsyncMock
            ) as mock_lock,
            patch.object(service, "_get_plan", new_callable=AsyncMock) as mock_plan,
            patch.object(service, "_count_projects", new_callable=AsyncMock) as mock_count,
        ):
            mock_lock.return_value = customer
            mock_plan.return_value = create_mock_plan(max_projects=3)
            mock_count.return_value = 3
            with pytest.raises(PlanLimitReachedError):
                await service.create_project(customer.id, "lead-gen", "Leads")

        db_session.add.assert_not_called()

    async def test_template_restricted_to_other_plans(
        self, db_session: AsyncMock, test_settings: Settings
    ) -> None:
        """Restricted templates are refused on other plans."""
        customer = create_mock_customer(plan_id="starter")
        template = create_mock_template(
            template_id="invoice-gen", allowed_plan_ids=["pro", "business", "enterprise"]
        )
        service = ProjectService(db_session, test_settings, _webhook_client())

        with (
            patch.object(
                service, "_lock_customer_for_update", new_callable=AsyncMock
            ) as mock_lock,
            patch.object(service, "_get_plan", new_callable=AsyncMock) as mock_plan,
            patch.object(service, "_count_projects", new_callable=AsyncMock) as mock_count,
            patch.object(service, "_get_template", new_callable=AsyncMock) as mock_template,
        ):
            mock_lock.return_value = customer
            mock_plan.return_value = create_mock_plan(plan_id="starter", max_projects=1)
            mock_count.return_value = 0
            mock_template.return_value = template
            with pytest.raises(TemplateNotAllowedError):
                await service.create_project(customer.id, template.id, "Invoices")

    async def test_blank_name(self, db_session: AsyncMock, test_settings: Settings) -> None:
        """Project names cannot be blank."""
        service = ProjectService(db_session, test_settings, _webhook_client())

        with pytest.raises(ValueError):
            await service.create_project(uuid4(), "lead-gen", "  ")

    def test_provisioning_is_capped(self, db_session: AsyncMock, test_settings: Settings) -> None:
        """Starter projects follow plan slots up to the provisioning cap."""
        service = ProjectService(db_session, test_settings, _webhook_client())

        projects = service.provision_default_projects(
            create_mock_customer(), create_mock_plan(max_projects=10)
        )

        assert len(projects) == test_settings.max_auto_provisioned_projects
        assert projects[0].name == "My Project 1"
        assert all(p.ai_credit_cost == test_settings.default_ai_credit_cost for p in projects)
