"""
Project Service - Project creation and workflow run execution.

NO DICTIONARIES - All operations use strongly typed domain models.

A workflow run has three phases so that no row lock is held across the
network call to the automation host:
1. Read and validate preconditions
2. Dispatch to the project webhook (or simulate)
3. Lock, re-validate, then bill and record the run in one transaction
"""

from datetime import UTC, datetime
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings, get_settings
from app.db.models import Customer, PricingPlan, Project, ProjectTemplate, WorkflowRun
from app.exceptions import (
    DataIntegrityError,
    InsufficientCreditsError,
    PlanLimitReachedError,
    ProjectPausedError,
    ResourceNotFoundError,
    RunLimitReachedError,
    SubscriptionExpiredError,
    TemplateNotAllowedError,
    WebhookUnreachableError,
)
from app.models.api import ProjectStatus, RunStatus
from app.models.domain import (
    DispatchResult,
    ProjectData,
    WorkflowPayload,
    WorkflowRunData,
)
from app.observability.metrics import metrics
from app.services.catalog import template_to_domain
from app.services.ledger import LedgerService, subscription_is_active
from app.services.workflow_webhook import (
    WorkflowWebhookClient,
    is_dispatchable_url,
    summarize_response,
)

logger = get_logger(__name__)

USER_ID_PARAM = "userId"
PROJECT_ID_PARAM = "projectId"
CUSTOM_TEMPLATE_NAME = "Custom"
SIMULATED_SUMMARY = "Simulation: Workflow executed successfully. Data processed."
FALLBACK_SUMMARY = "Simulation: Workflow executed successfully (Webhook unreachable in demo)."
FAILED_SUMMARY = "Execution Failed."


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def build_project_webhook_url(
    template_url: str | None, customer_id: UUID, project_id: UUID
) -> str | None:
    """
    Derive a project's own webhook from its template URL.

    Existing userId/projectId parameters are replaced, so the result carries
    exactly one of each whether or not the template already had a query.
    """
    if not template_url:
        return None

    parts = urlsplit(template_url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in (USER_ID_PARAM, PROJECT_ID_PARAM)
    ]
    query.append((USER_ID_PARAM, str(customer_id)))
    query.append((PROJECT_ID_PARAM, str(project_id)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def check_run_preconditions(customer: Customer, project: Project, now: datetime) -> None:
    """
    Refuse a run before any side effect, checking in order:
    subscription, project status, run allotment, credits.
    """
    if not subscription_is_active(customer, now):
        raise SubscriptionExpiredError(customer.id)
    if project.status == ProjectStatus.PAUSED.value:
        raise ProjectPausedError(project.id)
    if project.run_count >= project.workflow_count_limit:
        raise RunLimitReachedError(project.id, project.run_count, project.workflow_count_limit)
    if customer.ai_credits < project.ai_credit_cost:
        raise InsufficientCreditsError(customer.ai_credits, project.ai_credit_cost)


def project_to_domain(project: Project) -> ProjectData:
    """Convert ORM project to domain model."""
    return ProjectData(
        project_id=project.id,
        customer_id=project.customer_id,
        name=project.name,
        status=ProjectStatus(project.status),
        template_id=project.template_id,
        webhook_url=project.webhook_url,
        ai_credit_cost=project.ai_credit_cost,
        workflow_count_limit=project.workflow_count_limit,
        run_count=project.run_count,
        created_at=project.created_at,
    )


def run_to_domain(run: WorkflowRun) -> WorkflowRunData:
    """Convert ORM workflow run to domain model."""
    return WorkflowRunData(
        run_id=run.id,
        project_id=run.project_id,
        customer_id=run.customer_id,
        template_name=run.template_name,
        workflow=run.workflow,
        status=RunStatus(run.status),
        inputs=run.inputs,
        response_summary=run.response_summary,
        credits_deducted=run.credits_deducted,
        simulated=run.simulated,
        created_at=run.created_at,
    )


class ProjectService:
    """Project & run engine."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        webhook_client: WorkflowWebhookClient | None = None,
    ) -> None:
        """Initialize project service with session and webhook client."""
        self.session = session
        self.settings = settings or get_settings()
        self.webhook_client = webhook_client or WorkflowWebhookClient(self.settings)
        self.ledger = LedgerService(session, self.settings)

    # ========================================================================
    # Projects
    # ========================================================================

    async def create_project(self, customer_id: UUID, template_id: str, name: str) -> ProjectData:
        """
        Instantiate a template as a customer project.

        Raises:
            ResourceNotFoundError: Customer, plan or template doesn't exist
            PlanLimitReachedError: Customer already has plan.max_projects projects
            TemplateNotAllowedError: Template restricted to other plans
        """
        name = name.strip()
        if not name:
            raise ValueError("Project name cannot be empty")

        # Lock so concurrent creates cannot both pass the limit check
        customer = await self._lock_customer_for_update(customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)

        plan = await self._get_plan(customer.plan_id)
        existing = await self._count_projects(customer.id)
        if existing >= plan.max_projects:
            raise PlanLimitReachedError(plan.id, plan.max_projects)

        template = await self._get_template(template_id)
        if not template_to_domain(template).allows_plan(customer.plan_id):
            raise TemplateNotAllowedError(template.id, customer.plan_id)

        project_id = uuid4()
        now = _utc_now()
        project = Project(
            id=project_id,
            customer_id=customer.id,
            name=name,
            status=ProjectStatus.ACTIVE.value,
            template_id=template.id,
            webhook_url=build_project_webhook_url(
                template.webhook_url_template, customer.id, project_id
            ),
            ai_credit_cost=template.ai_credit_cost,
            workflow_count_limit=template.default_workflow_count,
            run_count=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(project)
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "project_created",
            customer_id=str(customer.id),
            project_id=str(project.id),
            template_id=template.id,
            project_count=existing + 1,
        )
        return project_to_domain(project)

    def provision_default_projects(self, customer: Customer, plan: PricingPlan) -> list[Project]:
        """
        Create the onboarding starter projects inside the caller's transaction.

        One per plan slot, capped by max_auto_provisioned_projects.
        """
        count = max(1, min(plan.max_projects, self.settings.max_auto_provisioned_projects))
        now = _utc_now()
        projects = [
            Project(
                id=uuid4(),
                customer_id=customer.id,
                name=f"My Project {i + 1}",
                status=ProjectStatus.ACTIVE.value,
                template_id=None,
                webhook_url=None,
                ai_credit_cost=self.settings.default_ai_credit_cost,
                workflow_count_limit=self.settings.default_workflow_count_limit,
                run_count=0,
                created_at=now,
                updated_at=now,
            )
            for i in range(count)
        ]
        self.session.add_all(projects)
        return projects

    async def set_project_status(
        self, customer_id: UUID, project_id: UUID, status: ProjectStatus
    ) -> ProjectData:
        """Pause or resume a project."""
        project = await self._lock_project(customer_id, project_id)
        project.status = status.value
        await self.session.commit()
        logger.info("project_status_updated", project_id=str(project.id), status=status.value)
        return project_to_domain(project)

    async def delete_project(self, customer_id: UUID, project_id: UUID) -> None:
        """Delete a project. Its run history is kept."""
        project = await self._lock_project(customer_id, project_id)
        await self.session.delete(project)
        await self.session.commit()
        logger.info("project_deleted", customer_id=str(customer_id), project_id=str(project_id))

    async def list_projects(self, customer_id: UUID) -> list[ProjectData]:
        """List a customer's projects, oldest first."""
        stmt = (
            select(Project)
            .where(Project.customer_id == customer_id)
            .order_by(Project.created_at.asc())
        )
        result = await self.session.execute(stmt)
        return [project_to_domain(p) for p in result.scalars().all()]

    # ========================================================================
    # Workflow runs
    # ========================================================================

    async def run_workflow(
        self, customer_id: UUID, project_id: UUID, workflow: str, input_text: str
    ) -> WorkflowRunData:
        """
        Execute a workflow for a project and bill it.

        Raises:
            ResourceNotFoundError: Customer or project doesn't exist
            SubscriptionExpiredError: Subscription not active
            ProjectPausedError: Project paused
            RunLimitReachedError: Project used its run allotment
            InsufficientCreditsError: Not enough credits for one run
        """
        # Phase 1: validate without locks
        customer = await self._get_customer(customer_id)
        project = await self._get_project(customer_id, project_id)
        self._check_preconditions(customer, project)
        template_name = await self._template_name(project.template_id)

        # Phase 2: dispatch
        dispatch = await self._dispatch(customer, project, workflow, input_text)

        # Phase 3: lock, re-validate, apply
        customer = await self._lock_customer_for_update(customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)
        project = await self._lock_project(customer_id, project_id)
        try:
            self._check_preconditions(customer, project)
        except (RunLimitReachedError, InsufficientCreditsError, SubscriptionExpiredError,
                ProjectPausedError):
            logger.warning(
                "workflow_run_discarded_after_dispatch",
                customer_id=str(customer_id),
                project_id=str(project_id),
                simulated=dispatch.simulated,
            )
            raise

        billable = dispatch.status == RunStatus.SUCCESS or self.settings.charge_failed_runs
        credits = project.ai_credit_cost if billable else 0

        run = WorkflowRun(
            id=uuid4(),
            customer_id=customer.id,
            project_id=project.id,
            template_name=template_name,
            workflow=workflow,
            status=dispatch.status.value,
            inputs=input_text,
            response_summary=dispatch.response_summary,
            credits_deducted=credits,
            simulated=dispatch.simulated,
            created_at=_utc_now(),
        )
        self.session.add(run)
        await self.session.flush()

        if billable:
            project.run_count = project.run_count + 1
            self.ledger.apply_usage(
                customer,
                project_id=project.id,
                workflow_run_id=run.id,
                amount=credits,
                description=f"Run: {project.name} - {workflow}",
            )

        await self.session.flush()
        self._verify_run_invariants(customer, project)
        await self.session.commit()

        metrics.record_workflow_run(run.status, run.simulated, credits)
        logger.info(
            "workflow_run_recorded",
            customer_id=str(customer.id),
            project_id=str(project.id),
            run_id=str(run.id),
            status=run.status,
            simulated=run.simulated,
            credits_deducted=credits,
            run_count=project.run_count,
        )
        return run_to_domain(run)

    async def list_workflow_runs(
        self, customer_id: UUID, project_id: UUID | None = None, limit: int = 50
    ) -> list[WorkflowRunData]:
        """List workflow runs, newest first."""
        stmt = (
            select(WorkflowRun)
            .where(WorkflowRun.customer_id == customer_id)
            .order_by(WorkflowRun.created_at.desc())
            .limit(limit)
        )
        if project_id is not None:
            stmt = stmt.where(WorkflowRun.project_id == project_id)
        result = await self.session.execute(stmt)
        return [run_to_domain(r) for r in result.scalars().all()]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _check_preconditions(self, customer: Customer, project: Project) -> None:
        """Run precondition check with rejection metrics."""
        try:
            check_run_preconditions(customer, project, _utc_now())
        except (
            SubscriptionExpiredError,
            ProjectPausedError,
            RunLimitReachedError,
            InsufficientCreditsError,
        ) as e:
            metrics.record_workflow_rejection(type(e).__name__)
            raise

    async def _dispatch(
        self, customer: Customer, project: Project, workflow: str, input_text: str
    ) -> DispatchResult:
        """Call the project webhook, falling back to simulation when configured."""
        if not is_dispatchable_url(project.webhook_url):
            return DispatchResult(
                status=RunStatus.SUCCESS, response_summary=SIMULATED_SUMMARY, simulated=True
            )

        payload = WorkflowPayload(
            project_id=project.id,
            user_id=customer.id,
            workflow=workflow,
            input=input_text,
            timestamp=_utc_now(),
            credits=project.ai_credit_cost,
        )
        try:
            body = await self.webhook_client.dispatch(project.webhook_url, payload)
        except WebhookUnreachableError as e:
            if self.settings.webhook_simulation_fallback:
                logger.warning(
                    "workflow_webhook_simulated",
                    project_id=str(project.id),
                    reason=e.reason,
                )
                return DispatchResult(
                    status=RunStatus.SUCCESS, response_summary=FALLBACK_SUMMARY, simulated=True
                )
            logger.error(
                "workflow_webhook_failed",
                project_id=str(project.id),
                reason=e.reason,
                status_code=e.status_code,
            )
            return DispatchResult(
                status=RunStatus.FAILED,
                response_summary=f"{FAILED_SUMMARY} {e.reason}",
                simulated=False,
            )

        return DispatchResult(
            status=RunStatus.SUCCESS, response_summary=summarize_response(body), simulated=False
        )

    def _verify_run_invariants(self, customer: Customer, project: Project) -> None:
        """Validate invariants after flush."""
        if customer.ai_credits < 0:
            raise DataIntegrityError(f"AI credits negative for customer {customer.id}")
        if project.run_count > project.workflow_count_limit:
            raise DataIntegrityError(
                f"Project {project.id} exceeded its run limit: "
                f"{project.run_count}/{project.workflow_count_limit}"
            )

    async def _template_name(self, template_id: str | None) -> str:
        """Name of the template a project came from."""
        if template_id is None:
            return CUSTOM_TEMPLATE_NAME
        template = await self.session.get(ProjectTemplate, template_id)
        return template.name if template is not None else CUSTOM_TEMPLATE_NAME

    async def _get_customer(self, customer_id: UUID) -> Customer:
        """Get customer without locking."""
        customer = await self.session.get(Customer, customer_id)
        if customer is None:
            raise ResourceNotFoundError("Customer", customer_id)
        return customer

    async def _lock_customer_for_update(self, customer_id: UUID) -> Customer | None:
        """Lock customer row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(Customer)
            .where(Customer.id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_plan(self, plan_id: str) -> PricingPlan:
        """Get a pricing plan."""
        plan = await self.session.get(PricingPlan, plan_id)
        if plan is None:
            raise ResourceNotFoundError("PricingPlan", plan_id)
        return plan

    async def _get_template(self, template_id: str) -> ProjectTemplate:
        """Get a project template."""
        template = await self.session.get(ProjectTemplate, template_id)
        if template is None:
            raise ResourceNotFoundError("ProjectTemplate", template_id)
        return template

    async def _count_projects(self, customer_id: UUID) -> int:
        """Number of projects a customer owns."""
        stmt = select(func.count(Project.id)).where(Project.customer_id == customer_id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def _get_project(self, customer_id: UUID, project_id: UUID) -> Project:
        """Get a project owned by the customer."""
        stmt = select(Project).where(Project.id == project_id, Project.customer_id == customer_id)
        result = await self.session.execute(stmt)
        project = result.scalar_one_or_none()
        if project is None:
            raise ResourceNotFoundError("Project", project_id)
        return project

    async def _lock_project(self, customer_id: UUID, project_id: UUID) -> Project:
        """Lock a project owned by the customer."""
        stmt = (
            select(Project)
            .where(Project.id == project_id, Project.customer_id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        project = result.scalar_one_or_none()
        if project is None:
            raise ResourceNotFoundError("Project", project_id)
        return project
