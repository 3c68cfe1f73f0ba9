"""
API Routes - Customer endpoints for wallet, credits, projects, runs and tasks.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_webhook_client
from app.api.errors import to_http_exception
from app.db.session import get_read_db, get_write_db
from app.exceptions import PortalError
from app.models.api import (
    CreateProjectRequest,
    CreateTaskRequest,
    CreditLedgerEntryResponse,
    CreditLedgerListResponse,
    CreditPurchaseRequest,
    CreditPurchaseResponse,
    CreditSummaryResponse,
    CustomerResponse,
    HealthResponse,
    OnboardingRequest,
    OnboardingResponse,
    ProjectResponse,
    RenewalResponse,
    RunWorkflowRequest,
    TaskHistoryResponse,
    TaskResponse,
    TopUpRequest,
    TopUpResponse,
    UpdateProjectRequest,
    UpdateTaskRequest,
    WalletTransactionListResponse,
    WalletTransactionResponse,
    WorkflowRunListResponse,
    WorkflowRunResponse,
)
from app.models.domain import NewTask, OnboardingProfile, TaskUpdate
from app.services.checkout import CheckoutService
from app.services.ledger import LedgerService
from app.services.projects import ProjectService
from app.services.tasks import TaskService
from app.services.top_up import TopUpService
from app.services.workflow_webhook import WorkflowWebhookClient

router = APIRouter()

CUSTOMER_PREFIX = "/v1/customers/{customer_id}"


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {exc}",
        ) from exc

    return HealthResponse(status="healthy", database="connected", timestamp=datetime.now(UTC))


# =============================================================================
# Customer profile & onboarding
# =============================================================================


@router.get(CUSTOMER_PREFIX, response_model=CustomerResponse)
async def get_customer(
    customer_id: UUID, db: AsyncSession = Depends(get_read_db)
) -> CustomerResponse:
    """Customer profile with wallet and credit balances."""
    try:
        customer = await LedgerService(db).get_customer(customer_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return CustomerResponse.model_validate(customer)


@router.post(CUSTOMER_PREFIX + "/onboarding", response_model=OnboardingResponse)
async def complete_onboarding(
    customer_id: UUID,
    request: OnboardingRequest,
    db: AsyncSession = Depends(get_write_db),
) -> OnboardingResponse:
    """
    Store the business profile and start the subscription.

    First onboarding provisions the starter projects.
    """
    profile = OnboardingProfile(
        phone=request.phone,
        whatsapp=request.whatsapp,
        address=request.address,
        city=request.city,
        pin=request.pin,
        state=request.state,
        business_name=request.business_name,
        industry=request.industry,
        gst_no=request.gst_no,
    )
    try:
        result = await CheckoutService(db).complete_onboarding(customer_id, profile)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return OnboardingResponse.model_validate(result)


# =============================================================================
# Wallet
# =============================================================================


@router.post(
    CUSTOMER_PREFIX + "/wallet/top-ups",
    response_model=TopUpResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_top_up(
    customer_id: UUID,
    request: TopUpRequest,
    db: AsyncSession = Depends(get_write_db),
) -> TopUpResponse:
    """
    Start a wallet top-up.

    Returns the gateway client secret, or the new balance for simulated top-ups.
    """
    try:
        result = await TopUpService(db).initiate_top_up(customer_id, request.amount_minor)
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return TopUpResponse.model_validate(result, from_attributes=True)


@router.post(
    CUSTOMER_PREFIX + "/wallet/top-ups/{payment_id}/confirm", response_model=TopUpResponse
)
async def confirm_top_up(
    customer_id: UUID,
    payment_id: str,
    db: AsyncSession = Depends(get_write_db),
) -> TopUpResponse:
    """Credit the wallet once the gateway reports the payment succeeded."""
    try:
        result = await TopUpService(db).confirm_top_up(customer_id, payment_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return TopUpResponse.model_validate(result, from_attributes=True)


@router.get(
    CUSTOMER_PREFIX + "/wallet/transactions", response_model=WalletTransactionListResponse
)
async def list_wallet_transactions(
    customer_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_read_db),
) -> WalletTransactionListResponse:
    """Wallet history, newest first."""
    transactions, total = await LedgerService(db).list_wallet_transactions(
        customer_id, limit=limit, offset=offset
    )
    return WalletTransactionListResponse(
        transactions=[WalletTransactionResponse.model_validate(t) for t in transactions],
        total_count=total,
    )


@router.post(CUSTOMER_PREFIX + "/subscription/renewals", response_model=RenewalResponse)
async def renew_subscription(
    customer_id: UUID, db: AsyncSession = Depends(get_write_db)
) -> RenewalResponse:
    """
    Renew for one period from the wallet.

    A 402 carries X-Shortfall-Minor so the client can offer a top-up.
    """
    try:
        result = await LedgerService(db).renew_subscription(customer_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return RenewalResponse.model_validate(result)


# =============================================================================
# AI credits
# =============================================================================


@router.post(
    CUSTOMER_PREFIX + "/credits/purchases",
    response_model=CreditPurchaseResponse,
    status_code=status.HTTP_201_CREATED,
)
async def purchase_credits(
    customer_id: UUID,
    request: CreditPurchaseRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CreditPurchaseResponse:
    """Buy AI credits from the wallet. Large purchases wait for admin approval."""
    try:
        result = await LedgerService(db).purchase_credits(customer_id, request.quantity)
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return CreditPurchaseResponse.model_validate(result)


@router.get(CUSTOMER_PREFIX + "/credits/ledger", response_model=CreditLedgerListResponse)
async def list_credit_ledger(
    customer_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_read_db),
) -> CreditLedgerListResponse:
    """Credit ledger, newest first."""
    entries, total = await LedgerService(db).list_credit_ledger(
        customer_id, limit=limit, offset=offset
    )
    return CreditLedgerListResponse(
        entries=[CreditLedgerEntryResponse.model_validate(e) for e in entries],
        total_count=total,
    )


@router.get(CUSTOMER_PREFIX + "/credits/summary", response_model=CreditSummaryResponse)
async def credit_summary(
    customer_id: UUID, db: AsyncSession = Depends(get_read_db)
) -> CreditSummaryResponse:
    """Available, consumed and pending credits."""
    try:
        summary = await LedgerService(db).credit_summary(customer_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return CreditSummaryResponse.model_validate(summary)


# =============================================================================
# Projects & runs
# =============================================================================


@router.get(CUSTOMER_PREFIX + "/projects", response_model=list[ProjectResponse])
async def list_projects(
    customer_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    webhook_client: WorkflowWebhookClient = Depends(get_webhook_client),
) -> list[ProjectResponse]:
    """Customer projects, oldest first."""
    projects = await ProjectService(db, webhook_client=webhook_client).list_projects(customer_id)
    return [ProjectResponse.model_validate(p) for p in projects]


@router.post(
    CUSTOMER_PREFIX + "/projects",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_project(
    customer_id: UUID,
    request: CreateProjectRequest,
    db: AsyncSession = Depends(get_write_db),
    webhook_client: WorkflowWebhookClient = Depends(get_webhook_client),
) -> ProjectResponse:
    """Create a project from a template."""
    service = ProjectService(db, webhook_client=webhook_client)
    try:
        project = await service.create_project(customer_id, request.template_id, request.name)
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return ProjectResponse.model_validate(project)


@router.patch(CUSTOMER_PREFIX + "/projects/{project_id}", response_model=ProjectResponse)
async def update_project(
    customer_id: UUID,
    project_id: UUID,
    request: UpdateProjectRequest,
    db: AsyncSession = Depends(get_write_db),
    webhook_client: WorkflowWebhookClient = Depends(get_webhook_client),
) -> ProjectResponse:
    """Pause or resume a project."""
    service = ProjectService(db, webhook_client=webhook_client)
    try:
        project = await service.set_project_status(customer_id, project_id, request.status)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return ProjectResponse.model_validate(project)


@router.delete(
    CUSTOMER_PREFIX + "/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_project(
    customer_id: UUID,
    project_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    webhook_client: WorkflowWebhookClient = Depends(get_webhook_client),
) -> Response:
    """Delete a project; its run history stays."""
    try:
        await ProjectService(db, webhook_client=webhook_client).delete_project(
            customer_id, project_id
        )
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    CUSTOMER_PREFIX + "/projects/{project_id}/runs",
    response_model=WorkflowRunResponse,
    status_code=status.HTTP_201_CREATED,
)
async def run_workflow(
    customer_id: UUID,
    project_id: UUID,
    request: RunWorkflowRequest,
    db: AsyncSession = Depends(get_write_db),
    webhook_client: WorkflowWebhookClient = Depends(get_webhook_client),
) -> WorkflowRunResponse:
    """
    Run a project workflow and bill it.

    Refused runs (expired subscription, paused project, run limit, credits)
    change nothing.
    """
    service = ProjectService(db, webhook_client=webhook_client)
    try:
        run = await service.run_workflow(customer_id, project_id, request.workflow, request.input)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return WorkflowRunResponse.model_validate(run)


@router.get(
    CUSTOMER_PREFIX + "/projects/{project_id}/runs", response_model=WorkflowRunListResponse
)
async def list_project_runs(
    customer_id: UUID,
    project_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_read_db),
    webhook_client: WorkflowWebhookClient = Depends(get_webhook_client),
) -> WorkflowRunListResponse:
    """Runs of one project, newest first."""
    runs = await ProjectService(db, webhook_client=webhook_client).list_workflow_runs(
        customer_id, project_id=project_id, limit=limit
    )
    return WorkflowRunListResponse(
        runs=[WorkflowRunResponse.model_validate(r) for r in runs], total_count=len(runs)
    )


@router.get(CUSTOMER_PREFIX + "/runs", response_model=WorkflowRunListResponse)
async def list_runs(
    customer_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_read_db),
    webhook_client: WorkflowWebhookClient = Depends(get_webhook_client),
) -> WorkflowRunListResponse:
    """All runs of the customer, newest first."""
    runs = await ProjectService(db, webhook_client=webhook_client).list_workflow_runs(
        customer_id, limit=limit
    )
    return WorkflowRunListResponse(
        runs=[WorkflowRunResponse.model_validate(r) for r in runs], total_count=len(runs)
    )


# =============================================================================
# Tasks
# =============================================================================


@router.get(CUSTOMER_PREFIX + "/tasks", response_model=list[TaskResponse])
async def list_tasks(
    customer_id: UUID,
    project_id: UUID | None = None,
    db: AsyncSession = Depends(get_read_db),
) -> list[TaskResponse]:
    """Tasks, optionally filtered by project."""
    tasks = await TaskService(db).list_tasks(customer_id, project_id=project_id)
    return [TaskResponse.model_validate(t) for t in tasks]


@router.post(
    CUSTOMER_PREFIX + "/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_task(
    customer_id: UUID,
    request: CreateTaskRequest,
    db: AsyncSession = Depends(get_write_db),
) -> TaskResponse:
    """Create a task."""
    try:
        new_task = NewTask(
            title=request.title,
            description=request.description,
            project_id=request.project_id,
            status=request.status,
            priority=request.priority,
            due_date=request.due_date,
            dependencies=tuple(request.dependencies),
        )
        task = await TaskService(db).create_task(customer_id, new_task)
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return TaskResponse.model_validate(task)


@router.patch(CUSTOMER_PREFIX + "/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    customer_id: UUID,
    task_id: UUID,
    request: UpdateTaskRequest,
    db: AsyncSession = Depends(get_write_db),
) -> TaskResponse:
    """
    Partially update a task.

    Moving past todo while a dependency is unfinished returns 409 listing
    the blocking tasks.
    """
    try:
        changes = TaskUpdate(
            fields_set=frozenset(request.model_fields_set),
            title=request.title,
            description=request.description,
            project_id=request.project_id,
            status=request.status,
            priority=request.priority,
            due_date=request.due_date,
            dependencies=tuple(request.dependencies) if request.dependencies is not None else None,
        )
        task = await TaskService(db).update_task(customer_id, task_id, changes)
    except (PortalError, ValueError) as exc:
        raise to_http_exception(exc) from exc
    return TaskResponse.model_validate(task)


@router.delete(CUSTOMER_PREFIX + "/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    customer_id: UUID,
    task_id: UUID,
    db: AsyncSession = Depends(get_write_db),
) -> Response:
    """Delete a task and unlink it from dependents."""
    try:
        await TaskService(db).delete_task(customer_id, task_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    CUSTOMER_PREFIX + "/tasks/{task_id}/history", response_model=list[TaskHistoryResponse]
)
async def task_history(
    customer_id: UUID,
    task_id: UUID,
    db: AsyncSession = Depends(get_read_db),
) -> list[TaskHistoryResponse]:
    """Status history of a task, oldest first."""
    try:
        history = await TaskService(db).get_task_history(customer_id, task_id)
    except PortalError as exc:
        raise to_http_exception(exc) from exc
    return [TaskHistoryResponse.model_validate(h) for h in history]
