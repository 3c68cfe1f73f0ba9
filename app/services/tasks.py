"""
Task Service - Customer tasks with dependency gating and status history.

NO DICTIONARIES - All operations use strongly typed domain models.

A task may leave 'todo' only when every task it depends on is 'done'.
Each accepted status change appends one history row.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Project, Task, TaskHistoryItem
from app.exceptions import InvalidDependencyError, ResourceNotFoundError, TaskBlockedError
from app.models.api import TaskPriority, TaskStatus
from app.models.domain import NewTask, TaskData, TaskHistoryData, TaskUpdate

logger = get_logger(__name__)

STATUS_FIELD = "status"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def blocking_dependencies(status: TaskStatus, dependencies: list[Task]) -> list[Task]:
    """Dependencies that forbid moving to `status`. Moving to todo is never blocked."""
    if status == TaskStatus.TODO:
        return []
    return [dep for dep in dependencies if dep.status != TaskStatus.DONE.value]


def task_to_domain(task: Task) -> TaskData:
    """Convert ORM task to domain model."""
    return TaskData(
        task_id=task.id,
        customer_id=task.customer_id,
        project_id=task.project_id,
        title=task.title,
        description=task.description,
        status=TaskStatus(task.status),
        priority=TaskPriority(task.priority),
        due_date=task.due_date,
        dependencies=list(task.dependencies or []),
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def history_to_domain(item: TaskHistoryItem) -> TaskHistoryData:
    """Convert ORM history row to domain model."""
    return TaskHistoryData(
        task_id=item.task_id,
        field=item.field,
        old_value=item.old_value,
        new_value=item.new_value,
        changed_at=item.changed_at,
    )


class TaskService:
    """Task engine."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_task(self, customer_id: UUID, new_task: NewTask) -> TaskData:
        """
        Create a task.

        Raises:
            InvalidDependencyError: A dependency is not one of the customer's tasks
            TaskBlockedError: Created past todo while a dependency is unfinished
        """
        task_id = uuid4()
        if new_task.project_id is not None:
            await self._require_project(customer_id, new_task.project_id)

        dependency_ids = _unique(new_task.dependencies)
        dependencies = await self._load_dependencies(customer_id, task_id, dependency_ids)
        blocking = blocking_dependencies(new_task.status, dependencies)
        if blocking:
            raise TaskBlockedError(task_id, [dep.title for dep in blocking])

        now = _utc_now()
        task = Task(
            id=task_id,
            customer_id=customer_id,
            project_id=new_task.project_id,
            title=new_task.title.strip(),
            description=new_task.description,
            status=new_task.status.value,
            priority=new_task.priority.value,
            due_date=new_task.due_date,
            dependencies=dependency_ids,
            created_at=now,
            updated_at=now,
        )
        self.session.add(task)
        await self.session.commit()

        logger.info(
            "task_created",
            customer_id=str(customer_id),
            task_id=str(task.id),
            status=task.status,
            dependency_count=len(dependency_ids),
        )
        return task_to_domain(task)

    async def update_task(self, customer_id: UUID, task_id: UUID, changes: TaskUpdate) -> TaskData:
        """
        Apply a partial update.

        The gate is evaluated against the dependency list the task will have
        after the update, and nothing is written when it fails.

        Raises:
            ResourceNotFoundError: Task doesn't exist
            InvalidDependencyError: New dependency list is invalid
            TaskBlockedError: Status change blocked by unfinished dependencies
        """
        task = await self._lock_task(customer_id, task_id)
        fields = changes.fields_set

        if "dependencies" in fields:
            dependency_ids = _unique(changes.dependencies or ())
        else:
            dependency_ids = list(task.dependencies or [])

        if "project_id" in fields and changes.project_id is not None:
            await self._require_project(customer_id, changes.project_id)

        old_status = TaskStatus(task.status)
        new_status = changes.status if "status" in fields and changes.status else old_status
        status_changed = new_status != old_status

        if status_changed or "dependencies" in fields:
            dependencies = await self._load_dependencies(customer_id, task.id, dependency_ids)
            # Only a status move is gated; editing dependencies of a started task is allowed
            if status_changed:
                blocking = blocking_dependencies(new_status, dependencies)
                if blocking:
                    logger.info(
                        "task_update_blocked",
                        task_id=str(task.id),
                        requested_status=new_status.value,
                        blocking=len(blocking),
                    )
                    raise TaskBlockedError(task.id, [dep.title for dep in blocking])

        now = _utc_now()
        if "title" in fields and changes.title is not None:
            task.title = changes.title.strip()
        if "description" in fields:
            task.description = changes.description
        if "project_id" in fields:
            task.project_id = changes.project_id
        if "priority" in fields and changes.priority is not None:
            task.priority = changes.priority.value
        if "due_date" in fields:
            task.due_date = changes.due_date
        if "dependencies" in fields:
            task.dependencies = dependency_ids
        if status_changed:
            task.status = new_status.value
            self.session.add(
                TaskHistoryItem(
                    id=uuid4(),
                    task_id=task.id,
                    field=STATUS_FIELD,
                    old_value=old_status.value,
                    new_value=new_status.value,
                    changed_at=now,
                )
            )
        task.updated_at = now

        await self.session.commit()

        logger.info(
            "task_updated",
            task_id=str(task.id),
            fields=sorted(fields),
            status=task.status,
        )
        return task_to_domain(task)

    async def delete_task(self, customer_id: UUID, task_id: UUID) -> None:
        """Delete a task and drop it from every other task's dependencies."""
        task = await self._lock_task(customer_id, task_id)

        stmt = (
            select(Task)
            .where(Task.customer_id == customer_id, Task.dependencies.any(task_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        dependents = list(result.scalars().all())
        now = _utc_now()
        for dependent in dependents:
            dependent.dependencies = [d for d in dependent.dependencies if d != task_id]
            dependent.updated_at = now

        await self.session.delete(task)
        await self.session.commit()
        logger.info(
            "task_deleted",
            customer_id=str(customer_id),
            task_id=str(task_id),
            dependents_updated=len(dependents),
        )

    async def get_task(self, customer_id: UUID, task_id: UUID) -> TaskData:
        """Get one task."""
        return task_to_domain(await self._get_task(customer_id, task_id))

    async def list_tasks(self, customer_id: UUID, project_id: UUID | None = None) -> list[TaskData]:
        """List tasks, oldest first."""
        stmt = select(Task).where(Task.customer_id == customer_id).order_by(Task.created_at.asc())
        if project_id is not None:
            stmt = stmt.where(Task.project_id == project_id)
        result = await self.session.execute(stmt)
        return [task_to_domain(t) for t in result.scalars().all()]

    async def get_task_history(self, customer_id: UUID, task_id: UUID) -> list[TaskHistoryData]:
        """Status history, oldest first."""
        await self._get_task(customer_id, task_id)
        stmt = (
            select(TaskHistoryItem)
            .where(TaskHistoryItem.task_id == task_id)
            .order_by(TaskHistoryItem.changed_at.asc())
        )
        result = await self.session.execute(stmt)
        return [history_to_domain(h) for h in result.scalars().all()]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _load_dependencies(
        self, customer_id: UUID, task_id: UUID, dependency_ids: list[UUID]
    ) -> list[Task]:
        """Load dependency tasks, requiring each to be another of the customer's tasks."""
        if not dependency_ids:
            return []
        for dependency_id in dependency_ids:
            if dependency_id == task_id:
                raise InvalidDependencyError(task_id, dependency_id)

        stmt = select(Task).where(Task.customer_id == customer_id, Task.id.in_(dependency_ids))
        result = await self.session.execute(stmt)
        found = {t.id: t for t in result.scalars().all()}
        for dependency_id in dependency_ids:
            if dependency_id not in found:
                raise InvalidDependencyError(task_id, dependency_id)
        return [found[d] for d in dependency_ids]

    async def _require_project(self, customer_id: UUID, project_id: UUID) -> None:
        """Tasks may only link to the customer's own projects."""
        stmt = select(Project.id).where(Project.id == project_id, Project.customer_id == customer_id)
        result = await self.session.execute(stmt)
        if result.scalar_one_or_none() is None:
            raise ResourceNotFoundError("Project", project_id)

    async def _get_task(self, customer_id: UUID, task_id: UUID) -> Task:
        """Get a task owned by the customer."""
        stmt = select(Task).where(Task.id == task_id, Task.customer_id == customer_id)
        result = await self.session.execute(stmt)
        task = result.scalar_one_or_none()
        if task is None:
            raise ResourceNotFoundError("Task", task_id)
        return task

    async def _lock_task(self, customer_id: UUID, task_id: UUID) -> Task:
        """Lock a task owned by the customer."""
        stmt = (
            select(Task)
            .where(Task.id == task_id, Task.customer_id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        task = result.scalar_one_or_none()
        if task is None:
            raise ResourceNotFoundError("Task", task_id)
        return task


def _unique(ids: tuple[UUID, ...] | list[UUID]) -> list[UUID]:
    """Drop duplicate ids, keeping first occurrence order."""
    return list(dict.fromkeys(ids))
