"""
Task service — follow-up task CRUD and the Task Completion Trigger.

complete_task() is the only place a task becomes completed. When the
completed task's description carries the current stage's auto-advance
keyword, the member is advanced (or integrated) inside the same transaction
via app.services.progression.

Transaction policy: every mutating function commits through atomic().
"""

import logging
import re

from flask import current_app
from sqlalchemy import func, select

from app.core.exceptions import ValidationError
from app.models import db
from app.models.auth import User
from app.models.member import MEMBER_STATUS_ACTIVE, Member
from app.models.pathway import AUTO_ADVANCE_TASK_COMPLETED, TASK_PRIORITIES
from app.models.task import Task
from app.services.helpers.scoped_queries import get_scoped, paginate_select
from app.services.helpers.transaction import atomic
from app.services.progression import REASON_TASK_COMPLETED, advance_or_integrate
from app.utils.helpers import parse_datetime_input, utcnow

logger = logging.getLogger(__name__)

MATCH_SUBSTRING = "substring"
MATCH_WORD = "word"

_TASK_NOT_FOUND = "TASK_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════
# Keyword matching
# ═══════════════════════════════════════════════════════════════

def keyword_matches(description, keyword, mode=MATCH_SUBSTRING):
    """Case-insensitive test of `keyword` against a task description.

    substring: "welcome call" matches "Make welcome call to introduce yourself"
               and also "welcome caller list" (source behaviour)
    word:      keyword must start and end on word boundaries
    """
    keyword = (keyword or "").strip()
    if not keyword or not description:
        return False
    if mode == MATCH_WORD:
        pattern = r"\b" + r"\s+".join(re.escape(part) for part in keyword.split()) + r"\b"
        return re.search(pattern, description, re.IGNORECASE) is not None
    return keyword.lower() in description.lower()


def _match_mode():
    mode = current_app.config.get("AUTO_ADVANCE_MATCH_MODE", MATCH_SUBSTRING)
    return mode if mode in (MATCH_SUBSTRING, MATCH_WORD) else MATCH_SUBSTRING


# ═══════════════════════════════════════════════════════════════
# Task Completion Trigger
# ═══════════════════════════════════════════════════════════════

def complete_task(task_id, tenant_id, actor_user_id, task_guard=None):
    """Complete a task and run the member's TASK_COMPLETED auto-advance policy.

    Args:
        task_guard: Optional callable(task) for row-level access checks.

    Returns:
        {"task", "memberAdvanced", "memberIntegrated", "createdTasks"}

    Raises:
        NotFoundError(TASK_NOT_FOUND), ValidationError(TASK_ALREADY_COMPLETED)
    """
    mode = _match_mode()
    advanced = integrated = False
    created = []

    with atomic():
        task = get_scoped(Task, task_id, tenant_id=tenant_id, code=_TASK_NOT_FOUND, for_update=True)
        if task_guard is not None:
            task_guard(task)
        if task.completed:
            raise ValidationError("Task already completed", code="TASK_ALREADY_COMPLETED")

        task.completed = True
        task.completed_at = utcnow()

        member = get_scoped(Member, task.member_id, tenant_id=tenant_id,
                            code="MEMBER_NOT_FOUND", for_update=True)
        stage = member.current_stage
        if (
            member.status == MEMBER_STATUS_ACTIVE
            and stage.auto_advance_enabled
            and stage.auto_advance_type == AUTO_ADVANCE_TASK_COMPLETED
            and keyword_matches(task.description, stage.auto_advance_value, mode)
        ):
            advanced, integrated, created = advance_or_integrate(
                member, actor_user_id, REASON_TASK_COMPLETED, "task completed",
            )
        db.session.flush()

    logger.info("Task %s completed (advanced=%s integrated=%s)", task_id, advanced, integrated,
                extra={"tenant_id": tenant_id, "task_id": task_id, "member_id": task.member_id})
    return {
        "task": task.to_dict(),
        "memberAdvanced": advanced,
        "memberIntegrated": integrated,
        "createdTasks": [t.to_dict() for t in created],
    }


# ═══════════════════════════════════════════════════════════════
# CRUD
# ═══════════════════════════════════════════════════════════════

def _validate_priority(priority):
    if priority is not None and priority not in TASK_PRIORITIES:
        raise ValidationError(
            "Invalid priority",
            details={"priority": f"must be one of {', '.join(TASK_PRIORITIES)}"},
        )


def _parse_due_date(value):
    try:
        return parse_datetime_input(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Invalid dueDate", details={"dueDate": str(exc)}) from exc


def _resolve_assignee(tenant_id, user_id):
    if user_id is None:
        return None
    return get_scoped(User, user_id, tenant_id=tenant_id, code="USER_NOT_FOUND").id


def create_task(tenant_id, actor_user_id, data, member_guard=None):
    """Create a manual task for a member of the tenant."""
    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("description is required", details={"description": "required"})
    if not data.get("dueDate"):
        raise ValidationError("dueDate is required", details={"dueDate": "required"})
    due_date = _parse_due_date(data["dueDate"])
    _validate_priority(data.get("priority"))

    with atomic():
        member = get_scoped(Member, data.get("memberId"), tenant_id=tenant_id, code="MEMBER_NOT_FOUND")
        if member_guard is not None:
            member_guard(member)
        assignee_id = _resolve_assignee(tenant_id, data.get("assignedToId"))
        task = Task(
            tenant_id=tenant_id,
            member_id=member.id,
            description=description.strip(),
            due_date=due_date,
            priority=data.get("priority") or "MEDIUM",
            assigned_to_id=assignee_id or member.assigned_to_id or actor_user_id,
            created_by_id=actor_user_id,
        )
        db.session.add(task)
        db.session.flush()
        task_id = task.id

    logger.info("Task %s created for member %s", task_id, member.id,
                extra={"tenant_id": tenant_id, "task_id": task_id, "member_id": member.id})
    return task.to_dict(include_member=True)


def get_task_model(tenant_id, task_id):
    return get_scoped(Task, task_id, tenant_id=tenant_id, code=_TASK_NOT_FOUND)


def get_task(tenant_id, task_id, task_guard=None):
    task = get_task_model(tenant_id, task_id)
    if task_guard is not None:
        task_guard(task)
    d = task.to_dict(include_member=True)
    d["assignedTo"] = task.assigned_to.to_summary() if task.assigned_to else None
    d["member"]["pathway"] = task.member.pathway
    d["member"]["currentStage"] = task.member.current_stage.to_summary()
    return d


def list_tasks(tenant_id, filters=None, page=1, limit=50):
    """Filter by assignedToId, memberId, completed, overdue, priority; paginated.

    Open tasks first, then by due date.
    """
    filters = filters or {}
    stmt = select(Task).where(Task.tenant_id == tenant_id)
    if filters.get("assignedToId") is not None:
        stmt = stmt.where(Task.assigned_to_id == filters["assignedToId"])
    if filters.get("memberId") is not None:
        stmt = stmt.where(Task.member_id == filters["memberId"])
    if filters.get("completed") is not None:
        stmt = stmt.where(Task.completed.is_(bool(filters["completed"])))
    if filters.get("priority"):
        _validate_priority(filters["priority"])
        stmt = stmt.where(Task.priority == filters["priority"])
    if filters.get("overdue"):
        stmt = stmt.where(Task.completed.is_(False), Task.due_date < utcnow())

    items, pagination = paginate_select(
        stmt.order_by(Task.completed, Task.due_date, Task.id), page, limit,
    )
    return [t.to_dict(include_member=True) for t in items], pagination


def update_task(tenant_id, task_id, data, task_guard=None):
    """Patch description / dueDate / priority / assignedToId."""
    _validate_priority(data.get("priority"))
    with atomic():
        task = get_task_model(tenant_id, task_id)
        if task_guard is not None:
            task_guard(task)
        if "description" in data:
            description = data["description"]
            if not isinstance(description, str) or not description.strip():
                raise ValidationError("description cannot be empty", details={"description": "required"})
            task.description = description.strip()
        if "dueDate" in data:
            task.due_date = _parse_due_date(data["dueDate"])
        if data.get("priority") is not None:
            task.priority = data["priority"]
        if "assignedToId" in data:
            task.assigned_to_id = _resolve_assignee(tenant_id, data["assignedToId"])

    logger.info("Task %s updated", task_id, extra={"tenant_id": tenant_id, "task_id": task_id})
    return task.to_dict(include_member=True)


def delete_task(tenant_id, task_id):
    with atomic():
        task = get_task_model(tenant_id, task_id)
        db.session.delete(task)
    logger.info("Task %s deleted", task_id, extra={"tenant_id": tenant_id, "task_id": task_id})


def get_task_stats(tenant_id, user_id=None):
    """Counts of total / completed / pending / overdue / open high-priority tasks."""
    base = [Task.tenant_id == tenant_id]
    if user_id is not None:
        base.append(Task.assigned_to_id == user_id)

    def _count(*conds):
        return db.session.execute(select(func.count(Task.id)).where(*base, *conds)).scalar_one()

    total = _count()
    completed = _count(Task.completed.is_(True))
    overdue = _count(Task.completed.is_(False), Task.due_date < utcnow())
    high = _count(Task.completed.is_(False), Task.priority == "HIGH")
    return {
        "total": total,
        "completed": completed,
        "pending": total - completed,
        "overdue": overdue,
        "highPriority": high,
        "completionRate": round(completed / total * 100, 1) if total else 0,
    }
