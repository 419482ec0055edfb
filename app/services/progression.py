"""
Member Progression Engine — the only code path that moves Member.current_stage_id.

    advance_stage()        manual move requested through the API
    enter_stage()          shared stage-entry sequence (history, pointer, note, rule fan-out)
    advance_or_integrate() auto-advance to order+1, or mark INTEGRATED at the end
    place_member()         initial placement of a newly created member
    sweep_time_in_stage()  TIME_IN_STAGE evaluator, run from the CLI

enter_stage / advance_or_integrate / place_member never commit: they run
inside the caller's transaction so the member pointer and its history trail
are persisted together or not at all.
"""

import logging
from datetime import timedelta

from sqlalchemy import select

from app.core.exceptions import ConflictError
from app.models import db
from app.models.member import (
    MEMBER_STATUS_ACTIVE,
    MEMBER_STATUS_INTEGRATED,
    SYSTEM_NOTE_PREFIX,
    Member,
    Note,
    StageHistory,
)
from app.models.pathway import AUTO_ADVANCE_TIME_IN_STAGE, Stage
from app.models.task import Task
from app.services.automation_rule_service import find_enabled_rules_for_stage
from app.services.helpers.scoped_queries import get_scoped
from app.services.helpers.transaction import atomic
from app.services.stage_service import get_next_stage
from app.utils.helpers import as_utc, parse_duration, utcnow

logger = logging.getLogger(__name__)

REASON_MANUAL = "Manual advance"
REASON_TASK_COMPLETED = "Auto-advanced: Task completed"
REASON_TIME_IN_STAGE = "Auto-advanced: Time in stage"
REASON_INITIAL = "Initial placement"


def add_system_note(member, content, created_by_id=None):
    note = Note(
        member_id=member.id,
        content=f"{SYSTEM_NOTE_PREFIX} {content}",
        is_system=True,
        created_by_id=created_by_id,
    )
    db.session.add(note)
    return note


def _fan_out_rules(member, stage, actor_user_id, now):
    """One Task (plus announcing note) per enabled rule of the entered stage."""
    created = []
    for rule in find_enabled_rules_for_stage(stage.id):
        task = Task(
            tenant_id=member.tenant_id,
            member_id=member.id,
            description=rule.task_description,
            due_date=now + timedelta(days=rule.days_due),
            priority=rule.priority,
            assigned_to_id=member.assigned_to_id or actor_user_id,
            created_by_id=actor_user_id,
            created_by_rule=True,
            automation_rule_id=rule.id,
        )
        db.session.add(task)
        add_system_note(member, f"Auto-created task: {rule.task_description}")
        created.append(task)
    return created


def enter_stage(member, to_stage, actor_user_id, reason=None, note=None):
    """Move `member` into `to_stage` within the current transaction.

    Writes the history row, updates the pointer and last_stage_change_date,
    narrates the move in a system note and fans out the stage's enabled
    automation rules. Returns the created tasks (flushed, ids assigned).
    """
    now = utcnow()
    from_stage = member.current_stage

    db.session.add(StageHistory(
        member_id=member.id,
        from_stage_id=from_stage.id if from_stage else None,
        to_stage_id=to_stage.id,
        changed_by=actor_user_id,
        reason=reason or REASON_MANUAL,
    ))

    member.current_stage = to_stage
    member.last_stage_change_date = now

    if note is None:
        note = f'Advanced from "{from_stage.name}" to "{to_stage.name}"'
    add_system_note(member, note, created_by_id=actor_user_id)

    tasks = _fan_out_rules(member, to_stage, actor_user_id, now)
    db.session.flush()

    logger.info(
        "Member %s entered stage %s (%s), %d task(s) created",
        member.id, to_stage.id, to_stage.name, len(tasks),
        extra={"tenant_id": member.tenant_id, "member_id": member.id, "stage_id": to_stage.id},
    )
    return tasks


def advance_or_integrate(member, actor_user_id, reason, trigger):
    """Auto-advance to the next stage, or mark INTEGRATED when none exists.

    Args:
        trigger: short phrase for the note, e.g. "task completed".

    Returns:
        (advanced: bool, integrated: bool, created_tasks: list)
    """
    stage = member.current_stage
    next_stage = get_next_stage(stage)
    if next_stage is not None:
        tasks = enter_stage(
            member, next_stage, actor_user_id,
            reason=reason,
            note=f'Auto-advanced from "{stage.name}" to "{next_stage.name}" ({trigger})',
        )
        return True, False, tasks

    member.status = MEMBER_STATUS_INTEGRATED
    add_system_note(member, "Pathway completed - marked as integrated")
    db.session.flush()
    logger.info("Member %s completed pathway %s", member.id, member.pathway,
                extra={"tenant_id": member.tenant_id, "member_id": member.id})
    return False, True, []


def place_member(member, stage, actor_user_id):
    """Initial placement of a new (pending) member: pointer set, history row
    with no from-stage. No flush, so bulk callers can place many at once.
    """
    member.current_stage = stage
    member.last_stage_change_date = utcnow()
    member.history.append(StageHistory(
        from_stage_id=None,
        to_stage_id=stage.id,
        changed_by=actor_user_id,
        reason=REASON_INITIAL,
    ))
    db.session.add(member)


def advance_stage(member_id, to_stage_id, tenant_id, actor_user_id, reason=None,
                  expected_version=None, member_guard=None):
    """Move a member to `to_stage_id` and fire its automation, atomically.

    Args:
        expected_version: When given, the member's current `version` must
            match or ConflictError(CONFLICT) is raised before any write.
        member_guard: Optional callable(member) run after loading, used by
            the API layer for row-level access checks.

    Returns:
        {"member": <dict>, "createdTasks": [<dict>, ...]}
    """
    with atomic():
        member = get_scoped(Member, member_id, tenant_id=tenant_id,
                            code="MEMBER_NOT_FOUND", for_update=True)
        if member_guard is not None:
            member_guard(member)
        if expected_version is not None and expected_version != member.version:
            raise ConflictError(
                "Member", "version", expected_version,
                message=(f"Member {member_id} is at version {member.version}, "
                         f"expected {expected_version}; reload and retry"),
            )
        to_stage = get_scoped(Stage, to_stage_id, tenant_id=tenant_id,
                              code="STAGE_NOT_FOUND", pathway=member.pathway)
        tasks = enter_stage(member, to_stage, actor_user_id, reason=reason or REASON_MANUAL)

    return {
        "member": member.to_dict(),
        "createdTasks": [t.to_dict() for t in tasks],
    }


def sweep_time_in_stage(now=None, tenant_id=None):
    """Advance ACTIVE members whose TIME_IN_STAGE duration has elapsed.

    Each member is moved in its own transaction so one failure does not
    block the rest; a version conflict (member changed meanwhile) is logged
    and skipped.

    Returns:
        {"examined": n, "advanced": n, "integrated": n, "skipped": n}
    """
    now = now or utcnow()
    stmt = (
        select(Member.id)
        .join(Stage, Member.current_stage_id == Stage.id)
        .where(
            Member.status == MEMBER_STATUS_ACTIVE,
            Stage.auto_advance_enabled.is_(True),
            Stage.auto_advance_type == AUTO_ADVANCE_TIME_IN_STAGE,
        )
        .order_by(Member.id)
    )
    if tenant_id is not None:
        stmt = stmt.where(Member.tenant_id == tenant_id)
    member_ids = db.session.execute(stmt).scalars().all()

    stats = {"examined": len(member_ids), "advanced": 0, "integrated": 0, "skipped": 0}
    for member_id in member_ids:
        try:
            with atomic():
                member = db.session.get(Member, member_id, with_for_update=True)
                if member is None or member.status != MEMBER_STATUS_ACTIVE:
                    continue
                stage = member.current_stage
                if not (stage.auto_advance_enabled
                        and stage.auto_advance_type == AUTO_ADVANCE_TIME_IN_STAGE):
                    continue
                duration = parse_duration(stage.auto_advance_value)
                if duration is None:
                    logger.warning("Stage %s has invalid time-in-stage value %r",
                                   stage.id, stage.auto_advance_value,
                                   extra={"stage_id": stage.id})
                    stats["skipped"] += 1
                    continue
                since = as_utc(member.last_stage_change_date)
                if since is not None and now - since < duration:
                    continue
                advanced, integrated, _ = advance_or_integrate(
                    member, None, REASON_TIME_IN_STAGE, "time in stage",
                )
        except ConflictError:
            stats["skipped"] += 1
            continue
        stats["advanced"] += int(advanced)
        stats["integrated"] += int(integrated)

    logger.info("Time-in-stage sweep: %s", stats, extra={"tenant_id": tenant_id})
    return stats
