"""
Tests: Task Completion Trigger and task CRUD.

Covers:
  1. complete_task idempotence (TASK_ALREADY_COMPLETED, completed_at frozen)
  2. keyword auto-advance, word-mode matching, inactive members
  3. terminal stage → INTEGRATED
  4. create / update / list / stats
"""

from datetime import timedelta

import pytest

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.member import Member, Note
from app.models.task import Task
from app.services import member_service, task_service
from app.services.task_service import MATCH_SUBSTRING, MATCH_WORD, keyword_matches
from app.utils.helpers import utcnow


def _task(member_id, description, due_in_days=3, **extra):
    return {
        "memberId": member_id,
        "description": description,
        "dueDate": (utcnow() + timedelta(days=due_in_days)).isoformat(),
        **extra,
    }


def _create(tenant, admin, member, description, **extra):
    return task_service.create_task(tenant.id, admin.id, _task(member.id, description, **extra))


# ── keyword matching ─────────────────────────────────────────────────────────


@pytest.mark.parametrize("description,keyword,mode,expected", [
    ("Make welcome call to introduce yourself", "welcome call", MATCH_SUBSTRING, True),
    ("MAKE WELCOME CALL", "Welcome Call", MATCH_SUBSTRING, True),
    ("Update the welcome caller list", "welcome call", MATCH_SUBSTRING, True),
    ("Update the welcome caller list", "welcome call", MATCH_WORD, False),
    ("Make the welcome  call today", "welcome call", MATCH_WORD, True),
    ("Send welcome email", "welcome call", MATCH_SUBSTRING, False),
    ("Anything", "", MATCH_SUBSTRING, False),
    ("", "welcome call", MATCH_SUBSTRING, False),
])
def test_keyword_matches(description, keyword, mode, expected):
    assert keyword_matches(description, keyword, mode) is expected


# ── completion trigger ───────────────────────────────────────────────────────


def test_complete_task_twice_is_rejected(tenant, admin, pathway, make_member):
    member = make_member(pathway["follow_up"])
    task = _create(tenant, admin, member, "Pray together")

    first = task_service.complete_task(task["id"], tenant.id, admin.id)
    stamped = first["task"]["completedAt"]
    assert first["task"]["completed"] is True
    assert first["memberAdvanced"] is False

    with pytest.raises(ValidationError) as exc:
        task_service.complete_task(task["id"], tenant.id, admin.id)
    assert exc.value.code == "TASK_ALREADY_COMPLETED"
    assert task_service.get_task(tenant.id, task["id"])["completedAt"] == stamped


def test_completing_keyword_task_advances_member(tenant, admin, pathway, make_rule, make_member):
    make_rule(pathway["follow_up"], "Invite", "Invite to group", days_due=7)
    member = make_member(pathway["first"])
    task = _create(tenant, admin, member, "Make welcome call to introduce yourself")

    result = task_service.complete_task(task["id"], tenant.id, admin.id)

    assert result["memberAdvanced"] is True
    assert result["memberIntegrated"] is False
    assert [t["description"] for t in result["createdTasks"]] == ["Invite to group"]
    db.session.expire_all()
    assert db.session.get(Member, member.id).current_stage_id == pathway["follow_up"].id
    assert any(
        n.content == '[System] Auto-advanced from "First Visit" to "Follow-up" (task completed)'
        for n in Note.query.filter_by(member_id=member.id)
    )


def test_non_matching_task_does_not_advance(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    task = _create(tenant, admin, member, "Send welcome email")
    result = task_service.complete_task(task["id"], tenant.id, admin.id)
    assert result["memberAdvanced"] is False
    assert db.session.get(Member, member.id).current_stage_id == pathway["first"].id


def test_word_mode_ignores_partial_words(app, tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    task = _create(tenant, admin, member, "Update the welcome caller list")
    app.config["AUTO_ADVANCE_MATCH_MODE"] = MATCH_WORD
    try:
        result = task_service.complete_task(task["id"], tenant.id, admin.id)
    finally:
        app.config["AUTO_ADVANCE_MATCH_MODE"] = MATCH_SUBSTRING
    assert result["memberAdvanced"] is False


def test_disabled_auto_advance_does_not_fire(tenant, admin, pathway, make_member):
    pathway["first"].auto_advance_enabled = False
    db.session.commit()
    member = make_member(pathway["first"])
    task = _create(tenant, admin, member, "Make welcome call")
    assert task_service.complete_task(task["id"], tenant.id, admin.id)["memberAdvanced"] is False


def test_inactive_member_is_not_advanced(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    member_service.update_member(tenant.id, member.id, {"status": "INACTIVE"})
    task = _create(tenant, admin, member, "Make welcome call")
    result = task_service.complete_task(task["id"], tenant.id, admin.id)
    assert result["memberAdvanced"] is False
    assert result["task"]["completed"] is True


def test_completing_at_last_stage_integrates(tenant, admin, pathway, make_member):
    last = pathway["connect"]
    last.auto_advance_enabled = True
    last.auto_advance_type = "TASK_COMPLETED"
    last.auto_advance_value = "group welcome"
    db.session.commit()
    member = make_member(last)
    task = _create(tenant, admin, member, "Group welcome dinner")

    result = task_service.complete_task(task["id"], tenant.id, admin.id)

    assert result["memberAdvanced"] is False
    assert result["memberIntegrated"] is True
    db.session.expire_all()
    refreshed = db.session.get(Member, member.id)
    assert refreshed.status == "INTEGRATED"
    assert refreshed.current_stage_id == last.id
    assert Note.query.filter_by(
        member_id=member.id, content="[System] Pathway completed - marked as integrated",
    ).count() == 1


def test_complete_task_of_other_tenant(other_tenant, tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    task = _create(tenant, admin, member, "Pray together")
    with pytest.raises(NotFoundError) as exc:
        task_service.complete_task(task["id"], other_tenant.id, admin.id)
    assert exc.value.code == "TASK_NOT_FOUND"


# ── CRUD ─────────────────────────────────────────────────────────────────────


def test_create_task_validation(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    with pytest.raises(ValidationError):
        task_service.create_task(tenant.id, admin.id, {"memberId": member.id, "dueDate": "2026-11-01"})
    with pytest.raises(ValidationError):
        task_service.create_task(tenant.id, admin.id, _task(member.id, "X", priority="URGENT"))
    with pytest.raises(NotFoundError) as exc:
        task_service.create_task(tenant.id, admin.id, _task(999, "X"))
    assert exc.value.code == "MEMBER_NOT_FOUND"


def test_create_task_defaults(tenant, admin, leader, pathway, make_member):
    member = make_member(pathway["first"], assignedToId=leader.id)
    task = _create(tenant, admin, member, "Coffee catch-up")
    assert task["priority"] == "MEDIUM"
    assert task["assignedToId"] == leader.id
    assert task["createdByRule"] is False
    assert task["member"]["id"] == member.id


def test_update_task(tenant, admin, leader, pathway, make_member):
    member = make_member(pathway["first"])
    task = _create(tenant, admin, member, "Coffee")
    updated = task_service.update_task(tenant.id, task["id"], {
        "description": "Coffee and prayer",
        "priority": "HIGH",
        "assignedToId": leader.id,
        "dueDate": "2026-12-24",
    })
    assert updated["description"] == "Coffee and prayer"
    assert updated["priority"] == "HIGH"
    assert updated["assignedToId"] == leader.id
    assert updated["dueDate"].startswith("2026-12-24")


def test_list_tasks_filters_and_pagination(tenant, admin, leader, pathway, make_member):
    member = make_member(pathway["first"])
    for i in range(3):
        _create(tenant, admin, member, f"Open {i}", assignedToId=leader.id)
    overdue = _create(tenant, admin, member, "Late", due_in_days=-2)
    done = _create(tenant, admin, member, "Done")
    task_service.complete_task(done["id"], tenant.id, admin.id)

    items, pagination = task_service.list_tasks(tenant.id, {"assignedToId": leader.id}, page=1, limit=2)
    assert pagination == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}
    assert len(items) == 2

    overdue_items, _ = task_service.list_tasks(tenant.id, {"overdue": True})
    assert [t["id"] for t in overdue_items] == [overdue["id"]]

    completed_items, _ = task_service.list_tasks(tenant.id, {"completed": True})
    assert [t["id"] for t in completed_items] == [done["id"]]


def test_task_stats(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    _create(tenant, admin, member, "High", priority="HIGH")
    _create(tenant, admin, member, "Late", due_in_days=-1)
    done = _create(tenant, admin, member, "Done")
    task_service.complete_task(done["id"], tenant.id, admin.id)

    stats = task_service.get_task_stats(tenant.id)
    assert stats["total"] == 3
    assert stats["completed"] == 1
    assert stats["pending"] == 2
    assert stats["overdue"] == 1
    assert stats["highPriority"] == 1
    assert stats["completionRate"] == 33.3


def test_delete_task(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    task = _create(tenant, admin, member, "Temporary")
    task_service.delete_task(tenant.id, task["id"])
    assert db.session.get(Task, task["id"]) is None
