"""
Tests: Member store, notes, tags and the tenant member counter.
"""

import pytest

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import Tenant, User
from app.models.member import Member, MemberTag, Note, StageHistory
from app.services import member_service, progression
from app.services.helpers.transaction import atomic


def _count(tenant):
    db.session.expire_all()
    return db.session.get(Tenant, tenant.id).member_count


# ── create ───────────────────────────────────────────────────────────────────


def test_create_defaults_to_first_stage(tenant, admin, pathway):
    created = member_service.create_member(tenant.id, admin.id, {
        "firstName": "Jane",
        "lastName": "Doe",
        "email": " Jane.Doe@Example.com ",
        "pathway": "NEWCOMER",
        "gender": "f",
        "maritalStatus": "married",
        "dateOfBirth": "15/03/1990",
        "tags": ["visitor", "visitor", "choir"],
    })

    assert created["currentStageId"] == pathway["first"].id
    assert created["email"] == "jane.doe@example.com"
    assert created["gender"] == "FEMALE"
    assert created["maritalStatus"] == "MARRIED"
    assert created["dateOfBirth"] == "1990-03-15"
    assert created["status"] == "ACTIVE"
    assert created["version"] == 1
    assert sorted(t.tag for t in MemberTag.query.filter_by(member_id=created["id"])) == ["choir", "visitor"]
    assert [n.content for n in Note.query.filter_by(member_id=created["id"])] == [
        "[System] Member added to NEWCOMER pathway",
    ]
    assert _count(tenant) == 1


def test_create_on_explicit_stage(tenant, admin, pathway):
    created = member_service.create_member(tenant.id, admin.id, {
        "firstName": "Sam", "lastName": "Lee", "pathway": "NEWCOMER",
        "currentStageId": pathway["connect"].id,
    })
    assert created["currentStageId"] == pathway["connect"].id


def test_create_rejects_stage_of_other_pathway(tenant, admin, pathway, make_stage):
    believer = make_stage(tenant.id, "Decision", 0, pathway="NEW_BELIEVER")
    with pytest.raises(NotFoundError) as exc:
        member_service.create_member(tenant.id, admin.id, {
            "firstName": "Sam", "lastName": "Lee", "pathway": "NEWCOMER",
            "currentStageId": believer.id,
        })
    assert exc.value.code == "STAGE_NOT_FOUND"
    assert Member.query.count() == 0


def test_create_without_stages(tenant, admin):
    with pytest.raises(ValidationError) as exc:
        member_service.create_member(tenant.id, admin.id, {
            "firstName": "Sam", "lastName": "Lee", "pathway": "NEW_BELIEVER",
        })
    assert exc.value.code == "NO_STAGES_CONFIGURED"
    assert _count(tenant) == 0


def test_create_duplicate_email_conflicts(tenant, admin, pathway, make_member):
    make_member(email="jane@example.com")
    with pytest.raises(ConflictError) as exc:
        make_member(email="JANE@example.com")
    assert exc.value.code == "EMAIL_EXISTS"
    assert _count(tenant) == 1


def test_same_email_in_other_tenant_is_allowed(tenant, other_tenant, admin, pathway, make_stage, make_member):
    make_member(email="jane@example.com")
    make_stage(other_tenant.id, "Welcome", 0)
    created = member_service.create_member(other_tenant.id, None, {
        "firstName": "Jane", "lastName": "Doe", "pathway": "NEWCOMER", "email": "jane@example.com",
    })
    assert created["tenantId"] == other_tenant.id


@pytest.mark.parametrize("payload,field", [
    ({"lastName": "Doe"}, "firstName"),
    ({"firstName": "Jane", "lastName": "Doe", "email": "not-an-email"}, "email"),
    ({"firstName": "Jane", "lastName": "Doe", "dateOfBirth": "31st of May"}, "dateOfBirth"),
    ({"firstName": "Jane", "lastName": "Doe", "gender": "x"}, "gender"),
    ({"firstName": "J" * 101, "lastName": "Doe"}, "firstName"),
    ({"firstName": "Jane", "lastName": "Doe", "zip": "9" * 21}, "zip"),
])
def test_create_validation_details(tenant, admin, pathway, payload, field):
    with pytest.raises(ValidationError) as exc:
        member_service.create_member(tenant.id, admin.id, {"pathway": "NEWCOMER", **payload})
    assert field in exc.value.details


def test_create_with_unknown_pathway(tenant, admin):
    with pytest.raises(ValidationError):
        member_service.create_member(tenant.id, admin.id, {
            "firstName": "Jane", "lastName": "Doe", "pathway": "VISITOR",
        })


def test_create_with_unknown_assignee(tenant, other_tenant, admin, pathway):
    outsider = User(tenant_id=other_tenant.id, email="someone@hopechapel.org", role="ADMIN")
    db.session.add(outsider)
    db.session.commit()
    with pytest.raises(NotFoundError) as exc:
        member_service.create_member(tenant.id, admin.id, {
            "firstName": "Jane", "lastName": "Doe", "pathway": "NEWCOMER",
            "assignedToId": outsider.id,
        })
    assert exc.value.code == "USER_NOT_FOUND"


# ── read ─────────────────────────────────────────────────────────────────────


def test_get_member_detail(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"], tags=["youth"])
    member_service.add_note(tenant.id, member.id, "Met at the coffee bar", admin.id)

    detail = member_service.get_member(tenant.id, member.id)

    assert detail["currentStage"]["name"] == "First Visit"
    assert [t["tag"] for t in detail["tags"]] == ["youth"]
    assert detail["notes"][0]["content"] == "Met at the coffee bar"
    assert detail["notes"][0]["isSystem"] is False
    assert detail["stageHistory"][0]["reason"] == "Initial placement"
    assert detail["tasks"] == []


def test_get_member_limits_recent_notes(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    for i in range(member_service.RECENT_NOTES_LIMIT + 2):
        member_service.add_note(tenant.id, member.id, f"note {i}", admin.id)
    detail = member_service.get_member(tenant.id, member.id)
    assert len(detail["notes"]) == member_service.RECENT_NOTES_LIMIT
    assert len(member_service.list_notes(tenant.id, member.id)) == member_service.RECENT_NOTES_LIMIT + 3


def test_get_member_of_other_tenant(other_tenant, pathway, make_member):
    member = make_member(pathway["first"])
    with pytest.raises(NotFoundError) as exc:
        member_service.get_member(other_tenant.id, member.id)
    assert exc.value.code == "MEMBER_NOT_FOUND"


def test_list_members_filters(tenant, admin, leader, pathway, make_member):
    make_member(pathway["first"], firstName="Alice", lastName="Smith", email="alice@example.com")
    make_member(pathway["follow_up"], firstName="Bob", lastName="Jones", assignedToId=leader.id)
    make_member(pathway["follow_up"], firstName="Carol", lastName="Smithers", phone="555-0100")

    def names(**filters):
        items, _ = member_service.list_members(tenant.id, filters)
        return sorted(m["firstName"] for m in items)

    assert names() == ["Alice", "Bob", "Carol"]
    assert names(stageId=pathway["follow_up"].id) == ["Bob", "Carol"]
    assert names(assignedToId=leader.id) == ["Bob"]
    assert names(search="smith") == ["Alice", "Carol"]
    assert names(search="555-01") == ["Carol"]
    assert names(search="ALICE@") == ["Alice"]
    assert names(pathway="NEW_BELIEVER") == []
    assert names(status="INTEGRATED") == []


def test_list_members_pagination(tenant, pathway, make_member):
    for _ in range(5):
        make_member(pathway["first"])
    items, pagination = member_service.list_members(tenant.id, page=2, limit=2)
    assert len(items) == 2
    assert pagination == {"page": 2, "limit": 2, "total": 5, "totalPages": 3}


def test_list_history_newest_first(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    progression.advance_stage(member.id, pathway["follow_up"].id, tenant.id, admin.id)
    rows = member_service.list_history(tenant.id, member.id)
    assert [r["toStage"] for r in rows] == ["Follow-up", "First Visit"]
    assert rows[0]["fromStage"] == "First Visit"


# ── update / delete ──────────────────────────────────────────────────────────


def test_update_member_fields_and_version(tenant, leader, pathway, make_member):
    member = make_member(pathway["first"])
    version = member.version
    updated = member_service.update_member(tenant.id, member.id, {
        "phone": "555-0199",
        "city": "Springfield",
        "status": "INACTIVE",
        "assignedToId": leader.id,
        "expectedVersion": version,
    })
    assert updated["phone"] == "555-0199"
    assert updated["city"] == "Springfield"
    assert updated["status"] == "INACTIVE"
    assert updated["assignedToId"] == leader.id
    assert updated["version"] == version + 1


def test_update_member_rejects_stage_and_pathway(tenant, pathway, make_member):
    member = make_member(pathway["first"])
    with pytest.raises(ValidationError) as exc:
        member_service.update_member(tenant.id, member.id, {
            "currentStageId": pathway["connect"].id, "pathway": "NEW_BELIEVER",
        })
    assert set(exc.value.details) == {"currentStageId", "pathway"}
    assert db.session.get(Member, member.id).current_stage_id == pathway["first"].id


def test_update_member_stale_version(tenant, pathway, make_member):
    member = make_member(pathway["first"])
    with pytest.raises(ConflictError):
        member_service.update_member(tenant.id, member.id, {"city": "X", "expectedVersion": 99})


def test_update_member_email_collision(tenant, pathway, make_member):
    make_member(email="taken@example.com")
    member = make_member(email="mine@example.com")
    with pytest.raises(ConflictError) as exc:
        member_service.update_member(tenant.id, member.id, {"email": "taken@example.com"})
    assert exc.value.code == "EMAIL_EXISTS"
    # keeping one's own address is not a collision
    member_service.update_member(tenant.id, member.id, {"email": "mine@example.com"})


def test_update_member_rejects_overlong_values(tenant, pathway, make_member):
    member = make_member(pathway["first"], city="Springfield")
    with pytest.raises(ValidationError) as exc:
        member_service.update_member(tenant.id, member.id, {"city": "C" * 101, "phone": "5" * 51})
    assert exc.value.details == {"city": "max 100 characters", "phone": "max 50 characters"}
    db.session.expire_all()
    assert db.session.get(Member, member.id).city == "Springfield"


def test_delete_member_cascades_and_decrements(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"], tags=["youth"])
    member_id = member.id
    assert _count(tenant) == 1

    member_service.delete_member(tenant.id, member_id)

    assert db.session.get(Member, member_id) is None
    assert StageHistory.query.filter_by(member_id=member_id).count() == 0
    assert Note.query.filter_by(member_id=member_id).count() == 0
    assert MemberTag.query.filter_by(member_id=member_id).count() == 0
    assert _count(tenant) == 0


def test_member_count_never_goes_negative(tenant):
    with atomic():
        member_service.adjust_member_count(tenant.id, -5)
    assert _count(tenant) == 0


# ── notes & tags ─────────────────────────────────────────────────────────────


def test_add_note_requires_content(tenant, admin, pathway, make_member):
    member = make_member(pathway["first"])
    with pytest.raises(ValidationError):
        member_service.add_note(tenant.id, member.id, "   ", admin.id)


def test_add_and_remove_tag(tenant, pathway, make_member):
    member = make_member(pathway["first"])
    tag = member_service.add_tag(tenant.id, member.id, " worship team ")
    assert tag["tag"] == "worship team"

    with pytest.raises(ConflictError) as exc:
        member_service.add_tag(tenant.id, member.id, "worship team")
    assert exc.value.code == "TAG_EXISTS"

    member_service.remove_tag(tenant.id, member.id, tag["id"])
    assert MemberTag.query.filter_by(member_id=member.id).count() == 0

    with pytest.raises(NotFoundError) as exc:
        member_service.remove_tag(tenant.id, member.id, tag["id"])
    assert exc.value.code == "TAG_NOT_FOUND"


def test_remove_tag_of_other_member(tenant, pathway, make_member):
    owner = make_member(pathway["first"])
    other = make_member(pathway["first"])
    tag = member_service.add_tag(tenant.id, owner.id, "youth")
    with pytest.raises(NotFoundError):
        member_service.remove_tag(tenant.id, other.id, tag["id"])
