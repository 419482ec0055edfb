"""
Tests: Stage Registry.

Covers:
  1. create: append, shift-up on collision, clamping, validation, DUPLICATE_NAME
  2. update: rename collision, order change via minimal shift
  3. reorder_single / reorder_stages: density after every call, bad input
  4. delete: STAGE_HAS_MEMBERS guard, gap closed afterwards
  5. list / get / stats and the default-pathway seed
"""

import pytest

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.pathway import Stage
from app.services import stage_service


def _orders(tenant_id, pathway="NEWCOMER"):
    return [(s["name"], s["order"]) for s in stage_service.list_stages(tenant_id, pathway)]


def _assert_dense(tenant_id, pathway="NEWCOMER"):
    orders = [o for _, o in _orders(tenant_id, pathway)]
    assert orders == list(range(len(orders)))


def _create(tenant_id, name, order=None, pathway="NEWCOMER", **extra):
    data = {"pathway": pathway, "name": name, **extra}
    if order is not None:
        data["order"] = order
    return stage_service.create_stage(tenant_id, data)


# ── create ───────────────────────────────────────────────────────────────────


def test_create_without_order_appends(tenant):
    _create(tenant.id, "First Visit")
    _create(tenant.id, "Follow-up")
    assert _orders(tenant.id) == [("First Visit", 0), ("Follow-up", 1)]


def test_create_at_occupied_order_shifts_successors_up(tenant):
    _create(tenant.id, "A", 0)
    _create(tenant.id, "B", 1)
    _create(tenant.id, "C", 2)

    _create(tenant.id, "Inserted", 1)

    assert _orders(tenant.id) == [("A", 0), ("Inserted", 1), ("B", 2), ("C", 3)]


def test_create_past_the_end_is_clamped(tenant):
    _create(tenant.id, "A", 0)
    stage = _create(tenant.id, "Far", 10)
    assert stage["order"] == 1
    _assert_dense(tenant.id)


def test_create_duplicate_name_in_pathway_conflicts(tenant):
    _create(tenant.id, "First Visit")
    with pytest.raises(ConflictError) as exc:
        _create(tenant.id, "First Visit")
    assert exc.value.code == "DUPLICATE_NAME"


def test_same_name_allowed_in_other_pathway_and_tenant(tenant, other_tenant):
    _create(tenant.id, "Welcome")
    _create(tenant.id, "Welcome", pathway="NEW_BELIEVER")
    _create(other_tenant.id, "Welcome")
    assert Stage.query.filter_by(name="Welcome").count() == 3


@pytest.mark.parametrize("data", [
    {"pathway": "UNKNOWN", "name": "X"},
    {"pathway": "NEWCOMER", "name": "  "},
    {"pathway": "NEWCOMER", "name": "X", "order": -1},
    {"pathway": "NEWCOMER", "name": "X", "autoAdvanceType": "ON_BIRTHDAY"},
    {"pathway": "NEWCOMER", "name": "X", "autoAdvanceType": "TIME_IN_STAGE",
     "autoAdvanceValue": "soon"},
])
def test_create_rejects_invalid_payload(tenant, data):
    with pytest.raises(ValidationError) as exc:
        stage_service.create_stage(tenant.id, data)
    assert exc.value.code == "VALIDATION_ERROR"
    assert Stage.query.count() == 0


# ── update / reorder_single ──────────────────────────────────────────────────


def test_update_rename_collision(tenant):
    _create(tenant.id, "A")
    b = _create(tenant.id, "B")
    with pytest.raises(ConflictError) as exc:
        stage_service.update_stage(tenant.id, b["id"], {"name": "A"})
    assert exc.value.code == "DUPLICATE_NAME"


def test_update_fields_and_keep_own_name(tenant):
    a = _create(tenant.id, "A")
    updated = stage_service.update_stage(tenant.id, a["id"], {
        "name": "A",
        "description": "Welcome desk",
        "autoAdvanceEnabled": True,
        "autoAdvanceType": "TIME_IN_STAGE",
        "autoAdvanceValue": "2w",
    })
    assert updated["description"] == "Welcome desk"
    assert updated["autoAdvanceType"] == "TIME_IN_STAGE"
    assert updated["autoAdvanceValue"] == "2w"


def test_move_later_shifts_between_down(tenant):
    ids = [_create(tenant.id, n)["id"] for n in ("A", "B", "C", "D")]
    stage_service.update_stage(tenant.id, ids[0], {"order": 2})
    assert _orders(tenant.id) == [("B", 0), ("C", 1), ("A", 2), ("D", 3)]


def test_move_earlier_shifts_between_up(tenant):
    ids = [_create(tenant.id, n)["id"] for n in ("A", "B", "C", "D")]
    stage_service.reorder_single(tenant.id, ids[3], 1)
    assert _orders(tenant.id) == [("A", 0), ("D", 1), ("B", 2), ("C", 3)]


def test_reorder_single_clamps_to_last_slot(tenant):
    ids = [_create(tenant.id, n)["id"] for n in ("A", "B", "C")]
    stage_service.reorder_single(tenant.id, ids[0], 99)
    assert _orders(tenant.id) == [("B", 0), ("C", 1), ("A", 2)]


def test_reorder_single_unknown_stage(tenant):
    with pytest.raises(NotFoundError) as exc:
        stage_service.reorder_single(tenant.id, 999, 0)
    assert exc.value.code == "STAGE_NOT_FOUND"


# ── reorder_stages ───────────────────────────────────────────────────────────


def test_bulk_reorder_places_listed_stages_and_keeps_density(tenant):
    ids = {n: _create(tenant.id, n)["id"] for n in ("A", "B", "C", "D")}
    stage_service.reorder_stages(tenant.id, "NEWCOMER", [
        {"stageId": ids["D"], "newOrder": 0},
        {"stageId": ids["A"], "newOrder": 3},
    ])
    assert _orders(tenant.id) == [("D", 0), ("B", 1), ("C", 2), ("A", 3)]


def test_bulk_reorder_full_permutation(tenant):
    ids = {n: _create(tenant.id, n)["id"] for n in ("A", "B", "C")}
    result = stage_service.reorder_stages(tenant.id, "NEWCOMER", [
        {"stageId": ids["A"], "newOrder": 2},
        {"stageId": ids["B"], "newOrder": 0},
        {"stageId": ids["C"], "newOrder": 1},
    ])
    assert [s["name"] for s in result] == ["B", "C", "A"]
    _assert_dense(tenant.id)


def test_bulk_reorder_rejects_duplicate_targets(tenant):
    ids = [_create(tenant.id, n)["id"] for n in ("A", "B", "C")]
    with pytest.raises(ValidationError) as exc:
        stage_service.reorder_stages(tenant.id, "NEWCOMER", [
            {"stageId": ids[0], "newOrder": 1},
            {"stageId": ids[1], "newOrder": 1},
        ])
    assert exc.value.code == "INVALID_REORDER"
    assert _orders(tenant.id) == [("A", 0), ("B", 1), ("C", 2)]


def test_bulk_reorder_rejects_out_of_range_target(tenant):
    ids = [_create(tenant.id, n)["id"] for n in ("A", "B")]
    with pytest.raises(ValidationError) as exc:
        stage_service.reorder_stages(tenant.id, "NEWCOMER", [{"stageId": ids[0], "newOrder": 5}])
    assert exc.value.code == "INVALID_REORDER"


def test_bulk_reorder_rejects_stage_of_other_tenant(tenant, other_tenant):
    _create(tenant.id, "A")
    foreign = _create(other_tenant.id, "Foreign")
    with pytest.raises(NotFoundError) as exc:
        stage_service.reorder_stages(tenant.id, "NEWCOMER", [{"stageId": foreign["id"], "newOrder": 0}])
    assert exc.value.code == "STAGE_NOT_FOUND"


# ── delete ───────────────────────────────────────────────────────────────────


def test_delete_stage_with_members_is_refused(tenant, pathway, make_member):
    make_member(pathway["follow_up"])
    with pytest.raises(ValidationError) as exc:
        stage_service.delete_stage(tenant.id, pathway["follow_up"].id)
    assert exc.value.code == "STAGE_HAS_MEMBERS"
    assert Stage.query.count() == 3


def test_delete_empty_stage_closes_gap(tenant, pathway, make_rule):
    make_rule(pathway["follow_up"], "Invite", "Invite to group")
    stage_service.delete_stage(tenant.id, pathway["follow_up"].id)
    assert _orders(tenant.id) == [("First Visit", 0), ("Connect Group", 1)]


def test_normalize_orders_repairs_gaps(tenant, make_stage):
    make_stage(tenant.id, "A", 3)
    make_stage(tenant.id, "B", 7)
    stage_service.normalize_orders(tenant.id, "NEWCOMER")
    assert _orders(tenant.id) == [("A", 0), ("B", 1)]


# ── reads ────────────────────────────────────────────────────────────────────


def test_list_and_get_include_counts_and_enabled_rules(tenant, pathway, make_member, make_rule):
    make_member(pathway["first"])
    make_rule(pathway["first"], "Low", "Low task", priority="LOW")
    make_rule(pathway["first"], "High", "High task", priority="HIGH")
    make_rule(pathway["first"], "Off", "Disabled task", enabled=False)

    listed = stage_service.list_stages(tenant.id, "NEWCOMER")
    assert listed[0]["memberCount"] == 1
    assert listed[0]["automationRuleCount"] == 3

    detail = stage_service.get_stage(tenant.id, pathway["first"].id)
    assert [r["name"] for r in detail["automationRules"]] == ["High", "Low"]


def test_get_stage_of_other_tenant_is_not_found(other_tenant, pathway):
    with pytest.raises(NotFoundError) as exc:
        stage_service.get_stage(other_tenant.id, pathway["first"].id)
    assert exc.value.code == "STAGE_NOT_FOUND"


def test_stage_stats(tenant, pathway, make_member):
    make_member(pathway["first"])
    make_member(pathway["first"])
    make_member(pathway["connect"])
    stats = {s["name"]: s["memberCount"] for s in stage_service.get_stage_stats(tenant.id)}
    assert stats == {"First Visit": 2, "Follow-up": 0, "Connect Group": 1}


def test_get_first_and_next_stage(tenant, pathway):
    assert stage_service.get_first_stage(tenant.id, "NEWCOMER").id == pathway["first"].id
    assert stage_service.get_next_stage(pathway["first"]).id == pathway["follow_up"].id
    assert stage_service.get_next_stage(pathway["connect"]) is None
    assert stage_service.get_first_stage(tenant.id, "NEW_BELIEVER") is None


# ── seed ─────────────────────────────────────────────────────────────────────


def test_seed_default_stages_is_idempotent(tenant):
    first = stage_service.seed_default_stages(tenant.id)
    assert first["stages"] == 10
    assert first["rules"] > 0
    _assert_dense(tenant.id, "NEWCOMER")
    _assert_dense(tenant.id, "NEW_BELIEVER")

    again = stage_service.seed_default_stages(tenant.id)
    assert again == {"stages": 0, "rules": 0}
