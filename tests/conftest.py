"""
Shared pytest fixtures for the Pathway Progression Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / other_tenant: two churches for isolation tests
    - admin / leader / volunteer: users of `tenant`, one per role
    - auth_headers: factory → {"Authorization": "Bearer <jwt>"} for a user
    - pathway: NEWCOMER stages "First Visit" → "Follow-up" → "Connect Group"
    - make_stage / make_rule: ORM factories
    - make_member: factory placing a member on a stage through member_service
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import Tenant, User
from app.models.pathway import AutomationRule, Stage
from app.services import member_service
from app.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Tenants & users ──────────────────────────────────────────────────────


def _make_tenant(name, slug):
    t = Tenant(name=name, slug=slug, plan="starter")
    _db.session.add(t)
    _db.session.commit()
    return t


def _make_user(tenant_id, email, role, first_name="Test", last_name="User"):
    u = User(tenant_id=tenant_id, email=email, role=role,
             first_name=first_name, last_name=last_name)
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def tenant():
    return _make_tenant("Grace Church", "grace-church")


@pytest.fixture()
def other_tenant():
    return _make_tenant("Hope Chapel", "hope-chapel")


@pytest.fixture()
def admin(tenant):
    return _make_user(tenant.id, "pastor@gracechurch.org", "ADMIN", "Paul", "Pastor")


@pytest.fixture()
def leader(tenant):
    return _make_user(tenant.id, "leader@gracechurch.org", "TEAM_LEADER", "Lydia", "Lead")


@pytest.fixture()
def volunteer(tenant):
    return _make_user(tenant.id, "helper@gracechurch.org", "VOLUNTEER", "Vic", "Helper")


@pytest.fixture()
def auth_headers():
    """Factory: Authorization header carrying an access token for `user`."""
    def _headers(user):
        token = generate_access_token(user.id, user.tenant_id, user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ── Pathway fixtures ─────────────────────────────────────────────────────


def _make_stage(tenant_id, name, order, pathway="NEWCOMER", **kwargs):
    s = Stage(tenant_id=tenant_id, pathway=pathway, name=name, order=order, **kwargs)
    _db.session.add(s)
    _db.session.commit()
    return s


def _make_rule(stage, name, task_description, days_due=1, priority="MEDIUM", enabled=True):
    r = AutomationRule(
        tenant_id=stage.tenant_id,
        stage_id=stage.id,
        name=name,
        task_description=task_description,
        days_due=days_due,
        priority=priority,
        enabled=enabled,
    )
    _db.session.add(r)
    _db.session.commit()
    return r


@pytest.fixture()
def make_stage():
    """Factory: make_stage(tenant_id, name, order, pathway="NEWCOMER", **columns)."""
    return _make_stage


@pytest.fixture()
def make_rule():
    """Factory: make_rule(stage, name, task_description, days_due=1, priority="MEDIUM")."""
    return _make_rule


@pytest.fixture()
def pathway(tenant):
    """Three NEWCOMER stages; First Visit auto-advances on the "welcome call" keyword."""
    first = _make_stage(
        tenant.id, "First Visit", 0,
        auto_advance_enabled=True,
        auto_advance_type="TASK_COMPLETED",
        auto_advance_value="welcome call",
    )
    follow_up = _make_stage(tenant.id, "Follow-up", 1)
    connect = _make_stage(tenant.id, "Connect Group", 2)
    return {"first": first, "follow_up": follow_up, "connect": connect}


@pytest.fixture()
def make_member(tenant, admin):
    """Factory creating a member through the service layer (initial placement)."""
    counter = {"n": 0}

    def _make(stage=None, pathway_name="NEWCOMER", **data):
        counter["n"] += 1
        payload = {
            "firstName": data.pop("firstName", "Member"),
            "lastName": data.pop("lastName", str(counter["n"])),
            "pathway": pathway_name,
        }
        if stage is not None:
            payload["currentStageId"] = stage.id
        payload.update(data)
        created = member_service.create_member(tenant.id, admin.id, payload)
        return member_service.get_member_model(tenant.id, created["id"])

    return _make
