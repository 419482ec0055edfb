"""
Tenant-scoped query helpers.

Every get-by-id in the platform MUST use these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
bypass tenant isolation, which is the security boundary of this
multi-tenant platform.

Usage:
    # Scope by tenant_id (TenantModel subclasses)
    stage = get_scoped(Stage, stage_id, tenant_id=tenant_id)

    # Scope by the owning member (tags, notes)
    tag = get_scoped(MemberTag, tag_id, member_id=member_id, code="TAG_NOT_FOUND")

    # Row-lock the member for a progression (no-op on SQLite)
    member = get_scoped(Member, member_id, tenant_id=tenant_id, for_update=True)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces during development/testing rather than
    silently allowing unscoped access in production.
"""

import logging

from sqlalchemy import func, select

from app.core.exceptions import NotFoundError
from app.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    tenant_id: int | None = None,
    member_id: int | None = None,
    stage_id: int | None = None,
    resource: str | None = None,
    code: str | None = None,
    for_update: bool = False,
    **extra_filters,
):
    """Fetch a single entity by PK with mandatory scope filter.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Args:
        model: SQLAlchemy model class with an `id` PK and a scope column.
        pk: Primary key value to look up.
        tenant_id / member_id / stage_id: Scope columns; at least one required.
        resource: Name used in the NotFoundError (defaults to the class name).
        code: Machine code for the NotFoundError (defaults to <RESOURCE>_NOT_FOUND).
        for_update: Emit SELECT ... FOR UPDATE where the dialect supports it.
        **extra_filters: Additional equality filters (e.g. pathway="NEWCOMER");
            a mismatch is reported as not found.

    Raises:
        ValueError: No scope provided, or a scope column missing on the model.
        NotFoundError: Entity absent or outside the scope.
    """
    scopes = {
        k: v for k, v in
        {"tenant_id": tenant_id, "member_id": member_id, "stage_id": stage_id}.items()
        if v is not None
    }
    if not scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(tenant_id, member_id or stage_id). Unscoped lookups are forbidden."
        )

    missing = sorted(f for f in list(scopes) + list(extra_filters) if not hasattr(model, f))
    if missing:
        raise ValueError(
            f"{model.__name__} has no column(s) {missing}; refusing an unscoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in {**scopes, **extra_filters}.items():
        stmt = stmt.where(getattr(model, field) == value)
    if for_update:
        stmt = stmt.with_for_update(of=model)

    result = db.session.execute(stmt).unique().scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__, pk, scopes,
        )
        raise NotFoundError(
            resource=resource or model.__name__,
            resource_id=pk,
            tenant_id=tenant_id,
            code=code,
        )

    return result


def paginate_select(stmt, page: int = 1, limit: int = 50, max_limit: int = 100):
    """Run a select() with page/limit pagination.

    Returns:
        (items_list, {"page", "limit", "total", "totalPages"})
    """
    page = max(page or 1, 1)
    limit = min(max(limit or 1, 1), max_limit)
    total = db.session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    items = db.session.execute(
        stmt.limit(limit).offset((page - 1) * limit)
    ).unique().scalars().all()
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": -(-total // limit),
    }
