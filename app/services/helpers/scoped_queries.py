"""
Tenant-scoped query helpers.

Every get-by-id in the platform MUST use these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
bypass tenant isolation.

Usage:
    checklist = get_scoped(Checklist, checklist_id, tenant_id=tenant_id)

    # Scope by a parent column as well (card must belong to the column)
    card = get_scoped(KanbanCard, card_id, tenant_id=tenant_id, column_id=column_id)

    # When None is an acceptable outcome (optional FK lookups)
    shift = get_scoped_or_none(Shift, shift_id, tenant_id=tenant_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces immediately during development/testing
    rather than silently allowing unscoped access in production.
"""

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db

logger = logging.getLogger(__name__)


def get_scoped(model, pk: int, *, tenant_id: int | None = None, **parent_scopes):
    """Fetch a single entity by PK with mandatory tenant scope.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Args:
        model: SQLAlchemy model class with an `id` PK and a `tenant_id` column.
        pk: Primary key value to look up.
        tenant_id: Tenant scope. Required.
        **parent_scopes: Optional extra column filters (e.g. checklist_id=3).

    Returns:
        The model instance if found within the given scope.

    Raises:
        ValueError: If tenant_id is missing, or a scope names a column the
                    model does not have.
        NotFoundError: If the entity does not exist OR belongs to a different
                       scope. The two cases are intentionally indistinguishable.
    """
    if tenant_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires a tenant_id scope. "
            "Unscoped lookups are forbidden — they bypass tenant isolation."
        )

    scopes = {"tenant_id": tenant_id}
    scopes.update({k: v for k, v in parent_scopes.items() if v is not None})

    missing_fields = sorted(field for field in scopes if not hasattr(model, field))
    if missing_fields:
        raise ValueError(
            f"{model.__name__} id={pk}: scope field(s) {missing_fields} "
            f"do not exist as columns on {model.__name__}."
        )

    if pk is None:
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    stmt = select(model).where(model.id == pk)
    for field, value in scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            scopes,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    return result


def get_scoped_or_none(model, pk: int, *, tenant_id: int | None = None, **parent_scopes):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    Still enforces the scope requirement (raises ValueError if tenant_id
    is missing), because silent unscoped lookups are never acceptable.
    """
    try:
        return get_scoped(model, pk, tenant_id=tenant_id, **parent_scopes)
    except NotFoundError:
        return None
