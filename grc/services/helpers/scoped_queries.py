"""
Tenant-scoped query helpers.

Every get-by-id in the service layer goes through these helpers instead of
``db.session.get(Model, pk)``. A bare ``.get()`` ignores the tenant and
would let one tenant read or mutate another tenant's execution, risk or
action plan.

Usage:
    execution = get_scoped(KpiExecution, execution_id, tenant_id=ctx.tenant_id)
    user = get_scoped_or_none(User, user_id, tenant_id=ctx.tenant_id)

Cross-tenant access is indistinguishable from a missing record: both raise
NotFoundError → HTTP 404.
"""

import logging

from sqlalchemy import select

from grc.core.exceptions import NotFoundError
from grc.models import db

logger = logging.getLogger(__name__)


def get_scoped(model, pk, *, tenant_id: int | None, for_update: bool = False):
    """Fetch a single entity by PK with a mandatory tenant filter.

    Args:
        model: SQLAlchemy model class with ``id`` and ``tenant_id`` columns.
        pk: Primary key value to look up.
        tenant_id: Owning tenant. Required.
        for_update: Emit SELECT ... FOR UPDATE (ignored by SQLite).

    Raises:
        ValueError: If tenant_id is missing or the model has no tenant_id column.
        NotFoundError: If the entity does not exist OR belongs to another tenant.
    """
    if tenant_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires a tenant_id scope. "
            "Unscoped lookups are forbidden: they bypass tenant isolation."
        )
    if not hasattr(model, "tenant_id"):
        raise ValueError(f"{model.__name__} has no tenant_id column; refusing an unscoped lookup.")

    stmt = select(model).where(model.id == pk, model.tenant_id == tenant_id)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_scoped: %s id=%s not found in tenant %s", model.__name__, pk, tenant_id)
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result


def get_scoped_or_none(model, pk, *, tenant_id: int | None):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    Still refuses unscoped lookups.
    """
    if pk is None:
        return None
    try:
        return get_scoped(model, pk, tenant_id=tenant_id)
    except NotFoundError:
        return None
