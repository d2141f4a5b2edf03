"""
Tenant Context Middleware: resolves the caller's tenant for API requests.

Every ``/api/v1/`` request (except the skip list) must carry:
    X-Tenant-ID   integer id of an active tenant        (required)
    X-User-ID     integer id of a user of that tenant   (optional)

On success ``g.tenant_context`` holds a TenantContext that route handlers
pass as the first argument to every service call. A missing or malformed
header → 400, an unknown tenant → 404, a deactivated tenant or a user of
another tenant → 403.

Chain order:
  timing.py  →  tenant_context.py  →  route handler
"""

import logging

from flask import g, request

from grc.core.context import TenantContext
from grc.models import db
from grc.models.auth import Tenant, User
from grc.utils.errors import E, api_error

logger = logging.getLogger(__name__)

TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _header_int(name: str):
    raw = (request.headers.get(name) or "").strip()
    if not raw:
        return None
    if not raw.isdigit():
        raise ValueError(name)
    return int(raw)


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant = None
        g.tenant_context = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        try:
            tenant_id = _header_int("X-Tenant-ID")
            user_id = _header_int("X-User-ID")
        except ValueError as exc:
            return api_error(E.TENANT_REQUIRED, f"{exc} header must be an integer")
        if tenant_id is None:
            return api_error(E.TENANT_REQUIRED, "X-Tenant-ID header is required")

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            logger.warning("Unknown tenant_id %d in X-Tenant-ID", tenant_id)
            return api_error(E.NOT_FOUND, "Tenant not found")
        if not tenant.is_active:
            logger.warning("Request for deactivated tenant_id %d", tenant_id)
            return api_error(E.FORBIDDEN, "Tenant account is deactivated")

        if user_id is not None:
            user = db.session.get(User, user_id)
            if user is None or user.tenant_id != tenant_id:
                logger.warning("User %s does not belong to tenant %d", user_id, tenant_id)
                return api_error(E.FORBIDDEN, "User does not belong to this tenant")

        g.tenant = tenant
        g.tenant_id = tenant_id
        g.tenant_context = TenantContext(tenant_id=tenant_id, user_id=user_id)
        return None

    logger.info("Tenant context middleware installed")
