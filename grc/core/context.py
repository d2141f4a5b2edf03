"""
Tenant/user context passed explicitly to every service call.

Resolution of the context (JWT, session, headers) belongs to the caller;
services never read it from ``flask.g`` themselves.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    tenant_id: int
    user_id: int | None = None

    def __post_init__(self) -> None:
        if self.tenant_id is None:
            raise ValueError("TenantContext requires a tenant_id")
