"""
Platform-wide exception hierarchy.

Services raise these; the application factory registers one error handler
per type so every blueprint returns the same HTTP status and JSON shape.

Usage:
    from grc.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="KpiExecution", resource_id=42)
    raise ValidationError("comment is required", details={"comment": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Security note: used for BOTH genuinely missing records AND cross-tenant
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "Kpi", "Risk").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional: the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Covers malformed result values, unknown enum tokens, and the
    evidence-required gate on submission. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InvalidTransitionError(Exception):
    """Raised when an execution cannot move from its current workflow status.

    Maps to HTTP 409. Nothing is written when this is raised.
    """

    def __init__(self, resource_id, current: str, target: str, reason: str | None = None) -> None:
        self.resource_id = resource_id
        self.current_status = current
        self.target_status = target
        msg = f"Cannot move execution {resource_id} from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvariantViolationError(Exception):
    """Raised when a write would leave a second open action plan for one origin.

    Maps to HTTP 409.

    Args:
        origin_type: "risk" or "execution".
        origin_id: PK of the origin record.
        open_plan_id: The plan that is already open, when known.
    """

    def __init__(self, origin_type: str, origin_id, open_plan_id: int | None = None) -> None:
        self.origin_type = origin_type
        self.origin_id = origin_id
        self.open_plan_id = open_plan_id
        msg = f"An open action plan already exists for {origin_type} id={origin_id}"
        if open_plan_id is not None:
            msg += f" (plan id={open_plan_id})"
        super().__init__(msg)
