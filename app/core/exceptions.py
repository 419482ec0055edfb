"""
Platform-wide exception hierarchy.

Services raise these; app/utils/errors.py registers one handler per type
and renders the standard error envelope. Every exception carries a machine
`code` so clients can branch without parsing messages.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Stage", resource_id=42, code="STAGE_NOT_FOUND")
    raise ValidationError("firstName is required", details={"firstName": "required"})
"""


class PlatformError(Exception):
    """Base class; subclasses set `status` and a default `code`."""

    status = 400
    default_code = "ERROR"

    def __init__(self, message: str, code: str | None = None, details: dict | None = None) -> None:
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(PlatformError):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access attempts;
    a 403 would confirm the resource exists, a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Member", "Stage").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional, the scope that was enforced. For debug logging only.
        code: Machine code, defaults to ``<RESOURCE>_NOT_FOUND``.
    """

    status = 404
    default_code = "NOT_FOUND"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
        code: str | None = None,
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
        super().__init__(msg, code=code or f"{resource.upper()}_NOT_FOUND")

    @property
    def public_message(self) -> str:
        return f"{self.resource} not found"


class ValidationError(PlatformError):
    """Raised when input fails validation or a business rule in the service layer.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
        code: Machine code, defaults to ``VALIDATION_ERROR``.
    """

    status = 400
    default_code = "VALIDATION_ERROR"


class ConflictError(PlatformError):
    """Raised when an operation collides with existing state.

    Covers unique-value collisions (duplicate stage name, existing email) and
    stale optimistic-concurrency versions. Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated, or "version".
        value: The conflicting value (full in logs).
        code: Machine code, defaults to ``CONFLICT``.
        message: Overrides the generated message.
    """

    status = 409
    default_code = "CONFLICT"

    def __init__(
        self,
        resource: str,
        field: str,
        value=None,
        code: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = message or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg, code=code)


class PermissionDeniedError(PlatformError):
    """Raised when the caller is authenticated but may not touch the resource.

    Maps to HTTP 403.
    """

    status = 403
    default_code = "FORBIDDEN"
