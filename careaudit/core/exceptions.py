"""
Service-wide exception hierarchy.

Every service raises these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.

Usage:
    from careaudit.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="AuditTemplate", resource_id=42)
    raise ValidationError("description is required", details={"description": "required"})
    raise InvalidStateError("AuditRun", 7, current="completed", reason="run is completed")
"""


class NotFoundError(Exception):
    """Raised when a referenced template, run or action plan does not exist.

    Args:
        resource: Human-readable model name (e.g. "AuditTemplate", "ActionPlan").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is missing or violates a business rule.

    Rejected before any write. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidStateError(Exception):
    """Raised when an operation is not allowed from the entity's current status.

    Covers mutating or re-completing a completed run and transitioning an
    action plan to a status outside its vocabulary. Maps to HTTP 409.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None,
        current: str | None,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current
        self.reason = reason
        msg = f"{resource} id={resource_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConcurrencyError(Exception):
    """Raised when the store's atomicity guarantee was not honoured.

    Seeing this means two writers raced past a uniqueness guard, which is a
    programming or deployment error rather than a user mistake.
    """

    def __init__(self, resource: str, detail: str) -> None:
        self.resource = resource
        self.detail = detail
        super().__init__(f"{resource}: {detail}")
