"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register one handler per type and
get consistent HTTP status codes everywhere.

Transition rejections are NOT exceptions: ``validate_transition`` returns a
structured result so callers can render the alternatives. The types below
cover lookups and definition CRUD only.

Usage:
    from issueflow.core.exceptions import NotFoundError, DefinitionValidationError

    raise NotFoundError(resource="Workflow", resource_id=42)
    raise DefinitionValidationError("WorkflowStep", {"status": "status is required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Workflow", "Issue").
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
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class DefinitionValidationError(ValidationError):
    """Malformed workflow, step or transition on create/update.

    Carries every violated constraint, not just the first one found.

    Args:
        entity: Model name being validated.
        violations: Mapping of field name -> description, in check order.
    """

    def __init__(self, entity: str, violations: dict[str, str]) -> None:
        self.entity = entity
        self.violations = [f"{field}: {reason}" for field, reason in violations.items()]
        msg = f"Invalid {entity}: " + "; ".join(self.violations)
        super().__init__(msg, details=dict(violations))


class ConflictError(Exception):
    """Raised when an operation collides with existing state.

    Covers uniqueness violations (two active workflows for one issue type),
    deletions of in-use definitions, and lost-update detection on the
    guarded status write. Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field or state that conflicts.
        value: The conflicting value.
        reason: Optional override for the human-readable message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | int | None = None,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = reason or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
