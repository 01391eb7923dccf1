"""Error taxonomy for the guardrail engine.

Only truly exceptional conditions are raised. Document problems are reported
through ValidationError with an ordered, capped issue list, and gate outcomes
(DENY, HOLD) are verdict values, never exceptions.

Hierarchy:
- GuardrailError          : base class for every error raised by this package
- CanonicalizationError   : value cannot be canonically encoded (cycle, non-JSON value)
- ValidationError         : document failed schema validation
- NotFoundError           : referenced record does not exist
- AuthenticationError     : request carries no authenticated subject
- AuthorizationError      : subject is not allowed to perform the operation
"""

from typing import Any


class GuardrailError(Exception):
    """Base class for guardrail engine errors.

    Args:
        message: Human-readable description, safe to return to API callers.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a JSON-safe body without internal details."""
        return {"error": type(self).__name__, "message": self.message}


class CanonicalizationError(GuardrailError):
    """Raised when a value cannot be canonically encoded.

    Args:
        message: What was wrong with the value.
        path: Dotted location of the offending value, ``root`` for the value itself.
    """

    def __init__(self, message: str, path: str = "root") -> None:
        super().__init__(f"{message} at {path}")
        self.path = path


class ValidationError(GuardrailError):
    """Raised when a document fails validation.

    Args:
        message: Summary message.
        issues: Ordered, capped issue list (``ValidationIssue`` instances).
        field: Optional single field the summary refers to.
    """

    def __init__(self, message: str, issues: list[Any] | None = None, field: str | None = None) -> None:
        super().__init__(message)
        self.issues = list(issues or [])
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.field is not None:
            body["field"] = self.field
        body["issues"] = [issue.to_dict() for issue in self.issues]
        return body


class NotFoundError(GuardrailError):
    """Raised when a referenced record does not exist.

    Args:
        message: Human-readable description.
        resource: Resource type name (e.g. ``lawbook_version``).
        resource_id: Identifier that was looked up.
    """

    def __init__(self, message: str, resource: str | None = None, resource_id: str | None = None) -> None:
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class AuthenticationError(GuardrailError):
    """Raised when a request has no authenticated subject."""


class AuthorizationError(GuardrailError):
    """Raised when the authenticated subject lacks permission."""
