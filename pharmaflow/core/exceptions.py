"""
Domain errors for the procurement core.

Every business-rule violation is raised before anything is written, and
carries a list of violations (field path -> message) so a caller can show
all of them at once. The FastAPI app renders these via a single exception
handler (see pharmaflow.main).
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    """Machine-readable error kinds returned to API clients."""
    INVALID_TRANSITION = "InvalidTransition"
    QUANTITY_OUT_OF_RANGE = "QuantityOutOfRange"
    EXPIRED_PRODUCT = "ExpiredProduct"
    INVALID_DATE_RANGE = "InvalidDateRange"
    EMPTY_RECEIVING = "EmptyReceiving"
    MISSING_DOCUMENT_TYPE = "MissingDocumentType"
    PERMISSION_DENIED = "PermissionDenied"
    REMARKS_REQUIRED = "RemarksRequired"
    PRODUCT_NOT_ON_ORDER = "ProductNotOnOrder"
    DUPLICATE_PRODUCT = "DuplicateProduct"
    INVALID_RECEIVING_HEADER = "InvalidReceivingHeader"
    INVALID_FOC = "InvalidFoc"
    NOT_FOUND = "NotFound"
    VERSION_CONFLICT = "VersionConflict"
    VALIDATION = "ValidationFailed"


@dataclass(frozen=True)
class Violation:
    """A single rule violation, addressed by field path."""
    path: str
    message: str
    kind: ErrorKind

    def to_dict(self) -> dict:
        return {"path": self.path, "msg": self.message, "kind": self.kind.value}


class DomainError(Exception):
    """Base class for business-rule failures. Never retried."""

    status_code = 400
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, violations: Optional[List[Violation]] = None):
        super().__init__(message)
        self.message = message
        self.violations: List[Violation] = list(violations or [])

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "kind": self.kind.value,
            "errors": [v.to_dict() for v in self.violations],
        }


class ValidationFailed(DomainError):
    """One or more field-level violations."""

    status_code = 400

    def __init__(self, violations: List[Violation], message: str = "Validation failed"):
        super().__init__(message, violations)

    @property
    def kinds(self) -> List[ErrorKind]:
        return [v.kind for v in self.violations]

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        # Single-kind failures report that kind directly
        kinds = set(self.kinds)
        if len(kinds) == 1:
            return next(iter(kinds))
        return ErrorKind.VALIDATION


class InvalidTransition(DomainError):
    status_code = 409
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(
        self,
        current_state: str,
        action: str,
        reason: Optional[str] = None,
        entity: str = "purchase order",
    ):
        message = f"Cannot '{action}' {entity} in '{current_state}' status"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            [Violation("status", message, ErrorKind.INVALID_TRANSITION)],
        )
        self.current_state = current_state
        self.action = action


class PermissionDenied(DomainError):
    status_code = 403
    kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, resource: str, action: str):
        message = f"Permission denied. Required: {resource}:{action}"
        super().__init__(message, [Violation("permission", message, ErrorKind.PERMISSION_DENIED)])
        self.resource = resource
        self.action = action


class NotFound(DomainError):
    status_code = 404
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, identifier):
        message = f"{entity} {identifier} not found"
        super().__init__(message, [Violation("id", message, ErrorKind.NOT_FOUND)])


class VersionConflict(DomainError):
    status_code = 409
    kind = ErrorKind.VERSION_CONFLICT

    def __init__(self, po_number: str, expected: Optional[int], actual: Optional[int]):
        message = (
            f"Purchase order {po_number} was modified (version {actual}, "
            f"you loaded version {expected}). Reload and try again."
        )
        super().__init__(message, [Violation("poVersion", message, ErrorKind.VERSION_CONFLICT)])
        self.expected = expected
        self.actual = actual
