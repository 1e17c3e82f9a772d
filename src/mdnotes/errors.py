"""mdnotes Error Hierarchy.

Provides a structured error hierarchy for the block-document engine:
- MdNotesError: Base exception for all application errors
- ValidationError: Input validation failures
- MalformedImportError: A page snapshot cannot be imported as a whole
- NotFoundError: A page or block id does not exist
- InvalidOperationError: A structural operation was misused
- DatabaseError: Database operation failures
- StorageUnavailableError: The database cannot be opened, read or written

Each error type includes:
- Descriptive message
- Recoverable flag for retry logic (only storage errors are recoverable)
- Structured representation for CLI/UI responses

Keyboard-driven no-ops (indenting a first sibling, outdenting a root
block) are not errors: the tree operations return ``False`` for them.

Usage:
    from mdnotes.errors import NotFoundError

    if block is None:
        raise NotFoundError(f"Block not found: {block_id}",
                            resource_type="block", resource_id=block_id)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Base Class
# =============================================================================


class MdNotesError(Exception):
    """Base exception for all mdnotes errors.

    Attributes:
        message: Human-readable error description
        recoverable: Whether the operation can be retried
        context: Additional context for debugging
    """

    def __init__(
        self,
        message: str,
        *,
        recoverable: bool = False,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable
        self.context = context or {}

    @property
    def kind(self) -> str:
        """Short error kind, e.g. ``not_found`` or ``storage_unavailable``."""
        return _kind_name(type(self))

    def to_dict(self) -> dict[str, Any]:
        """Convert to structured dictionary for CLI/UI responses."""
        return {
            "type": self.kind,
            "message": self.message,
            "recoverable": self.recoverable,
            **{k: v for k, v in self.context.items() if v is not None},
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(MdNotesError):
    """Input validation failed.

    Example:
        raise ValidationError("Unknown block type", field="type", value="h7")
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        if constraint:
            context["constraint"] = constraint
        if value is not None:
            context["value"] = _truncate(str(value), 100)
        super().__init__(message, recoverable=False, context=context)
        self.field = field
        self.constraint = constraint


class MalformedImportError(ValidationError):
    """A page snapshot references ids that cannot be resolved.

    The whole import is rejected; nothing is written.
    """

    def __init__(
        self,
        message: str,
        *,
        block_id: str | None = None,
        reference: str | None = None,
    ) -> None:
        super().__init__(
            message,
            field="blocks",
            constraint=reference,
            context={"block_id": block_id},
        )
        self.block_id = block_id


# =============================================================================
# Lookup / Operation Errors
# =============================================================================


class NotFoundError(MdNotesError):
    """Page or block not found."""

    def __init__(
        self,
        message: str,
        *,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            recoverable=False,
            context={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidOperationError(MdNotesError):
    """A structural operation was called with arguments it cannot honor.

    Used for programmatic misuse, such as reordering ids that do not form
    one sibling group or moving a block under its own descendant.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(
            message,
            recoverable=False,
            context={"operation": operation, "reason": reason},
        )
        self.operation = operation


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(MdNotesError):
    """Database operation failed."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        table: str | None = None,
        recoverable: bool = False,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if operation:
            context["operation"] = operation
        if table:
            context["table"] = table
        super().__init__(message, recoverable=recoverable, context=context)


class StorageUnavailableError(DatabaseError):
    """The database could not be opened, read or written.

    Always surfaced to the caller; the engine never retries on its own.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(
            message,
            operation=operation,
            recoverable=True,
            context={"path": _truncate(path, 200) if path else None},
        )


class IntegrityError(DatabaseError):
    """Database integrity constraint violated."""

    def __init__(
        self,
        message: str,
        *,
        constraint: str | None = None,
        table: str | None = None,
    ) -> None:
        super().__init__(
            message,
            operation="constraint_check",
            table=table,
            recoverable=False,
            context={"constraint": constraint},
        )


# =============================================================================
# Helpers
# =============================================================================


def _kind_name(error_type: type[BaseException]) -> str:
    """CamelCase class name to snake_case kind, minus the Error suffix."""
    name = error_type.__name__
    if name.endswith("Error"):
        name = name[: -len("Error")]
    out = []
    for i, ch in enumerate(name):
        if ch.isupper() and i > 0:
            out.append("_")
        out.append(ch.lower())
    return "".join(out) or "error"


def _truncate(value: str | None, max_len: int) -> str | None:
    """Truncate a string value for safe logging."""
    if value is None:
        return None
    if len(value) <= max_len:
        return value
    return value[:max_len] + "..."


# =============================================================================
# Error Response Helpers
# =============================================================================


@dataclass
class ErrorResponse:
    """Structured error response for the CLI and UI layers."""

    error_type: str
    message: str
    recoverable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "error": {
                "type": self.error_type,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


def error_response(exc: Exception) -> ErrorResponse:
    """Convert an exception to a structured error response."""
    if isinstance(exc, MdNotesError):
        return ErrorResponse(
            error_type=exc.kind,
            message=exc.message,
            recoverable=exc.recoverable,
            details=exc.context,
        )

    return ErrorResponse(
        error_type="internal",
        message=str(exc) if str(exc) else "An unexpected error occurred",
        recoverable=False,
    )


# =============================================================================
# CLI Exit Code Mapping
# =============================================================================


# Distinct exit codes so scripts can tell "retry later" from "bad input".
EXIT_CODES: dict[type[MdNotesError], int] = {
    ValidationError: 2,
    MalformedImportError: 3,
    NotFoundError: 4,
    InvalidOperationError: 5,
    DatabaseError: 10,
    IntegrityError: 11,
    StorageUnavailableError: 12,
}


def get_exit_code(exc: MdNotesError) -> int:
    """Get the CLI exit code for a domain error."""
    if type(exc) in EXIT_CODES:
        return EXIT_CODES[type(exc)]
    for error_type, code in EXIT_CODES.items():
        if isinstance(exc, error_type):
            return code
    return 1
