"""Exception hierarchy for the emulated data service.

Engine-level failures are never raised by ``execute()``; they travel in the
``error`` slot of the result envelope, mirroring how the hosted service
reports PostgREST errors. Repositories and composition-time checks raise.

The ``code`` values follow the PostgREST/PostgreSQL codes application code
already branches on (``PGRST116`` for single-row cardinality, ``42P01`` for an
unknown relation).
"""

from __future__ import annotations


class ComplianceEmulatorError(Exception):
    """Base class for every error raised by this package."""


# ------------------------------------------------------------------ #
# Engine errors
# ------------------------------------------------------------------ #


class QueryError(ComplianceEmulatorError):
    """A query could not be resolved."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.hint = hint

    def to_dict(self) -> dict[str, str | None]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "hint": self.hint,
        }


class NotFoundError(QueryError):
    """Strict single-row resolution matched nothing, or a lookup by id failed."""

    def __init__(self, resource: str, record_id: str | None = None) -> None:
        message = (
            f"{resource} with id '{record_id}' not found"
            if record_id
            else f"{resource} not found"
        )
        super().__init__(
            message,
            code="PGRST116",
            details="The result contains 0 rows",
        )
        self.resource = resource
        self.record_id = record_id


class MultipleRowsError(QueryError):
    """Strict single-row resolution matched more than one row."""

    def __init__(self, table: str, row_count: int) -> None:
        super().__init__(
            f"Expected a single row from '{table}', got {row_count}",
            code="PGRST116",
            details=f"The result contains {row_count} rows",
        )
        self.row_count = row_count


class ValidationError(QueryError, ValueError):
    """Malformed query composition (bad clause, bad pagination, unsafe delete)."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message, code="PGRST100")
        self.field = field


class UnknownTableError(QueryError):
    """A logical collection name did not route to any known collection."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"relation '{name}' does not exist",
            code="42P01",
        )
        self.name = name


class ImmutableTableError(QueryError):
    """Update or delete attempted against an append-only collection."""

    def __init__(self, table: str, operation: str) -> None:
        super().__init__(
            f"'{table}' is append-only; {operation} is not permitted",
            code="42501",
        )
        self.table = table
        self.operation = operation


# ------------------------------------------------------------------ #
# Workflow errors
# ------------------------------------------------------------------ #


class WorkflowError(ComplianceEmulatorError):
    """A lifecycle rule of the compliance workflow was not satisfied."""


class RetryExhaustedError(WorkflowError):
    """An action task has used all of its execution attempts."""

    def __init__(self, task_id: str, attempt_count: int, max_attempts: int) -> None:
        super().__init__(
            f"Action task '{task_id}' exhausted its attempts "
            f"({attempt_count}/{max_attempts})"
        )
        self.task_id = task_id
        self.attempt_count = attempt_count
        self.max_attempts = max_attempts


class InvariantViolationError(WorkflowError):
    """A requested change would break an entity invariant."""
