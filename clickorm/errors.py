"""Exceptions raised by clickorm."""


class ClickormError(Exception):
    """Base class for every error raised by clickorm itself."""


class CompilationError(ClickormError, ValueError):
    """A query could not be compiled to SQL.

    Raised for a missing root table, a SELECT alias that resolves to no column,
    or an undefined value inside an expression. Never cached.
    """


class RelationResolutionError(ClickormError, KeyError):
    """A relation name does not match any relation declared on the table."""

    def __str__(self) -> str:
        # KeyError wraps its message in quotes; keep it readable
        return str(self.args[0]) if self.args else ""


class MutationWaitTimeout(ClickormError, TimeoutError):
    """Polling for a mutation exceeded its timeout.

    The remote mutation is left untouched and may still complete.
    """


class MutationFailed(ClickormError, RuntimeError):
    """The server reported a failure reason for an awaited mutation."""


__all__ = [
    "ClickormError",
    "CompilationError",
    "RelationResolutionError",
    "MutationWaitTimeout",
    "MutationFailed",
]
