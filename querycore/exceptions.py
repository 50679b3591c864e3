from typing import Any, Optional

__all__ = (
    "DatabaseConnectionError",
    "ExtraParameterError",
    "ForeignKeyViolationError",
    "ImproperConfigurationError",
    "IntegrityError",
    "InvalidFilterError",
    "InvalidPaginationError",
    "InvalidSortColumn",
    "MissingDependencyError",
    "MissingParameterError",
    "NotNullViolationError",
    "PageQueryError",
    "ParameterError",
    "QueryCoreError",
    "QueryError",
    "QueryTimeoutError",
    "SQLParsingError",
    "TranslationError",
    "UniqueViolationError",
)


class QueryCoreError(Exception):
    """Base exception class from which all querycore exceptions inherit."""

    detail: str

    def __init__(self, *args: Any, detail: str = "") -> None:
        """Initialize ``QueryCoreError``.

        Args:
            *args: args are converted to :class:`str` before passing to :class:`Exception`
            detail: detail of the exception.
        """
        str_args = [str(arg) for arg in args if arg]
        if not detail:
            if str_args:
                detail, *str_args = str_args
            elif hasattr(self, "detail"):
                detail = self.detail
        self.detail = detail
        super().__init__(*str_args)

    def __repr__(self) -> str:
        if self.detail:
            return f"{self.__class__.__name__} - {self.detail}"
        return self.__class__.__name__

    def __str__(self) -> str:
        return " ".join((*self.args, self.detail)).strip()


class MissingDependencyError(QueryCoreError, ImportError):
    """Missing optional dependency.

    This exception is raised only when a module depends on a dependency that has not been installed.
    """

    def __init__(self, package: str, install_package: Optional[str] = None) -> None:
        super().__init__(
            f"Package {package!r} is not installed but required. You can install it by running "
            f"'pip install querycore[{install_package or package}]' to install querycore with the required extra "
            f"or 'pip install {install_package or package}' to install the package separately",
        )


class ImproperConfigurationError(QueryCoreError):
    """Improper Configuration error.

    Raised when a database URL, dialect name or adapter configuration cannot be used.
    """


class TranslationError(QueryCoreError):
    """A query template could not be translated for the target dialect."""

    sql: Optional[str]

    def __init__(self, message: str, sql: Optional[str] = None) -> None:
        detail_message = message
        if sql:
            detail_message = f"{message}\nSQL: {sql}"
        super().__init__(detail=detail_message)
        self.sql = sql


# -- SQL Parameter Errors --
class ParameterError(QueryCoreError):
    """Base class for parameter-related errors."""

    sql: Optional[str]

    def __init__(self, message: str, sql: Optional[str] = None) -> None:
        """Initialize with optional SQL context."""
        detail_message = message
        if sql:
            detail_message = f"{message}\nSQL: {sql}"
        super().__init__(detail=detail_message)
        self.sql = sql


class MissingParameterError(ParameterError):
    """Raised when fewer parameters than placeholders are supplied."""


class ExtraParameterError(ParameterError):
    """Raised when more parameters than placeholders are supplied."""


# -- SQL Query Errors --
class QueryError(QueryCoreError):
    """Base class for backend execution errors.

    ``detail`` keeps the backend message; the driver exception is chained as ``__cause__``.
    """


class QueryTimeoutError(QueryError):
    """The backend did not answer within the requested timeout."""


class DatabaseConnectionError(QueryError):
    """The backend could not be reached or dropped the connection."""


class SQLParsingError(QueryError):
    """The backend rejected the statement text."""


class IntegrityError(QueryError):
    """Data integrity error."""


class UniqueViolationError(IntegrityError):
    """A unique constraint was violated."""


class ForeignKeyViolationError(IntegrityError):
    """A foreign key constraint was violated."""


class NotNullViolationError(IntegrityError):
    """A not-null constraint was violated."""


class PageQueryError(QueryError):
    """One or both halves of a paginated read failed.

    ``failures`` maps ``"data"`` and/or ``"count"`` to the exception raised by that half.
    """

    failures: "dict[str, BaseException]"

    def __init__(self, failures: "dict[str, BaseException]") -> None:
        parts = ", ".join(f"{name} query failed: {exc}" for name, exc in failures.items())
        super().__init__(detail=f"Paginated query failed ({parts})")
        self.failures = failures


# -- Caller input errors --
class InvalidSortColumn(QueryCoreError, ValueError):
    """A sort column outside the allow-list was requested."""

    column: str

    def __init__(self, column: str, allowed: "Optional[frozenset[str]]" = None) -> None:
        message = f"Invalid sort column: {column!r}"
        if allowed:
            message = f"{message} (allowed: {', '.join(sorted(allowed))})"
        super().__init__(detail=message)
        self.column = column


class InvalidPaginationError(QueryCoreError, ValueError):
    """Pagination arguments were out of range or the base query cannot be paginated."""


class InvalidFilterError(QueryCoreError, ValueError):
    """Search filter values could not be understood."""
