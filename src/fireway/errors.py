"""
Structured error types for fireway.

Every condition that stops a migration run surfaces to the caller as a
single ``FirewayError`` subclass. Errors carry a category for routing and
an ``ErrorContext`` with the migration file, version and project involved,
so the CLI and log aggregation can report them without string parsing.

Manifesto:
    - **Typed Error Hierarchy:** One class per abort reason
    - **Never Retried:** The engine stops at the first error; the operator decides
    - **Rich Context:** Errors carry the file/version that caused them
    - **Error Chaining:** The original exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       FirewayError                               │
        │  (category, context, cause)                                      │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError          ValidationError        AuthError           │
        │  (CONFIG)             (VALIDATION)           (AUTH)              │
        │       │                    │                     │               │
        │  MigrationDirectory   MigrationFilename     CredentialError      │
        │  PluginLoadError      DuplicateVersion                           │
        │                                                                  │
        │  HistoryError         MigrationError         InterceptionError   │
        │  (HISTORY)            (MIGRATION)            (INTERNAL)          │
        │       │                    │                                     │
        │  CorruptedHistory     MigrationLoadError                         │
        │  UnreadableHistory    MigrationFailedError                       │
        └─────────────────────────────────────────────────────────────────┘

Abort-before-attempt errors (no history record is written):
    MigrationDirectoryError, MigrationFilenameError, DuplicateVersionError,
    CredentialError, CorruptedHistoryError, UnreadableHistoryError,
    MigrationLoadError, PluginLoadError

Migration failure (a ``success=False`` record is written first):
    MigrationFailedError

Tags:
    errors, exceptions, error-hierarchy, fireway, migrations
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        CONFIG: Missing directory, bad settings, plugin that will not load
        VALIDATION: Malformed migration filenames, duplicate versions
        AUTH: Credential acquisition and client construction
        HISTORY: History collection in an unusable state
        MIGRATION: A migration script failed to load or run
        INTERNAL: Bugs, unexpected state
    """

    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    AUTH = "AUTH"
    HISTORY = "HISTORY"
    MIGRATION = "MIGRATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Attributes:
        project_id: Target project of the run
        filename: Migration filename involved
        version: Migration version involved
        path: Filesystem path involved
        metadata: Additional key-value pairs
    """

    project_id: str | None = None
    filename: str | None = None
    version: str | None = None
    path: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["project_id", "filename", "version", "path"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FirewayError(Exception):
    """
    Base exception for all fireway errors.

    Subclasses set ``default_category``. None of the errors are retryable:
    a migration run either completes or stops and waits for an operator.

    Examples:
        >>> error = FirewayError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = MigrationLoadError("Cannot import").with_context(
        ...     filename="v1__init.py", version="1.0.0"
        ... )
        >>> error.context.filename
        'v1__init.py'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FirewayError:
        """
        Add context to this error (fluent API).

        Usage:
            raise MigrationLoadError("Failed").with_context(
                filename="v2__users.py", version="2.0.0"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(FirewayError):
    """Configuration error. Must be fixed before a run can start."""

    default_category = ErrorCategory.CONFIG


class MigrationDirectoryError(ConfigError):
    """The migrations directory does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No directory at {path}", context=ErrorContext(path=path))


class PluginLoadError(ConfigError):
    """The module requested for preloading could not be executed."""

    def __init__(self, target: str, cause: BaseException | None = None):
        self.target = target
        super().__init__(
            f"Could not load plugin '{target}'",
            context=ErrorContext(path=target),
            cause=cause,
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(FirewayError):
    """The migration set is malformed."""

    default_category = ErrorCategory.VALIDATION


class MigrationFilenameError(ValidationError):
    """A file has a version but no description."""

    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(
            f"This filename doesn't match the required format: {filename}",
            context=ErrorContext(filename=filename),
        )


class DuplicateVersionError(ValidationError):
    """Two files coerce to the same version."""

    def __init__(self, filename: str, existing: str, version: str):
        self.filename = filename
        self.existing = existing
        self.version = version
        super().__init__(
            f"Both {filename} and {existing} have the same version",
            context=ErrorContext(filename=filename, version=version),
        )


# =============================================================================
# AUTHENTICATION ERRORS
# =============================================================================


class AuthError(FirewayError):
    """Authentication or client construction error."""

    default_category = ErrorCategory.AUTH


class CredentialError(AuthError):
    """Credentials or backend clients could not be acquired."""

    pass


# =============================================================================
# HISTORY ERRORS
# =============================================================================


class HistoryError(FirewayError):
    """History collection error."""

    default_category = ErrorCategory.HISTORY


class CorruptedHistoryError(HistoryError):
    """The latest history record is marked as failed."""

    def __init__(self, version: str, script: str):
        self.version = version
        self.script = script
        super().__init__(
            f"Migration to version {version} using {script} failed! "
            "Please restore backups and roll back database and code!",
            context=ErrorContext(filename=script, version=version),
        )


class UnreadableHistoryError(HistoryError):
    """The latest history record has a version that cannot be compared."""

    def __init__(self, version: str, script: str):
        self.version = version
        self.script = script
        super().__init__(
            f"Latest history record {script} has an unreadable version {version!r}",
            context=ErrorContext(filename=script, version=version),
        )


# =============================================================================
# MIGRATION ERRORS
# =============================================================================


class MigrationError(FirewayError):
    """A migration script failed."""

    default_category = ErrorCategory.MIGRATION


class MigrationLoadError(MigrationError):
    """A migration module could not be evaluated or has no entry point."""

    pass


class MigrationFailedError(MigrationError):
    """A migration ran and failed; its failure has been recorded."""

    def __init__(self, message: str = "Stopped at first failure", **kwargs: Any):
        super().__init__(message, **kwargs)


class InterceptionError(FirewayError):
    """The write interceptor could not be set up for a run."""

    pass


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FirewayError",
    "ConfigError",
    "MigrationDirectoryError",
    "PluginLoadError",
    "ValidationError",
    "MigrationFilenameError",
    "DuplicateVersionError",
    "AuthError",
    "CredentialError",
    "HistoryError",
    "CorruptedHistoryError",
    "UnreadableHistoryError",
    "MigrationError",
    "MigrationLoadError",
    "MigrationFailedError",
    "InterceptionError",
]
