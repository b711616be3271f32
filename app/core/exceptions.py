"""
Application error hierarchy.

Every error raised on purpose by the project derives from
BaseApplicationError. It carries a stable error code and a details dict,
which makes it suitable for ``extra=`` in log calls and for storing on job
rows as a failure record.

Exception Hierarchy:
    BaseApplicationError
    ├── ConfigurationError - registries or catalogs disagree with each other
    ├── NotFoundError - a looked-up record or component does not exist
    ├── ConflictError - the current state forbids the operation
    └── ExternalServiceError - database, broker or binary unavailable

Usage:
    from core.exceptions import ConflictError

    raise ConflictError(
        "Destination already being written",
        error_code="DESTINATION_BUSY",
        details={"dest_path": path},
    )

    try:
        ...
    except BaseApplicationError as e:
        logger.warning(e.message, extra=e.to_dict())
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Root of the application errors.

    Attributes:
        message: Text shown to operators
        error_code: Upper-case code, defaults to ``default_error_code``
        details: Context such as ids, paths or processor names
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize for logs and failure records.

        Example:
            {
                "error": "No creation processor for 'thumb'",
                "error_code": "UNRESOLVED_PROCESSOR",
                "details": {"variation": "thumb"}
            }
        """
        data: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            data["details"] = self.details
        return data

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, "
            f"error_code={self.error_code!r}, details={self.details!r})"
        )


class ConfigurationError(BaseApplicationError):
    """
    Static configuration is inconsistent.

    A deployment defect rather than a runtime condition: never retried.
    """

    default_error_code: str = "CONFIGURATION_ERROR"


class NotFoundError(BaseApplicationError):
    """A record, file or registered component could not be found."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    The operation clashes with the current state.

    Raised for unique constraint violations and transitions that are not
    allowed from the current state.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """A backing service (database, broker, ffmpeg) could not be reached."""

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
