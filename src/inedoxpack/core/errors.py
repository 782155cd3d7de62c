"""Structured error handling for inedoxpack."""

import sys
from typing import Any, NoReturn

from inedoxpack.models.error import ErrorCode, StructuredError

EXIT_SUCCESS = 0
EXIT_USAGE = 1
EXIT_INVALID_ARGS = 2
EXIT_DISCOVERY_ERROR = 3
EXIT_MALFORMED_PLUGIN = 4
EXIT_RECONCILIATION_ERROR = 5
EXIT_ASSEMBLY_ERROR = 6
EXIT_BUILD_ERROR = 7
EXIT_INTERNAL_ERROR = 10


class InedoxpackError(Exception):
    """Base exception for inedoxpack errors.

    Wraps a StructuredError for consistent error handling.
    """

    exit_code: int = EXIT_INTERNAL_ERROR

    def __init__(
        self,
        code: str,
        message: str,
        remediation: str,
        context: dict[str, Any] | None = None,
    ):
        self.error = StructuredError(
            code=code,
            message=message,
            remediation=remediation,
            context=context,
        )
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.error.message

    def log_fields(self) -> dict[str, Any]:
        """Structured fields attached to the error's log entry."""
        fields = {"code": self.error.code, "remediation": self.error.remediation}
        fields.update(self.error.context or {})
        return fields


class MalformedPluginError(InedoxpackError):
    """Assembly references Inedo.SDK but its metadata can't be used."""

    exit_code = EXIT_MALFORMED_PLUGIN

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            code=ErrorCode.MALFORMED_PLUGIN,
            message=message,
            remediation="Make sure the assembly targets a supported framework and was built with the Inedo SDK",
            context={"path": path} if path else None,
        )


class DiscoveryError(InedoxpackError):
    """Extension assemblies could not be located."""

    exit_code = EXIT_DISCOVERY_ERROR

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            code=ErrorCode.DISCOVERY_ERROR,
            message=message,
            remediation="Check the source path, or use --name to select the extension assembly",
            context={"path": path} if path else None,
        )


class ReconciliationError(InedoxpackError):
    """Builds of a multitargeted extension disagree."""

    exit_code = EXIT_RECONCILIATION_ERROR

    def __init__(self, message: str, field: str | None = None):
        super().__init__(
            code=ErrorCode.RECONCILIATION_ERROR,
            message=message,
            remediation="Build every target framework from the same project and version",
            context={"field": field} if field else None,
        )


class AssemblyError(InedoxpackError):
    """The package archive could not be written."""

    exit_code = EXIT_ASSEMBLY_ERROR

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            code=ErrorCode.ASSEMBLY_ERROR,
            message=message,
            remediation="Check the output path and package arguments",
            context={"path": path} if path else None,
        )


class CollaboratorError(InedoxpackError):
    """The external dotnet build failed."""

    exit_code = EXIT_BUILD_ERROR

    def __init__(self, message: str, framework: str | None = None):
        super().__init__(
            code=ErrorCode.BUILD_ERROR,
            message=message,
            remediation="Run dotnet publish manually to see the full build output",
            context={"framework": framework} if framework else None,
        )


def handle_error(error: InedoxpackError | Exception) -> NoReturn:
    """Report an error on a single stderr line and exit.

    Args:
        error: The error to handle
    """
    from inedoxpack.core.logging import error as log_error

    if isinstance(error, InedoxpackError):
        log_error(error.message, **error.log_fields())
        sys.exit(error.exit_code)

    log_error(str(error), code=ErrorCode.INTERNAL_ERROR, type=type(error).__name__)
    sys.exit(EXIT_INTERNAL_ERROR)
