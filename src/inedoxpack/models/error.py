"""Structured error model for inedoxpack."""

from typing import Any

from pydantic import BaseModel, Field


class StructuredError(BaseModel):
    """Structured error response format.

    Every error raised by the packaging pipeline carries one of these so the
    CLI can report it on a single line and choose an exit code.
    """

    code: str = Field(
        ...,
        pattern=r"^[A-Z][A-Z0-9_]*$",
        description="Error code (e.g., DISCOVERY_ERROR)",
        examples=[
            "MALFORMED_PLUGIN",
            "DISCOVERY_ERROR",
            "RECONCILIATION_ERROR",
            "ASSEMBLY_ERROR",
            "BUILD_ERROR",
        ],
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
    )

    remediation: str = Field(
        ...,
        description="Suggested fix or next step",
    )

    context: dict[str, Any] | None = Field(
        default=None,
        description="Additional context (path, field, framework, etc.)",
    )

    model_config = {"extra": "forbid"}


class ErrorCode:
    """Standard error codes for inedoxpack."""

    MALFORMED_PLUGIN = "MALFORMED_PLUGIN"
    DISCOVERY_ERROR = "DISCOVERY_ERROR"
    RECONCILIATION_ERROR = "RECONCILIATION_ERROR"
    ASSEMBLY_ERROR = "ASSEMBLY_ERROR"
    BUILD_ERROR = "BUILD_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
