"""Shared API request/response models.

Domain models (Order, Payment, ...) live in ordering.models; this module only
holds HTTP-layer concerns such as validation error formatting.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ordering.models.errors import ErrorCode, ErrorResponse

__all__ = [
    "ErrorCode",
    "ErrorResponse",
    "ValidationErrorDetail",
    "ValidationErrorResponse",
    "format_validation_errors",
]


class ValidationErrorDetail(BaseModel):
    """Detail of a single validation error."""

    model_config = ConfigDict(strict=True)

    loc: list[str | int] = Field(
        ...,
        description="Path to the field that failed validation",
        examples=[["body", "items", 0, "quantity"]],
    )
    msg: str = Field(..., examples=["Input should be greater than or equal to 1"])
    type: str = Field(..., examples=["greater_than_equal"])


class ValidationErrorResponse(BaseModel):
    """Request validation failure in the standard error envelope."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: str = ErrorCode.VALIDATION_FAILED.value
    message: str = "Request validation failed"
    recovery: str = "Correct the request and try again"
    details: list[ValidationErrorDetail] = Field(default_factory=list)


def format_validation_errors(errors: list[dict[str, Any]]) -> ValidationErrorResponse:
    """Convert Pydantic validation errors to ValidationErrorResponse."""
    details = [
        ValidationErrorDetail(
            loc=[loc if isinstance(loc, int) else str(loc) for loc in error.get("loc", [])],
            msg=str(error.get("msg", "")),
            type=str(error.get("type", "")),
        )
        for error in errors
    ]
    return ValidationErrorResponse(details=details)
