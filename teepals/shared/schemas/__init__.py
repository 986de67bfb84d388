"""Shared schemas module."""

from teepals.shared.schemas.base import (
    BaseSchema,
    ErrorDetail,
    PaginatedResponse,
)

__all__ = ["BaseSchema", "ErrorDetail", "PaginatedResponse"]
