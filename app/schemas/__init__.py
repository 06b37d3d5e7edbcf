"""
Pydantic schemas for API request/response validation
"""

from .base import (
    ErrorResponseModel,
    PaginatedResponse,
    ERROR_RESPONSES,
)

__all__ = [
    "ErrorResponseModel",
    "PaginatedResponse",
    "ERROR_RESPONSES",
]
