"""
Base Pydantic schemas shared by the API responses
"""

from typing import TypeVar, Generic, Optional, Any, List
from pydantic import BaseModel, Field


class ErrorResponseModel(BaseModel):
    """Error response model"""

    success: bool = Field(default=False, description="Always False for errors")
    error: str = Field(..., description="Error message")
    details: Optional[Any] = Field(default=None, description="Error details")
    code: Optional[str] = Field(default=None, description="Error code")

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Only active alerts can be acknowledged",
                "details": {"current_status": "resolved"},
                "code": "INVALID_TRANSITION"
            }
        }


T = TypeVar('T')


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated response model"""

    items: List[T] = Field(default_factory=list, description="List of items")
    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    size: int = Field(..., description="Items per page")
    pages: int = Field(..., description="Total number of pages")


# OpenAPI documentation for the error payload rendered by the exception handlers
ERROR_RESPONSES = {
    400: {"model": ErrorResponseModel, "description": "Validation error"},
    403: {"model": ErrorResponseModel, "description": "Permission denied"},
    404: {"model": ErrorResponseModel, "description": "Alert or user not found"},
    409: {"model": ErrorResponseModel, "description": "Lifecycle rule violated"},
    503: {"model": ErrorResponseModel, "description": "Store unavailable"},
}
