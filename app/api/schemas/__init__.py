"""API schemas package."""

from app.api.schemas.identify import (
    ConsolidatedContactResponse,
    ErrorResponse,
    IdentifyRequest,
    IdentifyResponse,
)

__all__ = [
    "ConsolidatedContactResponse",
    "ErrorResponse",
    "IdentifyRequest",
    "IdentifyResponse",
]
