"""Identify API endpoint."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.api.deps import get_identity_service
from app.api.schemas.identify import ErrorResponse, IdentifyRequest, IdentifyResponse
from app.core.exceptions import IdentityLockTimeout, InvalidIdentityRequest
from app.domain.services.identity_service import IdentityReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/identify",
    response_model=IdentifyResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def identify(
    request: IdentifyRequest,
    service: Annotated[IdentityReconciliationService, Depends(get_identity_service)],
):
    """Resolve an email and/or phone number to the consolidated contact."""
    try:
        consolidated = await service.identify(request.to_fragment())
    except InvalidIdentityRequest as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(e)},
        )
    except IdentityLockTimeout as e:
        logger.warning("Identify request timed out on locks", extra={"lock_keys": e.keys})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Service busy, retry later"},
        )

    return IdentifyResponse.from_consolidated(consolidated)
