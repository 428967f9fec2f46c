"""Contacts API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_identity_service
from app.api.schemas.identify import IdentifyResponse
from app.domain.services.identity_service import IdentityReconciliationService

router = APIRouter()


@router.get("/{contact_id}", response_model=IdentifyResponse)
async def get_contact(
    contact_id: int,
    service: Annotated[IdentityReconciliationService, Depends(get_identity_service)],
) -> IdentifyResponse:
    """Get the consolidated identity a contact belongs to."""
    consolidated = await service.get_consolidated_contact(contact_id)
    if consolidated is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Contact not found",
        )
    return IdentifyResponse.from_consolidated(consolidated)
