"""FastAPI dependencies for the identity engine."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.identifier_locks import identifier_locks
from app.domain.services.identity_service import IdentityReconciliationService
from app.persistence.database import get_db
from app.persistence.repositories.contact_repository import ContactRepository
from app.settings import settings


async def get_identity_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> IdentityReconciliationService:
    """Build the reconciliation service over the request's session.

    Args:
        db: Database session

    Returns:
        Identity reconciliation service
    """
    return IdentityReconciliationService(
        ContactRepository(db),
        locks=identifier_locks,
        lock_timeout=settings.identity_lock_timeout_seconds,
    )
