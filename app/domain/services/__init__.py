"""Domain services."""

from app.domain.services.contact_store import ContactStoreProtocol
from app.domain.services.identity_service import IdentityReconciliationService

__all__ = [
    "ContactStoreProtocol",
    "IdentityReconciliationService",
]
