"""Repository implementations."""

from app.persistence.repositories.base import BaseRepository
from app.persistence.repositories.contact_repository import ContactRepository

__all__ = [
    "BaseRepository",
    "ContactRepository",
]
