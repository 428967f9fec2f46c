"""Database models."""

from app.persistence.models.contact import Contact

__all__ = [
    "Contact",
]
