"""Value types passed between the identity reconciliation phases."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class LinkPrecedence(str, Enum):
    """Whether a contact anchors its cluster or hangs off another contact."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class ContactSnapshot:
    """Read-only copy of a stored contact row."""

    id: int
    email: str | None
    phone_number: str | None
    link_precedence: LinkPrecedence
    linked_id: int | None
    created_at: datetime
    deleted_at: datetime | None = None

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def sort_key(self) -> tuple[datetime, int]:
        """Oldest-first ordering; ids break timestamp ties."""
        return (self.created_at, self.id)

    @classmethod
    def from_model(cls, contact: Any) -> "ContactSnapshot":
        """Build a snapshot from an ORM row or any object with the same attributes."""
        return cls(
            id=contact.id,
            email=contact.email,
            phone_number=contact.phone_number,
            link_precedence=LinkPrecedence(contact.link_precedence),
            linked_id=contact.linked_id,
            created_at=contact.created_at,
            deleted_at=contact.deleted_at,
        )


@dataclass(frozen=True)
class IdentityFragment:
    """The (email, phone) pair submitted by a caller.

    Blank strings are treated the same as missing values.
    """

    email: str | None = None
    phone_number: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "email", self.email or None)
        object.__setattr__(self, "phone_number", self.phone_number or None)

    @property
    def is_empty(self) -> bool:
        return self.email is None and self.phone_number is None


@dataclass(frozen=True)
class SecondaryContactDecision:
    """Outcome of deciding whether a request adds a new secondary contact."""

    needed: bool
    primary_id: int | None = None


@dataclass(frozen=True)
class PrimaryMergePlan:
    """Primaries to demote under the surviving (oldest) primary."""

    surviving_id: int | None = None
    losing_ids: tuple[int, ...] = ()

    @property
    def needed(self) -> bool:
        return self.surviving_id is not None and bool(self.losing_ids)


@dataclass(frozen=True)
class ConsolidatedContact:
    """Externally visible view of one identity cluster."""

    primary_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_ids: list[int] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """Render using the public API's field names."""
        return {
            "primaryContatctId": self.primary_id,
            "emails": list(self.emails),
            "phoneNumbers": list(self.phone_numbers),
            "secondaryContactIds": list(self.secondary_ids),
        }
