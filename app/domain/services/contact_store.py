"""Storage interface required by the identity reconciliation engine."""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Iterable

from app.domain.models.identity import ContactSnapshot, LinkPrecedence


class ContactStoreProtocol(ABC):
    """Protocol for contact store implementations.

    Every read excludes soft-deleted contacts and returns contacts oldest
    first (created_at ascending, id ascending on ties).
    """

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """Open a unit of work that commits on success and rolls back on error."""

    @abstractmethod
    async def lock_identifiers(self, keys: Iterable[str]) -> None:
        """Serialize against other writers using the same identifier or cluster keys.

        Implementations without a cross-process locking primitive may treat
        this as a no-op. Must be called inside transaction().
        """

    @abstractmethod
    async def find_matching(
        self, email: str | None, phone_number: str | None
    ) -> list[ContactSnapshot]:
        """Find contacts whose email equals email OR whose phone equals phone_number.

        Args:
            email: Optional email to match
            phone_number: Optional phone number to match

        Returns:
            Matching contacts, oldest first. Empty if neither value is given.
        """

    @abstractmethod
    async def find_cluster_members(
        self, primary_ids: Iterable[int]
    ) -> list[ContactSnapshot]:
        """Find contacts whose id, or whose linked_id, is in primary_ids."""

    @abstractmethod
    async def insert_contact(
        self,
        email: str | None,
        phone_number: str | None,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
    ) -> ContactSnapshot:
        """Insert a contact and return it with its assigned id and timestamp."""

    @abstractmethod
    async def update_contact(self, contact_id: int, **fields) -> None:
        """Overwrite fields on a single contact."""

    @abstractmethod
    async def relink_contacts(self, from_primary_id: int, to_primary_id: int) -> None:
        """Point every contact linked to from_primary_id at to_primary_id."""

    @abstractmethod
    async def merge_clusters(self, surviving_id: int, losing_ids: Iterable[int]) -> None:
        """Fold the losing primaries' clusters into the surviving primary.

        Each losing primary becomes a secondary of surviving_id and every
        contact linked to it is re-pointed at surviving_id, so no contact is
        left two hops away from its primary. Performed as one unit.
        """
