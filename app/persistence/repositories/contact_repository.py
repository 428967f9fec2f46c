"""Contact repository."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable

from sqlalchemy import or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.models.identity import ContactSnapshot, LinkPrecedence
from app.domain.services.contact_store import ContactStoreProtocol
from app.persistence.models.contact import Contact
from app.persistence.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class ContactRepository(BaseRepository[Contact], ContactStoreProtocol):
    """Repository for Contact entities, backing the identity engine."""

    def __init__(self, session: AsyncSession):
        """Initialize contact repository."""
        super().__init__(Contact, session)

    def _live_contacts(self):
        """Select live contacts oldest first, overwriting stale identity-map rows."""
        return (
            select(Contact)
            .where(Contact.deleted_at.is_(None))
            .order_by(Contact.created_at, Contact.id)
            .execution_options(populate_existing=True)
        )

    async def _fetch_snapshots(self, stmt) -> list[ContactSnapshot]:
        result = await self.session.execute(stmt)
        return [ContactSnapshot.from_model(c) for c in result.scalars().all()]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Commit everything done in the block, or roll it all back."""
        try:
            yield
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def lock_identifiers(self, keys: Iterable[str]) -> None:
        """Take transaction-scoped advisory locks on PostgreSQL.

        Args:
            keys: Identifier or cluster keys such as 'email:a@b.c' or 'cluster:7',
                locked in sorted order
        """
        if self.session.get_bind().dialect.name != "postgresql":
            return
        for key in sorted(set(keys)):
            await self.session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key}
            )

    async def find_matching(
        self, email: str | None, phone_number: str | None
    ) -> list[ContactSnapshot]:
        """Find live contacts by email or phone, oldest first.

        Args:
            email: Optional email to search
            phone_number: Optional phone to search

        Returns:
            Matching contacts (empty if neither value is given)
        """
        conditions = []
        if email:
            conditions.append(Contact.email == email)
        if phone_number:
            conditions.append(Contact.phone_number == phone_number)
        if not conditions:
            return []

        return await self._fetch_snapshots(self._live_contacts().where(or_(*conditions)))

    async def find_cluster_members(self, primary_ids: Iterable[int]) -> list[ContactSnapshot]:
        """Find live contacts that are, or link to, one of the given primaries.

        Args:
            primary_ids: Primary contact IDs

        Returns:
            Cluster members, oldest first
        """
        ids = list(primary_ids)
        if not ids:
            return []

        stmt = self._live_contacts().where(
            or_(Contact.id.in_(ids), Contact.linked_id.in_(ids))
        )
        return await self._fetch_snapshots(stmt)

    async def insert_contact(
        self,
        email: str | None,
        phone_number: str | None,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
    ) -> ContactSnapshot:
        """Insert a contact.

        Args:
            email: Optional email
            phone_number: Optional phone number
            link_precedence: PRIMARY or SECONDARY
            linked_id: Primary contact ID, required for secondaries

        Returns:
            Snapshot of the stored contact with its assigned id
        """
        now = datetime.utcnow()
        contact = await self.create(
            email=email,
            phone_number=phone_number,
            link_precedence=LinkPrecedence(link_precedence).value,
            linked_id=linked_id,
            created_at=now,
            updated_at=now,
        )
        return ContactSnapshot.from_model(contact)

    async def update_contact(self, contact_id: int, **fields) -> None:
        """Overwrite fields on a single contact.

        Args:
            contact_id: Contact ID
            **fields: Column values to set
        """
        if "link_precedence" in fields:
            fields["link_precedence"] = LinkPrecedence(fields["link_precedence"]).value
        fields.setdefault("updated_at", datetime.utcnow())
        stmt = update(Contact).where(Contact.id == contact_id).values(**fields)
        await self.session.execute(stmt)

    async def relink_contacts(self, from_primary_id: int, to_primary_id: int) -> None:
        """Re-point every contact linked to one primary at another.

        Args:
            from_primary_id: Primary being demoted
            to_primary_id: Surviving primary
        """
        stmt = (
            update(Contact)
            .where(Contact.linked_id == from_primary_id)
            .values(linked_id=to_primary_id, updated_at=datetime.utcnow())
        )
        await self.session.execute(stmt)

    async def merge_clusters(self, surviving_id: int, losing_ids: Iterable[int]) -> None:
        """Demote the losing primaries under the surviving primary.

        Args:
            surviving_id: Primary that keeps its precedence
            losing_ids: Primaries to demote along with their secondaries
        """
        for losing_id in losing_ids:
            if losing_id == surviving_id:
                continue
            await self.update_contact(
                losing_id,
                link_precedence=LinkPrecedence.SECONDARY,
                linked_id=surviving_id,
            )
            await self.relink_contacts(losing_id, surviving_id)
            logger.debug(
                "Demoted primary contact",
                extra={"demoted_id": losing_id, "primary_id": surviving_id},
            )
