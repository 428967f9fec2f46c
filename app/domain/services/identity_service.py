"""Identity reconciliation service.

Each call runs four phases against the store: Lookup the candidates, Decide
what to write from that snapshot, Mutate the store, then Refold the cluster
from a fresh read. The whole sequence runs under per-identifier and
per-cluster locks and a single store transaction so overlapping requests
cannot interleave.
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator

from app.core.exceptions import InvalidIdentityRequest
from app.core.identifier_locks import (
    IdentifierLockRegistry,
    cluster_keys,
    identifier_keys,
    identifier_locks,
)
from app.domain.models.identity import (
    ConsolidatedContact,
    ContactSnapshot,
    IdentityFragment,
    LinkPrecedence,
    PrimaryMergePlan,
    SecondaryContactDecision,
)
from app.domain.services.contact_store import ContactStoreProtocol
from app.domain.services.identity_rules import (
    collect_cluster_primary_ids,
    consolidate_contacts,
    decide_new_secondary,
    format_contact_for_log,
    plan_primary_merge,
)

logger = logging.getLogger(__name__)


class IdentityReconciliationService:
    """Service for resolving an email/phone pair to a consolidated identity."""

    def __init__(
        self,
        store: ContactStoreProtocol,
        locks: IdentifierLockRegistry | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        """Initialize the reconciliation service.

        Args:
            store: Contact store the engine reads and writes
            locks: Lock registry shared by concurrent calls, defaults to the
                process-wide registry
            lock_timeout: Seconds to wait for each batch of locks, None waits forever
        """
        self.store = store
        self.locks = locks if locks is not None else identifier_locks
        self.lock_timeout = lock_timeout

    async def identify(self, fragment: IdentityFragment) -> ConsolidatedContact:
        """Resolve a request to its consolidated identity, linking new data.

        Args:
            fragment: Requested email and/or phone number

        Returns:
            Consolidated view of the cluster the request belongs to

        Raises:
            InvalidIdentityRequest: If neither email nor phone is given
            IdentityLockTimeout: If identifier or cluster locks could not be acquired
            IdentityConsistencyError: If the stored cluster has no primary
        """
        if fragment.is_empty:
            raise InvalidIdentityRequest("At least one of email or phoneNumber must be provided")

        keys = identifier_keys(fragment.email, fragment.phone_number)
        async with self.locks.hold(keys, timeout=self.lock_timeout):
            async with self.store.transaction():
                await self.store.lock_identifiers(keys)
                async with self._hold_clusters(fragment) as candidates:
                    return await self._reconcile(fragment, candidates)

    @asynccontextmanager
    async def _hold_clusters(
        self, fragment: IdentityFragment
    ) -> AsyncIterator[list[ContactSnapshot]]:
        """Lock every cluster the candidates belong to, then yield a fresh lookup.

        A request may touch a cluster without sharing an identifier with
        another request that is merging it, so clusters get their own locks.
        Locks are re-taken as one sorted batch whenever a re-read after
        locking reaches a cluster not yet held, e.g. because the cluster was
        merged into another while this request waited.
        """
        held: set[int] = set()
        while True:
            async with AsyncExitStack() as stack:
                if held:
                    keys = cluster_keys(held)
                    await stack.enter_async_context(
                        self.locks.hold(keys, timeout=self.lock_timeout)
                    )
                    await self.store.lock_identifiers(keys)

                candidates = await self.lookup(fragment)
                primary_ids = collect_cluster_primary_ids(candidates)
                if primary_ids <= held:
                    yield candidates
                    return
            held |= primary_ids

    async def _reconcile(
        self, fragment: IdentityFragment, candidates: list[ContactSnapshot]
    ) -> ConsolidatedContact:
        if not candidates:
            return await self.create_primary(fragment)

        secondary, merge = self.decide(candidates, fragment)
        await self.mutate(fragment, secondary, merge)
        return await self.refold(candidates)

    async def lookup(self, fragment: IdentityFragment) -> list[ContactSnapshot]:
        """Fetch every live contact sharing the requested email or phone."""
        return await self.store.find_matching(fragment.email, fragment.phone_number)

    async def create_primary(self, fragment: IdentityFragment) -> ConsolidatedContact:
        """Store a brand-new primary contact and return its singleton view."""
        contact = await self.store.insert_contact(
            email=fragment.email,
            phone_number=fragment.phone_number,
            link_precedence=LinkPrecedence.PRIMARY,
        )
        logger.info(
            "Created primary contact",
            extra={"outcome": "created_primary", "primary_id": contact.id},
        )
        return ConsolidatedContact(
            primary_id=contact.id,
            emails=[contact.email] if contact.email else [],
            phone_numbers=[contact.phone_number] if contact.phone_number else [],
            secondary_ids=[],
        )

    def decide(
        self, candidates: list[ContactSnapshot], fragment: IdentityFragment
    ) -> tuple[SecondaryContactDecision, PrimaryMergePlan]:
        """Derive both writes from the same candidate snapshot."""
        return (
            decide_new_secondary(candidates, fragment),
            plan_primary_merge(candidates, fragment),
        )

    async def mutate(
        self,
        fragment: IdentityFragment,
        secondary: SecondaryContactDecision,
        merge: PrimaryMergePlan,
    ) -> None:
        """Apply the decided writes: new secondary first, then the merge."""
        if secondary.needed:
            contact = await self.store.insert_contact(
                email=fragment.email,
                phone_number=fragment.phone_number,
                link_precedence=LinkPrecedence.SECONDARY,
                linked_id=secondary.primary_id,
            )
            logger.info(
                "Created secondary contact %s",
                format_contact_for_log(contact),
                extra={"outcome": "created_secondary", "primary_id": secondary.primary_id},
            )

        if merge.needed:
            await self.store.merge_clusters(merge.surviving_id, merge.losing_ids)
            logger.info(
                "Merged primary contacts",
                extra={
                    "outcome": "merged_primaries",
                    "primary_id": merge.surviving_id,
                    "demoted_ids": list(merge.losing_ids),
                },
            )

    async def refold(self, candidates: list[ContactSnapshot]) -> ConsolidatedContact:
        """Re-read every cluster the candidates touched and consolidate it.

        The re-read is required because mutate() may have inserted or
        re-linked rows since the candidate snapshot was taken.
        """
        primary_ids = collect_cluster_primary_ids(candidates)
        members = await self.store.find_cluster_members(primary_ids)
        return consolidate_contacts(members)

    async def get_consolidated_contact(self, contact_id: int) -> ConsolidatedContact | None:
        """Consolidated view of the cluster containing a stored contact.

        Args:
            contact_id: Any contact id in the cluster

        Returns:
            Consolidated contact or None if the contact does not exist
        """
        members = await self.store.find_cluster_members([contact_id])
        contact = next((c for c in members if c.id == contact_id), None)
        if contact is None:
            return None
        return await self.refold([contact])
