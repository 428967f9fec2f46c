"""Matching, merge planning and consolidation rules for identity clusters.

Everything here is a pure function over ContactSnapshot lists so the rules
can be exercised without a store.
"""

from typing import Iterable

from app.core.exceptions import IdentityConsistencyError
from app.domain.models.identity import (
    ConsolidatedContact,
    ContactSnapshot,
    IdentityFragment,
    LinkPrecedence,
    PrimaryMergePlan,
    SecondaryContactDecision,
)


def _matches_email(contact: ContactSnapshot, email: str | None) -> bool:
    return email is not None and contact.email == email


def _matches_phone(contact: ContactSnapshot, phone_number: str | None) -> bool:
    return phone_number is not None and contact.phone_number == phone_number


def oldest_first(contacts: Iterable[ContactSnapshot]) -> list[ContactSnapshot]:
    """Sort contacts by creation time, ids breaking ties."""
    return sorted(contacts, key=lambda c: c.sort_key)


def find_primary_contact_id(
    candidates: list[ContactSnapshot], reference: ContactSnapshot
) -> int:
    """Resolve the primary id that a contact belongs to.

    Args:
        candidates: Contacts returned by the candidate lookup
        reference: Contact whose primary is wanted

    Returns:
        The reference's own id if it is primary, else its linked id, else
        the first primary among the candidates, else the reference's id
    """
    if reference.is_primary:
        return reference.id
    if reference.linked_id is not None:
        return reference.linked_id

    primary = next((c for c in candidates if c.is_primary), None)
    return primary.id if primary else reference.id


def decide_new_secondary(
    candidates: list[ContactSnapshot], fragment: IdentityFragment
) -> SecondaryContactDecision:
    """Decide whether the request carries information no candidate has yet.

    Args:
        candidates: Contacts matching the request, oldest first
        fragment: Requested email/phone

    Returns:
        Decision with the primary id the new secondary should link to
    """
    if not candidates:
        return SecondaryContactDecision(needed=False)

    email, phone = fragment.email, fragment.phone_number

    # The exact pair is already on file
    if any(_matches_email(c, email) and _matches_phone(c, phone) for c in candidates):
        return SecondaryContactDecision(needed=False)

    partial_match = next(
        (c for c in candidates if _matches_email(c, email) or _matches_phone(c, phone)),
        None,
    )
    if partial_match is None:
        return SecondaryContactDecision(needed=False)

    has_new_email = email is not None and not any(c.email == email for c in candidates)
    has_new_phone = phone is not None and not any(c.phone_number == phone for c in candidates)
    if not (has_new_email or has_new_phone):
        return SecondaryContactDecision(needed=False)

    return SecondaryContactDecision(
        needed=True,
        primary_id=find_primary_contact_id(candidates, partial_match),
    )


def plan_primary_merge(
    candidates: list[ContactSnapshot], fragment: IdentityFragment
) -> PrimaryMergePlan:
    """Work out which primaries to demote when a request bridges clusters.

    A merge happens only when the requested email and the requested phone
    match two different primaries. The oldest primary among all candidate
    primaries survives and every other candidate primary is demoted.
    """
    primaries = oldest_first(c for c in candidates if c.is_primary)
    if len(primaries) < 2:
        return PrimaryMergePlan()

    email_match = next((c for c in primaries if _matches_email(c, fragment.email)), None)
    phone_match = next(
        (c for c in primaries if _matches_phone(c, fragment.phone_number)), None
    )
    if email_match is None or phone_match is None or email_match.id == phone_match.id:
        return PrimaryMergePlan()

    surviving = primaries[0]
    return PrimaryMergePlan(
        surviving_id=surviving.id,
        losing_ids=tuple(c.id for c in primaries[1:]),
    )


def collect_cluster_primary_ids(candidates: Iterable[ContactSnapshot]) -> set[int]:
    """Collect the primary id of every cluster a candidate belongs to."""
    primary_ids: set[int] = set()
    for contact in candidates:
        if contact.is_primary:
            primary_ids.add(contact.id)
        elif contact.linked_id is not None:
            primary_ids.add(contact.linked_id)
    return primary_ids


def _unique_in_order(values: Iterable[str | None]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def consolidate_contacts(contacts: list[ContactSnapshot]) -> ConsolidatedContact:
    """Fold a cluster's contacts into the consolidated view.

    Args:
        contacts: Every stored member of the cluster

    Returns:
        Primary id, unique emails and phones (primary's first, then in
        creation order), and secondary ids in creation order

    Raises:
        IdentityConsistencyError: If contacts is empty or has no primary
    """
    if not contacts:
        raise IdentityConsistencyError("No contacts to consolidate")

    primaries = oldest_first(c for c in contacts if c.is_primary)
    if not primaries:
        raise IdentityConsistencyError("No primary contact found")
    primary = primaries[0]

    secondaries = oldest_first(
        c for c in contacts
        if c.link_precedence == LinkPrecedence.SECONDARY and c.linked_id == primary.id
    )
    members = [primary, *secondaries]

    return ConsolidatedContact(
        primary_id=primary.id,
        emails=_unique_in_order(c.email for c in members),
        phone_numbers=_unique_in_order(c.phone_number for c in members),
        secondary_ids=[c.id for c in secondaries],
    )


def validate_contact_data(contact: ContactSnapshot) -> bool:
    """Check a contact against the stored-row invariants."""
    if not contact.email and not contact.phone_number:
        return False
    if contact.link_precedence == LinkPrecedence.SECONDARY and contact.linked_id is None:
        return False
    if contact.is_primary and contact.linked_id is not None:
        return False
    return True


def are_contacts_related(first: ContactSnapshot, second: ContactSnapshot) -> bool:
    """Two contacts are related when they share an email or a phone number."""
    if first.email and first.email == second.email:
        return True
    if first.phone_number and first.phone_number == second.phone_number:
        return True
    return False


def get_contact_chain(contacts: list[ContactSnapshot], primary_id: int) -> list[int]:
    """Return the primary id followed by its secondaries' ids, oldest first."""
    linked = oldest_first(c for c in contacts if c.linked_id == primary_id)
    return [primary_id, *(c.id for c in linked)]


def format_contact_for_log(contact: ContactSnapshot) -> str:
    """Render a contact compactly for log lines."""
    return (
        f"Contact(id={contact.id}, email={contact.email or 'null'}, "
        f"phone={contact.phone_number or 'null'}, "
        f"precedence={contact.link_precedence.value}, "
        f"linkedId={contact.linked_id if contact.linked_id is not None else 'null'})"
    )
