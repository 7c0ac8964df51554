"""
Identity reconciliation: resolve a submitted email/phone to one primary contact.

A submission is matched against the cluster of contacts that share an email
or phone number with it (transitively). The oldest primary in the cluster
wins, every other primary is demoted under it, and a new secondary is
recorded only when the submission carries an email or phone the cluster has
not seen yet.
"""
import logging
from typing import List, Optional

import contact_store
from db_models import Contact, ContactResponse, FinalResponse
from db_setup import transaction
from errors import ValidationError

logger = logging.getLogger(__name__)


def pick_canonical(cluster: List[Contact]) -> Contact:
    primaries = [c for c in cluster if c.is_primary]
    if not primaries:
        fallback = min(cluster, key=lambda c: c.age_key)
        logger.warning(
            f"Cluster of {len(cluster)} contacts has no primary; "
            f"using oldest contact {fallback.id} as canonical"
        )
        return fallback
    return min(primaries, key=lambda c: c.age_key)


def merge_cluster(conn, canonical: Contact, cluster: List[Contact]) -> Contact:
    """
    Collapse every other primary in the cluster under canonical.

    Secondaries found linked to something other than canonical or a demoted
    primary are relinked as well. Returns the canonical contact as stored
    after the merge. Running it on a consistent cluster changes nothing.
    """
    if not canonical.is_primary:
        canonical = contact_store.update_to_primary(conn, canonical.id)

    demoted = {c.id for c in cluster if c.is_primary and c.id != canonical.id}
    stray = {
        c.id for c in cluster
        if not c.is_primary and c.id != canonical.id
        and c.linkedId != canonical.id and c.linkedId not in demoted
    }
    if stray:
        logger.warning(
            f"Relinking contacts {sorted(stray)} to primary {canonical.id}: "
            f"they were linked outside the cluster's primary"
        )
    if not demoted and not stray:
        return canonical

    changed = contact_store.update_to_secondary(conn, demoted | stray, canonical.id)
    if demoted:
        logger.info(f"Merged primaries {sorted(demoted)} into {canonical.id} ({changed} rows relinked)")
    return canonical


def is_novel(members: List[Contact], email: Optional[str], phone: Optional[str]) -> bool:
    if email and all(c.email != email for c in members):
        return True
    if phone and all(c.phoneNumber != phone for c in members):
        return True
    return False


def format_identity(primary: Contact, secondaries: List[Contact]) -> FinalResponse:
    emails = []
    phone_numbers = []

    for contact in [primary] + sorted(secondaries, key=lambda c: c.age_key):
        if contact.email and contact.email not in emails:
            emails.append(contact.email)
        if contact.phoneNumber and contact.phoneNumber not in phone_numbers:
            phone_numbers.append(contact.phoneNumber)

    return FinalResponse(
        contact=ContactResponse(
            primaryContactId=primary.id,
            emails=emails,
            phoneNumbers=phone_numbers,
            secondaryContactIds=[c.id for c in sorted(secondaries, key=lambda c: c.age_key)]
        )
    )


def _present(value: Optional[str]) -> Optional[str]:
    """Blank and whitespace-only values count as absent."""
    if value is None or not value.strip():
        return None
    return value


def identify(email: Optional[str] = None, phone: Optional[str] = None) -> FinalResponse:
    """
    Resolve email/phone to its identity, recording new information.

    The whole read-merge-write sequence runs in one transaction: it either
    completes or leaves the store untouched.
    """
    email = _present(email)
    phone = _present(phone)
    if not email and not phone:
        raise ValidationError("Either email or phoneNumber must be provided")

    with transaction() as conn:
        cluster = contact_store.find_contact_cluster(conn, email, phone)

        if not cluster:
            primary = contact_store.create_contact(conn, email, phone)
            logger.info(f"Created primary contact {primary.id}")
            return format_identity(primary, [])

        canonical = pick_canonical(cluster)
        canonical = merge_cluster(conn, canonical, cluster)

        members = [canonical] + contact_store.get_linked_contacts(conn, canonical.id)
        if is_novel(members, email, phone):
            secondary = contact_store.create_contact(conn, email, phone, canonical.id, "secondary")
            logger.info(f"Created secondary contact {secondary.id} under primary {canonical.id}")

        secondaries = contact_store.get_linked_contacts(conn, canonical.id)
        return format_identity(canonical, secondaries)
