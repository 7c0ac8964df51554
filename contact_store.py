"""
SQL access for the Contact table.

Every function takes an open connection so it runs inside the caller's
transaction (see db_setup.transaction). Soft-deleted rows are invisible here.
"""
import sqlite3
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from db_models import Contact
from errors import InvariantViolation, ValidationError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _to_contacts(rows) -> List[Contact]:
    return [Contact(**dict(row)) for row in rows]


def get_contact(conn: sqlite3.Connection, contact_id: int) -> Optional[Contact]:
    row = conn.execute(
        "SELECT * FROM Contact WHERE id = ? AND deletedAt IS NULL", (contact_id,)
    ).fetchone()
    return Contact(**dict(row)) if row else None


def find_contact_cluster(conn: sqlite3.Connection, email: Optional[str] = None,
                         phone: Optional[str] = None) -> List[Contact]:
    """
    Return every live contact connected to the given email/phone, directly or
    through a chain of contacts sharing a non-null email or phone number.
    Existing primary/secondary links also connect, so a merged identity is
    always found whole.
    """
    conditions = []
    params = []
    if email:
        conditions.append("email = ?")
        params.append(email)
    if phone:
        conditions.append("phoneNumber = ?")
        params.append(phone)
    if not conditions:
        return []

    query = f"""
        WITH RECURSIVE cluster AS (
            SELECT * FROM Contact
            WHERE deletedAt IS NULL AND ({' OR '.join(conditions)})
            UNION
            SELECT c.* FROM Contact c
            JOIN cluster cl ON (
                (c.email IS NOT NULL AND c.email = cl.email)
                OR (c.phoneNumber IS NOT NULL AND c.phoneNumber = cl.phoneNumber)
                OR c.id = cl.linkedId
                OR c.linkedId = cl.id
            )
            WHERE c.deletedAt IS NULL
        )
        SELECT * FROM cluster
        ORDER BY createdAt ASC, id ASC
    """
    return _to_contacts(conn.execute(query, params).fetchall())


def get_linked_contacts(conn: sqlite3.Connection, primary_id: int) -> List[Contact]:
    """Direct secondaries of primary_id, oldest first."""
    rows = conn.execute("""
        SELECT * FROM Contact
        WHERE linkedId = ? AND deletedAt IS NULL
        ORDER BY createdAt ASC, id ASC
    """, (primary_id,)).fetchall()
    return _to_contacts(rows)


def _require_primary(conn: sqlite3.Connection, contact_id: int):
    target = get_contact(conn, contact_id)
    if target is None or not target.is_primary:
        raise InvariantViolation(f"Contact {contact_id} is not a live primary contact")


def create_contact(conn: sqlite3.Connection, email: Optional[str] = None,
                   phone: Optional[str] = None, linked_id: Optional[int] = None,
                   precedence: str = "primary") -> Contact:
    """Create a new contact and return the stored row."""
    email = email if email and email.strip() else None
    phone = phone if phone and phone.strip() else None
    if not email and not phone:
        raise ValidationError("A contact needs an email or a phoneNumber")
    if precedence == "primary" and linked_id is not None:
        raise InvariantViolation("A primary contact cannot be linked to another contact")
    if precedence == "secondary":
        if linked_id is None:
            raise InvariantViolation("A secondary contact must be linked to a primary")
        _require_primary(conn, linked_id)

    now = _now()
    cursor = conn.execute("""
        INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (phone, email, linked_id, precedence, now, now))

    return get_contact(conn, cursor.lastrowid)


def update_to_secondary(conn: sqlite3.Connection, contact_ids: Iterable[int], primary_id: int) -> int:
    """
    Demote contact_ids to secondaries of primary_id.

    Contacts that were linked to any of the demoted ids move to primary_id in
    the same statement, so no secondary ends up pointing at another secondary.
    Returns the number of rows changed.
    """
    ids = set(contact_ids)
    ids.discard(primary_id)
    if not ids:
        return 0
    _require_primary(conn, primary_id)

    placeholders = ",".join("?" for _ in ids)
    ordered = sorted(ids)
    cursor = conn.execute(f"""
        UPDATE Contact
        SET linkedId = ?, linkPrecedence = 'secondary', updatedAt = ?
        WHERE deletedAt IS NULL AND id != ?
        AND (id IN ({placeholders}) OR linkedId IN ({placeholders}))
    """, (primary_id, _now(), primary_id, *ordered, *ordered))
    return cursor.rowcount


def update_to_primary(conn: sqlite3.Connection, contact_id: int) -> Contact:
    """
    Promote contact_id to a primary with no link.

    Only used when a cluster has no live primary left (its primary was
    soft-deleted), so the oldest member can take over.
    """
    conn.execute("""
        UPDATE Contact
        SET linkedId = NULL, linkPrecedence = 'primary', updatedAt = ?
        WHERE id = ?
    """, (_now(), contact_id))
    return get_contact(conn, contact_id)
