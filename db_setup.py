import logging
import sqlite3
from contextlib import contextmanager

from config import settings
from errors import StoreUnavailable

logger = logging.getLogger(__name__)

# ISO-8601 UTC, same shape as datetime.isoformat() on an aware datetime
SQL_NOW = "strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')"

SCHEMA = f'''
    CREATE TABLE IF NOT EXISTS Contact (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        phoneNumber TEXT,
        email TEXT,
        linkedId INTEGER,
        linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
        createdAt DATETIME NOT NULL DEFAULT ({SQL_NOW}),
        updatedAt DATETIME NOT NULL DEFAULT ({SQL_NOW}),
        deletedAt DATETIME,
        CHECK (email IS NOT NULL OR phoneNumber IS NOT NULL),
        FOREIGN KEY (linkedId) REFERENCES Contact (id)
    );

    CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email) WHERE email IS NOT NULL;
    CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber) WHERE phoneNumber IS NOT NULL;
    CREATE INDEX IF NOT EXISTS idx_contact_linked_id ON Contact (linkedId);
    CREATE INDEX IF NOT EXISTS idx_contact_link_precedence ON Contact (linkPrecedence);

    CREATE TRIGGER IF NOT EXISTS contact_touch_updated_at
    AFTER UPDATE ON Contact
    FOR EACH ROW
    WHEN NEW.updatedAt IS OLD.updatedAt
    BEGIN
        UPDATE Contact SET updatedAt = {SQL_NOW} WHERE id = NEW.id;
    END;
'''


def init_db():
    conn = get_db_connection()
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()
    logger.info(f"Initialized contact database at {settings.database_path}")


def get_db_connection():
    """Open a connection in autocommit mode; callers manage transactions explicitly."""
    try:
        conn = sqlite3.connect(
            settings.database_path,
            timeout=settings.db_timeout,
            isolation_level=None,
        )
    except sqlite3.DatabaseError as e:
        raise StoreUnavailable(f"Cannot open contact database: {e}") from e
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction():
    """
    Run a block of store calls as one all-or-nothing unit.

    BEGIN IMMEDIATE takes the write lock before the first read, so two
    resolutions touching the same contacts can never interleave. Any
    exception rolls the whole block back.
    """
    conn = get_db_connection()
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.DatabaseError as e:
            raise StoreUnavailable(f"Cannot lock contact database: {e}") from e

        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.DatabaseError as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreUnavailable(f"Contact database error: {e}") from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
    finally:
        conn.close()
