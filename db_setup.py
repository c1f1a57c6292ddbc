import sqlite3
from typing import Optional

from config import get_settings


def init_db(db_name: Optional[str] = None):
    conn = get_db_connection(db_name)
    cursor = conn.cursor()

    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt DATETIME NOT NULL,
            updatedAt DATETIME NOT NULL,
            deletedAt DATETIME,
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_linked ON Contact (linkedId)")
    # a non-null (email, phone) pair may only exist once among live rows
    cursor.execute('''
        CREATE UNIQUE INDEX IF NOT EXISTS uq_contact_email_phone
        ON Contact (email, phoneNumber)
        WHERE deletedAt IS NULL AND email IS NOT NULL AND phoneNumber IS NOT NULL
    ''')

    conn.close()

def get_db_connection(db_name: Optional[str] = None):
    settings = get_settings()
    # isolation_level=None leaves transaction control to ContactStore.transaction
    conn = sqlite3.connect(
        db_name or settings.db_name,
        timeout=settings.lock_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn
