import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from db_models import Contact, LinkPrecedence


def _now() -> str:
    # fixed-width UTC timestamps keep lexical order equal to chronological order
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")

def _placeholders(values) -> str:
    return ", ".join("?" for _ in values)

def _identifier_clauses(email: Optional[str], phone: Optional[str]):
    clauses, params = [], []
    if email:
        clauses.append("email = ?")
        params.append(email)
    if phone:
        clauses.append("phoneNumber = ?")
        params.append(phone)
    return clauses, params


class ContactStore:

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @contextmanager
    def transaction(self):
        """BEGIN IMMEDIATE: holds the write lock from the first read to commit."""
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
            self.conn.execute("COMMIT")
        except Exception:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise

    def _fetch(self, query: str, params: Iterable = ()) -> List[Contact]:
        rows = self.conn.execute(query, tuple(params)).fetchall()
        return [Contact.model_validate(dict(row)) for row in rows]

    def find_matching(self, email: Optional[str] = None, phone: Optional[str] = None) -> List[Contact]:
        clauses, params = _identifier_clauses(email, phone)
        if not clauses:
            return []
        predicate = " OR ".join(clauses)

        return self._fetch(f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({predicate})
            ORDER BY createdAt ASC, id ASC
        """, params)

    def find_by_ids(self, ids: List[int]) -> List[Contact]:
        if not ids:
            return []
        return self._fetch(f"""
            SELECT * FROM Contact
            WHERE id IN ({_placeholders(ids)})
            ORDER BY createdAt ASC, id ASC
        """, ids)

    def find_cluster(self, root_ids: List[int]) -> List[Contact]:
        """Root records plus every live record linked to one of them."""
        if not root_ids:
            return []
        marks = _placeholders(root_ids)
        return self._fetch(f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND (id IN ({marks}) OR linkedId IN ({marks}))
            ORDER BY createdAt ASC, id ASC
        """, list(root_ids) + list(root_ids))

    def find_oldest(self, email: Optional[str] = None, phone: Optional[str] = None) -> Optional[Contact]:
        """Oldest live record carrying all of the supplied identifiers."""
        clauses, params = _identifier_clauses(email, phone)
        if not clauses:
            return None
        predicate = " AND ".join(clauses)

        found = self._fetch(f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND {predicate}
            ORDER BY createdAt ASC, id ASC
            LIMIT 1
        """, params)
        return found[0] if found else None

    def create(
        self,
        email: Optional[str],
        phone: Optional[str],
        precedence: LinkPrecedence,
        linked_id: Optional[int] = None,
    ) -> Contact:
        """Insert a contact.

        Raises sqlite3.IntegrityError when a live record already holds the
        same non-null (email, phone) pair.
        """
        now = _now()
        cursor = self.conn.execute("""
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (phone, email, linked_id, precedence.value, now, now))

        return self._fetch("SELECT * FROM Contact WHERE id = ?", (cursor.lastrowid,))[0]

    def reparent_children(self, old_primary_ids: List[int], new_primary_id: int):
        if not old_primary_ids:
            return
        self.conn.execute(f"""
            UPDATE Contact
            SET linkedId = ?, updatedAt = ?
            WHERE linkedId IN ({_placeholders(old_primary_ids)})
        """, [new_primary_id, _now()] + list(old_primary_ids))

    def demote(self, ids: List[int], new_primary_id: int):
        if not ids:
            return
        self.conn.execute(f"""
            UPDATE Contact
            SET linkedId = ?, linkPrecedence = ?, updatedAt = ?
            WHERE id IN ({_placeholders(ids)})
        """, [new_primary_id, LinkPrecedence.SECONDARY.value, _now()] + list(ids))

    def ping(self):
        self.conn.execute("SELECT 1").fetchone()
