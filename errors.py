import sqlite3
from enum import Enum


class ErrorKind(str, Enum):
    INPUT = "input"
    PERSISTENCE_CONFLICT = "persistence_conflict"
    UNCLASSIFIED = "unclassified"


class IdentifyError(Exception):
    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


def classify(exc: BaseException) -> ErrorKind:
    if isinstance(exc, IdentifyError):
        return exc.kind
    return ErrorKind.UNCLASSIFIED


def is_unique_violation(exc: sqlite3.Error) -> bool:
    return isinstance(exc, sqlite3.IntegrityError) and "UNIQUE constraint failed" in str(exc)


def is_lock_timeout(exc: sqlite3.Error) -> bool:
    message = str(exc).lower()
    return isinstance(exc, sqlite3.OperationalError) and (
        "database is locked" in message or "database is busy" in message
    )
