"""Kozeki build state store."""

from kozeki.db.connection import Database
from kozeki.db.models import PendingAction, Record
from kozeki.db.schema import EPOCH, ensure_schema
from kozeki.db.state import DuplicatedItemIdError, NotFound, State

__all__ = [
    "Database",
    "DuplicatedItemIdError",
    "EPOCH",
    "NotFound",
    "PendingAction",
    "Record",
    "State",
    "ensure_schema",
]
