"""Storage domain - journal and live entity repositories."""

from timetravel.storage.journal_repo import JournalOrderError, JournalRepository, JournalStore
from timetravel.storage.entity_repo import EntityRepository

__all__ = [
    "JournalOrderError",
    "JournalRepository",
    "JournalStore",
    "EntityRepository",
]
