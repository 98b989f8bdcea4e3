"""
Registry of journaled entity kinds.

A kind ties a live table to its journal data table. The rewriter uses it to
redirect queries and the projection uses it to know which attributes a
snapshot carries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlmodel import SQLModel

from timetravel.core.models import (
    Project,
    ProjectJournal,
    WorkPackage,
    WorkPackageJournal,
)


JOURNALS_TABLE = "journals"
"""Shared table holding versioned journal entries."""

JOURNABLES_ALIAS = "journables"
"""Alias of the live table joined back in to recover ``created_at``."""

# Columns the rewriter maps outside of the payload table.
SPECIAL_COLUMNS = ("id", "created_at", "updated_at")


@dataclass(frozen=True)
class JournableKind:
    """A journaled entity kind."""

    name: str
    entity_model: type[SQLModel]
    journal_model: type[SQLModel]
    supports_filters: bool = False

    @property
    def table_name(self) -> str:
        return self.entity_model.__tablename__

    @property
    def journal_table_name(self) -> str:
        return self.journal_model.__tablename__

    @property
    def payload_attributes(self) -> tuple[str, ...]:
        """Attribute names stored in every journal payload, in column order."""
        return tuple(
            column.name
            for column in self.journal_model.__table__.columns
            if column.name != "id"
        )

    def has_attribute(self, name: str) -> bool:
        return name in SPECIAL_COLUMNS or name in self.payload_attributes


WORK_PACKAGE = JournableKind(
    name="work_package",
    entity_model=WorkPackage,
    journal_model=WorkPackageJournal,
    supports_filters=True,
)

PROJECT = JournableKind(
    name="project",
    entity_model=Project,
    journal_model=ProjectJournal,
)

_KINDS: dict[str, JournableKind] = {kind.name: kind for kind in (WORK_PACKAGE, PROJECT)}


def get_kind(name: str) -> JournableKind:
    """Look up a kind by name."""
    try:
        return _KINDS[name]
    except KeyError:
        raise KeyError(f"Unknown journable kind: {name}") from None


def kind_for_table(table_name: str) -> JournableKind | None:
    """Find the kind whose live table is ``table_name``."""
    for kind in _KINDS.values():
        if kind.table_name == table_name:
            return kind
    return None


def kind_for_entity(entity: Any) -> JournableKind:
    """Find the kind of a live entity instance."""
    for kind in _KINDS.values():
        if isinstance(entity, kind.entity_model):
            return kind
    raise TypeError(f"{type(entity).__name__} is not a journaled entity")


def all_kinds() -> list[JournableKind]:
    return list(_KINDS.values())
