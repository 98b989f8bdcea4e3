"""Repository for live journaled entities."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlmodel import SQLModel, select

from timetravel.core.database import get_session
from timetravel.core.journables import JournableKind, get_kind, kind_for_entity
from timetravel.core.models import utc_now
from timetravel.core.timestamp import to_utc
from .journal_repo import JournalRepository


class EntityRepository:
    """CRUD for live entities, optionally journaling every change."""

    def __init__(self, journal_repo: JournalRepository | None = None):
        self.journal_repo = journal_repo or JournalRepository()

    def create(
        self,
        kind: JournableKind | str,
        journal: bool = True,
        recorded_at: datetime | None = None,
        **attributes: Any,
    ) -> SQLModel:
        """Create an entity.

        Args:
            kind: Journable kind (or its name)
            journal: Also record the initial journal entry
            recorded_at: Timestamp of that entry (defaults to the entity's updated_at)
            **attributes: Column values, including optional created_at/updated_at

        Returns:
            The persisted entity, refreshed from the database
        """
        kind = kind if isinstance(kind, JournableKind) else get_kind(kind)
        for name in ("created_at", "updated_at"):
            if attributes.get(name) is not None:
                attributes[name] = to_utc(attributes[name])

        entity = kind.entity_model(**attributes)
        with get_session() as session:
            session.add(entity)
            session.commit()
            session.refresh(entity)

        if journal:
            self._journal(kind, entity, recorded_at)
        return entity

    def get(self, kind: JournableKind | str, entity_id: int) -> Optional[SQLModel]:
        kind = kind if isinstance(kind, JournableKind) else get_kind(kind)
        with get_session() as session:
            return session.get(kind.entity_model, entity_id)

    def list_entities(self, kind: JournableKind | str, ids: Iterable[int] | None = None) -> list[SQLModel]:
        kind = kind if isinstance(kind, JournableKind) else get_kind(kind)
        model = kind.entity_model
        statement = select(model).order_by(model.id)
        if ids is not None:
            statement = statement.where(model.id.in_(list(ids)))
        with get_session() as session:
            return list(session.exec(statement).all())

    def update(
        self,
        entity: SQLModel,
        journal: bool = True,
        recorded_at: datetime | None = None,
        **attributes: Any,
    ) -> SQLModel:
        """Change attributes of an entity and bump its updated_at."""
        kind = kind_for_entity(entity)
        immutable = {"id", "created_at"} & set(attributes)
        if immutable:
            raise ValueError(f"{', '.join(sorted(immutable))} cannot be changed")
        for name, value in attributes.items():
            setattr(entity, name, value)
        entity.updated_at = to_utc(recorded_at) if recorded_at else utc_now()

        with get_session() as session:
            entity = session.merge(entity)
            session.commit()
            session.refresh(entity)

        if journal:
            self._journal(kind, entity, recorded_at)
        return entity

    def creation_times(self, kind: JournableKind | str, ids: Iterable[int]) -> dict[int, datetime]:
        """Minimal ``{id: created_at}`` projection for a set of entities."""
        kind = kind if isinstance(kind, JournableKind) else get_kind(kind)
        model = kind.entity_model
        statement = select(model.id, model.created_at).where(model.id.in_(list(ids)))
        with get_session() as session:
            return {entity_id: created_at for entity_id, created_at in session.exec(statement).all()}

    def _journal(self, kind: JournableKind, entity: SQLModel, recorded_at: datetime | None) -> None:
        payload = {name: getattr(entity, name) for name in kind.payload_attributes}
        self.journal_repo.record(kind, entity.id, payload, recorded_at=recorded_at or entity.updated_at)
