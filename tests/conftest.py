"""Pytest fixtures for test suite."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import event

from timetravel.core.database import get_engine, init_db, reset_engine, set_db_path
from timetravel.core.journables import PROJECT, WORK_PACKAGE
from timetravel.storage import EntityRepository, JournalRepository


# Fixed evaluation instant so relative timestamps resolve deterministically
NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)
ONE_DAY_AGO = NOW - timedelta(days=1)

BASELINE = "2022-01-01T00:00:00Z"


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def temp_database():
    """Use a temporary database for each test."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        temp_path = Path(f.name)

    set_db_path(temp_path)
    init_db()
    yield temp_path

    # Cleanup
    get_engine().dispose()
    reset_engine()
    try:
        temp_path.unlink()
    except OSError:
        pass


class QueryCounter:
    """Records SELECT statements sent to the database."""

    def __init__(self):
        self.statements: list[str] = []

    def record(self, conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            self.statements.append(statement)

    @property
    def count(self) -> int:
        return len(self.statements)

    def reset(self) -> None:
        self.statements.clear()


@pytest.fixture
def query_counter(temp_database):
    """Count SELECT statements; call ``reset()`` right before the code under test."""
    counter = QueryCounter()
    engine = get_engine()
    event.listen(engine, "before_cursor_execute", counter.record)
    yield counter
    event.remove(engine, "before_cursor_execute", counter.record)


# =============================================================================
# Repository Fixtures
# =============================================================================


@pytest.fixture
def journal_repo() -> JournalRepository:
    return JournalRepository()


@pytest.fixture
def entity_repo(journal_repo: JournalRepository) -> EntityRepository:
    return EntityRepository(journal_repo)


def work_package_payload(subject: str, **overrides) -> dict:
    """Full journal payload of a work package."""
    payload = {
        "subject": subject,
        "description": None,
        "status": "new",
        "priority": "normal",
        "project_id": None,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def work_package(entity_repo: EntityRepository, journal_repo: JournalRepository):
    """Work package created 2022-01-02 with two journal entries.

    v1 at 2022-01-01T00:00:00Z with subject "original",
    v2 one day before ``NOW`` with subject "current".
    """
    entity = entity_repo.create(
        WORK_PACKAGE,
        journal=False,
        subject="current",
        created_at=datetime(2022, 1, 2, tzinfo=timezone.utc),
        updated_at=ONE_DAY_AGO,
    )
    journal_repo.record(
        WORK_PACKAGE,
        entity.id,
        work_package_payload("original"),
        recorded_at=datetime(2022, 1, 1, tzinfo=timezone.utc),
    )
    journal_repo.record(WORK_PACKAGE, entity.id, work_package_payload("current"), recorded_at=ONE_DAY_AGO)
    return entity


@pytest.fixture
def work_packages(entity_repo: EntityRepository):
    """Three journaled work packages with differing histories."""
    t0 = datetime(2022, 1, 1, tzinfo=timezone.utc)
    t1 = datetime(2023, 1, 1, tzinfo=timezone.utc)

    first = entity_repo.create(WORK_PACKAGE, subject="Design schema", priority="high", recorded_at=t0)
    first = entity_repo.update(first, subject="Design journal schema", status="closed", recorded_at=t1)

    second = entity_repo.create(WORK_PACKAGE, subject="Write parser", recorded_at=t0)

    # Created after the first checkpoint
    third = entity_repo.create(WORK_PACKAGE, subject="Original docs", recorded_at=t1)
    third = entity_repo.update(third, subject="Docs", recorded_at=ONE_DAY_AGO)

    return [first, second, third]


@pytest.fixture
def project(entity_repo: EntityRepository):
    return entity_repo.create(
        PROJECT,
        name="Time travel",
        identifier="time-travel",
        recorded_at=datetime(2022, 1, 1, tzinfo=timezone.utc),
    )
