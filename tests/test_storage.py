"""
Tests for the storage layer.

Tests the journal repository (recording and reads) and the live entity repository.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import inspect

from conftest import NOW, work_package_payload
from timetravel.core.database import get_db, get_session, reset_db
from timetravel.core.journables import PROJECT, WORK_PACKAGE
from timetravel.core.models import Journal, UTCDateTime, WorkPackage
from timetravel.storage import JournalOrderError


T0 = datetime(2022, 1, 1, tzinfo=timezone.utc)
T1 = datetime(2023, 1, 1, tzinfo=timezone.utc)


class TestDatabase:
    """Test database initialization."""

    def test_init_db_creates_tables(self, temp_database):
        with get_db() as conn:
            tables = set(inspect(conn).get_table_names())
        assert {
            "projects",
            "work_packages",
            "project_journals",
            "work_package_journals",
            "journals",
        } <= tables

    def test_reset_db_drops_rows(self, journal_repo, entity_repo, work_package):
        reset_db()
        assert journal_repo.count_entries() == 0
        assert entity_repo.list_entities(WORK_PACKAGE) == []


class TestJournalRepository:
    """Test journal recording and reads."""

    def test_versions_increase(self, journal_repo):
        v1 = journal_repo.record(WORK_PACKAGE, 7, work_package_payload("one"), recorded_at=T0)
        v2 = journal_repo.record(WORK_PACKAGE, 7, work_package_payload("two"), recorded_at=T1)

        assert (v1.version, v2.version) == (1, 2)
        assert v2.recorded_at == T1
        assert v2.payload["subject"] == "two"

    def test_versions_are_per_entity_and_kind(self, journal_repo):
        journal_repo.record(WORK_PACKAGE, 1, work_package_payload("wp"), recorded_at=T0)
        entry = journal_repo.record(PROJECT, 1, {"name": "p", "identifier": "p"}, recorded_at=T0)
        other = journal_repo.record(WORK_PACKAGE, 2, work_package_payload("wp2"), recorded_at=T0)

        assert entry.version == 1
        assert other.version == 1

    def test_out_of_order_entry_is_rejected(self, journal_repo):
        journal_repo.record(WORK_PACKAGE, 1, work_package_payload("later"), recorded_at=T1)
        with pytest.raises(JournalOrderError):
            journal_repo.record(WORK_PACKAGE, 1, work_package_payload("earlier"), recorded_at=T0)
        assert journal_repo.count_entries(WORK_PACKAGE, 1) == 1

    def test_unknown_payload_attribute(self, journal_repo):
        with pytest.raises(ValueError):
            journal_repo.record(WORK_PACKAGE, 1, {"subject": "x", "color": "red"})

    def test_get_entries_ordered_by_version(self, journal_repo, work_package):
        entries = journal_repo.get_entries(WORK_PACKAGE, work_package.id)

        assert [e.version for e in entries] == [1, 2]
        assert [e.payload["subject"] for e in entries] == ["original", "current"]
        assert all(e.entity_type == "work_package" for e in entries)

    def test_get_entry_at(self, journal_repo, work_package):
        entry = journal_repo.get_entry_at(WORK_PACKAGE, work_package.id, "2023-01-01T00:00:00Z")
        assert entry.version == 1

        entry = journal_repo.get_entry_at("work_package", work_package.id, "PT0S", now=NOW)
        assert entry.payload["subject"] == "current"

    def test_get_entry_before_first_is_none(self, journal_repo, work_package):
        assert journal_repo.get_entry_at(WORK_PACKAGE, work_package.id, "2021-01-01T00:00:00Z") is None

    def test_get_latest_entry(self, journal_repo, work_package):
        assert journal_repo.get_latest_entry(WORK_PACKAGE, work_package.id).version == 2
        assert journal_repo.get_latest_entry(WORK_PACKAGE, 999) is None

    def test_count_entries(self, journal_repo, work_packages, project):
        assert journal_repo.count_entries() == 6
        assert journal_repo.count_entries(PROJECT) == 1
        assert journal_repo.count_entries(WORK_PACKAGE, work_packages[1].id) == 1

    def test_record_to_dict(self, journal_repo):
        entry = journal_repo.record(PROJECT, 3, {"name": "p", "identifier": "p"}, recorded_at=T0)
        data = entry.to_dict()
        assert data["entity_type"] == "project"
        assert data["payload"] == {"name": "p", "identifier": "p"}


class TestEntityRepository:
    """Test live entity persistence."""

    def test_create_journals_initial_state(self, entity_repo, journal_repo):
        entity = entity_repo.create(WORK_PACKAGE, subject="New", recorded_at=T0)

        assert isinstance(entity, WorkPackage)
        entries = journal_repo.get_entries(WORK_PACKAGE, entity.id)
        assert len(entries) == 1
        assert entries[0].recorded_at == T0
        assert entries[0].payload["subject"] == "New"

    def test_create_without_journal(self, entity_repo, journal_repo):
        entity = entity_repo.create("work_package", journal=False, subject="Quiet")
        assert journal_repo.count_entries(WORK_PACKAGE, entity.id) == 0

    def test_created_at_is_read_back_as_utc(self, entity_repo):
        created_at = datetime(2022, 1, 2, 3, tzinfo=timezone(timedelta(hours=3)))
        entity = entity_repo.create(WORK_PACKAGE, journal=False, subject="x", created_at=created_at)

        stored = entity_repo.get(WORK_PACKAGE, entity.id)
        assert stored.created_at == datetime(2022, 1, 2, tzinfo=timezone.utc)
        assert stored.created_at.tzinfo is timezone.utc
        assert stored.updated_at.tzinfo is timezone.utc

    def test_update_journals_and_bumps_updated_at(self, entity_repo, journal_repo):
        entity = entity_repo.create(WORK_PACKAGE, subject="Before", recorded_at=T0)
        entity = entity_repo.update(entity, subject="After", recorded_at=T1)

        assert entity.subject == "After"
        assert entity.updated_at == T1
        latest = journal_repo.get_latest_entry(WORK_PACKAGE, entity.id)
        assert latest.version == 2
        assert latest.payload["subject"] == "After"

    def test_update_immutable_attributes(self, entity_repo):
        entity = entity_repo.create(WORK_PACKAGE, journal=False, subject="x")
        with pytest.raises(ValueError):
            entity_repo.update(entity, created_at=datetime(2020, 1, 1))
        assert entity_repo.get(WORK_PACKAGE, entity.id).subject == "x"

    def test_list_entities(self, entity_repo, work_packages):
        assert [e.id for e in entity_repo.list_entities(WORK_PACKAGE)] == [wp.id for wp in work_packages]
        assert len(entity_repo.list_entities(WORK_PACKAGE, ids=[work_packages[0].id])) == 1

    def test_creation_times(self, entity_repo, work_package):
        times = entity_repo.creation_times(WORK_PACKAGE, [work_package.id])
        assert times == {work_package.id: datetime(2022, 1, 2, tzinfo=timezone.utc)}

    def test_unknown_kind(self, entity_repo):
        with pytest.raises(KeyError):
            entity_repo.create("milestone", subject="x")


class TestUTCDateTime:
    """Test how datetimes are written and read through the tables."""

    def test_aware_values_round_trip(self, journal_repo):
        recorded_at = datetime(2022, 1, 1, 5, 30, tzinfo=timezone(timedelta(hours=5, minutes=30)))
        entry = journal_repo.record(WORK_PACKAGE, 1, work_package_payload("x"), recorded_at=recorded_at)

        (stored,) = journal_repo.get_entries(WORK_PACKAGE, 1)
        assert entry.recorded_at == T0
        assert stored.recorded_at == T0
        assert stored.recorded_at.tzinfo is timezone.utc

    def test_models_written_directly(self):
        with get_session() as session:
            journal = Journal(
                entity_type="work_package", entity_id=1, version=1, data_id=1, recorded_at=T1
            )
            session.add(journal)
            session.commit()
            session.refresh(journal)
            assert journal.recorded_at == T1
            assert journal.recorded_at.tzinfo is timezone.utc

    def test_default_timestamps_are_aware(self, entity_repo):
        entity = entity_repo.create(WORK_PACKAGE, journal=False, subject="x")
        assert entity.created_at.tzinfo is timezone.utc

    def test_naive_values_are_rejected(self):
        with pytest.raises(ValueError):
            UTCDateTime().process_bind_param(datetime(2022, 1, 1), None)

    def test_aware_value_is_stored_as_utc(self):
        bound = UTCDateTime().process_bind_param(datetime(2022, 1, 1, 2, tzinfo=timezone(timedelta(hours=2))), None)
        assert bound == datetime(2022, 1, 1)
