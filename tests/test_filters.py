"""
Tests for user-defined filters.

Tests condition validation, YAML loading, predicate compilation and
evaluation against the journal.
"""

import textwrap
from datetime import datetime, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from conftest import BASELINE, NOW
from timetravel.filters import Filter, FilterCondition, FilterService, load_filter, load_filters
from timetravel.query import Equality, Membership, NotEqual, RawFragment


FILTERS_DIR = Path(__file__).parent.parent / "filters"


class TestFilterDefinition:
    """Test building and validating filters."""

    def test_add_returns_new_filter(self):
        empty = Filter(name="f")
        with_condition = empty.add("subject", "~", "original")

        assert empty.conditions == []
        assert len(with_condition.conditions) == 1
        assert with_condition.name == "f"

    def test_unknown_operator(self):
        with pytest.raises(ValidationError):
            FilterCondition(field="subject", operator="between", values=[1, 2])

    def test_value_count_is_checked(self):
        with pytest.raises(ValidationError):
            FilterCondition(field="subject", operator="*", values=["x"])
        with pytest.raises(ValidationError):
            FilterCondition(field="subject", operator="~", values=[])
        with pytest.raises(ValidationError):
            FilterCondition(field="subject", operator="=")

    def test_unknown_field(self):
        with pytest.raises(ValidationError):
            Filter().add("color", "=", "red")

    def test_unknown_kind(self):
        with pytest.raises(KeyError):
            Filter(entity_kind="milestone")

    def test_special_columns_are_filterable(self):
        assert Filter().add("updated_at", ">=", "2022-01-01").conditions[0].field == "updated_at"


class TestFilterYaml:
    """Test YAML round trips and loading from disk."""

    def test_from_yaml(self):
        loaded = Filter.from_yaml(
            textwrap.dedent(
                """
            name: closed
            conditions:
              - field: status
                operator: "="
                values: [closed]
                """
            )
        )
        assert loaded.name == "closed"
        assert loaded.entity_kind == "work_package"
        assert loaded.conditions[0].values == ["closed"]

    def test_to_yaml_round_trip(self):
        original = Filter(name="f").add("status", "!", "closed", "rejected").add("project_id", "!*")
        assert Filter.from_yaml(original.to_yaml()) == original

    def test_load_filter(self):
        loaded = load_filter(FILTERS_DIR / "original_subjects.yaml")
        assert loaded.name == "original_subjects"
        assert loaded.conditions[0].operator == "~"

    def test_load_filters(self):
        filters = load_filters(FILTERS_DIR)
        assert {"original_subjects", "open_high_priority"} <= set(filters)

    def test_load_filters_missing_directory(self, tmp_path):
        assert load_filters(tmp_path / "missing") == {}


class TestFilterPredicates:
    """Test compiling conditions to query predicates."""

    def test_equality_and_membership(self):
        predicates = (
            Filter().add("status", "=", "new").add("priority", "!", "low", "normal").predicates()
        )
        assert isinstance(predicates[0], Equality)
        assert isinstance(predicates[1], Membership)
        assert predicates[1].negated

    def test_null_operators(self):
        any_value, no_value = Filter().add("project_id", "*").add("project_id", "!*").predicates()
        assert isinstance(any_value, NotEqual) and any_value.value is None
        assert isinstance(no_value, Equality) and no_value.value is None

    def test_contains_escapes_wildcards(self):
        (predicate,) = Filter().add("subject", "~", "100%_done").predicates()
        assert isinstance(predicate, RawFragment)
        assert '"work_packages"."subject"' in predicate.sql
        assert predicate.params == {"subject_0_pattern": "%100\\%\\_done%"}


class TestFilterService:
    """Test evaluating filters at timestamps."""

    def test_contains_at_timestamps(self, work_package):
        service = FilterService()
        subject_filter = Filter().add("subject", "~", "ORIGINAL")

        assert service.matching_ids(subject_filter, [work_package.id], BASELINE, now=NOW) == {work_package.id}
        assert service.matching_ids(subject_filter, [work_package.id], "PT0S", now=NOW) == set()

    def test_does_not_contain(self, work_package):
        service = FilterService()
        subject_filter = Filter().add("subject", "!~", "original")

        assert service.matching_ids(subject_filter, [work_package.id], BASELINE, now=NOW) == set()
        assert service.matching_ids(subject_filter, [work_package.id], "PT0S", now=NOW) == {work_package.id}

    def test_restricted_to_ids(self, work_packages):
        first, second, third = work_packages
        open_filter = Filter().add("status", "!", "closed")

        assert FilterService().matching_ids(open_filter, [first.id, third.id], "PT0S", now=NOW) == {third.id}

    def test_combined_conditions(self, work_packages):
        first, second, third = work_packages
        ids = [wp.id for wp in work_packages]
        high_and_open = Filter().add("priority", "=", "high").add("status", "=", "new")

        assert FilterService().matching_ids(high_and_open, ids, "2022-06-01T00:00:00Z", now=NOW) == {first.id}
        assert FilterService().matching_ids(high_and_open, ids, "PT0S", now=NOW) == set()

    def test_excluded_values_at_past_timestamp(self, work_packages):
        first, second, third = work_packages
        ids = [wp.id for wp in work_packages]
        not_low_or_normal = Filter().add("priority", "!", "low", "normal")

        assert FilterService().matching_ids(not_low_or_normal, ids, "2022-06-01T00:00:00Z", now=NOW) == {first.id}
        assert FilterService().matching_ids(not_low_or_normal, [second.id, third.id], "PT0S", now=NOW) == set()

    def test_updated_at_refers_to_journal_time(self, work_packages):
        ids = [wp.id for wp in work_packages]
        recent = Filter().add("updated_at", ">=", datetime(2023, 1, 1, tzinfo=timezone.utc))

        assert FilterService().matching_ids(recent, ids, "2022-06-01T00:00:00Z", now=NOW) == set()
        assert FilterService().matching_ids(recent, ids, "2023-06-01T00:00:00Z", now=NOW) == {
            work_packages[0].id,
            work_packages[2].id,
        }

    def test_textual_time_values(self, work_packages):
        ids = [wp.id for wp in work_packages]
        recent = Filter.from_yaml("conditions: [{field: updated_at, operator: \">=\", values: [\"2023-01-01\"]}]")

        assert FilterService().matching_ids(recent, ids, "2023-06-01T00:00:00Z", now=NOW) == {
            work_packages[0].id,
            work_packages[2].id,
        }

    def test_empty_ids(self, work_package):
        assert FilterService().matching_ids(Filter(), [], BASELINE, now=NOW) == set()
