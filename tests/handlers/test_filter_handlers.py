"""
Tests for filter handlers.

This module tests record selection on lists and single records, operator
semantics and the error kinds raised for bad expressions or input.
"""

import pytest

from stepflow.domain.errors import InvalidFilterExpression, InvalidInputData, InvalidStepConfig
from stepflow.domain.value_object import ExecutionContext, StepCategory
from stepflow.handlers.filter import (
    AdvancedFilter,
    ComplexFilter,
    DateFilter,
    DedupFilter,
    RegexFilter,
    SimpleFilter,
    ValidationFilter,
)

CONTEXT = ExecutionContext.for_test("u1")

PEOPLE = [
    {"name": "Ann", "age": 31, "city": "Oslo", "tags": ["admin"]},
    {"name": "Bo", "age": 17, "city": "Bergen", "tags": []},
    {"name": "Cy", "age": "45", "city": "oslo"},
]


class TestSimpleFilter:
    """Test cases for SimpleFilter."""

    def setup_method(self):
        self.handler = SimpleFilter()

    def run(self, config, input_data=PEOPLE):
        return self.handler.execute(config, input_data, CONTEXT)

    def test_category(self):
        assert self.handler.category == StepCategory.FILTER

    def test_equals_defaults_to_case_insensitive(self):
        assert [p["name"] for p in self.run({"field": "city", "value": "OSLO"})] == ["Ann", "Cy"]

    def test_equals_case_sensitive(self):
        result = self.run({"field": "city", "value": "Oslo", "caseSensitive": True})

        assert [p["name"] for p in result] == ["Ann"]

    def test_not_equals(self):
        assert [p["name"] for p in self.run({"field": "name", "operator": "not_equals", "value": "Bo"})] == [
            "Ann",
            "Cy",
        ]

    def test_numeric_comparison_coerces_strings(self):
        result = self.run({"field": "age", "operator": "greater_than", "value": 30})

        assert [p["name"] for p in result] == ["Ann", "Cy"]

    def test_less_equal(self):
        assert [p["name"] for p in self.run({"field": "age", "operator": "less_equal", "value": 17})] == ["Bo"]

    def test_contains_on_list_field(self):
        assert [p["name"] for p in self.run({"field": "tags", "operator": "contains", "value": "admin"})] == ["Ann"]

    def test_contains_on_string(self):
        assert [p["name"] for p in self.run({"field": "city", "operator": "contains", "value": "erg"})] == ["Bo"]

    def test_regex_operator(self):
        assert [p["name"] for p in self.run({"field": "name", "operator": "regex", "value": "^[ab]"})] == [
            "Ann",
            "Bo",
        ]

    def test_items_missing_field_do_not_match(self):
        assert [p["name"] for p in self.run({"field": "tags", "operator": "contains", "value": "x"})] == []

    def test_single_record_match(self):
        record = {"status": "open"}

        assert self.run({"field": "status", "value": "open"}, record) == record

    def test_single_record_no_match(self):
        assert self.run({"field": "status", "value": "closed"}, {"status": "open"}) is None

    def test_single_record_missing_field(self):
        with pytest.raises(InvalidStepConfig) as exc_info:
            self.run({"field": "y", "value": 1}, {"x": 1})

        assert exc_info.value.field == "y"

    def test_nested_path(self):
        records = [{"user": {"roles": ["a", "b"]}}, {"user": {"roles": ["c"]}}]

        assert self.run({"field": "user.roles[0]", "value": "c"}, records) == [records[1]]

    def test_none_passes_through(self):
        assert self.run({"field": "x", "value": 1}, None) is None

    def test_scalar_input(self):
        with pytest.raises(InvalidInputData):
            self.run({"field": "x", "value": 1}, 42)

    def test_unknown_operator(self):
        with pytest.raises(InvalidFilterExpression):
            self.run({"field": "x", "operator": "between", "value": 1})

    def test_missing_field_key(self):
        with pytest.raises(InvalidStepConfig) as exc_info:
            self.run({"value": 1})

        assert exc_info.value.field == "field"


class TestComplexFilter:
    """Test cases for ComplexFilter."""

    def setup_method(self):
        self.handler = ComplexFilter()

    def test_and(self):
        config = {
            "conditions": [
                {"field": "city", "value": "oslo"},
                {"field": "age", "operator": "greater_than", "value": 40},
            ]
        }

        assert [p["name"] for p in self.handler.execute(config, PEOPLE, CONTEXT)] == ["Cy"]

    def test_or(self):
        config = {
            "logic": "or",
            "conditions": [{"field": "name", "value": "Bo"}, {"field": "name", "value": "Cy"}],
        }

        assert [p["name"] for p in self.handler.execute(config, PEOPLE, CONTEXT)] == ["Bo", "Cy"]

    def test_empty_conditions(self):
        with pytest.raises(InvalidStepConfig):
            self.handler.execute({"conditions": []}, PEOPLE, CONTEXT)

    def test_unknown_operator_in_any_condition(self):
        config = {"conditions": [{"field": "a"}, {"field": "b", "operator": "near"}]}

        with pytest.raises(InvalidFilterExpression):
            self.handler.execute(config, PEOPLE, CONTEXT)

    def test_invalid_logic(self):
        with pytest.raises(InvalidStepConfig):
            self.handler.execute({"logic": "xor", "conditions": [{"field": "a"}]}, PEOPLE, CONTEXT)


class TestRegexFilter:
    """Test cases for RegexFilter."""

    def setup_method(self):
        self.handler = RegexFilter()
        self.emails = [{"email": "ann@corp.com"}, {"email": "BO@CORP.COM"}, {"email": "cy@home.org"}]

    def test_match(self):
        result = self.handler.execute({"field": "email", "pattern": r"@corp\.com$"}, self.emails, CONTEXT)

        assert result == [{"email": "ann@corp.com"}]

    def test_ignore_case_flag(self):
        result = self.handler.execute({"field": "email", "pattern": "@corp", "flags": "i"}, self.emails, CONTEXT)

        assert len(result) == 2

    def test_invert(self):
        result = self.handler.execute({"field": "email", "pattern": "@corp", "invert": True}, self.emails, CONTEXT)

        assert result == [{"email": "BO@CORP.COM"}, {"email": "cy@home.org"}]

    def test_bad_pattern(self):
        with pytest.raises(InvalidFilterExpression):
            self.handler.execute({"field": "email", "pattern": "("}, self.emails, CONTEXT)

    def test_bad_flag(self):
        with pytest.raises(InvalidFilterExpression):
            self.handler.execute({"field": "email", "pattern": "a", "flags": "x"}, self.emails, CONTEXT)


class TestDateFilter:
    """Test cases for DateFilter."""

    def setup_method(self):
        self.handler = DateFilter()
        self.events = [
            {"id": 1, "at": "2024-01-10T12:00:00Z"},
            {"id": 2, "at": "2024-02-01"},
            {"id": 3, "at": "2024-03-15T00:00:00+00:00"},
            {"id": 4, "at": "not a date"},
        ]

    def test_window(self):
        config = {"field": "at", "after": "2024-01-15", "before": "2024-03-01"}

        assert [e["id"] for e in self.handler.execute(config, self.events, CONTEXT)] == [2]

    def test_bounds_are_inclusive(self):
        config = {"field": "at", "after": "2024-02-01", "before": "2024-02-01"}

        assert [e["id"] for e in self.handler.execute(config, self.events, CONTEXT)] == [2]

    def test_open_ended(self):
        config = {"field": "at", "after": "2024-02-01"}

        assert [e["id"] for e in self.handler.execute(config, self.events, CONTEXT)] == [2, 3]

    def test_requires_a_bound(self):
        with pytest.raises(InvalidStepConfig):
            self.handler.execute({"field": "at"}, self.events, CONTEXT)

    def test_invalid_bound(self):
        with pytest.raises(InvalidStepConfig) as exc_info:
            self.handler.execute({"field": "at", "before": "someday"}, self.events, CONTEXT)

        assert exc_info.value.field == "before"


class TestDedupFilter:
    """Test cases for DedupFilter."""

    def setup_method(self):
        self.handler = DedupFilter()
        self.rows = [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}, {"id": 1, "v": "c"}, {"id": 2, "v": "b"}]

    def test_whole_record(self):
        assert self.handler.execute({}, self.rows, CONTEXT) == self.rows[:3]

    def test_by_field_keep_first(self):
        assert self.handler.execute({"fields": ["id"]}, self.rows, CONTEXT) == self.rows[:2]

    def test_by_field_keep_last(self):
        result = self.handler.execute({"fields": ["id"], "keep": "last"}, self.rows, CONTEXT)

        assert result == [{"id": 1, "v": "c"}, {"id": 2, "v": "b"}]

    def test_requires_list(self):
        with pytest.raises(InvalidInputData):
            self.handler.execute({}, {"id": 1}, CONTEXT)


class TestValidationFilter:
    """Test cases for ValidationFilter."""

    def setup_method(self):
        self.handler = ValidationFilter()
        self.rows = [
            {"email": "a@x.io", "age": 30},
            {"email": "", "age": 22},
            {"email": "c@x.io", "age": "old"},
        ]
        self.config = {"requiredFields": ["email"], "fieldTypes": {"age": "integer"}}

    def test_keep_valid(self):
        assert self.handler.execute(self.config, self.rows, CONTEXT) == [self.rows[0]]

    def test_keep_invalid(self):
        config = {**self.config, "keep": "invalid"}

        assert self.handler.execute(config, self.rows, CONTEXT) == self.rows[1:]

    def test_unknown_type_name(self):
        with pytest.raises(InvalidStepConfig):
            self.handler.execute({"fieldTypes": {"age": "decimal"}}, self.rows, CONTEXT)


class TestAdvancedFilter:
    """Test cases for AdvancedFilter."""

    def setup_method(self):
        self.handler = AdvancedFilter()

    def test_expression(self):
        result = self.handler.execute({"expression": "[?city == 'Oslo'].name"}, PEOPLE, CONTEXT)

        assert result == ["Ann"]

    def test_invalid_expression(self):
        with pytest.raises(InvalidFilterExpression):
            self.handler.execute({"expression": "[?city =="}, PEOPLE, CONTEXT)
