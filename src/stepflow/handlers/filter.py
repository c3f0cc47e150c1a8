import json
import re
from datetime import datetime, timezone
from typing import Any, Callable, Literal

import jmespath
import msgspec
import structlog
from jmespath.exceptions import JMESPathError

from stepflow.domain.errors import InvalidFilterExpression, InvalidInputData, InvalidStepConfig
from stepflow.domain.value_object import ExecutionContext, StepType
from stepflow.handlers.base import MISSING, FilterHandler, get_path

__all__ = [
    "SimpleFilter",
    "ComplexFilter",
    "RegexFilter",
    "DateFilter",
    "DedupFilter",
    "ValidationFilter",
    "AdvancedFilter",
]

logger = structlog.get_logger(__name__)


def select(input_data: Any, predicate: Callable[[Any], bool]) -> Any:
    """
    Apply a predicate to a record or a list of records.

    A list yields the matching items, a single record yields itself or None,
    and None passes through.

    :raises InvalidInputData: If the input is neither a record nor a list
    """
    if input_data is None:
        return None
    if isinstance(input_data, list):
        selected = [item for item in input_data if predicate(item)]
        logger.info("filter_applied", input_count=len(input_data), output_count=len(selected))
        return selected
    if isinstance(input_data, dict):
        return input_data if predicate(input_data) else None
    raise InvalidInputData(f"Expected a record or a list of records, got {type(input_data).__name__}")


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare(op: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        a, b = _number(actual), _number(expected)
        return a is not None and b is not None and op(a, b)

    return check


def _regex(actual: Any, pattern: Any, case_sensitive: bool = False) -> bool:
    try:
        compiled = re.compile(str(pattern), 0 if case_sensitive else re.IGNORECASE)
    except re.error as e:
        raise InvalidFilterExpression(f"Invalid regular expression {pattern!r}: {e}") from None
    return actual is not MISSING and actual is not None and compiled.search(str(actual)) is not None


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda a, b: a == b,
    "not_equals": lambda a, b: a != b,
    "contains": lambda a, b: b in a if isinstance(a, (list, dict)) else a is not None and str(b) in str(a),
    "greater_than": _compare(lambda a, b: a > b),
    "less_than": _compare(lambda a, b: a < b),
    "greater_equal": _compare(lambda a, b: a >= b),
    "less_equal": _compare(lambda a, b: a <= b),
}


class Condition(msgspec.Struct, rename="camel"):
    field: str
    operator: str = "equals"
    value: Any = None
    case_sensitive: bool = False

    def check_operator(self) -> None:
        if self.operator != "regex" and self.operator not in OPERATORS:
            raise InvalidFilterExpression(f"Unknown operator: {self.operator}")

    def matches(self, record: Any) -> bool:
        actual = get_path(record, self.field, MISSING)
        if self.operator == "regex":
            return _regex(actual, self.value, self.case_sensitive)
        if actual is MISSING:
            return False
        expected = self.value
        if not self.case_sensitive and isinstance(actual, str) and isinstance(expected, str):
            actual, expected = actual.lower(), expected.lower()
        return OPERATORS[self.operator](actual, expected)


class SimpleFilter(FilterHandler):
    """Keeps records where one field satisfies an operator."""

    step_type = StepType.FILTER_SIMPLE
    Options = Condition

    def run(self, options: Condition, input_data: Any, context: ExecutionContext) -> Any:
        options.check_operator()
        if isinstance(input_data, dict) and get_path(input_data, options.field, MISSING) is MISSING:
            raise InvalidStepConfig(f"Field '{options.field}' not found in input", field=options.field)
        return select(input_data, options.matches)


class ComplexFilter(FilterHandler):
    """Keeps records matching all (``and``) or any (``or``) of several conditions."""

    step_type = StepType.FILTER_COMPLEX

    class Options(msgspec.Struct, rename="camel"):
        conditions: list[Condition]
        logic: Literal["and", "or"] = "and"

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        if not options.conditions:
            raise InvalidStepConfig("At least one condition is required", field="conditions")
        for condition in options.conditions:
            condition.check_operator()
        combine = all if options.logic == "and" else any
        return select(input_data, lambda record: combine(c.matches(record) for c in options.conditions))


_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


class RegexFilter(FilterHandler):
    """Keeps records whose field matches a pattern, or the ones that don't when inverted."""

    step_type = StepType.FILTER_REGEX

    class Options(msgspec.Struct, rename="camel"):
        field: str
        pattern: str
        flags: str = ""
        invert: bool = False

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        flags = 0
        for flag in options.flags:
            if flag not in _REGEX_FLAGS:
                raise InvalidFilterExpression(f"Unknown regex flag: {flag}")
            flags |= _REGEX_FLAGS[flag]
        try:
            pattern = re.compile(options.pattern, flags)
        except re.error as e:
            raise InvalidFilterExpression(f"Invalid regular expression {options.pattern!r}: {e}") from None

        def predicate(record: Any) -> bool:
            value = get_path(record, options.field)
            matched = value is not None and pattern.search(str(value)) is not None
            return matched != options.invert

        return select(input_data, predicate)


def _parse_date(value: Any) -> datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class DateFilter(FilterHandler):
    """Keeps records whose date field falls within ``after`` and ``before`` (inclusive)."""

    step_type = StepType.FILTER_DATE

    class Options(msgspec.Struct, rename="camel"):
        field: str
        after: str | None = None
        before: str | None = None

    def _bound(self, value: str | None, name: str) -> datetime | None:
        if value is None:
            return None
        parsed = _parse_date(value)
        if parsed is None:
            raise InvalidStepConfig(f"'{name}' is not an ISO-8601 date: {value!r}", field=name)
        return parsed

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        after = self._bound(options.after, "after")
        before = self._bound(options.before, "before")
        if after is None and before is None:
            raise InvalidStepConfig("One of 'after' or 'before' is required", field="after")

        def predicate(record: Any) -> bool:
            moment = _parse_date(get_path(record, options.field))
            if moment is None:
                return False
            return (after is None or moment >= after) and (before is None or moment <= before)

        return select(input_data, predicate)


class DedupFilter(FilterHandler):
    """Drops duplicate records, comparing the listed fields or the whole record."""

    step_type = StepType.FILTER_DEDUP

    class Options(msgspec.Struct, rename="camel"):
        fields: list[str] = []
        keep: Literal["first", "last"] = "first"

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        if input_data is None:
            return None
        if not isinstance(input_data, list):
            raise InvalidInputData("Deduplication needs a list of records")

        def key(record: Any) -> str:
            if options.fields:
                record = [get_path(record, f) for f in options.fields]
            return json.dumps(record, sort_keys=True, default=str)

        records = input_data if options.keep == "first" else list(reversed(input_data))
        seen: set[str] = set()
        unique = []
        for record in records:
            k = key(record)
            if k not in seen:
                seen.add(k)
                unique.append(record)
        if options.keep == "last":
            unique.reverse()
        logger.info("duplicates_removed", input_count=len(input_data), output_count=len(unique))
        return unique


_TYPE_CHECKS: dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
    "null": lambda v: v is None,
}


class ValidationFilter(FilterHandler):
    """Keeps records that have the required fields with the expected types."""

    step_type = StepType.FILTER_VALIDATION

    class Options(msgspec.Struct, rename="camel"):
        required_fields: list[str] = []
        field_types: dict[str, Literal["string", "number", "integer", "boolean", "array", "object", "null"]] = {}
        keep: Literal["valid", "invalid"] = "valid"

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        def valid(record: Any) -> bool:
            for field in options.required_fields:
                if get_path(record, field) in (None, ""):
                    return False
            for field, expected in options.field_types.items():
                value = get_path(record, field, MISSING)
                if value is not MISSING and not _TYPE_CHECKS[expected](value):
                    return False
            return True

        if options.keep == "valid":
            return select(input_data, valid)
        return select(input_data, lambda record: not valid(record))


class AdvancedFilter(FilterHandler):
    """Evaluates a JMESPath expression against the whole input."""

    step_type = StepType.FILTER_ADVANCED

    class Options(msgspec.Struct, rename="camel"):
        expression: str

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        try:
            return jmespath.compile(options.expression).search(input_data)
        except JMESPathError as e:
            raise InvalidFilterExpression(f"Invalid expression {options.expression!r}: {e}") from None
