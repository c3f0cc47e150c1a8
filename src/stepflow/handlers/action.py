import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

import jmespath
import msgspec
import structlog
from jmespath.exceptions import JMESPathError

from stepflow.domain.errors import InvalidStepConfig, TransformError
from stepflow.domain.value_object import ExecutionContext, StepType
from stepflow.handlers.base import MISSING, ActionHandler, as_records, get_path

__all__ = [
    "TransformAction",
    "CalculateAction",
    "FormatTextAction",
    "MergeDataAction",
    "FileOperationAction",
    "CustomExpressionAction",
]

logger = structlog.get_logger(__name__)


def per_record(input_data: Any, fn):
    """Apply ``fn`` to each record of a list, or to a single record."""
    if isinstance(input_data, list):
        return [fn(item) for item in input_data]
    return fn(input_data)


def flatten_object(obj: Any, prefix: str = "") -> Any:
    """Collapse nested dictionaries into dotted keys. Lists are kept as values."""
    if not isinstance(obj, dict):
        return obj
    flat: dict[str, Any] = {}
    for key, value in obj.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict) and value:
            flat.update(flatten_object(value, name))
        else:
            flat[name] = value
    return flat


def remove_empty(obj: Any) -> Any:
    """Recursively drop None and empty-string values."""
    if isinstance(obj, list):
        return [remove_empty(item) for item in obj]
    if isinstance(obj, dict):
        return {k: remove_empty(v) for k, v in obj.items() if v is not None and v != ""}
    return obj


def _flatten_list(data: list[Any]) -> list[Any]:
    flat = []
    for item in data:
        if isinstance(item, list):
            flat.extend(_flatten_list(item))
        else:
            flat.append(item)
    return flat


class TransformAction(ActionHandler):
    """Reshapes records: field mapping, flattening, grouping, sorting and cleanup."""

    step_type = StepType.ACTION_TRANSFORM

    class Options(msgspec.Struct, rename="camel"):
        transform_type: Literal["map", "flatten", "group", "sort", "flatten_object", "remove_empty"]
        mapping: dict[str, str] = {}
        group_by: str | None = None
        sort_by: str | None = None
        order: Literal["asc", "desc"] = "asc"

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        kind = options.transform_type
        logger.info("transform_started", transform_type=kind)

        if kind == "map":
            if not options.mapping:
                raise InvalidStepConfig("'mapping' is required for map", field="mapping")
            return per_record(input_data, lambda r: {new: get_path(r, old) for new, old in options.mapping.items()})
        if kind == "flatten":
            return _flatten_list(input_data) if isinstance(input_data, list) else [input_data]
        if kind == "flatten_object":
            return per_record(input_data, flatten_object)
        if kind == "remove_empty":
            return remove_empty(input_data)
        if kind == "group":
            return self._group(input_data, options)
        return self._sort(input_data, options)

    def _group(self, input_data: Any, options: Options) -> Any:
        if not options.group_by:
            raise InvalidStepConfig("'groupBy' is required for group", field="groupBy")
        if not isinstance(input_data, list):
            return input_data
        groups: dict[str, list[Any]] = {}
        for item in input_data:
            groups.setdefault(str(get_path(item, options.group_by)), []).append(item)
        return groups

    def _sort(self, input_data: Any, options: Options) -> Any:
        if not options.sort_by:
            raise InvalidStepConfig("'sortBy' is required for sort", field="sortBy")
        if not isinstance(input_data, list):
            return input_data
        present = [item for item in input_data if get_path(item, options.sort_by) is not None]
        absent = [item for item in input_data if get_path(item, options.sort_by) is None]
        try:
            present.sort(key=lambda item: get_path(item, options.sort_by), reverse=options.order == "desc")
        except TypeError:
            raise TransformError(f"Values of '{options.sort_by}' cannot be compared", field=options.sort_by) from None
        # records without the key always go last
        return present + absent


_AGGREGATES = ("sum", "avg", "min", "max", "count")


def _to_number(value: Any, field: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        raise TransformError(f"Value {value!r} of '{field}' is not a number", field=field) from None


class CalculateAction(ActionHandler):
    """Aggregates a numeric field over a list, or computes a new field per record."""

    step_type = StepType.ACTION_CALCULATE

    class Options(msgspec.Struct, rename="camel"):
        operation: Literal["sum", "avg", "min", "max", "count", "add", "subtract", "multiply", "divide"]
        field: str | None = None
        operand: float | None = None
        operand_field: str | None = None
        target: str | None = None
        precision: int | None = None

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        if options.operation in _AGGREGATES:
            return self._aggregate(options, as_records(input_data))
        if not options.field:
            raise InvalidStepConfig(f"'field' is required for {options.operation}", field="field")
        if options.operand is None and not options.operand_field:
            raise InvalidStepConfig(f"'operand' or 'operandField' is required for {options.operation}", field="operand")
        return per_record(input_data, lambda record: self._arithmetic(options, record))

    def _round(self, value: float, options: Options) -> float:
        return round(value, options.precision) if options.precision is not None else value

    def _aggregate(self, options: Options, records: list[Any]) -> dict[str, Any]:
        op = options.operation
        if op == "count":
            if options.field:
                records = [r for r in records if get_path(r, options.field, MISSING) is not MISSING]
            return {"operation": op, "field": options.field, "result": len(records)}
        if not options.field:
            raise InvalidStepConfig(f"'field' is required for {op}", field="field")

        values = [
            _to_number(value, options.field)
            for value in (get_path(r, options.field) for r in records)
            if value is not None
        ]
        if not values and op != "sum":
            raise TransformError(f"No numeric values of '{options.field}' to {op}", field=options.field)
        if op == "sum":
            result = sum(values)
        elif op == "avg":
            result = sum(values) / len(values)
        elif op == "min":
            result = min(values)
        else:
            result = max(values)
        logger.info("aggregate_calculated", operation=op, field=options.field, count=len(values))
        return {"operation": op, "field": options.field, "result": self._round(result, options)}

    def _arithmetic(self, options: Options, record: Any) -> Any:
        if not isinstance(record, dict):
            raise TransformError("Arithmetic needs records", field=options.field)
        left = _to_number(get_path(record, options.field), options.field)
        if options.operand_field:
            right = _to_number(get_path(record, options.operand_field), options.operand_field)
        else:
            right = options.operand

        op = options.operation
        if op == "add":
            value = left + right
        elif op == "subtract":
            value = left - right
        elif op == "multiply":
            value = left * right
        else:
            if right == 0:
                raise TransformError("Division by zero", field=options.operand_field or "operand")
            value = left / right
        return {**record, (options.target or options.field): self._round(value, options)}


class FormatTextAction(ActionHandler):
    """
    Renders a ``${path}`` template per record.

    A template that is exactly one placeholder returns the referenced value
    unchanged; otherwise placeholders are interpolated with ``str()``.
    """

    step_type = StepType.ACTION_FORMAT_TEXT

    _pattern = re.compile(r"\$\{([^}]+)\}")

    class Options(msgspec.Struct, rename="camel"):
        template: str
        target_field: str | None = None

    def _lookup(self, record: Any, token: str) -> Any:
        value = get_path(record, token.strip(), MISSING)
        if value is MISSING:
            raise TransformError(f"Unknown placeholder: {token}", field=token.strip())
        return value

    def render(self, template: str, record: Any) -> Any:
        m = self._pattern.fullmatch(template.strip())
        if m:
            return self._lookup(record, m.group(1))

        def repl(match: re.Match) -> str:
            value = self._lookup(record, match.group(1))
            return "" if value is None else str(value)

        return self._pattern.sub(repl, template)

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        def format_one(record: Any) -> Any:
            text = self.render(options.template, record)
            if options.target_field is None:
                return text
            if not isinstance(record, dict):
                raise TransformError("targetField needs records", field=options.target_field)
            return {**record, options.target_field: text}

        return per_record(input_data, format_one)


def deep_merge(base: Any, extra: Any) -> Any:
    if isinstance(base, dict) and isinstance(extra, dict):
        merged = dict(base)
        for key, value in extra.items():
            merged[key] = deep_merge(merged[key], value) if key in merged else value
        return merged
    return extra


class MergeDataAction(ActionHandler):
    """Merges configured data into the input."""

    step_type = StepType.ACTION_MERGE_DATA

    class Options(msgspec.Struct, rename="camel"):
        data: Any
        strategy: Literal["shallow", "deep", "concat"] = "shallow"

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        if options.strategy == "concat":
            return as_records(input_data) + as_records(options.data)
        if not isinstance(options.data, dict):
            raise TransformError(f"{options.strategy} merge needs an object in 'data'", field="data")

        def merge_one(record: Any) -> Any:
            if record is None:
                record = {}
            if not isinstance(record, dict):
                raise TransformError("Cannot merge an object into a non-object input", field="data")
            if options.strategy == "deep":
                return deep_merge(record, options.data)
            return {**record, **options.data}

        return per_record(input_data, merge_one)


class FileOperationAction(ActionHandler):
    """Copies, moves, deletes or lists local files."""

    step_type = StepType.ACTION_FILE_OPERATION

    class Options(msgspec.Struct, rename="camel"):
        operation: Literal["copy", "move", "delete", "list"]
        source: str | None = None
        destination: str | None = None
        pattern: str = "*"
        overwrite: bool = False

    def _source(self, options: Options, input_data: Any) -> Path:
        source = options.source
        if source is None and isinstance(input_data, dict):
            source = input_data.get("path")
        if not source:
            raise InvalidStepConfig(f"'source' is required for {options.operation}", field="source")
        return Path(source)

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        source = self._source(options, input_data)
        op = options.operation

        if op == "list":
            entries = []
            for entry in sorted(source.glob(options.pattern)):
                stat = entry.stat()
                entries.append(
                    {
                        "name": entry.name,
                        "path": str(entry),
                        "size": stat.st_size,
                        "isDirectory": entry.is_dir(),
                        "modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                    }
                )
            return entries

        if op == "delete":
            if source.is_dir():
                shutil.rmtree(source)
            else:
                source.unlink()
            logger.info("file_deleted", path=str(source))
            return {"operation": op, "source": str(source)}

        if not options.destination:
            raise InvalidStepConfig(f"'destination' is required for {op}", field="destination")
        destination = Path(options.destination)
        if destination.exists() and not options.overwrite:
            raise TransformError(f"Destination already exists: {destination}", field="destination")
        destination.parent.mkdir(parents=True, exist_ok=True)
        if op == "copy":
            if source.is_dir():
                shutil.copytree(source, destination, dirs_exist_ok=True)
            else:
                shutil.copy2(source, destination)
        else:
            shutil.move(str(source), str(destination))
        logger.info("file_transferred", operation=op, source=str(source), destination=str(destination))
        return {"operation": op, "source": str(source), "destination": str(destination)}


class CustomExpressionAction(ActionHandler):
    """Projects the input through a JMESPath expression."""

    step_type = StepType.ACTION_CUSTOM_EXPRESSION

    class Options(msgspec.Struct, rename="camel"):
        expression: str

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        try:
            return jmespath.compile(options.expression).search(input_data)
        except JMESPathError as e:
            raise TransformError(f"Expression failed: {e}", field="expression") from None
