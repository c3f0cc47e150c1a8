"""
Category base classes shared by the built-in handlers.

Each category class pins the ``category`` and converts the low-level errors
its handlers typically hit into the matching engine error kind. Errors that
are already a ``StepflowError`` pass through untouched.
"""

import re
import sqlite3
from typing import Any

import httpx

from stepflow.domain.errors import (
    DestinationWriteError,
    InvalidInputData,
    SourceUnavailable,
    StepflowError,
    TransformError,
)
from stepflow.domain.port import StepHandler
from stepflow.domain.value_object import ExecutionContext, StepCategory

__all__ = [
    "MISSING",
    "get_path",
    "has_path",
    "as_records",
    "SourceHandler",
    "FilterHandler",
    "ActionHandler",
    "InterfaceHandler",
    "DestinationHandler",
]

MISSING = object()

_PATH_PARTS = re.compile(r"[^.\[\]]+|\[\d+\]")


def get_path(obj: Any, path: str, default: Any = None) -> Any:
    """
    Look up a dotted path such as ``user.emails[0].address``.

    :param obj: The record to read from
    :type obj: Any
    :param path: Dot-separated keys with optional ``[index]`` parts
    :type path: str
    :param default: Returned when any part of the path is absent
    :type default: Any
    :returns: The referenced value or ``default``
    :rtype: Any
    """
    current = obj
    for part in _PATH_PARTS.findall(path):
        try:
            if part.startswith("["):
                current = current[int(part[1:-1])]
            elif isinstance(current, dict):
                current = current[part]
            else:
                return default
        except (KeyError, IndexError, TypeError):
            return default
    return current


def has_path(obj: Any, path: str) -> bool:
    return get_path(obj, path, MISSING) is not MISSING


def as_records(data: Any) -> list[Any]:
    """Treat a single record as a one-element list; ``None`` becomes an empty list."""
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


class SourceHandler(StepHandler):
    """Produces data from an external system. Ignores its input."""

    category = StepCategory.SOURCE

    def execute(self, config, input_data: Any, context: ExecutionContext) -> Any:
        try:
            return super().execute(config, input_data, context)
        except StepflowError:
            raise
        except (OSError, httpx.HTTPError, sqlite3.Error) as e:
            raise SourceUnavailable(f"{self.step_type} failed: {e}") from e


class FilterHandler(StepHandler):
    """Returns a subset of its input."""

    category = StepCategory.FILTER

    def execute(self, config, input_data: Any, context: ExecutionContext) -> Any:
        try:
            return super().execute(config, input_data, context)
        except StepflowError:
            raise
        except TypeError as e:
            raise InvalidInputData(f"{self.step_type} cannot process input: {e}") from e


class ActionHandler(StepHandler):
    """Transforms its input."""

    category = StepCategory.ACTION

    def execute(self, config, input_data: Any, context: ExecutionContext) -> Any:
        try:
            return super().execute(config, input_data, context)
        except StepflowError:
            raise
        except (TypeError, ValueError, KeyError, OSError) as e:
            raise TransformError(f"{self.step_type} failed: {e}") from e


class InterfaceHandler(StepHandler):
    """Drives a browser session. Error mapping lives in the browser session."""

    category = StepCategory.INTERFACE


class DestinationHandler(StepHandler):
    """Writes its input to a sink and returns a write receipt."""

    category = StepCategory.DESTINATION

    def execute(self, config, input_data: Any, context: ExecutionContext) -> Any:
        try:
            return super().execute(config, input_data, context)
        except StepflowError:
            raise
        except (OSError, httpx.HTTPError, sqlite3.Error, TypeError, ValueError) as e:
            raise DestinationWriteError(f"{self.step_type} failed: {e}") from e
