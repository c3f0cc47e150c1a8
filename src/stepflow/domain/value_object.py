from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import msgspec


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ExecutionOptions:
    step_timeout: float | None = None
    workflow_timeout: float | None = None


class ExecutionMode(str, Enum):
    TEST = "test"
    WORKFLOW = "workflow"


class WorkflowStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class StepCategory(str, Enum):
    SOURCE = "source"
    FILTER = "filter"
    ACTION = "action"
    INTERFACE = "interface"
    DESTINATION = "destination"


class StepType(str, Enum):
    """Closed vocabulary of step-type tags shipped with the engine."""

    SOURCE_MANUAL_INPUT = "source_manual_input"
    SOURCE_FILE_LOCAL = "source_file_local"
    SOURCE_API_REST = "source_api_rest"
    SOURCE_DATABASE = "source_database"
    SOURCE_SHAREPOINT = "source_sharepoint"
    SOURCE_ONEDRIVE = "source_onedrive"

    FILTER_SIMPLE = "filter_simple"
    FILTER_COMPLEX = "filter_complex"
    FILTER_REGEX = "filter_regex"
    FILTER_DATE = "filter_date"
    FILTER_DEDUP = "filter_dedup"
    FILTER_VALIDATION = "filter_validation"
    FILTER_ADVANCED = "filter_advanced"

    ACTION_TRANSFORM = "action_transform"
    ACTION_CALCULATE = "action_calculate"
    ACTION_FORMAT_TEXT = "action_format_text"
    ACTION_MERGE_DATA = "action_merge_data"
    ACTION_FILE_OPERATION = "action_file_operation"
    ACTION_CUSTOM_EXPRESSION = "action_custom_expression"

    INTERFACE_NAVIGATE = "interface_navigate"
    INTERFACE_CLICK = "interface_click"
    INTERFACE_TYPE = "interface_type"
    INTERFACE_EXTRACT = "interface_extract"
    INTERFACE_WAIT = "interface_wait"
    INTERFACE_SCREENSHOT = "interface_screenshot"

    DESTINATION_FILE = "destination_file"
    DESTINATION_API = "destination_api"
    DESTINATION_DATABASE = "destination_database"
    DESTINATION_EMAIL = "destination_email"
    DESTINATION_CLOUD = "destination_cloud"

    def __str__(self) -> str:
        return self.value

    @property
    def category(self) -> StepCategory:
        return StepCategory(self.value.split("_", 1)[0])


class ExecutionContext(msgspec.Struct, frozen=True, rename="camel"):
    """Request-scoped values handed to every handler call. Never persisted."""

    user_id: str
    execution_mode: ExecutionMode
    timestamp: str
    execution_id: str | None = None

    @classmethod
    def for_test(cls, user_id: str) -> "ExecutionContext":
        return cls(user_id=user_id, execution_mode=ExecutionMode.TEST, timestamp=utc_now())

    @classmethod
    def for_workflow(cls, user_id: str, execution_id: str | None = None) -> "ExecutionContext":
        return cls(
            user_id=user_id,
            execution_mode=ExecutionMode.WORKFLOW,
            timestamp=utc_now(),
            execution_id=execution_id,
        )


class ExecutionError(msgspec.Struct, omit_defaults=True):
    """Structured failure description carried by a failed result."""

    message: str
    type: str
    field: str | None = None
    retryable: bool = False


class LogEntry(msgspec.Struct):
    """A log line emitted while a step ran."""

    timestamp: str
    level: str
    message: str
    metadata: dict[str, Any] = {}
