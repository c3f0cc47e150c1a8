from typing import Any, Literal

import msgspec

from stepflow.domain.errors import InvalidStepDefinition, StepflowError
from stepflow.domain.value_object import ExecutionError, LogEntry, WorkflowStatus, utc_now


class Position(msgspec.Struct):
    """Canvas coordinates of a step in the editor."""

    x: float = 0.0
    y: float = 0.0


class Connection(msgspec.Struct, rename="camel"):
    """Editor edge between two steps."""

    id: str
    source_id: str
    target_id: str
    source_port: str | None = None
    target_port: str | None = None


class AutomationStep(msgspec.Struct, rename="camel"):
    """A single typed operation within an automation.

    ``position`` and ``connections`` only matter to the visual editor; workflow
    runs follow list order.
    """

    id: str
    type: str
    name: str = ""
    config: dict[str, Any] = {}
    position: Position | None = None
    connections: list[Connection] = []

    def validate(self) -> None:
        """
        Validate the step identity.

        :raises InvalidStepDefinition: If the id or type is missing or empty
        """
        if not self.id or not isinstance(self.id, str):
            raise InvalidStepDefinition(f"Invalid step id: {self.id!r}")
        if not self.type or not isinstance(self.type, str):
            raise InvalidStepDefinition(f"Step {self.id} has no type")


class ExecutionResult(msgspec.Struct, rename="camel"):
    """Outcome of one step execution.

    Exactly one of ``data`` or ``error`` is set; the other stays UNSET and is
    omitted when encoded.
    """

    step_id: str
    success: bool
    timestamp: str
    data: Any = msgspec.UNSET
    error: ExecutionError | msgspec.UnsetType = msgspec.UNSET
    duration_ms: float = 0.0
    logs: list[LogEntry] = []

    @classmethod
    def succeeded(cls, step_id: str, data: Any, duration_ms: float = 0.0, logs: list[LogEntry] | None = None):
        return cls(
            step_id=step_id,
            success=True,
            timestamp=utc_now(),
            data=data,
            duration_ms=duration_ms,
            logs=logs or [],
        )

    @classmethod
    def failed(
        cls,
        step_id: str,
        exc: BaseException,
        duration_ms: float = 0.0,
        logs: list[LogEntry] | None = None,
    ):
        """
        Build a failed result from an exception.

        :param step_id: Id of the step that failed
        :type step_id: str
        :param exc: The exception raised while executing the step
        :type exc: BaseException
        :returns: A result with ``success=False`` and the error populated
        :rtype: ExecutionResult
        """
        message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        return cls(
            step_id=step_id,
            success=False,
            timestamp=utc_now(),
            error=ExecutionError(
                message=message,
                type=exc.__class__.__name__,
                field=getattr(exc, "field", None),
                retryable=isinstance(exc, StepflowError) and exc.retryable,
            ),
            duration_ms=duration_ms,
            logs=logs or [],
        )


class Execution(msgspec.Struct, rename="camel"):
    """Aggregate outcome of running a sequence of steps."""

    id: str
    status: Literal["success", "failed"]
    results: list[ExecutionResult]
    total_steps: int
    completed_steps: int
    final_data: Any = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == WorkflowStatus.SUCCESS

    def to_dict(self):
        """Convert the Execution to a dictionary."""
        return msgspec.to_builtins(self)

    def to_json(self) -> str:
        """Convert the Execution to a JSON string."""
        return msgspec.json.encode(self).decode()


class WorkflowValidation(msgspec.Struct):
    """Outcome of checking a workflow without running it."""

    valid: bool
    errors: list[str] = []
