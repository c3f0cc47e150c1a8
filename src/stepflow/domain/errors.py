"""Engine error taxonomy.

Every failure kind that can appear in an ``ExecutionResult.error.type`` has a
class here; the class name is the kind reported to callers.
"""

from typing import Any


class StepflowError(Exception):
    """Base exception for all engine and handler errors."""

    retryable = False

    def __init__(self, message: str, context: dict[str, Any] | None = None, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if retryable is not None:
            self.retryable = retryable

    @property
    def kind(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize the error for logging.

        :returns: Dictionary with type, message, context and retryable flag
        :rtype: dict[str, Any]
        """
        return {
            "type": self.kind,
            "message": self.message,
            "context": self.context,
            "retryable": self.retryable,
        }


class ConfigError(StepflowError):
    """Settings file or environment could not be loaded or validated."""

    def __init__(self, message: str, config_path: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class InvalidStepDefinition(StepflowError):
    """A step is missing its id or type, or is not a step object at all."""


class EmptyWorkflow(StepflowError):
    """A workflow was submitted without any steps."""


class UnknownStepType(StepflowError):
    """No handler is registered for the step-type tag."""

    def __init__(self, step_type: str, **kwargs):
        super().__init__(f"Unknown step type: {step_type}", **kwargs)
        self.context["step_type"] = step_type


class InvalidStepConfig(StepflowError):
    """The step config is missing required keys or has values of the wrong shape."""

    def __init__(self, message: str, field: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        self.context["field"] = field


class SourceUnavailable(StepflowError):
    """A source could not reach or authenticate against its external system."""

    retryable = True


class InvalidFilterExpression(StepflowError):
    """A filter operator, pattern or expression is malformed."""


class InvalidInputData(StepflowError):
    """The input handed to a step has a shape the step cannot process."""


class TransformError(StepflowError):
    """An action could not apply its transformation."""

    def __init__(self, message: str, field: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        self.context["field"] = field


class InterfaceTimeout(StepflowError):
    """A UI-automation navigation or wait exceeded its bound."""

    retryable = True

    def __init__(self, message: str, url: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.context["url"] = url


class ElementNotFound(StepflowError):
    """A UI-automation selector matched nothing."""

    retryable = True

    def __init__(self, message: str, selector: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = "selector"
        self.context["selector"] = selector


class DestinationWriteError(StepflowError):
    """A destination could not write to its sink. Never retried automatically."""


class StepTimeout(StepflowError):
    """A step handler did not finish within the per-step timeout."""

    retryable = True

    def __init__(self, step_id: str, timeout: float, **kwargs):
        super().__init__(f"Step '{step_id}' timed out after {timeout} seconds", **kwargs)
        self.context["timeout"] = timeout


class WorkflowTimeout(StepflowError):
    """A workflow exceeded its overall time ceiling before a step could start."""

    def __init__(self, step_id: str, timeout: float, **kwargs):
        super().__init__(f"Workflow timed out after {timeout} seconds before step '{step_id}' started", **kwargs)
        self.context["timeout"] = timeout
