import re
from typing import Any, ClassVar

import msgspec

from stepflow.domain.errors import InvalidStepConfig
from stepflow.domain.value_object import ExecutionContext, StepCategory

_FIELD_PATTERNS = (
    re.compile(r"missing required field `([^`]+)`"),
    re.compile(r"at `\$\.([^`\[]+)"),
)


def offending_field(error: msgspec.ValidationError) -> str | None:
    """Extract the config key named in a msgspec validation message, if any."""
    for pattern in _FIELD_PATTERNS:
        match = pattern.search(str(error))
        if match:
            return match.group(1)
    return None


class StepHandler:
    """Base class for all step handlers.

    Concrete handlers set ``step_type`` and define ``run``. Intermediate
    category classes leave ``step_type`` unset and are not checked.
    """

    step_type: ClassVar[str | None] = None
    category: ClassVar[StepCategory | None] = None
    Options: ClassVar[type[msgspec.Struct] | None] = None

    def __init_subclass__(cls, **kwargs):
        """
        Ensures concrete handlers define a 'run' method.

        :param kwargs: Additional keyword arguments passed to super().__init_subclass__
        :raises TypeError: If a handler with a step_type doesn't define 'run'
        """
        super().__init_subclass__(**kwargs)

        if cls.__dict__.get("step_type") is None:
            return
        if "run" not in cls.__dict__:
            raise TypeError(f"{cls.__name__} must define a 'run' method")

    def execute(self, config: dict[str, Any] | None, input_data: Any, context: ExecutionContext) -> Any:
        """
        Parse the config and run the handler.

        :param config: The step config as supplied by the caller
        :type config: dict[str, Any] | None
        :param input_data: Output of the previous step, or the initial input
        :type input_data: Any
        :param context: Request-scoped execution context
        :type context: ExecutionContext
        :returns: The step output
        :rtype: Any
        :raises InvalidStepConfig: If the config does not match the handler's options
        """
        options = self.parse_config(config)
        return self.run(options, input_data, context)

    def parse_config(self, config: dict[str, Any] | None) -> Any:
        """
        Convert the raw config mapping into this handler's ``Options`` struct.

        :param config: Raw config mapping
        :type config: dict[str, Any] | None
        :returns: The parsed options, or the raw mapping when the handler declares none
        :rtype: Any
        :raises InvalidStepConfig: If a required key is missing or has the wrong type
        """
        if config is None:
            config = {}
        if self.Options is None:
            return config
        try:
            return msgspec.convert(config, type=self.Options, strict=False)
        except msgspec.ValidationError as e:
            raise InvalidStepConfig(f"Invalid config for {self.step_type}: {e}", field=offending_field(e)) from None

    def run(self, options: Any, input_data: Any, context: ExecutionContext) -> Any:
        """Handler body. Implemented by concrete handlers."""
        raise NotImplementedError("Handlers must implement the run method")

    def end_execution(self, context: ExecutionContext) -> None:
        """Release anything this handler kept open for the workflow run in ``context``."""
