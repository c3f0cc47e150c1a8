from typing import Any

from stepflow.application.port import TaskRunner
from stepflow.domain.port import StepHandler
from stepflow.domain.value_object import ExecutionContext


class InMemoryTaskRunner(TaskRunner):
    def run(self, handler: StepHandler, config: dict[str, Any], input_data: Any, context: ExecutionContext) -> Any:
        """
        Execute a handler in the calling thread.

        :param handler: The handler instance to execute
        :type handler: StepHandler
        :param config: The step config
        :type config: dict[str, Any]
        :param input_data: The step input
        :type input_data: Any
        :param context: The execution context
        :type context: ExecutionContext
        :returns: The result of handler execution
        :rtype: Any
        """
        return handler.execute(config, input_data, context)
