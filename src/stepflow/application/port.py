from abc import ABC, abstractmethod
from typing import Any

from stepflow.domain.entity import AutomationStep, Execution, ExecutionResult
from stepflow.domain.port import StepHandler
from stepflow.domain.value_object import ExecutionContext


class HandlerRegistry(ABC):
    """Abstract base class defining handler resolution by step-type tag."""

    @abstractmethod
    def resolve(self, step_type: str) -> StepHandler:
        """
        Resolves and returns the handler for a step-type tag.

        :param step_type: The step-type tag
        :type step_type: str
        :returns: The handler registered for the tag
        :rtype: StepHandler
        :raises UnknownStepType: If no handler is registered for the tag
        """
        ...

    @abstractmethod
    def step_types(self) -> list[str]:
        """
        List the registered step-type tags.

        :returns: Sorted list of tags
        :rtype: list[str]
        """

    @abstractmethod
    def handlers(self) -> list[StepHandler]:
        """
        List the distinct registered handler instances.

        :returns: Handlers in registration order
        :rtype: list[StepHandler]
        """


class ResultStore(ABC):
    """Abstract interface for storing the latest execution result per step id."""

    @abstractmethod
    def set(self, key: str, value: ExecutionResult):
        """
        Store a result under the given key, replacing any previous one.

        :param key: The step id
        :type key: str
        :param value: The result to store
        :type value: ExecutionResult
        """

    @abstractmethod
    def get(self, key: str) -> ExecutionResult:
        """
        Retrieve a result by key.

        :param key: The step id
        :type key: str
        :returns: The stored result
        :rtype: ExecutionResult
        :raises: KeyError if the key is not found
        """

    @abstractmethod
    def clear(self) -> None:
        """Remove every stored result."""

    @abstractmethod
    def keys(self) -> list[str]:
        """
        List the step ids that currently have a stored result.

        :returns: List of step ids
        :rtype: list[str]
        """


class TaskRunner(ABC):
    """Abstract interface for invoking a handler."""

    @abstractmethod
    def run(self, handler: StepHandler, config: dict[str, Any], input_data: Any, context: ExecutionContext) -> Any:
        """
        Run a handler against a config and input.

        :param handler: The handler to run
        :type handler: StepHandler
        :param config: The step config
        :type config: dict[str, Any]
        :param input_data: The step input
        :type input_data: Any
        :param context: The execution context
        :type context: ExecutionContext
        :returns: The handler output
        :rtype: Any
        """


class StepExecutor(ABC):
    """Abstract executor interface for executing one step and recording its result."""

    @abstractmethod
    def execute(self, step: AutomationStep, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        """
        Execute a step and return its normalized result.

        :param step: The step to execute
        :type step: AutomationStep
        :param input_data: The step input
        :type input_data: Any
        :param context: The execution context
        :type context: ExecutionContext
        :returns: The result of executing the step
        :rtype: ExecutionResult
        :raises InvalidStepDefinition: If the step lacks an id or type
        """
        ...

    @abstractmethod
    def get_execution_result(self, step_id: str) -> ExecutionResult | None:
        """
        Look up the latest result for a step id.

        :param step_id: The step id
        :type step_id: str
        :returns: The cached result, or None
        :rtype: ExecutionResult | None
        """

    @abstractmethod
    def clear_results(self) -> None:
        """Empty the result store."""

    def end_execution(self, context: ExecutionContext) -> None:
        """
        Let handlers release per-run resources once a workflow run is over.

        :param context: The context the run's steps were executed with
        :type context: ExecutionContext
        """


class WorkflowEngine(ABC):
    """Abstract base class defining the workflow engine interface."""

    @abstractmethod
    def run(
        self,
        steps: list[AutomationStep],
        input_data: Any,
        context: ExecutionContext,
        execution_id: str | None = None,
    ) -> Execution:
        """
        Runs the given steps in order, chaining outputs to inputs.

        :param steps: The ordered steps to execute
        :type steps: list[AutomationStep]
        :param input_data: Input handed to the first step
        :type input_data: Any
        :param context: The execution context
        :type context: ExecutionContext
        :param execution_id: Optional execution identifier
        :type execution_id: str | None
        :returns: The aggregate result of the run
        :rtype: Execution
        :raises EmptyWorkflow: If no steps are given
        """
        ...
