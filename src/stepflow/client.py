from typing import Any

from stepflow.application.port import HandlerRegistry, ResultStore, StepExecutor, WorkflowEngine
from stepflow.application.service import check_workflow, load_step, load_steps
from stepflow.domain.entity import AutomationStep, Execution, ExecutionResult, WorkflowValidation
from stepflow.domain.value_object import ExecutionContext


class Client:
    """
    Unified client façade for step and workflow execution.

    The Client builds a fresh execution context for every call and routes a
    single step to the step executor and a list of steps to the workflow
    engine. Both share one result store.
    """

    def __init__(
        self,
        step_executor: StepExecutor,
        workflow_engine: WorkflowEngine,
        registry: HandlerRegistry,
        result_store: ResultStore,
    ):
        """
        Initialize the client with its engine components.

        :param step_executor: Runs and records single steps
        :type step_executor: StepExecutor
        :param workflow_engine: Runs ordered step lists
        :type workflow_engine: WorkflowEngine
        :param registry: Resolves step-type tags to handlers
        :type registry: HandlerRegistry
        :param result_store: Holds the latest result per step id
        :type result_store: ResultStore
        """
        self._executor = step_executor
        self._engine = workflow_engine
        self._registry = registry
        self._store = result_store

    def execute_step(
        self,
        step: dict | AutomationStep,
        input_data: Any = None,
        user_id: str = "system",
    ) -> ExecutionResult:
        """
        Execute one step in test mode.

        :param step: The step definition
        :type step: dict | AutomationStep
        :param input_data: Input handed to the step
        :type input_data: Any
        :param user_id: Identity of the caller
        :type user_id: str
        :returns: The step result, successful or not
        :rtype: ExecutionResult
        :raises InvalidStepDefinition: If the step lacks an id or type
        """
        context = ExecutionContext.for_test(user_id)
        return self._executor.execute(load_step(step), input_data, context)

    def execute_workflow(
        self,
        steps: list[dict | AutomationStep],
        input_data: Any = None,
        user_id: str = "system",
        execution_id: str | None = None,
    ) -> Execution:
        """
        Execute steps in order, stopping at the first failure.

        :param steps: The ordered step definitions
        :type steps: list[dict | AutomationStep]
        :param input_data: Input handed to the first step
        :type input_data: Any
        :param user_id: Identity of the caller
        :type user_id: str
        :param execution_id: Optional execution identifier
        :type execution_id: str | None
        :returns: The aggregate result of the run
        :rtype: Execution
        :raises EmptyWorkflow: If no steps are given
        :raises InvalidStepDefinition: If any step is malformed
        """
        steps = load_steps(steps)
        context = ExecutionContext.for_workflow(user_id, execution_id)
        return self._engine.run(steps, input_data, context, execution_id)

    def validate_workflow(self, steps: list[dict | AutomationStep]) -> WorkflowValidation:
        """
        Check steps, handler configs and connections without running anything.

        :param steps: The ordered step definitions
        :type steps: list[dict | AutomationStep]
        :returns: The validity flag and every problem found
        :rtype: WorkflowValidation
        """
        return check_workflow(steps, self._registry)

    def get_execution_result(self, step_id: str) -> ExecutionResult | None:
        return self._executor.get_execution_result(step_id)

    def clear_results(self) -> None:
        self._executor.clear_results()

    def step_types(self) -> list[str]:
        """
        Get all registered step-type tags.

        :returns: Sorted list of tags
        :rtype: list[str]
        """
        return self._registry.step_types()

    def close(self) -> None:
        """Release the result store's resources, if it holds any."""
        close = getattr(self._store, "close", None)
        if close is not None:
            close()
