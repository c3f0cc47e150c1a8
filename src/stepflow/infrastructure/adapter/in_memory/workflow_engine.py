import time
import uuid
from typing import Any

import msgspec
import structlog

from stepflow.application.port import StepExecutor, WorkflowEngine
from stepflow.domain.entity import AutomationStep, Execution, ExecutionResult
from stepflow.domain.errors import EmptyWorkflow, WorkflowTimeout
from stepflow.domain.value_object import ExecutionContext, ExecutionOptions, WorkflowStatus

logger = structlog.get_logger(__name__)


class UUIDGenerator:
    """Generates unique identifiers using UUID."""

    def generate(self) -> str:
        """
        Generate a unique identifier.

        :returns: A unique identifier string
        :rtype: str
        """
        return uuid.uuid4().hex


class SequentialWorkflowEngine(WorkflowEngine):
    """Workflow engine that runs steps one after another, stopping at the first failure."""

    def __init__(self, step_executor: StepExecutor, execution_options: ExecutionOptions | None = None):
        """
        Initializes with the step executor used for every step.

        :param step_executor: Executes and records each step
        :type step_executor: StepExecutor
        :param execution_options: Carries the optional workflow time ceiling
        :type execution_options: ExecutionOptions | None
        """
        self.step_executor = step_executor
        self.execution_options = execution_options if execution_options is not None else ExecutionOptions()
        self.ids = UUIDGenerator()

    def run(
        self,
        steps: list[AutomationStep],
        input_data: Any,
        context: ExecutionContext,
        execution_id: str | None = None,
    ) -> Execution:
        """
        Executes each step in order and returns an Execution.

        Each successful step's data becomes the next step's input. The run
        stops after the first failed result; that result is the last entry
        of ``results``.

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
        if not steps:
            raise EmptyWorkflow("Workflow has no steps")
        if execution_id is None:
            execution_id = context.execution_id or self.ids.generate()
        if context.execution_id != execution_id:
            context = msgspec.structs.replace(context, execution_id=execution_id)

        log = logger.bind(execution_id=execution_id, user_id=context.user_id)
        log.info("workflow_started", total_steps=len(steps))

        ceiling = self.execution_options.workflow_timeout
        start = time.perf_counter()
        results: list[ExecutionResult] = []
        current_data = input_data
        status = WorkflowStatus.SUCCESS

        try:
            for step in steps:
                step_id = getattr(step, "id", None) or "<unknown>"
                if ceiling is not None and time.perf_counter() - start > ceiling:
                    results.append(ExecutionResult.failed(step_id, WorkflowTimeout(step_id, ceiling)))
                    status = WorkflowStatus.FAILED
                    log.warning("workflow_timed_out", step_id=step_id, timeout=ceiling)
                    break

                try:
                    result = self.step_executor.execute(step, current_data, context)
                except Exception as e:
                    results.append(ExecutionResult.failed(step_id, e))
                    status = WorkflowStatus.FAILED
                    log.error("workflow_step_faulted", step_id=step_id, error=str(e), error_type=e.__class__.__name__)
                    break

                results.append(result)
                if not result.success:
                    status = WorkflowStatus.FAILED
                    log.warning("workflow_stopped", failed_step_id=step_id, error_type=result.error.type)
                    break
                current_data = result.data
        finally:
            self.step_executor.end_execution(context)

        duration_ms = (time.perf_counter() - start) * 1000
        log.info("workflow_finished", status=status.value, completed_steps=len(results), duration_ms=duration_ms)
        return Execution(
            id=execution_id,
            status=status.value,
            results=results,
            total_steps=len(steps),
            completed_steps=len(results),
            final_data=current_data,
            duration_ms=duration_ms,
        )
