import concurrent.futures
import contextvars
import time
from typing import Any

import structlog

from stepflow.application.port import HandlerRegistry, ResultStore, StepExecutor, TaskRunner
from stepflow.domain.entity import AutomationStep, ExecutionResult
from stepflow.domain.errors import StepTimeout
from stepflow.domain.port import StepHandler
from stepflow.domain.service import validate_step
from stepflow.domain.value_object import ExecutionContext, ExecutionOptions
from stepflow.log import capture_step_logs

logger = structlog.get_logger(__name__)


class HandlerStepExecutor(StepExecutor):
    """Executes a step by resolving its handler from the registry and recording the outcome."""

    def __init__(
        self,
        registry: HandlerRegistry,
        result_store: ResultStore,
        task_runner: TaskRunner,
        execution_options: ExecutionOptions | None = None,
    ):
        """
        Initializes with a handler registry, result store and task runner.

        :param registry: Resolves step-type tags to handlers
        :type registry: HandlerRegistry
        :param result_store: Receives every result under its step id
        :type result_store: ResultStore
        :param task_runner: Invokes the resolved handler
        :type task_runner: TaskRunner
        :param execution_options: Per-step timeout settings
        :type execution_options: ExecutionOptions | None
        """
        self.registry = registry
        self.result_store = result_store
        self.task_runner = task_runner
        self.execution_options = execution_options if execution_options is not None else ExecutionOptions()

    def execute(self, step: AutomationStep, input_data: Any, context: ExecutionContext) -> ExecutionResult:
        """
        Executes the step and returns a normalized result.

        Handler failures, unknown step types and timeouts all come back as a
        failed result; only a malformed step raises.

        :param step: The step to execute
        :type step: AutomationStep
        :param input_data: The step input
        :type input_data: Any
        :param context: The execution context
        :type context: ExecutionContext
        :returns: The step result, also written to the result store
        :rtype: ExecutionResult
        :raises InvalidStepDefinition: If the step lacks an id or type
        """
        validate_step(step)
        log = logger.bind(step_id=step.id, step_type=step.type, mode=context.execution_mode.value)
        log.info("step_started", name=step.name)

        start = time.perf_counter()
        with capture_step_logs() as logs:
            try:
                handler = self.registry.resolve(step.type)
                data = self._run(handler, step, input_data, context)
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                log.warning(
                    "step_failed",
                    error=str(e),
                    error_type=e.__class__.__name__,
                    retryable=getattr(e, "retryable", False),
                    duration_ms=duration_ms,
                )
                result = ExecutionResult.failed(step.id, e, duration_ms=duration_ms, logs=list(logs))
            else:
                duration_ms = (time.perf_counter() - start) * 1000
                log.info("step_succeeded", duration_ms=duration_ms)
                result = ExecutionResult.succeeded(step.id, data, duration_ms=duration_ms, logs=list(logs))

        self.result_store.set(step.id, result)
        return result

    def _run(self, handler: StepHandler, step: AutomationStep, input_data: Any, context: ExecutionContext) -> Any:
        timeout = self.execution_options.step_timeout
        if timeout is None:
            return self.task_runner.run(handler, step.config, input_data, context)

        # The worker is abandoned on timeout; shutdown(wait=False) keeps the caller unblocked.
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"step-{step.id}")
        try:
            ctx = contextvars.copy_context()
            future = pool.submit(ctx.run, self.task_runner.run, handler, step.config, input_data, context)
            try:
                return future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                if future.done():
                    # the handler itself raised a TimeoutError
                    raise
                raise StepTimeout(step.id, timeout) from None
        finally:
            pool.shutdown(wait=False)

    def get_execution_result(self, step_id: str) -> ExecutionResult | None:
        """
        Returns the latest result for the step id, or None.

        :param step_id: The step id
        :type step_id: str
        :returns: The cached result, or None if the step has no result
        :rtype: ExecutionResult | None
        """
        try:
            return self.result_store.get(step_id)
        except KeyError:
            return None

    def clear_results(self) -> None:
        """Empties the result store."""
        self.result_store.clear()
        logger.info("results_cleared")

    def end_execution(self, context: ExecutionContext) -> None:
        """
        Calls ``end_execution`` on every registered handler.

        A handler that fails to release is logged and skipped so the others
        still get their turn.

        :param context: The context the run's steps were executed with
        :type context: ExecutionContext
        """
        for handler in self.registry.handlers():
            try:
                handler.end_execution(context)
            except Exception as e:
                logger.warning(
                    "handler_release_failed",
                    step_type=str(handler.step_type),
                    execution_id=context.execution_id,
                    error=str(e),
                )
