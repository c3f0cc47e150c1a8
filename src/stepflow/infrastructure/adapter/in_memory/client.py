from stepflow.application.adapter import HandlerStepExecutor
from stepflow.client import Client
from stepflow.domain.port import StepHandler
from stepflow.domain.value_object import ExecutionOptions
from stepflow.infrastructure.adapter.in_memory.handler_registry import StaticHandlerRegistry
from stepflow.infrastructure.adapter.in_memory.result_store import InMemoryResultStore
from stepflow.infrastructure.adapter.in_memory.task_runner import InMemoryTaskRunner
from stepflow.infrastructure.adapter.in_memory.workflow_engine import SequentialWorkflowEngine


def create(handlers: list[StepHandler], execution_options: ExecutionOptions | None = None) -> Client:
    """
    Creates a Client whose results live in process memory.

    :param handlers: Handler instances to register
    :type handlers: list[StepHandler]
    :param execution_options: Step timeout and workflow ceiling
    :type execution_options: ExecutionOptions | None
    :returns: Configured Client instance
    :rtype: Client
    """
    registry = StaticHandlerRegistry.from_handlers(handlers)
    result_store = InMemoryResultStore()
    step_executor = HandlerStepExecutor(
        registry=registry,
        result_store=result_store,
        task_runner=InMemoryTaskRunner(),
        execution_options=execution_options,
    )
    workflow_engine = SequentialWorkflowEngine(step_executor, execution_options=execution_options)

    return Client(
        step_executor=step_executor,
        workflow_engine=workflow_engine,
        registry=registry,
        result_store=result_store,
    )
