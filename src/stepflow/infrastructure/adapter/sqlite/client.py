from stepflow.application.adapter import HandlerStepExecutor
from stepflow.client import Client
from stepflow.domain.port import StepHandler
from stepflow.domain.value_object import ExecutionOptions
from stepflow.infrastructure.adapter.in_memory.handler_registry import StaticHandlerRegistry
from stepflow.infrastructure.adapter.in_memory.task_runner import InMemoryTaskRunner
from stepflow.infrastructure.adapter.in_memory.workflow_engine import SequentialWorkflowEngine
from stepflow.infrastructure.adapter.sqlite.result_store import SQLiteResultStore


def create(
    handlers: list[StepHandler],
    db_path: str = ":memory:",
    execution_options: ExecutionOptions | None = None,
) -> Client:
    """
    Creates a Client whose results are kept in a SQLite database.

    :param handlers: Handler instances to register
    :type handlers: list[StepHandler]
    :param db_path: Path to SQLite database file (defaults to in-memory)
    :type db_path: str
    :param execution_options: Step timeout and workflow ceiling
    :type execution_options: ExecutionOptions | None
    :returns: Configured Client instance
    :rtype: Client
    """
    registry = StaticHandlerRegistry.from_handlers(handlers)
    result_store = SQLiteResultStore(db_path=db_path)
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
