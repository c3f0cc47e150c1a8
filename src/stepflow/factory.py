from stepflow.backend import BackendType
from stepflow.client import Client
from stepflow.config import Settings
from stepflow.domain.port import StepHandler
from stepflow.infrastructure.adapter.in_memory.client import create as create_in_memory_client
from stepflow.infrastructure.adapter.sqlite.client import create as create_sqlite_client
from stepflow.infrastructure.provider import default_handlers
from stepflow.log import ensure_logging


def create(
    backend: BackendType | str | None = None,
    handlers: list[StepHandler] | None = None,
    settings: Settings | None = None,
    **kwargs,
) -> Client:
    """
    Factory function to create a Client with the specified backend.

    :param backend: The result store backend; defaults to ``settings.store.backend``
    :type backend: BackendType | str | None
    :param handlers: Handlers to register; defaults to the built-in set
    :type handlers: list[StepHandler] | None
    :param settings: Application settings; defaults are used when omitted
    :type settings: Settings | None
    :param kwargs: Additional backend-specific options (``db_path`` for SQLite)
    :returns: A configured Client instance
    :rtype: Client
    :raises ValueError: If the backend type is unsupported
    """
    settings = settings if settings is not None else Settings()
    ensure_logging(settings.logging.level, settings.logging.format)

    backend = BackendType(backend if backend is not None else settings.store.backend)
    if handlers is None:
        handlers = default_handlers(settings)
    options = settings.execution.to_options()

    if backend == BackendType.IN_MEMORY:
        return create_in_memory_client(handlers, execution_options=options)

    elif backend == BackendType.SQLITE:
        db_path = kwargs.get("db_path", settings.store.db_path)
        return create_sqlite_client(handlers, db_path=db_path, execution_options=options)

    else:
        raise ValueError(f"Unsupported backend: {backend}")
