from functools import partial

from stepflow.config import Settings
from stepflow.domain.port import StepHandler
from stepflow.handlers.action import (
    CalculateAction,
    CustomExpressionAction,
    FileOperationAction,
    FormatTextAction,
    MergeDataAction,
    TransformAction,
)
from stepflow.handlers.browser import PlaywrightSession, SessionPool
from stepflow.handlers.destination import (
    ApiDestination,
    CloudDestination,
    DatabaseDestination,
    EmailDestination,
    FileDestination,
)
from stepflow.handlers.filter import (
    AdvancedFilter,
    ComplexFilter,
    DateFilter,
    DedupFilter,
    RegexFilter,
    SimpleFilter,
    ValidationFilter,
)
from stepflow.handlers.interface import (
    ClickInterface,
    ExtractInterface,
    NavigateInterface,
    ScreenshotInterface,
    TypeInterface,
    WaitInterface,
)
from stepflow.handlers.source import (
    DatabaseSource,
    LocalFileSource,
    ManualInputSource,
    OneDriveSource,
    RestApiSource,
    SharePointSource,
)


def default_handlers(settings: Settings | None = None) -> list[StepHandler]:
    """
    Returns one instance of every built-in handler, configured from settings.

    :param settings: Application settings; defaults are used when omitted
    :type settings: Settings | None
    :returns: The built-in handlers
    :rtype: list[StepHandler]
    """
    settings = settings if settings is not None else Settings()
    sessions = SessionPool(partial(PlaywrightSession, settings.browser))
    return [
        ManualInputSource(),
        LocalFileSource(),
        RestApiSource(),
        DatabaseSource(),
        SharePointSource(settings.graph),
        OneDriveSource(settings.graph),
        SimpleFilter(),
        ComplexFilter(),
        RegexFilter(),
        DateFilter(),
        DedupFilter(),
        ValidationFilter(),
        AdvancedFilter(),
        TransformAction(),
        CalculateAction(),
        FormatTextAction(),
        MergeDataAction(),
        FileOperationAction(),
        CustomExpressionAction(),
        NavigateInterface(settings.browser, sessions=sessions),
        ClickInterface(settings.browser, sessions=sessions),
        TypeInterface(settings.browser, sessions=sessions),
        ExtractInterface(settings.browser, sessions=sessions),
        WaitInterface(settings.browser, sessions=sessions),
        ScreenshotInterface(settings.browser, sessions=sessions),
        FileDestination(),
        ApiDestination(),
        DatabaseDestination(),
        EmailDestination(settings.smtp),
        CloudDestination(settings.graph),
    ]
