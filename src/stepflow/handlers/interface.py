from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Callable, Literal

import msgspec
import structlog

from stepflow.config import BrowserSettings
from stepflow.domain.errors import InvalidStepConfig
from stepflow.domain.value_object import ExecutionContext, ExecutionMode, StepType
from stepflow.handlers.base import InterfaceHandler
from stepflow.handlers.browser import BrowserSession, PlaywrightSession, SessionPool

__all__ = [
    "NavigateInterface",
    "ClickInterface",
    "TypeInterface",
    "ExtractInterface",
    "WaitInterface",
    "ScreenshotInterface",
]

logger = structlog.get_logger(__name__)


def session_key(context: ExecutionContext) -> tuple[str, str] | None:
    """The pool key for a workflow run, or None for a standalone step."""
    if context.execution_mode != ExecutionMode.WORKFLOW or not context.execution_id:
        return None
    return (context.user_id, context.execution_id)


class _BrowserStep(InterfaceHandler):
    """Navigates to the step's URL if any, then runs one action in the run's browser session."""

    def __init__(
        self,
        settings: BrowserSettings | None = None,
        session_factory: Callable[[], BrowserSession] | None = None,
        sessions: SessionPool | None = None,
    ):
        self.settings = settings if settings is not None else BrowserSettings()
        if sessions is None:
            sessions = SessionPool(session_factory or partial(PlaywrightSession, self.settings))
        self.sessions = sessions

    def in_session(
        self,
        options: Any,
        context: ExecutionContext,
        action: Callable[[BrowserSession, int], Any],
        url: str | None = None,
    ) -> Any:
        url = url or options.url
        timeout = options.timeout or self.settings.default_timeout_ms

        def act(session: BrowserSession) -> Any:
            if url:
                session.goto(url, timeout)
                logger.info("page_loaded", url=url)
            return action(session, timeout)

        key = session_key(context)
        if key is not None:
            return self.sessions.acquire(key).call(act)
        with self.sessions.factory() as session:
            return act(session)

    def end_execution(self, context: ExecutionContext) -> None:
        key = session_key(context)
        if key is not None:
            self.sessions.release(key)


class NavigateInterface(_BrowserStep):
    """Loads a page and reports where the browser ended up."""

    step_type = StepType.INTERFACE_NAVIGATE

    class Options(msgspec.Struct, rename="camel"):
        url: str | None = None
        timeout: int | None = None

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        url = options.url
        if not url and isinstance(input_data, dict):
            url = input_data.get("url")
        if not url:
            raise InvalidStepConfig("'url' is required", field="url")
        return self.in_session(options, context, lambda s, timeout: {"url": s.url, "title": s.title()}, url=url)


class ClickInterface(_BrowserStep):
    step_type = StepType.INTERFACE_CLICK

    class Options(msgspec.Struct, rename="camel"):
        selector: str
        url: str | None = None
        timeout: int | None = None

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        def click(session: BrowserSession, timeout: int) -> Any:
            session.click(options.selector, timeout)
            logger.info("element_clicked", selector=options.selector)
            return {"clicked": options.selector, "url": session.url}

        return self.in_session(options, context, click)


class TypeInterface(_BrowserStep):
    step_type = StepType.INTERFACE_TYPE

    class Options(msgspec.Struct, rename="camel"):
        selector: str
        text: str
        clear: bool = True
        url: str | None = None
        timeout: int | None = None

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        def type_text(session: BrowserSession, timeout: int) -> Any:
            session.fill(options.selector, options.text, timeout, clear=options.clear)
            logger.info("text_typed", selector=options.selector, length=len(options.text))
            return {"typed": options.selector, "length": len(options.text)}

        return self.in_session(options, context, type_text)


class ExtractInterface(_BrowserStep):
    """Reads text or an attribute from one or all matching elements."""

    step_type = StepType.INTERFACE_EXTRACT

    class Options(msgspec.Struct, rename="camel"):
        selector: str
        attribute: str | None = None
        multiple: bool = False
        url: str | None = None
        timeout: int | None = None

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        return self.in_session(
            options,
            context,
            lambda s, timeout: s.extract(options.selector, timeout, options.attribute, options.multiple),
        )


class WaitInterface(_BrowserStep):
    """Waits for a selector state, or for a fixed duration."""

    step_type = StepType.INTERFACE_WAIT

    class Options(msgspec.Struct, rename="camel"):
        selector: str | None = None
        state: Literal["visible", "hidden", "attached", "detached"] = "visible"
        duration: int | None = None
        url: str | None = None
        timeout: int | None = None

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        if options.selector is None and options.duration is None:
            raise InvalidStepConfig("One of 'selector' or 'duration' is required", field="selector")

        def wait(session: BrowserSession, timeout: int) -> Any:
            if options.selector is not None:
                session.wait_for(options.selector, options.state, timeout)
                return {"selector": options.selector, "state": options.state}
            session.pause(options.duration)
            return {"waited": options.duration}

        return self.in_session(options, context, wait)


class ScreenshotInterface(_BrowserStep):
    step_type = StepType.INTERFACE_SCREENSHOT

    class Options(msgspec.Struct, rename="camel"):
        path: str | None = None
        full_page: bool = True
        url: str | None = None
        timeout: int | None = None

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        path = options.path
        if path is None:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
            prefix = context.execution_id or context.execution_mode.value
            path = str(Path(self.settings.screenshot_dir) / f"{prefix}-{stamp}.png")

        def capture(session: BrowserSession, timeout: int) -> Any:
            session.screenshot(path, full_page=options.full_page)
            logger.info("screenshot_saved", path=path)
            return {"path": path, "url": session.url}

        return self.in_session(options, context, capture)
