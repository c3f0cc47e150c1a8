"""
Tests for interface handlers.

A scripted in-memory BrowserSession replaces Playwright so the handlers
can be exercised without a browser.
"""

import threading

import pytest

from stepflow.backend import BackendType
from stepflow.config import BrowserSettings, Settings
from stepflow.domain.errors import ElementNotFound, InterfaceTimeout, InvalidStepConfig
from stepflow.domain.value_object import ExecutionContext, StepCategory
from stepflow.factory import create
from stepflow.handlers.browser import BrowserSession, SessionPool
from stepflow.handlers.interface import (
    ClickInterface,
    ExtractInterface,
    NavigateInterface,
    ScreenshotInterface,
    TypeInterface,
    WaitInterface,
)

CONTEXT = ExecutionContext.for_test("u1")


class FakeSession(BrowserSession):
    """Records calls and serves a fixed page."""

    def __init__(self, elements=None, slow_urls=()):
        self.elements = elements or {}
        self.slow_urls = slow_urls
        self.calls = []
        self.closed = False
        self._url = "about:blank"

    def close(self):
        self.closed = True

    @property
    def url(self):
        return self._url

    def title(self):
        return "Example"

    def goto(self, url, timeout):
        self.calls.append(("goto", url, timeout))
        if url in self.slow_urls:
            raise InterfaceTimeout(f"Navigation to {url} timed out", url=url)
        self._url = url

    def _require(self, selector):
        if selector not in self.elements:
            raise ElementNotFound(f"No element matches {selector!r}", selector=selector)
        return self.elements[selector]

    def click(self, selector, timeout):
        self._require(selector)
        self.calls.append(("click", selector, timeout))

    def fill(self, selector, text, timeout, clear=True):
        self._require(selector)
        self.calls.append(("fill", selector, text, clear))

    def extract(self, selector, timeout, attribute=None, multiple=False):
        values = self._require(selector)
        if attribute:
            values = [f"{attribute}:{v}" for v in values]
        return values if multiple else values[0]

    def wait_for(self, selector, state, timeout):
        self.calls.append(("wait_for", selector, state, timeout))

    def pause(self, duration_ms):
        self.calls.append(("pause", duration_ms))

    def screenshot(self, path, full_page=True):
        self.calls.append(("screenshot", path, full_page))


class TestBrowserSteps:
    """Test cases for the interface handlers."""

    def setup_method(self):
        self.session = FakeSession(elements={"#go": ["Go"], "input[name=q]": [""], "li": ["one", "two"]})
        self.settings = BrowserSettings(default_timeout_ms=1234, screenshot_dir="/tmp/shots")

    def make(self, handler_class):
        return handler_class(self.settings, session_factory=lambda: self.session)

    def test_category(self):
        assert self.make(NavigateInterface).category == StepCategory.INTERFACE

    def test_navigate(self):
        result = self.make(NavigateInterface).execute({"url": "https://example.com"}, None, CONTEXT)

        assert result == {"url": "https://example.com", "title": "Example"}
        assert self.session.calls == [("goto", "https://example.com", 1234)]
        assert self.session.closed is True

    def test_navigate_url_from_input(self):
        result = self.make(NavigateInterface).execute({}, {"url": "https://from.input"}, CONTEXT)

        assert result["url"] == "https://from.input"

    def test_navigate_requires_url(self):
        with pytest.raises(InvalidStepConfig) as exc_info:
            self.make(NavigateInterface).execute({}, None, CONTEXT)

        assert exc_info.value.field == "url"

    def test_navigation_timeout_closes_session(self):
        self.session.slow_urls = ("https://slow.example",)

        with pytest.raises(InterfaceTimeout):
            self.make(NavigateInterface).execute({"url": "https://slow.example"}, None, CONTEXT)

        assert self.session.closed is True

    def test_click_with_explicit_timeout(self):
        result = self.make(ClickInterface).execute(
            {"selector": "#go", "url": "https://example.com", "timeout": 500}, None, CONTEXT
        )

        assert result == {"clicked": "#go", "url": "https://example.com"}
        assert self.session.calls[-1] == ("click", "#go", 500)

    def test_click_missing_element(self):
        with pytest.raises(ElementNotFound) as exc_info:
            self.make(ClickInterface).execute({"selector": "#nope"}, None, CONTEXT)

        assert exc_info.value.field == "selector"

    def test_type(self):
        result = self.make(TypeInterface).execute(
            {"selector": "input[name=q]", "text": "hello", "clear": False}, None, CONTEXT
        )

        assert result == {"typed": "input[name=q]", "length": 5}
        assert self.session.calls[-1] == ("fill", "input[name=q]", "hello", False)

    def test_extract_first(self):
        assert self.make(ExtractInterface).execute({"selector": "li"}, None, CONTEXT) == "one"

    def test_extract_multiple_attribute(self):
        result = self.make(ExtractInterface).execute(
            {"selector": "li", "attribute": "href", "multiple": True}, None, CONTEXT
        )

        assert result == ["href:one", "href:two"]

    def test_wait_for_selector(self):
        result = self.make(WaitInterface).execute({"selector": "#go", "state": "hidden"}, None, CONTEXT)

        assert result == {"selector": "#go", "state": "hidden"}
        assert self.session.calls[-1] == ("wait_for", "#go", "hidden", 1234)

    def test_wait_for_duration(self):
        assert self.make(WaitInterface).execute({"duration": 250}, None, CONTEXT) == {"waited": 250}
        assert self.session.calls[-1] == ("pause", 250)

    def test_wait_requires_selector_or_duration(self):
        with pytest.raises(InvalidStepConfig):
            self.make(WaitInterface).execute({}, None, CONTEXT)

    def test_wait_invalid_state(self):
        with pytest.raises(InvalidStepConfig):
            self.make(WaitInterface).execute({"selector": "#go", "state": "blinking"}, None, CONTEXT)

    def test_screenshot_explicit_path(self):
        result = self.make(ScreenshotInterface).execute(
            {"path": "/tmp/page.png", "fullPage": False}, None, CONTEXT
        )

        assert result == {"path": "/tmp/page.png", "url": "about:blank"}
        assert self.session.calls[-1] == ("screenshot", "/tmp/page.png", False)

    def test_screenshot_default_path(self):
        context = ExecutionContext.for_workflow("u1", execution_id="run-7")

        handler = self.make(ScreenshotInterface)

        result = handler.execute({}, None, context)
        handler.end_execution(context)

        assert result["path"].startswith("/tmp/shots/run-7-")
        assert result["path"].endswith(".png")
        assert self.session.closed is True


class ThreadAwareSession(FakeSession):
    """FakeSession that also records which threads touched it."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.threads = set()

    def __enter__(self):
        self.threads.add(threading.get_ident())
        return self

    def goto(self, url, timeout):
        self.threads.add(threading.get_ident())
        super().goto(url, timeout)

    def fill(self, selector, text, timeout, clear=True):
        self.threads.add(threading.get_ident())
        super().fill(selector, text, timeout, clear=clear)

    def click(self, selector, timeout):
        self.threads.add(threading.get_ident())
        super().click(selector, timeout)


class TestSessionReuse:
    """Test cases for sharing one browser session across a workflow run."""

    def setup_method(self):
        self.opened = []
        self.pool = SessionPool(self.open_session)
        settings = BrowserSettings(default_timeout_ms=1000)
        handlers = [
            handler_class(settings, sessions=self.pool)
            for handler_class in (NavigateInterface, TypeInterface, ClickInterface, ExtractInterface)
        ]
        self.client = create(BackendType.IN_MEMORY, handlers=handlers, settings=Settings(execution={"step_timeout": 5}))
        self.steps = [
            {"id": "open", "type": "interface_navigate", "config": {"url": "https://example.com/login"}},
            {"id": "search", "type": "interface_type", "config": {"selector": "input[name=q]", "text": "hello"}},
            {"id": "go", "type": "interface_click", "config": {"selector": "#go"}},
        ]

    def open_session(self):
        session = ThreadAwareSession(elements={"#go": ["Go"], "input[name=q]": [""]})
        self.opened.append(session)
        return session

    def test_steps_share_one_session(self):
        execution = self.client.execute_workflow(self.steps, user_id="u1")

        assert execution.status == "success"
        assert len(self.opened) == 1
        session = self.opened[0]
        assert session.calls == [
            ("goto", "https://example.com/login", 1000),
            ("fill", "input[name=q]", "hello", True),
            ("click", "#go", 1000),
        ]
        assert execution.results[2].data == {"clicked": "#go", "url": "https://example.com/login"}

    def test_session_stays_on_one_thread(self):
        self.client.execute_workflow(self.steps, user_id="u1")

        assert len(self.opened[0].threads) == 1

    def test_session_closed_when_run_ends(self):
        self.client.execute_workflow(self.steps, user_id="u1")

        assert self.opened[0].closed is True
        assert len(self.pool) == 0

    def test_session_closed_when_run_fails(self):
        steps = self.steps[:2] + [{"id": "go", "type": "interface_click", "config": {"selector": "#missing"}}]

        execution = self.client.execute_workflow(steps, user_id="u1")

        assert execution.status == "failed"
        assert execution.results[-1].error.type == "ElementNotFound"
        assert self.opened[0].closed is True
        assert len(self.pool) == 0

    def test_each_run_gets_its_own_session(self):
        self.client.execute_workflow(self.steps, user_id="u1")
        self.client.execute_workflow(self.steps, user_id="u1")

        assert len(self.opened) == 2

    def test_single_step_uses_throwaway_session(self):
        result = self.client.execute_step(self.steps[0], user_id="u1")

        assert result.success is True
        assert self.opened[0].closed is True
        assert len(self.pool) == 0

    def test_logs_from_session_thread_are_captured(self):
        execution = self.client.execute_workflow(self.steps, user_id="u1")

        assert "page_loaded" in [entry.message for entry in execution.results[0].logs]


class TestSessionPool:
    """Test cases for SessionPool."""

    def setup_method(self):
        self.session = FakeSession()
        self.pool = SessionPool(lambda: self.session)

    def test_acquire_reuses_open_session(self):
        first = self.pool.acquire(("u1", "run-1"))

        assert self.pool.acquire(("u1", "run-1")) is first
        assert ("u1", "run-1") in self.pool
        self.pool.release(("u1", "run-1"))

    def test_call_passes_session(self):
        pinned = self.pool.acquire(("u1", "run-1"))

        assert pinned.call(lambda session, suffix: session.title() + suffix, "!") == "Example!"
        self.pool.release(("u1", "run-1"))

    def test_call_propagates_errors(self):
        pinned = self.pool.acquire(("u1", "run-1"))

        with pytest.raises(ElementNotFound):
            pinned.call(lambda session: session.click("#nope", 10))
        self.pool.release(("u1", "run-1"))

    def test_release_unknown_key(self):
        self.pool.release(("u1", "never-opened"))

        assert len(self.pool) == 0
