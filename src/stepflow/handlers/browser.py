"""
Browser sessions for interface steps.

A step run on its own gets a throwaway session. Interface steps inside a
workflow run share one session per ``(user_id, execution_id)``, held by a
``SessionPool`` until the run ends, so page state carries from one step to
the next.
"""

import concurrent.futures
import contextvars
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

import structlog
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from stepflow.config import BrowserSettings
from stepflow.domain.errors import ElementNotFound, InterfaceTimeout

logger = structlog.get_logger(__name__)


class BrowserSession(ABC):
    """Operations interface handlers need from a browser page. Timeouts are in milliseconds."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        pass

    @property
    @abstractmethod
    def url(self) -> str:
        pass

    @abstractmethod
    def title(self) -> str:
        pass

    @abstractmethod
    def goto(self, url: str, timeout: int) -> None:
        """
        Navigate the page.

        :raises InterfaceTimeout: If the page does not load in time
        """
        pass

    @abstractmethod
    def click(self, selector: str, timeout: int) -> None:
        """:raises ElementNotFound: If nothing matches the selector"""
        pass

    @abstractmethod
    def fill(self, selector: str, text: str, timeout: int, clear: bool = True) -> None:
        """:raises ElementNotFound: If nothing matches the selector"""
        pass

    @abstractmethod
    def extract(self, selector: str, timeout: int, attribute: str | None = None, multiple: bool = False) -> Any:
        """:raises ElementNotFound: If nothing matches the selector"""
        pass

    @abstractmethod
    def wait_for(self, selector: str, state: str, timeout: int) -> None:
        """:raises InterfaceTimeout: If the selector does not reach the state in time"""
        pass

    @abstractmethod
    def pause(self, duration_ms: int) -> None:
        pass

    @abstractmethod
    def screenshot(self, path: str, full_page: bool = True) -> None:
        pass


class PlaywrightSession(BrowserSession):
    """BrowserSession backed by Playwright's synchronous API."""

    def __init__(self, settings: BrowserSettings):
        self.settings = settings
        self._playwright = None
        self._browser = None
        self._page = None

    def __enter__(self):
        self._playwright = sync_playwright().start()
        try:
            launcher = getattr(self._playwright, self.settings.browser)
            self._browser = launcher.launch(headless=self.settings.headless)
            self._page = self._browser.new_page()
        except PlaywrightError:
            self._playwright.stop()
            self._playwright = None
            raise
        logger.debug("browser_opened", browser=self.settings.browser, headless=self.settings.headless)
        return self

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None
        self._page = None

    @property
    def url(self) -> str:
        return self._page.url

    def title(self) -> str:
        return self._page.title()

    def goto(self, url: str, timeout: int) -> None:
        try:
            self._page.goto(url, timeout=timeout)
        except PlaywrightTimeoutError:
            raise InterfaceTimeout(f"Navigation to {url} timed out after {timeout} ms", url=url) from None
        except PlaywrightError as e:
            raise InterfaceTimeout(f"Navigation to {url} failed: {e.message}", url=url) from None

    def _element(self, selector: str, timeout: int):
        try:
            self._page.wait_for_selector(selector, state="attached", timeout=timeout)
        except PlaywrightTimeoutError:
            raise ElementNotFound(f"No element matches {selector!r}", selector=selector) from None
        return self._page.locator(selector)

    def click(self, selector: str, timeout: int) -> None:
        element = self._element(selector, timeout).first
        try:
            element.click(timeout=timeout)
        except PlaywrightTimeoutError:
            raise InterfaceTimeout(f"Element {selector!r} was not clickable in time", url=self.url) from None

    def fill(self, selector: str, text: str, timeout: int, clear: bool = True) -> None:
        element = self._element(selector, timeout).first
        try:
            if clear:
                element.fill(text, timeout=timeout)
            else:
                element.press_sequentially(text, timeout=timeout)
        except PlaywrightTimeoutError:
            raise InterfaceTimeout(f"Element {selector!r} was not editable in time", url=self.url) from None

    def extract(self, selector: str, timeout: int, attribute: str | None = None, multiple: bool = False) -> Any:
        locator = self._element(selector, timeout)
        elements = locator.all() if multiple else [locator.first]
        if attribute:
            values = [el.get_attribute(attribute) for el in elements]
        else:
            values = [el.inner_text() for el in elements]
        return values if multiple else values[0]

    def wait_for(self, selector: str, state: str, timeout: int) -> None:
        try:
            self._page.wait_for_selector(selector, state=state, timeout=timeout)
        except PlaywrightTimeoutError:
            raise InterfaceTimeout(f"{selector!r} did not become {state} within {timeout} ms", url=self.url) from None

    def pause(self, duration_ms: int) -> None:
        self._page.wait_for_timeout(duration_ms)

    def screenshot(self, path: str, full_page: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._page.screenshot(path=path, full_page=full_page)


class PinnedSession:
    """A browser session that is only ever touched from its own worker thread.

    Playwright's sync objects belong to the thread that created them, while
    each step may run on a different thread.
    """

    def __init__(self, factory: Callable[[], BrowserSession], name: str = "browser"):
        self._worker = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        try:
            self.session = self._worker.submit(lambda: factory().__enter__()).result()
        except BaseException:
            self._worker.shutdown(wait=False)
            raise

    def call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Run ``fn(session, *args)`` on the session thread and wait for it.

        :param fn: Callable receiving the session as its first argument
        :type fn: Callable[..., Any]
        :returns: Whatever ``fn`` returns
        :rtype: Any
        :raises Exception: Whatever ``fn`` raises
        """
        ctx = contextvars.copy_context()
        return self._worker.submit(ctx.run, fn, self.session, *args).result()

    def close(self) -> None:
        try:
            self._worker.submit(self.session.close).result()
        finally:
            self._worker.shutdown(wait=False)


class SessionPool:
    """Open sessions keyed by ``(user_id, execution_id)``."""

    def __init__(self, factory: Callable[[], BrowserSession]):
        """
        :param factory: Builds an unopened session; the pool enters it on its worker thread
        :type factory: Callable[[], BrowserSession]
        """
        self.factory = factory
        self._lock = threading.Lock()
        self._sessions: dict[tuple[str, str], PinnedSession] = {}

    def acquire(self, key: tuple[str, str]) -> PinnedSession:
        """
        Return the session for the key, opening one on first use.

        :param key: ``(user_id, execution_id)`` of the run
        :type key: tuple[str, str]
        :returns: The session shared by the run's interface steps
        :rtype: PinnedSession
        """
        with self._lock:
            pinned = self._sessions.get(key)
            if pinned is None:
                pinned = PinnedSession(self.factory, name=f"browser-{key[1]}")
                self._sessions[key] = pinned
                logger.info("browser_session_created", user_id=key[0], execution_id=key[1])
            return pinned

    def release(self, key: tuple[str, str]) -> None:
        """Close and forget the session for the key. Unknown keys are ignored."""
        with self._lock:
            pinned = self._sessions.pop(key, None)
        if pinned is not None:
            pinned.close()
            logger.info("browser_session_closed", user_id=key[0], execution_id=key[1])

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
