from __future__ import annotations

"""
Shared headless-browser session.

One Chromium process serves every concurrent worker of a run. Pages are
cheap and opened per link; the process is launched lazily, reused while the
launch configuration is unchanged and relaunched (under a lock) when the
configuration changes or the process died.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright


# Sandbox and locale flags for every launch
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--lang=ru-RU,ru",
    "--disable-blink-features=AutomationControlled",
    "--window-size=1366,768",
]
DEVTOOLS_ARG = "--auto-open-devtools-for-tabs"
VIEWPORT = {"width": 1366, "height": 768}
LOCALE = "ru-RU"
LAUNCH_TIMEOUT_MS = 60000

# Chromium messages when the user-data-dir is locked by another process
PROFILE_BUSY_MARKERS = (
    "processsingleton",
    "singletonlock",
    "profile appears to be in use",
    "already running for",
    "user data directory is already in use",
)


class BrowserLaunchError(RuntimeError):
    """The browser process could not be started."""


class ProfileBusyError(BrowserLaunchError):
    """Another process holds the lock on the configured profile directory."""


@dataclass(frozen=True)
class SessionConfig:
    """Launch configuration; two configs are equal iff all fields match."""
    headless: bool = True
    slow_mo_ms: float = 0
    devtools: bool = False
    profile_dir: Optional[str] = None

    def launch_args(self) -> list[str]:
        args = list(LAUNCH_ARGS)
        if self.devtools:
            args.append(DEVTOOLS_ARG)
        return args


class BrowserSession:
    """Live browser handle plus the configuration it was launched with.

    With a ``profile_dir`` the session is a persistent context (``browser`` is
    None); otherwise every page gets its own context on ``browser``.
    """

    def __init__(self, config: SessionConfig, *, browser: Optional[Browser] = None, context: Optional[BrowserContext] = None) -> None:
        self.config = config
        self.browser = browser
        self.context = context
        self._alive = True
        if browser is not None:
            browser.on("disconnected", self._mark_dead)
        elif context is not None:
            context.on("close", self._mark_dead)

    def _mark_dead(self, *_: Any) -> None:
        self._alive = False

    @property
    def alive(self) -> bool:
        if not self._alive:
            return False
        if self.browser is not None:
            return self.browser.is_connected()
        return self.context is not None

    async def new_page(self, user_agent: Optional[str] = None) -> Page:
        if self.browser is not None:
            kwargs: dict[str, Any] = {"viewport": VIEWPORT, "locale": LOCALE}
            if user_agent:
                kwargs["user_agent"] = user_agent
            context = await self.browser.new_context(**kwargs)
            return await context.new_page()
        if self.context is None:
            raise BrowserLaunchError("session has no browser context")
        page = await self.context.new_page()
        if user_agent:
            await page.set_extra_http_headers({"User-Agent": user_agent})
        return page

    async def release_page(self, page: Page) -> None:
        """Close the page and, for per-page contexts, its context."""
        try:
            await page.close()
        except Exception:
            pass
        if self.browser is not None:
            try:
                await page.context.close()
            except Exception:
                pass

    async def close(self) -> None:
        self._alive = False
        if self.browser is not None:
            await self.browser.close()
        elif self.context is not None:
            await self.context.close()


def _is_profile_busy(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return any(marker in msg for marker in PROFILE_BUSY_MARKERS)


class BrowserSessionManager:
    """Owns the single reusable browser process of this service.

    - ``acquire(config)`` returns the live session for ``config``, launching
      or relaunching as needed; relaunches are serialized by a lock so
      concurrent callers never start duplicate processes.
    - ``open_page(config, user_agent)`` yields a page that is closed on every
      exit path.
    - ``close()`` tears everything down; idempotent.
    """

    def __init__(self, *, playwright_factory=async_playwright) -> None:
        self._playwright_factory = playwright_factory
        self._playwright: Optional[Playwright] = None
        self._session: Optional[BrowserSession] = None
        self._lock = asyncio.Lock()
        self.launch_count = 0

    @property
    def session(self) -> Optional[BrowserSession]:
        return self._session

    def _reusable(self, config: SessionConfig) -> Optional[BrowserSession]:
        s = self._session
        if s is not None and s.config == config and s.alive:
            return s
        return None

    async def acquire(self, config: SessionConfig) -> BrowserSession:
        session = self._reusable(config)
        if session is not None:
            return session
        async with self._lock:
            # Another caller may have published the session while we waited
            session = self._reusable(config)
            if session is not None:
                return session
            await self._close_session_quietly()
            self._session = await self._launch(config)
            return self._session

    async def _launch(self, config: SessionConfig) -> BrowserSession:
        try:
            if self._playwright is None:
                self._playwright = await self._playwright_factory().start()
            chromium = self._playwright.chromium
            if config.profile_dir:
                context = await chromium.launch_persistent_context(
                    config.profile_dir,
                    headless=config.headless,
                    slow_mo=config.slow_mo_ms,
                    args=config.launch_args(),
                    viewport=VIEWPORT,
                    locale=LOCALE,
                    timeout=LAUNCH_TIMEOUT_MS,
                )
                session = BrowserSession(config, context=context)
            else:
                browser = await chromium.launch(
                    headless=config.headless,
                    slow_mo=config.slow_mo_ms,
                    args=config.launch_args(),
                    timeout=LAUNCH_TIMEOUT_MS,
                )
                session = BrowserSession(config, browser=browser)
        except Exception as e:
            if config.profile_dir and _is_profile_busy(e):
                raise ProfileBusyError(f"browser profile is busy: {config.profile_dir}") from e
            raise BrowserLaunchError(f"browser launch failed: {e}") from e
        self.launch_count += 1
        return session

    async def _close_session_quietly(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await session.close()
        except Exception:
            pass

    @asynccontextmanager
    async def open_page(self, config: SessionConfig, user_agent: Optional[str] = None) -> AsyncIterator[Page]:
        session = await self.acquire(config)
        page = await session.new_page(user_agent)
        try:
            yield page
        finally:
            await session.release_page(page)

    async def close(self) -> None:
        async with self._lock:
            await self._close_session_quietly()
            pw, self._playwright = self._playwright, None
            if pw is not None:
                try:
                    await pw.stop()
                except Exception:
                    pass


async def evaluate_in_page(page: Page, script: str, arg: Any = None) -> Any:
    """Run ``script`` inside the page and return its (JSON-boxed) result."""
    if arg is None:
        return await page.evaluate(script)
    return await page.evaluate(script, arg)
