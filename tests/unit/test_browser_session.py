import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from contactfinder.pipeline.browser import (
    DEVTOOLS_ARG,
    BrowserLaunchError,
    BrowserSessionManager,
    ProfileBusyError,
    SessionConfig,
)


def _fake_browser():
    browser = MagicMock()
    browser.is_connected.return_value = True
    browser.close = AsyncMock()
    page = MagicMock()
    page.close = AsyncMock()
    page.context.close = AsyncMock()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    browser.new_context = AsyncMock(return_value=context)
    return browser


def _manager(launch_side_effect=None, delay=0.0):
    pw = MagicMock()
    pw.stop = AsyncMock()

    async def launch(**kwargs):
        if delay:
            await asyncio.sleep(delay)
        if launch_side_effect is not None:
            raise launch_side_effect
        return _fake_browser()

    pw.chromium.launch = AsyncMock(side_effect=launch)
    pw.chromium.launch_persistent_context = AsyncMock(side_effect=launch_side_effect)
    starter = MagicMock()
    starter.start = AsyncMock(return_value=pw)
    factory = MagicMock(return_value=starter)
    return BrowserSessionManager(playwright_factory=factory), pw, factory


def test_session_config_equality_and_devtools_flag():
    assert SessionConfig() == SessionConfig(headless=True, slow_mo_ms=0)
    assert SessionConfig(devtools=True) != SessionConfig()
    assert DEVTOOLS_ARG in SessionConfig(devtools=True).launch_args()
    assert DEVTOOLS_ARG not in SessionConfig().launch_args()


def test_acquire_reuses_session_for_same_config():
    async def run():
        mgr, pw, factory = _manager()
        s1 = await mgr.acquire(SessionConfig())
        s2 = await mgr.acquire(SessionConfig())
        assert s1 is s2
        assert mgr.launch_count == 1
        assert factory.call_count == 1
    asyncio.run(run())


def test_acquire_relaunches_on_config_change():
    async def run():
        mgr, pw, _ = _manager()
        s1 = await mgr.acquire(SessionConfig())
        s2 = await mgr.acquire(SessionConfig(headless=False))
        assert s1 is not s2
        assert mgr.launch_count == 2
        s1.browser.close.assert_awaited_once()
        kwargs = pw.chromium.launch.await_args_list[-1].kwargs
        assert kwargs["headless"] is False
    asyncio.run(run())


def test_acquire_relaunches_when_browser_disconnected():
    async def run():
        mgr, _, _ = _manager()
        s1 = await mgr.acquire(SessionConfig())
        s1.browser.is_connected.return_value = False
        s2 = await mgr.acquire(SessionConfig())
        assert s2 is not s1
        assert mgr.launch_count == 2
    asyncio.run(run())


def test_concurrent_acquire_launches_once():
    async def run():
        mgr, pw, _ = _manager(delay=0.01)
        sessions = await asyncio.gather(*[mgr.acquire(SessionConfig()) for _ in range(5)])
        assert all(s is sessions[0] for s in sessions)
        assert mgr.launch_count == 1
        assert pw.chromium.launch.await_count == 1
    asyncio.run(run())


def test_profile_lock_maps_to_profile_busy():
    async def run():
        mgr, _, _ = _manager(launch_side_effect=RuntimeError("Failed to create a ProcessSingleton for your profile"))
        with pytest.raises(ProfileBusyError):
            await mgr.acquire(SessionConfig(profile_dir="/tmp/profile"))
    asyncio.run(run())


def test_other_launch_failure_is_browser_launch_error():
    async def run():
        mgr, _, _ = _manager(launch_side_effect=RuntimeError("Executable doesn't exist"))
        with pytest.raises(BrowserLaunchError) as exc:
            await mgr.acquire(SessionConfig())
        assert not isinstance(exc.value, ProfileBusyError)
        assert mgr.session is None
    asyncio.run(run())


def test_open_page_closes_page_on_error():
    async def run():
        mgr, _, _ = _manager()
        with pytest.raises(ValueError):
            async with mgr.open_page(SessionConfig(), "UA/1.0") as page:
                raise ValueError("boom")
        page.close.assert_awaited_once()
        page.context.close.assert_awaited_once()
        kwargs = mgr.session.browser.new_context.await_args.kwargs
        assert kwargs["user_agent"] == "UA/1.0"
        assert kwargs["locale"] == "ru-RU"
    asyncio.run(run())


def test_close_is_idempotent():
    async def run():
        mgr, pw, _ = _manager()
        session = await mgr.acquire(SessionConfig())
        await mgr.close()
        await mgr.close()
        session.browser.close.assert_awaited_once()
        pw.stop.assert_awaited_once()
        assert mgr.session is None
    asyncio.run(run())
