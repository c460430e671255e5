"""Shared fixtures: mock site server, settings and fake sleep."""

import asyncio
import socket
import threading
from collections import Counter
from collections.abc import Generator
from contextlib import closing

import pytest
from aiohttp import web

from pagescrape.common.retry import RetryPolicy
from pagescrape.config import (
    BrowserSettings,
    ParsingSettings,
    ScrapeSettings,
)
from tests.mock_site import create_app


def find_free_port() -> int:
    """Find a free port on localhost.

    Returns:
        An available port number.
    """
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


class AioHttpTestServer:
    """Wrapper to run aiohttp server in a background thread."""

    def __init__(self, app: web.Application, port: int) -> None:
        self.app = app
        self.port = port
        self.host = "127.0.0.1"
        self._loop: asyncio.AbstractEventLoop | None = None
        self._runner: web.AppRunner | None = None
        self._thread: threading.Thread | None = None
        self._started = threading.Event()

    @property
    def url(self) -> str:
        """Get the base URL of the server."""
        return f"http://{self.host}:{self.port}"

    def start(self) -> None:
        """Start the server in a background thread."""
        self._thread = threading.Thread(target=self._run_server, daemon=True)
        self._thread.start()
        self._started.wait(timeout=5.0)

    def _run_server(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        async def start() -> None:
            self._runner = web.AppRunner(self.app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.host, self.port)
            await site.start()

        self._loop.run_until_complete(start())
        self._started.set()
        self._loop.run_forever()

    def stop(self) -> None:
        """Stop the server and clean up resources."""
        if self._loop and self._runner:
            future = asyncio.run_coroutine_threadsafe(
                self._runner.cleanup(), self._loop
            )
            try:
                future.result(timeout=2.0)
            except Exception:
                pass  # Best effort cleanup

        if self._loop:
            self._loop.call_soon_threadsafe(self._loop.stop)

        if self._thread:
            self._thread.join(timeout=2.0)


@pytest.fixture
def hits() -> Counter:
    """Requests served by the mock site, per path."""
    return Counter()


@pytest.fixture
def site_server(hits: Counter) -> Generator[AioHttpTestServer, None, None]:
    """Start the mock catalog site on a random port.

    Yields:
        AioHttpTestServer instance serving the mock site.
    """
    server = AioHttpTestServer(create_app(hits), find_free_port())
    server.start()
    yield server
    server.stop()


@pytest.fixture
def server_url(site_server: AioHttpTestServer) -> str:
    return site_server.url


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        # Still yield to the loop like a real sleep.
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def settings() -> ScrapeSettings:
    """Settings with short timeouts and no browser settle delays."""
    return ScrapeSettings(
        parsing=ParsingSettings(timeout_seconds=5.0, retry_delay_seconds=0.0),
        browser=BrowserSettings(
            post_navigation_wait_ms=0,
            scroll_wait_ms=0,
            spa_network_timeout_ms=100,
            custom_wait_timeout_ms=100,
            content_growth_timeout_ms=100,
        ),
    )


@pytest.fixture
def retry_policy(fake_sleep: SleepRecorder) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=3, base_delay=1.0, max_delay=4.0, sleep=fake_sleep
    )

