import asyncio
import logging
import time

import psutil
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .settings import FetchConfig

logger = logging.getLogger(__name__)

BODY_TEXT_JS = "() => (document.body && document.body.innerText || '').trim()"


def browser_memory_mb() -> float:
    """RSS of every child process of this one (Playwright driver and browsers)."""
    total = 0
    for child in psutil.Process().children(recursive=True):
        try:
            total += child.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return total / (1024 * 1024)


class BrowserWorker:
    """
    One Chromium browser used for script rendering.

    - JavaScript enabled; every subresource request is aborted, so rendered
      pages can only run their inline scripts and never reach the network
    - The target HTML is served in place of the first navigation to its URL,
      so scripts see the right origin
    """

    def __init__(self, browser, user_agent: str):
        self._browser = browser
        self._user_agent = user_agent
        self._context = None
        self.uses = 0

    async def start(self):
        self._context = await self._browser.new_context(
            user_agent=self._user_agent,
            java_script_enabled=True,
        )
        return self

    async def close(self) -> None:
        try:
            if self._context:
                await self._context.close()
        finally:
            await self._browser.close()

    async def render(self, html: str, url: str, timeout_ms: int, poll_interval_ms: int = 100, min_text_chars: int = 100) -> str:
        self.uses += 1
        page = await self._context.new_page()

        async def route_handler(route):
            request = route.request
            if request.is_navigation_request() and request.frame == page.main_frame:
                await route.fulfill(status=200, content_type="text/html; charset=utf-8", body=html)
            else:
                await route.abort()

        try:
            await page.route("**/*", route_handler)
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

            deadline = time.monotonic() + timeout_ms / 1000
            while time.monotonic() < deadline:
                text = await page.evaluate(BODY_TEXT_JS)
                if len(text) > min_text_chars:
                    break
                await asyncio.sleep(poll_interval_ms / 1000)

            return await page.content()
        finally:
            await page.close()


class RendererPool:
    """
    Arena of recyclable BrowserWorkers.

    Rendering environments leak memory, so a worker is retired after
    `max_uses` renders, or when the browser process tree grows past
    `max_memory_mb`, and a fresh one is launched on the next acquire.
    At most `size` renders run at once.
    """

    def __init__(self, config: FetchConfig | None = None, launcher=None, memory_probe=browser_memory_mb):
        self.config = config or FetchConfig()
        self.size = max(1, self.config.renderer_pool_size)
        self.max_uses = self.config.renderer_max_uses
        self.max_memory_mb = self.config.renderer_max_memory_mb
        self._launcher = launcher
        self._memory_probe = memory_probe
        self._playwright = None
        self._idle: list[BrowserWorker] = []
        self._busy: set[BrowserWorker] = set()
        self._slots = asyncio.Semaphore(self.size)
        self.launched = 0
        self.retired = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _launch(self) -> BrowserWorker:
        if self._launcher is not None:
            worker = await self._launcher()
        else:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            browser = await self._playwright.chromium.launch(
                headless=True,
                args=["--disable-gpu", "--no-sandbox", "--disable-dev-shm-usage"],
            )
            worker = await BrowserWorker(browser, self.config.user_agent).start()
        self.launched += 1
        logger.debug("Launched renderer #%d", self.launched)
        return worker

    async def _acquire(self) -> BrowserWorker:
        await self._slots.acquire()
        try:
            worker = self._idle.pop() if self._idle else await self._launch()
        except BaseException:
            self._slots.release()
            raise
        self._busy.add(worker)
        return worker

    def _should_retire(self, worker: BrowserWorker) -> bool:
        if worker.uses >= self.max_uses:
            return True
        memory_mb = self._memory_probe()
        if memory_mb > self.max_memory_mb:
            logger.debug("Renderer memory at %.0f MB, over %d MB", memory_mb, self.max_memory_mb)
            return True
        return False

    async def _release(self, worker: BrowserWorker, broken: bool = False) -> None:
        # The slot is returned before the first await.
        self._busy.discard(worker)
        retire = broken or self._should_retire(worker)
        if not retire:
            self._idle.append(worker)
        self._slots.release()
        if retire:
            self.retired += 1
            logger.debug("Retiring renderer after %d uses", worker.uses)
            await self._close_worker(worker)

    async def _close_worker(self, worker: BrowserWorker) -> None:
        try:
            await worker.close()
        except PlaywrightError as e:
            logger.debug("Error closing renderer: %s", e)

    async def _acquire_and_render(self, html: str, url: str, timeout_ms: int) -> str:
        try:
            worker = await self._acquire()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Could not launch renderer: %s", e)
            return html

        broken = False
        try:
            return await worker.render(
                html, url, timeout_ms, self.config.render_poll_interval_ms, self.config.min_content_chars
            )
        except BaseException:
            broken = True
            raise
        finally:
            await self._release(worker, broken=broken)

    async def render(self, html: str, url: str, timeout_ms: int | None = None) -> str:
        """
        Return post-script HTML for `html` loaded at `url`.

        The budget covers waiting for a free worker as well as the render
        itself. Falls back to the original HTML on any rendering failure or
        when the budget lapses.
        """
        timeout_ms = timeout_ms or self.config.render_timeout_ms
        try:
            # Grace on top of the budget for page.content() and teardown.
            return await asyncio.wait_for(
                self._acquire_and_render(html, url, timeout_ms),
                timeout=timeout_ms / 1000 + 1,
            )
        except Exception as e:
            logger.debug("Render failed for %s: %s: %s", url, type(e).__name__, e)
            return html

    async def close(self) -> None:
        workers = self._idle + list(self._busy)
        self._idle = []
        self._busy = set()
        for worker in workers:
            await self._close_worker(worker)
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
