"""
Per-URL fetch pipeline.

Tier 0 is a plain HTTP GET plus extraction. Only when the page looks like an
empty single-page-app shell (and not a block page) does it escalate to tier 1,
rendering the HTML with scripts enabled and extracting again.

`Fetcher.fetch` never raises for a single URL: transport, extraction and
rendering failures all come back as a classified FetchResult. A host refused
by the HostPolicy is a misconfigured machine, not a property of the URL, so
HostNotAllowedError propagates.
"""

import asyncio
import logging
import time
from typing import Callable

from .browser_renderer import RendererPool
from .detect import analyze_response, detect_block_page
from .errors import HostNotAllowedError
from .http_client import HttpClient, classify_transport_error
from .metrics import ExtractResult, FetchResult, Outcome, failure_result, success_result
from .parse import extract_content
from .policy import Escalation, EscalationBudget, should_escalate
from .settings import FetchConfig

logger = logging.getLogger(__name__)

Extractor = Callable[[str, str], ExtractResult | None]


def normalize_url(url: str) -> str:
    url = url.strip()
    if not url.startswith("http://") and not url.startswith("https://"):
        url = "https://" + url
    return url


class Fetcher:
    """
    Runs the tiered pipeline with injected collaborators.

    The HTTP client and renderer pool are shared across calls; the Fetcher
    only closes the ones it created itself.
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        client: HttpClient | None = None,
        renderer: RendererPool | None = None,
        extractor: Extractor | None = None,
        budget: EscalationBudget | None = None,
    ):
        self.config = config or FetchConfig()
        self._owns_client = client is None
        self._owns_renderer = renderer is None
        self.client = client or HttpClient(user_agent=self.config.user_agent, max_redirects=self.config.max_redirects)
        self.renderer = renderer
        self.extractor = extractor or extract_content
        self.budget = budget if budget is not None else EscalationBudget(self.config.max_escalations)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.close()
        if self._owns_renderer and self.renderer is not None:
            await self.renderer.close()
            self.renderer = None

    def _trace(self, msg: str, *args) -> None:
        logger.log(logging.INFO if self.config.debug else logging.DEBUG, msg, *args)

    def _has_content(self, extracted: ExtractResult | None) -> bool:
        return bool(extracted and extracted.content and len(extracted.content) > self.config.min_content_chars)

    async def _extract(self, html: str, url: str) -> ExtractResult | None:
        try:
            return await asyncio.to_thread(self.extractor, html, url)
        except Exception as e:
            logger.debug("Extractor raised for %s: %s", url, e)
            return None

    async def _render(self, html: str, url: str) -> str:
        if self.renderer is None:
            self.renderer = RendererPool(self.config)
        return await self.renderer.render(html, url, self.config.render_timeout_ms)

    async def fetch(self, url: str) -> FetchResult:
        """Fetch `url` and classify the attempt. Raises only HostNotAllowedError."""
        cfg = self.config
        t0 = time.perf_counter()
        url = normalize_url(url)
        tier = 0

        def elapsed() -> int:
            return int((time.perf_counter() - t0) * 1000)

        if not cfg.use_cache:
            self._trace("Cache bypass requested for %s", url)

        try:
            # Tier 0: plain HTTP fetch
            try:
                resp = await self.client.get(url, cfg.timeout_ms)
            except HostNotAllowedError:
                raise
            except Exception as e:
                reason = classify_transport_error(e)
                self._trace("Fetch of %s failed after %dms: %s (%s)", url, elapsed(), reason, type(e).__name__)
                return failure_result(url, 0, Outcome.ERROR, reason, elapsed())

            html = resp.text
            self._trace("Fetched %s in %dms, status %d", url, elapsed(), resp.status)

            verdict = analyze_response(resp.status, resp.headers, html)
            if verdict:
                return failure_result(url, 0, Outcome.BLOCKED, verdict.reason, elapsed())

            extracted = await self._extract(html, url)
            if self._has_content(extracted):
                return success_result(url, 0, extracted, elapsed(), cfg.tokens_per_word)

            # Block pages that got past the status/header rules
            verdict = detect_block_page(html)
            if verdict:
                return failure_result(url, 0, Outcome.BLOCKED, verdict.reason, elapsed())

            decision = should_escalate(html, extracted.content if extracted else None, cfg, self.budget)
            if decision is Escalation.NONE:
                return failure_result(url, 0, Outcome.EMPTY, "no_content", elapsed())
            if decision is Escalation.SKIPPED:
                return failure_result(url, 0, Outcome.NEEDS_JS_SKIPPED, "spa_skipped", elapsed())

            # Tier 1: render with scripts enabled
            tier = 1
            self._trace("Escalating %s to tier 1", url)
            rendered = await self._render(html, url)
            if rendered != html:
                extracted = await self._extract(rendered, url)
                if self._has_content(extracted):
                    return success_result(url, 1, extracted, elapsed(), cfg.tokens_per_word)

            return failure_result(url, 1, Outcome.BLOCKED, "spa_failed", elapsed())

        except HostNotAllowedError:
            raise
        except Exception:
            logger.exception("Unexpected failure fetching %s", url)
            return failure_result(url, tier, Outcome.ERROR, "unknown", elapsed())


async def fetch_and_parse(url: str, config: FetchConfig | None = None, **collaborators) -> FetchResult:
    """One-shot fetch; builds (and tears down) any collaborator not passed in."""
    async with Fetcher(config, **collaborators) as fetcher:
        return await fetcher.fetch(url)
