"""
Main-content extraction from raw HTML, rendered as markdown.

Backed by ``trafilatura``. The extractor is best-effort: any failure or an
empty result is reported as ``None`` and the caller decides what that means.
"""

import logging
import time

import trafilatura

from .metrics import ExtractResult

logger = logging.getLogger(__name__)


def count_words(text: str) -> int:
    return len(text.split())


def extract_content(html: str, url: str) -> ExtractResult | None:
    """Extract the main content of `html`; blocking, run it off the event loop."""
    t0 = time.perf_counter()
    try:
        content = trafilatura.extract(
            html,
            url=url,
            output_format="markdown",
            include_links=True,
            include_tables=True,
            favor_recall=True,
        )
        if not content:
            return None
        meta = trafilatura.extract_metadata(html, default_url=url)
    except Exception as e:
        logger.debug("Extraction failed for %s: %s", url, e)
        return None

    return ExtractResult(
        content=content,
        title=getattr(meta, "title", None),
        author=getattr(meta, "author", None),
        published=getattr(meta, "date", None),
        description=getattr(meta, "description", None),
        word_count=count_words(content),
        parse_time_ms=int((time.perf_counter() - t0) * 1000),
    )
