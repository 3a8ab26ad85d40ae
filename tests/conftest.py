import asyncio

import pytest

from llmfetch.http_client import HttpResponse
from llmfetch.metrics import ExtractResult

ARTICLE_TEXT = " ".join(["word"] * 100)

ARTICLE_HTML = f"""
<html>
  <head><title>A post</title></head>
  <body><article><h1>A post</h1><p>{ARTICLE_TEXT}</p></article></body>
</html>
"""

SPA_HTML = """
<html>
  <head><title>App</title></head>
  <body>
    <div id="root"></div>
    <script src="/static/js/main.js"></script>
  </body>
</html>
"""


def fake_extract(html: str, url: str) -> ExtractResult | None:
    """Stand-in extractor: only <article> pages have content."""
    if "<article>" not in html:
        return None
    return ExtractResult(content=ARTICLE_TEXT, title="A post", word_count=100)


class FakeClient:
    """Serves canned responses per URL; an Exception value is raised instead."""

    def __init__(self, responses: dict | None = None, default=None, delay_s: float = 0.0):
        self.responses = responses or {}
        self.default = default
        self.delay_s = delay_s
        self.requested: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def get(self, url: str, timeout_ms: int) -> HttpResponse:
        self.requested.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            value = self.responses.get(url, self.default)
            if isinstance(value, BaseException):
                raise value
            if value is None:
                return HttpResponse(status=404, text="", url=url)
            status, html, headers = value if len(value) == 3 else (*value, {})
            return HttpResponse(status=status, text=html, url=url, headers=headers)
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


class FakeRenderer:
    def __init__(self, output: str | None = None, delay_s: float = 0.0):
        self.output = output
        self.delay_s = delay_s
        self.calls: list[tuple[str, int]] = []

    async def render(self, html: str, url: str, timeout_ms: int | None = None) -> str:
        self.calls.append((url, timeout_ms))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        return html if self.output is None else self.output

    async def close(self) -> None:
        pass


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def fake_renderer():
    return FakeRenderer()
