"""
Policy module: decides whether a plain fetch should escalate to the heavier
script-rendering path.

The logic is:
- explicit
- configurable
- easily auditable

Escalation is expensive and cannot get past a block page, so block pages and
pages that already yielded content never escalate.
"""

import re
from enum import Enum

from .detect import detect_block_page
from .settings import FetchConfig

SPA_MARKERS = (
    '<div id="root"></div>',
    '<div id="app"></div>',
    '<div id="__next"></div>',
    '<div id="__nuxt"></div>',
    "react-root",
    "vue-app",
    "angular-app",
)

_BODY_RE = re.compile(r"<body[^>]*>([\s\S]*)</body>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


class Escalation(str, Enum):
    NONE = "none"
    ESCALATE = "escalate"
    SKIPPED = "skipped"


def body_text(html: str) -> str:
    match = _BODY_RE.search(html)
    body = match.group(1) if match else ""
    return _TAG_RE.sub("", body).strip()


def needs_javascript(
    html: str,
    extracted_content: str | None,
    min_content_chars: int = 100,
    spa_text_threshold: int = 200,
) -> bool:
    if extracted_content and len(extracted_content) > min_content_chars:
        return False

    if detect_block_page(html):
        return False

    lower = html.lower()
    has_spa_markers = any(marker in lower for marker in SPA_MARKERS)
    has_scripts = "<script" in lower
    body_is_empty = len(body_text(html)) < spa_text_threshold

    return has_spa_markers and has_scripts and body_is_empty


class EscalationBudget:
    """
    Per-process cap on tier-1 renders. `limit=None` never runs out.

    Single event loop only: take() has no await between check and decrement.
    """

    def __init__(self, limit: int | None = None):
        self.limit = limit
        self.used = 0

    @property
    def exhausted(self) -> bool:
        return self.limit is not None and self.used >= self.limit

    def take(self) -> bool:
        if self.exhausted:
            return False
        self.used += 1
        return True


def should_escalate(
    html: str,
    extracted_content: str | None,
    config: FetchConfig | None = None,
    budget: EscalationBudget | None = None,
) -> Escalation:
    cfg = config or FetchConfig()

    if not needs_javascript(html, extracted_content, cfg.min_content_chars, cfg.spa_text_threshold):
        return Escalation.NONE

    if cfg.fast_mode:
        return Escalation.SKIPPED

    if budget is not None and not budget.take():
        return Escalation.SKIPPED

    return Escalation.ESCALATE
