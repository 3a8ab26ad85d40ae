import math
import time
from dataclasses import dataclass, field
from enum import Enum


class Outcome(str, Enum):
    SUCCESS = "SUCCESS"
    BLOCKED = "BLOCKED"
    NEEDS_JS_SKIPPED = "NEEDS_JS_SKIPPED"
    EMPTY = "EMPTY"
    ERROR = "ERROR"


# Closed reason vocabulary, grouped by the outcome each reason belongs to.
NETWORK_REASONS = frozenset({
    "timeout",
    "dns_error",
    "connection_refused",
    "connection_reset",
    "ssl_error",
    "unknown",
})

BLOCK_REASONS = frozenset({
    "forbidden",
    "rate_limited",
    "service_unavailable",
    "server_error",
    "cloudflare_block",
    "akamai_block",
    "cloudflare",
    "captcha",
    "waf",
    "perimeterx",
    "datadome",
    "spa_failed",
})

CONTENT_REASONS = {
    "no_content": Outcome.EMPTY,
    "spa_skipped": Outcome.NEEDS_JS_SKIPPED,
}


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ExtractResult:
    """
    Output of the content extractor for one HTML document.

    Fields:
        content       : Main content rendered as markdown.
        title         : Document title, if detected.
        author        : Author byline, if detected.
        published     : Publication date string, if detected.
        description   : Meta description, if detected.
        word_count    : Words in `content`.
        parse_time_ms : Time spent in the extractor.
    """
    content: str
    title: str | None = None
    author: str | None = None
    published: str | None = None
    description: str | None = None
    word_count: int = 0
    parse_time_ms: int = 0


@dataclass(frozen=True)
class FetchResult:
    """
    Terminal, immutable record of one fetch attempt.

    Fields:
        url         : Normalized URL that was requested (primary key in the store).
        tier        : 0 for the plain HTTP pass, 1 after script rendering.
        outcome     : Exactly one Outcome.
        reason      : Reason code from the closed vocabulary; None only on SUCCESS.
        latency_ms  : Wall clock from attempt start to this result, across both tiers.
        content..   : Extracted fields, populated only on SUCCESS.
        cached      : Whether the result was served from a cache (always False for now).
        timestamp   : Creation instant in epoch milliseconds.
    """
    url: str
    tier: int
    outcome: Outcome
    latency_ms: int
    reason: str | None = None
    content: str | None = None
    title: str | None = None
    author: str | None = None
    published: str | None = None
    word_count: int | None = None
    token_count: int | None = None
    cached: bool = False
    timestamp: int = field(default_factory=now_ms)

    def __post_init__(self):
        if self.tier not in (0, 1):
            raise ValueError(f"tier must be 0 or 1, got {self.tier!r}")
        if self.latency_ms < 0:
            raise ValueError("latency_ms must be non-negative")
        if (self.outcome is Outcome.SUCCESS) == (self.reason is not None):
            raise ValueError("reason must be set exactly when outcome is not SUCCESS")

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def status(self) -> str:
        """Value written to the store's `status` column."""
        return "success" if self.ok else self.outcome.value

    def to_dict(self) -> dict:
        data = {
            "url": self.url,
            "tier": self.tier,
            "outcome": self.outcome.value,
            "cached": self.cached,
            "latencyMs": self.latency_ms,
            "timestamp": self.timestamp,
        }
        if self.ok:
            data.update(
                content=self.content,
                title=self.title,
                author=self.author,
                published=self.published,
                wordCount=self.word_count,
                tokenCount=self.token_count,
            )
        else:
            data["reason"] = self.reason
        return data


def success_result(url: str, tier: int, extracted: ExtractResult, latency_ms: int, tokens_per_word: float = 1.3) -> FetchResult:
    # Rough token estimate; not a real tokenizer.
    token_count = math.ceil(extracted.word_count * tokens_per_word)
    return FetchResult(
        url=url,
        tier=tier,
        outcome=Outcome.SUCCESS,
        latency_ms=latency_ms,
        content=extracted.content,
        title=extracted.title,
        author=extracted.author,
        published=extracted.published,
        word_count=extracted.word_count,
        token_count=token_count,
    )


def failure_result(url: str, tier: int, outcome: Outcome, reason: str, latency_ms: int) -> FetchResult:
    return FetchResult(url=url, tier=tier, outcome=outcome, reason=reason, latency_ms=latency_ms)
