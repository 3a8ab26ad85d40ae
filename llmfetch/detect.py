"""
Block detection: decide from a response or its HTML that the site refused us.

Two entry points:
- analyze_response: status code and header rules
- detect_block_page: substring rules over the HTML body

Both are pure and total. A verdict means "give up on this URL"; no verdict
means "proceed". Rules live in ordered tables so indicators can be added
without touching the control flow.
"""

from dataclasses import dataclass
from typing import Callable, Mapping


@dataclass(frozen=True)
class BlockResult:
    reason: str
    blocked: bool = True


@dataclass(frozen=True)
class ResponseRule:
    reason: str
    matches: Callable[[int, Mapping[str, str]], bool]


@dataclass(frozen=True)
class BlockRule:
    """Content rule: any of `patterns` (lower-case) found in the page -> `reason`."""
    group: str
    reason: str
    patterns: tuple[str, ...]


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        for key, val in headers.items():
            if key.lower() == name:
                value = val
                break
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v) for v in value)
    return value


# First match wins.
RESPONSE_RULES: tuple[ResponseRule, ...] = (
    ResponseRule("forbidden", lambda status, headers: status == 403),
    ResponseRule("rate_limited", lambda status, headers: status == 429),
    ResponseRule("service_unavailable", lambda status, headers: status == 503),
    ResponseRule("server_error", lambda status, headers: status >= 500),
    ResponseRule(
        "cloudflare_block",
        lambda status, headers: status != 200 and bool(_header(headers, "cf-ray")),
    ),
    ResponseRule(
        "akamai_block",
        lambda status, headers: status != 200 and "AkamaiGHost" in (_header(headers, "server") or ""),
    ),
)

# Challenge and CAPTCHA pages often also say "access denied", so they go before
# the generic WAF group.
BLOCK_PAGE_RULES: tuple[BlockRule, ...] = (
    BlockRule(
        group="challenge",
        reason="cloudflare",
        patterns=(
            "just a moment",
            "checking your browser",
            "cf-browser-verification",
            "_cf_chl_opt",
            "cloudflare ray id",
        ),
    ),
    BlockRule(
        group="captcha",
        reason="captcha",
        patterns=("recaptcha", "hcaptcha", "g-recaptcha", "captcha-container"),
    ),
    BlockRule(
        group="waf",
        reason="waf",
        patterns=(
            "access denied",
            "request blocked",
            "bot detected",
            "automated access",
            "security check",
        ),
    ),
    BlockRule(group="vendor", reason="perimeterx", patterns=("perimeterx", "_pxhd")),
    BlockRule(group="vendor", reason="datadome", patterns=("datadome", "dd.js")),
)


def analyze_response(status: int, headers: Mapping[str, str] | None, html: str = "") -> BlockResult | None:
    """Return a verdict from the status line and headers, or None to proceed."""
    headers = headers or {}
    for rule in RESPONSE_RULES:
        if rule.matches(status, headers):
            return BlockResult(rule.reason)
    return None


def detect_block_page(html: str | None, rules: tuple[BlockRule, ...] = BLOCK_PAGE_RULES) -> BlockResult | None:
    """Return a verdict if the HTML looks like a challenge, CAPTCHA or WAF page."""
    if not html:
        return None
    lower = html.lower()
    for rule in rules:
        if any(p in lower for p in rule.patterns):
            return BlockResult(rule.reason)
    return None
