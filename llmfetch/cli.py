"""
llmfetch: fetch one web page as markdown for an LLM.

Usage:
    llmfetch <url>                    Fetch URL and print markdown
    llmfetch <url> --format json      Print the full result as JSON
    llmfetch <url> --max-tokens 2000  Truncate output to roughly 2000 tokens
"""

import argparse
import asyncio
import json
import logging
import math
import re
import sys

from . import __version__
from .errors import LlmfetchError
from .fetch import fetch_and_parse
from .settings import load_fetch_config

_MARKDOWN_PUNCT = re.compile(r"[#*`\[\]]")


def truncate_tokens(content: str, max_tokens: int, tokens_per_word: float = 1.3) -> str:
    max_words = math.floor(max_tokens / tokens_per_word)
    words = content.split()
    if len(words) <= max_words:
        return content
    return " ".join(words[:max_words])


def render_output(result, fmt: str, max_tokens: int | None = None, tokens_per_word: float = 1.3) -> str:
    content = result.content or ""
    if max_tokens:
        content = truncate_tokens(content, max_tokens, tokens_per_word)
    if fmt == "json":
        data = result.to_dict()
        data["content"] = content
        return json.dumps(data, indent=2)
    if fmt == "text":
        return _MARKDOWN_PUNCT.sub("", content)
    return content


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="llmfetch", description="Fast web-to-markdown CLI for LLMs")
    parser.add_argument("url", nargs="?", help="URL to fetch")
    parser.add_argument("-f", "--format", choices=["md", "json", "text"], default="md")
    parser.add_argument("-t", "--max-tokens", type=int, default=None, help="maximum tokens in output")
    parser.add_argument("--timeout", type=int, default=10_000, help="request timeout in ms (default: %(default)s)")
    parser.add_argument("--no-cache", dest="use_cache", action="store_false", help="bypass cache")
    parser.add_argument("--fast", action="store_true", help="never escalate to script rendering")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--debug", action="store_true", help="enable debug output")
    parser.add_argument("--version", action="version", version=__version__)
    args = parser.parse_args(argv)

    if not args.url:
        parser.print_help(sys.stderr)
        return 1

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING, format="[%(levelname)s] %(message)s")

    try:
        config = load_fetch_config(
            args.config,
            timeout_ms=args.timeout,
            use_cache=args.use_cache,
            fast_mode=args.fast or None,
            debug=args.debug or None,
        )
        result = asyncio.run(fetch_and_parse(args.url, config))
    except LlmfetchError as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1

    if not result.ok:
        print(f"Error: {result.outcome.value} ({result.reason})", file=sys.stderr)
        return 1

    print(render_output(result, args.format, args.max_tokens, config.tokens_per_word))
    return 0


if __name__ == "__main__":
    sys.exit(main())
