import logging
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "llmfetch.yaml"
DEFAULT_USER_AGENT = "llmfetch/0.1 (+https://github.com/mrmps/freescrape)"


@dataclass
class FetchConfig:
    """
    Central configuration for fetching, detection and escalation.

    Values can be overridden via llmfetch.yaml in the working directory.
    """

    # Transport
    timeout_ms: int = 5000
    use_cache: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    max_redirects: int = 5

    # Escalation
    fast_mode: bool = False  # never render; report SPA shells as spa_skipped
    max_escalations: int | None = None  # per-process render budget, None = unlimited
    min_content_chars: int = 100
    spa_text_threshold: int = 200
    tokens_per_word: float = 1.3

    # Script runner
    render_timeout_ms: int = 3000
    render_poll_interval_ms: int = 100
    renderer_pool_size: int = 1
    renderer_max_uses: int = 50
    renderer_max_memory_mb: int = 1024

    debug: bool = False


def load_fetch_config(path: str | Path | None = None, **overrides) -> FetchConfig:
    """
    Load FetchConfig from YAML if present; otherwise use defaults.

    Keyword overrides (typically from CLI flags) win over the file; None values
    are ignored so unset flags don't clobber the file.
    """
    path = Path(path) if path is not None else Path.cwd() / DEFAULT_CONFIG_NAME
    allowed_keys = {f.name for f in fields(FetchConfig)}

    data = {}
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Expected mapping in {path}, got {type(data).__name__}")
        unknown = set(data) - allowed_keys
        if unknown:
            logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(sorted(unknown)))
    else:
        logger.debug("Config not found at %s, using defaults", path)

    filtered = {k: v for k, v in data.items() if k in allowed_keys}
    filtered.update({k: v for k, v in overrides.items() if k in allowed_keys and v is not None})
    return FetchConfig(**filtered)
