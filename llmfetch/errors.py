class LlmfetchError(Exception):
    """Base class for process-level failures (never raised for a single URL)."""


class ConfigError(LlmfetchError):
    pass


class StoreError(LlmfetchError):
    """The result store could not be opened or created."""


class HostNotAllowedError(LlmfetchError):
    """Raised by HttpClient when the host policy refuses a URL."""

    def __init__(self, host: str):
        super().__init__(f"BLOCKED: Cannot fetch {host} from this machine")
        self.host = host
