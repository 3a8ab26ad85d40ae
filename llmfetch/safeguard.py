"""
Host allow-list for outbound fetches.

All fetching is meant to happen on the dedicated fetch host, never from a
developer laptop (the laptop's IP gets banned). Instead of patching a global
network primitive, the policy is a value handed to `HttpClient`; the
process-wide default is computed once and only read afterwards.
"""

import functools
import os
import socket
from urllib.parse import urlparse

from pydantic import BaseModel, Field

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


class HostPolicy(BaseModel):
    allowed_hosts: frozenset[str] = Field(default=LOOPBACK_HOSTS)
    allow_all: bool = False

    @classmethod
    def permissive(cls) -> "HostPolicy":
        return cls(allow_all=True)

    def allows_host(self, host: str | None) -> bool:
        if self.allow_all:
            return True
        # Unparseable or relative URLs have no host; let the transport reject them.
        if not host:
            return True
        return host.lower().strip("[]") in self.allowed_hosts

    def allows(self, url: str) -> bool:
        return self.allows_host(urlparse(url).hostname)


def is_running_on_vps(env: dict | None = None, hostname: str | None = None, cwd: str | None = None) -> bool:
    env = os.environ if env is None else env
    hostname = hostname if hostname is not None else (env.get("HOSTNAME") or socket.gethostname())
    cwd = cwd if cwd is not None else os.getcwd()
    return (
        "llmfetch" in hostname
        or env.get("VPS") == "1"
        or env.get("LLMFETCH_VPS") == "1"
        or cwd.startswith("/opt/llmfetch")
    )


def policy_from_env(env: dict | None = None, hostname: str | None = None, cwd: str | None = None) -> HostPolicy:
    env = os.environ if env is None else env
    if env.get("LLMFETCH_ALLOW_ALL") == "1" or is_running_on_vps(env, hostname, cwd):
        return HostPolicy.permissive()
    return HostPolicy()


@functools.lru_cache(maxsize=None)
def default_host_policy() -> HostPolicy:
    """Process default, evaluated on first use only."""
    return policy_from_env()
