"""Proxy settings shared by the downloader and git client."""
from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

PROXY_ENV_KEYS = ("http_proxy", "https_proxy", "all_proxy", "HTTP_PROXY", "HTTPS_PROXY")


@dataclass(frozen=True, slots=True)
class NetworkSettings:
    """Explicit network configuration handed to collaborators.

    The proxy is applied through the environment of each child process
    rather than by mutating ``os.environ``.
    """

    proxy: str | None = None

    def env(self) -> dict[str, str]:
        """Return environment variables exporting the proxy, if any."""
        if not self.proxy:
            return {}
        return {key: self.proxy for key in PROXY_ENV_KEYS}


def detect_git_proxy(git_bin: str = "git") -> str | None:
    """Return the globally configured git HTTP proxy, if any."""
    try:
        result = subprocess.run(  # noqa: S603
            [git_bin, "config", "--global", "http.proxy"],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        return None
    value = (result.stdout or "").strip()
    return value or None


def check_connectivity(
    url: str,
    settings: NetworkSettings,
    *,
    curl_bin: str = "curl",
    timeout: int = 5,
) -> bool:
    """Return True when *url* answers a HEAD request through *settings*."""
    command = [curl_bin, "-I", "-s", "--connect-timeout", str(timeout), url]
    try:
        result = subprocess.run(  # noqa: S603
            command,
            capture_output=True,
            text=True,
            check=False,
            env=_child_env(settings),
        )
    except FileNotFoundError:
        LOGGER.debug("%s not available for connectivity check", curl_bin)
        return False
    return result.returncode == 0


def _child_env(settings: NetworkSettings) -> dict[str, str]:
    return dict(os.environ, **settings.env())


__all__ = ["NetworkSettings", "PROXY_ENV_KEYS", "check_connectivity", "detect_git_proxy"]
