"""GitLab MR view configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() not in ("false", "0", "no")


@dataclass
class GitLabConfig:
    """Connection, retry and cache settings, loaded from environment variables."""

    url: str = ""
    token: str = ""
    timeout: int = 30
    ssl_verify: bool = True
    retries: int = 3
    retry_delay: float = 1.0
    cache_max_size: int = 100
    cache_ttl: float = 30.0
    diff_cache_ttl: float = 120.0

    @classmethod
    def from_env(cls) -> GitLabConfig:
        url = (os.getenv("GITLAB_BASE_URL") or os.getenv("GITLAB_URL", "")).rstrip("/")
        token = (
            os.getenv("GITLAB_TOKEN")
            or os.getenv("GITLAB_PAT")
            or os.getenv("GITLAB_PERSONAL_ACCESS_TOKEN")
            or os.getenv("GITLAB_API_TOKEN", "")
        )

        return cls(
            url=url,
            token=token,
            timeout=int(os.getenv("GITLAB_TIMEOUT", "30")),
            ssl_verify=_env_bool("GITLAB_SSL_VERIFY", "true"),
            retries=int(os.getenv("GITLAB_RETRIES", "3")),
            retry_delay=float(os.getenv("GITLAB_RETRY_DELAY", "1.0")),
            cache_max_size=int(os.getenv("GITLAB_CACHE_MAX_SIZE", "100")),
            cache_ttl=float(os.getenv("GITLAB_CACHE_TTL", "30")),
            diff_cache_ttl=float(os.getenv("GITLAB_DIFF_CACHE_TTL", "120")),
        )

    @property
    def api_url(self) -> str:
        return f"{self.url}/api/v4"

    @property
    def graphql_url(self) -> str:
        return f"{self.url}/api/graphql"

    def validate(self) -> None:
        if not self.url:
            msg = (
                "GITLAB_BASE_URL environment variable is required "
                "(e.g. https://gitlab.com). GITLAB_URL is accepted as an alias."
            )
            raise ValueError(msg)
        if not self.token:
            msg = (
                "GitLab token is required. Set one of: GITLAB_TOKEN, GITLAB_PAT, "
                "GITLAB_PERSONAL_ACCESS_TOKEN, or GITLAB_API_TOKEN "
                "with 'read_api' or 'api' scope"
            )
            raise ValueError(msg)
        if self.retries < 0:
            msg = f"GITLAB_RETRIES must be >= 0, got {self.retries}"
            raise ValueError(msg)
