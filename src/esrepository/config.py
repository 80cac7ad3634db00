"""
esrepository Config — Client Settings
=====================================

Connection settings for AsyncElasticsearch. They come from constructor
arguments or from ESREPO_* environment variables:

    ESREPO_HOSTS          comma-separated node URLs
    ESREPO_API_KEY        API key (takes precedence over basic auth)
    ESREPO_USERNAME       basic auth user
    ESREPO_PASSWORD       basic auth password
    ESREPO_VERIFY_CERTS   0/false/no/off to skip certificate checks
    ESREPO_TIMEOUT        request timeout in seconds
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from elasticsearch import AsyncElasticsearch

DEFAULT_HOSTS = ["http://localhost:9200"]

ENV_PREFIX = "ESREPO_"


def _env_flag(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


@dataclass
class ClientSettings:
    """Resolved connection settings."""

    hosts: List[str] = field(default_factory=lambda: list(DEFAULT_HOSTS))
    api_key: Optional[str] = None
    basic_auth: Optional[Tuple[str, str]] = None
    verify_certs: bool = True
    request_timeout: Optional[float] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientSettings":
        """
        Build settings from ESREPO_* variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            ClientSettings with defaults for anything unset
        """
        env = os.environ if environ is None else environ

        hosts_raw = env.get(f"{ENV_PREFIX}HOSTS", "")
        hosts = [h.strip() for h in hosts_raw.split(",") if h.strip()]

        username = env.get(f"{ENV_PREFIX}USERNAME")
        password = env.get(f"{ENV_PREFIX}PASSWORD")
        basic_auth = (username, password) if username and password else None

        timeout_raw = env.get(f"{ENV_PREFIX}TIMEOUT")
        timeout = float(timeout_raw) if timeout_raw else None

        return cls(
            hosts=hosts or list(DEFAULT_HOSTS),
            api_key=env.get(f"{ENV_PREFIX}API_KEY") or None,
            basic_auth=basic_auth,
            verify_certs=_env_flag(env.get(f"{ENV_PREFIX}VERIFY_CERTS"), True),
            request_timeout=timeout
        )

    def client_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for AsyncElasticsearch."""
        conn_kwargs: Dict[str, Any] = {
            "hosts": self.hosts or list(DEFAULT_HOSTS),
            "verify_certs": self.verify_certs
        }

        if self.api_key:
            conn_kwargs["api_key"] = self.api_key
        elif self.basic_auth:
            conn_kwargs["basic_auth"] = self.basic_auth

        if self.request_timeout is not None:
            conn_kwargs["request_timeout"] = self.request_timeout

        return conn_kwargs


def create_client(settings: Optional[ClientSettings] = None) -> AsyncElasticsearch:
    """Create an AsyncElasticsearch client from settings (default: environment)."""
    settings = settings or ClientSettings.from_env()
    return AsyncElasticsearch(**settings.client_kwargs())
