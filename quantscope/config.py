from __future__ import annotations

import re
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Upstream API
    cryptoquant_api_url: str = "https://api.cryptoquant.com/v1"
    cryptoquant_api_key: str = ""
    http_timeout: float = 30.0
    query_default_limit: int = 100

    # Local storage (credentials + discovery cache)
    data_dir: Path = Path.home() / ".cryptoquant"
    cache_ttl_days: int = 7

    # Tool server
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"
    debug: bool = False  # forces DEBUG regardless of log_level

    def api_url(self) -> str:
        return self.cryptoquant_api_url

    def api_base_url(self) -> str:
        """API URL without the trailing version segment."""
        return base_url_for(self.cryptoquant_api_url)

    def env_api_key(self) -> str | None:
        """API key from the environment, ignoring unexpanded ``${...}`` placeholders."""
        key = self.cryptoquant_api_key.strip()
        if not key or key.startswith("${"):
            return None
        return key

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level.upper()


def base_url_for(api_url: str) -> str:
    """Strip a trailing /v1 so endpoint paths (which carry it) can be appended."""
    return re.sub(r"/v1/?$", "", api_url.rstrip("/"))


settings = Settings()
