"""
Configuration management for the StreamHub backend.
Uses pydantic-settings for environment variable loading.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from streamhub.models.catalog import ProxyConfig, ProxyMode, Source


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    app_name: str = "StreamHub"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000

    # Public URL of this backend, used to resolve relative relay prefixes
    # such as "/api/proxy?url=". Relative relays are skipped when unset.
    public_base_url: Optional[str] = None

    # CORS Configuration
    cors_origins: list[str] = ["*"]

    # Rate Limiting
    rate_limit_per_minute: int = 100

    # Relay chain, most trusted first. An empty append prefix is a direct request.
    proxies: list[ProxyConfig] = [
        ProxyConfig(prefix="", mode=ProxyMode.APPEND),
        ProxyConfig(prefix="/api/proxy?url=", mode=ProxyMode.QUERY),
        ProxyConfig(prefix="https://api.codetabs.com/v1/proxy?quest=", mode=ProxyMode.QUERY),
        ProxyConfig(prefix="https://corsproxy.io/?", mode=ProxyMode.APPEND),
        ProxyConfig(prefix="https://api.allorigins.win/raw?url=", mode=ProxyMode.QUERY),
    ]

    # Timeouts (seconds)
    proxy_timeout: float = 12.0
    manifest_timeout: float = 8.0
    poster_timeout: float = 4.0
    relay_timeout: float = 30.0

    # Catalog browse failover
    failover_delay: float = 1.5

    # Douban poster lookups are staggered by a random delay up to this value
    douban_stagger_max: float = 2.0

    # Sources
    source_list_url: str = "https://a.wokaotianshi.eu.org/jgcj/zcying.json"
    default_sources: list[Source] = [
        Source(name="量子资源", api="https://cj.lziapi.com/api.php/provide/vod/"),
        Source(name="非凡资源", api="https://cj.ffzyapi.com/api.php/provide/vod/"),
        Source(name="天空资源", api="https://api.tiankongapi.com/api.php/provide/vod/"),
    ]

    # Library
    history_limit: int = 50
    # Device libraries kept in memory; least recently used are dropped first
    max_device_libraries: int = 1000

    user_agent: str = DEFAULT_USER_AGENT

    # Pydantic V2 configuration
    model_config = SettingsConfigDict(env_prefix="STREAMHUB_", env_file=".env")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
