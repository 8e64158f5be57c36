"""
Source registry service.
Loads the shared CMS source list and merges in per-device custom sources.
"""
import json
import logging
from typing import Optional

from streamhub.config import get_settings
from streamhub.models.catalog import Source
from streamhub.services.library import UserLibrary
from streamhub.services.proxy_fetcher import ProxyFetcher, get_proxy_fetcher

logger = logging.getLogger(__name__)


class SourceRegistry:
    """Provides the configured and custom CMS sources."""

    def __init__(self, fetcher: Optional[ProxyFetcher] = None):
        self.settings = get_settings()
        self.fetcher = fetcher or get_proxy_fetcher()
        self._sources: Optional[list[Source]] = None

    @property
    def fallback_sources(self) -> list[Source]:
        return list(self.settings.default_sources)

    async def fetch_sources(self) -> list[Source]:
        """Fetch the remote source list, falling back to the defaults."""
        url = self.settings.source_list_url
        try:
            text = await self.fetcher.fetch(url)
            data = json.loads(text)
        except Exception as e:
            logger.warning(f"Failed to load source list from {url}: {e}")
            return self.fallback_sources

        if not isinstance(data, list):
            return self.fallback_sources

        sources = []
        for item in data:
            if not isinstance(item, dict):
                continue
            name, api = item.get("name"), item.get("api")
            if isinstance(name, str) and isinstance(api, str) and api.startswith(("http://", "https://")):
                sources.append(Source(name=name, api=api))

        if not sources:
            return self.fallback_sources
        logger.info(f"Loaded {len(sources)} sources from {url}")
        return sources

    async def get_sources(self, refresh: bool = False) -> list[Source]:
        """Shared source list, fetched once per process unless refreshed."""
        if self._sources is None or refresh:
            self._sources = await self.fetch_sources()
        return list(self._sources)

    async def all_sources(self, library: Optional[UserLibrary] = None) -> list[Source]:
        """Shared sources followed by the device's custom sources."""
        sources = await self.get_sources()
        if library is not None:
            known = {s.api for s in sources}
            sources.extend(s for s in library.get_custom_sources() if s.api not in known)
        return sources

    @staticmethod
    def find(sources: list[Source], api: Optional[str]) -> Optional[Source]:
        return next((s for s in sources if s.api == api), None) if api else None

    @staticmethod
    def resolve_current(
        sources: list[Source],
        last_api: Optional[str] = None,
        custom_sources: Optional[list[Source]] = None,
    ) -> Optional[Source]:
        """Last used source, else the first custom one, else the first shared one."""
        saved = SourceRegistry.find(sources, last_api)
        if saved:
            return saved
        if custom_sources:
            return custom_sources[0]
        return sources[0] if sources else None


# Singleton
_registry: Optional[SourceRegistry] = None


def get_source_registry() -> SourceRegistry:
    """Get or create source registry singleton."""
    global _registry
    if _registry is None:
        _registry = SourceRegistry()
    return _registry
