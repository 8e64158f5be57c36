"""
Source aggregation service.
Runs catalog, search and detail calls against one or many CMS sources with
per-source failure isolation.
"""
import asyncio
import logging
from typing import Optional
from urllib.parse import quote

from streamhub.config import get_settings
from streamhub.models.catalog import BrowseResult, CatalogEntry, CatalogPage, Source
from streamhub.services.catalog_parser import CatalogParser, get_base_host
from streamhub.services.proxy_fetcher import ProxyFetcher, get_proxy_fetcher

logger = logging.getLogger(__name__)

# encodeURIComponent-compatible safe set
QUERY_SAFE = "-_.!~*'()"


def build_api_url(api: str, query: str) -> str:
    """Append a query string to a CMS API base URL."""
    separator = "&" if "?" in api else "?"
    return f"{api}{separator}{query}"


def list_url(api: str) -> str:
    return build_api_url(api, "ac=list")


def listing_url(api: str, page: int = 1, type_id: str = "") -> str:
    query = f"ac=detail&pg={page}"
    if type_id:
        query += f"&t={type_id}"
    return build_api_url(api, query)


def search_url(api: str, keyword: str) -> str:
    return build_api_url(api, f"ac=detail&wd={quote(keyword, safe=QUERY_SAFE)}")


def detail_url(api: str, ids: str) -> str:
    return build_api_url(api, f"ac=detail&ids={quote(ids, safe=',')}")


class SourceAggregator:
    """Orchestrates CMS calls across sources."""

    def __init__(
        self,
        fetcher: Optional[ProxyFetcher] = None,
        parser: Optional[CatalogParser] = None,
        failover_delay: Optional[float] = None,
    ):
        self.fetcher = fetcher or get_proxy_fetcher()
        self.parser = parser or CatalogParser()
        self.failover_delay = (
            failover_delay if failover_delay is not None else get_settings().failover_delay
        )

    async def fetch_catalog(self, source: Source, type_id: str = "", page: int = 1) -> CatalogPage:
        """
        Fetch categories and one listing page concurrently.

        One call failing does not cancel the other. Raises the listing call's
        error only when both fail.
        """
        api_host = get_base_host(source.api)
        list_result, detail_result = await asyncio.gather(
            self.fetcher.fetch(list_url(source.api)),
            self.fetcher.fetch(listing_url(source.api, page, type_id)),
            return_exceptions=True,
        )

        if isinstance(list_result, BaseException) and isinstance(detail_result, BaseException):
            raise detail_result

        categories = []
        if isinstance(list_result, BaseException):
            logger.warning(f"Category fetch failed for {source.name}: {list_result}")
        else:
            categories = self.parser.parse(list_result, api_host).categories

        entries = []
        if isinstance(detail_result, BaseException):
            logger.warning(f"Listing fetch failed for {source.name}: {detail_result}")
        else:
            entries = [e.tagged(source) for e in self.parser.parse(detail_result, api_host).entries]

        return CatalogPage(entries=entries, categories=categories)

    async def browse(
        self,
        sources: list[Source],
        source_api: Optional[str] = None,
        type_id: str = "",
        page: int = 1,
    ) -> BrowseResult:
        """
        Browse the active source, failing over on a dead first page.

        A first-page request that errors or returns neither entries nor
        categories moves on to the next source in list order after a short
        delay, stopping at the end of the list. Later pages never fail over.
        """
        if not sources:
            return BrowseResult(page=page, error=True)

        start = next((i for i, s in enumerate(sources) if s.api == source_api), 0)
        attempted: list[str] = []

        for index in range(start, len(sources)):
            source = sources[index]
            attempted.append(source.api)

            result: Optional[CatalogPage] = None
            try:
                result = await self.fetch_catalog(source, type_id, page)
            except Exception as e:
                logger.warning(f"Catalog browse failed for {source.name}: {e}")

            if result is not None and not (page == 1 and result.is_empty):
                return BrowseResult(
                    source=source,
                    entries=result.entries,
                    categories=result.categories,
                    page=page,
                    attempted=attempted,
                )

            if page != 1:
                return BrowseResult(source=source, page=page, error=result is None, attempted=attempted)

            if index + 1 < len(sources):
                logger.info(f"Source {source.name} unavailable, failing over to {sources[index + 1].name}")
                await asyncio.sleep(self.failover_delay)
                # Category ids are not portable across sources
                type_id = ""

        return BrowseResult(source=sources[-1], page=page, error=True, attempted=attempted)

    async def search_source(self, source: Source, query: str) -> list[CatalogEntry]:
        """Search one source. Raises FetchExhausted if it cannot be reached."""
        text = await self.fetcher.fetch(search_url(source.api, query))
        page = self.parser.parse(text, get_base_host(source.api))
        return [e.tagged(source) for e in page.entries]

    async def _search_isolated(self, source: Source, query: str) -> list[CatalogEntry]:
        try:
            return await self.search_source(source, query)
        except Exception as e:
            logger.warning(f"Search failed for {source.name}: {e}")
            return []

    async def aggregate_search(
        self,
        sources: list[Source],
        query: str,
        dedupe: bool = False,
    ) -> list[CatalogEntry]:
        """
        Search every source concurrently and merge the results.

        A failing source contributes nothing; it never fails the whole
        search. With dedupe, entries sharing (title, year) collapse into one.
        """
        results = await asyncio.gather(*(self._search_isolated(s, query) for s in sources))
        merged = [entry for per_source in results for entry in per_source]

        if dedupe:
            unique: dict[tuple[str, str], CatalogEntry] = {}
            for entry in merged:
                unique[(entry.title, entry.year)] = entry
            merged = list(unique.values())

        return merged

    async def fetch_detail(self, source: Source, entry_id: str) -> Optional[CatalogEntry]:
        """Fetch a single title. Raises FetchExhausted if unreachable."""
        text = await self.fetcher.fetch(detail_url(source.api, entry_id))
        entry = self.parser.parse_detail(text, get_base_host(source.api))
        return entry.tagged(source) if entry else None


# Singleton
_aggregator: Optional[SourceAggregator] = None


def get_aggregator() -> SourceAggregator:
    """Get or create aggregator singleton."""
    global _aggregator
    if _aggregator is None:
        _aggregator = SourceAggregator()
    return _aggregator
