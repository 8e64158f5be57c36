"""
Douban recommendation service.
Lists are fetched through the relay chain; posters are looked up directly
from WMDB and memoized per Douban id.
"""
import asyncio
import httpx
import json
import logging
import random
from typing import Any, Optional
from urllib.parse import quote

from streamhub.config import get_settings
from streamhub.models.catalog import DoubanSubject
from streamhub.services.cache import MISSING, PosterCache, get_poster_cache
from streamhub.services.proxy_fetcher import ProxyFetcher, get_proxy_fetcher

logger = logging.getLogger(__name__)

SUBJECTS_URL = (
    "https://movie.douban.com/j/search_subjects"
    "?type={kind}&tag={tag}&sort=recommend&page_limit={limit}&page_start={start}"
)
WMDB_URL = "https://api.wmdb.tv/movie/api?id={id}"
PAGE_LIMIT = 24

MOVIE_TAGS = ["热门", "最新", "经典", "豆瓣高分", "冷门佳片", "华语", "欧美", "韩国", "日本",
              "动作", "喜剧", "爱情", "科幻", "悬疑", "恐怖", "治愈"]
TV_TAGS = ["热门", "美剧", "英剧", "韩剧", "日剧", "国产剧", "港剧", "日本动画", "综艺", "纪录片"]


def _parse_rating(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class DoubanService:
    """Fetch Douban recommendation lists with upgraded posters."""

    def __init__(
        self,
        fetcher: Optional[ProxyFetcher] = None,
        poster_cache: Optional[PosterCache] = None,
        stagger_max: Optional[float] = None,
    ):
        settings = get_settings()
        self.fetcher = fetcher or get_proxy_fetcher()
        self.poster_cache = poster_cache if poster_cache is not None else get_poster_cache()
        self.stagger_max = stagger_max if stagger_max is not None else settings.douban_stagger_max
        self.poster_timeout = settings.poster_timeout
        self.user_agent = settings.user_agent

    async def resolve_poster(self, douban_id: str) -> Optional[str]:
        """
        Look up a WMDB poster for a Douban id.

        Completed lookups are memoized, including ones that found no poster.
        Network failures are not, so they can be retried later.
        """
        cached = self.poster_cache.get(douban_id)
        if cached is not MISSING:
            return cached

        # Spread requests out to stay under WMDB rate limits
        if self.stagger_max > 0:
            await asyncio.sleep(random.uniform(0, self.stagger_max))

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.poster_timeout),
                headers={"User-Agent": self.user_agent},
            ) as client:
                response = await client.get(WMDB_URL.format(id=quote(douban_id, safe="")))
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"WMDB lookup failed for {douban_id}: {e!r}")
            return None

        poster = self._extract_poster(data)
        self.poster_cache.set(douban_id, poster)
        return poster

    @staticmethod
    def _extract_poster(data: Any) -> Optional[str]:
        """WMDB answers with either an object or a {"data": [...]} wrapper."""
        entry = data
        if isinstance(data, dict) and isinstance(data.get("data"), list) and data["data"]:
            entry = data["data"][0]
        elif isinstance(data, list):
            entry = data[0] if data else {}
        if not isinstance(entry, dict):
            return None
        poster = entry.get("poster")
        if not isinstance(poster, str) or not poster or "noposter" in poster:
            return None
        return poster

    async def _build_subject(self, item: dict, tag: str) -> DoubanSubject:
        subject_id = str(item.get("id") or "")
        image = item.get("cover") or ""
        if subject_id:
            poster = await self.resolve_poster(subject_id)
            if poster:
                image = poster
        return DoubanSubject(
            id=subject_id,
            title=item.get("title") or "",
            genre=tag,
            image=image,
            rating=_parse_rating(item.get("rate")),
        )

    async def fetch_subjects(self, kind: str, tag: str, page_start: int = 0) -> list[DoubanSubject]:
        """
        Fetch one page of Douban recommendations.

        Any failure yields an empty list.
        """
        url = SUBJECTS_URL.format(
            kind=kind,
            tag=quote(tag, safe=""),
            limit=PAGE_LIMIT,
            start=page_start,
        )
        try:
            text = await self.fetcher.fetch(url)
            if not text.strip().startswith("{"):
                return []
            data = json.loads(text)
            subjects = data.get("subjects") if isinstance(data, dict) else None
            if not isinstance(subjects, list):
                return []
            items = [item for item in subjects if isinstance(item, dict)]
            return list(await asyncio.gather(*(self._build_subject(item, tag) for item in items)))
        except Exception as e:
            logger.error(f"Douban fetch error for {kind}/{tag}: {e}")
            return []


# Singleton
_douban_service: Optional[DoubanService] = None


def get_douban_service() -> DoubanService:
    """Get or create Douban service singleton."""
    global _douban_service
    if _douban_service is None:
        _douban_service = DoubanService()
    return _douban_service
