"""
Catalog discovery API endpoints.
Sources, browsing, search, detail, Douban recommendations and play-URL decoding.
"""
from fastapi import APIRouter, Header, Query, HTTPException
from pydantic import BaseModel
from typing import Optional

from streamhub.models.catalog import BrowseResult, Source
from streamhub.services.aggregator import get_aggregator
from streamhub.services.douban import MOVIE_TAGS, TV_TAGS, get_douban_service
from streamhub.services.errors import FetchExhausted
from streamhub.services.library import get_library
from streamhub.services.playlist_resolver import parse_play_groups, resolve_playlist, select_group
from streamhub.services.source_registry import SourceRegistry, get_source_registry

import logging
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["catalog"])


class CustomSourceRequest(BaseModel):
    name: str
    api: str


async def _sources_for(x_device_id: Optional[str]) -> list[Source]:
    library = get_library(x_device_id) if x_device_id else None
    return await get_source_registry().all_sources(library)


def _lookup_source(sources: list[Source], api: str) -> Source:
    """Known source for api, or an ad-hoc one for any absolute API URL."""
    source = SourceRegistry.find(sources, api)
    if source:
        return source
    if not api.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="Unknown source")
    return Source(name=api, api=api)


# Source endpoints
@router.get("/sources")
async def list_sources(
    x_device_id: Optional[str] = Header(None, description="Device fingerprint"),
):
    """List shared and custom sources plus the one to browse by default."""
    registry = get_source_registry()
    library = get_library(x_device_id) if x_device_id else None
    sources = await registry.all_sources(library)
    custom = library.get_custom_sources() if library else []
    current = SourceRegistry.resolve_current(
        sources,
        last_api=library.last_source_api if library else None,
        custom_sources=custom,
    )
    return {"sources": sources, "custom": custom, "current": current}


@router.post("/sources/custom")
async def add_custom_source(
    request: CustomSourceRequest,
    x_device_id: str = Header(..., description="Device fingerprint"),
):
    """Add a custom CMS source for this device."""
    if not request.name.strip():
        raise HTTPException(status_code=400, detail="Source name is required")
    if not request.api.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="Source api must be an absolute http(s) URL")

    library = get_library(x_device_id)
    custom = library.add_custom_source(Source(name=request.name.strip(), api=request.api))
    return {"custom": custom, "count": len(custom)}


@router.delete("/sources/custom")
async def remove_custom_source(
    api: str = Query(..., description="API URL of the custom source"),
    x_device_id: str = Header(..., description="Device fingerprint"),
):
    """Remove a custom source."""
    custom = get_library(x_device_id).remove_custom_source(api)
    return {"custom": custom, "count": len(custom)}


# Browse endpoints
@router.get("/catalog")
async def browse_catalog(
    source: Optional[str] = Query(None, description="API URL of the source to browse"),
    type_id: str = Query("", description="Category id within the source"),
    page: int = Query(1, ge=1, description="Page number"),
    failover: bool = Query(True, description="Move to the next source if the first page is dead"),
    x_device_id: Optional[str] = Header(None, description="Device fingerprint"),
):
    """
    Browse one page of a source's catalog.

    - **source**: defaults to the device's last used source
    - **failover**: on page 1, try later sources when this one is down
    """
    library = get_library(x_device_id) if x_device_id else None
    sources = await get_source_registry().all_sources(library)
    if not sources:
        raise HTTPException(status_code=503, detail="No sources available")

    if source is None:
        current = SourceRegistry.resolve_current(
            sources,
            last_api=library.last_source_api if library else None,
            custom_sources=library.get_custom_sources() if library else None,
        )
        source = current.api if current else None

    aggregator = get_aggregator()
    if failover:
        result = await aggregator.browse(sources, source, type_id, page)
    else:
        active = _lookup_source(sources, source) if source else sources[0]
        try:
            catalog = await aggregator.fetch_catalog(active, type_id, page)
        except FetchExhausted as e:
            raise HTTPException(status_code=502, detail=str(e))
        result = BrowseResult(
            source=active,
            entries=catalog.entries,
            categories=catalog.categories,
            page=page,
            attempted=[active.api],
        )

    if library and result.source and not result.error:
        library.last_source_api = result.source.api
    return result


@router.get("/search")
async def search(
    q: str = Query(..., min_length=1, description="Search keyword"),
    sources: Optional[str] = Query(None, description="Comma separated source API URLs"),
    dedupe: bool = Query(False, description="Collapse results sharing title and year"),
    x_device_id: Optional[str] = Header(None, description="Device fingerprint"),
):
    """Search all (or the selected) sources concurrently."""
    available = await _sources_for(x_device_id)
    if sources:
        wanted = [api.strip() for api in sources.split(",") if api.strip()]
        selected = [_lookup_source(available, api) for api in wanted]
    else:
        selected = available

    results = await get_aggregator().aggregate_search(selected, q.strip(), dedupe=dedupe)
    return {
        "query": q,
        "results": results,
        "count": len(results),
        "sources": [s.api for s in selected],
    }


@router.get("/detail")
async def get_detail(
    source: str = Query(..., description="API URL of the source"),
    id: str = Query(..., min_length=1, description="Upstream title id"),
    x_device_id: Optional[str] = Header(None, description="Device fingerprint"),
):
    """
    Get a title with its decoded episodes.

    The selected episode list is the preferred streaming group; all groups
    are returned as well. Saved progress is attached when a device id is given.
    """
    library = get_library(x_device_id) if x_device_id else None
    sources = await get_source_registry().all_sources(library)
    active = _lookup_source(sources, source)

    try:
        entry = await get_aggregator().fetch_detail(active, id)
    except FetchExhausted as e:
        logger.warning(f"Detail fetch failed for {active.name}/{id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    if not entry:
        raise HTTPException(status_code=404, detail="Title not found")

    groups = parse_play_groups(entry.play_url)
    return {
        "entry": entry,
        "episodes": select_group(groups),
        "groups": groups,
        "progress": library.get_progress(entry.id) if library else None,
    }


@router.get("/douban")
async def douban_recommendations(
    kind: str = Query("movie", pattern="^(movie|tv)$", description="movie or tv"),
    tag: str = Query("热门", description="Douban tag"),
    start: int = Query(0, ge=0, description="Page offset"),
):
    """Get Douban recommendation cards with upgraded posters."""
    subjects = await get_douban_service().fetch_subjects(kind, tag, start)
    return {
        "subjects": subjects,
        "count": len(subjects),
        "tags": MOVIE_TAGS if kind == "movie" else TV_TAGS,
    }


@router.get("/playlist")
async def decode_playlist(raw: str = Query(..., description="Raw play-URL string")):
    """Decode a play-URL string into the selected episode list and all groups."""
    return {
        "episodes": resolve_playlist(raw),
        "groups": parse_play_groups(raw),
    }
