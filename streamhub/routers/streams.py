"""
Stream manifest API endpoints.
Resolves master playlists and strips foreign (ad) segments before delivery.
"""
from fastapi import APIRouter, Query, HTTPException
from fastapi.responses import Response

from streamhub.services.errors import ManifestFetchError, RedirectLoop
from streamhub.services.manifest_resolver import get_manifest_resolver

import logging
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/streams", tags=["streams"])


@router.get("/manifest")
async def get_sanitized_manifest(
    url: str = Query(..., description="Absolute URL of an HLS playlist"),
):
    """
    Get the sanitized media playlist for a stream.

    Master playlists are followed to their highest-bandwidth variant. The
    number of removed segments and the nesting depth are reported in
    X-Removed-Segments and X-Resolved-Depth.
    """
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="url must be absolute http(s)")

    resolver = get_manifest_resolver()
    try:
        result = await resolver.resolve_and_sanitize(url)
    except RedirectLoop as e:
        logger.warning(str(e))
        raise HTTPException(status_code=508, detail=str(e))
    except ManifestFetchError as e:
        logger.warning(str(e))
        raise HTTPException(status_code=502, detail=str(e))

    return Response(
        content=result.content,
        media_type="application/vnd.apple.mpegurl",
        headers={
            "Access-Control-Allow-Origin": "*",
            "Cache-Control": "no-cache",
            "X-Removed-Segments": str(result.removed_segment_count),
            "X-Resolved-Depth": str(result.resolved_from_depth),
        },
    )
