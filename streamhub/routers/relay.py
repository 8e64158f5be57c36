"""
Server-side relay endpoint.
Fetches an upstream URL on behalf of the client and returns the body with
permissive CORS headers; the ProxyFetcher can use it as a relay strategy.
"""
import httpx
import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, Response

from streamhub.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["relay"])


@router.get("/proxy")
async def relay(url: Optional[str] = Query(None, description="Absolute URL to fetch")):
    """
    Relay a GET request.

    The upstream body is returned with status 200 and the upstream
    content type, whatever status the upstream answered with.
    """
    if not url:
        return JSONResponse(status_code=400, content={"error": "Missing URL parameter"})

    settings = get_settings()
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.relay_timeout),
            headers={"User-Agent": settings.user_agent},
            follow_redirects=True,
        ) as client:
            response = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Relay fetch failed for {url[:80]}: {e!r}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch data", "details": str(e) or type(e).__name__},
        )

    return Response(
        content=response.text,
        media_type=response.headers.get("content-type") or "text/plain",
        headers={"Access-Control-Allow-Origin": "*"},
    )
