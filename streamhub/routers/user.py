"""
User data API endpoints.
Handles watch history, playback progress, favorites and skip settings.
"""
from fastapi import APIRouter, Header
from pydantic import BaseModel
from typing import Optional

from streamhub.models.library import HistoryItem, SkipConfig
from streamhub.services.library import get_library

router = APIRouter(prefix="/api/user", tags=["user"])


class ProgressRequest(BaseModel):
    current_time: float
    episode_url: Optional[str] = None
    episode_name: Optional[str] = None


# Watch history endpoints
@router.get("/history")
async def get_history(
    x_device_id: str = Header(..., description="Device fingerprint for user identification")
):
    """Get user's watch history, newest first."""
    history = get_library(x_device_id).get_history()
    return {"history": history, "count": len(history)}


@router.post("/history")
async def add_to_history(
    item: HistoryItem,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Record a title as watched, keeping any saved progress."""
    saved = get_library(x_device_id).add_to_history(item)
    return {"item": saved}


@router.put("/history/{item_id}/progress")
async def update_progress(
    item_id: str,
    request: ProgressRequest,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Save playback position for a title."""
    get_library(x_device_id).update_progress(
        item_id,
        request.current_time,
        episode_url=request.episode_url,
        episode_name=request.episode_name,
    )
    return {"updated": True, "id": item_id}


@router.delete("/history/{item_id}")
async def remove_from_history(
    item_id: str,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Remove a title from history."""
    get_library(x_device_id).remove_from_history(item_id)
    return {"removed": True, "id": item_id}


@router.delete("/history")
async def clear_history(
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Clear the whole watch history."""
    get_library(x_device_id).clear_history()
    return {"cleared": True}


# Favorites endpoints
@router.get("/favorites")
async def get_favorites(
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Get user's favorite titles."""
    favorites = get_library(x_device_id).get_favorites()
    return {"favorites": favorites, "count": len(favorites)}


@router.post("/favorites/toggle")
async def toggle_favorite(
    item: HistoryItem,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Add a title to favorites, or remove it if already there."""
    added = get_library(x_device_id).toggle_favorite(item)
    return {"is_favorite": added, "id": item.id}


@router.get("/favorites/{item_id}/check")
async def check_favorite(
    item_id: str,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Check if a title is in favorites."""
    return {"is_favorite": get_library(x_device_id).is_favorite(item_id), "id": item_id}


@router.delete("/favorites/{item_id}")
async def remove_favorite(
    item_id: str,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Remove a title from favorites."""
    get_library(x_device_id).remove_from_favorites(item_id)
    return {"is_favorite": False, "id": item_id}


# Skip settings endpoints
@router.get("/skip/{item_id}")
async def get_skip_config(
    item_id: str,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Get intro/outro skip settings for a title."""
    return get_library(x_device_id).get_skip_config(item_id)


@router.put("/skip/{item_id}")
async def set_skip_config(
    item_id: str,
    config: SkipConfig,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Save intro/outro skip settings for a title."""
    get_library(x_device_id).set_skip_config(item_id, config)
    return config
