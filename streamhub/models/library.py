"""
Library models: watch history, favorites and per-title skip settings.
"""
from typing import Optional

from pydantic import BaseModel


class HistoryItem(BaseModel):
    """A catalog entry with playback progress attached."""
    id: str
    title: str
    year: str = ""
    genre: str = ""
    image: str = ""
    note: str = ""
    source_api: Optional[str] = None
    source_name: Optional[str] = None

    current_time: float = 0.0
    current_episode_url: Optional[str] = None
    current_episode_name: Optional[str] = None


class SkipConfig(BaseModel):
    """Intro/outro skipping handed to the player."""
    intro_skip_seconds: float = 0.0
    outro_skip_offset_seconds: float = 0.0
