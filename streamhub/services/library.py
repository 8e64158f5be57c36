"""
User library: watch history, favorites, custom sources and skip settings.
Kept in process memory per device id; nothing is written to disk.
"""
import logging
from collections import OrderedDict
from typing import Optional

from streamhub.config import get_settings
from streamhub.models.catalog import Source
from streamhub.models.library import HistoryItem, SkipConfig

logger = logging.getLogger(__name__)


def _find(items: list[HistoryItem], item_id: str) -> int:
    return next((i for i, item in enumerate(items) if item.id == item_id), -1)


def _merge_progress(target: HistoryItem, source: HistoryItem) -> HistoryItem:
    """Fill progress fields of target that are unset from source."""
    return target.model_copy(update={
        "current_time": target.current_time or source.current_time or 0.0,
        "current_episode_url": target.current_episode_url or source.current_episode_url,
        "current_episode_name": target.current_episode_name or source.current_episode_name,
    })


class UserLibrary:
    """Synchronous library store for one device."""

    def __init__(self, history_limit: Optional[int] = None):
        self.history_limit = history_limit or get_settings().history_limit
        self._history: list[HistoryItem] = []
        self._favorites: list[HistoryItem] = []
        self._custom_sources: list[Source] = []
        self._skip_configs: dict[str, SkipConfig] = {}
        self.last_source_api: Optional[str] = None

    # ==================== HISTORY ====================

    def get_history(self) -> list[HistoryItem]:
        return list(self._history)

    def get_progress(self, item_id: str) -> Optional[HistoryItem]:
        """History entry with progress, falling back to the favorite entry."""
        index = _find(self._history, item_id)
        if index != -1 and self._history[index].current_time:
            return self._history[index]
        index = _find(self._favorites, item_id)
        return self._favorites[index] if index != -1 else None

    def add_to_history(self, item: HistoryItem) -> HistoryItem:
        """Move item to the front of history, keeping any known progress."""
        index = _find(self._history, item.id)
        if index == -1:
            fav_index = _find(self._favorites, item.id)
            if fav_index != -1:
                item = _merge_progress(item, self._favorites[fav_index])
        else:
            item = _merge_progress(item, self._history.pop(index))

        self._history = [item, *self._history][: self.history_limit]
        return item

    def update_progress(
        self,
        item_id: str,
        time: float,
        episode_url: Optional[str] = None,
        episode_name: Optional[str] = None,
    ):
        """Record playback position in both history and favorites."""
        update = {"current_time": time}
        if episode_url:
            update["current_episode_url"] = episode_url
        if episode_name:
            update["current_episode_name"] = episode_name

        for items in (self._history, self._favorites):
            index = _find(items, item_id)
            if index != -1:
                items[index] = items[index].model_copy(update=update)

    def remove_from_history(self, item_id: str):
        self._history = [item for item in self._history if item.id != item_id]

    def clear_history(self):
        self._history = []

    # ==================== FAVORITES ====================

    def get_favorites(self) -> list[HistoryItem]:
        return list(self._favorites)

    def is_favorite(self, item_id: str) -> bool:
        return _find(self._favorites, item_id) != -1

    def toggle_favorite(self, item: HistoryItem) -> bool:
        """Add or remove a favorite. Returns True if it was added."""
        index = _find(self._favorites, item.id)
        if index != -1:
            del self._favorites[index]
            return False

        hist_index = _find(self._history, item.id)
        if hist_index != -1:
            history_item = self._history[hist_index]
            item = item.model_copy(update={
                "current_time": history_item.current_time or item.current_time or 0.0,
                "current_episode_url": history_item.current_episode_url or item.current_episode_url,
                "current_episode_name": history_item.current_episode_name or item.current_episode_name,
            })
        self._favorites.insert(0, item)
        return True

    def remove_from_favorites(self, item_id: str):
        self._favorites = [item for item in self._favorites if item.id != item_id]

    # ==================== CUSTOM SOURCES ====================

    def get_custom_sources(self) -> list[Source]:
        return list(self._custom_sources)

    def add_custom_source(self, source: Source) -> list[Source]:
        if any(s.api == source.api for s in self._custom_sources):
            return self.get_custom_sources()
        self._custom_sources.append(source.model_copy(update={"is_custom": True}))
        return self.get_custom_sources()

    def remove_custom_source(self, api: str) -> list[Source]:
        self._custom_sources = [s for s in self._custom_sources if s.api != api]
        if self.last_source_api == api:
            self.last_source_api = None
        return self.get_custom_sources()

    # ==================== SKIP SETTINGS ====================

    def get_skip_config(self, item_id: str) -> SkipConfig:
        return self._skip_configs.get(item_id) or SkipConfig()

    def set_skip_config(self, item_id: str, config: SkipConfig):
        self._skip_configs[item_id] = config


# Per-device libraries, least recently used first
_libraries: OrderedDict[str, UserLibrary] = OrderedDict()


def get_library(device_id: str) -> UserLibrary:
    """
    Get or create the library for a device.

    At most max_device_libraries are kept; the least recently used one is
    dropped when a new device would exceed that.
    """
    library = _libraries.get(device_id)
    if library is not None:
        _libraries.move_to_end(device_id)
        return library

    logger.debug(f"Creating library for device {device_id[:12]}")
    library = _libraries[device_id] = UserLibrary()
    limit = get_settings().max_device_libraries
    while len(_libraries) > limit:
        evicted, _ = _libraries.popitem(last=False)
        logger.info(f"Library limit reached, dropped device {evicted[:12]}")
    return library
