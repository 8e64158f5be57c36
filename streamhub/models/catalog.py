"""
Catalog data models.
Canonical shapes every CMS source response is normalized into.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProxyMode(str, Enum):
    """How the target URL is attached to a relay prefix."""
    QUERY = "query"    # prefix + url-encoded target
    APPEND = "append"  # prefix + raw target


class ProxyConfig(BaseModel):
    """One relay strategy in the ordered proxy chain."""
    model_config = ConfigDict(frozen=True)

    prefix: str
    mode: ProxyMode = ProxyMode.QUERY


class Source(BaseModel):
    """A CMS source. Identity is the API base URL."""
    model_config = ConfigDict(frozen=True)

    name: str
    api: str
    is_custom: bool = False


class Category(BaseModel):
    """Category scoped to one source."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class CatalogEntry(BaseModel):
    """Canonical movie/show record."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    year: str = ""
    genre: str = ""
    image: str = ""
    note: str = ""
    description: str = ""
    actor: str = ""
    director: str = ""
    play_url: str = ""

    # Set by the aggregator, (source_api, id) is the global key
    source_api: Optional[str] = None
    source_name: Optional[str] = None

    def tagged(self, source: Source) -> "CatalogEntry":
        """Copy of this entry attributed to a source."""
        return self.model_copy(update={"source_api": source.api, "source_name": source.name})


class CatalogPage(BaseModel):
    """Result of parsing one catalog/search/detail response."""
    entries: list[CatalogEntry] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.entries and not self.categories


class Episode(BaseModel):
    """A playable episode inside a playlist group."""
    model_config = ConfigDict(frozen=True)

    name: str
    url: str


class ManifestFetchResult(BaseModel):
    """Outcome of resolving and sanitizing an HLS manifest."""
    content: str
    removed_segment_count: int = 0
    resolved_from_depth: int = 0
    url: str = ""


class BrowseResult(BaseModel):
    """Catalog browse outcome, including any source failover."""
    source: Optional[Source] = None
    entries: list[CatalogEntry] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    page: int = 1
    error: bool = False
    attempted: list[str] = Field(default_factory=list)  # source apis in order tried


class DoubanSubject(BaseModel):
    """Recommendation card from Douban."""
    id: str
    title: str
    year: str = ""
    genre: str = ""
    image: str = ""
    rating: float = 0.0
