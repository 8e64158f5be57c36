"""
HLS manifest resolver.
Follows master playlists down to a media playlist and strips minority
segment groups (injected ads) from it.
"""
import asyncio
import httpx
import logging
import re
from typing import Optional
from urllib.parse import urljoin, urlparse

from streamhub.config import get_settings
from streamhub.models.catalog import ManifestFetchResult
from streamhub.services.errors import ManifestFetchError, RedirectLoop

logger = logging.getLogger(__name__)

MAX_DEPTH = 3

# Share of segments the dominant fingerprint must hold before anything is removed
DOMINANCE_THRESHOLD = 0.4

VARIANT_MARKER = "#EXT-X-STREAM-INF"
BANDWIDTH_PATTERN = re.compile(r"(?<![A-Z-])BANDWIDTH=(\d+)")
URI_PATTERN = re.compile(r'URI="([^"]+)"')
LINE_SPLIT = re.compile(r"\r?\n")

# Tags that describe the segment line that follows them
SEGMENT_METADATA_TAGS = ("#EXTINF", "#EXT-X-BYTERANGE", "#EXT-X-KEY", "#EXT-X-DISCONTINUITY")


def to_absolute(ref: str, base_url: str) -> str:
    """Resolve ref against base_url, returning ref unchanged if that fails."""
    try:
        return urljoin(base_url, ref)
    except ValueError:
        return ref


def segment_fingerprint(absolute_url: str) -> Optional[str]:
    """hostname|directory of a segment URL, None if it is not a URL."""
    try:
        parsed = urlparse(absolute_url)
        hostname = parsed.hostname or ""
    except ValueError:
        return None
    if not parsed.scheme:
        return None
    directory = parsed.path.rsplit("/", 1)[0] if "/" in parsed.path else ""
    return f"{hostname}|{directory}"


def select_variant(content: str) -> Optional[str]:
    """
    Pick the variant URI with the highest BANDWIDTH from a master playlist.

    Returns None when the playlist has no variant markers or none of them is
    followed by a URI. Missing bandwidth counts as 0; first seen wins ties.
    """
    if VARIANT_MARKER not in content:
        return None

    lines = LINE_SPLIT.split(content)
    best_url = None
    max_bandwidth = -1
    for i, line in enumerate(lines):
        if VARIANT_MARKER not in line:
            continue
        match = BANDWIDTH_PATTERN.search(line)
        bandwidth = int(match.group(1)) if match else 0
        for next_line in lines[i + 1:]:
            candidate = next_line.strip()
            if candidate and not candidate.startswith("#"):
                if bandwidth > max_bandwidth:
                    max_bandwidth = bandwidth
                    best_url = candidate
                break
    return best_url


def _rewrite_key_uri(line: str, base_url: str) -> str:
    """Make the URI attribute of an #EXT-X-KEY line absolute."""
    return URI_PATTERN.sub(lambda m: f'URI="{to_absolute(m.group(1), base_url)}"', line, count=1)


def sanitize_media_playlist(content: str, base_url: str) -> tuple[str, int]:
    """
    Remove segments that do not belong to the dominant fingerprint group.

    Returns (content, removed_segment_count). Below the dominance threshold
    the original content is returned untouched.
    """
    lines = LINE_SPLIT.split(content)

    segments: list[tuple[int, str]] = []
    counts: dict[str, int] = {}
    for idx, line in enumerate(lines):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        fp = segment_fingerprint(to_absolute(stripped, base_url))
        if fp is None:
            continue
        counts[fp] = counts.get(fp, 0) + 1
        segments.append((idx, fp))

    dominant_fp = ""
    max_count = 0
    for fp, count in counts.items():
        if count > max_count:
            dominant_fp, max_count = fp, count

    total = len(segments)
    if total == 0 or max_count / total < DOMINANCE_THRESHOLD:
        return content, 0

    to_remove: set[int] = set()
    for idx, fp in segments:
        if fp == dominant_fp:
            continue
        to_remove.add(idx)
        j = idx - 1
        while j >= 0:
            prev = lines[j].strip()
            if prev.startswith(SEGMENT_METADATA_TAGS):
                to_remove.add(j)
            elif prev.startswith("#") and not prev.startswith("#EXT"):
                pass  # plain comment
            elif prev:
                break
            j -= 1

    kept = []
    for idx, line in enumerate(lines):
        if idx in to_remove:
            continue
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            if stripped.startswith("#EXT-X-KEY") and 'URI="' in stripped:
                stripped = _rewrite_key_uri(stripped, base_url)
            kept.append(stripped)
        else:
            kept.append(to_absolute(stripped, base_url))

    return "\n".join(kept), total - max_count


class ManifestResolver:
    """Resolve a stream URL to a sanitized media playlist."""

    def __init__(self, timeout: Optional[float] = None):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.manifest_timeout
        self.user_agent = settings.user_agent

    async def _fetch(self, url: str) -> tuple[str, str]:
        """Fetch manifest text directly. Returns (text, final_url)."""
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
            ) as client:
                response = await asyncio.wait_for(client.get(url), self.timeout)
                response.raise_for_status()
                # Use final URL after redirects for resolving relative paths
                return response.text, str(response.url)
        except asyncio.TimeoutError as e:
            raise ManifestFetchError(f"Manifest fetch timed out: {url}") from e
        except httpx.HTTPStatusError as e:
            raise ManifestFetchError(f"HTTP {e.response.status_code} for {url}") from e
        except httpx.HTTPError as e:
            raise ManifestFetchError(f"Manifest fetch failed for {url}: {e!r}") from e

    async def resolve_and_sanitize(self, url: str, depth: int = 0) -> ManifestFetchResult:
        """
        Resolve url down to a media playlist and strip foreign segments.

        Master playlists are followed to their highest-bandwidth variant at
        most MAX_DEPTH times; deeper nesting raises RedirectLoop.
        """
        if depth > MAX_DEPTH:
            raise RedirectLoop(f"Master playlist nesting exceeded {MAX_DEPTH} levels at {url}")

        content, final_url = await self._fetch(url)

        variant = select_variant(content)
        if variant:
            variant_url = to_absolute(variant, final_url)
            logger.debug(f"Master playlist {final_url} -> variant {variant_url}")
            return await self.resolve_and_sanitize(variant_url, depth + 1)

        sanitized, removed = sanitize_media_playlist(content, final_url)
        if removed:
            logger.info(f"Removed {removed} foreign segments from {final_url}")

        return ManifestFetchResult(
            content=sanitized,
            removed_segment_count=removed,
            resolved_from_depth=depth,
            url=final_url,
        )


# Singleton
_manifest_resolver: Optional[ManifestResolver] = None


def get_manifest_resolver() -> ManifestResolver:
    """Get or create manifest resolver singleton."""
    global _manifest_resolver
    if _manifest_resolver is None:
        _manifest_resolver = ManifestResolver()
    return _manifest_resolver
