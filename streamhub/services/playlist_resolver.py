"""
Play-URL resolver.
Decodes the compact MacCMS play-URL encoding into episode lists.

Grammar: groups are separated by "$$$", episodes by "#", and an optional
episode name is separated from its URL by the first "$".
"""
from streamhub.models.catalog import Episode

GROUP_SEPARATOR = "$$$"
EPISODE_SEPARATOR = "#"
NAME_SEPARATOR = "$"
DEFAULT_EPISODE_NAME = "正片"

# Streaming first, then progressive download
PREFERRED_FORMATS = (".m3u8", ".mp4")


def parse_episode(token: str) -> Episode | None:
    """Parse one "name$url" token; None if it has no usable URL."""
    token = token.strip()
    if not token:
        return None

    name, sep, url = token.partition(NAME_SEPARATOR)
    if not sep:
        name, url = "", token

    url = url.strip()
    if url.startswith("//"):
        url = "https:" + url
    if not url.startswith(("http://", "https://")):
        return None

    return Episode(name=name.strip() or DEFAULT_EPISODE_NAME, url=url)


def parse_play_groups(raw_play_url: str | None) -> list[list[Episode]]:
    """Decode every group, keeping only valid episodes. Empty groups are kept."""
    if not raw_play_url:
        return []
    groups = []
    for raw_group in raw_play_url.split(GROUP_SEPARATOR):
        episodes = [parse_episode(token) for token in raw_group.split(EPISODE_SEPARATOR)]
        groups.append([ep for ep in episodes if ep is not None])
    return groups


def select_group(groups: list[list[Episode]]) -> list[Episode]:
    """Pick the playlist: first with .m3u8, else first with .mp4, else first non-empty."""
    candidates = [group for group in groups if group]
    for marker in PREFERRED_FORMATS:
        for group in candidates:
            if any(marker in ep.url for ep in group):
                return group
    return candidates[0] if candidates else []


def resolve_playlist(raw_play_url: str | None) -> list[Episode]:
    """Decode a raw play-URL string into the selected episode list."""
    return select_group(parse_play_groups(raw_play_url))
