"""
Tests for HLS master resolution and foreign segment removal.
"""
import httpx
import pytest
import respx

from streamhub.services.errors import ManifestFetchError, RedirectLoop
from streamhub.services.manifest_resolver import (
    ManifestResolver,
    sanitize_media_playlist,
    segment_fingerprint,
    select_variant,
)

BASE = "https://v.example.com/vod/abc/index.m3u8"


def _segment_lines(content: str) -> list[str]:
    return [line for line in content.split("\n") if line and not line.startswith("#")]


class TestSanitize:

    def test_removes_minority_group(self, sample_ad_playlist):
        sanitized, removed = sanitize_media_playlist(sample_ad_playlist, BASE)

        assert removed == 3
        segments = _segment_lines(sanitized)
        assert segments == [f"https://v.example.com/vod/abc/seg{i}.ts" for i in range(7)]
        assert "ads.example.net" not in sanitized
        # Each kept segment keeps its EXTINF, the ad ones are gone
        assert sanitized.count("#EXTINF:10.0,") == 7
        assert "#EXTINF:5.0," not in sanitized
        assert sanitized.startswith("#EXTM3U")
        assert sanitized.rstrip().endswith("#EXT-X-ENDLIST")

    def test_below_threshold_is_noop(self):
        # Five groups of two: dominance 0.2
        lines = ["#EXTM3U"]
        for host in range(5):
            for n in range(2):
                lines += ["#EXTINF:10,", f"https://h{host}.example.com/p/{n}.ts"]
        content = "\r\n".join(lines) + "\r\n"

        sanitized, removed = sanitize_media_playlist(content, BASE)
        assert removed == 0
        assert sanitized == content

    def test_no_segments_is_noop(self):
        content = "#EXTM3U\n#EXT-X-ENDLIST\n"
        assert sanitize_media_playlist(content, BASE) == (content, 0)

    def test_single_group_rewrites_to_absolute(self):
        content = "#EXTM3U\n#EXTINF:10,\nseg0.ts\n\n#EXTINF:10,\n/vod/abc/seg1.ts\n"
        sanitized, removed = sanitize_media_playlist(content, BASE)
        assert removed == 0
        assert sanitized == (
            "#EXTM3U\n#EXTINF:10,\nhttps://v.example.com/vod/abc/seg0.ts\n"
            "#EXTINF:10,\nhttps://v.example.com/vod/abc/seg1.ts"
        )

    def test_key_uri_made_absolute(self):
        content = (
            "#EXTM3U\n"
            '#EXT-X-KEY:METHOD=AES-128,URI="key.key",IV=0x1\n'
            "#EXTINF:10,\nseg0.ts\n"
        )
        sanitized, _ = sanitize_media_playlist(content, BASE)
        assert '#EXT-X-KEY:METHOD=AES-128,URI="https://v.example.com/vod/abc/key.key",IV=0x1' in sanitized

    def test_key_before_foreign_segment_removed(self):
        lines = ["#EXTM3U"]
        lines += [f"#EXTINF:10,\nseg{i}.ts" for i in range(4)]
        lines += ['#EXT-X-KEY:METHOD=AES-128,URI="https://ads.example.net/k"', "#EXTINF:3,", "https://ads.example.net/x/1.ts"]
        sanitized, removed = sanitize_media_playlist("\n".join(lines), BASE)
        assert removed == 1
        assert "ads.example.net" not in sanitized


class TestHelpers:

    def test_fingerprint(self):
        assert segment_fingerprint("https://cdn.a/x/y/z.ts") == "cdn.a|/x/y"
        assert segment_fingerprint("https://cdn.a/z.ts") == "cdn.a|"
        assert segment_fingerprint("not-a-url") is None

    def test_select_highest_bandwidth(self, sample_master_playlist):
        assert select_variant(sample_master_playlist) == "mid/index.m3u8"

    def test_average_bandwidth_ignored(self):
        content = (
            "#EXTM3U\n"
            "#EXT-X-STREAM-INF:AVERAGE-BANDWIDTH=9000000,BANDWIDTH=500000\na.m3u8\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=600000\nb.m3u8\n"
        )
        assert select_variant(content) == "b.m3u8"

    def test_tie_keeps_first(self):
        content = "#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\na.m3u8\n#EXT-X-STREAM-INF:BANDWIDTH=1\nb.m3u8\n"
        assert select_variant(content) == "a.m3u8"

    def test_media_playlist_has_no_variant(self, sample_ad_playlist):
        assert select_variant(sample_ad_playlist) is None


class TestResolver:

    @respx.mock
    @pytest.mark.asyncio
    async def test_follows_highest_variant(self, sample_master_playlist):
        master = "https://v.example.com/live/master.m3u8"
        respx.get(master).respond(200, text=sample_master_playlist)
        mid = respx.get("https://v.example.com/live/mid/index.m3u8").respond(
            200, text="#EXTM3U\n#EXTINF:10,\n0.ts\n#EXT-X-ENDLIST\n"
        )

        result = await ManifestResolver(timeout=5.0).resolve_and_sanitize(master)

        assert mid.called
        assert result.resolved_from_depth == 1
        assert result.url == "https://v.example.com/live/mid/index.m3u8"
        assert "https://v.example.com/live/mid/0.ts" in result.content
        assert "#EXT-X-STREAM-INF" not in result.content

    @respx.mock
    @pytest.mark.asyncio
    async def test_redirect_loop(self):
        loop_url = "https://v.example.com/loop.m3u8"
        respx.get(loop_url).respond(
            200, text="#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nloop.m3u8\n"
        )

        with pytest.raises(RedirectLoop):
            await ManifestResolver(timeout=5.0).resolve_and_sanitize(loop_url)

        # Depths 0 through 3 were fetched
        assert respx.calls.call_count == 4

    @respx.mock
    @pytest.mark.asyncio
    async def test_removed_count_reported(self, sample_ad_playlist):
        respx.get(BASE).respond(200, text=sample_ad_playlist)
        result = await ManifestResolver(timeout=5.0).resolve_and_sanitize(BASE)
        assert result.removed_segment_count == 3
        assert result.resolved_from_depth == 0

    @respx.mock
    @pytest.mark.asyncio
    async def test_http_error_wrapped(self):
        respx.get(BASE).respond(404)
        with pytest.raises(ManifestFetchError):
            await ManifestResolver(timeout=5.0).resolve_and_sanitize(BASE)

    @respx.mock
    @pytest.mark.asyncio
    async def test_network_error_wrapped(self):
        respx.get(BASE).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ManifestFetchError):
            await ManifestResolver(timeout=5.0).resolve_and_sanitize(BASE)
