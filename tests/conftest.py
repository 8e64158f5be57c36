"""
Pytest configuration and fixtures for StreamHub backend tests.
"""
import json
from collections import OrderedDict
from unittest.mock import AsyncMock

import pytest

from streamhub.models.catalog import ProxyConfig, ProxyMode, Source
from streamhub.services import aggregator as aggregator_module
from streamhub.services import douban as douban_module
from streamhub.services import library as library_module
from streamhub.services import manifest_resolver as manifest_module
from streamhub.services import source_registry as registry_module
from streamhub.services.cache import PosterCache
from streamhub.services.proxy_fetcher import ProxyFetcher


SOURCE_A = Source(name="Source A", api="https://a.example.com/api.php/provide/vod/")
SOURCE_B = Source(name="Source B", api="https://b.example.com/api.php/provide/vod/")
SOURCE_C = Source(name="Source C", api="https://c.example.com/api.php/provide/vod/")


@pytest.fixture
def sources():
    """Three CMS sources in list order."""
    return [SOURCE_A, SOURCE_B, SOURCE_C]


@pytest.fixture
def relay_chain():
    """Direct request, then a query-mode relay, then an append-mode relay."""
    return [
        ProxyConfig(prefix="", mode=ProxyMode.APPEND),
        ProxyConfig(prefix="https://relay-one.test/raw?url=", mode=ProxyMode.QUERY),
        ProxyConfig(prefix="https://relay-two.test/?", mode=ProxyMode.APPEND),
    ]


@pytest.fixture
def direct_fetcher():
    """Fetcher that only makes direct requests."""
    return ProxyFetcher(proxies=[ProxyConfig(prefix="", mode=ProxyMode.APPEND)], timeout=5.0)


@pytest.fixture
def sample_json_catalog():
    """MacCMS JSON listing with categories."""
    return json.dumps({
        "code": 1,
        "msg": "数据列表",
        "pic_domain": "https://img.example.com",
        "class": [
            {"type_id": 1, "type_name": "电影"},
            {"type_id": 2, "type_name": "连续剧"},
        ],
        "list": [
            {
                "vod_id": 101,
                "vod_name": "流浪地球",
                "vod_pic": "/upload/vod/101.jpg",
                "type_name": "科幻片",
                "vod_year": "2019",
                "vod_remarks": "HD",
                "vod_content": "<p>太阳即将毁灭</p>",
                "vod_actor": "吴京",
                "vod_director": "郭帆",
                "vod_play_url": "正片$https://v.example.com/101/index.m3u8",
            },
            {
                "id": "102",
                "name": "Second Title",
                "pic": "https://cdn.example.com/102.jpg",
                "type": "Drama",
                "year": 2021,
                "note": "更新至10集",
            },
        ],
    }, ensure_ascii=False)


@pytest.fixture
def sample_xml_catalog():
    """MacCMS XML listing with a <dl> play list and bare ampersands."""
    return """<?xml version="1.0" encoding="utf-8"?>
<rss version="5.1">
<list page="1" pagecount="10" pagesize="20" recordcount="200">
<video>
<last>2024-01-01 12:00:00</last>
<id>201</id>
<tid>2</tid>
<name><![CDATA[Tom & Jerry]]></name>
<type>动画片</type>
<pic>//img.example.com/201.jpg</pic>
<note>全集</note>
<year>1940</year>
<actor>Tom & Jerry</actor>
<director>Hanna</director>
<des><![CDATA[A cat and a mouse.]]></des>
<dl>
<dd flag="mp4"><![CDATA[第1集$https://v.example.com/201/1.mp4#第2集$https://v.example.com/201/2.mp4]]></dd>
<dd flag="m3u8"><![CDATA[第1集$https://v.example.com/201/1/index.m3u8]]></dd>
</dl>
</video>
</list>
<class>
<ty id="1">电影</ty>
<ty id="2">动画片</ty>
<ty id="">无编号</ty>
</class>
</rss>
"""


@pytest.fixture
def sample_master_playlist():
    """Master playlist with three variants."""
    return """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360
low/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=1200000,RESOLUTION=1280x720
mid/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=400000,RESOLUTION=426x240
lowest/index.m3u8
"""


@pytest.fixture
def sample_ad_playlist():
    """Media playlist with 7 content segments and 3 injected ad segments."""
    content = [f"#EXTINF:10.0,\nseg{i}.ts" for i in range(7)]
    ads = [f"#EXTINF:5.0,\nhttps://ads.example.net/inject/ad{i}.ts" for i in range(3)]
    body = "\n".join(content[:3] + ["#EXT-X-DISCONTINUITY"] + ads + ["#EXT-X-DISCONTINUITY"] + content[3:])
    return "#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:10\n" + body + "\n#EXT-X-ENDLIST\n"


@pytest.fixture
def fake_fetcher():
    """A fetcher whose fetch() is an AsyncMock."""
    fetcher = AsyncMock(spec=ProxyFetcher)
    return fetcher


@pytest.fixture
def isolated_services(monkeypatch, sources, fake_fetcher):
    """
    Replace the service singletons used by the routers.

    The registry serves the three test sources; the aggregator fails over
    without delay; every device starts with an empty library.
    """
    registry = registry_module.SourceRegistry(fetcher=fake_fetcher)
    registry._sources = list(sources)
    aggregator = aggregator_module.SourceAggregator(fetcher=fake_fetcher, failover_delay=0)
    douban = douban_module.DoubanService(fetcher=fake_fetcher, poster_cache=PosterCache(), stagger_max=0)

    monkeypatch.setattr(registry_module, "_registry", registry)
    monkeypatch.setattr(aggregator_module, "_aggregator", aggregator)
    monkeypatch.setattr(douban_module, "_douban_service", douban)
    monkeypatch.setattr(manifest_module, "_manifest_resolver", manifest_module.ManifestResolver(timeout=5.0))
    monkeypatch.setattr(library_module, "_libraries", OrderedDict())

    return {"registry": registry, "aggregator": aggregator, "douban": douban, "fetcher": fake_fetcher}
