"""
Catalog Parser Service.
Normalizes MacCMS-style JSON and XML catalog responses into CatalogEntry and
Category values.
"""
import json
import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Callable, Optional
from urllib.parse import urlparse

from streamhub.models.catalog import CatalogEntry, CatalogPage, Category
from streamhub.services.errors import ParseFailure

logger = logging.getLogger(__name__)


# Candidate field names per canonical field, first non-empty wins
JSON_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("vod_id", "id"),
    "title": ("vod_name", "name"),
    "image": ("vod_pic", "pic", "vod_img", "vod_pic_thumb"),
    "genre": ("type_name", "type"),
    "year": ("vod_year", "year"),
    "note": ("vod_remarks", "note"),
    "description": ("vod_content", "des"),
    "actor": ("vod_actor", "actor"),
    "director": ("vod_director", "director"),
    "play_url": ("vod_play_url",),
}

XML_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id", "vod_id"),
    "title": ("name", "vod_name"),
    "image": ("vod_pic", "pic", "vod_img", "img"),
    "genre": ("type", "type_name"),
    "year": ("year", "vod_year"),
    "note": ("note", "vod_remarks"),
    "description": ("des", "vod_content"),
    "actor": ("actor", "vod_actor"),
    "director": ("director", "vod_director"),
    "play_url": ("vod_play_url",),
}

CATEGORY_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("type_id", "id"),
    "name": ("type_name", "name"),
}

PIC_DOMAIN_KEYS = ("pic_domain", "vod_pic_domain")

PLAY_GROUP_SEPARATOR = "$$$"

# Bare ampersands that do not start a known entity
BARE_AMPERSAND = re.compile(r"&(?!amp;|lt;|gt;|quot;|apos;|#\d+;|#x[0-9a-fA-F]+;)")
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
CDATA_SECTION = re.compile(r"(<!\[CDATA\[.*?\]\]>)", re.DOTALL)


def resolve_field(getter: Callable[[str], str], candidates: tuple[str, ...]) -> str:
    """Return the first non-empty value among candidate field names."""
    for name in candidates:
        value = getter(name)
        if value:
            return value
    return ""


def _scalar_text(value: Any) -> str:
    """Stringify a JSON scalar, ignoring containers and booleans."""
    if value is None or isinstance(value, (bool, dict, list)):
        return ""
    return str(value).strip()


def _element_text(element: ET.Element, tag: str) -> str:
    """Text of the first descendant named tag."""
    found = next(element.iter(tag), None)
    if found is None:
        return ""
    return "".join(found.itertext()).strip()


def get_base_host(api_url: str) -> str:
    """scheme://host of an API URL, or "" when it is not absolute."""
    try:
        parsed = urlparse(api_url)
    except ValueError:
        return ""
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


def format_image_url(raw: Optional[str], api_host: str, pic_domain: Optional[str] = None) -> str:
    """
    Turn an upstream image reference into an absolute URL.

    Absolute http(s) URLs are returned unchanged; images are never routed
    through the relay chain.
    """
    if not raw:
        return ""
    cleaned = raw.strip()
    if not cleaned:
        return ""

    if cleaned.startswith(("http://", "https://")):
        return cleaned
    if cleaned.startswith("//"):
        return "https:" + cleaned

    domain = (pic_domain or api_host or "").strip().rstrip("/")
    if domain.startswith("//"):
        domain = "https:" + domain
    if not domain:
        # No base to resolve against
        return ""

    if cleaned.startswith("/"):
        return domain + cleaned
    if "://" not in cleaned:
        return domain + "/" + cleaned
    return cleaned


def sanitize_xml(xml_text: str) -> str:
    """Escape bare ampersands outside CDATA sections and strip control characters."""
    if not xml_text:
        return ""
    parts = CDATA_SECTION.split(xml_text)
    # Odd indices are the captured CDATA sections
    escaped = "".join(
        part if i % 2 else BARE_AMPERSAND.sub("&amp;", part)
        for i, part in enumerate(parts)
    )
    return CONTROL_CHARS.sub("", escaped)


def _build_entry(fields: dict[str, str], api_host: str, pic_domain: Optional[str]) -> Optional[CatalogEntry]:
    if not fields["title"]:
        return None
    fields["image"] = format_image_url(fields["image"], api_host, pic_domain)
    return CatalogEntry(**fields)


class CatalogParser:
    """Parse catalog, search and detail responses from CMS sources."""

    def parse(self, raw_text: Optional[str], api_host: str) -> CatalogPage:
        """
        Parse a raw response, auto-detecting JSON or XML.

        Malformed payloads yield an empty page; a single bad upstream
        response must never break an aggregate view.
        """
        # A UTF-8 BOM survives decoding and is not whitespace
        text = (raw_text or "").lstrip("\ufeff").strip()
        try:
            if text.startswith("{"):
                return self._parse_json(text, api_host)
            if text.startswith("<"):
                return self._parse_xml(text, api_host)
        except ParseFailure as e:
            logger.debug(f"Discarding unparsable catalog response from {api_host or 'unknown host'}: {e}")
        return CatalogPage()

    def _parse_json(self, text: str, api_host: str) -> CatalogPage:
        try:
            data = json.loads(text)
        except (ValueError, RecursionError) as e:
            raise ParseFailure(f"Invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ParseFailure("JSON payload is not an object")

        pic_domain = resolve_field(lambda k: _scalar_text(data.get(k)), PIC_DOMAIN_KEYS) or None

        entries = []
        raw_list = data.get("list")
        for item in raw_list if isinstance(raw_list, list) else []:
            if not isinstance(item, dict):
                continue
            fields = {
                field: resolve_field(lambda k: _scalar_text(item.get(k)), names)
                for field, names in JSON_FIELDS.items()
            }
            entry = _build_entry(fields, api_host, pic_domain)
            if entry:
                entries.append(entry)

        categories = []
        raw_classes = data.get("class")
        for item in raw_classes if isinstance(raw_classes, list) else []:
            if not isinstance(item, dict):
                continue
            cat_id = resolve_field(lambda k: _scalar_text(item.get(k)), CATEGORY_FIELDS["id"])
            cat_name = resolve_field(lambda k: _scalar_text(item.get(k)), CATEGORY_FIELDS["name"])
            if cat_id and cat_name:
                categories.append(Category(id=cat_id, name=cat_name))

        return CatalogPage(entries=entries, categories=categories)

    def _parse_xml(self, text: str, api_host: str) -> CatalogPage:
        try:
            root = ET.fromstring(sanitize_xml(text))
        except (ET.ParseError, ValueError) as e:
            raise ParseFailure(f"Invalid XML: {e}") from e

        # pic_domain on <list> applies to every entry in the response
        list_elem = next(root.iter("list"), None)
        pic_domain = None
        if list_elem is not None:
            pic_domain = resolve_field(lambda k: (list_elem.get(k) or "").strip(), PIC_DOMAIN_KEYS) or None

        entries = []
        for video in root.iter("video"):
            fields = {
                field: resolve_field(lambda k: _element_text(video, k), names)
                for field, names in XML_FIELDS.items()
            }
            if not fields["play_url"]:
                fields["play_url"] = self._play_url_from_dl(video)
            entry = _build_entry(fields, api_host, pic_domain)
            if entry:
                entries.append(entry)

        categories = []
        class_elem = next(root.iter("class"), None)
        if class_elem is not None:
            for ty in class_elem.iter("ty"):
                cat_id = (ty.get("id") or "").strip()
                cat_name = "".join(ty.itertext()).strip()
                if cat_id and cat_name:
                    categories.append(Category(id=cat_id, name=cat_name))

        return CatalogPage(entries=entries, categories=categories)

    @staticmethod
    def _play_url_from_dl(video: ET.Element) -> str:
        """Join every <dd> of the first <dl> into one play-URL string."""
        dl = next(video.iter("dl"), None)
        if dl is None:
            return ""
        parts = []
        for dd in dl.iter("dd"):
            text = "".join(dd.itertext()).strip()
            if text:
                parts.append(text)
        return PLAY_GROUP_SEPARATOR.join(parts)

    def parse_detail(self, raw_text: Optional[str], api_host: str) -> Optional[CatalogEntry]:
        """First entry of a detail response, or None."""
        page = self.parse(raw_text, api_host)
        return page.entries[0] if page.entries else None


_parser = CatalogParser()


def parse_catalog_response(raw_text: Optional[str], api_host: str) -> CatalogPage:
    """Parse a catalog response with the shared parser."""
    return _parser.parse(raw_text, api_host)


def parse_detail(raw_text: Optional[str], api_host: str) -> Optional[CatalogEntry]:
    """Parse a detail response with the shared parser."""
    return _parser.parse_detail(raw_text, api_host)
