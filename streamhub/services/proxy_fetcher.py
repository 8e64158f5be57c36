"""
Proxy-mediated fetch service.
Fetches CMS/API URLs through an ordered chain of relay strategies.
"""
import asyncio
import httpx
import logging
from typing import Optional
from urllib.parse import quote, urljoin

from streamhub.config import get_settings
from streamhub.models.catalog import ProxyConfig, ProxyMode
from streamhub.services.errors import FetchExhausted

logger = logging.getLogger(__name__)

# Markers of a relay's own error page
HTML_MARKERS = ("<!doctype html", "<html")

# MacCMS catalog calls may legitimately answer with markup
CATALOG_ACTIONS = ("ac=list", "ac=detail")


class ProxyAttemptError(Exception):
    """A single relay attempt was rejected."""


class ProxyFetcher:
    """Fetch through relays in trust order, first good body wins."""

    def __init__(
        self,
        proxies: Optional[list[ProxyConfig]] = None,
        timeout: Optional[float] = None,
        public_base_url: Optional[str] = None,
    ):
        settings = get_settings()
        self.proxies = list(proxies if proxies is not None else settings.proxies)
        self.timeout = timeout if timeout is not None else settings.proxy_timeout
        self.public_base_url = public_base_url if public_base_url is not None else settings.public_base_url
        self.user_agent = settings.user_agent

    def build_relay_url(self, proxy: ProxyConfig, target_url: str) -> Optional[str]:
        """Build the relayed URL, or None if the relay cannot be used."""
        prefix = proxy.prefix
        if prefix.startswith("/"):
            if not self.public_base_url:
                return None
            prefix = urljoin(self.public_base_url.rstrip("/") + "/", prefix.lstrip("/"))

        if proxy.mode == ProxyMode.QUERY:
            return f"{prefix}{quote(target_url, safe='')}"
        return f"{prefix}{target_url}"

    @staticmethod
    def validate_body(text: str, target_url: str) -> None:
        """Reject empty bodies and relay error pages."""
        stripped = text.lstrip("\ufeff").strip() if text else ""
        if not stripped:
            raise ProxyAttemptError("Empty response body")

        lowered = stripped[:32].lower()
        if lowered.startswith(HTML_MARKERS):
            if not any(action in target_url for action in CATALOG_ACTIONS):
                raise ProxyAttemptError("Proxy returned HTML instead of data")

    async def fetch(self, target_url: str) -> str:
        """
        Fetch target_url through the relay chain.

        Strategies are tried strictly in order, never concurrently, and never
        retried. Raises FetchExhausted if every strategy fails.
        """
        if not target_url.startswith(("http://", "https://")):
            raise ValueError(f"Target URL must be absolute http(s): {target_url!r}")

        errors: list[Exception] = []

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
        ) as client:
            for proxy in self.proxies:
                relay_url = self.build_relay_url(proxy, target_url)
                if relay_url is None:
                    logger.debug(f"Skipping relative relay {proxy.prefix}, no public base URL configured")
                    continue

                try:
                    response = await asyncio.wait_for(client.get(relay_url), self.timeout)
                    response.raise_for_status()
                    text = response.text
                    self.validate_body(text, target_url)
                    return text
                except (httpx.HTTPError, asyncio.TimeoutError, ProxyAttemptError) as e:
                    logger.warning(f"Proxy {proxy.prefix or 'direct'} failed for {target_url[:80]}: {e!r}")
                    errors.append(e)

        if not errors:
            errors.append(ProxyAttemptError("No usable proxy strategy configured"))
        raise FetchExhausted(target_url, errors) from errors[-1]


# Singleton
_proxy_fetcher: Optional[ProxyFetcher] = None


def get_proxy_fetcher() -> ProxyFetcher:
    """Get or create proxy fetcher singleton."""
    global _proxy_fetcher
    if _proxy_fetcher is None:
        _proxy_fetcher = ProxyFetcher()
    return _proxy_fetcher
