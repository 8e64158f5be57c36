"""
Exceptions raised by the fetch, parse and manifest services.
"""
from typing import Optional


class StreamHubError(Exception):
    """Base class for service errors."""


class FetchExhausted(StreamHubError):
    """Every proxy strategy failed for a single logical fetch."""

    def __init__(self, url: str, errors: Optional[list[Exception]] = None):
        self.url = url
        self.errors = errors or []
        self.last_error = self.errors[-1] if self.errors else None
        detail = f": {self.last_error}" if self.last_error else ""
        super().__init__(f"All proxies failed for {url}{detail}")


class ParseFailure(StreamHubError):
    """Upstream catalog payload could not be parsed."""


class RedirectLoop(StreamHubError):
    """Master playlist nesting exceeded the allowed depth."""


class ManifestFetchError(StreamHubError):
    """Direct manifest fetch failed."""
