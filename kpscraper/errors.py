"""
Exception types raised at the edges of the scraper.

The parsing core never raises these to its caller; per-ad and per-page
failures are reported as ParsingError records instead.
"""
from typing import Optional


class ScraperError(Exception):
    """Base class for scraper exceptions."""


class ConfigError(ScraperError):
    """Invalid configuration value."""


class RendererError(ScraperError):
    """The page renderer could not produce HTML for a URL."""

    def __init__(self, message: str, url: Optional[str] = None, kind: str = "navigation"):
        super().__init__(message)
        self.url = url
        # one of: network, timeout, navigation
        self.kind = kind

    def __str__(self) -> str:
        base = super().__str__()
        if self.url:
            return f"{base} ({self.kind}: {self.url})"
        return base
