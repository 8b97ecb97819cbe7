"""
Scraper configuration and settings management.
"""
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .models import SearchParameters

BASE_URL = "https://www.kupujemprodajem.com"
DEFAULT_KEYWORDS = "collectors edition"

# PlayStation games listing on KupujemProdajem
PLAYSTATION_CATEGORY_ID = "1036"
PLAYSTATION_GROUP_ID = "1039"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_num(name: str, default: Any, cast=int):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigError(f"Environment variable {name}={raw!r} is not a valid {cast.__name__}")


@dataclass(frozen=True)
class ScraperConfig:
    """All run options, passed into the pipeline as one value."""

    base_url: str = BASE_URL
    max_pages: int = 5
    headless: bool = True
    navigation_timeout_ms: int = 30_000
    wait_timeout_ms: int = 10_000
    wait_selector: str = 'section[id][class*="AdItem_adOuterHolder"]'
    scroll_to_bottom: bool = True
    page_delay_s: float = 2.0
    page_concurrency: int = 1
    page_count_ceiling: int = 500
    output_dir: Optional[Path] = None
    save_html: bool = False

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **overrides) -> "ScraperConfig":
        """Read settings from the environment (and .env if present), then apply overrides."""
        load_dotenv(dotenv_path)
        output_dir = os.getenv("OUTPUT_DIR")
        cfg = cls(
            base_url=os.getenv("KP_BASE_URL", BASE_URL),
            max_pages=_env_num("MAX_PAGES", 5),
            headless=_env_bool("HEADLESS", True),
            navigation_timeout_ms=_env_num("NAV_TIMEOUT_MS", 30_000),
            wait_timeout_ms=_env_num("WAIT_TIMEOUT_MS", 10_000),
            scroll_to_bottom=_env_bool("SCROLL_TO_BOTTOM", True),
            page_delay_s=_env_num("PAGE_DELAY_S", 2.0, cast=float),
            page_concurrency=_env_num("PAGE_CONCURRENCY", 1),
            output_dir=Path(output_dir) if output_dir else None,
            save_html=_env_bool("SAVE_HTML", False),
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if overrides:
            cfg = replace(cfg, **overrides)
        cfg.validate()
        return cfg

    def validate(self) -> None:
        """Validate configuration before a run."""
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        if self.max_pages < 1:
            raise ConfigError(f"max_pages must be >= 1, got {self.max_pages}")
        if self.page_concurrency < 1:
            raise ConfigError(f"page_concurrency must be >= 1, got {self.page_concurrency}")
        if self.page_delay_s < 0:
            raise ConfigError(f"page_delay_s must be >= 0, got {self.page_delay_s}")
        if self.navigation_timeout_ms <= 0 or self.wait_timeout_ms <= 0:
            raise ConfigError("timeouts must be positive")
        if self.page_count_ceiling < 1:
            raise ConfigError(f"page_count_ceiling must be >= 1, got {self.page_count_ceiling}")


def search_keywords_from_env() -> str:
    return os.getenv("SEARCH_KEYWORDS", DEFAULT_KEYWORDS)


def create_playstation_search_params(keywords: str, **options) -> SearchParameters:
    """Search parameters for the PlayStation games category."""
    values = {
        "keywords": keywords,
        "category_id": PLAYSTATION_CATEGORY_ID,
        "group_id": PLAYSTATION_GROUP_ID,
        "has_price": True,
        "order": "price",
    }
    values.update({k: v for k, v in options.items() if v is not None})
    return SearchParameters(**values)
