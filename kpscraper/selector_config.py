"""
CSS selectors for the KupujemProdajem search-results layout.

The site uses CSS-module class names with a build hash suffix
(e.g. "AdItem_price__K4GWJ"). The primary selectors match the exact class;
the fallbacks match on the stable prefix only and are tried when a redeploy
changes the hash.
"""
from dataclasses import dataclass, field, fields, replace
from typing import Dict, Mapping, Tuple

from .errors import ConfigError


@dataclass(frozen=True)
class SelectorConfig:
    ad_container: str = 'section[id][class*="AdItem_adOuterHolder"]'
    title: str = ".AdItem_name__Knlo6"
    ad_url: str = 'a[href*="/oglas/"]'
    price: str = ".AdItem_price__K4GWJ"
    location: str = ".AdItem_originAndPromoLocation__3MXPY p"
    description: str = "p"
    image: str = "img"
    counter_holder: str = ".AdItem_favoriteHolder__ebvyz"
    counter_value: str = ".AdItem_count__twhsU"
    posted_time: str = ".AdItem_postedStatus__qQuya p"
    store_link: str = 'a[href*="kpizlog.rs"]'
    promotion: str = ".AdItem_promotion__G0_vk"

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def with_overrides(self, overrides: Mapping[str, str]) -> "SelectorConfig":
        unknown = set(overrides) - set(self.field_names())
        if unknown:
            raise ConfigError(f"Unknown selector name(s): {', '.join(sorted(unknown))}")
        return replace(self, **dict(overrides))


DEFAULT_FALLBACKS: Dict[str, str] = {
    "ad_container": 'section[class*="AdItem_adOuterHolder"]',
    "title": '[class*="AdItem_name"]',
    "price": '[class*="AdItem_price"]',
    "location": '[class*="AdItem_originAndPromoLocation"] p',
    "counter_holder": '[class*="AdItem_favoriteHolder"]',
    "counter_value": '[class*="AdItem_count"]',
    "posted_time": '[class*="AdItem_postedStatus"] p',
    "promotion": '[class*="AdItem_promotion"]',
}


@dataclass(frozen=True)
class SelectorSet:
    """
    Primary selectors plus a partial set of fallbacks.

    Built once at startup and passed by value into the page parser.
    """

    primary: SelectorConfig = field(default_factory=SelectorConfig)
    fallbacks: Tuple[Tuple[str, str], ...] = tuple(DEFAULT_FALLBACKS.items())

    @classmethod
    def build(
        cls,
        overrides: Mapping[str, str] = None,
        fallbacks: Mapping[str, str] = None,
    ) -> "SelectorSet":
        primary = SelectorConfig().with_overrides(overrides or {})
        fb = DEFAULT_FALLBACKS if fallbacks is None else fallbacks
        unknown = set(fb) - set(SelectorConfig.field_names())
        if unknown:
            raise ConfigError(f"Unknown fallback selector name(s): {', '.join(sorted(unknown))}")
        return cls(primary=primary, fallbacks=tuple(fb.items()))

    def fallback_for(self, name: str) -> str:
        for key, selector in self.fallbacks:
            if key == name:
                return selector
        return ""

    def candidates(self, name: str) -> Tuple[str, ...]:
        """Selectors to try for `name`, primary first."""
        primary = getattr(self.primary, name)
        fb = self.fallback_for(name)
        if fb and fb != primary:
            return (primary, fb)
        return (primary,)


DEFAULT_SELECTORS = SelectorSet()
