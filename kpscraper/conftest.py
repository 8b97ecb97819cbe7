"""
Shared test helpers: synthetic KupujemProdajem search-results markup and a canned renderer.
"""
from typing import Dict, List, Optional, Union
from urllib.parse import parse_qs, urlsplit

from .errors import RendererError

AD_TEMPLATE = """
<section id="{ad_id}" class="AdItem_adOuterHolder__hb5N_{extra_class}" data-scrolled="true">
  <div class="AdItem_adHolder__NoNLJ">
    {link_open}
      <div class="AdItem_imageHolder__LVqAi">
        <img src="{image}" alt="{alt}" width="160" height="120" loading="lazy">
      </div>
      {title_html}
    {link_close}
    <p>{description}</p>
    {location_html}
    {price_html}
    {posted_html}
    <div class="AdItem_favoriteHolder__ebvyz"><span class="AdItem_count__twhsU">{views}</span></div>
    <div class="AdItem_favoriteHolder__ebvyz"><span class="AdItem_count__twhsU">{favorites}</span></div>
    {store_html}
    {promo_html}
  </div>
</section>
"""


def ad_html(
    ad_id: str = "ad-1001",
    title: Optional[str] = "PS5 Bundle",
    price: Optional[str] = "12.500 din",
    location: Optional[str] = "Beograd",
    posted: Optional[str] = "pre 3 dana",
    href: Optional[str] = "/konzole-i-igrice/sony-playstation-igrice/ps5-bundle/oglas/1001",
    description: str = "Odlican paket sa dva kontrolera i tri igre",
    views: str = "120",
    favorites: str = "7",
    image: str = "https://images.kupujemprodajem.com/photos/1001/tmb.jpg",
    store: Optional[str] = None,
    promoted: bool = False,
    title_class: str = "AdItem_name__Knlo6",
    price_class: str = "AdItem_price__K4GWJ",
) -> str:
    return AD_TEMPLATE.format(
        ad_id=ad_id,
        extra_class=" AdItem_promoted" if promoted else "",
        link_open=f'<a href="{href}">' if href is not None else "<div>",
        link_close="</a>" if href is not None else "</div>",
        image=image,
        alt=title or "",
        title_html=f'<div class="{title_class}">{title}</div>' if title is not None else "",
        description=description,
        location_html=(
            f'<div class="AdItem_originAndPromoLocation__3MXPY"><p>{location}</p></div>'
            if location is not None else ""
        ),
        price_html=f'<div class="{price_class}"><div>{price}</div></div>' if price is not None else "",
        posted_html=(
            f'<div class="AdItem_postedStatus__qQuya"><p>{posted}</p></div>'
            if posted is not None else ""
        ),
        views=views,
        favorites=favorites,
        store_html=f'<a href="https://{store.lower()}.kpizlog.rs">{store}</a>' if store else "",
        promo_html='<button class="AdItem_promotion__G0_vk">Istaknuto</button>' if promoted else "",
    )


def page_html(ads: List[str], total_pages: int = 1, current: int = 1) -> str:
    links = "".join(
        f'<li class="Pagination_item__x1"><a href="/pretraga?keywords=ps5&amp;page={n}">{n}</a></li>'
        for n in range(1, total_pages + 1)
    )
    return (
        "<!DOCTYPE html><html><head><title>Pretraga</title></head><body>"
        f'<div class="Header">Cena do 25000 din</div>'
        f"<div class=\"AdsList\">{''.join(ads)}</div>"
        f'<ul class="Pagination_pagination__y2">{links}</ul>'
        f"<p>Strana {current} od {total_pages}</p>"
        "</body></html>"
    )


class FakeRenderer:
    """Serves canned HTML per page number; an Exception value is raised instead."""

    def __init__(self, pages: Dict[int, Union[str, Exception]]):
        self.pages = pages
        self.calls: List[str] = []

    async def fetch_page(self, url: str, wait_selector=None, scroll_to_bottom=False) -> str:
        self.calls.append(url)
        values = parse_qs(urlsplit(url).query).get("page")
        page = int(values[0]) if values else 1
        value = self.pages.get(page)
        if value is None:
            raise RendererError("no such page", url=url, kind="navigation")
        if isinstance(value, Exception):
            raise value
        return value

