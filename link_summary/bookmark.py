"""Default metadata scraper and bookmark-card generator.

These are what the command line ``transform`` command uses when no
site-specific rules are configured.
"""

from __future__ import annotations

from html import escape
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from link_summary.link_cards import GeneratorParams, TextMarkup
from link_summary.tree import link_text

_META_FIELDS = {
    "title": ("og:title", "twitter:title"),
    "description": ("og:description", "twitter:description", "description"),
    "image": ("og:image", "og:image:url", "twitter:image"),
    "publisher": ("og:site_name", "application-name"),
    "url": ("og:url",),
}


def _meta_content(soup: BeautifulSoup, names: tuple[str, ...]) -> str | None:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag is None:
            continue
        content = (tag.get("content") or "").strip()
        if content:
            return content
    return None


def scrape_opengraph(url: str, html_text: str) -> dict[str, str]:
    """Pull title/description/image/publisher/url out of a page's head.

    Relative image and canonical URLs are resolved against ``url``.
    """

    soup = BeautifulSoup(html_text or "", "html.parser")
    metadata: dict[str, str] = {}
    for key, names in _META_FIELDS.items():
        value = _meta_content(soup, names)
        if value:
            metadata[key] = value

    if "title" not in metadata and soup.title and soup.title.string:
        metadata["title"] = soup.title.string.strip()
    for key in ("image", "url"):
        if key in metadata:
            metadata[key] = urljoin(url, metadata[key])
    metadata.setdefault("url", url)
    return metadata


async def bookmark_card(params: GeneratorParams) -> TextMarkup:
    """Render a bookmark card; the preview image is cached persistently."""

    metadata = params.metadata
    href = params.original_node.url or metadata.get("url", "")
    title = metadata.get("title") or link_text(params.original_node) or href

    parts = [f'<a class="link-summary" href="{escape(href)}">']
    image_url = metadata.get("image")
    if image_url:
        image_path = await params.cache_remote_file(image_url, True)
        parts.append(f'<img class="link-summary__image" src="{escape(image_path)}" alt="" loading="lazy">')
    parts.append(f'<span class="link-summary__title">{escape(title)}</span>')
    if metadata.get("description"):
        parts.append(f'<span class="link-summary__description">{escape(metadata["description"])}</span>')
    if metadata.get("publisher"):
        parts.append(f'<span class="link-summary__publisher">{escape(metadata["publisher"])}</span>')
    parts.append("</a>")
    return TextMarkup("".join(parts))
