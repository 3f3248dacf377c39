"""Allowlist HTML sanitization for chapter markup.

The allowlist keeps ordinary prose markup plus the pieces the reader depends
on: ruby annotations for furigana and inline SVG ``image`` elements, together
with the ``data-epub-src`` attribute that carries deferred image paths.
"""

from __future__ import annotations

import bleach
from bs4 import BeautifulSoup

ALLOWED_TAGS = frozenset(
    {
        "p", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre", "code",
        "a", "em", "strong", "i", "b", "u", "s", "small", "sub", "sup", "span",
        "div", "br", "hr", "img", "ul", "ol", "li", "dl", "dt", "dd",
        "table", "thead", "tbody", "tfoot", "tr", "th", "td", "caption",
        "figure", "figcaption", "cite", "q", "abbr", "mark",
        "section", "article", "aside", "header", "footer", "nav", "main",
        # furigana
        "ruby", "rt", "rp", "rb",
        # inline illustrations
        "svg", "image",
    }
)

_GLOBAL_ATTRIBUTES = frozenset({"id", "class", "title", "lang", "dir", "role", "epub:type", "data-block-id"})

_TAG_ATTRIBUTES: dict[str, frozenset[str]] = {
    "a": frozenset({"href"}),
    "img": frozenset({"src", "alt", "data-epub-src"}),
    "image": frozenset({"src", "href", "xlink:href", "data-epub-src"}),
    "svg": frozenset(
        {"viewBox", "viewbox", "xmlns", "xmlns:xlink", "width", "height", "preserveAspectRatio", "version"}
    ),
    "td": frozenset({"colspan", "rowspan"}),
    "th": frozenset({"colspan", "rowspan"}),
}

_IMAGE_SOURCE_ATTRIBUTES = frozenset({"src", "href", "xlink:href"})

ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto", "data"})

# Elements whose content is dropped along with the tag.
DROPPED_ELEMENTS = ("script", "style", "noscript", "template", "iframe", "object", "embed", "head")


def _allow_attribute(tag: str, name: str, value: str) -> bool:
    if name.startswith("on"):
        return False
    if name not in _GLOBAL_ATTRIBUTES and name not in _TAG_ATTRIBUTES.get(tag, frozenset()):
        return False
    lowered = value.strip().lower()
    if lowered.startswith("data:"):
        # inline data is only acceptable as an image source
        return tag in {"img", "image"} and name in _IMAGE_SOURCE_ATTRIBUTES and lowered.startswith("data:image/")
    return True


def _drop_unsafe_elements(html: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    for element in soup.find_all(DROPPED_ELEMENTS):
        element.decompose()
    body = soup.body
    return body.decode_contents() if body is not None else ""


def sanitize_html(html: str) -> str:
    """Remove script-capable constructs while keeping reader extensions."""

    if not html.strip():
        return ""
    return bleach.clean(
        _drop_unsafe_elements(html),
        tags=ALLOWED_TAGS,
        attributes=_allow_attribute,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
        strip_comments=True,
    )
