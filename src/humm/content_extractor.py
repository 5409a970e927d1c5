# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Whole-page content extraction.

Strips noise before text extraction so downstream analysis only sees page
content: script/style/noscript, navigation, footers, ad containers, HTML
comments and elements hidden via CSS or ARIA. Pure and synchronous.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass

from bs4 import BeautifulSoup, Comment

_NOISE_SELECTOR = ", ".join(
    (
        "script",
        "style",
        "noscript",
        "template",
        "nav",
        "footer",
        ".ad",
        ".ads",
        ".advertisement",
        "[data-ad]",
        "[data-ad-slot]",
        "[aria-label=advertisement i]",
    )
)

_HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class ExtractedContent:
    title: str
    text: str
    html: str
    url: str

    def to_dict(self) -> dict:
        return asdict(self)


def _remove_hidden_elements(soup: BeautifulSoup) -> None:
    for tag in soup.find_all(attrs={"aria-hidden": "true"}):
        tag.decompose()
    for tag in soup.find_all(style=_HIDDEN_STYLE_RE):
        tag.decompose()
    for tag in soup.find_all(hidden=True):
        tag.decompose()


def clean_soup(html: str) -> BeautifulSoup:
    """Parse *html* and drop every noise element in place."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.select(_NOISE_SELECTOR):
        tag.decompose()
    for comment in soup.find_all(string=lambda t: isinstance(t, Comment)):
        comment.extract()
    _remove_hidden_elements(soup)
    return soup


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_page_content(html: str, *, title: str = "", url: str = "") -> ExtractedContent:
    """Clean *html* and return title, visible body text, cleaned markup and URL.

    ``title`` falls back to the document's <title> when not supplied.
    """
    soup = clean_soup(html or "")
    if not title and soup.title and soup.title.string:
        title = collapse_whitespace(soup.title.string)
    body = soup.body or soup
    text = collapse_whitespace(body.get_text(" "))
    return ExtractedContent(title=title, text=text, html=str(soup), url=url)
