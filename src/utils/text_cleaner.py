from __future__ import annotations

import html as _html
import re
import unicodedata
from typing import Iterable

from bs4 import BeautifulSoup


_BOILERPLATE_PATTERNS: Iterable[re.Pattern] = [
    re.compile(r"^\s*read more\s*$", re.I),
    re.compile(r"^\s*continue reading\s*$", re.I),
    re.compile(r"^\s*the post .* appeared first on .*", re.I),
    re.compile(r"^\s*see omnystudio\.com/listener for privacy information\.?\s*$", re.I),
    re.compile(r"^\s*hosted on acast\. see acast\.com/privacy.*$", re.I),
]


def normalize_text(text: str) -> str:
    if not text:
        return ""
    # HTML entities and unicode normalization
    text = _html.unescape(text)
    text = unicodedata.normalize("NFKC", text)
    text = text.replace("\x00", "").replace("\r", " ").replace("\n", " ")
    text = " ".join(text.split())
    return text.strip()


def normalize_title(text: str) -> str:
    """Case-folded title used when deriving fallback episode identifiers."""
    return normalize_text(text).casefold()


def clean_html(html: str) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    for el in list(soup.find_all(string=True)):
        txt = normalize_text(str(el))
        if any(p.search(txt) for p in _BOILERPLATE_PATTERNS):
            el.extract()
    text = soup.get_text(" ")
    return normalize_text(text)


def summarize(html: str, max_chars: int) -> str:
    """Plain-text summary cut on a word boundary."""
    text = clean_html(html)
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars].rsplit(" ", 1)[0].rstrip(",.;:") or text[:max_chars]
    return f"{cut}…"
