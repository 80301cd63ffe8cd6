from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

from mentor.config import settings

NAV_MARKERS = (
    "main menu",
    "navigation",
    "jump to content",
    "cookie",
    "subscribe",
    "sign in",
)

# Elements that never carry article text.
REMOVED_TAGS = (
    "script",
    "style",
    "noscript",
    "iframe",
    "embed",
    "object",
    "svg",
    "button",
    "form",
    "nav",
    "header",
    "footer",
    "aside",
)

# Class/id fragments of ads, share widgets, comment sections and the like.
REMOVED_PATTERNS = (
    "advert",
    "banner",
    "popup",
    "modal",
    "comment",
    "social",
    "share",
    "menu",
    "navigation",
    "sidebar",
    "widget",
    "promo",
    "sponsored",
    "newsletter",
    "subscribe",
    "related",
    "sr-only",
    "screen-reader",
    "visually-hidden",
)

MAIN_CONTENT_SELECTORS = (
    "article",
    "main",
    "[role='main']",
    ".article-content",
    ".post-content",
    ".entry-content",
    ".article-body",
    ".post-body",
    "#main-content",
    "#article-content",
    "#content",
    ".content",
)


@dataclass
class ExtractedContent:
    title: str
    text: str
    method: str
    raw_length: int
    extracted_length: int


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    lines = [line.strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _looks_low_quality(text: str) -> bool:
    normalized = text.lower()
    marker_hits = sum(normalized.count(marker) for marker in NAV_MARKERS)
    if len(text) < 200:
        return True
    if marker_hits >= 4 and len(text) < 2500:
        return True
    return False


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, output_format="txt", include_comments=False)
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _matches_removed_pattern(tag) -> bool:
    if tag.name in ("html", "body", "main", "article"):
        return False
    attrs = getattr(tag, "attrs", None)
    if not attrs:
        return False
    classes = attrs.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    values = " ".join(classes).lower() + " " + str(attrs.get("id", "")).lower()
    return any(pattern in values for pattern in REMOVED_PATTERNS)


def _extract_with_soup(raw_html: str) -> tuple[str, str]:
    soup = BeautifulSoup(raw_html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""

    for tag in soup.find_all(REMOVED_TAGS):
        tag.decompose()
    for tag in soup.find_all(_matches_removed_pattern):
        if not tag.decomposed:
            tag.decompose()

    container = None
    for selector in MAIN_CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None and container.get_text(strip=True):
            break
        container = None
    if container is None:
        container = soup.body or soup

    return _normalize_text(title), _normalize_text(container.get_text("\n"))


def extract_main_content(raw_content: str, *, max_chars: int | None = None) -> ExtractedContent:
    """Extract main article text from a fetched page."""
    target_chars = max_chars if max_chars is not None else int(settings.article_max_chars)

    seems_html = "<html" in raw_content.lower() or "<body" in raw_content.lower()
    primary_input = raw_content if seems_html else f"<html><body>{raw_content}</body></html>"

    title, soup_text = _extract_with_soup(primary_input)

    primary_text = _extract_with_trafilatura(primary_input)
    if primary_text and not _looks_low_quality(primary_text):
        clipped = _truncate(primary_text, target_chars)
        return ExtractedContent(
            title=title,
            text=clipped,
            method="trafilatura",
            raw_length=len(raw_content),
            extracted_length=len(clipped),
        )

    text = soup_text if len(soup_text) >= len(primary_text) else primary_text
    clipped = _truncate(text, target_chars)
    return ExtractedContent(
        title=title,
        text=clipped,
        method="soup",
        raw_length=len(raw_content),
        extracted_length=len(clipped),
    )


def normalize(raw_markup: str, *, max_chars: int | None = None) -> str:
    """Convert raw page markup into normalized plain text."""
    if not raw_markup or not raw_markup.strip():
        return ""
    return extract_main_content(raw_markup, max_chars=max_chars).text
