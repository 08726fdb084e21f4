"""Content extraction: turns a fetched HTML page into :class:`ParsedContent`.

Three stages, each wrapped on its own:

1. Metadata -- OpenGraph, Twitter Card and plain ``<title>``/``<meta>`` tags.
2. Main content -- readability boilerplate stripping plus a plain-text rendering.
3. Sanitization -- nh3 removes XSS vectors from the extracted HTML.

Any failure becomes an :class:`ExtractionError` with the
``extraction_error`` code; the failing stage is only recorded in its details.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urljoin, urlsplit

import nh3
from bs4 import BeautifulSoup
from readability import Document

from .models import (
    IMAGE_URL_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    ContentMetadata,
    ExtractionError,
    ParsedContent,
    Result,
)

logger = logging.getLogger(__name__)

CONTENT_TAGS = frozenset({"div", "p", "article", "section"})
DROPPED_TAGS = ("script", "style", "noscript", "template")

OPENGRAPH_KEYS = ("title", "description", "image", "type", "url")
TWITTER_KEYS = ("card", "title", "description", "image")

SANITIZER_TAGS = nh3.ALLOWED_TAGS | {"article", "section"}


class _StageError(Exception):
    """Raised internally to carry the failing stage name."""

    def __init__(self, stage: str, cause: Exception) -> None:
        super().__init__(f"{stage}: {cause}")
        self.stage = stage
        self.cause = cause


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

def _meta_tags(soup: BeautifulSoup) -> Dict[str, str]:
    """Map lower-cased ``property``/``name`` keys to their first content value."""
    tags: Dict[str, str] = {}
    for meta in soup.find_all("meta"):
        key = meta.get("property") or meta.get("name")
        content = meta.get("content")
        if not key or content is None:
            continue
        key = key.strip().lower()
        content = content.strip()
        if content and key not in tags:
            tags[key] = content
    return tags


def _prefixed(tags: Dict[str, str], prefix: str, keys: Iterable[str]) -> Optional[Dict[str, str]]:
    data = {k: tags[f"{prefix}:{k}"] for k in keys if f"{prefix}:{k}" in tags}
    return data or None


def _link_href(soup: BeautifulSoup, rel: str) -> Optional[str]:
    for link in soup.find_all("link", href=True):
        rels = link.get("rel") or []
        if isinstance(rels, str):
            rels = rels.split()
        if rel in (r.lower() for r in rels):
            href = link["href"].strip()
            if href:
                return href
    return None


def _absolute_http_url(value: Optional[str], base_url: str) -> Optional[str]:
    if not value:
        return None
    absolute = urljoin(base_url, value.strip())
    if urlsplit(absolute).scheme.lower() not in ("http", "https"):
        return None
    return absolute


def _first(*values: Optional[str]) -> Optional[str]:
    for v in values:
        if v:
            return v
    return None


def _page_title(soup: BeautifulSoup) -> Optional[str]:
    if soup.title is None:
        return None
    title = " ".join(soup.title.get_text().split())
    return title or None


def _best_image(soup: BeautifulSoup, tags: Dict[str, str], url: str) -> Optional[str]:
    candidates = [
        tags.get("og:image"),
        tags.get("og:image:url"),
        tags.get("twitter:image"),
        tags.get("twitter:image:src"),
        _link_href(soup, "image_src"),
    ]
    candidates.extend(img.get("src") for img in soup.find_all("img", src=True))

    for candidate in candidates:
        image_url = _absolute_http_url(candidate, url)
        if image_url and len(image_url) <= IMAGE_URL_MAX_LENGTH:
            return image_url
    return None


def extract_metadata(html: str, url: str) -> Dict[str, Any]:
    """Extract title, description, preview image and structured metadata.

    Title and description prefer OpenGraph, then Twitter Card, then the
    plain ``<title>`` / ``<meta name="description">`` tags.
    """
    soup = BeautifulSoup(html, "lxml")
    tags = _meta_tags(soup)

    title = _first(tags.get("og:title"), tags.get("twitter:title"), _page_title(soup))
    if title:
        title = title[:TITLE_MAX_LENGTH]

    description = _first(
        tags.get("og:description"),
        tags.get("twitter:description"),
        tags.get("description"),
    )

    metadata = ContentMetadata(
        opengraph=_prefixed(tags, "og", OPENGRAPH_KEYS),
        twitter=_prefixed(tags, "twitter", TWITTER_KEYS),
        canonical_url=_absolute_http_url(_link_href(soup, "canonical"), url),
        final_url=url,
        content_type="html",
    )

    return {
        "title": title,
        "description": description,
        "image_url": _best_image(soup, tags, url),
        "metadata": metadata,
    }


# ---------------------------------------------------------------------------
# Main content
# ---------------------------------------------------------------------------

def html_to_text(html: str) -> str:
    """Render *html* as plain text with whitespace collapsed.

    Parses the markup (so entities decode and script/style bodies are
    dropped) rather than stripping tags with regular expressions.
    """
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(list(DROPPED_TAGS)):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def _restrict_to_content_tags(html: str, allowed: Iterable[str] = CONTENT_TAGS) -> str:
    """Keep only block-level container tags; unwrap everything else."""
    allowed = frozenset(allowed)
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(list(DROPPED_TAGS)):
        tag.decompose()
    # lxml wraps fragments in <html><body>; those are unwrapped with the rest
    for tag in soup.find_all(True):
        if tag.name not in allowed:
            tag.unwrap()
    return str(soup)


def extract_main_content(html: str, url: str) -> Dict[str, str]:
    """Strip boilerplate with readability and derive the plain-text body.

    A blank page yields empty content rather than an error.
    """
    if not html or not html.strip():
        return {"content_html": "", "content_text": ""}

    summary = Document(html, url=url).summary(html_partial=True)
    content_html = _restrict_to_content_tags(summary)
    return {
        "content_html": content_html,
        "content_text": html_to_text(content_html),
    }


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------

def sanitize_html(html: str) -> str:
    """Remove XSS vectors from *html*, keeping safe structure.

    Scripts (with their content), event-handler attributes and
    ``javascript:`` URLs are pruned. Sanitizing already sanitized output
    returns it unchanged.
    """
    return nh3.clean(html, tags=SANITIZER_TAGS)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _run_stage(stage: str, func, *args):
    try:
        return func(*args)
    except Exception as exc:
        raise _StageError(stage, exc) from exc


def extract_content(html: str, url: str) -> Result:
    """Extract sanitized article content and metadata from *html*.

    Args:
        html: The page markup.
        url: The page's final URL, used to resolve relative links.

    Returns:
        Result with :class:`ParsedContent` on success or
        :class:`ExtractionError` on failure.
    """
    try:
        meta = _run_stage("metadata", extract_metadata, html, url)
        content = _run_stage("content", extract_main_content, html, url)
        safe_html = _run_stage("sanitization", sanitize_html, content["content_html"])

        parsed = ParsedContent(
            content_html=safe_html,
            content_text=content["content_text"],
            title=meta["title"],
            description=meta["description"],
            image_url=meta["image_url"],
            metadata=meta["metadata"],
        )
    except _StageError as exc:
        logger.warning("Extraction failed at %s stage for %s: %s", exc.stage, url, exc.cause)
        error = ExtractionError(
            message=f"Content extraction failed ({exc.stage})",
            url=url,
            details={"stage": exc.stage, "error": str(exc.cause)},
        )
        return Result.failure(error.message, error)
    except Exception as exc:
        logger.warning("Extraction failed for %s: %s", url, exc)
        error = ExtractionError(
            message="Content extraction failed",
            url=url,
            details={"error": str(exc)},
        )
        return Result.failure(error.message, error)

    return Result.success(parsed)
