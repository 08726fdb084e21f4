"""Pydantic models and value objects shared across the archiver."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from bs4.dammit import EncodingDetector
from pydantic import BaseModel, ConfigDict, Field

TITLE_MAX_LENGTH = 500
IMAGE_URL_MAX_LENGTH = 2048


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class ArchiveState(str, Enum):
    """Lifecycle states of an archive record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ArchiveState.COMPLETED, ArchiveState.FAILED)


class FailureReason(str, Enum):
    """Typed reason stored with a failed transition."""

    INVALID_URL = "invalid_url"
    BLOCKED = "blocked"
    NETWORK_ERROR = "network_error"
    SIZE_LIMIT = "size_limit"
    TOO_MANY_REDIRECTS = "too_many_redirects"
    EXTRACTION_ERROR = "extraction_error"
    DISABLED = "disabled"
    UNEXPECTED_ERROR = "unexpected_error"


# ---------------------------------------------------------------------------
# Persisted entities
# ---------------------------------------------------------------------------

class Transition(BaseModel):
    """One entry of an archive's append-only state history."""

    id: str = Field(default_factory=_new_id)
    to_state: ArchiveState
    sort_key: int
    most_recent: bool
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class ArchiveRecord(BaseModel):
    """Archived content for a single saved link."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    link_id: Optional[str] = None
    url: str

    title: Optional[str] = Field(default=None, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, max_length=IMAGE_URL_MAX_LENGTH)
    content_html: Optional[str] = None
    content_text: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None
    fetched_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    transitions: List[Transition] = Field(default_factory=list)

    @property
    def current_state(self) -> ArchiveState:
        for t in self.transitions:
            if t.most_recent:
                return t.to_state
        return ArchiveState.PENDING


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

class FetchedContent(BaseModel):
    """The final (non-redirect) response of a successful fetch."""

    model_config = ConfigDict(frozen=True)

    body: bytes
    status: int
    final_url: str
    content_type: Optional[str] = None
    encoding: Optional[str] = None

    @property
    def text(self) -> str:
        """Body decoded as HTML.

        The Content-Type charset wins, then a byte-order mark, then a
        ``<meta charset>`` declaration in the page, then UTF-8.
        """
        body, bom_encoding = EncodingDetector.strip_byte_order_mark(self.body)
        declared = EncodingDetector.find_declared_encoding(body, is_html=True)
        for encoding in (self.encoding, bom_encoding, declared):
            if not encoding:
                continue
            try:
                return body.decode(encoding, errors="replace")
            except LookupError:
                continue
        return body.decode("utf-8", errors="replace")


class FetchError(BaseModel):
    """Structured failure from URL validation or fetching."""

    model_config = ConfigDict(frozen=True)

    error_code: FailureReason
    message: str
    url: str
    http_status: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ContentMetadata(BaseModel):
    """Structured page metadata stored alongside extracted content."""

    model_config = ConfigDict(frozen=True)

    opengraph: Optional[Dict[str, str]] = None
    twitter: Optional[Dict[str, str]] = None
    canonical_url: Optional[str] = None
    final_url: str
    content_type: str = "html"


class ParsedContent(BaseModel):
    """Sanitized article content and metadata extracted from an HTML page."""

    model_config = ConfigDict(frozen=True)

    content_html: str
    content_text: str
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    metadata: ContentMetadata


class ExtractionError(BaseModel):
    """Failure from any stage of content extraction."""

    model_config = ConfigDict(frozen=True)

    error_code: FailureReason = FailureReason.EXTRACTION_ERROR
    message: str
    url: str
    details: Dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class Result:
    """Outcome of a pipeline step: success with data, or failure with messages.

    On failure ``data`` carries the structured error value (FetchError,
    ExtractionError) when there is one.
    """

    succeeded: bool
    data: Any = None
    errors: List[str] = field(default_factory=list)

    @classmethod
    def success(cls, data: Any = None) -> "Result":
        return cls(succeeded=True, data=data)

    @classmethod
    def failure(cls, message: str, data: Any = None) -> "Result":
        return cls(succeeded=False, data=data, errors=[message])

    @property
    def is_success(self) -> bool:
        return self.succeeded

    @property
    def is_failure(self) -> bool:
        return not self.succeeded

    @property
    def error(self) -> Optional[str]:
        """First error message, or None on success."""
        return self.errors[0] if self.errors else None
