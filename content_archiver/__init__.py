"""Content archiver: SSRF-safe fetching, content extraction and archive state tracking."""

from .archiver import Archiver, archive_content, is_html_content
from .config import FetchConfig, Settings, get_settings
from .extractor import extract_content, sanitize_html
from .fetcher import HttpFetcher
from .jobs import create_archive, perform_archive
from .models import (
    ArchiveRecord,
    ArchiveState,
    ContentMetadata,
    ExtractionError,
    FailureReason,
    FetchedContent,
    FetchError,
    ParsedContent,
    Result,
    Transition,
)
from .state_machine import ArchiveStateMachine, TransitionFailedError
from .store import ArchiveStore, InMemoryArchiveStore, JsonArchiveStore
from .url_validator import validate_url

__all__ = [
    "Archiver",
    "archive_content",
    "is_html_content",
    "FetchConfig",
    "Settings",
    "get_settings",
    "extract_content",
    "sanitize_html",
    "HttpFetcher",
    "create_archive",
    "perform_archive",
    "ArchiveRecord",
    "ArchiveState",
    "ContentMetadata",
    "ExtractionError",
    "FailureReason",
    "FetchedContent",
    "FetchError",
    "ParsedContent",
    "Result",
    "Transition",
    "ArchiveStateMachine",
    "TransitionFailedError",
    "ArchiveStore",
    "InMemoryArchiveStore",
    "JsonArchiveStore",
    "validate_url",
]
