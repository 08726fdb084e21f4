"""Orchestrates the content archival pipeline for one archive record.

Pipeline:

1. Guard against archival being disabled.
2. Transition to processing.
3. Fetch the page (HttpFetcher validates the URL and every redirect).
4. Classify the content type and route it:
   HTML goes through full extraction, everything else is stored as
   metadata only.
5. Persist results and transition to completed, or to failed with a typed
   ``error_reason``.

Permanent failures end in the failed state and come back as a failed
:class:`Result`. ``httpx.TimeoutException`` propagates so the job runner can
retry; the record is then left in processing.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from .config import Settings
from .extractor import extract_content
from .fetcher import HttpFetcher
from .models import (
    ArchiveRecord,
    ArchiveState,
    ExtractionError,
    FailureReason,
    FetchedContent,
    FetchError,
    Result,
    utc_now,
)
from .state_machine import ArchiveStateMachine
from .store import ArchiveStore

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

DISABLED_MESSAGE = "Content archival disabled"


def is_html_content(content_type: Optional[str]) -> bool:
    """Return True when *content_type* should go through HTML extraction."""
    if not content_type:
        return False
    lowered = content_type.lower()
    return any(t in lowered for t in HTML_CONTENT_TYPES)


class Archiver:
    """Runs the archival pipeline for *archive*.

    Args:
        archive: The record to populate. Only this class mutates it.
        url: URL to archive; defaults to ``archive.url``.
        store: Where the record is persisted.
        settings: Archiver settings. Defaults are read from the environment
            without touching the filesystem.
        fetcher: HTTP fetcher; built from *settings* if not provided.
    """

    def __init__(
        self,
        archive: ArchiveRecord,
        url: Optional[str] = None,
        *,
        store: ArchiveStore,
        settings: Optional[Settings] = None,
        fetcher: Optional[HttpFetcher] = None,
    ) -> None:
        self.archive = archive
        self.url = url or archive.url
        self.store = store
        self.settings = settings or Settings()
        self.fetcher = fetcher or HttpFetcher(self.settings.fetch_config())
        self.machine = ArchiveStateMachine(archive)

    def call(self) -> Result:
        """Execute the pipeline.

        Returns:
            Successful Result with the archive, or a failed Result whose
            ``error`` is a short human-readable message.

        Raises:
            httpx.TimeoutException: When the fetch times out.
        """
        if self.machine.is_terminal:
            state = self.machine.current_state.value
            logger.warning("ContentArchive %s already %s; skipping run", self.archive.id, state)
            return Result.failure(f"Archive already {state}")

        try:
            # Re-checked here since the flag can change between scheduling and execution
            if not self.settings.enabled:
                return self._fail(FailureReason.DISABLED, DISABLED_MESSAGE)

            with self.store.atomic(self.archive):
                self.machine.transition_to(ArchiveState.PROCESSING)

            return self._execute_pipeline()
        except httpx.TimeoutException:
            logger.warning(
                "ContentArchive %s timed out fetching %s; leaving it in processing",
                self.archive.id,
                self.url,
            )
            raise
        except Exception as exc:
            return self._handle_unexpected_error(exc)

    def _execute_pipeline(self) -> Result:
        started = time.monotonic()
        fetch_result = self.fetcher.fetch(self.url)
        if fetch_result.is_failure:
            return self._handle_fetch_failure(fetch_result)

        fetched: FetchedContent = fetch_result.data
        duration_ms = int((time.monotonic() - started) * 1000)

        if is_html_content(fetched.content_type):
            return self._process_html_content(fetched, duration_ms)
        return self._process_binary_content(fetched, duration_ms)

    def _fail(
        self,
        reason: FailureReason,
        message: str,
        http_status: Optional[int] = None,
        data: object = None,
    ) -> Result:
        with self.store.atomic(self.archive):
            self.machine.transition_to(
                ArchiveState.FAILED,
                error_reason=reason.value,
                error_message=message,
                http_status=http_status,
            )
            self.archive.error_message = message

        logger.info(
            "ContentArchive %s failed (%s): %s", self.archive.id, reason.value, message
        )
        return Result.failure(message, data)

    def _handle_fetch_failure(self, result: Result) -> Result:
        error: FetchError = result.data
        return self._fail(error.error_code, error.message, error.http_status, error)

    def _handle_extraction_failure(self, result: Result) -> Result:
        error: ExtractionError = result.data
        return self._fail(error.error_code, error.message, data=error)

    def _handle_unexpected_error(self, exc: Exception) -> Result:
        message = f"Unexpected error ({type(exc).__name__})"
        logger.exception(
            "ContentArchive %s unexpected error archiving %s", self.archive.id, self.url
        )
        try:
            return self._fail(FailureReason.UNEXPECTED_ERROR, message)
        except Exception:
            logger.exception(
                "ContentArchive %s could not be marked failed (state=%s)",
                self.archive.id,
                self.machine.current_state.value,
            )
            return Result.failure(message)

    def _process_html_content(self, fetched: FetchedContent, duration_ms: int) -> Result:
        extraction = extract_content(fetched.text, fetched.final_url)
        if extraction.is_failure:
            return self._handle_extraction_failure(extraction)

        parsed = extraction.data
        with self.store.atomic(self.archive):
            self.archive.content_html = parsed.content_html
            self.archive.content_text = parsed.content_text
            self.archive.title = parsed.title
            self.archive.description = parsed.description
            self.archive.image_url = parsed.image_url
            self.archive.metadata = parsed.metadata.model_dump()
            self.archive.fetched_at = utc_now()
            self.archive.error_message = None
            self.machine.transition_to(ArchiveState.COMPLETED, fetch_duration_ms=duration_ms)

        logger.info("ContentArchive %s completed (HTML)", self.archive.id)
        return Result.success(self.archive)

    def _process_binary_content(self, fetched: FetchedContent, duration_ms: int) -> Result:
        with self.store.atomic(self.archive):
            self.archive.metadata = {
                "content_type": fetched.content_type,
                "final_url": fetched.final_url,
            }
            self.archive.fetched_at = utc_now()
            self.archive.error_message = None
            self.machine.transition_to(ArchiveState.COMPLETED, fetch_duration_ms=duration_ms)

        logger.info("ContentArchive %s completed (%s)", self.archive.id, fetched.content_type)
        return Result.success(self.archive)


def archive_content(
    archive: ArchiveRecord,
    url: Optional[str] = None,
    *,
    store: ArchiveStore,
    settings: Optional[Settings] = None,
) -> Result:
    """Archive *url* (default ``archive.url``) into *archive*."""
    return Archiver(archive, url, settings=settings, store=store).call()
