"""Job-runner adapter: archive creation and the retrying archive job.

Retry policy lives here, not in :class:`Archiver`: only timeouts are
retried, with exponential backoff. Everything else the archiver records as
a terminal failure.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .archiver import Archiver
from .config import Settings, get_settings
from .models import ArchiveRecord, Result
from .store import ArchiveStore

logger = logging.getLogger(__name__)


def _retry_decorator(settings: Settings):
    return retry(
        retry=retry_if_exception_type(httpx.TimeoutException),
        stop=stop_after_attempt(settings.max_retries),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_base,
            max=settings.retry_backoff_max,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def create_archive(store: ArchiveStore, *, link_id: str, url: str) -> Result:
    """Create and save a pending archive for *link_id*.

    Enqueuing the archive job is left to the caller.
    """
    existing = store.find_by_link(link_id)
    if existing is not None:
        return Result.failure(f"Archive already exists for link {link_id}", existing)

    record = ArchiveRecord(link_id=link_id, url=url)
    store.save(record)
    logger.info("Created ContentArchive %s for link %s", record.id, link_id)
    return Result.success(record)


def perform_archive(
    archive_id: str,
    *,
    store: ArchiveStore,
    settings: Optional[Settings] = None,
) -> Optional[Result]:
    """Run the archiver for *archive_id*, retrying on timeouts.

    Returns:
        The archiver's Result, or None when the archive no longer exists.

    Raises:
        httpx.TimeoutException: When every attempt timed out.
    """
    s = settings or get_settings()

    try:
        store.get(archive_id)
    except KeyError:
        logger.warning("Discarding archive job: archive %s not found", archive_id)
        return None

    @_retry_decorator(s)
    def _attempt() -> Result:
        archive = store.get(archive_id)
        return Archiver(archive, settings=s, store=store).call()

    result = _attempt()
    logger.info(
        "ContentArchive %s job completed: %s",
        archive_id,
        "success" if result.is_success else result.error,
    )
    return result
