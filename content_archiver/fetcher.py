"""SSRF-safe HTTP fetching with manual redirect validation and a byte cap."""

from __future__ import annotations

import logging
from typing import Dict, Optional
from urllib.parse import urljoin

import httpx

from .config import FetchConfig
from .models import FailureReason, FetchedContent, FetchError, Result
from .url_validator import is_private_address, validate_url

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


def _failure(
    code: FailureReason,
    message: str,
    url: str,
    *,
    http_status: Optional[int] = None,
    **details,
) -> Result:
    error = FetchError(
        error_code=code,
        message=message,
        url=url,
        http_status=http_status,
        details=details,
    )
    return Result.failure(error.message, error)


def _peer_address(response: httpx.Response) -> Optional[str]:
    """IP address of the server the response came from, when the transport exposes it."""
    stream = response.extensions.get("network_stream")
    if stream is None:
        return None
    try:
        server_addr = stream.get_extra_info("server_addr")
    except OSError:
        # socket already closed after a Connection: close response
        return None
    if not server_addr:
        return None
    return server_addr[0]


def _declared_length(headers: httpx.Headers) -> Optional[int]:
    value = headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class HttpFetcher:
    """Fetches a page while validating the initial URL and every redirect hop.

    Permanent failures come back as a failed :class:`Result` carrying a
    :class:`FetchError`. ``httpx.TimeoutException`` is never caught here:
    timeouts are transient and the caller's retry policy re-runs the fetch.
    """

    def __init__(self, config: FetchConfig) -> None:
        self.config = config

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(
                self.config.read_timeout, connect=self.config.connect_timeout
            ),
            follow_redirects=False,
            trust_env=False,
            headers={
                "user-agent": self.config.user_agent,
                "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
        )

    def _check_peer(self, response: httpx.Response, url: str) -> Result:
        """Reject a response served from a private address.

        The hostname is resolved again when httpx connects, so a rebinding
        DNS answer can differ from the one :func:`validate_url` checked.
        """
        address = _peer_address(response)
        if address is None or not is_private_address(address):
            return Result.success()
        logger.warning("Blocked %s: connected to private address %s", url, address)
        return _failure(
            FailureReason.BLOCKED,
            "Connected to private IP address (SSRF protection)",
            url,
            validation_reason="private_ip",
            peer_address=address,
        )

    def _size_limit(self, url: str, content_length: int) -> Result:
        max_size_mb = round(self.config.max_bytes / (1024.0 * 1024), 1)
        return _failure(
            FailureReason.SIZE_LIMIT,
            f"Content size exceeds {max_size_mb}MB limit",
            url,
            content_length=content_length,
            max_size=self.config.max_bytes,
        )

    def fetch(self, url: str) -> Result:
        """Fetch *url*.

        Returns:
            Result with :class:`FetchedContent` on success or
            :class:`FetchError` on failure.

        Raises:
            httpx.TimeoutException: On connect/read/write/pool timeouts.
        """
        validation = validate_url(url)
        if validation.is_failure:
            return validation
        url = validation.data

        try:
            with self._client() as client:
                probe = self._check_content_length(client, url)
                if probe.is_failure:
                    return probe
                return self._fetch_following_redirects(client, url)
        except httpx.TimeoutException:
            logger.warning("Timeout fetching %s", url)
            raise
        except httpx.ConnectError as exc:
            logger.info("Connection failed for %s: %s", url, exc)
            return _failure(
                FailureReason.NETWORK_ERROR,
                "Connection failed",
                url,
                error=str(exc),
                error_class=type(exc).__name__,
            )
        except httpx.HTTPError as exc:
            logger.info("HTTP fetch error for %s: %s", url, exc)
            return _failure(
                FailureReason.NETWORK_ERROR,
                "HTTP fetch error",
                url,
                error=str(exc),
                error_class=type(exc).__name__,
            )

    def _check_content_length(self, client: httpx.Client, url: str) -> Result:
        """HEAD the URL and reject a declared size over the cap.

        Best effort: a missing header or a non-2xx answer passes.
        """
        try:
            response = client.head(url)
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as exc:
            return _failure(
                FailureReason.NETWORK_ERROR,
                "Unable to check content size",
                url,
                error=str(exc),
                error_class=type(exc).__name__,
            )

        peer = self._check_peer(response, url)
        if peer.is_failure:
            return peer

        content_length = _declared_length(response.headers)
        if content_length is not None and content_length > self.config.max_bytes:
            logger.info("Size probe rejected %s (%d bytes)", url, content_length)
            return self._size_limit(url, content_length)
        return Result.success()

    def _fetch_following_redirects(self, client: httpx.Client, url: str) -> Result:
        current_url = url
        redirect_count = 0

        while True:
            with client.stream("GET", current_url) as response:
                peer = self._check_peer(response, current_url)
                if peer.is_failure:
                    return peer

                if response.status_code not in REDIRECT_STATUSES:
                    return self._read_final_response(response, current_url)

                if redirect_count >= self.config.max_redirects:
                    return _failure(
                        FailureReason.TOO_MANY_REDIRECTS,
                        f"Too many redirects (exceeded {self.config.max_redirects})",
                        url,
                        http_status=response.status_code,
                        redirect_count=redirect_count,
                        max_redirects=self.config.max_redirects,
                        final_url=current_url,
                    )

                location = response.headers.get("location")
                if not location:
                    return _failure(
                        FailureReason.NETWORK_ERROR,
                        "Redirect missing Location header",
                        url,
                        http_status=response.status_code,
                        current_url=current_url,
                    )

            redirect_url = urljoin(current_url, location)
            validation = validate_url(redirect_url)
            if validation.is_failure:
                return self._redirect_rejected(url, current_url, redirect_url, validation)

            logger.debug("Following redirect %s -> %s", current_url, validation.data)
            current_url = validation.data
            redirect_count += 1

    def _redirect_rejected(
        self, url: str, current_url: str, redirect_url: str, validation: Result
    ) -> Result:
        rejected: FetchError = validation.data
        if rejected.error_code == FailureReason.BLOCKED:
            message = "Redirect to private IP address blocked (SSRF protection)"
        else:
            message = f"Redirect to invalid URL rejected: {rejected.message}"

        details: Dict[str, object] = dict(rejected.details)
        details.update(redirect_url=redirect_url, current_url=current_url)
        return _failure(rejected.error_code, message, url, **details)

    def _read_final_response(self, response: httpx.Response, final_url: str) -> Result:
        if not response.is_success:
            return _failure(
                FailureReason.NETWORK_ERROR,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                final_url,
                http_status=response.status_code,
            )

        content_length = _declared_length(response.headers)
        if content_length is not None and content_length > self.config.max_bytes:
            return self._size_limit(final_url, content_length)

        chunks = []
        received = 0
        for chunk in response.iter_bytes():
            received += len(chunk)
            if received > self.config.max_bytes:
                logger.info("Aborted %s after %d bytes", final_url, received)
                return self._size_limit(final_url, received)
            chunks.append(chunk)

        logger.info("Fetched OK: %s (%d bytes)", final_url, received)
        return Result.success(
            FetchedContent(
                body=b"".join(chunks),
                status=response.status_code,
                final_url=final_url,
                content_type=response.headers.get("content-type"),
                encoding=response.charset_encoding,
            )
        )
