"""Tests for the SSRF-safe HTTP fetcher.

``respx`` patches ``httpx`` at the transport layer so no real network calls
are made; DNS comes from the ``fake_dns`` fixture.
"""

import httpx
import pytest
import respx

from content_archiver.config import FetchConfig
from content_archiver.fetcher import HttpFetcher
from content_archiver.models import FailureReason, FetchedContent


_HTML = "<html><head><title>Hi</title></head><body><p>Hello</p></body></html>"


@pytest.fixture
def fetcher(fetch_config: FetchConfig) -> HttpFetcher:
    return HttpFetcher(fetch_config)


class TestSuccessfulFetch:
    def test_returns_fetched_content(self, fetcher: HttpFetcher, mock_page) -> None:
        with respx.mock(assert_all_called=False) as router:
            mock_page(router, "https://example.com/article", _HTML)
            result = fetcher.fetch("https://example.com/article")

        assert result.is_success
        content = result.data
        assert isinstance(content, FetchedContent)
        assert content.status == 200
        assert content.final_url == "https://example.com/article"
        assert content.content_type == "text/html; charset=utf-8"
        assert content.encoding == "utf-8"
        assert "<title>Hi</title>" in content.text

    def test_sends_user_agent(self, fetcher: HttpFetcher, fetch_config: FetchConfig, mock_page) -> None:
        with respx.mock(assert_all_called=False) as router:
            _, get_route = mock_page(router, "https://example.com/", _HTML)
            fetcher.fetch("https://example.com/")

        request = get_route.calls.last.request
        assert request.headers["user-agent"] == fetch_config.user_agent
        assert "ContentArchiver/1.0" in request.headers["user-agent"]

    def test_binary_content(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/doc.pdf").mock(return_value=httpx.Response(200))
            router.get("https://example.com/doc.pdf").mock(
                return_value=httpx.Response(
                    200, headers={"content-type": "application/pdf"}, content=b"%PDF-1.7"
                )
            )
            result = fetcher.fetch("https://example.com/doc.pdf")

        assert result.data.content_type == "application/pdf"
        assert result.data.body == b"%PDF-1.7"


class TestHttpErrors:
    def test_404_is_network_error_with_status(self, fetcher: HttpFetcher, mock_page) -> None:
        with respx.mock(assert_all_called=False) as router:
            mock_page(router, "https://example.com/missing", "Not Found", status=404)
            result = fetcher.fetch("https://example.com/missing")

        assert result.is_failure
        error = result.data
        assert error.error_code == FailureReason.NETWORK_ERROR
        assert error.http_status == 404
        assert error.message == "HTTP 404: Not Found"

    def test_500_is_network_error(self, fetcher: HttpFetcher, mock_page) -> None:
        with respx.mock(assert_all_called=False) as router:
            mock_page(router, "https://example.com/boom", "oops", status=500)
            result = fetcher.fetch("https://example.com/boom")

        assert result.data.error_code == FailureReason.NETWORK_ERROR
        assert result.data.http_status == 500

    def test_connection_failure(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/").mock(return_value=httpx.Response(200))
            router.get("https://example.com/").mock(side_effect=httpx.ConnectError)
            result = fetcher.fetch("https://example.com/")

        assert result.data.error_code == FailureReason.NETWORK_ERROR
        assert result.error == "Connection failed"
        assert result.data.details["error_class"] == "ConnectError"

    def test_probe_failure_is_network_error(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/").mock(side_effect=httpx.ConnectError)
            get_route = router.get("https://example.com/").mock(
                return_value=httpx.Response(200, text=_HTML)
            )
            result = fetcher.fetch("https://example.com/")

        assert result.data.error_code == FailureReason.NETWORK_ERROR
        assert result.error == "Unable to check content size"
        assert not get_route.called


class TestTimeouts:
    def test_read_timeout_propagates(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/slow").mock(return_value=httpx.Response(200))
            router.get("https://example.com/slow").mock(side_effect=httpx.ReadTimeout)
            with pytest.raises(httpx.ReadTimeout):
                fetcher.fetch("https://example.com/slow")

    def test_connect_timeout_propagates(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/slow").mock(side_effect=httpx.ConnectTimeout)
            with pytest.raises(httpx.ConnectTimeout):
                fetcher.fetch("https://example.com/slow")


class TestSizeLimit:
    def test_declared_size_on_probe_rejected_before_get(self, fetcher: HttpFetcher, mock_page) -> None:
        with respx.mock(assert_all_called=False) as router:
            _, get_route = mock_page(
                router,
                "https://example.com/huge",
                _HTML,
                head_headers={"content-length": str(50 * 1024 * 1024)},
            )
            result = fetcher.fetch("https://example.com/huge")

        assert result.data.error_code == FailureReason.SIZE_LIMIT
        assert result.data.details["content_length"] == 50 * 1024 * 1024
        assert result.data.details["max_size"] == 64 * 1024
        assert not get_route.called

    def test_declared_size_on_get_rejected(self, fetcher: HttpFetcher, mock_page) -> None:
        big = "x" * (65 * 1024)
        with respx.mock(assert_all_called=False) as router:
            mock_page(router, "https://example.com/big", big)
            result = fetcher.fetch("https://example.com/big")

        assert result.data.error_code == FailureReason.SIZE_LIMIT

    def test_within_limit_passes(self, fetcher: HttpFetcher, mock_page) -> None:
        with respx.mock(assert_all_called=False) as router:
            mock_page(
                router,
                "https://example.com/ok",
                _HTML,
                head_headers={"content-length": str(len(_HTML))},
            )
            result = fetcher.fetch("https://example.com/ok")

        assert result.is_success


class TestValidation:
    def test_private_initial_url_blocked_without_request(self, fetcher: HttpFetcher, mock_page) -> None:
        with respx.mock(assert_all_called=False) as router:
            head_route, get_route = mock_page(router, "http://10.0.0.1/", _HTML)
            result = fetcher.fetch("http://10.0.0.1/")

        assert result.data.error_code == FailureReason.BLOCKED
        assert not head_route.called
        assert not get_route.called

    def test_invalid_scheme(self, fetcher: HttpFetcher) -> None:
        result = fetcher.fetch("file:///etc/passwd")
        assert result.data.error_code == FailureReason.INVALID_URL


class TestRedirects:
    def test_follows_relative_redirect(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/old").mock(return_value=httpx.Response(200))
            router.get("https://example.com/old").mock(
                return_value=httpx.Response(301, headers={"location": "/new"})
            )
            router.get("https://example.com/new").mock(
                return_value=httpx.Response(
                    200, headers={"content-type": "text/html"}, text=_HTML
                )
            )
            result = fetcher.fetch("https://example.com/old")

        assert result.is_success
        assert result.data.final_url == "https://example.com/new"

    def test_follows_cross_host_redirect(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/go").mock(return_value=httpx.Response(200))
            router.get("https://example.com/go").mock(
                return_value=httpx.Response(
                    302, headers={"location": "https://news.example.org/story"}
                )
            )
            router.get("https://news.example.org/story").mock(
                return_value=httpx.Response(200, headers={"content-type": "text/html"}, text=_HTML)
            )
            result = fetcher.fetch("https://example.com/go")

        assert result.data.final_url == "https://news.example.org/story"

    @pytest.mark.parametrize(
        "location",
        [
            "http://169.254.169.254/latest/meta-data/",
            "http://127.0.0.1:8080/admin",
            "https://internal.example.com/secrets",
        ],
    )
    def test_redirect_to_private_target_blocked(self, fetcher: HttpFetcher, location: str) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/evil").mock(return_value=httpx.Response(200))
            router.get("https://example.com/evil").mock(
                return_value=httpx.Response(307, headers={"location": location})
            )
            target_route = router.get(location).mock(return_value=httpx.Response(200))
            result = fetcher.fetch("https://example.com/evil")

        assert result.is_failure
        error = result.data
        assert error.error_code == FailureReason.BLOCKED
        assert error.details["redirect_url"] == location
        assert error.details["current_url"] == "https://example.com/evil"
        assert not target_route.called

    def test_redirect_to_bad_scheme_is_invalid_url(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/ftp").mock(return_value=httpx.Response(200))
            router.get("https://example.com/ftp").mock(
                return_value=httpx.Response(302, headers={"location": "ftp://example.com/file"})
            )
            result = fetcher.fetch("https://example.com/ftp")

        assert result.data.error_code == FailureReason.INVALID_URL

    def test_too_many_redirects_is_distinct(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/loop").mock(return_value=httpx.Response(200))
            loop = router.get("https://example.com/loop").mock(
                return_value=httpx.Response(302, headers={"location": "/loop"})
            )
            result = fetcher.fetch("https://example.com/loop")

        assert result.data.error_code == FailureReason.TOO_MANY_REDIRECTS
        assert result.data.error_code != FailureReason.NETWORK_ERROR
        assert result.data.details["max_redirects"] == 3
        assert loop.call_count == 4

    def test_missing_location_header(self, fetcher: HttpFetcher) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.head("https://example.com/nowhere").mock(return_value=httpx.Response(200))
            router.get("https://example.com/nowhere").mock(return_value=httpx.Response(301))
            result = fetcher.fetch("https://example.com/nowhere")

        assert result.data.error_code == FailureReason.NETWORK_ERROR
        assert result.error == "Redirect missing Location header"
        assert result.data.http_status == 301


class _FakeNetworkStream:
    """Stands in for the httpcore network stream exposed in response extensions."""

    def __init__(self, address: str) -> None:
        self.address = address

    def get_extra_info(self, info: str):
        return (self.address, 443) if info == "server_addr" else None


def _transport_client(head_peer: str, get_peer: str):
    def handler(request: httpx.Request) -> httpx.Response:
        peer = head_peer if request.method == "HEAD" else get_peer
        return httpx.Response(
            200,
            headers={"content-type": "text/html"},
            content=_HTML.encode(),
            extensions={"network_stream": _FakeNetworkStream(peer)},
        )

    return lambda: httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=False)


class TestConnectedPeer:
    """The address actually connected to is checked, not only the DNS answer."""

    def test_rebound_to_private_on_get_blocked(
        self, fetcher: HttpFetcher, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(fetcher, "_client", _transport_client("93.184.216.34", "10.0.0.9"))
        result = fetcher.fetch("https://example.com/rebind")

        assert result.is_failure
        assert result.data.error_code == FailureReason.BLOCKED
        assert result.data.details["peer_address"] == "10.0.0.9"

    def test_rebound_to_loopback_on_head_blocked(
        self, fetcher: HttpFetcher, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(fetcher, "_client", _transport_client("127.0.0.1", "127.0.0.1"))
        result = fetcher.fetch("https://example.com/rebind")

        assert result.data.error_code == FailureReason.BLOCKED

    def test_public_peer_passes(self, fetcher: HttpFetcher, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            fetcher, "_client", _transport_client("93.184.216.34", "93.184.216.34")
        )
        result = fetcher.fetch("https://example.com/ok")

        assert result.is_success
        assert "<title>Hi</title>" in result.data.text
