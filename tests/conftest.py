"""Shared test fixtures for content archiver tests.

DNS resolution is replaced for every test so nothing touches the network;
HTTP is mocked per test with ``respx``.
"""

import socket
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

from content_archiver.config import FetchConfig, Settings
from content_archiver.url_validator import is_ip_literal

PUBLIC_IP = "93.184.216.34"

FAKE_DNS: Dict[str, List[str]] = {
    "example.com": [PUBLIC_IP],
    "www.example.com": [PUBLIC_IP],
    "news.example.org": ["93.184.216.35"],
    "münchen.de": ["93.184.216.36"],
    "internal.example.com": ["10.0.0.5"],
    "metadata.example.com": ["169.254.169.254"],
    "dual.example.com": [PUBLIC_IP, "192.168.1.10"],
    "localhost": ["127.0.0.1", "::1"],
}


def fake_resolve(hostname: str) -> List[str]:
    if is_ip_literal(hostname):
        return [hostname]
    try:
        return FAKE_DNS[hostname]
    except KeyError:
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known") from None


@pytest.fixture(autouse=True)
def fake_dns(monkeypatch: pytest.MonkeyPatch) -> Dict[str, List[str]]:
    """Route hostname resolution through FAKE_DNS."""
    monkeypatch.setattr("content_archiver.url_validator.resolve_host", fake_resolve)
    return FAKE_DNS


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with a temp store, small limits and no retry backoff."""
    return Settings(
        store_dir=tmp_path / "archives",
        connect_timeout=1.0,
        read_timeout=1.0,
        max_redirects=3,
        max_content_size=64 * 1024,
        max_retries=3,
        retry_backoff_base=0,
        user_agent_contact_url="https://example.com/about",
    )


@pytest.fixture
def fetch_config(settings: Settings) -> FetchConfig:
    return settings.fetch_config()


def _mock_page(
    router,
    url: str,
    body: str = "",
    *,
    status: int = 200,
    content_type: Optional[str] = "text/html; charset=utf-8",
    head_headers: Optional[Dict[str, str]] = None,
):
    """Register HEAD and GET routes for *url*; return ``(head_route, get_route)``."""
    headers = {"content-type": content_type} if content_type else {}
    head_route = router.head(url).mock(
        return_value=httpx.Response(200, headers=head_headers or {})
    )
    get_route = router.get(url).mock(
        return_value=httpx.Response(status, headers=headers, content=body.encode("utf-8"))
    )
    return head_route, get_route


@pytest.fixture
def mock_page():
    """Helper registering HEAD + GET routes on a respx router."""
    return _mock_page


@pytest.fixture
def article_html() -> str:
    """Article page with OpenGraph and Twitter tags, boilerplate and XSS bait."""
    return """\
<!DOCTYPE html>
<html>
<head>
  <title>Plain Title | Example News</title>
  <meta name="description" content="Plain meta description.">
  <meta property="og:title" content="Battery Breakthrough">
  <meta property="og:description" content="A new cell chemistry doubles storage density.">
  <meta property="og:image" content="/images/cell.jpg">
  <meta property="og:type" content="article">
  <meta name="twitter:card" content="summary_large_image">
  <meta name="twitter:title" content="Twitter Battery Title">
  <link rel="canonical" href="https://example.com/articles/battery">
  <script>window.tracker = "abc";</script>
</head>
<body>
  <nav class="menu"><a href="/">Home</a> <a href="/about">About</a></nav>
  <article class="post-content">
    <h1>Battery Breakthrough</h1>
    <p>Researchers announced on Tuesday that a new lithium-sulfur cell design,
       developed over five years, doubles the storage density of current batteries.</p>
    <p onclick="steal()">The team, based in Oslo, says the cells survive more than
       two thousand charge cycles, which makes them practical for electric vehicles,
       grid storage, and consumer electronics.</p>
    <p>Independent labs have reproduced the results, although manufacturing costs,
       supply chains, and recycling remain open questions for the industry.</p>
    <script>alert('xss')</script>
    <p>Fish &amp; chips were served at the launch event, according to attendees,
       who praised the atmosphere, the food, and the presentations.</p>
  </article>
  <footer class="footer">Copyright Example News. All rights reserved.</footer>
</body>
</html>
"""


@pytest.fixture
def minimal_html() -> str:
    """Page with only a <title> and meta description."""
    return """\
<html>
<head>
  <title>  Minimal   Page </title>
  <meta name="description" content="Only basic tags here.">
</head>
<body>
  <div id="content">
    <p>This page has a single paragraph of body text, which is long enough,
       detailed enough, and plain enough to be picked up as the main content.</p>
    <img src="photo.png">
  </div>
</body>
</html>
"""
