from __future__ import annotations

import threading
from typing import Dict, List, Union

import pytest
import requests
from requests.structures import CaseInsensitiveDict

import site_cloner


class FakeResponse:
    def __init__(
        self,
        url: str,
        status_code: int = 200,
        body: Union[bytes, str] = b"",
        content_type: str = "text/html; charset=utf-8",
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = CaseInsensitiveDict()
        if content_type:
            self.headers["Content-Type"] = content_type
        self.encoding = "utf-8" if "charset=utf-8" in (content_type or "") else None
        self.apparent_encoding = "utf-8"

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")


class FakeSession:
    """In-memory stand-in for ``requests.Session``; unknown URLs answer 404."""

    def __init__(self) -> None:
        self.routes: Dict[str, Union[FakeResponse, Exception]] = {}
        self.requests: List[str] = []
        self.headers = {"User-Agent": site_cloner.DEFAULT_USER_AGENT}
        self._lock = threading.Lock()

    def add(
        self,
        url: str,
        body: Union[bytes, str] = b"",
        status: int = 200,
        content_type: str = "text/html; charset=utf-8",
    ) -> None:
        self.routes[url] = FakeResponse(url, status, body, content_type)

    def fail(self, url: str, exc: Exception = None) -> None:
        self.routes[url] = exc or requests.ConnectionError(f"cannot reach {url}")

    def get(self, url: str, timeout: float = None, **kwargs) -> FakeResponse:
        with self._lock:
            self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(url, 404, b"not found", "text/plain")
        if isinstance(route, Exception):
            raise route
        return route

    def close(self) -> None:
        pass


INDEX_HTML = """<!doctype html>
<html><head><title>Home</title></head>
<body>
<a href="/about/">About</a>
<img src="https://cdn.test/logo.png" alt="logo">
</body></html>
"""

ABOUT_HTML = """<!doctype html>
<html><head><title>About</title></head>
<body><p>About us</p><a href="/">Home</a></body></html>
"""


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def example_site(fake_session: FakeSession) -> FakeSession:
    fake_session.fail("https://example.test/robots.txt")
    fake_session.add("https://example.test/", INDEX_HTML)
    fake_session.add("https://example.test/about/", ABOUT_HTML)
    fake_session.add("https://cdn.test/logo.png", b"\x89PNG fake", content_type="image/png")
    return fake_session
