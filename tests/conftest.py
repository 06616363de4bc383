import pytest
import requests
from requests.structures import CaseInsensitiveDict

from snowrelay import server
from snowrelay.errors import UpstreamFetchError
from snowrelay.upstream import MODE_TEXT


class FakeUpstream:
    """Stands in for snowrelay.upstream.UpstreamResponse."""

    def __init__(self, body=b"", status_code=200, headers=None, url=None, fail_after=None):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.chunks = list(body) if isinstance(body, list) else [body]
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = url
        self.text = None
        self.closed = False
        self.fail_after = fail_after

    @property
    def ok(self):
        return self.status_code < 400

    @property
    def is_encoded(self):
        return (self.headers.get("Content-Encoding") or "identity").lower() != "identity"

    def peek(self):
        return self.chunks[0] if self.chunks else b""

    def iter_bytes(self, chunk_size=None):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise requests.ConnectionError("connection reset by peer")
            yield chunk

    def read_text(self, limit=None):
        self.text = b"".join(self.chunks).decode("utf-8")
        self.close()
        return self.text

    def close(self):
        self.closed = True


class FakeOrigin:
    """Routes fetch_upstream calls to canned FakeUpstream responses."""

    def __init__(self):
        self.routes = {}
        self.ranged = {}
        self.calls = []

    def add(self, url, body=b"", **kwargs):
        self.routes[url] = FakeUpstream(body, url=url, **kwargs)
        return self.routes[url]

    def add_ranged(self, url, body=b"", **kwargs):
        """Response served instead of the plain route when a Range header is sent."""
        self.ranged[url] = FakeUpstream(body, url=url, status_code=206, **kwargs)
        return self.ranged[url]

    def __call__(self, url, mode=MODE_TEXT, extra_headers=None, require_success=True, **kwargs):
        self.calls.append({"url": url, "mode": mode, "headers": dict(extra_headers or {}),
                           "require_success": require_success})
        upstream = self.routes.get(url)
        if (extra_headers or {}).get("Range") and url in self.ranged:
            upstream = self.ranged[url]
        if upstream is None:
            raise UpstreamFetchError("Connection refused")
        if require_success and not upstream.ok:
            raise UpstreamFetchError(f"HTTP {upstream.status_code}", status_code=upstream.status_code)
        if mode == MODE_TEXT:
            upstream.read_text()
        return upstream


@pytest.fixture
def origin(monkeypatch):
    fake = FakeOrigin()
    monkeypatch.setattr(server, "fetch_upstream", fake)
    return fake


@pytest.fixture
def client():
    server.app.config["TESTING"] = True
    with server.app.test_client() as c:
        yield c
