"""
Upstream fetch client.

Every outbound request carries the same spoofed header bundle (Accept,
pinned Referer, desktop User-Agent) so the origin treats the relay like a
browser on the site it fronts. Two modes:

- ``text``: the body is buffered (up to MAX_PLAYLIST_BYTES) and decoded.
- ``stream``: the connection is left open; callers pull raw chunks with
  ``iter_bytes()`` and must ``close()`` when done.

There is no retry here; callers decide.
"""

import logging

import requests
from fake_useragent import UserAgent
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from . import config
from .errors import PlaylistTooLargeError, UpstreamFetchError

logger = logging.getLogger(__name__)

# Resolve a desktop Chrome UA once
try:
    USER_AGENT = UserAgent().chrome
except Exception:
    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )

MODE_TEXT = "text"
MODE_STREAM = "stream"


def default_headers():
    return {
        "Accept": "*/*",
        "Referer": config.UPSTREAM_REFERER,
        "User-Agent": USER_AGENT,
    }


class UpstreamResponse:
    """Status, headers and body of an upstream response."""

    def __init__(self, response: requests.Response, session: requests.Session = None):
        self._response = response
        self._session = session
        self.status_code = response.status_code
        self.headers = response.headers
        self.url = response.url
        self.text = None
        self._consumed = False
        self._peeked = None
        self._chunks = None

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def is_encoded(self) -> bool:
        return (self.headers.get("Content-Encoding") or "identity").lower() != "identity"

    def _raw_chunks(self, chunk_size=None):
        return self._response.raw.stream(chunk_size or config.CHUNK_SIZE, decode_content=False)

    def peek(self) -> bytes:
        """Pull the first raw chunk without losing it for later readers."""
        if self._peeked is None:
            self._chunks = self._raw_chunks()
            try:
                self._peeked = next(self._chunks, b"")
            except (requests.RequestException, Urllib3HTTPError) as e:
                self.close()
                raise UpstreamFetchError(f"Upstream read failed: {e}") from e
        return self._peeked

    def iter_bytes(self, chunk_size: int = None):
        """Yield raw body chunks as sent by the origin (no content decoding)."""
        if self._consumed:
            raise RuntimeError("Upstream body already consumed")
        self._consumed = True
        if self._peeked is None:
            return self._raw_chunks(chunk_size)
        return self._after_peek()

    def _after_peek(self):
        if self._peeked:
            yield self._peeked
        yield from self._chunks

    def read_text(self, limit: int = None) -> str:
        """Buffer the body (at most ``limit`` bytes) and decode it as text."""
        if self.text is not None:
            return self.text
        limit = limit or config.MAX_PLAYLIST_BYTES
        if self._peeked is not None:
            chunks = self.iter_bytes()
        else:
            self._consumed = True
            chunks = self._response.iter_content(chunk_size=config.CHUNK_SIZE)
        content = []
        read = 0
        try:
            for chunk in chunks:
                if not chunk:
                    continue
                read += len(chunk)
                if read > limit:
                    raise PlaylistTooLargeError("Playlist too large")
                content.append(chunk)
        except (requests.RequestException, Urllib3HTTPError) as e:
            raise UpstreamFetchError(f"Upstream read failed: {e}") from e
        finally:
            self.close()
        self.text = b"".join(content).decode(self._response.encoding or "utf-8", errors="replace")
        return self.text

    def close(self):
        self._response.close()
        if self._session is not None:
            self._session.close()


def fetch_upstream(url, mode=MODE_TEXT, extra_headers=None, timeout=None,
                   max_redirects=None, require_success=True) -> UpstreamResponse:
    """
    Fetch ``url`` from the origin.

    Raises UpstreamFetchError on network errors, timeouts, too many
    redirects, and (when ``require_success``) any status >= 400.
    """
    headers = default_headers()
    if extra_headers:
        headers.update({k: v for k, v in extra_headers.items() if v})
    if timeout is None:
        timeout = (config.CONNECT_TIMEOUT, config.READ_TIMEOUT)

    session = requests.Session()
    session.max_redirects = config.MAX_REDIRECTS if max_redirects is None else max_redirects

    logger.debug("Fetching %s (%s)", url, mode)
    try:
        r = session.get(url, headers=headers, stream=True, timeout=timeout, allow_redirects=True)
    except requests.RequestException as e:
        session.close()
        logger.warning("Upstream fetch failed for %s: %s", url, e)
        raise UpstreamFetchError(str(e)) from e

    if require_success and r.status_code >= 400:
        r.close()
        session.close()
        logger.warning("Upstream returned %s for %s", r.status_code, url)
        raise UpstreamFetchError(f"HTTP {r.status_code} {r.reason or ''}".strip(), status_code=r.status_code)

    upstream = UpstreamResponse(r, session)
    if mode == MODE_TEXT:
        upstream.read_text()
    return upstream
