"""Tests for the upstream fetch client."""

from unittest.mock import MagicMock, patch

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from snowrelay import config
from snowrelay.errors import PlaylistTooLargeError, UpstreamFetchError
from snowrelay.upstream import MODE_STREAM, MODE_TEXT, USER_AGENT, fetch_upstream


def make_response(status=200, chunks=(b"",), headers=None, encoding=None):
    r = MagicMock()
    r.status_code = status
    r.reason = "Not Found" if status == 404 else "OK"
    r.headers = CaseInsensitiveDict(headers or {})
    r.url = "https://cdn.example.com/final"
    r.encoding = encoding
    r.iter_content.return_value = iter(chunks)
    r.raw.stream.return_value = iter(chunks)
    return r


@pytest.fixture
def session():
    with patch("snowrelay.upstream.requests.Session") as session_cls:
        yield session_cls.return_value


class TestFetchUpstream:

    def test_injects_fixed_headers_and_merges_extra(self, session):
        session.get.return_value = make_response(chunks=[b"#EXTM3U\n"])
        fetch_upstream("https://cdn.example.com/a.m3u8", extra_headers={"Range": "bytes=0-9", "Origin": None})

        _, kwargs = session.get.call_args
        headers = kwargs["headers"]
        assert headers["Accept"] == "*/*"
        assert headers["Referer"] == config.UPSTREAM_REFERER
        assert headers["User-Agent"] == USER_AGENT
        assert headers["Range"] == "bytes=0-9"
        assert "Origin" not in headers
        assert kwargs["timeout"] == (config.CONNECT_TIMEOUT, config.READ_TIMEOUT)
        assert kwargs["allow_redirects"] is True

    def test_redirect_limit(self, session):
        session.get.return_value = make_response()
        fetch_upstream("https://cdn.example.com/a", max_redirects=2)
        assert session.max_redirects == 2

    def test_default_redirect_limit(self, session):
        session.get.return_value = make_response()
        fetch_upstream("https://cdn.example.com/a")
        assert session.max_redirects == config.MAX_REDIRECTS

    def test_text_mode_buffers_and_closes(self, session):
        r = make_response(chunks=[b"#EXTM3U\n", b"seg.ts\n"])
        session.get.return_value = r
        upstream = fetch_upstream("https://cdn.example.com/a.m3u8", mode=MODE_TEXT)
        assert upstream.text == "#EXTM3U\nseg.ts\n"
        r.close.assert_called()

    def test_stream_mode_leaves_body_unread(self, session):
        r = make_response(chunks=[b"abc", b"def"], headers={"Content-Length": "6"})
        session.get.return_value = r
        upstream = fetch_upstream("https://cdn.example.com/s.ts", mode=MODE_STREAM)
        assert upstream.text is None
        r.close.assert_not_called()
        assert b"".join(upstream.iter_bytes()) == b"abcdef"
        r.raw.stream.assert_called_with(config.CHUNK_SIZE, decode_content=False)

    def test_peek_does_not_lose_first_chunk(self, session):
        session.get.return_value = make_response(chunks=[b"#EXTM3U\n", b"a.ts\n"])
        upstream = fetch_upstream("https://cdn.example.com/x", mode=MODE_STREAM)
        assert upstream.peek() == b"#EXTM3U\n"
        assert upstream.read_text() == "#EXTM3U\na.ts\n"

    def test_body_can_only_be_consumed_once(self, session):
        session.get.return_value = make_response(chunks=[b"x"])
        upstream = fetch_upstream("https://cdn.example.com/x", mode=MODE_STREAM)
        upstream.iter_bytes()
        with pytest.raises(RuntimeError):
            upstream.iter_bytes()

    def test_network_error_is_wrapped(self, session):
        session.get.side_effect = requests.ConnectTimeout("timed out")
        with pytest.raises(UpstreamFetchError) as exc:
            fetch_upstream("https://cdn.example.com/a")
        assert "timed out" in str(exc.value)
        assert exc.value.upstream_status is None

    def test_too_many_redirects_is_wrapped(self, session):
        session.get.side_effect = requests.TooManyRedirects("Exceeded 5 redirects.")
        with pytest.raises(UpstreamFetchError):
            fetch_upstream("https://cdn.example.com/a")

    def test_error_status_when_success_required(self, session):
        session.get.return_value = make_response(status=404)
        with pytest.raises(UpstreamFetchError) as exc:
            fetch_upstream("https://cdn.example.com/a")
        assert exc.value.upstream_status == 404
        assert "404" in str(exc.value)

    def test_error_status_passes_through_when_not_required(self, session):
        session.get.return_value = make_response(status=416)
        upstream = fetch_upstream("https://cdn.example.com/a", mode=MODE_STREAM, require_success=False)
        assert upstream.status_code == 416
        assert not upstream.ok

    def test_playlist_size_cap(self, session, monkeypatch):
        monkeypatch.setattr(config, "MAX_PLAYLIST_BYTES", 8)
        r = make_response(chunks=[b"12345", b"67890"])
        session.get.return_value = r
        with pytest.raises(PlaylistTooLargeError):
            fetch_upstream("https://cdn.example.com/a.m3u8")
        r.close.assert_called()
