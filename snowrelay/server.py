"""
Flask HLS / PDF relay
---------------------
Routes:
  /proxy          -> rewrites .m3u8 playlists (optionally best variant only),
                     streams anything else
  /segment        -> streams a media segment (url, or base + file)
  /segment-proxy  -> same as /segment
  /pdf            -> streams a PDF, honouring Range for partial fetches
  /pdf-viewer     -> viewer page, or attachment download with dl=1
  /variants       -> JSON list of a master playlist's variants
  /player         -> hls.js page pointed at /proxy
  /downloader     -> quality listing page
  /health         -> liveness JSON
"""

import logging
import os
import time
from urllib.parse import unquote, urlparse

from flask import Flask, Response, jsonify, render_template_string, request, url_for
from werkzeug.exceptions import HTTPException

from . import __version__, config
from .errors import ClientInputError, RelayError, UpstreamFetchError
from .models import Mode, ProxyRequest
from .pages import DOWNLOADER_PAGE, PDF_VIEWER_PAGE, PLAYER_PAGE
from .playlist import (
    HLS_CONTENT_TYPE,
    ProxyUrlBuilder,
    is_master_playlist,
    parse_variants,
    playlist_base_url,
    rewrite_playlist,
    select_and_rewrite_best,
    sort_variants,
)
from .relay import cors_headers, relay_stream
from .upstream import MODE_STREAM, MODE_TEXT, fetch_upstream

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Flask application setup
# ---------------------------------------------------------------------------
app = Flask(__name__)

STARTED_AT = time.time()

PDF_ACCEPT = "application/pdf,application/octet-stream,*/*;q=0.8"


@app.after_request
def add_cors(response):
    for k, v in cors_headers().items():
        response.headers[k] = v
    return response


@app.errorhandler(RelayError)
def handle_relay_error(e):
    if isinstance(e, UpstreamFetchError):
        message = f"Upstream fetch error: {e}"
    else:
        message = str(e)
    if isinstance(e, ClientInputError):
        logger.info("Rejected %s: %s", request.path, message)
    else:
        logger.error("%s failed: %s", request.path, message)
    return Response(message, status=e.status_code, mimetype="text/plain")


@app.errorhandler(Exception)
def handle_unexpected(e):
    if isinstance(e, HTTPException):
        return e
    logger.exception("Unhandled error on %s", request.path)
    return Response("Internal relay error", status=500, mimetype="text/plain")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _builder():
    return ProxyUrlBuilder(route="/proxy", relay_host=request.host)


def _fetch_playlist(url, mode=MODE_TEXT):
    return fetch_upstream(url, mode=mode, extra_headers={"Origin": config.UPSTREAM_ORIGIN})


def _looks_like_playlist(upstream, url):
    ctype = (upstream.headers.get("Content-Type") or "").lower()
    if "mpegurl" in ctype or urlparse(url).path.lower().endswith(".m3u8"):
        return True
    if upstream.is_encoded:
        return False
    return upstream.peek().lstrip(b"\xef\xbb\xbf \t\r\n").startswith(b"#EXTM3U")


def _fetch_pdf(preq):
    accept = request.headers.get("Accept")
    if not accept or accept.strip() == "*/*":
        accept = PDF_ACCEPT
    return fetch_upstream(
        preq.target_url,
        mode=MODE_STREAM,
        extra_headers={"Range": preq.range_header, "Accept": accept},
        require_success=False,
    )


def pdf_filename(url):
    name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    # Header values must stay ASCII
    name = "".join(c for c in name if c.isascii() and c.isprintable() and c not in '"\\/')
    if name.lower().endswith(".pdf") and len(name) > 4:
        return name
    return f"document_{int(time.time())}.pdf"


# ---------------------------------------------------------------------------
# Playlist endpoint
# ---------------------------------------------------------------------------
@app.route("/proxy", methods=["GET", "HEAD"])
def proxy():
    """
    Fetch ``?url=`` and return it rewritten when it is an HLS playlist.

    With ``full=true`` a master playlist is replaced by its highest-bandwidth
    variant, already rewritten. Anything that is not a playlist is streamed
    back like /segment.
    """
    preq = ProxyRequest.from_args(Mode.PLAYLIST, request.args, request.headers)
    upstream = fetch_upstream(
        preq.target_url,
        mode=MODE_STREAM,
        extra_headers={"Origin": config.UPSTREAM_ORIGIN, "Range": preq.range_header},
        require_success=False,
    )

    if not _looks_like_playlist(upstream, preq.target_url):
        return relay_stream(upstream, "application/octet-stream")

    if not upstream.ok:
        upstream.close()
        raise UpstreamFetchError(f"HTTP {upstream.status_code}", status_code=upstream.status_code)

    if upstream.status_code == 206:
        # A byte range of a playlist cannot be rewritten, fetch it whole
        upstream.close()
        text = _fetch_playlist(preq.target_url).text
    else:
        text = upstream.read_text()
    builder = _builder()
    if preq.wants_full_resolution and is_master_playlist(text):
        body = select_and_rewrite_best(text, preq.target_url, builder, fetch=_fetch_playlist)
    else:
        body = rewrite_playlist(text, playlist_base_url(preq.target_url), builder)

    return Response(body, status=200, headers={
        "Content-Type": HLS_CONTENT_TYPE,
        "Cache-Control": "no-cache",
    })


@app.route("/variants")
def variants():
    preq = ProxyRequest.from_args(Mode.PLAYLIST, request.args, request.headers)
    text = _fetch_playlist(preq.target_url).text
    found = []
    if is_master_playlist(text):
        found = sort_variants(parse_variants(text, playlist_base_url(preq.target_url)))
    builder = _builder()
    return jsonify({
        "url": preq.target_url,
        "master": bool(found),
        "variants": [
            {
                "bandwidth": v.bandwidth,
                "resolution": v.resolution,
                "width": v.resolution_width,
                "height": v.resolution_height,
                "codecs": v.codecs,
                "frame_rate": v.frame_rate,
                "url": v.absolute_url,
                "proxy_url": builder(v.absolute_url),
            }
            for v in found
        ],
    })


# ---------------------------------------------------------------------------
# Segment endpoints
# ---------------------------------------------------------------------------
@app.route("/segment", methods=["GET", "HEAD"])
@app.route("/segment-proxy", methods=["GET", "HEAD"])
def segment():
    preq = ProxyRequest.from_args(Mode.SEGMENT, request.args, request.headers)
    upstream = fetch_upstream(
        preq.target_url,
        mode=MODE_STREAM,
        extra_headers={"Range": preq.range_header},
        require_success=False,
    )
    return relay_stream(upstream, "video/MP2T")


# ---------------------------------------------------------------------------
# PDF endpoints
# ---------------------------------------------------------------------------
@app.route("/pdf", methods=["GET", "HEAD"])
def pdf():
    preq = ProxyRequest.from_args(Mode.PDF, request.args, request.headers)
    upstream = _fetch_pdf(preq)
    return relay_stream(upstream, "application/pdf", {
        "Content-Disposition": f'inline; filename="{pdf_filename(preq.target_url)}"',
    })


@app.route("/pdf-viewer")
def pdf_viewer():
    preq = ProxyRequest.from_args(Mode.PDF, request.args, request.headers)
    filename = pdf_filename(preq.target_url)
    if preq.download:
        upstream = _fetch_pdf(preq)
        return relay_stream(upstream, "application/pdf", {
            "Content-Disposition": f'attachment; filename="{filename}"',
        })
    return render_template_string(
        PDF_VIEWER_PAGE,
        filename=filename,
        pdf_src=url_for("pdf", url=preq.target_url),
        download_src=url_for("pdf_viewer", url=preq.target_url, dl=1),
    )


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------
@app.route("/player")
def player():
    preq = ProxyRequest.from_args(Mode.PLAYLIST, request.args, request.headers)
    return render_template_string(PLAYER_PAGE, playlist_src=url_for("proxy", url=preq.target_url))


@app.route("/downloader")
def downloader():
    preq = ProxyRequest.from_args(Mode.PLAYLIST, request.args, request.headers)
    text = _fetch_playlist(preq.target_url).text
    found = []
    if is_master_playlist(text):
        found = sort_variants(parse_variants(text, playlist_base_url(preq.target_url)))
    return render_template_string(DOWNLOADER_PAGE, source_url=preq.target_url, variants=found)


@app.route("/health")
def health():
    return jsonify({
        "status": "healthy",
        "version": __version__,
        "uptime": round(time.time() - STARTED_AT, 3),
        "pid": os.getpid(),
    })
