"""
Streaming relay of upstream responses.

Status code and headers are forwarded as the origin sent them; the body is
pulled from upstream one chunk at a time as the WSGI server writes to the
client, so memory stays flat regardless of segment size.
"""

import logging

import requests
from flask import Response, stream_with_context
from urllib3.exceptions import HTTPError as Urllib3HTTPError
from werkzeug.wsgi import ClosingIterator

from . import config

logger = logging.getLogger(__name__)

# Framing headers the WSGI server manages itself
HOP_BY_HOP = frozenset([
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
])

EXPOSED_HEADERS = "Content-Length, Content-Range, Accept-Ranges, Content-Type, ETag, Last-Modified"


def cors_headers(extra=None):
    """
    Return a dictionary of CORS headers, optionally merged with extra headers.
    """
    headers = {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Headers": "*",
        "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
        "Access-Control-Expose-Headers": EXPOSED_HEADERS,
    }
    if extra:
        headers.update(extra)
    return headers


def forwarded_headers(upstream_headers, default_content_type=None):
    headers = [(k, v) for k, v in upstream_headers.items() if k.lower() not in HOP_BY_HOP]
    if default_content_type and not any(k.lower() == "content-type" for k, _ in headers):
        headers.append(("Content-Type", default_content_type))
    return headers


def iter_upstream(upstream):
    """
    Yield the upstream body, ending quietly if the origin drops mid-stream.

    Headers are already on the wire by then, so the client just sees a
    truncated body.
    """
    sent = 0
    try:
        for chunk in upstream.iter_bytes(config.CHUNK_SIZE):
            if not chunk:
                continue
            sent += len(chunk)
            yield chunk
    except (requests.RequestException, Urllib3HTTPError, OSError) as e:
        logger.warning("Upstream stream for %s ended after %d bytes: %s", upstream.url, sent, e)
    finally:
        upstream.close()


def relay_stream(upstream, default_content_type="application/octet-stream", extra_headers=None):
    """Build a streamed response relaying ``upstream`` verbatim."""
    headers = forwarded_headers(upstream.headers, default_content_type)
    if extra_headers:
        overridden = {k.lower() for k in extra_headers}
        headers = [(k, v) for k, v in headers if k.lower() not in overridden]
        headers.extend(extra_headers.items())
    # HEAD requests and early disconnects never run the generator's finally
    body = ClosingIterator(stream_with_context(iter_upstream(upstream)), upstream.close)
    return Response(
        body,
        status=upstream.status_code,
        headers=headers,
        direct_passthrough=True,
    )
