"""
Configuration (environment-driven, with defaults).

Values are read once at import time.
"""

import os
from urllib.parse import urlparse

PORT = int(os.environ.get("PORT", 3000))

CHUNK_SIZE = int(os.environ.get("CHUNK_SIZE", 131072))  # 128 KB per chunk
MAX_PLAYLIST_BYTES = int(os.environ.get("MAX_PLAYLIST_BYTES", 10 * 1024 * 1024))  # 10 MB max playlist
CONNECT_TIMEOUT = float(os.environ.get("CONNECT_TIMEOUT", 10.0))  # seconds
READ_TIMEOUT = float(os.environ.get("READ_TIMEOUT", 60.0))        # seconds
MAX_REDIRECTS = int(os.environ.get("MAX_REDIRECTS", 5))

# Upstream origins check the Referer, so it is pinned to the site we front
UPSTREAM_REFERER = os.environ.get("UPSTREAM_REFERER", "https://appx-play.akamai.net.in/")
_ref = urlparse(UPSTREAM_REFERER)
UPSTREAM_ORIGIN = os.environ.get("UPSTREAM_ORIGIN", f"{_ref.scheme}://{_ref.netloc}")

# Optional allowlist of hostnames (comma-separated via ALLOWED_HOSTS env var)
ALLOWED_HOSTS = set(
    h.strip().lower()
    for h in os.environ.get("ALLOWED_HOSTS", "").split(",")
    if h.strip()
)

# Segment downloader defaults
DOWNLOAD_CONCURRENCY = int(os.environ.get("DOWNLOAD_CONCURRENCY", 5))
DOWNLOAD_RETRIES = int(os.environ.get("DOWNLOAD_RETRIES", 3))
DOWNLOAD_BACKOFF = float(os.environ.get("DOWNLOAD_BACKOFF", 2.0))  # seconds, multiplied by attempt

LOG_LEVEL = os.environ.get("LOG_LEVEL", "info")
