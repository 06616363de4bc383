"""Request and playlist data types."""

import enum
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urljoin, urlparse

from . import config
from .errors import ClientInputError


class Mode(enum.Enum):
    PLAYLIST = "playlist"
    SEGMENT = "segment"
    PDF = "pdf"


def validate_url(u: str):
    p = urlparse(u)
    if p.scheme not in ("http", "https"):
        return False, "Unsupported URL scheme"
    if not p.netloc:
        return False, "URL must be absolute"
    if config.ALLOWED_HOSTS and p.hostname:
        host = p.hostname.lower()
        allowed = False
        for h in config.ALLOWED_HOSTS:
            if h.startswith("*.") and host.endswith(h[1:]):
                allowed = True
                break
            if host == h:
                allowed = True
                break
        if not allowed:
            return False, f"Host {p.hostname} not allowed"
    return True, None


def _flag(value) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


@dataclass
class ProxyRequest:
    """A validated relay request. Built once at the route entry point."""

    target_url: str
    mode: Mode
    range_header: Optional[str] = None
    wants_full_resolution: bool = False
    download: bool = False

    @classmethod
    def from_args(cls, mode: Mode, args, headers=None) -> "ProxyRequest":
        """
        Build a request from query arguments.

        Segment requests also accept ``base`` + ``file``, with ``file``
        resolved against ``base``.
        """
        url = (args.get("url") or "").strip()
        if not url and mode is Mode.SEGMENT and args.get("base") and args.get("file"):
            url = urljoin(args.get("base").strip(), args.get("file").strip())
        if not url:
            raise ClientInputError("Missing url parameter")

        ok, err = validate_url(url)
        if not ok:
            raise ClientInputError(f"Invalid URL: {err}")

        return cls(
            target_url=url,
            mode=mode,
            range_header=(headers or {}).get("Range"),
            wants_full_resolution=_flag(args.get("full")),
            download=_flag(args.get("dl")),
        )


class LineKind(enum.Enum):
    TAG = "tag"
    COMMENT = "comment"
    BLANK = "blank"
    URI = "uri"


@dataclass
class PlaylistLine:
    kind: LineKind
    text: str
    name: Optional[str] = None
    attributes: Optional[Dict[str, str]] = None


@dataclass
class VariantStream:
    bandwidth: int
    resolution_width: int
    resolution_height: int
    codecs: Optional[str]
    frame_rate: Optional[float]
    absolute_url: str

    @property
    def resolution(self) -> str:
        if not self.resolution_width or not self.resolution_height:
            return "unknown"
        return f"{self.resolution_width}x{self.resolution_height}"


@dataclass
class Segment:
    index: int
    absolute_url: str
    duration_seconds: Optional[float] = None
    encryption_key_tag: Optional[str] = None
