"""
HLS playlist parsing, rewriting and variant selection.

Rewriting keeps every line in place: tags, comments and blank lines pass
through byte-identical (an EXTINF / STREAM-INF tag must stay directly above
its URI line), and each URI line is swapped for a same-origin relay URL
carrying the resolved absolute target.
"""

import logging
import re
from urllib.parse import parse_qs, quote, urljoin, urlparse, urlsplit, urlunsplit

from .models import LineKind, PlaylistLine, Segment, VariantStream
from .upstream import MODE_TEXT, fetch_upstream

logger = logging.getLogger(__name__)

HLS_CONTENT_TYPE = "application/vnd.apple.mpegurl"

STREAM_INF = "EXT-X-STREAM-INF"

# Quoted values may contain commas (CODECS="avc1.64001f,mp4a.40.2")
ATTR_RE = re.compile(r'([A-Za-z0-9-]+)=("[^"]*"|[^,]*)')
RESOLUTION_RE = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")

# Relay routes whose ``url`` parameter carries an absolute origin URL
RELAY_PATHS = ("/proxy", "/segment", "/segment-proxy")


class ProxyUrlBuilder:
    """
    Builds same-origin relay URLs for absolute origin URLs.

    Also recognises its own output so that an already-rewritten line is
    never wrapped a second time: relative relay paths, and absolute URLs on
    ``relay_host``, are "owned".
    """

    def __init__(self, route="/proxy", relay_origin=None, relay_host=None):
        self.route = route
        self.relay_origin = (relay_origin or "").rstrip("/")
        if relay_host is None and self.relay_origin:
            relay_host = urlparse(self.relay_origin).netloc
        self.relay_host = (relay_host or "").lower()

    def __call__(self, absolute_url: str) -> str:
        return f"{self.relay_origin}{self.route}?url={quote(absolute_url, safe='')}"

    def owns(self, url: str) -> bool:
        p = urlparse(url.strip())
        if p.path not in RELAY_PATHS or "url" not in parse_qs(p.query):
            return False
        if not p.scheme and not p.netloc:
            return True
        return bool(self.relay_host) and p.netloc.lower() == self.relay_host

    def unwrap(self, url: str) -> str:
        """Return the absolute origin URL encoded in a relay URL."""
        p = urlparse(url.strip())
        values = parse_qs(p.query).get("url")
        if p.path not in RELAY_PATHS or not values:
            raise ValueError(f"Not a relay URL: {url}")
        return values[0]


def playlist_base_url(url: str) -> str:
    """The requested playlist URL, without query, up to and including its last '/'."""
    p = urlsplit(url)
    path = p.path[: p.path.rfind("/") + 1] or "/"
    return urlunsplit((p.scheme, p.netloc, path, "", ""))


def resolve_uri(uri: str, base_url: str) -> str:
    uri = uri.strip()
    if uri.startswith("http"):
        return uri
    return urljoin(base_url, uri)


def parse_attributes(value: str) -> dict:
    """Parse an attribute list. Malformed pairs are skipped."""
    attrs = {}
    for m in ATTR_RE.finditer(value or ""):
        v = m.group(2).strip()
        if len(v) >= 2 and v[0] == v[-1] == '"':
            v = v[1:-1]
        attrs[m.group(1).upper()] = v
    return attrs


def parse_line(line: str) -> PlaylistLine:
    stripped = line.strip()
    if not stripped:
        return PlaylistLine(LineKind.BLANK, line)
    if stripped.startswith("#EXT"):
        name, _, rest = stripped[1:].partition(":")
        if name == "EXTINF":
            duration, _, title = rest.partition(",")
            attrs = {"DURATION": duration.strip(), "TITLE": title.strip()}
        elif "=" in rest:
            attrs = parse_attributes(rest)
        else:
            attrs = {"VALUE": rest} if rest else {}
        return PlaylistLine(LineKind.TAG, line, name=name, attributes=attrs)
    if stripped.startswith("#"):
        return PlaylistLine(LineKind.COMMENT, line)
    return PlaylistLine(LineKind.URI, line)


def parse_playlist(text: str):
    return [parse_line(line) for line in text.splitlines()]


def is_master_playlist(text: str) -> bool:
    return f"#{STREAM_INF}" in text


def rewrite_playlist(raw_text: str, base_url: str, proxy_url_builder) -> str:
    """
    Replace every URI line with ``proxy_url_builder(absolute_url)``.

    Relative URIs resolve against ``base_url``; absolute ones are wrapped as
    well. Lines the builder already owns are left alone.
    """
    owns = getattr(proxy_url_builder, "owns", None)
    lines = []
    for line in parse_playlist(raw_text):
        if line.kind is not LineKind.URI:
            lines.append(line.text)
            continue
        uri = line.text.strip()
        if owns is not None and owns(uri):
            lines.append(uri)
            continue
        lines.append(proxy_url_builder(resolve_uri(uri, base_url)))
    if raw_text.endswith(("\n", "\r")):
        lines.append("")
    return "\n".join(lines)


def parse_resolution(s: str):
    m = RESOLUTION_RE.match(s or "")
    if not m:
        return 0, 0
    return int(m.group(1)), int(m.group(2))


def _int(value, default=0):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float(value, default=None):
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_variants(text: str, base_url: str):
    """Variants of a master playlist, in playlist order."""
    variants, pending = [], None
    for line in parse_playlist(text):
        if line.kind is LineKind.TAG and line.name == STREAM_INF:
            pending = line.attributes
        elif line.kind is LineKind.URI and pending is not None:
            width, height = parse_resolution(pending.get("RESOLUTION"))
            variants.append(VariantStream(
                bandwidth=_int(pending.get("BANDWIDTH")),
                resolution_width=width,
                resolution_height=height,
                codecs=pending.get("CODECS") or None,
                frame_rate=_float(pending.get("FRAME-RATE")),
                absolute_url=resolve_uri(line.text, base_url),
            ))
            pending = None
    return variants


def sort_variants(variants):
    """Display order: tallest first, then highest bandwidth."""
    return sorted(variants, key=lambda v: (-v.resolution_height, -v.bandwidth))


def select_best_variant(variants):
    """The variant with the strictly highest bandwidth; first seen wins ties."""
    best = None
    for v in variants:
        if best is None or v.bandwidth > best.bandwidth:
            best = v
    return best


def parse_segments(text: str, base_url: str):
    """
    Segments of a media playlist.

    An EXTINF duration and a pending EXT-X-KEY tag attach to the next URI
    line, then both reset.
    """
    segments = []
    duration, key = None, None
    for line in parse_playlist(text):
        if line.kind is LineKind.TAG:
            if line.name == "EXTINF":
                duration = _float(line.attributes.get("DURATION"))
            elif line.name == "EXT-X-KEY":
                key = line.text.strip()
        elif line.kind is LineKind.URI:
            segments.append(Segment(
                index=len(segments),
                absolute_url=resolve_uri(line.text, base_url),
                duration_seconds=duration,
                encryption_key_tag=key,
            ))
            duration, key = None, None
    return segments


def select_and_rewrite_best(master_text: str, master_url: str, proxy_url_builder,
                            fetch=fetch_upstream, max_depth: int = 3) -> str:
    """
    Rewrite the highest-bandwidth variant of a master playlist.

    Falls back to rewriting ``master_text`` itself when it has no
    STREAM-INF entries. A selected variant that is itself a master is
    resolved again, up to ``max_depth`` levels.
    """
    text, url = master_text, master_url
    for _ in range(max_depth):
        if not is_master_playlist(text):
            break
        best = select_best_variant(parse_variants(text, playlist_base_url(url)))
        if best is None:
            break
        logger.info("Selected variant %s (%s bps, %s)", best.absolute_url, best.bandwidth, best.resolution)
        text = fetch(best.absolute_url, mode=MODE_TEXT).text
        url = best.absolute_url
    return rewrite_playlist(text, playlist_base_url(url), proxy_url_builder)
