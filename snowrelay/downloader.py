"""
Segmented downloader.

Pulls every segment of a media playlist through the relay with a fixed
pool of worker threads, retries failed segments with linear backoff, and
joins the payloads in playlist order.
"""

import enum
import logging
import queue
import threading
import time
import concurrent.futures
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from . import config
from .errors import DownloadCancelledError, DownloadFailedError, SegmentDownloadError
from .models import Segment
from .playlist import ProxyUrlBuilder, parse_segments

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (SegmentDownloadError, requests.RequestException, OSError)


class SegmentState(enum.Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED_RETRYING = "failed-retrying"
    FAILED_PERMANENTLY = "failed-permanently"


TERMINAL_STATES = (SegmentState.COMPLETED, SegmentState.FAILED_PERMANENTLY)


@dataclass
class DownloadProgress:
    completed: int
    failed: int
    total_segments: int
    total_bytes: int
    elapsed: float
    speed: float            # bytes per second
    eta: Optional[float]    # seconds, None until a segment has completed


@dataclass
class DownloadResult:
    data: bytes
    completed: List[int]
    failed: List[int]
    total_bytes: int
    states: Dict[int, SegmentState] = field(default_factory=dict)


class RelayFetcher:
    """
    Fetches a segment's origin URL through the relay's /segment route.

    Without an explicit ``session`` every worker thread gets its own
    requests.Session. A session passed in is shared by all workers as-is.
    """

    def __init__(self, relay_base: str, session: requests.Session = None, timeout=None):
        self.relay_base = relay_base.rstrip("/")
        self._shared_session = session
        self._local = threading.local()
        self.timeout = timeout or (config.CONNECT_TIMEOUT, config.READ_TIMEOUT)

    @property
    def session(self) -> requests.Session:
        if self._shared_session is not None:
            return self._shared_session
        if getattr(self._local, "session", None) is None:
            self._local.session = requests.Session()
        return self._local.session

    def segment_url(self, segment: Segment) -> str:
        return f"{self.relay_base}/segment?url={quote(segment.absolute_url, safe='')}"

    def __call__(self, segment: Segment) -> bytes:
        r = self.session.get(self.segment_url(segment), timeout=self.timeout)
        if r.status_code >= 300:
            raise SegmentDownloadError(f"HTTP {r.status_code}")
        data = r.content
        expected = r.headers.get("Content-Length")
        if expected and expected.isdigit() and len(data) < int(expected):
            # Relay ended the body early
            raise SegmentDownloadError(f"Truncated segment: expected {expected} bytes, got {len(data)}")
        return data


class SegmentDownloader:
    """
    Bounded-concurrency segment download session.

    At most ``concurrency`` fetches are in flight. Each segment gets
    ``retries`` attempts, sleeping ``attempt * backoff`` seconds between
    them. Segments that exhaust their attempts do not stop their siblings;
    once everything settles the session raises DownloadFailedError unless
    ``allow_partial`` is set, in which case failed segments are left out.
    """

    def __init__(self, fetch: Callable[[Segment], bytes],
                 concurrency: int = config.DOWNLOAD_CONCURRENCY,
                 retries: int = config.DOWNLOAD_RETRIES,
                 backoff: float = config.DOWNLOAD_BACKOFF,
                 allow_partial: bool = False,
                 on_progress: Optional[Callable[[DownloadProgress], None]] = None,
                 cancel_event: Optional[threading.Event] = None,
                 sleep: Optional[Callable[[float], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self.fetch = fetch
        self.concurrency = concurrency
        self.retries = retries
        self.backoff = backoff
        self.allow_partial = allow_partial
        self.on_progress = on_progress
        self.cancel_event = cancel_event or threading.Event()
        # Waiting on the cancel event lets cancel() cut a backoff short
        self.sleep = sleep or self.cancel_event.wait
        self.clock = clock

        self._lock = threading.Lock()
        self.states: Dict[int, SegmentState] = {}
        self.downloaded: List[Segment] = []
        self.failed: List[int] = []
        self.total_bytes = 0
        self.started_at = None
        self._payloads: Dict[int, bytes] = {}
        self._total_segments = 0

    def cancel(self):
        self.cancel_event.set()

    def download_all(self, segments) -> DownloadResult:
        segments = sorted(segments, key=lambda s: s.index)
        self.states = {s.index: SegmentState.PENDING for s in segments}
        self.downloaded, self.failed, self._payloads = [], [], {}
        self.total_bytes = 0
        self._total_segments = len(segments)
        self.started_at = self.clock()

        pending = queue.Queue()
        for seg in segments:
            pending.put(seg)

        workers = min(self.concurrency, len(segments))
        if workers:
            logger.info("Downloading %d segments with %d workers", len(segments), workers)
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers,
                                                       thread_name_prefix="segment") as executor:
                futures = [executor.submit(self._worker, pending) for _ in range(workers)]
                for future in futures:
                    future.result()

        if any(state not in TERMINAL_STATES for state in self.states.values()):
            raise DownloadCancelledError("Download cancelled")

        completed = sorted(self._payloads)
        result = DownloadResult(
            data=b"".join(self._payloads[i] for i in completed),
            completed=completed,
            failed=sorted(self.failed),
            total_bytes=self.total_bytes,
            states=dict(self.states),
        )
        if result.failed and not self.allow_partial:
            raise DownloadFailedError(result.failed, result)
        logger.info("Download finished: %d segments, %d bytes, %d failed",
                    len(completed), self.total_bytes, len(result.failed))
        return result

    def _worker(self, pending):
        while not self.cancel_event.is_set():
            try:
                seg = pending.get_nowait()
            except queue.Empty:
                return
            self._download_segment(seg)

    def _download_segment(self, seg: Segment):
        for attempt in range(1, self.retries + 1):
            if self.cancel_event.is_set():
                return
            self._set_state(seg.index, SegmentState.DOWNLOADING)
            try:
                data = self.fetch(seg)
            except RETRYABLE_ERRORS as e:
                logger.warning("Segment %d download failed (attempt %d/%d): %s",
                               seg.index + 1, attempt, self.retries, e)
                if attempt == self.retries:
                    with self._lock:
                        self.states[seg.index] = SegmentState.FAILED_PERMANENTLY
                        self.failed.append(seg.index)
                    self._report()
                    return
                self._set_state(seg.index, SegmentState.FAILED_RETRYING)
                self.sleep(attempt * self.backoff)
                continue

            with self._lock:
                self._payloads[seg.index] = data
                self.downloaded.append(seg)
                self.total_bytes += len(data)
                self.states[seg.index] = SegmentState.COMPLETED
            self._report()
            return

    def _set_state(self, index, state):
        with self._lock:
            self.states[index] = state

    def progress(self) -> DownloadProgress:
        with self._lock:
            completed = len(self.downloaded)
            failed = len(self.failed)
            total_bytes = self.total_bytes
        if self.started_at is None:
            return DownloadProgress(0, 0, 0, 0, 0.0, 0.0, None)
        elapsed = self.clock() - self.started_at
        speed = total_bytes / elapsed if elapsed > 0 else 0.0
        eta = None
        if completed and speed:
            remaining = self._total_segments - completed - failed
            eta = remaining * (total_bytes / completed) / speed
        return DownloadProgress(
            completed=completed,
            failed=failed,
            total_segments=self._total_segments,
            total_bytes=total_bytes,
            elapsed=elapsed,
            speed=speed,
            eta=eta,
        )

    def _report(self):
        if self.on_progress:
            self.on_progress(self.progress())


def download_playlist(playlist_url: str, relay_base: str = None,
                      session: requests.Session = None, **kwargs) -> DownloadResult:
    """
    Download every segment of ``playlist_url`` through a running relay.

    The playlist is requested with ``full=true`` so a master playlist
    resolves to its best variant. Keyword arguments go to SegmentDownloader.
    """
    relay_base = (relay_base or f"http://localhost:{config.PORT}").rstrip("/")

    r = (session or requests.Session()).get(
        f"{relay_base}/proxy", params={"url": playlist_url, "full": "true"},
        timeout=(config.CONNECT_TIMEOUT, config.READ_TIMEOUT))
    r.raise_for_status()

    builder = ProxyUrlBuilder(relay_origin=relay_base)
    segments = parse_segments(r.text, relay_base + "/")
    try:
        for seg in segments:
            seg.absolute_url = builder.unwrap(seg.absolute_url)
    except ValueError as e:
        raise SegmentDownloadError("Not an HLS playlist") from e
    if not segments:
        raise SegmentDownloadError("No segments found in playlist")

    downloader = SegmentDownloader(RelayFetcher(relay_base, session), **kwargs)
    return downloader.download_all(segments)
