"""Exceptions raised by the relay and the segment downloader."""


class RelayError(Exception):
    """Base class for relay errors that map onto an HTTP status."""

    status_code = 500


class ClientInputError(RelayError):
    """Missing or invalid request parameters. Raised before any upstream call."""

    status_code = 400


class UpstreamFetchError(RelayError):
    """Network failure, timeout or unexpected status from the origin."""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.upstream_status = status_code

    def __str__(self):
        if self.upstream_status is not None:
            return f"{self.message} (upstream status {self.upstream_status})"
        return self.message


class PlaylistTooLargeError(RelayError):
    status_code = 413


class SegmentDownloadError(Exception):
    """A single segment fetch failed. Eligible for retry."""


class DownloadFailedError(Exception):
    """One or more segments failed permanently."""

    def __init__(self, failed, result=None):
        self.failed = sorted(failed)
        self.result = result
        shown = ", ".join(str(i) for i in self.failed[:10])
        more = "..." if len(self.failed) > 10 else ""
        super().__init__(f"{len(self.failed)} segment(s) failed permanently: {shown}{more}")


class DownloadCancelledError(Exception):
    """The download session was cancelled before every segment settled."""
