"""
Exception types for replayfetch.

Codec errors subclass ValueError so callers that already guard share code
parsing with ``except ValueError`` keep working. Everything else stays inside
the fetch pipeline and is collapsed to a ``None`` result at the DemoFetcher
boundary.
"""


class ReplayFetchError(Exception):
    """Base class for all replayfetch errors."""


class InvalidFormat(ReplayFetchError, ValueError):
    """Share code does not have the CSGO-XXXXX-... shape or 25 significant characters."""


class InvalidCharacter(InvalidFormat):
    """Share code contains a glyph outside the 57-character alphabet."""

    def __init__(self, char: str, code: str = ""):
        self.char = char
        self.code = code
        super().__init__(f"Invalid character in share code: {char!r}")


class ShareCodeOutOfRange(InvalidFormat):
    """Decoded integer does not fit in 144 bits (strict decoding only)."""


class ShardNotFound(ReplayFetchError):
    """No replay CDN shard answered 200 for the demo URL."""


class NotReady(ReplayFetchError):
    """The demo URL service has no URL for this match yet."""


class RateLimitWaitCancelled(ReplayFetchError):
    """wait_for_limit was cancelled before capacity became available."""


class TransportFailure(ReplayFetchError):
    """Network error or timeout talking to a remote service."""


class SizeExceeded(ReplayFetchError):
    """Demo is larger than the configured ceiling."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Demo size {size} exceeds limit of {limit} bytes")


class IncompleteOrEmpty(ReplayFetchError):
    """Download finished but the artifact is missing or empty."""


class DownloadCancelled(ReplayFetchError):
    """Caller deadline passed or cancellation was requested mid-transfer."""
