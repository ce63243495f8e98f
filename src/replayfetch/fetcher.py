"""
Demo Fetcher - share code in, verified demo file out.

Each fetch walks the same phases:

    validate -> awaiting_url -> downloading -> verifying -> done | failed

The download streams straight to ``{temp_directory}/{sharecode}.dem[.bz2]``
and is aborted as soon as the declared or observed size passes the ceiling.
Every failure removes the partial file before returning, so a caller never
sees an artifact that was not fully verified.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

import requests

from replayfetch.errors import (
    DownloadCancelled,
    IncompleteOrEmpty,
    InvalidFormat,
    NotReady,
    ReplayFetchError,
    SizeExceeded,
    TransportFailure,
)
from replayfetch.integrations.demo_url import URLResolver
from replayfetch.sharecode import decode_sharecode, is_sharecode_format

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 1024 * 1024 * 1024  # 1GiB
DOWNLOAD_TIMEOUT = 300.0
CHUNK_SIZE = 1024 * 1024

COMPRESSED_SUFFIX = ".dem.bz2"
PLAIN_SUFFIX = ".dem"


class FetchPhase(Enum):
    VALIDATE = "validate"
    AWAITING_URL = "awaiting_url"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class DownloadArtifact:
    """A verified demo file waiting to be parsed."""

    path: Path
    size_bytes: int
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class FetchResult:
    """Outcome of one fetch; ``failed_phase`` says where a failure happened."""

    sharecode: str
    phase: FetchPhase
    artifact: DownloadArtifact | None = None
    demo_url: str | None = None
    failed_phase: FetchPhase | None = None
    bytes_written: int = 0
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.phase is FetchPhase.DONE

    @property
    def path(self) -> Path | None:
        return self.artifact.path if self.artifact else None

    @property
    def reason(self) -> str:
        if self.error is None:
            return ""
        return f"{type(self.error).__name__}: {self.error}"


@dataclass
class _Progress:
    bytes_written: int = 0
    declared_size: int | None = None


def artifact_path(directory: Path, sharecode: str, demo_url: str) -> Path:
    """Deterministic artifact location for a share code and its demo URL."""
    url_path = urlparse(demo_url).path
    suffix = COMPRESSED_SUFFIX if url_path.endswith(".bz2") else PLAIN_SUFFIX
    return Path(directory) / f"{sharecode}{suffix}"


def cleanup_artifact(path: Path) -> bool:
    """
    Delete an artifact if present. Never raises.

    Returns:
        True if nothing is left at ``path``
    """
    path = Path(path)
    if not path.exists():
        return True
    try:
        path.unlink()
    except OSError as e:
        logger.warning(f"Failed to clean up demo file {path}: {e}")
        return False
    logger.info(f"Cleaned up demo file {path}")
    return True


class DemoFetcher:
    """
    Download demos for share codes.

    Example:
        >>> fetcher = DemoFetcher(resolver, Path("/tmp/demos"))
        >>> path = fetcher.fetch("CSGO-GADqf-jjyJ8-cSP2r-smZRo-TO2xK")
        >>> if path is None:
        ...     print("not available yet, try again later")
    """

    def __init__(
        self,
        resolver: URLResolver,
        temp_directory: Path,
        max_file_size: int = MAX_FILE_SIZE,
        timeout: float = DOWNLOAD_TIMEOUT,
        chunk_size: int = CHUNK_SIZE,
        session: requests.Session | None = None,
        clock=time.monotonic,
    ):
        self.resolver = resolver
        self.temp_directory = Path(temp_directory)
        self.max_file_size = max_file_size
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._session = session
        self._clock = clock

    @classmethod
    def from_config(cls, config, resolver: URLResolver, session=None) -> DemoFetcher:
        download = config.download
        return cls(
            resolver,
            download.resolved_temp_directory(),
            max_file_size=download.max_file_size_bytes,
            timeout=download.timeout_seconds,
            chunk_size=download.chunk_size_bytes,
            session=session,
        )

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _validate(self, sharecode: str) -> None:
        if not is_sharecode_format(sharecode):
            raise InvalidFormat(f"Not a share code: {sharecode!r}")
        decode_sharecode(sharecode)

    def _check_abort(self, deadline: float | None, cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise DownloadCancelled("Download cancelled")
        if deadline is not None and self._clock() >= deadline:
            raise DownloadCancelled("Download deadline exceeded")

    def _check_size(self, size: int) -> None:
        if size > self.max_file_size:
            raise SizeExceeded(size, self.max_file_size)

    def _download(
        self,
        url: str,
        path: Path,
        progress: _Progress,
        deadline: float | None,
        cancel: threading.Event | None,
    ) -> None:
        """Stream ``url`` into ``path``, enforcing the size ceiling per chunk."""
        overall = self._clock() + self.timeout
        deadline = overall if deadline is None else min(deadline, overall)

        try:
            response = self._get_session().get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportFailure(f"Demo request failed: {e}") from e

        # Closing the response drops the connection on abort
        with response:
            if not response.ok:
                raise TransportFailure(f"Demo download returned HTTP {response.status_code}")

            content_length = response.headers.get("Content-Length")
            if content_length and content_length.isdigit():
                progress.declared_size = int(content_length)
                self._check_size(progress.declared_size)

            try:
                with open(path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        self._check_abort(deadline, cancel)
                        self._check_size(progress.bytes_written + len(chunk))
                        f.write(chunk)
                        progress.bytes_written += len(chunk)
            except requests.RequestException as e:
                raise TransportFailure(f"Demo stream interrupted: {e}") from e

    def _verify(self, path: Path) -> int:
        if not path.exists():
            raise IncompleteOrEmpty(f"Demo file missing: {path}")
        size = path.stat().st_size
        if size == 0:
            raise IncompleteOrEmpty(f"Demo file is empty: {path}")
        self._check_size(size)
        return size

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch_detailed(
        self,
        sharecode: str,
        allow_probe: bool = False,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> FetchResult:
        """
        Fetch a demo and report how far it got.

        Args:
            sharecode: Share code in format CSGO-xxxxx-xxxxx-xxxxx-xxxxx-xxxxx
            allow_probe: Let the resolver brute-force the replay shard
            deadline: Absolute ``time.monotonic()`` value after which the
                transfer is abandoned
            cancel: Event that aborts the rate limit wait or the transfer

        Returns:
            FetchResult; ``result.path`` is set only on success
        """
        result = FetchResult(sharecode=sharecode, phase=FetchPhase.VALIDATE)

        try:
            self._validate(sharecode)
        except ValueError as e:
            logger.error(f"Invalid share code format: {sharecode!r} ({e})")
            return self._failed(result, e)

        result.phase = FetchPhase.AWAITING_URL
        resolution = self.resolver.resolve_detailed(sharecode, allow_probe=allow_probe, cancel=cancel)
        if not resolution.ok:
            logger.info(f"Demo not available yet for {sharecode} ({resolution.status.value})")
            return self._failed(result, NotReady(resolution.status.value))
        result.demo_url = resolution.url

        path = artifact_path(self.temp_directory, sharecode, resolution.url)
        progress = _Progress()
        result.phase = FetchPhase.DOWNLOADING
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._download(resolution.url, path, progress, deadline, cancel)
            result.phase = FetchPhase.VERIFYING
            size = self._verify(path)
        except (ReplayFetchError, OSError) as e:
            result.bytes_written = progress.bytes_written
            logger.error(
                f"Demo fetch failed for {sharecode} during {result.phase.value}: {e} "
                f"(written={progress.bytes_written}, declared={progress.declared_size}, "
                f"limit={self.max_file_size})"
            )
            cleanup_artifact(path)
            return self._failed(result, e)

        result.bytes_written = size
        result.artifact = DownloadArtifact(path=path, size_bytes=size)
        result.phase = FetchPhase.DONE
        logger.info(f"Demo download completed for {sharecode}: {size} bytes at {path}")
        return result

    def _failed(self, result: FetchResult, error: Exception) -> FetchResult:
        result.failed_phase = result.phase
        result.phase = FetchPhase.FAILED
        result.error = error
        return result

    def fetch(
        self,
        sharecode: str,
        allow_probe: bool = False,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Path | None:
        """Return the local demo path, or None if the demo is unavailable."""
        return self.fetch_detailed(
            sharecode, allow_probe=allow_probe, deadline=deadline, cancel=cancel
        ).path
