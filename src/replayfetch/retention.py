"""
Retention sweep for downloaded demo artifacts.

Anything the fetcher leaves behind (parsed, abandoned, or orphaned by a
crashed worker) is removed once it is older than the configured age.
"""

import logging
import threading
import time
from pathlib import Path

logger = logging.getLogger(__name__)

ARTIFACT_PATTERNS = ("*.dem", "*.dem.bz2")


def find_artifacts(directory: Path) -> list[Path]:
    """All demo artifacts directly inside ``directory``."""
    found: list[Path] = []
    for pattern in ARTIFACT_PATTERNS:
        found.extend(p for p in directory.glob(pattern) if p.is_file())
    return sorted(found)


def sweep_older_than(directory: Path, max_age_seconds: float, now: float | None = None) -> list[Path]:
    """
    Delete artifacts whose modification time is strictly older than the cutoff.

    Args:
        directory: Directory holding the artifacts
        max_age_seconds: Age threshold in seconds
        now: Reference wall clock time (defaults to time.time())

    Returns:
        Paths that were deleted
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    cutoff = (time.time() if now is None else now) - max_age_seconds
    deleted: list[Path] = []

    for path in find_artifacts(directory):
        try:
            if path.stat().st_mtime >= cutoff:
                continue
            path.unlink()
        except OSError as e:
            logger.warning(f"Failed to clean up old demo file {path}: {e}")
            continue
        deleted.append(path)
        logger.info(f"Cleaned up old demo file {path}")

    if deleted:
        logger.info(f"Retention sweep removed {len(deleted)} file(s) from {directory}")
    return deleted


class RetentionSweeper:
    """Run sweep_older_than on a fixed interval until stopped."""

    def __init__(self, directory: Path, max_age_seconds: float, interval_seconds: float = 3600.0):
        self.directory = Path(directory)
        self.max_age_seconds = max_age_seconds
        self.interval_seconds = interval_seconds

    @classmethod
    def from_config(cls, config) -> "RetentionSweeper":
        return cls(
            config.download.resolved_temp_directory(),
            config.retention.max_age_hours * 3600,
            config.retention.sweep_interval_seconds,
        )

    def sweep(self) -> list[Path]:
        return sweep_older_than(self.directory, self.max_age_seconds)

    def run_forever(self, stop: threading.Event) -> None:
        """Sweep now and then every interval until ``stop`` is set."""
        logger.info(
            f"Retention sweeper started for {self.directory} "
            f"(max age {self.max_age_seconds:.0f}s, every {self.interval_seconds:.0f}s)"
        )
        while not stop.is_set():
            self.sweep()
            stop.wait(self.interval_seconds)
        logger.info("Retention sweeper stopped")
