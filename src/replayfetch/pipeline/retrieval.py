"""
Demo Retrieval Job - walk players' share code chains and fetch new demos.

For every player who shared a game authentication code, the job asks Steam
for each share code after the last one we know, downloads the demo and hands
it to the ingestion callback while holding a parser slot. The known share code
advances whether or not the demo could be fetched, so a demo that never
becomes available does not block the rest of the history.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from replayfetch.errors import RateLimitWaitCancelled
from replayfetch.fetcher import DemoFetcher, DownloadArtifact
from replayfetch.infra.ratelimit import PARSER_SERVICE, RateLimiter, RateLimitPolicy
from replayfetch.integrations.steam import IdentityClient
from replayfetch.retention import RetentionSweeper
from replayfetch.sharecode import ShareCodeInfo, decode_sharecode

logger = logging.getLogger(__name__)

# (artifact, decoded share code, demo url) -> None
Ingestor = Callable[[DownloadArtifact, ShareCodeInfo, str], None]


@dataclass
class PlayerChain:
    """A player's position in their share code history."""

    steam_id: str
    auth_code: str
    known_sharecode: str


@dataclass
class RetrievalSummary:
    """What one pass over a player's history did."""

    steam_id: str
    last_sharecode: str
    processed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    # Set when the walk stopped on an unexpected error
    error: str | None = None


class DemoRetrievalJob:
    """Fetch demos for new matches in each player's share code chain."""

    def __init__(
        self,
        identity: IdentityClient,
        fetcher: DemoFetcher,
        rate_limiter: RateLimiter,
        ingest: Ingestor,
        is_known: Callable[[str], bool] | None = None,
        max_sharecodes_per_run: int = 50,
        parser_policy: RateLimitPolicy | None = None,
        sweeper: RetentionSweeper | None = None,
        cancel: threading.Event | None = None,
    ):
        self.identity = identity
        self.fetcher = fetcher
        self.rate_limiter = rate_limiter
        self.ingest = ingest
        self.is_known = is_known or (lambda sharecode: False)
        self.max_sharecodes_per_run = max_sharecodes_per_run
        self.parser_policy = parser_policy or RateLimitPolicy(PARSER_SERVICE, 3)
        self.sweeper = sweeper
        self.cancel = cancel

    def run(self, players: Iterable[PlayerChain]) -> list[RetrievalSummary]:
        """
        Process every player. Skips the whole run if Steam is down.

        An unexpected error ends only that player's walk; its summary keeps
        the codes handled so far and the error.
        """
        logger.info("Starting demo retrieval run")

        if not self.identity.check_health():
            logger.warning("Steam API is not healthy, skipping demo retrieval run")
            return []

        if self.sweeper is not None:
            self.sweeper.sweep()

        summaries = []
        for player in players:
            if self.cancel is not None and self.cancel.is_set():
                logger.info("Demo retrieval run cancelled")
                break
            summary = RetrievalSummary(steam_id=player.steam_id, last_sharecode=player.known_sharecode)
            try:
                self._walk_chain(player, summary)
            except Exception as e:
                logger.exception(
                    f"Demo retrieval failed for {player.steam_id} after {summary.last_sharecode}: {e}"
                )
                summary.error = f"{type(e).__name__}: {e}"
            summaries.append(summary)

        logger.info(f"Demo retrieval run completed for {len(summaries)} player(s)")
        return summaries

    def process_player(self, player: PlayerChain) -> RetrievalSummary:
        summary = RetrievalSummary(steam_id=player.steam_id, last_sharecode=player.known_sharecode)
        self._walk_chain(player, summary)
        return summary

    def _walk_chain(self, player: PlayerChain, summary: RetrievalSummary) -> None:
        current = player.known_sharecode

        while len(summary.processed) < self.max_sharecodes_per_run:
            next_code = self.identity.get_next_sharecode(
                player.steam_id, player.auth_code, current, cancel=self.cancel
            )
            if not next_code or next_code == current:
                logger.info(
                    f"Reached end of share code history for {player.steam_id} "
                    f"({len(summary.processed)} processed)"
                )
                break

            current = next_code
            summary.last_sharecode = next_code

            if self.is_known(next_code):
                logger.info(f"Share code {next_code} already known, continuing")
                summary.skipped.append(next_code)
                continue

            result = self.fetcher.fetch_detailed(next_code, allow_probe=True, cancel=self.cancel)
            if not result.ok:
                logger.error(
                    f"Failed to fetch demo {next_code} for {player.steam_id}: {result.reason}"
                )
                summary.failed.append(next_code)
                continue

            if self._hand_off(result.artifact, next_code, result.demo_url):
                summary.processed.append(next_code)
            else:
                summary.failed.append(next_code)

    def _hand_off(self, artifact: DownloadArtifact, sharecode: str, demo_url: str) -> bool:
        """Give the artifact to the ingestion callback inside a parser slot."""
        policy = self.parser_policy
        try:
            self.rate_limiter.wait_for_capacity(policy.service, policy.max_requests, self.cancel)
        except RateLimitWaitCancelled as e:
            logger.warning(f"Not ingesting {sharecode}: {e}")
            return False

        info = decode_sharecode(sharecode)
        with self.rate_limiter.parser_slot(policy.service):
            try:
                self.ingest(artifact, info, demo_url)
            except Exception as e:
                logger.error(f"Ingestion failed for {sharecode} ({artifact.path}): {e}")
                return False

        logger.info(f"Queued {sharecode} for parsing ({artifact.size_bytes} bytes)")
        return True
