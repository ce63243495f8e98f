"""
Replay CDN shard discovery.

Valve spreads demos over numbered replay hosts (replay1.valve.net,
replay2.valve.net, ...). The shard is not encoded in the share code, so the
only way to find it is to HEAD the candidate URL on each host in turn.
"""

import logging
from collections.abc import Iterable

import requests

from replayfetch.errors import ShardNotFound
from replayfetch.sharecode import ShareCodeInfo, build_demo_url

logger = logging.getLogger(__name__)

DEFAULT_SHARDS = tuple(range(1, 21))
PROBE_TIMEOUT = 3.0
USER_AGENT = "Mozilla/5.0 (compatible; replayfetch demo downloader)"


class ShardResolver:
    """Find the replay host holding a demo by probing each shard."""

    def __init__(
        self,
        session: requests.Session | None = None,
        candidates: Iterable[int] = DEFAULT_SHARDS,
        timeout: float = PROBE_TIMEOUT,
    ):
        self.candidates = tuple(candidates)
        self.timeout = timeout
        self._session = session

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({"User-Agent": USER_AGENT})
        return self._session

    def probe(self, url: str) -> bool:
        """HEAD a URL. Transport errors count as a miss."""
        try:
            response = self._get_session().head(url, timeout=self.timeout, allow_redirects=False)
        except requests.RequestException as e:
            logger.debug(f"Shard probe failed for {url}: {e}")
            return False

        logger.debug(f"Shard probe {url} -> {response.status_code}")
        return response.status_code == 200

    def find_shard(self, info: ShareCodeInfo, candidates: Iterable[int] | None = None) -> int:
        """
        Return the first shard whose demo URL answers 200.

        Raises:
            ShardNotFound: if every candidate misses
        """
        shards = tuple(candidates) if candidates is not None else self.candidates
        for shard in shards:
            url = build_demo_url(info, shard)
            logger.info(f"Testing replay shard {shard}: {url}")
            if self.probe(url):
                logger.info(f"Found demo on replay shard {shard} for match {info.match_id}")
                return shard

        logger.warning(
            f"Could not find replay shard for match {info.match_id} "
            f"(outcome {info.outcome_id}) after {len(shards)} probes"
        )
        raise ShardNotFound(f"No replay shard holds match {info.match_id}")

    def find_url(self, info: ShareCodeInfo) -> str:
        return build_demo_url(info, self.find_shard(info))
