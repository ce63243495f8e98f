"""
Steam Web API client for walking a player's match share code history.

A player who shares their game authentication code lets us ask Steam for the
share code that follows a known one. Repeating the call walks the match
history forward until Steam answers "n/a".
"""

import logging
import threading

import requests

from replayfetch.errors import RateLimitWaitCancelled
from replayfetch.infra.ratelimit import STEAM_API, RateLimiter, RateLimitPolicy

logger = logging.getLogger(__name__)

STEAM_API_BASE = "https://api.steampowered.com"
NEXT_CODE_ENDPOINT = "/ICSGOPlayers_730/GetNextMatchSharingCode/v1/"
HEALTH_ENDPOINT = "/ISteamWebAPIUtil/GetServerInfo/v1/"

# Steam answers with this literal when the history has no newer match
END_OF_HISTORY = "n/a"

DEFAULT_POLICY = RateLimitPolicy(STEAM_API, max_requests=100, window_seconds=300)


class IdentityClient:
    """Client for the Steam share code chain."""

    def __init__(
        self,
        api_key: str | None,
        rate_limiter: RateLimiter,
        policy: RateLimitPolicy = DEFAULT_POLICY,
        base_url: str = STEAM_API_BASE,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.policy = policy
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

        if not self.api_key:
            logger.warning("No Steam API key configured; share code chain lookups disabled")

    @classmethod
    def from_config(cls, config, rate_limiter: RateLimiter, session=None) -> "IdentityClient":
        from replayfetch.infra.ratelimit import default_policies

        return cls(
            config.steam.api_key,
            rate_limiter,
            policy=default_policies(config.rate_limits)[STEAM_API],
            base_url=config.steam.base_url,
            timeout=config.steam.timeout_seconds,
            session=session,
        )

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def check_health(self) -> bool:
        """Return True if the Steam Web API answers."""
        try:
            response = self._get_session().get(f"{self.base_url}{HEALTH_ENDPOINT}", timeout=10)
        except requests.RequestException as e:
            logger.error(f"Steam API health check failed: {e}")
            return False

        if not response.ok:
            logger.warning(f"Steam API health check returned {response.status_code}")
            return False
        return True

    def get_next_sharecode(
        self,
        steam_id: str,
        auth_code: str,
        known_sharecode: str,
        cancel: threading.Event | None = None,
    ) -> str | None:
        """
        Ask Steam for the share code following ``known_sharecode``.

        Returns:
            The next share code, or None at the end of the history or on error
        """
        if not self.api_key:
            logger.error("Steam API key not configured")
            return None

        if not self.rate_limiter.acquire_policy(self.policy):
            logger.warning("Steam API rate limit reached, waiting")
            try:
                self.rate_limiter.wait_for_policy(self.policy, cancel)
            except RateLimitWaitCancelled as e:
                logger.warning(f"Steam lookup for {steam_id} cancelled: {e}")
                return None

        params = {
            "key": self.api_key,
            "steamid": steam_id,
            "steamidkey": auth_code,
            "knowncode": known_sharecode,
        }
        try:
            response = self._get_session().get(
                f"{self.base_url}{NEXT_CODE_ENDPOINT}", params=params, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Steam API request failed for {steam_id} after {known_sharecode}: {e}")
            return None

        if not response.ok:
            logger.warning(
                f"Steam API returned {response.status_code} for {steam_id} "
                f"after {known_sharecode}"
            )
            return None

        try:
            data = response.json()
        except ValueError:
            logger.error(f"Steam API returned invalid JSON for {steam_id}")
            return None

        next_code = (data.get("result") or {}).get("nextcode") if isinstance(data, dict) else None
        if not next_code or next_code == END_OF_HISTORY:
            logger.info(f"No share code after {known_sharecode} for {steam_id}")
            return None

        logger.info(f"Next share code for {steam_id}: {known_sharecode} -> {next_code}")
        return next_code
