"""
Demo URL resolution.

The demo URL service is a small companion process logged into the CS2 game
coordinator. Given a share code it answers with the replay URL once Valve has
published the demo:

    POST {base_url}/demo
    X-API-Key: <key>
    {"sharecode": "CSGO-..."}

    200 {"demoUrl": "http://replay183.valve.net/730/....dem.bz2", "service": "gc"}

Requests are budgeted by the shared ``demo_url_service`` rate limit and retried
on transport failures only. A successful exchange without a URL means the demo
is not ready yet and is never retried here.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from replayfetch.errors import RateLimitWaitCancelled, ShardNotFound
from replayfetch.infra.ratelimit import DEMO_URL_SERVICE, RateLimiter, RateLimitPolicy
from replayfetch.integrations.shards import ShardResolver
from replayfetch.sharecode import decode_sharecode

logger = logging.getLogger(__name__)

DEFAULT_POLICY = RateLimitPolicy(DEMO_URL_SERVICE, max_requests=20, window_seconds=60)

TRANSPORT_ERRORS = (requests.ConnectionError, requests.Timeout)


class ResolutionStatus(str, Enum):
    """Why a resolution produced (or did not produce) a URL."""

    RESOLVED = "resolved"
    PROBED = "probed"
    NOT_READY = "not_ready"
    HTTP_ERROR = "http_error"
    BAD_PAYLOAD = "bad_payload"
    TRANSPORT_FAILURE = "transport_failure"
    MISSING_CONFIG = "missing_config"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Resolution:
    """Tagged result of a URL lookup."""

    status: ResolutionStatus
    url: str | None = None
    service: str | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.url is not None


class URLResolver:
    """
    Resolve share codes to downloadable demo URLs.

    Example:
        >>> resolver = URLResolver("http://localhost:3001", "key", RateLimiter())
        >>> url = resolver.resolve("CSGO-GADqf-jjyJ8-cSP2r-smZRo-TO2xK")
    """

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None,
        rate_limiter: RateLimiter,
        policy: RateLimitPolicy = DEFAULT_POLICY,
        session: requests.Session | None = None,
        timeout: float = 60.0,
        max_retries: int = 2,
        retry_interval: float = 2.0,
        shard_resolver: ShardResolver | None = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.policy = policy
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_interval = retry_interval
        self.shard_resolver = shard_resolver
        self._session = session

    @classmethod
    def from_config(cls, config, rate_limiter: RateLimiter, session=None) -> "URLResolver":
        from replayfetch.infra.ratelimit import default_policies

        service = config.demo_url_service
        shard_resolver = ShardResolver(
            candidates=config.download.probe_shards,
            timeout=config.download.probe_timeout_seconds,
        )
        return cls(
            service.base_url,
            service.api_key,
            rate_limiter,
            policy=default_policies(config.rate_limits)[DEMO_URL_SERVICE],
            session=session,
            timeout=service.timeout_seconds,
            max_retries=service.max_retries,
            retry_interval=service.retry_interval_seconds,
            shard_resolver=shard_resolver,
        )

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_fixed(self.retry_interval),
            retry=retry_if_exception_type(TRANSPORT_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def _post(self, sharecode: str) -> requests.Response:
        return self._get_session().post(
            f"{self.base_url}/demo",
            json={"sharecode": sharecode},
            headers={"Content-Type": "application/json", "X-API-Key": self.api_key},
            timeout=self.timeout,
        )

    def _wait_for_budget(self, cancel: threading.Event | None) -> None:
        if not self.rate_limiter.acquire_policy(self.policy):
            logger.warning("Demo URL service rate limit reached, waiting")
            self.rate_limiter.wait_for_policy(self.policy, cancel)

    def _ask_service(self, sharecode: str) -> Resolution:
        if not self.base_url or not self.api_key:
            logger.error(
                f"Demo URL service configuration missing for {sharecode} "
                f"(base_url={self.base_url}, api_key_configured={bool(self.api_key)})"
            )
            return Resolution(ResolutionStatus.MISSING_CONFIG, detail="base_url or api_key not set")

        logger.info(f"Requesting demo URL for {sharecode} from {self.base_url}")
        try:
            response = self._retrying()(self._post, sharecode)
        except requests.RequestException as e:
            logger.error(f"Demo URL service unreachable for {sharecode}: {e}")
            return Resolution(ResolutionStatus.TRANSPORT_FAILURE, detail=str(e))

        if not response.ok:
            logger.error(
                f"Demo URL service request failed for {sharecode}: "
                f"status={response.status_code} body={response.text[:200]}"
            )
            return Resolution(ResolutionStatus.HTTP_ERROR, detail=f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Demo URL service returned invalid JSON for {sharecode}: {e}")
            return Resolution(ResolutionStatus.BAD_PAYLOAD, detail="invalid JSON")

        demo_url = data.get("demoUrl") if isinstance(data, dict) else None
        if not demo_url:
            logger.warning(f"Demo URL service returned no demo URL for {sharecode}: {data}")
            return Resolution(ResolutionStatus.NOT_READY, detail="no demoUrl in response")
        if not isinstance(demo_url, str):
            logger.error(f"Demo URL service returned a non-string demoUrl for {sharecode}: {demo_url!r}")
            return Resolution(ResolutionStatus.BAD_PAYLOAD, detail="demoUrl is not a string")

        service = data.get("service") or "unknown"
        logger.info(f"Retrieved demo URL for {sharecode} via {service}: {demo_url}")
        return Resolution(ResolutionStatus.RESOLVED, url=demo_url, service=service)

    def _probe_shards(self, sharecode: str, previous: Resolution) -> Resolution:
        try:
            info = decode_sharecode(sharecode)
            url = self.shard_resolver.find_url(info)
        except (ValueError, ShardNotFound) as e:
            logger.info(f"Shard probe fallback failed for {sharecode}: {e}")
            return previous
        return Resolution(ResolutionStatus.PROBED, url=url, service="shard-probe")

    def resolve_detailed(
        self,
        sharecode: str,
        allow_probe: bool = False,
        cancel: threading.Event | None = None,
    ) -> Resolution:
        """
        Resolve a share code and report why it did or did not work.

        Args:
            sharecode: Share code to resolve
            allow_probe: Brute-force the replay shard when the service has no
                URL (only for codes taken from the Steam share code chain)
            cancel: Event that aborts a rate limit wait

        Returns:
            Resolution with the URL on success
        """
        try:
            self._wait_for_budget(cancel)
        except RateLimitWaitCancelled as e:
            logger.warning(f"Demo URL lookup for {sharecode} cancelled: {e}")
            return Resolution(ResolutionStatus.CANCELLED, detail=str(e))

        resolution = self._ask_service(sharecode)
        if not resolution.ok and allow_probe and self.shard_resolver is not None:
            resolution = self._probe_shards(sharecode, resolution)
        return resolution

    def resolve(
        self,
        sharecode: str,
        allow_probe: bool = False,
        cancel: threading.Event | None = None,
    ) -> str | None:
        """Return the demo URL, or None when it is unavailable for any reason."""
        return self.resolve_detailed(sharecode, allow_probe=allow_probe, cancel=cancel).url
