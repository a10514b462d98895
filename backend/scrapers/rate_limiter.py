"""
Scraper Rate Limiter - Domain-keyed request pacing for plain HTTP fetches.

Sliding one-minute and one-hour windows per domain, held in memory (the
pipeline is a single sequential process). Limits come from the rate_limits
section of the ingestion settings; per-domain entries override the defaults.

Key format: scrape:{domain}
"""
import logging
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from ingestion.errors import RateLimitExceeded
from ingestion.settings import IngestionSettings, get_settings

logger = logging.getLogger(__name__)

MINUTE = 60
HOUR = 3600

# Max sleeps before giving up on a window that never opens
MAX_WAIT_ATTEMPTS = 60


class ScraperRateLimiter:
    """Rate limiter for web scraping with per-domain granularity."""

    def __init__(
        self,
        settings: Optional[IngestionSettings] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep
        self._requests: Dict[str, List[float]] = defaultdict(list)

    def _get_limits(self, domain: str) -> Dict[str, int]:
        """
        Rate limits for a domain.

        Returns:
            Dict with requests_per_minute, requests_per_hour, burst_limit
        """
        config = self.settings.rate_limits
        defaults = config.get("defaults", {})
        domain_config = (config.get("domains") or {}).get(domain, {})

        limits = {
            "requests_per_minute": defaults.get("requests_per_minute", 6),
            "requests_per_hour": defaults.get("requests_per_hour", 120),
            "burst_limit": defaults.get("burst_limit", 2),
        }
        for key in limits:
            if key in domain_config:
                limits[key] = domain_config[key]
        return limits

    def _make_key(self, domain: str) -> str:
        return f"scrape:{domain}"

    def _prune(self, key: str, now: float) -> List[float]:
        recent = [t for t in self._requests[key] if now - t < HOUR]
        self._requests[key] = recent
        return recent

    def _counts(self, key: str, now: float):
        recent = self._prune(key, now)
        minute_count = len([t for t in recent if now - t < MINUTE])
        return minute_count, len(recent)

    def wait(self, domain: str):
        """
        Wait if rate limited, then record the request.

        Raises:
            RateLimitExceeded: the window stayed closed for MAX_WAIT_ATTEMPTS sleeps
        """
        limits = self._get_limits(domain)
        key = self._make_key(domain)

        for _ in range(MAX_WAIT_ATTEMPTS):
            now = self._clock()
            minute_count, hour_count = self._counts(key, now)
            if (
                minute_count < limits["requests_per_minute"]
                and hour_count < limits["requests_per_hour"]
            ):
                self._requests[key].append(now)
                return

            wait_time = MINUTE / limits["requests_per_minute"]
            logger.debug(f"Rate limited for {domain}, waiting {wait_time:.1f}s")
            self._sleep(wait_time)

        raise RateLimitExceeded(f"Rate limit wait timeout for {domain}", domain)

    def is_allowed(self, domain: str) -> bool:
        """Check if a request is allowed without waiting."""
        limits = self._get_limits(domain)
        minute_count, hour_count = self._counts(self._make_key(domain), self._clock())
        return (
            minute_count < limits["requests_per_minute"]
            and hour_count < limits["requests_per_hour"]
        )

    def get_status(self, domain: str) -> Dict[str, Any]:
        """Current counts and limits for a domain."""
        limits = self._get_limits(domain)
        minute_count, hour_count = self._counts(self._make_key(domain), self._clock())
        return {
            "domain": domain,
            "minute": {
                "current": minute_count,
                "limit": limits["requests_per_minute"],
            },
            "hour": {
                "current": hour_count,
                "limit": limits["requests_per_hour"],
            },
            "is_allowed": (
                minute_count < limits["requests_per_minute"]
                and hour_count < limits["requests_per_hour"]
            ),
        }


# Global instance (lazy init)
_rate_limiter = None


def get_scraper_rate_limiter() -> ScraperRateLimiter:
    """Get the global scraper rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = ScraperRateLimiter()
    return _rate_limiter
