"""
Per-key request counters over minute/hour/day windows.

Counters live in a Django cache (Redis in production) with one key per
(api key, window) and a TTL equal to the window length, so a window
resets when its key expires. Every counter is bumped with the backend's
atomic incr and rolled back if the request turns out to be over a
limit, which keeps admissions within the limit under concurrency.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from django.conf import settings
from django.core.cache import caches

from downloads.service.constants import RATE_LIMIT_PERIODS

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    admitted: bool
    exceeded: List[str] = field(default_factory=list)
    usage: Dict[str, Dict[str, int]] = field(default_factory=dict)


class RateLimiter:
    def __init__(self, cache=None):
        self.cache = cache if cache is not None else caches[settings.TUBEGATE_RATELIMIT_CACHE]

    @staticmethod
    def cache_key(api_key, period):
        return f'api_rate_limit:{api_key.key_hash}:{period}'

    def _increment(self, key, ttl):
        # add() only creates the key, so the TTL is fixed by the first hit
        self.cache.add(key, 0, timeout=ttl)
        try:
            return self.cache.incr(key)
        except ValueError:
            # Expired between add() and incr(); start a fresh window
            self.cache.add(key, 0, timeout=ttl)
            return self.cache.incr(key)

    def _decrement(self, key):
        try:
            self.cache.decr(key)
        except ValueError:
            pass  # already expired

    def check_and_increment(self, api_key):
        """
        Admit a request if every window is under its limit.

        Admission counts against all three windows. A denied request
        leaves the counters unchanged and reports each window that was
        already at or over its limit.

        Args:
            api_key: ApiKey being checked

        Returns:
            RateLimitResult
        """
        limits = api_key.rate_limits
        counts = {}

        try:
            for period, ttl in RATE_LIMIT_PERIODS.items():
                counts[period] = self._increment(self.cache_key(api_key, period), ttl)
        except Exception:
            # Counters are reconstructable; losing the store must not block traffic
            logger.exception('Rate limit store unavailable for key %s, admitting', api_key.key_prefix)
            return RateLimitResult(admitted=True)

        exceeded = [period for period in RATE_LIMIT_PERIODS if counts[period] > limits[period]]

        if exceeded:
            for period in RATE_LIMIT_PERIODS:
                self._decrement(self.cache_key(api_key, period))
            usage = {
                period: {'used': counts[period] - 1, 'limit': limits[period]}
                for period in RATE_LIMIT_PERIODS
            }
            logger.info('Rate limit exceeded for key %s: %s', api_key.key_prefix, ', '.join(exceeded))
            return RateLimitResult(admitted=False, exceeded=exceeded, usage=usage)

        usage = {
            period: {'used': counts[period], 'limit': limits[period]} for period in RATE_LIMIT_PERIODS
        }
        return RateLimitResult(admitted=True, usage=usage)

    def release(self, api_key):
        """Give back the slot taken by an admitted request that was later refused"""
        for period in RATE_LIMIT_PERIODS:
            self._decrement(self.cache_key(api_key, period))

    def usage(self, api_key):
        """
        Current usage per window.

        Returns:
            dict: {'minute': {'used': n, 'limit': m}, 'hour': ..., 'day': ...}
        """
        limits = api_key.rate_limits
        keys = {period: self.cache_key(api_key, period) for period in RATE_LIMIT_PERIODS}
        values = self.cache.get_many(list(keys.values()))
        return {
            period: {'used': values.get(key, 0), 'limit': limits[period]}
            for period, key in keys.items()
        }
