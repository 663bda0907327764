# query_advisor/core/caching/free_token_store.py

"""
Free-analysis admission: each anonymous client address and each free token
may be used for exactly one analysis.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

import redis
from redis.exceptions import RedisError

from query_advisor.core.errors import ConfigurationError, InternalFailure

logger = logging.getLogger(__name__)

IP_KEY_PREFIX = "qa:free:ip:"
TOKEN_KEY_PREFIX = "qa:free:token:"


class InMemoryFreeTokenStore:
    """
    Process-local admission records. Lost on restart.

    With ``ttl_seconds`` set, a record stops blocking once it is that old,
    matching the key expiry of the Redis backend.
    """

    backend = "memory"

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # key -> time of admission
        self._addresses: Dict[str, float] = {}
        self._tokens: Dict[str, float] = {}

    def _is_recorded(self, records: Dict[str, float], key: str, now: float) -> bool:
        admitted_at = records.get(key)
        if admitted_at is None:
            return False
        if self.ttl_seconds is not None and now - admitted_at >= self.ttl_seconds:
            del records[key]
            return False
        return True

    def try_admit(self, token: str, client_address: str) -> bool:
        """
        Record one free analysis for (token, client_address).

        Returns False when either the address or the token has already been
        recorded; nothing is recorded in that case.
        """
        with self._lock:
            now = self._clock()
            address_seen = self._is_recorded(self._addresses, client_address, now)
            token_seen = self._is_recorded(self._tokens, token, now)
            if address_seen or token_seen:
                return False
            self._addresses[client_address] = now
            self._tokens[token] = now
            return True

    def health_check(self) -> bool:
        return True

    def clear(self):
        with self._lock:
            self._addresses.clear()
            self._tokens.clear()


class RedisFreeTokenStore:
    """Admission records shared between workers through Redis."""

    backend = "redis"

    def __init__(self, redis_url: str = "redis://localhost:6379/0", ttl_seconds: Optional[int] = None,
                 client=None):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.redis_client = client or redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        logger.info(f"Free token store using Redis at {redis_url}")

    def try_admit(self, token: str, client_address: str) -> bool:
        ip_key = f"{IP_KEY_PREFIX}{client_address}"
        token_key = f"{TOKEN_KEY_PREFIX}{token}"

        try:
            if self.redis_client.exists(token_key):
                return False
            if not self.redis_client.set(ip_key, token, nx=True, ex=self.ttl_seconds):
                return False
            if not self.redis_client.set(token_key, client_address, nx=True, ex=self.ttl_seconds):
                # token claimed concurrently; release the address
                self.redis_client.delete(ip_key)
                return False
            return True
        except RedisError as e:
            logger.error(f"Free token store unavailable: {e}")
            raise InternalFailure("Unable to process request. Please try again.", {"cause": type(e).__name__}) from e

    def health_check(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False


def create_free_token_store(config):
    """Build the admission store selected by ``admission.backend``."""
    backend = config.admission_backend
    if backend == "memory":
        return InMemoryFreeTokenStore(ttl_seconds=config.admission_ttl_seconds)
    if backend == "redis":
        return RedisFreeTokenStore(config.redis_url, ttl_seconds=config.admission_ttl_seconds)
    raise ConfigurationError(f"Unknown admission backend: {backend}")
