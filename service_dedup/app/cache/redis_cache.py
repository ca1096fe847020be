"""
Redis cache of active rule lists for the Duplicate Detection Service.
"""

import json
from typing import Optional, List

import redis.asyncio as redis
from redis.exceptions import RedisError
from shared.logging import get_logger
from shared.errors import StoreUnavailableError
from ..rules.models import MatchRule


class RuleCache:
    """Caches the priority-ordered active rules per (tenant, entity type).

    Read and write failures are logged and behave like a miss; the rule
    store stays the source of truth.
    """

    RULES_PREFIX = "dedup:rules:"

    def __init__(self, redis_url: str, ttl_seconds: int = 60):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("dedup.cache.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis.ping()

            self.logger.info("Redis rule cache started")

        except (RedisError, OSError) as e:
            self.logger.error("Failed to start Redis rule cache", error=str(e))
            raise StoreUnavailableError("redis", str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis rule cache stopped")

    def _rules_key(self, tenant_id: str, entity_type: str) -> str:
        return f"{self.RULES_PREFIX}{tenant_id}:{entity_type}"

    async def get_rules(self, tenant_id: str, entity_type: str) -> Optional[List[MatchRule]]:
        """Cached active rules, or None on a miss."""
        if self.redis is None:
            return None

        try:
            cached = await self.redis.get(self._rules_key(tenant_id, entity_type))
            if cached is None:
                return None

            rules = [MatchRule.from_dict(item) for item in json.loads(cached)]
            self.logger.debug("Rule cache hit", tenant_id=tenant_id, entity_type=entity_type)
            return rules

        except (RedisError, OSError, ValueError, KeyError) as e:
            self.logger.error("Error reading rule cache", error=str(e))
            return None

    async def set_rules(self, tenant_id: str, entity_type: str, rules: List[MatchRule]) -> bool:
        """Cache an active rule list."""
        if self.redis is None:
            return False

        try:
            await self.redis.setex(
                self._rules_key(tenant_id, entity_type),
                self.ttl_seconds,
                json.dumps([rule.to_dict() for rule in rules])
            )
            return True

        except (RedisError, OSError) as e:
            self.logger.error("Error writing rule cache", error=str(e))
            return False

    async def invalidate(self, tenant_id: str, entity_type: str) -> bool:
        """Drop the cached rule list of one tenant and entity type."""
        if self.redis is None:
            return False

        try:
            await self.redis.delete(self._rules_key(tenant_id, entity_type))
            self.logger.debug("Rule cache invalidated", tenant_id=tenant_id, entity_type=entity_type)
            return True

        except (RedisError, OSError) as e:
            self.logger.error("Error invalidating rule cache", error=str(e))
            return False

    async def health_check(self) -> bool:
        """Check Redis health."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            return True
        except (RedisError, OSError):
            return False
