"""Redis-backed cache for public book listings. Every failure degrades to a cache miss."""
import json
import logging
from typing import Any, Mapping, Optional

import redis

from bookstore.config import settings

logger = logging.getLogger(__name__)

LISTING_PREFIX = "books:list"

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    global _redis_client
    if _redis_client is None and settings.REDIS_URL:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def listing_key(scope: str, params: Mapping[str, Any]) -> str:
    # sorted so that ?a=1&b=2 and ?b=2&a=1 share an entry
    encoded = json.dumps(params, sort_keys=True, separators=(",", ":"))
    return f"{LISTING_PREFIX}:{scope}:{encoded}"


def get_listing(key: str) -> Optional[dict]:
    client = get_redis_client()
    if client is None:
        return None
    try:
        cached = client.get(key)
    except redis.RedisError as exc:
        logger.warning(f"Listing cache read failed: {exc}")
        return None
    return json.loads(cached) if cached else None


def store_listing(key: str, payload: dict) -> None:
    client = get_redis_client()
    if client is None:
        return
    try:
        client.setex(key, settings.CACHE_TTL_SECONDS, json.dumps(payload))
    except redis.RedisError as exc:
        logger.warning(f"Listing cache write failed: {exc}")


def invalidate_listings() -> None:
    client = get_redis_client()
    if client is None:
        return
    try:
        keys = list(client.scan_iter(match=f"{LISTING_PREFIX}:*", count=200))
        if keys:
            client.delete(*keys)
    except redis.RedisError as exc:
        logger.warning(f"Listing cache invalidation failed: {exc}")
