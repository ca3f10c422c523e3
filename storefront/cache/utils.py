import hashlib
from typing import Any, Awaitable, Callable, Optional
import orjson
from fastapi import Request
from storefront.cache._cache import KeyValueStore
from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.cache")


def build_key(*parts: Any) -> str:
    joined = ":".join(str(p) for p in parts if p is not None and p != "")
    if len(joined) > 200:
        return hashlib.sha256(joined.encode()).hexdigest()
    return joined

def serialize(value: Any) -> bytes:
    return orjson.dumps(value)

def deserialize(b: bytes) -> Any:
    return orjson.loads(b)


async def cache_get_or_load(store: KeyValueStore, key: str, ttl: int,
                            loader: Callable[[], Awaitable[Optional[Any]]]) -> Optional[Any]:
    """
    Read-through cache. None from the loader is not cached.
    Store failures are logged and the loader answers; the cache never fails a read.
    """
    try:
        raw = await store.get(key)
    except Exception as e:
        logger.warning("cache.get_failed", extra={"key": key, "error": str(e)})
        return await loader()

    if raw is not None:
        try:
            return deserialize(raw)
        except orjson.JSONDecodeError:
            logger.warning("cache.corrupt_entry", extra={"key": key})
            try:
                await store.delete(key)
            except Exception as e:
                logger.warning("cache.delete_failed", extra={"key": key, "error": str(e)})

    value = await loader()
    if value is not None:
        try:
            await store.set(key, serialize(value), ttl)
        except Exception as e:
            logger.warning("cache.set_failed", extra={"key": key, "error": str(e)})
    return value


def get_kv_store(request: Request) -> KeyValueStore:
    return request.app.state.kv_store
