# sheetsync/core/locking.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from redis import asyncio as aioredis
from redis.asyncio.client import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import LockError

from sheetsync.core.config import settings
from sheetsync.core.exceptions import StoreBusyError
from sheetsync.core.store import RecordStore

# Set up logging
logger = logging.getLogger(__name__)

# Global Redis connection pool and client
redis_pool: Optional[ConnectionPool] = None
redis_client: Optional[Redis] = None
redis_unavailable = False

# Fallback lock for a single worker process
_local_lock: Optional[asyncio.Lock] = None


def _get_local_lock() -> asyncio.Lock:
    global _local_lock
    if _local_lock is None:
        _local_lock = asyncio.Lock()
    return _local_lock


async def init_redis_pool() -> Optional[Redis]:
    """Initialize the Redis connection used for the cross-process write lock"""
    global redis_pool, redis_client, redis_unavailable

    if not settings.ENABLE_REDIS_LOCK or redis_unavailable:
        return None
    if redis_client is not None:
        return redis_client

    try:
        redis_pool = aioredis.ConnectionPool.from_url(
            settings.REDIS_CONNECTION_STRING,
            max_connections=20,
            decode_responses=True,
            encoding="utf-8",
            retry_on_timeout=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            socket_keepalive=True,
            health_check_interval=30
        )
        client = Redis(connection_pool=redis_pool)

        # Test connection
        await client.ping()
        redis_client = client
        logger.info("Redis connection established, using distributed write lock")
        return redis_client
    except Exception as e:
        # The app still works with the in-process lock, it just is not safe across workers
        logger.error(f"Failed to initialize Redis connection: {str(e)}, falling back to in-process lock")
        redis_client = None
        redis_unavailable = True
        return None


async def close_redis_pool():
    global redis_pool, redis_client
    if redis_client is not None:
        await redis_client.aclose()
    if redis_pool is not None:
        await redis_pool.disconnect()
    redis_client = None
    redis_pool = None


@asynccontextmanager
async def write_lock(wait_seconds: Optional[float] = None):
    """Hold the global write lock, waiting at most `wait_seconds`"""
    wait = settings.SYNC_LOCK_WAIT_SECONDS if wait_seconds is None else wait_seconds
    client = await init_redis_pool()

    if client is not None:
        lock = client.lock(
            settings.SYNC_LOCK_NAME,
            timeout=settings.SYNC_LOCK_TIMEOUT_SECONDS,
            blocking_timeout=wait,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise StoreBusyError(f"Store is busy, could not acquire write lock within {wait} seconds")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                logger.warning(f"Write lock expired before release: {str(e)}")
        return

    lock = _get_local_lock()
    try:
        await asyncio.wait_for(lock.acquire(), timeout=wait)
    except asyncio.TimeoutError:
        raise StoreBusyError(f"Store is busy, could not acquire write lock within {wait} seconds")
    try:
        yield
    finally:
        lock.release()


async def run_locked(store: RecordStore, func: Callable[..., Any], *args: Any) -> Any:
    """
    Run a synchronous store operation under the write lock.
    The store is reloaded before and persisted after the work, which runs in
    the default executor so the event loop stays responsive.
    """
    async with write_lock():
        loop = asyncio.get_running_loop()

        def work():
            store.refresh()
            try:
                return func(*args)
            finally:
                store.flush()

        return await loop.run_in_executor(None, work)
