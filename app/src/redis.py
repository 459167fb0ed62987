from redis import Redis
from typing import Optional
from redis.lock import Lock

from app.src import exceptions
from app.src.constants import (
    REDIS_HOST,
    REDIS_PORT,
    REDIS_PASSWORD,
    MUTEX_LOCK_TIMEOUT,
    MUTEX_LOCK_MAX_WAIT_TIME,
)

# Redis client (single connection)
redisClient = Redis(
    host=REDIS_HOST,
    port=REDIS_PORT,
    password=REDIS_PASSWORD,
    decode_responses=True,
)


def lockName(tableName: str, pk: Optional[int] = None) -> str:
    """Name of the mutex guarding a whole table or a single row."""
    if pk is None:
        return f"lock:{tableName}"
    return f"lock:{tableName}:{pk}"


def acquireLock(
    tableName: str,
    pk: Optional[int] = None,
    timeOut: int = MUTEX_LOCK_TIMEOUT,
    blockingTimeOut: int = MUTEX_LOCK_MAX_WAIT_TIME,
) -> Lock:
    """
    Acquire a Redis-based mutex lock for a table or a specific row.

    All writers of a dispatch record take `lock:dispatch_record:<id>` before
    reading it, so two requests can never both act on the same pre-transition
    state. The lock expires on its own after `timeOut` seconds should the
    holder die without releasing it.

    Args:
        tableName (str): Name of the table/resource to lock.
        pk (Optional[int]): Optional primary key for row-level locking.
        timeOut (int): Lock expiration in seconds.
        blockingTimeOut (int): Maximum time (in seconds) to wait for the lock.

    Returns:
        Lock: The acquired Redis lock.

    Raises:
        exceptions.LockAcquireTimeout: If the lock could not be acquired within blockingTimeOut.
    """
    try:
        lock = redisClient.lock(lockName(tableName, pk), timeout=timeOut)
        if lock.acquire(blocking=True, blocking_timeout=blockingTimeOut):
            return lock
        raise exceptions.LockAcquireTimeout()
    except Exception as e:
        exceptions.handle(e)


def releaseLock(*locks: Optional[Lock]) -> None:
    """
    Release previously acquired Redis locks, newest first.

    Locks that are None, expired or owned by someone else are skipped.
    """
    for lock in reversed(locks):
        if lock and lock.locked() and lock.owned():
            lock.release()
