"""
Per-campaign enrollment lock.

enroll() reads the set of already-enrolled leads and inserts the rest; two
concurrent calls for one campaign must not both see the same "not yet
enrolled" set. The lock is a Redis key (SET NX EX) owned by a random token.
The partial unique index on enrollments stays the backstop when Redis is
down or the lock expires mid-enrollment.
"""
import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Union

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 60
LOCK_WAIT_SECONDS = 10
LOCK_POLL_INTERVAL = 0.1

# Compare-and-delete: never release a lock that expired and was taken by another caller
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


class LockTimeoutError(Exception):
    """Another enroll() holds the campaign lock past the wait budget."""

    def __init__(self, message: str, campaign_id: str = ""):
        super().__init__(message)
        self.campaign_id = campaign_id


def campaign_lock_key(campaign_id: Union[uuid.UUID, str]) -> str:
    return f"cadence:lock:campaign:{campaign_id}"


@asynccontextmanager
async def campaign_lock(
    campaign_id: Union[uuid.UUID, str],
    ttl: int = LOCK_TTL_SECONDS,
    wait: float = LOCK_WAIT_SECONDS,
):
    """
    Hold the enrollment lock for one campaign.

    Usage:
        async with campaign_lock(campaign.id):
            # dedup against existing enrollments, then insert
    """
    campaign_id = str(campaign_id)
    key = campaign_lock_key(campaign_id)
    token = uuid.uuid4().hex

    acquired = await _acquire(key, token, ttl, wait)
    if not acquired:
        raise LockTimeoutError(
            f"Enrollment already running for campaign {campaign_id[:8]} (waited {wait}s)",
            campaign_id=campaign_id,
        )

    started = time.monotonic()
    try:
        yield
    finally:
        held = time.monotonic() - started
        if held > ttl:
            logger.warning(
                "Enrollment for campaign %s held its lock %.1fs, past the %ds TTL",
                campaign_id[:8], held, ttl,
            )
        await _release(key, token)


async def _acquire(key: str, token: str, ttl: int, wait: float) -> bool:
    """Poll SET NX until the key is ours or the wait budget runs out."""
    try:
        from cadence.utils.redis import get_redis
        redis = await get_redis()

        deadline = time.monotonic() + wait
        while True:
            if await redis.set(key, token, nx=True, ex=ttl):
                return True
            if time.monotonic() >= deadline:
                logger.warning("Enrollment lock wait timed out for %s", key)
                return False
            await asyncio.sleep(LOCK_POLL_INTERVAL)
    except Exception as e:
        logger.warning("Redis lock error for %s: %s. Enrolling without lock.", key, str(e))
        return True


async def _release(key: str, token: str) -> None:
    try:
        from cadence.utils.redis import get_redis
        redis = await get_redis()
        await redis.eval(_RELEASE_SCRIPT, 1, key, token)
    except Exception as e:
        logger.warning("Redis lock release error for %s: %s", key, str(e))
