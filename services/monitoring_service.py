from redis.asyncio import Redis

from core.logger import logger
from db.session import AsyncSessionLocal
from services.session_service import ExamSessionService

SESSION_SCAN_PATTERN = "exam:session:*"

def _parse_session_key(key: str):
    # exam:session:{user_id}:{test_id}
    _, _, user_id, test_id = key.split(":", 3)
    return user_id, int(test_id)

async def monitor_sessions(redis: Redis, session_factory=AsyncSessionLocal) -> int:
    """
    Periodic scan for exam sessions whose clock ran out while nobody was
    polling them (closed tab, lost connection) and submit them.
    """
    logger.debug("Starting exam session monitor scan...")
    submitted = 0

    async with session_factory() as db:
        service = ExamSessionService(redis, db)
        async for key in redis.scan_iter(match=SESSION_SCAN_PATTERN):
            try:
                user_id, test_id = _parse_session_key(key)
                if await service.expire_if_due(user_id, test_id):
                    submitted += 1
            except Exception as e:
                logger.error(f"Monitor: Error checking exam session {key}", error=str(e))

    if submitted:
        logger.info(f"Monitor: Submitted {submitted} expired exam sessions")
    logger.debug("Exam session monitor scan completed.")
    return submitted
