import asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.config import settings
from core.logger import setup_logging, logger
from db.session import create_redis
from services.monitoring_service import monitor_sessions

async def start_api():
    import uvicorn
    from api.main import app
    config = uvicorn.Config(app, host=settings.API_HOST, port=settings.API_PORT, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()

async def main():
    setup_logging()

    redis = create_redis()

    # Submits exam sessions whose countdown ran out while nobody was polling them
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        monitor_sessions,
        trigger="interval",
        seconds=settings.SESSION_MONITOR_INTERVAL_SECONDS,
        args=[redis],
        id="exam_session_monitor",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started (Exam session monitor).")

    logger.info("Starting API...", env=settings.ENV)
    try:
        await start_api()
    finally:
        scheduler.shutdown(wait=False)
        await redis.aclose()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Application stopped.")
