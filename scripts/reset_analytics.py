import asyncio
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.session import AsyncSessionLocal
from services.analytics_service import AnalyticsService
from core.logger import logger, setup_logging

async def reset_analytics():
    print("WARNING: This will RESET ALL USER ANALYTICS (averages, trends, weak/strong areas).")
    print("Stored test results are kept; analytics rebuild from the next submission.")
    confirm = input("Type 'CONFIRM' to proceed: ")

    if confirm != "CONFIRM":
        print("Operation cancelled.")
        return

    async with AsyncSessionLocal() as session:
        try:
            removed = await AnalyticsService(session).reset_all()
            print(f"Removed analytics for {removed} users.")
        except Exception as e:
            await session.rollback()
            print(f"Error resetting analytics: {e}")
            logger.error("Error resetting analytics", error=str(e))

if __name__ == "__main__":
    setup_logging()
    if os.name == 'nt':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(reset_analytics())
