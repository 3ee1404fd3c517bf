from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import logger
from models.user import User

class UserService:
    """Local record of candidates authenticated by the external auth service."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str):
        result = await self.db.execute(select(User).filter(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_or_create_user(self, user_id: str) -> tuple[User, bool]:
        user = await self.get_user(user_id)
        if user:
            if not user.is_active:
                user.is_active = True
                await self.db.commit()
                logger.info("Inactive user became active", user_id=user_id)
            return user, False

        user = User(id=user_id, is_active=True)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # First request of the same user on another worker won the insert
            await self.db.rollback()
            return await self.get_user(user_id), False

        logger.info("New user created", user_id=user_id)
        return user, True
