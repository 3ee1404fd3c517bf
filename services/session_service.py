import json
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import InvalidInput, NotFound, SessionClosed
from core.logger import logger
from services.catalog_service import CatalogService
from services.exam_tracker import ExamTracker
from services.result_service import ResultService, SubmissionOutcome

SESSION_KEY = "exam:session:{user_id}:{test_id}"
SUBMIT_GUARD_KEY = "exam:submitted:{attempt_id}"
# Guard value while the result is being written; replaced by the result id
SUBMIT_PENDING = "pending"

ACTIONS = ("navigate", "next", "previous", "select", "clear", "toggle_mark")


@dataclass
class LiveSession:
    attempt_id: str
    user_id: str
    test_id: int
    started_at: float
    synced_at: float
    tracker: ExamTracker
    result_id: Optional[str] = None

    @property
    def key(self) -> str:
        return SESSION_KEY.format(user_id=self.user_id, test_id=self.test_id)

    def to_json(self) -> str:
        return json.dumps({
            "attempt_id": self.attempt_id,
            "user_id": self.user_id,
            "test_id": self.test_id,
            "started_at": self.started_at,
            "synced_at": self.synced_at,
            "result_id": self.result_id,
            "tracker": self.tracker.snapshot(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "LiveSession":
        data = json.loads(raw)
        return cls(
            attempt_id=data["attempt_id"],
            user_id=data["user_id"],
            test_id=int(data["test_id"]),
            started_at=data["started_at"],
            synced_at=data["synced_at"],
            result_id=data.get("result_id"),
            tracker=ExamTracker.restore(data["tracker"]),
        )


class ExamSessionService:
    """
    Server-held exam attempts.

    The tracker snapshot lives in Redis and is caught up with wall-clock time
    on every access. Manual submission and timeout both go through _submit,
    which claims a per-attempt SET NX guard so exactly one of them scores
    and persists the attempt. The guard outlives the snapshot write and holds
    the result id, so a snapshot written back by a slower request is closed
    again on the next read instead of reopening the attempt.
    """

    def __init__(self, redis: Redis, db: AsyncSession, clock: Callable[[], float] = time.time):
        self.redis = redis
        self.db = db
        self.clock = clock

    def _ttl(self, session: LiveSession) -> int:
        return session.tracker.duration_seconds + settings.SESSION_TTL_GRACE_SECONDS

    def _guard_key(self, session: LiveSession) -> str:
        return SUBMIT_GUARD_KEY.format(attempt_id=session.attempt_id)

    async def _close_if_submitted(self, session: LiveSession) -> bool:
        """Mark the snapshot finished when its attempt already holds the submit guard."""
        if session.tracker.finished:
            return True
        marker = await self.redis.get(self._guard_key(session))
        if not marker:
            return False
        session.tracker.finish()
        if marker != SUBMIT_PENDING:
            session.result_id = marker
        return True

    async def _load(self, user_id: str, test_id: int) -> Optional[LiveSession]:
        raw = await self.redis.get(SESSION_KEY.format(user_id=user_id, test_id=test_id))
        if not raw:
            return None
        session = LiveSession.from_json(raw)
        # An older request may have written an unfinished snapshot after submission
        if not session.tracker.finished and await self._close_if_submitted(session):
            if session.result_id:
                await self.redis.set(session.key, session.to_json(), ex=self._ttl(session))
        return session

    async def _save(self, session: LiveSession) -> bool:
        """Write the snapshot; an unfinished one is never written over a submitted attempt."""
        if not session.tracker.finished and await self._close_if_submitted(session):
            return False
        await self.redis.set(session.key, session.to_json(), ex=self._ttl(session))
        return True

    async def _sync(self, session: LiveSession) -> Optional[SubmissionOutcome]:
        """Apply elapsed whole seconds; submit on expiry."""
        if session.tracker.finished:
            return None
        elapsed = int(self.clock() - session.synced_at)
        if elapsed > 0:
            session.tracker.tick(elapsed)
            session.synced_at += elapsed
        if session.tracker.expired:
            logger.info("Exam time is up, submitting", user_id=session.user_id, test_id=session.test_id)
            return await self._submit(session)
        return None

    async def _submit(self, session: LiveSession) -> SubmissionOutcome:
        guard = self._guard_key(session)
        claimed = await self.redis.set(guard, SUBMIT_PENDING, nx=True, ex=self._ttl(session))
        if not claimed:
            await self._close_if_submitted(session)
            raise SessionClosed("Exam already submitted")

        submission = session.tracker.finish()
        try:
            outcome = await ResultService(self.db).submit_result(
                session.user_id, session.test_id, submission.answers, submission.time_taken,
                attempt_id=session.attempt_id,
            )
        except Exception:
            # A retry either stores the attempt or returns the row already stored for it
            await self.redis.delete(guard)
            raise

        session.result_id = outcome.result.id
        await self.redis.set(guard, session.result_id, ex=self._ttl(session))
        await self._save(session)
        logger.info("Exam session submitted", user_id=session.user_id, test_id=session.test_id,
                    forced=submission.forced, result_id=session.result_id)
        return outcome

    async def start(self, user_id: str, test_id: int) -> LiveSession:
        session = await self._load(user_id, test_id)
        if session and not session.tracker.finished:
            await self._sync(session)
            if not session.tracker.finished and await self._save(session):
                return session

        catalog = await CatalogService(self.db).load_catalog(test_id)
        now = self.clock()
        session = LiveSession(
            attempt_id=str(uuid.uuid4()),
            user_id=user_id,
            test_id=test_id,
            started_at=now,
            synced_at=now,
            tracker=ExamTracker.for_catalog(catalog),
        )
        await self._save(session)
        logger.info("Exam session started", user_id=user_id, test_id=test_id, attempt_id=session.attempt_id)
        return session

    async def get(self, user_id: str, test_id: int) -> LiveSession:
        session = await self._load(user_id, test_id)
        if not session:
            raise NotFound(f"No exam session for test {test_id}")
        await self._sync(session)
        if not session.tracker.finished:
            await self._save(session)
        return session

    async def apply(self, user_id: str, test_id: int, action: str,
                    question_number: Optional[int] = None, option: Optional[str] = None) -> LiveSession:
        if action not in ACTIONS:
            raise InvalidInput(f"Unknown action '{action}'")
        session = await self.get(user_id, test_id)
        if session.tracker.finished:
            raise SessionClosed("Exam already submitted")

        tracker = session.tracker
        if action == "navigate":
            if question_number is None:
                raise InvalidInput("question_number is required for navigate")
            tracker.navigate(question_number)
        elif action == "next":
            tracker.advance()
        elif action == "previous":
            tracker.retreat()
        elif action == "select":
            tracker.select_answer(option)
        elif action == "clear":
            tracker.clear_response()
        elif action == "toggle_mark":
            tracker.toggle_mark_for_review()

        if not await self._save(session):
            raise SessionClosed("Exam already submitted")
        return session

    async def submit(self, user_id: str, test_id: int) -> SubmissionOutcome:
        session = await self._load(user_id, test_id)
        if not session:
            raise NotFound(f"No exam session for test {test_id}")
        if session.tracker.finished:
            raise SessionClosed("Exam already submitted")
        outcome = await self._sync(session)
        if outcome is not None:
            return outcome
        return await self._submit(session)

    async def expire_if_due(self, user_id: str, test_id: int) -> bool:
        """Used by the monitor for sessions nobody is polling any more."""
        session = await self._load(user_id, test_id)
        if not session or session.tracker.finished:
            return False
        try:
            outcome = await self._sync(session)
        except SessionClosed:
            return False
        return outcome is not None
