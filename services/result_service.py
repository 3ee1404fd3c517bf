from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Mapping, Optional

from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import ExamError, InvalidInput, NotFound
from core.logger import logger
from models.analytics import UserAnalytics
from models.result import TestResult
from services.analytics_service import AnalyticsService
from services.catalog_service import Catalog, CatalogService
from services.scoring_service import normalize_answers, score


@dataclass
class SubmissionOutcome:
    result: TestResult
    analytics: Optional[UserAnalytics]

    @property
    def analytics_updated(self) -> bool:
        return self.analytics is not None


class ResultService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalogs = CatalogService(db)
        self.analytics = AnalyticsService(db)

    def _validate_time(self, catalog: Catalog, time_taken) -> int:
        if isinstance(time_taken, bool) or not isinstance(time_taken, (int, float)):
            raise InvalidInput("time_taken must be a number of seconds")
        limit = catalog.duration_seconds + settings.SUBMIT_TIME_TOLERANCE_SECONDS
        if time_taken < 0 or time_taken > limit:
            raise InvalidInput(f"time_taken must be between 0 and {catalog.duration_seconds} seconds")
        return min(int(time_taken), catalog.duration_seconds)

    async def submit_result(self, user_id: str, test_id: int, final_answers: Mapping,
                            time_taken_seconds, catalog: Optional[Catalog] = None,
                            attempt_id: Optional[str] = None) -> SubmissionOutcome:
        """
        Score and persist one completed attempt, then fold it into the user's analytics.

        Scoring failures leave nothing behind. Once the result row is committed it
        stays committed: an analytics failure is logged and reported through
        SubmissionOutcome.analytics_updated, never rolled back into the result.

        With an attempt_id the call is idempotent: a repeat returns the row stored
        for that attempt without touching analytics again.
        """
        if attempt_id is not None:
            existing = await self.get_by_attempt(attempt_id)
            if existing:
                logger.info("Attempt already recorded", user_id=user_id, attempt_id=attempt_id, result_id=existing.id)
                return SubmissionOutcome(result=existing, analytics=None)

        if catalog is None:
            catalog = await self.catalogs.load_catalog(test_id)
        time_taken = self._validate_time(catalog, time_taken_seconds)

        scored = score(final_answers, catalog.questions, catalog.sections)
        answers = normalize_answers(final_answers)

        result = TestResult(
            user_id=user_id,
            test_id=test_id,
            submitted_at=datetime.now(timezone.utc),
            time_taken=time_taken,
            attempt_id=attempt_id,
            answers={str(n): label for n, label in sorted(answers.items())},
            section_wise_analysis=scored.section_wise_analysis(),
            total_marks=scored.total_marks,
            correct_answers=scored.correct,
            wrong_answers=scored.wrong,
            unattempted=scored.unattempted,
        )
        self.db.add(result)
        try:
            await self.db.commit()
        except IntegrityError:
            if attempt_id is None:
                raise
            # Another worker stored this attempt first
            await self.db.rollback()
            existing = await self.get_by_attempt(attempt_id)
            if not existing:
                raise
            logger.info("Attempt already recorded", user_id=user_id, attempt_id=attempt_id, result_id=existing.id)
            return SubmissionOutcome(result=existing, analytics=None)

        await self.db.refresh(result)
        logger.info("Test result saved", user_id=user_id, test_id=test_id, result_id=result.id,
                    total_marks=scored.total_marks)

        result_id = result.id
        analytics = None
        try:
            analytics = await self.analytics.record_result(user_id, scored, result.submitted_at, time_taken)
        except (ExamError, SQLAlchemyError) as e:
            await self.db.rollback()
            # Rollback expires loaded rows; the committed result is still there
            await self.db.refresh(result)
            logger.error("Analytics update abandoned", user_id=user_id, result_id=result_id, error=str(e))

        return SubmissionOutcome(result=result, analytics=analytics)

    async def get_by_attempt(self, attempt_id: str) -> Optional[TestResult]:
        result = await self.db.execute(select(TestResult).filter(TestResult.attempt_id == attempt_id))
        return result.scalar_one_or_none()

    async def get_result(self, user_id: str, result_id: str) -> TestResult:
        result = await self.db.execute(
            select(TestResult).filter(TestResult.id == result_id, TestResult.user_id == user_id)
        )
        row = result.scalar_one_or_none()
        if not row:
            raise NotFound(f"Result {result_id} not found")
        return row

    async def list_results(self, user_id: str, limit: int = 50) -> List[TestResult]:
        result = await self.db.execute(
            select(TestResult)
            .filter(TestResult.user_id == user_id)
            .order_by(desc(TestResult.submitted_at))
            .limit(limit)
        )
        return result.scalars().all()
