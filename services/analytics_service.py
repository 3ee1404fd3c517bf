from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from core.config import settings
from core.exceptions import ConcurrencyConflict
from core.logger import logger
from models.analytics import UserAnalytics
from services.scoring_service import ScoreResult


@dataclass
class AnalyticsSnapshot:
    total_tests_taken: int
    average_score: float
    section_wise_average: Dict[str, float] = field(default_factory=dict)
    improvement_trend: List[dict] = field(default_factory=list)
    weak_areas: List[str] = field(default_factory=list)
    strong_areas: List[str] = field(default_factory=list)
    average_time_per_question: float = 0.0
    section_wise_time: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_model(cls, row: UserAnalytics) -> "AnalyticsSnapshot":
        return cls(
            total_tests_taken=row.total_tests_taken,
            average_score=row.average_score,
            section_wise_average=dict(row.section_wise_average or {}),
            improvement_trend=list(row.improvement_trend or []),
            weak_areas=list(row.weak_areas or []),
            strong_areas=list(row.strong_areas or []),
            average_time_per_question=row.average_time_per_question,
            section_wise_time=dict(row.section_wise_time or {}),
        )

    def apply_to(self, row: UserAnalytics):
        # JSON columns are replaced, never mutated in place, so changes are tracked
        row.total_tests_taken = self.total_tests_taken
        row.average_score = self.average_score
        row.section_wise_average = dict(self.section_wise_average)
        row.improvement_trend = list(self.improvement_trend)
        row.weak_areas = list(self.weak_areas)
        row.strong_areas = list(self.strong_areas)
        row.average_time_per_question = self.average_time_per_question
        row.section_wise_time = dict(self.section_wise_time)


def running_mean(old: float, count: int, value: float) -> float:
    return (old * count + value) / (count + 1)


def _display(name: str) -> str:
    return name[:1].upper() + name[1:]


def weak_areas(result: ScoreResult, threshold: Optional[float] = None) -> List[str]:
    threshold = settings.WEAK_AREA_THRESHOLD if threshold is None else threshold
    return [_display(name) for name, s in result.sections.items() if s.percentage < threshold]


def strong_areas(result: ScoreResult, threshold: Optional[float] = None) -> List[str]:
    threshold = settings.STRONG_AREA_THRESHOLD if threshold is None else threshold
    return [_display(name) for name, s in result.sections.items() if s.percentage >= threshold]


def section_time_split(result: ScoreResult, time_taken: float) -> Dict[str, float]:
    """Spread time across sections in proportion to their question counts."""
    total = result.total_questions
    return {name: time_taken * s.question_count / total for name, s in result.sections.items()}


def update_analytics(
    existing: Optional[AnalyticsSnapshot],
    result: ScoreResult,
    submitted_at: datetime,
    time_taken: float,
    weak_threshold: Optional[float] = None,
    strong_threshold: Optional[float] = None,
    trend_limit: Optional[int] = None,
) -> AnalyticsSnapshot:
    """
    Fold one scored submission into a user's running analytics.

    Averages are updated incrementally from the previous count and never
    recomputed from history. Weak and strong areas describe the latest
    result only.
    """
    trend_limit = settings.TREND_RETENTION_LIMIT if trend_limit is None else trend_limit
    point = {"date": submitted_at.isoformat(), "score": result.total_marks}
    per_question = time_taken / result.total_questions
    section_time = section_time_split(result, time_taken)

    if existing is None:
        return AnalyticsSnapshot(
            total_tests_taken=1,
            average_score=result.total_marks,
            section_wise_average=result.section_wise_marks,
            improvement_trend=[point],
            weak_areas=weak_areas(result, weak_threshold),
            strong_areas=strong_areas(result, strong_threshold),
            average_time_per_question=per_question,
            section_wise_time=section_time,
        )

    count = existing.total_tests_taken

    section_average = dict(existing.section_wise_average)
    for name, marks in result.section_wise_marks.items():
        # A section seen for the first time starts from its own value
        section_average[name] = running_mean(section_average[name], count, marks) if name in section_average else marks

    times = dict(existing.section_wise_time)
    for name, seconds in section_time.items():
        times[name] = running_mean(times[name], count, seconds) if name in times else seconds

    trend = list(existing.improvement_trend) + [point]
    if trend_limit:
        trend = trend[-trend_limit:]

    return AnalyticsSnapshot(
        total_tests_taken=count + 1,
        average_score=running_mean(existing.average_score, count, result.total_marks),
        section_wise_average=section_average,
        improvement_trend=trend,
        weak_areas=weak_areas(result, weak_threshold),
        strong_areas=strong_areas(result, strong_threshold),
        average_time_per_question=running_mean(existing.average_time_per_question, count, per_question),
        section_wise_time=times,
    )


class AnalyticsService:
    def __init__(self, db: AsyncSession, max_retries: Optional[int] = None):
        self.db = db
        self.max_retries = settings.ANALYTICS_MAX_RETRIES if max_retries is None else max_retries
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    async def get_user_analytics(self, user_id: str) -> Optional[UserAnalytics]:
        result = await self.db.execute(
            select(UserAnalytics)
            .filter(UserAnalytics.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def record_result(self, user_id: str, result: ScoreResult, submitted_at: datetime,
                            time_taken: float) -> UserAnalytics:
        """Read-modify-write with optimistic locking; re-read and retry on conflict."""
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._apply(user_id, result, submitted_at, time_taken)
            except ConcurrencyConflict:
                await self.db.rollback()
                logger.warning("Analytics update conflict, retrying", user_id=user_id, attempt=attempt)

        raise ConcurrencyConflict(f"Analytics for user {user_id} not updated after {self.max_retries} attempts")

    async def _apply(self, user_id: str, result: ScoreResult, submitted_at: datetime,
                     time_taken: float) -> UserAnalytics:
        row = await self.get_user_analytics(user_id)
        previous = AnalyticsSnapshot.from_model(row) if row else None
        snapshot = update_analytics(previous, result, submitted_at, time_taken)

        if row is None:
            row = UserAnalytics(user_id=user_id)
            self.db.add(row)
        snapshot.apply_to(row)

        try:
            await self.db.commit()
        except StaleDataError as e:
            raise ConcurrencyConflict(str(e)) from e
        except IntegrityError as e:
            if previous is not None:
                raise
            # Another submission created the row first
            raise ConcurrencyConflict(str(e)) from e

        logger.info("Analytics updated", user_id=user_id, total_tests=snapshot.total_tests_taken,
                    average_score=round(snapshot.average_score, 2))
        return row

    async def reset_all(self) -> int:
        result = await self.db.execute(delete(UserAnalytics))
        await self.db.commit()
        logger.info("Analytics reset", rows=result.rowcount)
        return result.rowcount
