import random
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.orm.exc import StaleDataError

from core.config import settings
from core.exceptions import ConcurrencyConflict
from models.analytics import UserAnalytics
from services.analytics_service import (
    AnalyticsService,
    AnalyticsSnapshot,
    running_mean,
    strong_areas,
    update_analytics,
    weak_areas,
)
from services.scoring_service import ScoreResult, SectionScore

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def maths_result(marks, size=80):
    return ScoreResult(sections={
        "Mathematics": SectionScore(question_count=size, correct=int(marks), unattempted=size - int(marks), marks=marks),
    })


def three_section_result(maths, physics, chemistry):
    return ScoreResult(sections={
        "Mathematics": SectionScore(question_count=80, correct=maths, unattempted=80 - maths, marks=maths),
        "Physics": SectionScore(question_count=40, correct=physics, unattempted=40 - physics, marks=physics),
        "Chemistry": SectionScore(question_count=40, correct=chemistry, unattempted=40 - chemistry, marks=chemistry),
    })


class TestUpdateAnalytics:
    def test_first_submission(self):
        snapshot = update_analytics(None, maths_result(60), T0, 1600)

        assert snapshot.total_tests_taken == 1
        assert snapshot.average_score == 60
        assert snapshot.weak_areas == []
        assert snapshot.strong_areas == ["Mathematics"]
        assert snapshot.section_wise_average == {"Mathematics": 60}
        assert snapshot.improvement_trend == [{"date": T0.isoformat(), "score": 60}]
        assert snapshot.average_time_per_question == 20

    def test_second_submission(self):
        first = update_analytics(None, maths_result(60), T0, 1600)
        second = update_analytics(first, maths_result(40), T0 + timedelta(days=1), 800)

        assert second.average_score == 50
        assert second.total_tests_taken == 2
        assert [p["score"] for p in second.improvement_trend] == [60, 40]
        assert second.section_wise_average == {"Mathematics": 50}
        assert second.average_time_per_question == 15
        assert second.strong_areas == []
        assert second.weak_areas == []

    def test_previous_snapshot_is_not_mutated(self):
        first = update_analytics(None, maths_result(60), T0, 1600)
        update_analytics(first, maths_result(40), T0, 1600)
        assert first.total_tests_taken == 1
        assert len(first.improvement_trend) == 1

    def test_incremental_mean_matches_plain_mean(self):
        rng = random.Random(42)
        scores = [rng.randint(0, 160) for _ in range(40)]
        snapshot = None
        for i, value in enumerate(scores):
            snapshot = update_analytics(snapshot, maths_result(value, size=160), T0 + timedelta(hours=i), 3600,
                                        trend_limit=0)

        assert snapshot.total_tests_taken == len(scores)
        assert snapshot.average_score == pytest.approx(sum(scores) / len(scores))
        assert snapshot.section_wise_average["Mathematics"] == pytest.approx(sum(scores) / len(scores))
        assert len(snapshot.improvement_trend) == len(scores)

    def test_section_time_split_by_size(self):
        snapshot = update_analytics(None, three_section_result(40, 20, 20), T0, 1600)
        assert snapshot.section_wise_time == {"Mathematics": 800, "Physics": 400, "Chemistry": 400}
        assert snapshot.average_time_per_question == 10

    def test_new_section_is_seeded(self):
        first = update_analytics(None, maths_result(60), T0, 1600)
        second = update_analytics(first, three_section_result(40, 30, 10), T0, 1600)

        assert second.section_wise_average == {"Mathematics": 50, "Physics": 30, "Chemistry": 10}
        assert second.section_wise_time["Physics"] == 400

    def test_areas_describe_latest_result_only(self):
        first = update_analytics(None, three_section_result(10, 40, 40), T0, 1600)
        assert first.weak_areas == ["Mathematics"]
        assert first.strong_areas == ["Physics", "Chemistry"]

        second = update_analytics(first, three_section_result(80, 0, 15), T0, 1600)
        assert second.weak_areas == ["Physics", "Chemistry"]
        assert second.strong_areas == ["Mathematics"]

    def test_trend_retention(self):
        snapshot = None
        for i in range(5):
            snapshot = update_analytics(snapshot, maths_result(i), T0 + timedelta(days=i), 60, trend_limit=3)

        assert [p["score"] for p in snapshot.improvement_trend] == [2, 3, 4]
        assert snapshot.total_tests_taken == 5


@pytest.mark.parametrize("correct, weak, strong", [
    (50, False, False),
    (49, True, False),
    (74, False, False),
    (75, False, True),
    (100, False, True),
    (0, True, False),
])
def test_area_thresholds(correct, weak, strong):
    result = maths_result(correct, size=100)
    assert (weak_areas(result, 50) == ["Mathematics"]) is weak
    assert (strong_areas(result, 75) == ["Mathematics"]) is strong


def test_area_names_are_capitalized():
    result = ScoreResult(sections={"physics": SectionScore(question_count=10, correct=9, marks=9)})
    assert strong_areas(result, 75) == ["Physics"]


def test_running_mean():
    assert running_mean(60, 1, 40) == 50
    assert running_mean(0, 0, 12.5) == 12.5


def analytics_row(**overrides):
    row = UserAnalytics(user_id="user-1")
    AnalyticsSnapshot(total_tests_taken=1, average_score=60, section_wise_average={"Mathematics": 60},
                      improvement_trend=[{"date": T0.isoformat(), "score": 60}],
                      average_time_per_question=20,
                      section_wise_time={"Mathematics": 1600}).apply_to(row)
    for key, value in overrides.items():
        setattr(row, key, value)
    return row


def execute_returning(*rows):
    results = []
    for row in rows:
        result = MagicMock()
        result.scalar_one_or_none.return_value = row
        results.append(result)
    return AsyncMock(side_effect=results)


class TestAnalyticsService(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.db = MagicMock()
        self.db.add = MagicMock()
        self.db.commit = AsyncMock()
        self.db.rollback = AsyncMock()

    async def test_creates_row_for_first_result(self):
        self.db.execute = execute_returning(None)
        service = AnalyticsService(self.db)

        row = await service.record_result("user-1", maths_result(60), T0, 1600)

        self.db.add.assert_called_once_with(row)
        self.assertEqual(row.total_tests_taken, 1)
        self.assertEqual(row.strong_areas, ["Mathematics"])
        self.db.commit.assert_awaited_once()

    async def test_updates_existing_row(self):
        existing = analytics_row()
        self.db.execute = execute_returning(existing)
        service = AnalyticsService(self.db)

        row = await service.record_result("user-1", maths_result(40), T0 + timedelta(days=1), 800)

        self.assertIs(row, existing)
        self.db.add.assert_not_called()
        self.assertEqual(row.average_score, 50)
        self.assertEqual(row.total_tests_taken, 2)
        self.assertEqual(len(row.improvement_trend), 2)

    async def test_retries_after_stale_write(self):
        # The first write loses to a concurrent update; the re-read sees it
        self.db.execute = execute_returning(analytics_row(), analytics_row(total_tests_taken=2, average_score=50))
        self.db.commit = AsyncMock(side_effect=[StaleDataError("version mismatch"), None])
        service = AnalyticsService(self.db, max_retries=3)

        row = await service.record_result("user-1", maths_result(20), T0, 800)

        self.assertEqual(self.db.commit.await_count, 2)
        self.db.rollback.assert_awaited_once()
        self.assertEqual(row.total_tests_taken, 3)
        self.assertAlmostEqual(row.average_score, 40)

    async def test_gives_up_after_max_retries(self):
        self.db.execute = AsyncMock(side_effect=lambda *a, **kw: MagicMock(
            scalar_one_or_none=MagicMock(return_value=analytics_row())))
        self.db.commit = AsyncMock(side_effect=StaleDataError("version mismatch"))
        service = AnalyticsService(self.db, max_retries=3)

        with self.assertRaises(ConcurrencyConflict):
            await service.record_result("user-1", maths_result(20), T0, 800)
        self.assertEqual(self.db.commit.await_count, 3)
        self.assertEqual(self.db.rollback.await_count, 3)

    async def test_single_attempt_is_honoured(self):
        self.db.execute = AsyncMock(side_effect=lambda *a, **kw: MagicMock(
            scalar_one_or_none=MagicMock(return_value=analytics_row())))
        self.db.commit = AsyncMock(side_effect=StaleDataError("version mismatch"))
        service = AnalyticsService(self.db, max_retries=1)

        with self.assertRaises(ConcurrencyConflict):
            await service.record_result("user-1", maths_result(20), T0, 800)
        self.assertEqual(self.db.commit.await_count, 1)

    def test_retry_count_defaults_to_settings(self):
        self.assertEqual(AnalyticsService(self.db).max_retries, settings.ANALYTICS_MAX_RETRIES)

    def test_zero_retries_is_rejected(self):
        with self.assertRaises(ValueError):
            AnalyticsService(self.db, max_retries=0)

    async def test_get_user_analytics_absent(self):
        self.db.execute = execute_returning(None)
        self.assertIsNone(await AnalyticsService(self.db).get_user_analytics("nobody"))
