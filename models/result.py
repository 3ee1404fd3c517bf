import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Float, JSON, DateTime, ForeignKey, Index
from models.base import Base

class TestResult(Base):
    __test__ = False
    __tablename__ = "test_results"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    test_id = Column(Integer, ForeignKey("tests.id"), index=True, nullable=False)
    submitted_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    time_taken = Column(Integer, nullable=False)  # seconds
    # Live-session attempt that produced this row; one row per attempt
    attempt_id = Column(String(36), unique=True, index=True, nullable=True)

    # question_number -> selected option label (answered questions only)
    answers = Column(JSON, nullable=False)
    # section name -> {correct, wrong, unattempted, marks}
    section_wise_analysis = Column(JSON, nullable=False)

    total_marks = Column(Float, nullable=False)
    correct_answers = Column(Integer, nullable=False)
    wrong_answers = Column(Integer, nullable=False)
    unattempted = Column(Integer, nullable=False)

    @property
    def section_wise_marks(self) -> dict:
        return {name: data["marks"] for name, data in (self.section_wise_analysis or {}).items()}

Index("idx_results_user_submitted", TestResult.user_id, TestResult.submitted_at)
