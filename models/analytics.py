from sqlalchemy import Column, Integer, String, Float, JSON, ForeignKey
from models.base import Base, TimestampMixin

class UserAnalytics(Base, TimestampMixin):
    __tablename__ = "user_analytics"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, index=True, nullable=False)

    total_tests_taken = Column(Integer, default=0, nullable=False)
    average_score = Column(Float, default=0.0, nullable=False)
    section_wise_average = Column(JSON, default=dict, nullable=False)
    improvement_trend = Column(JSON, default=list, nullable=False)  # [{"date": iso, "score": float}]
    weak_areas = Column(JSON, default=list, nullable=False)
    strong_areas = Column(JSON, default=list, nullable=False)
    average_time_per_question = Column(Float, default=0.0, nullable=False)
    section_wise_time = Column(JSON, default=dict, nullable=False)

    # Optimistic lock: UPDATE ... WHERE version = :old, bumped by SQLAlchemy
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
