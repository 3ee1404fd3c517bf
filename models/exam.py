from sqlalchemy import Column, Integer, String, Text, Date, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, TimestampMixin

OPTION_LABELS = ("a", "b", "c", "d", "e", "f")

class Test(Base, TimestampMixin):
    __test__ = False
    __tablename__ = "tests"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    test_date = Column(Date, nullable=True)
    shift = Column(String(50), nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    sections = relationship("Section", back_populates="test", cascade="all, delete-orphan")

class Section(Base):
    __tablename__ = "sections"
    __table_args__ = (UniqueConstraint("test_id", "name", name="uq_sections_test_name"),)

    id = Column(Integer, primary_key=True, index=True)
    test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String(100), nullable=False)

    test = relationship("Test", back_populates="sections")
    questions = relationship("Question", back_populates="section", cascade="all, delete-orphan")

class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (UniqueConstraint("section_id", "question_number", name="uq_questions_section_number"),)

    id = Column(Integer, primary_key=True, index=True)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="CASCADE"), index=True, nullable=False)
    # 1-based position inside the section; the global number is derived at load time
    question_number = Column(Integer, nullable=False)
    question_text = Column(Text, nullable=False)
    option_a = Column(Text, nullable=False)
    option_b = Column(Text, nullable=False)
    option_c = Column(Text, nullable=False)
    option_d = Column(Text, nullable=False)
    option_e = Column(Text, nullable=True)
    option_f = Column(Text, nullable=True)
    correct_option = Column(String(1), nullable=False)

    section = relationship("Section", back_populates="questions")

