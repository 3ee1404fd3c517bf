from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import DataIntegrityError, InvalidInput, NotFound
from core.logger import logger
from core.sections import SectionSpec, SectionTable, layout
from models.exam import OPTION_LABELS, Question, Section, Test

MIN_OPTIONS = 4


@dataclass(frozen=True)
class CatalogQuestion:
    number: int          # global, 1-based across all sections
    local_number: int    # 1-based within its section
    section: str
    text: str
    options: Dict[str, str]
    correct_option: str
    id: Optional[int] = None


@dataclass(frozen=True)
class CatalogTest:
    id: int
    name: str
    duration_minutes: int
    test_date: Optional[date] = None
    shift: Optional[str] = None


@dataclass
class Catalog:
    """A test resolved into canonically ordered sections and globally numbered questions."""
    test: CatalogTest
    sections: List[SectionSpec]
    questions: List[CatalogQuestion]
    _by_number: Dict[int, CatalogQuestion] = field(init=False, repr=False)

    def __post_init__(self):
        self._by_number = {q.number: q for q in self.questions}

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def duration_seconds(self) -> int:
        return self.test.duration_minutes * 60

    def question(self, number: int) -> CatalogQuestion:
        try:
            return self._by_number[number]
        except KeyError:
            raise InvalidInput(f"Question {number} is not part of test {self.test.id}")

    def section_for(self, number: int) -> SectionSpec:
        for spec, first, last in layout(self.sections):
            if first <= number <= last:
                return spec
        raise InvalidInput(f"Question {number} is not part of test {self.test.id}")

    def questions_in_section(self, name: str) -> List[CatalogQuestion]:
        key = name.strip().lower()
        return [q for q in self.questions if q.section.lower() == key]

    def option_labels(self) -> Dict[int, List[str]]:
        return {q.number: list(q.options) for q in self.questions}

    def instructions(self) -> dict:
        return {
            "duration": self.test.duration_minutes,
            "sections": [
                {
                    "name": spec.name,
                    "questions": spec.size,
                    "first_question": first,
                    "last_question": last,
                    "max_marks": spec.size * spec.positive_marks,
                    "positive_marks": spec.positive_marks,
                    "negative_marks": spec.negative_marks,
                }
                for spec, first, last in layout(self.sections)
            ],
        }


def _row_options(row) -> Dict[str, str]:
    options = {}
    for label in OPTION_LABELS:
        content = getattr(row, f"option_{label}", None)
        if content:
            options[label] = content
    return options


def build_catalog(test, sections: Iterable, questions: Iterable, table: SectionTable,
                  default_duration: Optional[int] = None) -> Catalog:
    """
    Number questions globally: intra-section number + total size of the
    preceding sections in canonical order. Any inconsistency between stored
    rows and the section table raises DataIntegrityError; numbers are never
    clamped or guessed.
    """
    sections = list(sections)
    if not sections:
        raise DataIntegrityError(f"Test {test.id} has no sections")

    ordered = table.for_names([s.name for s in sections])
    spec_by_section_id = {s.id: table.resolve(s.name) for s in sections}
    offsets = {spec.key: first - 1 for spec, first, _ in layout(ordered)}

    seen: Dict[str, set] = {spec.key: set() for spec in ordered}
    numbered: List[CatalogQuestion] = []

    for row in questions:
        spec = spec_by_section_id.get(row.section_id)
        if spec is None:
            raise DataIntegrityError(f"Question {row.id} references unknown section {row.section_id}")

        local = row.question_number
        if local is None or local < 1 or local > spec.size:
            raise DataIntegrityError(
                f"{spec.name} question number {local} is outside 1..{spec.size}"
            )
        if local in seen[spec.key]:
            raise DataIntegrityError(f"{spec.name} question number {local} is duplicated")
        seen[spec.key].add(local)

        options = _row_options(row)
        if len(options) < MIN_OPTIONS:
            raise DataIntegrityError(f"{spec.name} question {local} has only {len(options)} options")
        correct = (row.correct_option or "").strip().lower()
        if correct not in options:
            raise DataIntegrityError(f"{spec.name} question {local} has invalid correct option '{row.correct_option}'")

        numbered.append(CatalogQuestion(
            number=offsets[spec.key] + local,
            local_number=local,
            section=spec.name,
            text=row.question_text,
            options=options,
            correct_option=correct,
            id=getattr(row, "id", None),
        ))

    for spec in ordered:
        missing = spec.size - len(seen[spec.key])
        if missing:
            raise DataIntegrityError(f"{spec.name} is missing {missing} of {spec.size} questions")

    numbered.sort(key=lambda q: q.number)

    duration = test.duration_minutes or default_duration or settings.EXAM_DURATION_MINUTES
    return Catalog(
        test=CatalogTest(
            id=test.id,
            name=test.name,
            duration_minutes=duration,
            test_date=getattr(test, "test_date", None),
            shift=getattr(test, "shift", None),
        ),
        sections=ordered,
        questions=numbered,
    )


class CatalogService:
    def __init__(self, db: AsyncSession, table: Optional[SectionTable] = None):
        self.db = db
        self.table = table or settings.section_table

    async def load_catalog(self, test_id: int) -> Catalog:
        result = await self.db.execute(select(Test).filter(Test.id == test_id))
        test = result.scalar_one_or_none()
        if not test:
            raise NotFound(f"Test {test_id} not found")

        result = await self.db.execute(select(Section).filter(Section.test_id == test_id))
        sections = result.scalars().all()

        result = await self.db.execute(
            select(Question).join(Section, Question.section_id == Section.id).filter(Section.test_id == test_id)
        )
        questions = result.scalars().all()

        catalog = build_catalog(test, sections, questions, self.table)
        logger.info("Catalog loaded", test_id=test_id, sections=[s.name for s in catalog.sections],
                    questions=catalog.total_questions)
        return catalog
