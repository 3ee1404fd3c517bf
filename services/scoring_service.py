from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from core.exceptions import InvalidInput
from core.sections import SectionSpec


@dataclass
class SectionScore:
    question_count: int
    correct: int = 0
    wrong: int = 0
    unattempted: int = 0
    marks: float = 0

    @property
    def percentage(self) -> float:
        return self.correct / self.question_count * 100 if self.question_count else 0.0

    def to_dict(self) -> dict:
        return {"correct": self.correct, "wrong": self.wrong, "unattempted": self.unattempted, "marks": self.marks}


@dataclass
class ScoreResult:
    sections: Dict[str, SectionScore] = field(default_factory=dict)

    @property
    def correct(self) -> int:
        return sum(s.correct for s in self.sections.values())

    @property
    def wrong(self) -> int:
        return sum(s.wrong for s in self.sections.values())

    @property
    def unattempted(self) -> int:
        return sum(s.unattempted for s in self.sections.values())

    @property
    def total_questions(self) -> int:
        return sum(s.question_count for s in self.sections.values())

    @property
    def total_marks(self) -> float:
        return sum(s.marks for s in self.sections.values())

    @property
    def section_wise_marks(self) -> Dict[str, float]:
        return {name: s.marks for name, s in self.sections.items()}

    def section_wise_analysis(self) -> Dict[str, dict]:
        return {name: s.to_dict() for name, s in self.sections.items()}


def normalize_answers(final_answers: Mapping) -> Dict[int, str]:
    """Coerce keys to ints and labels to lowercase; empty answers are dropped."""
    normalized = {}
    for key, value in (final_answers or {}).items():
        try:
            number = int(key)
        except (TypeError, ValueError):
            raise InvalidInput(f"Answer key '{key}' is not a question number")
        if value is None:
            continue
        if not isinstance(value, str):
            raise InvalidInput(f"Answer for question {number} must be an option label")
        label = value.strip().lower()
        if label:
            normalized[number] = label
    return normalized


def score(final_answers: Mapping, questions: Iterable, sections: List[SectionSpec]) -> ScoreResult:
    """
    Score a submission against the answer key.

    Every section gets a record, even with no activity. A label the question
    does not offer can never match the key and counts as wrong; answers for
    question numbers outside the test are rejected with InvalidInput.
    """
    answers = normalize_answers(final_answers)
    specs = {s.name: s for s in sections}
    result = ScoreResult(sections={s.name: SectionScore(question_count=s.size) for s in sections})

    known = set()
    for question in questions:
        known.add(question.number)
        spec = specs.get(question.section)
        if spec is None:
            raise InvalidInput(f"Question {question.number} belongs to unknown section '{question.section}'")
        record = result.sections[spec.name]

        answer: Optional[str] = answers.get(question.number)
        if answer is None:
            record.unattempted += 1
            continue
        if answer == question.correct_option.strip().lower():
            record.correct += 1
            record.marks += spec.positive_marks
        else:
            record.wrong += 1
            record.marks -= spec.negative_marks

    unknown = sorted(set(answers) - known)
    if unknown:
        raise InvalidInput(f"Answers reference questions outside the test: {unknown}")

    return result
