"""In-progress exam attempt: per-question status, answers, pointer and countdown.

The tracker is synchronous and knows nothing about persistence or clocks.
A driver (CountdownTimer, or the Redis-backed session service catching up
with wall time) calls tick(); submission reads the tracker once via finish().
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from core.exceptions import InvalidInput, SessionClosed


class QuestionStatus(str, Enum):
    NOT_VISITED = "not_visited"
    VISITED_NOT_ANSWERED = "visited_not_answered"
    ANSWERED = "answered"
    MARKED_FOR_REVIEW = "marked_for_review"
    ANSWERED_AND_MARKED_FOR_REVIEW = "answered_and_marked_for_review"

    @property
    def is_marked(self) -> bool:
        return self in (QuestionStatus.MARKED_FOR_REVIEW, QuestionStatus.ANSWERED_AND_MARKED_FOR_REVIEW)


@dataclass(frozen=True)
class Submission:
    answers: Dict[int, str]
    time_taken: int
    forced: bool


class ExamTracker:
    def __init__(
        self,
        total_questions: int,
        duration_minutes: int,
        option_labels: Optional[Mapping[int, Sequence[str]]] = None,
    ):
        if total_questions < 1:
            raise ValueError("An exam needs at least one question")
        self.total_questions = total_questions
        self.duration_seconds = duration_minutes * 60
        self.remaining = self.duration_seconds
        self.current = 1
        self._statuses: Dict[int, QuestionStatus] = {
            n: QuestionStatus.NOT_VISITED for n in range(1, total_questions + 1)
        }
        self._statuses[1] = QuestionStatus.VISITED_NOT_ANSWERED
        self._answers: Dict[int, str] = {}
        self._labels = {n: {l.lower() for l in labels} for n, labels in (option_labels or {}).items()}
        self._expired = False
        self._finished = False
        self._on_expire: List[Callable[["ExamTracker"], None]] = []

    @classmethod
    def for_catalog(cls, catalog) -> "ExamTracker":
        return cls(catalog.total_questions, catalog.test.duration_minutes, catalog.option_labels())

    # --- Queries ---

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def elapsed(self) -> int:
        return self.duration_seconds - self.remaining

    def status(self, number: int) -> QuestionStatus:
        return self._statuses[number]

    def answer(self, number: int) -> Optional[str]:
        return self._answers.get(number)

    def visited(self) -> List[int]:
        return [n for n, s in self._statuses.items() if s is not QuestionStatus.NOT_VISITED]

    def status_counts(self) -> Dict[str, int]:
        """Question palette legend: how many questions are in each status."""
        counts = {status.value: 0 for status in QuestionStatus}
        for status in self._statuses.values():
            counts[status.value] += 1
        return counts

    # --- Transitions ---

    def _ensure_open(self):
        if self._finished:
            raise SessionClosed("Exam already submitted")

    def navigate(self, number: int):
        self._ensure_open()
        number = min(max(number, 1), self.total_questions)
        if self._statuses[number] is QuestionStatus.NOT_VISITED:
            self._statuses[number] = QuestionStatus.VISITED_NOT_ANSWERED
        self.current = number

    def advance(self):
        self.navigate(self.current + 1)

    def retreat(self):
        self.navigate(self.current - 1)

    def select_answer(self, label: str):
        self._ensure_open()
        label = (label or "").strip().lower()
        if not label:
            raise InvalidInput("Option label is required")
        allowed = self._labels.get(self.current)
        if allowed is not None and label not in allowed:
            raise InvalidInput(f"Option '{label}' is not valid for question {self.current}")

        self._answers[self.current] = label
        if self._statuses[self.current].is_marked:
            # Answering keeps the review mark
            self._statuses[self.current] = QuestionStatus.ANSWERED_AND_MARKED_FOR_REVIEW
        else:
            self._statuses[self.current] = QuestionStatus.ANSWERED

    def clear_response(self):
        self._ensure_open()
        self._answers.pop(self.current, None)
        self._statuses[self.current] = QuestionStatus.VISITED_NOT_ANSWERED

    def toggle_mark_for_review(self):
        self._ensure_open()
        answered = self.current in self._answers
        if self._statuses[self.current].is_marked:
            self._statuses[self.current] = QuestionStatus.ANSWERED if answered else QuestionStatus.VISITED_NOT_ANSWERED
        elif answered:
            self._statuses[self.current] = QuestionStatus.ANSWERED_AND_MARKED_FOR_REVIEW
        else:
            self._statuses[self.current] = QuestionStatus.MARKED_FOR_REVIEW

    # --- Clock ---

    def on_expire(self, callback: Callable[["ExamTracker"], None]):
        self._on_expire.append(callback)

    def tick(self, seconds: int = 1) -> bool:
        """Consume time. Returns True only on the call that ran the clock out."""
        if self._finished or self._expired or seconds <= 0:
            return False
        self.remaining = max(0, self.remaining - seconds)
        if self.remaining > 0:
            return False
        self._expired = True
        for callback in list(self._on_expire):
            callback(self)
        return True

    def finish(self) -> Optional[Submission]:
        """Terminal transition. Only the first caller gets the Submission."""
        if self._finished:
            return None
        self._finished = True
        return Submission(answers=dict(self._answers), time_taken=self.elapsed, forced=self._expired)

    # --- Persistence ---

    def snapshot(self) -> dict:
        return {
            "total_questions": self.total_questions,
            "duration_seconds": self.duration_seconds,
            "remaining": self.remaining,
            "current": self.current,
            "statuses": {str(n): s.value for n, s in self._statuses.items() if s is not QuestionStatus.NOT_VISITED},
            "answers": {str(n): a for n, a in self._answers.items()},
            "labels": {str(n): sorted(l) for n, l in self._labels.items()},
            "expired": self._expired,
            "finished": self._finished,
        }

    @classmethod
    def restore(cls, data: dict) -> "ExamTracker":
        tracker = cls(data["total_questions"], 0)
        tracker.duration_seconds = data["duration_seconds"]
        tracker.remaining = data["remaining"]
        tracker.current = data["current"]
        for n, value in data.get("statuses", {}).items():
            tracker._statuses[int(n)] = QuestionStatus(value)
        tracker._answers = {int(n): a for n, a in data.get("answers", {}).items()}
        tracker._labels = {int(n): set(l) for n, l in data.get("labels", {}).items()}
        tracker._expired = data.get("expired", False)
        tracker._finished = data.get("finished", False)
        return tracker
