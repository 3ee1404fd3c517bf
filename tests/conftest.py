"""
Pytest configuration and fixtures for the exam engine tests.
"""
import sys
import os
from types import SimpleNamespace

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.sections import SectionSpec, SectionTable
from services.catalog_service import build_catalog

LABELS = "abcdef"


def question_row(qid, section_id, number, correct="a", option_count=4):
    """A stored question row as the ORM would return it."""
    row = SimpleNamespace(
        id=qid,
        section_id=section_id,
        question_number=number,
        question_text=f"Question {number}",
        correct_option=correct,
    )
    for i, label in enumerate(LABELS):
        setattr(row, f"option_{label}", f"Option {label.upper()}" if i < option_count else None)
    return row


def make_section_table():
    """Small three-section layout: Mathematics 4, Physics 2, Chemistry 2."""
    return SectionTable([
        SectionSpec(name="Mathematics", size=4, aliases=["maths"]),
        SectionSpec(name="Physics", size=2),
        SectionSpec(name="Chemistry", size=2),
    ])


def make_stored_test():
    """
    Rows for a test whose sections are stored in non-canonical order
    (Chemistry, maths, Physics) and whose questions are shuffled.
    Correct answers: Mathematics a,b,c,d  Physics a,b  Chemistry c,d
    """
    test = SimpleNamespace(id=7, name="Mock Test 1", duration_minutes=180)
    sections = [
        SimpleNamespace(id=30, name="Chemistry"),
        SimpleNamespace(id=10, name="maths"),
        SimpleNamespace(id=20, name="Physics"),
    ]
    questions = [
        question_row(8, 30, 2, "d"),
        question_row(1, 10, 1, "a"),
        question_row(6, 20, 2, "b"),
        question_row(3, 10, 3, "c"),
        question_row(7, 30, 1, "c"),
        question_row(2, 10, 2, "b"),
        question_row(5, 20, 1, "a"),
        question_row(4, 10, 4, "d"),
    ]
    return test, sections, questions


def make_catalog():
    test, sections, questions = make_stored_test()
    return build_catalog(test, sections, questions, make_section_table())


def make_single_section_catalog():
    """Three Mathematics questions with keys A, B, C."""
    table = SectionTable([SectionSpec(name="Mathematics", size=3)])
    test = SimpleNamespace(id=1, name="Short Test", duration_minutes=10)
    sections = [SimpleNamespace(id=1, name="Mathematics")]
    questions = [question_row(1, 1, 1, "A"), question_row(2, 1, 2, "B"), question_row(3, 1, 3, "C")]
    return build_catalog(test, sections, questions, table)


@pytest.fixture
def section_table():
    return make_section_table()


@pytest.fixture
def stored_test():
    return make_stored_test()


@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
def single_section_catalog():
    return make_single_section_catalog()
