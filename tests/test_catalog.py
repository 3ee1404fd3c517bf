from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import question_row
from core.exceptions import DataIntegrityError, InvalidInput, NotFound
from core.sections import SectionSpec, SectionTable, layout
from services.catalog_service import CatalogService, build_catalog


class TestNumbering:
    def test_numbers_are_contiguous_and_sorted(self, catalog):
        numbers = [q.number for q in catalog.questions]
        assert numbers == list(range(1, catalog.total_questions + 1))
        assert catalog.total_questions == 8

    def test_sections_follow_canonical_order_not_storage_order(self, catalog):
        assert [s.name for s in catalog.sections] == ["Mathematics", "Physics", "Chemistry"]

    def test_global_number_offsets_by_preceding_sections(self, catalog):
        assert [(q.number, q.section, q.local_number) for q in catalog.questions] == [
            (1, "Mathematics", 1),
            (2, "Mathematics", 2),
            (3, "Mathematics", 3),
            (4, "Mathematics", 4),
            (5, "Physics", 1),
            (6, "Physics", 2),
            (7, "Chemistry", 1),
            (8, "Chemistry", 2),
        ]

    def test_every_number_falls_in_exactly_one_section_range(self, catalog):
        ranges = layout(catalog.sections)
        for q in catalog.questions:
            owners = [spec.name for spec, first, last in ranges if first <= q.number <= last]
            assert owners == [q.section]

    def test_correct_options_are_normalized(self, single_section_catalog):
        assert [q.correct_option for q in single_section_catalog.questions] == ["a", "b", "c"]

    def test_missing_duration_uses_default(self, stored_test, section_table):
        test, sections, questions = stored_test
        test.duration_minutes = None
        catalog = build_catalog(test, sections, questions, section_table, default_duration=90)
        assert catalog.test.duration_minutes == 90
        assert catalog.duration_seconds == 5400


class TestIntegrity:
    def test_question_number_beyond_section_size(self, stored_test, section_table):
        test, sections, questions = stored_test
        questions[4] = question_row(7, 30, 3, "c")  # Chemistry only has 2
        with pytest.raises(DataIntegrityError):
            build_catalog(test, sections, questions, section_table)

    def test_duplicate_question_number(self, stored_test, section_table):
        test, sections, questions = stored_test
        questions[0] = question_row(8, 30, 1, "d")
        with pytest.raises(DataIntegrityError):
            build_catalog(test, sections, questions, section_table)

    def test_section_with_missing_questions(self, stored_test, section_table):
        test, sections, questions = stored_test
        with pytest.raises(DataIntegrityError, match="missing 1"):
            build_catalog(test, sections, questions[1:], section_table)

    def test_unknown_section_name(self, stored_test, section_table):
        test, sections, questions = stored_test
        sections[2] = SimpleNamespace(id=20, name="Biology")
        with pytest.raises(DataIntegrityError):
            build_catalog(test, sections, questions, section_table)

    def test_section_listed_twice_via_alias(self, stored_test, section_table):
        test, sections, questions = stored_test
        sections.append(SimpleNamespace(id=40, name="Mathematics"))
        with pytest.raises(DataIntegrityError):
            build_catalog(test, sections, questions, section_table)

    def test_question_in_unknown_section_id(self, stored_test, section_table):
        test, sections, questions = stored_test
        questions.append(question_row(99, 99, 1))
        with pytest.raises(DataIntegrityError):
            build_catalog(test, sections, questions, section_table)

    def test_correct_option_not_among_options(self, stored_test, section_table):
        test, sections, questions = stored_test
        questions[1] = question_row(1, 10, 1, "e")
        with pytest.raises(DataIntegrityError):
            build_catalog(test, sections, questions, section_table)

    def test_too_few_options(self, stored_test, section_table):
        test, sections, questions = stored_test
        questions[1] = question_row(1, 10, 1, "a", option_count=3)
        with pytest.raises(DataIntegrityError):
            build_catalog(test, sections, questions, section_table)

    def test_test_without_sections(self, section_table):
        test = SimpleNamespace(id=3, name="Empty", duration_minutes=60)
        with pytest.raises(DataIntegrityError):
            build_catalog(test, [], [], section_table)

    def test_section_table_rejects_duplicate_alias(self):
        with pytest.raises(ValueError):
            SectionTable([SectionSpec(name="Physics", size=1), SectionSpec(name="Physic", size=1, aliases=["physics"])])


class TestCatalogHelpers:
    def test_six_option_question(self):
        test = SimpleNamespace(id=2, name="Six", duration_minutes=30)
        table = SectionTable([SectionSpec(name="Physics", size=1)])
        catalog = build_catalog(test, [SimpleNamespace(id=1, name="Physics")],
                                [question_row(1, 1, 1, "f", option_count=6)], table)
        assert list(catalog.question(1).options) == ["a", "b", "c", "d", "e", "f"]

    def test_section_for(self, catalog):
        assert catalog.section_for(4).name == "Mathematics"
        assert catalog.section_for(5).name == "Physics"
        assert catalog.section_for(8).name == "Chemistry"
        with pytest.raises(InvalidInput):
            catalog.section_for(9)

    def test_questions_in_section(self, catalog):
        assert [q.number for q in catalog.questions_in_section("physics")] == [5, 6]

    def test_question_lookup(self, catalog):
        assert catalog.question(7).correct_option == "c"
        with pytest.raises(InvalidInput):
            catalog.question(0)

    def test_instructions(self, catalog):
        info = catalog.instructions()
        assert info["duration"] == 180
        assert [(s["name"], s["questions"], s["first_question"], s["last_question"]) for s in info["sections"]] == [
            ("Mathematics", 4, 1, 4),
            ("Physics", 2, 5, 6),
            ("Chemistry", 2, 7, 8),
        ]
        assert info["sections"][0]["max_marks"] == 4


def _result(scalar=None, scalars=None):
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalars.return_value.all.return_value = scalars or []
    return result


class TestCatalogService:
    async def test_unknown_test(self, section_table):
        db = MagicMock()
        db.execute = AsyncMock(return_value=_result(scalar=None))
        with pytest.raises(NotFound):
            await CatalogService(db, table=section_table).load_catalog(404)

    async def test_loads_and_numbers(self, stored_test, section_table):
        test, sections, questions = stored_test
        db = MagicMock()
        db.execute = AsyncMock(side_effect=[
            _result(scalar=test),
            _result(scalars=sections),
            _result(scalars=questions),
        ])
        catalog = await CatalogService(db, table=section_table).load_catalog(7)
        assert catalog.test.id == 7
        assert catalog.total_questions == 8
        assert db.execute.await_count == 3
