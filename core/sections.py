"""Section configuration table.

A test is partitioned into named sections laid out back to back in a fixed
canonical order. The table below is the single source of truth for section
sizes, ordering and marking scheme; nothing infers membership from ids.
"""
from typing import Dict, Iterable, Iterator, List, Tuple

from pydantic import BaseModel, ConfigDict, Field

from core.exceptions import DataIntegrityError


class SectionSpec(BaseModel):
    """One configured section."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Canonical display name, e.g. Mathematics")
    size: int = Field(..., description="Number of questions in the section", gt=0)
    positive_marks: float = Field(1.0, description="Marks awarded per correct answer")
    negative_marks: float = Field(0.0, description="Marks deducted per wrong answer", ge=0)
    aliases: List[str] = Field(default_factory=list, description="Alternative stored names")

    @property
    def key(self) -> str:
        return self.name.strip().lower()


class SectionTable:
    """Ordered, validated collection of SectionSpec."""

    def __init__(self, specs: Iterable[SectionSpec]):
        self._specs: List[SectionSpec] = list(specs)
        if not self._specs:
            raise ValueError("Section table must contain at least one section")

        self._by_name: Dict[str, SectionSpec] = {}
        for spec in self._specs:
            for name in [spec.name, *spec.aliases]:
                key = name.strip().lower()
                if key in self._by_name:
                    raise ValueError(f"Duplicate section name or alias: {name}")
                self._by_name[key] = spec

    def __iter__(self) -> Iterator[SectionSpec]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def names(self) -> List[str]:
        return [s.name for s in self._specs]

    def resolve(self, name: str) -> SectionSpec:
        spec = self._by_name.get((name or "").strip().lower())
        if spec is None:
            raise DataIntegrityError(f"Section '{name}' is not configured")
        return spec

    def for_names(self, names: Iterable[str]) -> List[SectionSpec]:
        """Specs for the given stored names, in canonical order."""
        wanted = set()
        for name in names:
            spec = self.resolve(name)
            if spec.key in wanted:
                raise DataIntegrityError(f"Section '{spec.name}' appears more than once")
            wanted.add(spec.key)
        return [s for s in self._specs if s.key in wanted]


def layout(specs: Iterable[SectionSpec]) -> List[Tuple[SectionSpec, int, int]]:
    """(spec, first, last) global question ranges, offset by preceding section sizes."""
    ranges = []
    offset = 0
    for spec in specs:
        ranges.append((spec, offset + 1, offset + spec.size))
        offset += spec.size
    return ranges
