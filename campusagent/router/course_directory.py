from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

# Longer aliases come before shorter ones that they contain ("data structures
# java" before "java") because lookup is first-match substring search.
DEFAULT_COURSE_KEYWORDS: tuple[tuple[str, int], ...] = (
    # Data Structures
    ("data structures java", 65759),
    ("data structures", 65759),
    ("cis-256", 65759),
    ("cs2", 65759),
    ("ds", 65759),
    # Programming Methods (Java)
    ("programming methods java", 61734),
    ("programming methods", 61734),
    ("java class", 61734),
    ("cis-255", 61734),
    ("java", 61734),
    ("cs1", 61734),
    # Computer Architecture
    ("computer architecture", 65734),
    ("assembly language", 65734),
    ("computer arch", 65734),
    ("comp arch", 65734),
    ("cis-242", 65734),
    ("assembly", 65734),
    # Object-Oriented Design
    ("object oriented design", 60178),
    ("object oriented", 60178),
    ("program design", 60178),
    ("cis-254", 60178),
    ("oop", 60178),
    # UNIX/Linux
    ("unix/linux", 60118),
    ("cis-121", 60118),
    ("unix", 60118),
    ("linux", 60118),
    # Art History
    ("ancient art", 58733),
    ("medieval art", 58733),
    ("art history", 58733),
    ("art-101", 58733),
    ("art", 58733),
    # Public Speaking
    ("public speaking", 61843),
    ("comm-110", 61843),
    ("communication", 61843),
    ("speaking", 61843),
    # C++
    ("comp-250", 50700),
    ("c++", 50700),
    ("cpp", 50700),
)


# Computer Architecture and Data Structures.
DEFAULT_DISCUSSION_COURSE_IDS: tuple[int, ...] = (65734, 65759)


@dataclass(frozen=True)
class CourseHint:
    course_id: int
    keyword: str


class CourseDirectory:
    """Keyword to Canvas course id lookup, built once and read-only afterwards."""

    def __init__(self, keywords: Iterable[tuple[str, int]] = DEFAULT_COURSE_KEYWORDS) -> None:
        table: dict[str, int] = {}
        for keyword, course_id in keywords:
            normalized = keyword.strip().lower()
            if normalized and normalized not in table:
                table[normalized] = int(course_id)
        self._table: Mapping[str, int] = MappingProxyType(table)

    @property
    def keywords(self) -> Mapping[str, int]:
        return self._table

    def resolve(self, message: str) -> CourseHint | None:
        lowered = (message or "").lower()
        if not lowered:
            return None
        for keyword, course_id in self._table.items():
            if keyword in lowered:
                return CourseHint(course_id=course_id, keyword=keyword)
        return None
