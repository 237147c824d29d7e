from __future__ import annotations

from typing import NamedTuple

from courses import Course, coerce_courses


class CatalogIndex(NamedTuple):
    """
    Read-only lookup structures for one catalog snapshot.

    by_code:    {"MCR3U": Course(...), ...}
    dependents: {"MCR3U": frozenset({"MHF4U", "MCV4U"}), ...}
    """

    by_code: dict[str, Course]
    dependents: dict[str, frozenset[str]]

    @property
    def catalog_codes(self) -> set[str]:
        return set(self.by_code)


def direct_prereq_set(course: Course) -> set[str]:
    """AND list plus every member of every OR group, deduplicated."""
    out = set(course.prereqs)
    for group in course.prereq_any_of:
        out.update(group)
    return out


def build_index(courses) -> CatalogIndex:
    """
    Builds the code lookup and the reverse prerequisite map for a catalog.

    Returns: CatalogIndex(
        by_code={"MCR3U": Course, "MHF4U": Course, ...},
        dependents={"MCR3U": frozenset({"MHF4U"}), "MHF4U": frozenset(), ...},
    )

    Duplicate codes: the last record with a given code wins in by_code, but
    every record's prerequisites still land in dependents.
    AND and OR-group memberships are merged into one untyped reverse edge.
    Codes that are only referenced as prerequisites (no course record) still
    get a dependents entry.
    Records are normalized through course_from_record, so missing or
    malformed prerequisite fields count as "no prerequisites".
    """
    course_list = coerce_courses(courses)

    by_code: dict[str, Course] = {}
    dependents: dict[str, set[str]] = {}

    for course in course_list:
        by_code[course.code] = course
        dependents.setdefault(course.code, set())

    # Every input record contributes edges, replaced duplicates included.
    for course in course_list:
        for prereq_code in direct_prereq_set(course):
            dependents.setdefault(prereq_code, set()).add(course.code)

    return CatalogIndex(
        by_code=by_code,
        dependents={code: frozenset(codes) for code, codes in dependents.items()},
    )
