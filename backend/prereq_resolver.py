"""
Graph queries over a built CatalogIndex.

Two kinds of answers live here and must not be confused:

  * upstream_closure / open_alternatives commit to ONE representative path:
    every unsatisfied OR group is resolved by its first listed member. This
    is what a "what do I still need for X" chain shows.
  * is_eligible is the exact logical test: all AND entries present and at
    least one member of every OR group present.

No function here raises on malformed input. Unknown codes give empty
results, and every traversal keeps a visited set so cyclic catalogs terminate.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from catalog_index import CatalogIndex, direct_prereq_set
from courses import Course, clean_code, course_from_record


def _as_course(course) -> Course | None:
    if course is None or isinstance(course, Course):
        return course
    # Standalone records are judged by their prerequisites, code or not.
    return course_from_record(course, require_code=False)


def _as_code_set(codes) -> set[str]:
    """Copy caller-supplied codes into a fresh, case-normalized set."""
    if codes is None:
        return set()
    if isinstance(codes, str):
        codes = [codes]
    if not isinstance(codes, Iterable):
        return set()
    out = set()
    for raw in codes:
        code = clean_code(raw)
        if code:
            out.add(code)
    return out


def _by_code(source) -> Mapping:
    if isinstance(source, CatalogIndex):
        return source.by_code
    return source if isinstance(source, Mapping) else {}


def _dependents(source) -> Mapping:
    if isinstance(source, CatalogIndex):
        return source.dependents
    return source if isinstance(source, Mapping) else {}


def _grade_sort_key(course: Course | None, code: str):
    grade = course.grade if course is not None else None
    return (grade is None, grade or 0, code)


# ── Direct prerequisites ──────────────────────────────────────────────────────

def direct_prereq_codes(course) -> set[str]:
    """
    AND list ∪ every code of every OR group. Empty set for a course with
    neither, or for None. Set semantics: don't rely on iteration order.
    """
    course = _as_course(course)
    if course is None:
        return set()
    return direct_prereq_set(course)


# ── Upstream (what do I need) ─────────────────────────────────────────────────

def _representative_picks(course: Course, satisfied: set[str]) -> tuple[list[str], list[dict]]:
    """
    Codes the representative path goes through for one course: every
    unsatisfied AND entry, plus the first member of every unsatisfied OR group.
    Also returns one alternatives row per OR group resolved that way.
    """
    picks: list[str] = []
    alternatives: list[dict] = []

    for req in course.prereqs:
        if req not in satisfied and req not in picks:
            picks.append(req)

    for index, group in enumerate(course.prereq_any_of):
        if any(req in satisfied for req in group):
            continue
        pick = group[0]
        if pick not in picks:
            picks.append(pick)
        alternatives.append({
            "course": course.code,
            "group_index": index,
            "options": list(group),
            "pick": pick,
        })

    return picks, alternatives


def _walk_upstream(code, by_code, satisfied) -> tuple[set[str], list[dict]]:
    by_code = _by_code(by_code)
    satisfied_set = _as_code_set(satisfied)
    start = clean_code(code)
    if start is None or start not in by_code or start in satisfied_set:
        return set(), []

    needed: set[str] = set()
    alternatives: list[dict] = []
    visiting: set[str] = set()
    completed: set[str] = set()

    # Frames are (code, leaving). A leaving frame pops the code off the
    # current path once all of its picks have been expanded.
    stack: list[tuple[str, bool]] = [(start, False)]
    while stack:
        cur, leaving = stack.pop()
        if leaving:
            visiting.discard(cur)
            completed.add(cur)
            continue
        if cur in visiting or cur in completed:
            continue

        course = by_code.get(cur)
        if not isinstance(course, Course):
            course = _as_course(course)
        if course is None:
            # Dangling reference: still needed, nothing to expand.
            completed.add(cur)
            continue

        visiting.add(cur)
        stack.append((cur, True))

        picks, rows = _representative_picks(course, satisfied_set)
        alternatives.extend(rows)
        for req in reversed(picks):
            if req != start:
                needed.add(req)
            if req not in visiting and req not in completed:
                stack.append((req, False))

    return needed, alternatives


def upstream_closure(code, by_code, satisfied=None) -> set[str]:
    """
    Every code that must eventually be addressed to take `code`.

    AND entries are always followed. Each OR group not already satisfied by
    `satisfied` contributes only its first member, which is then expanded in
    turn. Codes in `satisfied` are neither returned nor expanded. Codes with
    no course record are returned but not expanded.

    The start code is never part of its own closure, so A <-> B gives
    upstream_closure("A") == {"B"}. Unknown start codes give an empty set.
    """
    needed, _ = _walk_upstream(code, by_code, satisfied)
    return needed


def open_alternatives(code, by_code, satisfied=None) -> list[dict]:
    """
    The OR groups upstream_closure resolved by picking the first member,
    in traversal order:

      [{"course": "MHF4U", "group_index": 0,
        "options": ["MCR3U", "MCT4C"], "pick": "MCR3U"}, ...]
    """
    _, alternatives = _walk_upstream(code, by_code, satisfied)
    return alternatives


def prereq_reach(code, by_code) -> set[str]:
    """
    Every code reachable through prerequisite edges of any kind, following
    all members of every OR group. Used for highlighting, not planning.
    """
    by_code = _by_code(by_code)
    start = clean_code(code)
    if start is None:
        return set()

    visited: set[str] = set()
    stack = [start]
    while stack:
        cur = stack.pop()
        course = _as_course(by_code.get(cur))
        if course is None:
            continue
        for req in direct_prereq_set(course):
            if req not in visited:
                visited.add(req)
                stack.append(req)
    return visited


# ── Downstream (what does this unlock) ────────────────────────────────────────

def downstream_closure(code, dependents) -> set[str]:
    """
    Every course that requires `code` directly or through intermediate
    courses. AND and OR edges are not distinguished. The start code only
    shows up if a cycle leads back to it.
    """
    dependents = _dependents(dependents)
    start = clean_code(code)
    if start is None:
        return set()

    visited: set[str] = set()
    stack = [start]
    while stack:
        cur = stack.pop()
        kids = dependents.get(cur)
        if not kids:
            continue
        for kid in kids:
            if kid not in visited:
                visited.add(kid)
                stack.append(kid)
    return visited


def direct_unlocks(code, index: CatalogIndex, limit: int | None = None) -> list[str]:
    """Courses that list `code` as a direct prerequisite, sorted."""
    dependents = _dependents(index)
    start = clean_code(code)
    if start is None:
        return []
    unlocked = sorted(dependents.get(start, ()))
    return unlocked if limit is None else unlocked[:limit]


def related_codes(code, index: CatalogIndex) -> set[str]:
    """The code itself, its direct prereqs and everything downstream of it."""
    start = clean_code(code)
    if start is None or start not in index.by_code:
        return set()
    related = {start}
    related |= direct_prereq_codes(index.by_code[start])
    related |= downstream_closure(start, index.dependents)
    return related


# ── Eligibility ───────────────────────────────────────────────────────────────

def is_eligible(course, satisfied) -> bool:
    """
    True iff every AND entry is in `satisfied` and every OR group has at
    least one member in `satisfied`. No prerequisites → True.
    """
    course = _as_course(course)
    if course is None:
        return True
    satisfied_set = _as_code_set(satisfied)

    if not all(req in satisfied_set for req in course.prereqs):
        return False
    for group in course.prereq_any_of:
        if not any(req in satisfied_set for req in group):
            return False
    return True


def missing_prereqs(course, satisfied) -> dict:
    """
    What stands between `satisfied` and eligibility for `course`.

    Returns: {"missing": ["MCR3U"], "unsatisfied_groups": [["ENG3U", "ENG3C"]]}
    Both lists keep declaration order and are empty when eligible.
    """
    course = _as_course(course)
    if course is None:
        return {"missing": [], "unsatisfied_groups": []}
    satisfied_set = _as_code_set(satisfied)
    return {
        "missing": [req for req in course.prereqs if req not in satisfied_set],
        "unsatisfied_groups": [
            list(group) for group in course.prereq_any_of
            if not any(req in satisfied_set for req in group)
        ],
    }


def eligible_courses(index: CatalogIndex, satisfied, include_satisfied: bool = False) -> list[str]:
    """
    Every catalog course whose prerequisites are met by `satisfied`, sorted
    by grade (ungraded last) then code. Courses already in `satisfied` are
    left out unless include_satisfied is set.
    """
    satisfied_set = _as_code_set(satisfied)
    out = []
    for code, course in index.by_code.items():
        if not include_satisfied and code in satisfied_set:
            continue
        if is_eligible(course, satisfied_set):
            out.append(code)
    return sorted(out, key=lambda c: _grade_sort_key(index.by_code.get(c), c))


# ── Presentation helpers ──────────────────────────────────────────────────────

def group_by_grade(codes, by_code) -> dict:
    """
    {11: ["MCR3U", "SPH3U"], 12: ["MHF4U"]} for codes with a course record.
    Grades ascend with ungraded (None) last; codes within a grade are sorted.
    """
    by_code = _by_code(by_code)
    grouped: dict = {}
    for code in sorted(_as_code_set(codes)):
        course = _as_course(by_code.get(code))
        if course is None:
            continue
        grouped.setdefault(course.grade, []).append(code)
    ordered_keys = sorted(grouped, key=lambda g: (g is None, g or 0))
    return {grade: grouped[grade] for grade in ordered_keys}


def describe_prereqs(course) -> str:
    """
    One-line prerequisite summary:
      "No prerequisites"
      "Prereqs: MCR3U, ENG3U"
      "Prereqs: MCR3U or MCT4C"
      "Prereqs: ENG3U + (MCR3U or MCT4C)"
    """
    course = _as_course(course)
    if course is None:
        return "No prerequisites"
    and_list = list(course.prereqs)
    groups = list(course.prereq_any_of)

    if not and_list and not groups:
        if course.prereq_unresolved and course.prereq_note:
            return f"Prereq: {course.prereq_note}"
        return "No prerequisites"

    if and_list and groups:
        parts = ", ".join(and_list)
        alts = " + ".join(f"({' or '.join(g)})" for g in groups)
        return f"Prereqs: {parts} + {alts}"
    if and_list:
        return f"Prereqs: {', '.join(and_list)}"
    if len(groups) == 1:
        return f"Prereqs: {' or '.join(groups[0])}"
    return "Prereqs: " + " + ".join(f"({' or '.join(g)})" for g in groups)


def build_prereq_check_string(course, completed, planned=None) -> str:
    """
    Returns a human-readable string showing which prereqs are satisfied and how.
    Examples:
      "MCR3U ✓"
      "ENG3U ✓; MCR3U (planned) ✓"
      "MCR3U ✓ (or MCT4C)"
    """
    course = _as_course(course)
    completed_set = _as_code_set(completed)
    planned_set = _as_code_set(planned)

    def label_code(code: str) -> str:
        if code in completed_set:
            return f"{code} ✓"
        if code in planned_set:
            return f"{code} (planned) ✓"
        return f"{code} ✗"

    if course is None or not course.has_prereqs:
        return "No prerequisites"

    parts = [label_code(req) for req in course.prereqs]
    for group in course.prereq_any_of:
        met = [c for c in group if c in completed_set or c in planned_set]
        if met:
            others = [c for c in group if c != met[0]]
            if others:
                parts.append(f"{label_code(met[0])} (or {' or '.join(others)})")
            else:
                parts.append(label_code(met[0]))
        else:
            parts.append(" or ".join(label_code(c) for c in group))
    return "; ".join(parts)
