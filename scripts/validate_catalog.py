"""
Data-quality gate for a course catalog.

The graph engine tolerates imperfect data; this script is where problems get
surfaced before a catalog ships. Designed to be importable for tests and
runnable as a standalone CLI.

Usage:
    python scripts/validate_catalog.py
    python scripts/validate_catalog.py --path data/ontario_courses.json
    python scripts/validate_catalog.py --path catalog.xlsx --strict --no-sanitize
"""

import argparse
import os
import sys

BACKEND_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backend")
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

from catalog_index import build_index, direct_prereq_set  # noqa: E402
from data_loader import find_dangling_references, find_duplicate_codes, load_catalog  # noqa: E402


# ── Validation result ─────────────────────────────────────────────────────────

class ValidationResult:
    """Collects errors and warnings for a single catalog validation run."""

    def __init__(self, source: str):
        self.source = source
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def error(self, msg: str) -> None:
        self.errors.append(msg)

    def warn(self, msg: str) -> None:
        self.warnings.append(msg)

    @property
    def passed(self) -> bool:
        return len(self.errors) == 0

    def summary(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        lines = [f"[{status}] Catalog '{self.source}'"]
        for e in self.errors:
            lines.append(f"  [ERROR] {e}")
        for w in self.warnings:
            lines.append(f"  [WARN]  {w}")
        if self.passed and not self.warnings:
            lines.append("  All checks passed.")
        return "\n".join(lines)


# ── Individual checks ─────────────────────────────────────────────────────────

def find_cycles(by_code: dict) -> list[list[str]]:
    """
    Prerequisite cycles as code paths, e.g. [["A", "B", "A"]].

    Iterative DFS: a node on the current path (visiting) seen again closes a
    cycle; finished nodes are never re-entered.
    """
    visiting: set[str] = set()
    finished: set[str] = set()
    cycles: list[list[str]] = []

    for root in sorted(by_code):
        if root in finished:
            continue
        path: list[str] = []
        stack: list[tuple[str, bool]] = [(root, False)]
        while stack:
            cur, leaving = stack.pop()
            if leaving:
                visiting.discard(cur)
                finished.add(cur)
                path.pop()
                continue
            if cur in finished:
                continue
            if cur in visiting:
                continue
            visiting.add(cur)
            path.append(cur)
            stack.append((cur, True))
            course = by_code.get(cur)
            if course is None:
                continue
            for req in sorted(direct_prereq_set(course), reverse=True):
                if req in visiting:
                    start = path.index(req)
                    cycles.append(path[start:] + [req])
                elif req not in finished and req in by_code:
                    stack.append((req, False))
    return cycles


def check_cycles(by_code: dict, result: ValidationResult) -> None:
    """A course must never (transitively) require itself."""
    for cycle in find_cycles(by_code):
        result.error(f"Prerequisite cycle: {' -> '.join(cycle)}")


def check_grade9_prereqs(courses: list, result: ValidationResult) -> None:
    """Grade 9 courses have no prerequisites."""
    offenders = sorted(c.code for c in courses if c.grade == 9 and c.has_prereqs)
    if offenders:
        result.error(f"{len(offenders)} grade 9 course(s) list prerequisites: {offenders}")


def check_duplicates(courses: list, result: ValidationResult) -> None:
    duplicates = find_duplicate_codes(courses)
    if duplicates:
        result.warn(f"{len(duplicates)} duplicate code(s), last record wins: {duplicates}")


def check_dangling(courses: list, result: ValidationResult) -> None:
    for missing, referrers in sorted(find_dangling_references(courses).items()):
        result.warn(f"{missing} is referenced by {referrers} but has no course record.")


def check_grade_order(by_code: dict, result: ValidationResult) -> None:
    """A prerequisite should come from an earlier grade than the course itself."""
    for code in sorted(by_code):
        course = by_code[code]
        if course.grade is None:
            continue
        for req in sorted(direct_prereq_set(course)):
            prereq = by_code.get(req)
            if prereq is not None and prereq.grade is not None and prereq.grade >= course.grade:
                result.warn(
                    f"{code} (grade {course.grade}) requires {req} (grade {prereq.grade})."
                )


def validate_catalog(courses: list, source: str = "catalog") -> ValidationResult:
    result = ValidationResult(source)
    index = build_index(courses)
    check_cycles(index.by_code, result)
    check_grade9_prereqs(courses, result)
    check_duplicates(courses, result)
    check_dangling(courses, result)
    check_grade_order(index.by_code, result)
    return result


# ── CLI entry point ───────────────────────────────────────────────────────────

def main(args=None):
    parser = argparse.ArgumentParser(
        description="Validate a course catalog before publishing it.",
    )
    parser.add_argument(
        "--path", type=str,
        default=os.path.join(os.path.dirname(__file__), "..", "data", "ontario_courses.json"),
        help="Path to the catalog file (.json, .csv or .xlsx).",
    )
    parser.add_argument("--strict", action="store_true", help="Fail on warnings as well as errors.")
    parser.add_argument(
        "--no-sanitize", action="store_true",
        help="Check the raw records (grade 9 prereqs are not cleared, no OR heuristic).",
    )
    opts = parser.parse_args(args)

    try:
        data = load_catalog(opts.path, sanitize=not opts.no_sanitize)
    except (OSError, ValueError) as exc:
        print(f"[FATAL] Could not load catalog {opts.path}: {exc}", file=sys.stderr)
        return 2

    result = validate_catalog(data["courses"], source=os.path.basename(opts.path))
    print(result.summary())

    if not result.passed:
        return 1
    if opts.strict and result.warnings:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
