from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Mapping

VALID_GRADES = (9, 10, 11, 12)


@dataclass(frozen=True)
class Course:
    """
    A catalog course. Prerequisite fields are always tuples (possibly empty):

      prereqs        AND list: ("MCR3U", "MHF4U") means both are required
      prereq_any_of  OR groups: (("MCR3U", "MCF3M"),) means either one

    prereq_any_of is a conjunction of disjunctions: every group must have
    at least one member satisfied.
    """

    code: str
    name: str = ""
    grade: int | None = None
    level: str = ""
    subject: str = ""
    prereqs: tuple[str, ...] = ()
    prereq_any_of: tuple[tuple[str, ...], ...] = ()
    prereq_note: str = ""
    prereq_unresolved: bool = False
    extra: Mapping = field(default_factory=dict, compare=False, repr=False)

    @property
    def has_prereqs(self) -> bool:
        return bool(self.prereqs or self.prereq_any_of)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "grade": self.grade,
            "level": self.level,
            "subject": self.subject,
            "prereqs": list(self.prereqs),
            "prereq_any_of": [list(g) for g in self.prereq_any_of],
            "prereq_note": self.prereq_note,
            "prereq_unresolved": self.prereq_unresolved,
        }


_KNOWN_KEYS = {
    "code", "name", "grade", "level", "subject",
    "prereqs", "prereq_any_of", "prereqAnyOf",
    "prereq_note", "prereq_unresolved",
}


def clean_code(raw) -> str | None:
    """Upper-case and strip an opaque code. Non-strings and blanks give None."""
    if not isinstance(raw, str):
        return None
    s = raw.strip().upper()
    return s or None


def _clean_code_list(raw) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    out: list[str] = []
    for item in raw:
        code = clean_code(item)
        if code and code not in out:
            out.append(code)
    return tuple(out)


def _clean_groups(raw) -> tuple[tuple[str, ...], ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    groups = []
    for group in raw:
        cleaned = _clean_code_list(group)
        if cleaned:
            groups.append(cleaned)
    return tuple(groups)


def coerce_grade(raw) -> int | None:
    """'11', 11, 11.0 → 11. Anything outside 9..12 → None."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = int(float(str(raw).strip()))
    except (TypeError, ValueError):
        return None
    return value if value in VALID_GRADES else None


def _text(raw) -> str:
    if raw is None:
        return ""
    if isinstance(raw, float) and raw != raw:  # NaN from pandas
        return ""
    return str(raw).strip()


def course_from_record(record, require_code: bool = True) -> Course | None:
    """
    Build a Course from a deserialized record (dict) or pass a Course through.

    Missing or malformed prerequisite fields become empty tuples. Records
    without a usable code return None, unless require_code is False, in which
    case the code is left empty and the prerequisites are still read.
    """
    if isinstance(record, Course):
        return record
    if not isinstance(record, Mapping):
        return None

    code = clean_code(record.get("code"))
    if code is None:
        if require_code:
            return None
        code = ""

    any_of = record.get("prereq_any_of")
    if any_of is None:
        any_of = record.get("prereqAnyOf")

    return Course(
        code=code,
        name=_text(record.get("name")),
        grade=coerce_grade(record.get("grade")),
        level=_text(record.get("level")),
        subject=_text(record.get("subject")),
        prereqs=_clean_code_list(record.get("prereqs")),
        prereq_any_of=_clean_groups(any_of),
        prereq_note=_text(record.get("prereq_note")),
        prereq_unresolved=bool(record.get("prereq_unresolved") or False),
        extra={k: v for k, v in record.items() if k not in _KNOWN_KEYS},
    )


def coerce_courses(records) -> list[Course]:
    """Normalize any iterable of records, silently skipping unusable ones."""
    if records is None:
        return []
    out = []
    for record in records:
        course = course_from_record(record)
        if course is not None:
            out.append(course)
    return out
