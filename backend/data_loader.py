import json
import os
import sys
from collections import Counter
from dataclasses import replace

import pandas as pd

from courses import Course, coerce_courses, coerce_grade, course_from_record
from catalog_index import direct_prereq_set
from normalizer import normalize_code
from prereq_parser import parse_code_list, parse_group_list, parse_prereq_text


_BOOL_TRUTHY = {"true", "1", "yes", "y"}
_COLUMN_ALIASES = {
    "course_code": "code",
    "course_name": "name",
    "prereqanyof": "prereq_any_of",
    "prereq_hard": "prereq",
    "prerequisite": "prereq",
    "prerequisites": "prereq",
}


def env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _BOOL_TRUTHY


def _cell(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]
    rename_map = {
        src: dst for src, dst in _COLUMN_ALIASES.items()
        if src in df.columns and dst not in df.columns
    }
    if rename_map:
        df = df.rename(columns=rename_map)
    if "code" not in df.columns:
        raise ValueError("Catalog sheet has no 'code' column.")
    return df


def _records_from_frame(df: pd.DataFrame) -> list[dict]:
    """Turn a tabular catalog into course records with structured prereqs."""
    df = _normalize_columns(df)
    has_split_cols = "prereqs" in df.columns or "prereq_any_of" in df.columns

    records = []
    for _, row in df.iterrows():
        record = {
            "code": _cell(row.get("code")),
            "name": _cell(row.get("name")),
            "grade": row.get("grade"),
            "level": _cell(row.get("level")),
            "subject": _cell(row.get("subject")),
        }
        if has_split_cols:
            record["prereqs"] = parse_code_list(row.get("prereqs"))
            record["prereq_any_of"] = parse_group_list(row.get("prereq_any_of"))
        else:
            record.update(parse_prereq_text(row.get("prereq")))
        records.append(record)
    return records


def _read_records(path: str) -> list:
    ext = os.path.splitext(path)[1].lower()
    if ext == ".json":
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, dict):
            data = data.get("courses")
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a list of courses or {{\"courses\": [...]}}.")
        return data
    if ext == ".csv":
        return _records_from_frame(pd.read_csv(path, dtype=str, keep_default_na=False))
    if ext in (".xlsx", ".xls"):
        xl = pd.ExcelFile(path)
        sheet = "courses" if "courses" in xl.sheet_names else xl.sheet_names[0]
        return _records_from_frame(xl.parse(sheet))
    raise ValueError(f"Unsupported catalog format: {path!r}")


def sanitize_courses(courses: list[Course], or_heuristic: bool = True) -> tuple[list[Course], dict]:
    """
    Clean up common catalog issues without touching the file on disk.

      - Grade 9 courses never have prerequisites.
      - With or_heuristic, several AND prereqs and no OR groups are read as
        one OR group (Ontario listings are almost always "this or that").

    Returns (sanitized_courses, {"grade9_cleared": [...], "and_to_or": [...]}).
    """
    cleaned: list[Course] = []
    report = {"grade9_cleared": [], "and_to_or": []}

    for c in courses:
        if c.grade == 9:
            if c.has_prereqs or c.prereq_unresolved:
                report["grade9_cleared"].append(c.code)
            cleaned.append(replace(
                c, prereqs=(), prereq_any_of=(), prereq_note="", prereq_unresolved=False,
            ))
            continue
        if or_heuristic and len(c.prereqs) > 1 and not c.prereq_any_of:
            report["and_to_or"].append(c.code)
            cleaned.append(replace(c, prereqs=(), prereq_any_of=(tuple(c.prereqs),)))
            continue
        cleaned.append(c)

    return cleaned, report


def find_duplicate_codes(courses: list[Course]) -> list[str]:
    counts = Counter(c.code for c in courses)
    return sorted(code for code, n in counts.items() if n > 1)


def find_dangling_references(courses: list[Course]) -> dict[str, list[str]]:
    """{"MISSING1": ["COURSE_A", ...]} for referenced codes with no course record."""
    known = {c.code for c in courses}
    dangling: dict[str, list[str]] = {}
    for c in courses:
        for req in sorted(direct_prereq_set(c)):
            if req not in known:
                dangling.setdefault(req, []).append(c.code)
    return dangling


def normalize_custom_course(record) -> Course | None:
    """
    User-defined course: code and name are required, subject defaults to
    "other", grade and level are optional, prereqs may be a comma-separated
    string. Codes go through normalize_code so request lookups find them.
    """
    if not isinstance(record, dict):
        return None
    code = normalize_code(record.get("code"))
    name = str(record.get("name") or "").strip()
    if not code or not name:
        return None
    groups = record.get("prereq_any_of")
    if groups is None:
        groups = record.get("prereqAnyOf")
    if isinstance(groups, str):
        groups = parse_group_list(groups)
    elif isinstance(groups, (list, tuple)):
        groups = [parse_code_list(g) for g in groups if isinstance(g, (list, tuple))]
    else:
        groups = []
    return course_from_record({
        "code": code,
        "name": name,
        "subject": record.get("subject") or "other",
        "level": record.get("level") or "",
        "grade": coerce_grade(record.get("grade")),
        "prereqs": parse_code_list(record.get("prereqs")),
        "prereq_any_of": groups,
    })


def merge_custom_courses(courses: list[Course], custom_records, or_heuristic: bool | None = None) -> tuple[list[Course], list[str]]:
    """
    Append valid custom courses to the catalog.

    A custom course never replaces a catalog course: records whose code is
    already taken are skipped and returned as conflicts. Custom courses get
    the same sanitizing as catalog records.

    Returns (merged_courses, conflicting_codes).
    """
    if not isinstance(custom_records, list) or not custom_records:
        return list(courses), []
    if or_heuristic is None:
        or_heuristic = env_flag("OR_HEURISTIC", True)

    taken = {c.code for c in courses}
    custom: list[Course] = []
    conflicts: list[str] = []
    for record in custom_records:
        course = normalize_custom_course(record)
        if course is None:
            continue
        if course.code in taken:
            if course.code not in conflicts:
                conflicts.append(course.code)
            continue
        taken.add(course.code)
        custom.append(course)

    custom, _ = sanitize_courses(custom, or_heuristic=or_heuristic)
    return list(courses) + custom, conflicts


def courses_frame(courses: list[Course]) -> pd.DataFrame:
    """Catalog as a DataFrame sorted by grade (ungraded last) then code."""
    cols = ["code", "name", "grade", "level", "subject", "prereqs", "prereq_any_of"]
    if not courses:
        return pd.DataFrame(columns=cols)
    df = pd.DataFrame([c.to_dict() for c in courses])[cols]
    df = df.drop_duplicates(subset=["code"], keep="last")
    df["grade"] = pd.to_numeric(df["grade"], errors="coerce")
    df = df.sort_values(["grade", "code"], na_position="last").reset_index(drop=True)
    df["grade"] = pd.Series(
        [int(v) if pd.notna(v) else None for v in df["grade"]],
        index=df.index,
        dtype=object,
    )
    return df


def load_catalog(data_path: str, or_heuristic: bool | None = None, sanitize: bool = True) -> dict:
    """
    Load, normalize and sanitize a course catalog. Raises on file/format errors.

    sanitize=False keeps the records as written (no grade 9 clean-up, no OR
    heuristic), which is what the catalog validator wants to look at.
    """
    if or_heuristic is None:
        or_heuristic = env_flag("OR_HEURISTIC", True)

    if not os.path.isfile(data_path):
        raise FileNotFoundError(data_path)

    raw_records = _read_records(data_path)
    print(f"[INFO] Catalog source: {os.path.basename(data_path)} ({len(raw_records)} records)")

    courses = coerce_courses(raw_records)
    skipped = len(raw_records) - len(courses)
    if skipped:
        print(f"[WARN] {skipped} record(s) skipped: missing course code", file=sys.stderr)

    if sanitize:
        courses, report = sanitize_courses(courses, or_heuristic=or_heuristic)
    else:
        report = {"grade9_cleared": [], "and_to_or": []}

    # ── Integrity checks (reported, never raised) ──────────────────────────
    if report["grade9_cleared"]:
        print(f"[WARN] {len(report['grade9_cleared'])} grade 9 course(s) had prereqs, cleared: {report['grade9_cleared']}")
    if report["and_to_or"]:
        print(f"[INFO] {len(report['and_to_or'])} course(s) with several prereqs read as alternatives: {report['and_to_or']}")

    duplicates = find_duplicate_codes(courses)
    if duplicates:
        print(f"[WARN] {len(duplicates)} duplicate course code(s), last record wins: {duplicates}")

    dangling = find_dangling_references(courses)
    if dangling:
        print(f"[WARN] {len(dangling)} prerequisite code(s) not found in catalog: {sorted(dangling)}")

    unresolved = sorted(c.code for c in courses if c.prereq_unresolved)
    if unresolved:
        print(f"[WARN] {len(unresolved)} course(s) have unparsed prereq text (shown as notes): {unresolved}")

    return {
        "courses": courses,
        "courses_df": courses_frame(courses),
        "catalog_codes": {c.code for c in courses},
        "sanitize_report": report,
        "duplicates": duplicates,
        "dangling": dangling,
    }
