import re
import pandas as pd
from courses import clean_code
from normalizer import normalize_code

# Case-insensitive OR splitter; token casing is left to clean_code()
OR_SPLIT = re.compile(r'\s+or\s+', re.IGNORECASE)
AND_SPLIT = re.compile(r'\s*(?:;|\band\b|&)\s*', re.IGNORECASE)

# Regex to strip parenthetical annotation clauses, e.g. "(or equivalent)"
ANNOTATION_RE = re.compile(r'\s*\([^)]*\)')

# Signals that a prerequisite cell is prose the engine can't evaluate.
UNSUPPORTED_SIGNALS = [
    "permission",
    "recommended",
    "equivalent",
    "consent",
    "principal",
    "teacher",
    "department",
    "any grade",
    "any university",
    "any college",
]

NONE_VALUES = {"none", "none listed", "n/a", "nan", ""}


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    return str(value).strip().lower() in NONE_VALUES


def _strip_annotations(s: str) -> str:
    """Remove parenthetical annotation clauses, e.g. '(or equivalent)'."""
    return ANNOTATION_RE.sub('', s).strip()


def _codes(tokens) -> list[str] | None:
    """Clean a token list. Returns None if any token isn't a single code."""
    out = []
    for tok in tokens:
        code = clean_code(tok)
        if not code:
            continue
        if not normalize_code(code) or normalize_code(code) != code:
            return None
        if code not in out:
            out.append(code)
    return out


def _unresolved(raw: str) -> dict:
    return {"prereqs": [], "prereq_any_of": [], "prereq_note": raw, "prereq_unresolved": True}


def parse_prereq_text(prereq_str) -> dict:
    """
    Parses a single prerequisite cell from a tabular catalog.

    Supported grammar:
      none / blank             → no prerequisites
      CODE                     → prereqs=[CODE]
      CODE; CODE               → prereqs=[CODE, CODE]          (AND)
      CODE or CODE             → prereq_any_of=[[CODE, CODE]]  (OR group)
      CODE or CODE; CODE       → one OR group plus one AND entry

    Parenthetical annotations are stripped first. Cells containing prose the
    engine can't evaluate come back with no structured prereqs,
    prereq_unresolved=True and the raw text kept in prereq_note.
    """
    if _is_blank(prereq_str):
        return {"prereqs": [], "prereq_any_of": [], "prereq_note": "", "prereq_unresolved": False}

    raw = str(prereq_str).strip()
    s = _strip_annotations(raw) if "(" in raw else raw
    if not s:
        return _unresolved(raw)

    s_lower = s.lower()
    for signal in UNSUPPORTED_SIGNALS:
        if signal in s_lower:
            return _unresolved(raw)

    and_list: list[str] = []
    groups: list[list[str]] = []
    for clause in AND_SPLIT.split(s):
        if not clause:
            continue
        group = _codes(OR_SPLIT.split(clause))
        if group is None:
            return _unresolved(raw)
        if len(group) == 1:
            if group[0] not in and_list:
                and_list.append(group[0])
        elif group:
            groups.append(group)

    if not and_list and not groups:
        return _unresolved(raw)
    return {"prereqs": and_list, "prereq_any_of": groups, "prereq_note": "", "prereq_unresolved": False}


def parse_code_list(value) -> list[str]:
    """'MCR3U, MCF3M' → ['MCR3U', 'MCF3M']. Blank → []."""
    if _is_blank(value):
        return []
    tokens = value if isinstance(value, (list, tuple)) else re.split(r'[,;]+', str(value))
    out = []
    for tok in tokens:
        code = normalize_code(tok)
        if code and code not in out:
            out.append(code)
    return out


def parse_group_list(value) -> list[list[str]]:
    """'MCR3U or MCF3M; ENG3U or ENG3C' → [['MCR3U', 'MCF3M'], ['ENG3U', 'ENG3C']]."""
    if _is_blank(value):
        return []
    groups = []
    for clause in str(value).split(";"):
        if not clause.strip():
            continue
        group = parse_code_list(OR_SPLIT.split(clause.strip()))
        if group:
            groups.append(group)
    return groups
