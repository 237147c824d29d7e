import re

# Ontario codes look like ENG4U, MHF4U, SPH3U, ICS2O; custom courses may use
# any short alphanumeric code (optionally hyphenated).
CANONICAL = re.compile(r'^[A-Z0-9][A-Z0-9\-]{1,15}$')


def normalize_code(raw) -> str | None:
    """
    Normalizes a course code to its canonical upper-case form.
    Handles: 'eng4u', ' ENG4U ', 'Mhf4U', 'CUSTOM-1'
    Returns None if the value is empty or not shaped like a course code.
    """
    if raw is None:
        return None
    s = str(raw).strip().upper()
    if not s:
        return None
    s = re.sub(r'\s+', '', s)
    if CANONICAL.match(s):
        return s
    return None


def split_course_list(raw) -> list[str]:
    """Split a comma/newline/semicolon string (or a list) into raw tokens."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set)):
        return [str(t).strip() for t in raw if t is not None and str(t).strip()]
    return [t.strip() for t in re.split(r'[,\n;]+', str(raw)) if t.strip()]


def normalize_input(raw, catalog_codes: set) -> dict:
    """
    Splits comma/newline/semicolon-separated input and normalizes each code.

    Returns:
      {
        "valid":          ["ENG3U", "MCR3U"],   # normalized + found in catalog
        "invalid":        ["???"],              # not shaped like a code
        "not_in_catalog": ["XYZ9Z"]             # valid format but unknown course
      }
    """
    valid = []
    invalid = []
    not_in_catalog = []
    seen: set[str] = set()

    for token in split_course_list(raw):
        normalized = normalize_code(token)
        if normalized is None:
            if token not in seen:
                invalid.append(token)
                seen.add(token)
        elif normalized in seen:
            pass  # deduplicate silently
        elif normalized not in catalog_codes:
            not_in_catalog.append(normalized)
            seen.add(normalized)
        else:
            valid.append(normalized)
            seen.add(normalized)

    return {"valid": valid, "invalid": invalid, "not_in_catalog": not_in_catalog}
