import os
import sys
import time
import threading
import hashlib
import json
from collections import OrderedDict

# Ensure backend/ is on sys.path so sibling imports work
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pandas as pd
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv

from normalizer import normalize_code, normalize_input
from catalog_index import build_index
from data_loader import load_catalog, merge_custom_courses
from prereq_resolver import (
    build_prereq_check_string,
    describe_prereqs,
    direct_prereq_codes,
    direct_unlocks,
    downstream_closure,
    eligible_courses,
    group_by_grade,
    is_eligible,
    missing_prereqs,
    open_alternatives,
    related_codes,
    upstream_closure,
)

load_dotenv()

app = Flask(__name__)

# ── Paths ─────────────────────────────────────────────────────────────────────
BACKEND_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BACKEND_DIR)
_DEFAULT_DATA_PATH = os.path.join(PROJECT_ROOT, "data", "ontario_courses.json")
_env_data_path = os.environ.get("DATA_PATH")
if not _env_data_path:
    DATA_PATH = _DEFAULT_DATA_PATH
elif not os.path.isabs(_env_data_path):
    DATA_PATH = os.path.join(PROJECT_ROOT, _env_data_path)
else:
    DATA_PATH = _env_data_path
_data_lock = threading.Lock()
_data_mtime = None


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.environ.get(name, "")
    try:
        return max(minimum, float(raw))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name, "")
    try:
        return max(minimum, int(raw))
    except (TypeError, ValueError):
        return default


_SLOW_REQUEST_LOG_MS = _env_float("SLOW_REQUEST_LOG_MS", 750.0, minimum=0.0)
_REQUEST_CACHE_SIZE = _env_int("REQUEST_CACHE_SIZE", 128, minimum=1)


class _LruResponseCache:
    """Thread-safe bounded in-memory cache for JSON-serializable responses."""

    def __init__(self, max_size: int):
        self.max_size = max(1, int(max_size))
        self._lock = threading.Lock()
        self._items: OrderedDict[str, dict] = OrderedDict()

    def get(self, key: str):
        with self._lock:
            if key not in self._items:
                return None
            value = self._items.pop(key)
            self._items[key] = value
            return value

    def set(self, key: str, value: dict) -> None:
        with self._lock:
            if key in self._items:
                self._items.pop(key)
            self._items[key] = value
            while len(self._items) > self.max_size:
                self._items.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


_pathway_response_cache = _LruResponseCache(_REQUEST_CACHE_SIZE)
_can_take_response_cache = _LruResponseCache(_REQUEST_CACHE_SIZE)


def _cache_enabled() -> bool:
    return not app.config.get("TESTING", False)


def _stable_payload_hash(payload) -> str:
    normalized = payload if payload is not None else {}
    encoded = json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
    ).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def _data_version_tag() -> str:
    return "none" if _data_mtime is None else str(_data_mtime)


def _request_cache_key(prefix: str, payload) -> str:
    return f"{prefix}:{_data_version_tag()}:{_stable_payload_hash(payload)}"


def _clear_request_caches() -> None:
    _pathway_response_cache.clear()
    _can_take_response_cache.clear()


def _data_file_mtime(path: str):
    try:
        return os.path.getmtime(path)
    except OSError:
        return None


# ── Startup data load ──────────────────────────────────────────────────────────
try:
    _data = load_catalog(DATA_PATH)
    _data_mtime = _data_file_mtime(DATA_PATH)
    print(f"[OK] Loaded {len(_data['catalog_codes'])} courses from {DATA_PATH}")
except FileNotFoundError:
    # A stale DATA_PATH falls back to the bundled Ontario catalog.
    if DATA_PATH != _DEFAULT_DATA_PATH and os.path.exists(_DEFAULT_DATA_PATH):
        print(
            f"[WARN] No catalog at DATA_PATH ({DATA_PATH}); "
            f"serving the bundled Ontario catalog instead ({_DEFAULT_DATA_PATH}).",
            file=sys.stderr,
        )
        DATA_PATH = _DEFAULT_DATA_PATH
        _data = load_catalog(DATA_PATH)
        _data_mtime = _data_file_mtime(DATA_PATH)
        print(f"[OK] Loaded {len(_data['catalog_codes'])} courses from {DATA_PATH}")
    else:
        print(f"[FATAL] Catalog file not found: {DATA_PATH}", file=sys.stderr)
        sys.exit(1)
except Exception as exc:
    print(f"[FATAL] Failed to load catalog: {exc}", file=sys.stderr)
    sys.exit(1)

_index = build_index(_data["courses"])


def _reload_data_if_changed(force: bool = False) -> bool:
    """
    Hot-reload the catalog when DATA_PATH changes on disk.

    The index is rebuilt wholesale from the new course list.
    Returns True when a reload occurred, else False.
    """
    global _data, _index, _data_mtime

    candidate_mtime = _data_file_mtime(DATA_PATH)
    if not force:
        if candidate_mtime is None:
            return False
        if _data_mtime is not None and candidate_mtime <= _data_mtime:
            return False

    with _data_lock:
        latest_mtime = _data_file_mtime(DATA_PATH)
        if not force:
            if latest_mtime is None:
                return False
            if _data_mtime is not None and latest_mtime <= _data_mtime:
                return False

        try:
            new_data = load_catalog(DATA_PATH)
            new_index = build_index(new_data["courses"])
        except Exception as exc:
            print(f"[WARN] Catalog reload failed; keeping previous catalog: {exc}", file=sys.stderr)
            return False

        _data = new_data
        _index = new_index
        _data_mtime = latest_mtime if latest_mtime is not None else candidate_mtime
        _clear_request_caches()
        print(f"[OK] Reloaded {len(new_data['catalog_codes'])} courses from {DATA_PATH}")
        return True


def _refresh_data_if_needed() -> None:
    try:
        _reload_data_if_changed()
    except Exception as exc:
        print(f"[WARN] Catalog reload check failed: {exc}", file=sys.stderr)


# -- Security headers ------------------------------------------------------
@app.before_request
def _start_request_timer():
    g._request_start_time = time.perf_counter()


@app.after_request
def _add_security_headers(response):
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "same-origin"

    started = getattr(g, "_request_start_time", None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000.0
        if duration_ms >= _SLOW_REQUEST_LOG_MS:
            endpoint = request.endpoint or "unknown"
            print(
                f"[SLOW] {request.method} {request.path} "
                f"endpoint={endpoint} status={response.status_code} duration_ms={duration_ms:.1f}"
            )
    return response


# -- Helpers ------------------------------------------------------------------
def _error_response(error_code: str, message: str, status: int):
    return jsonify({
        "mode": "error",
        "error": {
            "error_code": error_code,
            "message": message,
        },
    }), status


def _coerce_course_list(raw_value) -> str:
    if raw_value is None:
        return ""
    if isinstance(raw_value, (list, tuple)):
        return ", ".join(str(v) for v in raw_value if v is not None)
    return str(raw_value)


def _request_catalog(body: dict):
    """
    Courses and index for one request. Custom courses in the body are merged
    into the catalog and the index is rebuilt; otherwise the shared snapshot
    is used as-is. Custom codes that clash with catalog codes are skipped
    and returned as the third element.
    """
    custom = body.get("custom_courses") if body else None
    if not isinstance(custom, list) or not custom:
        return _data["courses"], _index, []
    courses, conflicts = merge_custom_courses(_data["courses"], custom)
    return courses, build_index(courses), conflicts


def _normalized_codes(body: dict, field: str, catalog_codes: set) -> dict:
    return normalize_input(_coerce_course_list(body.get(field)), catalog_codes)


def _input_warnings(*results, custom_conflicts=None) -> dict:
    invalid: list[str] = []
    not_in_catalog: list[str] = []
    for result in results:
        invalid.extend(result["invalid"])
        not_in_catalog.extend(result["not_in_catalog"])
    return {
        "invalid": invalid,
        "not_in_catalog": not_in_catalog,
        "custom_conflicts": list(custom_conflicts or []),
    }


# ── 500 handler ────────────────────────────────────────────────────────────────
@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return _error_response(e.name.upper().replace(" ", "_"), e.description, e.code)
    print(f"[ERROR] {request.method} {request.path}: {type(e).__name__}: {e}", file=sys.stderr)
    return _error_response("SERVER_ERROR", "An unexpected server error occurred.", 500)


# -- Health endpoint --------------------------------------------------------
@app.route("/health", methods=["GET"])
def health_endpoint():
    return jsonify({
        "status": "ok",
        "version": "1.0.0",
        "courses": len(_data["catalog_codes"]) if _data else 0,
    })


# ── Routes ─────────────────────────────────────────────────────────────────────
def get_courses():
    _refresh_data_if_needed()
    df = _data["courses_df"].copy()

    grade_raw = request.args.get("grade")
    if grade_raw not in (None, ""):
        try:
            grade = int(grade_raw)
        except ValueError:
            return _error_response("INVALID_INPUT", "grade must be an integer (9-12).", 400)
        df = df[df["grade"] == grade]

    subject = (request.args.get("subject") or "").strip().lower()
    if subject:
        df = df[df["subject"].astype(str).str.lower() == subject]

    # Convert to object dtype so None survives instead of being re-coerced to NaN.
    df = df.astype(object).where(pd.notna(df), None)
    return jsonify({"courses": df.to_dict(orient="records")})


def get_course(code):
    _refresh_data_if_needed()
    normalized = normalize_code(code)
    course = _index.by_code.get(normalized) if normalized else None
    if course is None:
        return _error_response("NOT_FOUND", f"{code} is not in the course catalog.", 404)
    return jsonify({
        "course": course.to_dict(),
        "direct_prereqs": sorted(direct_prereq_codes(course)),
        "prereq_text": describe_prereqs(course),
        "direct_unlocks": direct_unlocks(course.code, _index),
    })


def get_course_unlocks(code):
    _refresh_data_if_needed()
    normalized = normalize_code(code)
    if not normalized or normalized not in _index.by_code:
        return _error_response("NOT_FOUND", f"{code} is not in the course catalog.", 404)
    return jsonify({
        "course": normalized,
        "direct_unlocks": direct_unlocks(normalized, _index),
        "unlocks": sorted(downstream_closure(normalized, _index.dependents)),
    })


def get_course_related(code):
    _refresh_data_if_needed()
    normalized = normalize_code(code)
    if not normalized or normalized not in _index.by_code:
        return _error_response("NOT_FOUND", f"{code} is not in the course catalog.", 404)
    return jsonify({
        "course": normalized,
        "related": sorted(related_codes(normalized, _index)),
    })


def can_take_endpoint():
    """Eligibility check for a single course against completed + planned courses."""
    _refresh_data_if_needed()

    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict) or not body:
        return _error_response("INVALID_INPUT", "Request body must be a JSON object.", 400)

    requested_raw = str(body.get("requested_course") or "").strip()
    if not requested_raw:
        return _error_response("INVALID_INPUT", "requested_course is required.", 400)

    cache_key = _request_cache_key("can_take", body)
    if _cache_enabled():
        cached = _can_take_response_cache.get(cache_key)
        if cached is not None:
            return jsonify(cached)

    _, index, conflicts = _request_catalog(body)
    catalog_codes = index.catalog_codes
    requested = normalize_code(requested_raw)

    if not requested or requested not in catalog_codes:
        response_payload = {
            "mode": "can_take",
            "requested_course": requested or requested_raw,
            "can_take": False,
            "why_not": f"{requested or requested_raw} is not in the course catalog.",
            "missing_prereqs": [],
            "unsatisfied_groups": [],
            "prereq_check": "",
            "input_warnings": _input_warnings(custom_conflicts=conflicts),
        }
    else:
        comp_result = _normalized_codes(body, "completed_courses", catalog_codes)
        plan_result = _normalized_codes(body, "planned_courses", catalog_codes)
        completed = comp_result["valid"]
        planned = plan_result["valid"]

        course = index.by_code[requested]
        satisfied = set(completed) | set(planned)
        can_take = is_eligible(course, satisfied)
        missing = missing_prereqs(course, satisfied)
        why_not = None
        if not can_take:
            pieces = list(missing["missing"])
            pieces += [" or ".join(group) for group in missing["unsatisfied_groups"]]
            why_not = f"Missing prerequisites: {'; '.join(pieces)}."

        response_payload = {
            "mode": "can_take",
            "requested_course": requested,
            "can_take": can_take,
            "why_not": why_not,
            "missing_prereqs": missing["missing"],
            "unsatisfied_groups": missing["unsatisfied_groups"],
            "prereq_text": describe_prereqs(course),
            "prereq_check": build_prereq_check_string(course, completed, planned),
            "input_warnings": _input_warnings(comp_result, plan_result, custom_conflicts=conflicts),
        }

    if _cache_enabled():
        _can_take_response_cache.set(cache_key, response_payload)
    return jsonify(response_payload)


def pathway_endpoint():
    """What a student still needs for a target course, and what is open now."""
    _refresh_data_if_needed()

    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict) or not body:
        return _error_response("INVALID_INPUT", "Request body must be a JSON object.", 400)

    target_raw = str(body.get("target_course") or "").strip()
    if not target_raw:
        return _error_response("INVALID_INPUT", "target_course is required.", 400)

    cache_key = _request_cache_key("pathway", body)
    if _cache_enabled():
        cached = _pathway_response_cache.get(cache_key)
        if cached is not None:
            return jsonify(cached)

    _, index, conflicts = _request_catalog(body)
    catalog_codes = index.catalog_codes
    target = normalize_code(target_raw)
    if not target or target not in catalog_codes:
        return _error_response("NOT_FOUND", f"{target or target_raw} is not in the course catalog.", 404)

    comp_result = _normalized_codes(body, "completed_courses", catalog_codes)
    completed = comp_result["valid"]

    needed = upstream_closure(target, index.by_code, completed)
    by_grade = group_by_grade(needed, index.by_code)

    response_payload = {
        "mode": "pathway",
        "target_course": target,
        "target_eligible": is_eligible(index.by_code[target], completed),
        "needed": sorted(needed),
        "needed_by_grade": [
            {"grade": grade, "courses": codes} for grade, codes in by_grade.items()
        ],
        "unknown_codes": sorted(c for c in needed if c not in catalog_codes),
        "alternatives": open_alternatives(target, index.by_code, completed),
        "unlocked": eligible_courses(index, completed),
        "input_warnings": _input_warnings(comp_result, custom_conflicts=conflicts),
    }

    if _cache_enabled():
        _pathway_response_cache.set(cache_key, response_payload)
    return jsonify(response_payload)


def unlocked_endpoint():
    """Every course the completed set currently qualifies for."""
    _refresh_data_if_needed()

    body = request.get_json(force=True, silent=True)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        return _error_response("INVALID_INPUT", "Request body must be a JSON object.", 400)

    _, index, conflicts = _request_catalog(body)
    comp_result = _normalized_codes(body, "completed_courses", index.catalog_codes)
    completed = comp_result["valid"]

    unlocked = eligible_courses(index, completed)
    return jsonify({
        "mode": "unlocked",
        "completed": completed,
        "unlocked": unlocked,
        "unlocked_by_grade": [
            {"grade": grade, "courses": codes}
            for grade, codes in group_by_grade(unlocked, index.by_code).items()
        ],
        "input_warnings": _input_warnings(comp_result, custom_conflicts=conflicts),
    })


app.add_url_rule("/api/health", endpoint="api_health", view_func=health_endpoint, methods=["GET"])
app.add_url_rule("/api/courses", endpoint="api_courses", view_func=get_courses, methods=["GET"])
app.add_url_rule("/api/courses/<code>", endpoint="api_course", view_func=get_course, methods=["GET"])
app.add_url_rule("/api/courses/<code>/unlocks", endpoint="api_course_unlocks", view_func=get_course_unlocks, methods=["GET"])
app.add_url_rule("/api/courses/<code>/related", endpoint="api_course_related", view_func=get_course_related, methods=["GET"])
app.add_url_rule("/api/can-take", endpoint="api_can_take", view_func=can_take_endpoint, methods=["POST"])
app.add_url_rule("/api/pathway", endpoint="api_pathway", view_func=pathway_endpoint, methods=["POST"])
app.add_url_rule("/api/unlocked", endpoint="api_unlocked", view_func=unlocked_endpoint, methods=["POST"])


# -- API catch-all (404 for unknown /api/* routes) -------------------
@app.route("/api/<path:rest>", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
def api_catch_all(rest):
    return _error_response("NOT_FOUND", f"/api/{rest} not found", 404)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
