import json

import pandas as pd
import pytest
from conftest import SAMPLE_CATALOG
from courses import Course, course_from_record
from data_loader import (
    courses_frame,
    find_dangling_references,
    find_duplicate_codes,
    load_catalog,
    merge_custom_courses,
    normalize_custom_course,
    sanitize_courses,
)


def _write_json(tmp_path, payload, name="catalog.json"):
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


class TestLoadCatalogJson:
    def test_sample_catalog(self):
        data = load_catalog(SAMPLE_CATALOG)
        assert len(data["courses"]) == 25
        assert "MHF4U" in data["catalog_codes"]
        assert data["duplicates"] == []
        assert data["dangling"] == {}

    def test_bare_list(self, tmp_path):
        path = _write_json(tmp_path, [{"code": "a1"}, {"code": "B2", "prereqs": ["A1"]}])
        data = load_catalog(path)
        assert data["catalog_codes"] == {"A1", "B2"}

    def test_not_a_list(self, tmp_path):
        path = _write_json(tmp_path, {"nope": 1})
        with pytest.raises(ValueError):
            load_catalog(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_catalog(str(tmp_path / "missing.json"))

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "catalog.txt"
        path.write_text("ENG4U", encoding="utf-8")
        with pytest.raises(ValueError):
            load_catalog(str(path))

    def test_warnings_printed(self, tmp_path, capsys):
        path = _write_json(tmp_path, [
            {"code": "A", "grade": 9, "prereqs": ["Z"]},
            {"code": "B", "grade": 10, "prereqs": ["GHOST"]},
            {"code": "B", "grade": 10},
        ])
        data = load_catalog(path)
        out = capsys.readouterr().out
        assert "[WARN]" in out
        assert data["duplicates"] == ["B"]
        assert data["sanitize_report"]["grade9_cleared"] == ["A"]
        assert "GHOST" in data["dangling"]

    def test_or_heuristic_from_env(self, tmp_path, monkeypatch):
        path = _write_json(tmp_path, [{"code": "X", "grade": 11, "prereqs": ["A", "B"]}])
        monkeypatch.setenv("OR_HEURISTIC", "false")
        course = load_catalog(path)["courses"][0]
        assert course.prereqs == ("A", "B")

    def test_sanitize_off(self, tmp_path):
        path = _write_json(tmp_path, [{"code": "A", "grade": 9, "prereqs": ["Z"]}])
        course = load_catalog(path, sanitize=False)["courses"][0]
        assert course.prereqs == ("Z",)


class TestLoadCatalogTabular:
    def test_csv_single_prereq_column(self, tmp_path):
        path = tmp_path / "catalog.csv"
        pd.DataFrame([
            {"code": "SNC2D", "name": "Science", "grade": "10", "prereq": "none"},
            {"code": "SES4U", "name": "Earth", "grade": "12", "prereq": "SNC2D; SPH3U or SCH3U"},
            {"code": "SPH3U", "name": "Physics", "grade": "11", "prereq": "SNC2D"},
            {"code": "SCH3U", "name": "Chem", "grade": "11", "prereq": ""},
            {"code": "IDC4U", "name": "Interdisc.", "grade": "12", "prereq": "Any university course"},
        ]).to_csv(path, index=False)

        by_code = {c.code: c for c in load_catalog(str(path))["courses"]}
        assert by_code["SES4U"].prereqs == ("SNC2D",)
        assert by_code["SES4U"].prereq_any_of == (("SPH3U", "SCH3U"),)
        assert by_code["SNC2D"].grade == 10
        assert by_code["SCH3U"].prereqs == ()
        assert by_code["IDC4U"].prereq_unresolved is True

    def test_csv_split_columns(self, tmp_path):
        path = tmp_path / "catalog.csv"
        pd.DataFrame([
            {"Course_Code": "MHF4U", "grade": "12", "prereqs": "", "prereq_any_of": "MCR3U or MCT4C"},
            {"Course_Code": "MCV4U", "grade": "12", "prereqs": "MHF4U", "prereq_any_of": ""},
        ]).to_csv(path, index=False)

        by_code = {c.code: c for c in load_catalog(str(path))["courses"]}
        assert by_code["MHF4U"].prereq_any_of == (("MCR3U", "MCT4C"),)
        assert by_code["MCV4U"].prereqs == ("MHF4U",)

    def test_xlsx_courses_sheet(self, tmp_path):
        path = tmp_path / "catalog.xlsx"
        with pd.ExcelWriter(path) as writer:
            pd.DataFrame([
                {"code": "ENG3U", "grade": 11, "prereq": "ENG2D"},
                {"code": "ENG2D", "grade": 10, "prereq": None},
            ]).to_excel(writer, sheet_name="courses", index=False)

        by_code = {c.code: c for c in load_catalog(str(path))["courses"]}
        assert by_code["ENG3U"].prereqs == ("ENG2D",)
        assert by_code["ENG2D"].prereqs == ()

    def test_missing_code_column(self, tmp_path):
        path = tmp_path / "catalog.csv"
        pd.DataFrame([{"name": "x"}]).to_csv(path, index=False)
        with pytest.raises(ValueError):
            load_catalog(str(path))


class TestSanitizeCourses:
    def test_grade9_cleared(self):
        courses = [course_from_record({"code": "A", "grade": 9, "prereq_any_of": [["Z"]]})]
        cleaned, report = sanitize_courses(courses)
        assert not cleaned[0].has_prereqs
        assert report["grade9_cleared"] == ["A"]

    def test_and_list_read_as_alternatives(self):
        courses = [course_from_record({"code": "X", "grade": 11, "prereqs": ["A", "B"]})]
        cleaned, report = sanitize_courses(courses)
        assert cleaned[0].prereqs == ()
        assert cleaned[0].prereq_any_of == (("A", "B"),)
        assert report["and_to_or"] == ["X"]

    def test_heuristic_off(self):
        courses = [course_from_record({"code": "X", "prereqs": ["A", "B"]})]
        cleaned, _ = sanitize_courses(courses, or_heuristic=False)
        assert cleaned[0].prereqs == ("A", "B")

    def test_and_kept_when_groups_present(self):
        courses = [course_from_record({"code": "X", "prereqs": ["A", "B"], "prereq_any_of": [["C"]]})]
        cleaned, _ = sanitize_courses(courses)
        assert cleaned[0].prereqs == ("A", "B")

    def test_input_not_mutated(self):
        original = course_from_record({"code": "A", "grade": 9, "prereqs": ["Z"]})
        sanitize_courses([original])
        assert original.prereqs == ("Z",)


class TestIntegrityHelpers:
    def test_duplicates(self):
        courses = [Course(code="A"), Course(code="B"), Course(code="A")]
        assert find_duplicate_codes(courses) == ["A"]

    def test_dangling(self):
        courses = [Course(code="X", prereqs=("GHOST",)), Course(code="Y", prereq_any_of=(("X", "GHOST"),))]
        assert find_dangling_references(courses) == {"GHOST": ["X", "Y"]}


class TestCustomCourses:
    def test_normalize(self):
        course = normalize_custom_course({"code": " club1 ", "name": "Robotics", "prereqs": "ics3u, ics4u"})
        assert course.code == "CLUB1"
        assert course.subject == "other"
        assert course.grade is None
        assert course.prereqs == ("ICS3U", "ICS4U")

    @pytest.mark.parametrize("record", [{"code": "X"}, {"name": "No code"}, "X", None])
    def test_rejects_incomplete(self, record):
        assert normalize_custom_course(record) is None

    def test_code_normalized_like_request_codes(self):
        assert normalize_custom_course({"code": "my course", "name": "Mine"}).code == "MYCOURSE"
        assert normalize_custom_course({"code": "bad!code", "name": "Bad"}) is None

    def test_level_and_groups_kept(self):
        course = normalize_custom_course({
            "code": "CLUB2", "name": "Club", "level": "U", "prereq_any_of": [["ics3u", "ics4u"]],
        })
        assert course.level == "U"
        assert course.prereq_any_of == (("ICS3U", "ICS4U"),)

    def test_merge_appends(self):
        merged, conflicts = merge_custom_courses([Course(code="A1")], [{"code": "B1", "name": "Bee"}, {"code": ""}])
        assert [c.code for c in merged] == ["A1", "B1"]
        assert conflicts == []

    def test_merge_nothing(self):
        base = [Course(code="A1")]
        assert merge_custom_courses(base, None) == (base, [])

    def test_merge_refuses_existing_code(self):
        base = [Course(code="MCV4U", name="Calculus", prereqs=("MHF4U",))]
        merged, conflicts = merge_custom_courses(base, [
            {"code": "mcv4u", "name": "Replacement"},
            {"code": "NEW1", "name": "New"},
            {"code": "NEW1", "name": "New again"},
        ])
        assert [c.name for c in merged] == ["Calculus", "New"]
        assert conflicts == ["MCV4U", "NEW1"]

    def test_merge_sanitizes_custom_courses(self):
        merged, _ = merge_custom_courses([], [
            {"code": "FRESH1", "name": "Fresh", "grade": 9, "prereqs": "ENG1D"},
            {"code": "PICK1", "name": "Pick", "grade": 11, "prereqs": "MCR3U, MCF3M"},
        ], or_heuristic=True)
        by_code = {c.code: c for c in merged}
        assert by_code["FRESH1"].has_prereqs is False
        assert by_code["PICK1"].prereqs == ()
        assert by_code["PICK1"].prereq_any_of == (("MCR3U", "MCF3M"),)


class TestCoursesFrame:
    def test_sorted_and_json_safe(self):
        df = courses_frame([
            Course(code="B", grade=12),
            Course(code="Z"),
            Course(code="A", grade=12),
            Course(code="C", grade=9),
        ])
        assert df["code"].tolist() == ["C", "A", "B", "Z"]
        assert df["grade"].tolist() == [9, 12, 12, None]
        assert isinstance(df["grade"].iloc[0], int)

    def test_empty(self):
        assert courses_frame([]).empty
