import pytest
from courses import Course, coerce_courses, coerce_grade, course_from_record


class TestCourseFromRecord:
    def test_full_record(self):
        course = course_from_record({
            "code": "mhf4u",
            "name": "Advanced Functions",
            "grade": 12,
            "level": "U",
            "subject": "math",
            "prereqs": [],
            "prereq_any_of": [["mcr3u", "MCT4C"]],
        })
        assert course.code == "MHF4U"
        assert course.grade == 12
        assert course.prereqs == ()
        assert course.prereq_any_of == (("MCR3U", "MCT4C"),)

    def test_missing_prereq_fields_are_empty(self):
        course = course_from_record({"code": "ICS3U"})
        assert course.prereqs == ()
        assert course.prereq_any_of == ()
        assert not course.has_prereqs

    def test_null_prereq_fields_are_empty(self):
        course = course_from_record({"code": "ICS3U", "prereqs": None, "prereq_any_of": None})
        assert course.prereqs == ()
        assert course.prereq_any_of == ()

    def test_non_list_prereq_fields_are_empty(self):
        course = course_from_record({"code": "ICS3U", "prereqs": "MCR3U", "prereq_any_of": 7})
        assert course.prereqs == ()
        assert course.prereq_any_of == ()

    def test_camel_case_any_of_key(self):
        course = course_from_record({"code": "C", "prereqAnyOf": [["A", "B"]]})
        assert course.prereq_any_of == (("A", "B"),)

    def test_junk_members_dropped(self):
        course = course_from_record({
            "code": "X",
            "prereqs": ["A", None, 3, "  ", "a"],
            "prereq_any_of": [["B", None], [], "C", [""]],
        })
        assert course.prereqs == ("A",)
        assert course.prereq_any_of == (("B",),)

    def test_no_code_returns_none(self):
        assert course_from_record({"name": "Nameless"}) is None
        assert course_from_record({"code": "   "}) is None

    def test_codeless_record_when_code_optional(self):
        course = course_from_record({"prereqs": ["a"]}, require_code=False)
        assert course.code == ""
        assert course.prereqs == ("A",)

    def test_non_mapping_returns_none(self):
        assert course_from_record("ENG4U") is None
        assert course_from_record(None) is None

    def test_course_passes_through(self):
        course = Course(code="ENG4U")
        assert course_from_record(course) is course

    def test_extra_fields_kept_out_of_equality(self):
        a = course_from_record({"code": "A", "colour": "red"})
        b = course_from_record({"code": "A", "colour": "blue"})
        assert a == b
        assert a.extra == {"colour": "red"}

    def test_to_dict_uses_lists(self):
        course = course_from_record({"code": "C", "prereqs": ["A"], "prereq_any_of": [["A", "B"]]})
        d = course.to_dict()
        assert d["prereqs"] == ["A"]
        assert d["prereq_any_of"] == [["A", "B"]]


class TestCoerceGrade:
    @pytest.mark.parametrize("raw,expected", [
        (9, 9), ("10", 10), (11.0, 11), (" 12 ", 12),
        (8, None), (13, None), ("", None), (None, None), ("abc", None), (True, None),
    ])
    def test_values(self, raw, expected):
        assert coerce_grade(raw) == expected


class TestCoerceCourses:
    def test_skips_unusable_records(self):
        courses = coerce_courses([{"code": "A"}, {"name": "x"}, None, {"code": "B"}])
        assert [c.code for c in courses] == ["A", "B"]

    def test_none(self):
        assert coerce_courses(None) == []
