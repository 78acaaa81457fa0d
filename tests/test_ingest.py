from __future__ import annotations

import codecs
from datetime import date

import pytest

from certify.extract import extract_assessments, extract_enrollments, parse_name
from certify.ingest import load_source_files, parse
from certify.models import INCOMPLETE, InsufficientData, MissingRequiredColumn, StreamType
from certify.utils import try_parse_date


class _Upload:
    # как streamlit UploadedFile: .name и .getvalue()
    def __init__(self, name: str, data: bytes) -> None:
        self.name = name
        self._data = data

    def getvalue(self) -> bytes:
        return self._data


ENROLLMENT_TEXT = "name,email,last_interaction\nJane Doe,jane@x.com,2024-01-05 10:00\n"
ASSESSMENT_TEXT = "student_family_name,student_given_name,Quiz1\nDoe,Jane,90%\n"


def test_parse_enrollment_file_infers_course_and_stream() -> None:
    source = parse("aifi_301_students.csv", ENROLLMENT_TEXT)

    assert source.course_id == "aifi_301"
    assert source.stream_type == StreamType.ENROLLMENT
    assert source.headers == ("name", "email", "last_interaction")
    assert len(source.rows) == 1
    assert source.rows[0]["name"] == "Jane Doe"
    assert source.filename == "aifi_301_students.csv"


def test_parse_assessment_file_by_name_marker_and_by_header() -> None:
    by_name = parse("aifi_301_quiz_scores.csv", ASSESSMENT_TEXT)
    assert by_name.stream_type == StreamType.ASSESSMENT
    assert by_name.course_id == "aifi_301"

    # имя файла без маркера: тип по колонке student_family_name
    by_header = parse("aifi_301.csv", ASSESSMENT_TEXT)
    assert by_header.stream_type == StreamType.ASSESSMENT
    assert by_header.course_id == "aifi_301"


def test_parse_strips_copy_marker_from_course_id() -> None:
    source = parse("aifi_301_students (1).csv", ENROLLMENT_TEXT)
    assert source.course_id == "aifi_301"


def test_parse_requires_header_and_one_data_line() -> None:
    with pytest.raises(InsufficientData):
        parse("aifi_301_students.csv", "name,email,last_interaction\n\n\n")


def test_parse_rejects_enrollment_without_email_column() -> None:
    with pytest.raises(MissingRequiredColumn) as err:
        parse("aifi_301_students.csv", "name,phone\nJane Doe,123\n")
    assert "email" in err.value.missing
    assert err.value.stream_type == StreamType.ENROLLMENT


def test_parse_rejects_assessment_without_student_columns() -> None:
    with pytest.raises(MissingRequiredColumn):
        parse("aifi_301_quiz_scores.csv", "Quiz1,Quiz2\n90,80\n")


def test_parse_keeps_quoted_delimiters_inside_cells() -> None:
    text = 'name,email,last_interaction\n"Doe, Jane",jane@x.com,2024-01-05\n'
    source = parse("aifi_301_students.csv", text)
    assert source.rows[0]["name"] == "Doe, Jane"
    assert source.rows[0]["email"] == "jane@x.com"


def test_parse_rewrites_tab_separated_content() -> None:
    source = parse("aifi_301_students.tsv", "name\temail\nJane Doe\tjane@x.com\n")
    assert source.rows[0]["email"] == "jane@x.com"


def test_parse_handles_crlf_and_blank_lines() -> None:
    text = "name,email\r\n\r\nJane Doe,jane@x.com\r\nJohn Roe,john@x.com\r"
    source = parse("bio_101_students.csv", text)
    assert [r["name"] for r in source.rows] == ["Jane Doe", "John Roe"]


def test_short_rows_leave_trailing_cells_absent() -> None:
    text = "student_family_name,student_given_name,Quiz1,Quiz2\nDoe,Jane,90%\n"
    source = parse("aifi_301_quiz_scores.csv", text)
    assert "Quiz2" not in source.rows[0]
    assert source.rows[0]["Quiz1"] == "90%"


def test_duplicate_and_blank_headers_are_made_unique() -> None:
    text = "student_family_name,student_given_name,Quiz,Quiz,\nDoe,Jane,80,90,x\n"
    source = parse("aifi_301_quiz_scores.csv", text)
    assert source.headers == ("student_family_name", "student_given_name", "Quiz", "Quiz__2", "col_5")


def test_rows_are_read_only() -> None:
    source = parse("aifi_301_students.csv", ENROLLMENT_TEXT)
    with pytest.raises(TypeError):
        source.rows[0]["name"] = "Other"  # type: ignore[index]


def test_load_source_files_decodes_bom_and_collects_errors() -> None:
    uploads = [
        _Upload("aifi_301_students.csv", codecs.BOM_UTF8 + ENROLLMENT_TEXT.encode("utf-8")),
        _Upload("aifi_301_quiz_scores.csv", ASSESSMENT_TEXT.encode("cp1251")),
        _Upload("broken_students.csv", b"name,email\n"),
    ]

    files, errors = load_source_files(uploads)

    assert [f.course_id for f in files] == ["aifi_301", "aifi_301"]
    assert files[0].headers[0] == "name"
    assert len(errors) == 1
    assert errors[0]["source"] == "broken_students.csv"
    assert errors[0]["reason"] == "InsufficientData"


def test_load_source_files_accepts_name_text_pairs() -> None:
    files, errors = load_source_files([("aifi_301_students.csv", ENROLLMENT_TEXT)])
    assert errors == []
    assert files[0].stream_type == StreamType.ENROLLMENT
# =========================

# Проекция строк
# =========================
@pytest.mark.parametrize(
    "full, expected",
    [
        ("Doe, Jane", ("Jane", "Doe")),
        ("Jane Doe", ("Jane", "Doe")),
        ("Mary Ann van Dyke", ("Mary", "Ann van Dyke")),
        ("Cher", ("Cher", "")),
        ("  ", ("", "")),
    ],
)
def test_parse_name(full, expected) -> None:
    assert parse_name(full) == expected


def test_extract_enrollments_reads_dates_and_defaults_to_today() -> None:
    text = (
        "name,email,last_interaction\n"
        "Jane Doe,jane@x.com,2024-01-05 10:00\n"
        "John Roe,JOHN@X.COM,\n"
        "Ann Lee,ann@x.com,March 3 2024\n"
        ",,2024-01-01\n"
    )
    source = parse("aifi_301_students.csv", text)
    today = date(2024, 6, 1)

    records, issues = extract_enrollments(source, today)

    assert [r.email for r in records] == ["jane@x.com", "john@x.com", "ann@x.com"]
    assert records[0].last_activity_date == date(2024, 1, 5)
    assert records[0].enrollment_date == date(2024, 1, 5)
    assert records[1].last_activity_date == today
    assert records[2].last_activity_date == date(2024, 3, 3)
    assert len(issues) == 1
    assert issues[0]["reason"] == "row_skipped"
    assert issues[0]["row"] == 5


def test_partial_dates_are_completed_from_today_not_the_clock() -> None:
    text = (
        "name,email,last_interaction,enrollment_date\n"
        "Jane Doe,jane@x.com,Mar 3,10:00\n"
        "John Roe,john@x.com,10:00,\n"
    )
    source = parse("aifi_301_students.csv", text)

    records, _ = extract_enrollments(source, date(2024, 6, 1))
    again, _ = extract_enrollments(source, date(2019, 2, 10))

    assert records[0].last_activity_date == date(2024, 3, 3)
    assert records[0].enrollment_date == date(2024, 6, 1)
    assert records[1].last_activity_date == date(2024, 6, 1)
    assert again[0].last_activity_date == date(2019, 3, 3)
    assert again[1].last_activity_date == date(2019, 2, 10)


def test_try_parse_date_without_today_rejects_partial_dates() -> None:
    assert try_parse_date("March 3 2024") == date(2024, 3, 3)
    assert try_parse_date("2024-01-05 10:00") == date(2024, 1, 5)
    assert try_parse_date("Mar 3") is None
    assert try_parse_date("10:00") is None
    assert try_parse_date("Mar 3", date(2024, 6, 1)) == date(2024, 3, 3)


def test_extract_enrollments_uses_first_and_last_name_columns() -> None:
    text = "First Name,Last Name,Email,Enrollment Date\nJane,Doe,jane@x.com,2023-12-01\n"
    source = parse("aifi_301_students.csv", text)

    records, _ = extract_enrollments(source, date(2024, 6, 1))

    assert (records[0].first_name, records[0].last_name) == ("Jane", "Doe")
    assert records[0].enrollment_date == date(2023, 12, 1)
    assert records[0].last_activity_date == date(2024, 6, 1)


def test_extract_assessments_skips_identity_and_meta_columns() -> None:
    text = (
        "student_family_name,student_given_name,student_id,Quiz1,Collaboration Quiz\n"
        "Doe,Jane,17,90%,not finished\n"
    )
    source = parse("aifi_301_quiz_scores.csv", text)

    groups, issues = extract_assessments(source)

    assert issues == []
    assert len(groups) == 1
    recs = groups[0]
    assert [(r.quiz_name, r.score) for r in recs] == [("Quiz1", 90.0), ("Collaboration Quiz", INCOMPLETE)]
    assert (recs[0].first_name, recs[0].last_name) == ("Jane", "Doe")
