from __future__ import annotations

from datetime import date

import pytest

from certify.export import eligible_to_csv
from certify.grouping import SeriesPolicy
from certify.models import QuizScore, Settings
from certify.pipeline import run_batch
from certify.scoring import DenyList, evaluate
from certify.utils import load_rules

TODAY = date(2024, 6, 1)


def test_single_course_end_to_end() -> None:
    files = [
        ("aifi_301_students.csv", "name,email,last_interaction\nJane Doe,jane@x.com,2024-01-05 10:00\n"),
        ("aifi_301_quiz_scores.csv", "student_family_name,student_given_name,Quiz1\nDoe,Jane,90%\n"),
    ]

    result = run_batch(files, today=TODAY)

    assert result.file_errors == []
    assert result.complete_courses == ["aifi_301"]
    assert len(result.aggregates) == 1
    jane = result.aggregates[0]
    assert jane.email == "jane@x.com"
    assert jane.quiz_scores == [QuizScore("Quiz1", 90.0)]
    assert jane.average_score == pytest.approx(90.0)
    assert jane.completed

    eligible, stats = evaluate(result.aggregates, Settings(pass_threshold=70, date_since=None))

    assert [s.email for s in eligible] == ["jane@x.com"]
    assert stats["total_students"] == 1
    assert stats["eligible_students"] == 1
    assert stats["average_score"] == pytest.approx(90.0)
    assert stats["pass_rate"] == pytest.approx(100.0)
    assert eligible_to_csv(eligible).splitlines()[1] == "Jane,Doe,jane@x.com,90.0,2024-01-05,aifi_301"


def test_sections_of_one_course_are_merged_before_matching() -> None:
    files = [
        ("aifi_301_students.csv", "name,email,last_interaction\nJane Doe,jane@x.com,2024-01-05\n"),
        ("aifi_302_students.csv", "name,email,last_interaction\nJohn Roe,john@x.com,2024-01-06\n"),
        ("aifi_301_quiz_scores.csv", "student_family_name,student_given_name,Quiz1\nDoe,Jane,80\n"),
        ("aifi_302_quiz_scores.csv", "student_family_name,student_given_name,Quiz1\nRoe,John,70\n"),
    ]

    result = run_batch(files, today=TODAY)

    assert list(result.files) == ["aifi"]
    assert [(a.course_id, a.email) for a in result.aggregates] == [("aifi", "jane@x.com"), ("aifi", "john@x.com")]


def test_batch_collects_file_errors_and_incomplete_courses() -> None:
    files = [
        ("aifi_301_students.csv", "name,email,last_interaction\nJane Doe,jane@x.com,2024-01-05\n"),
        ("aifi_301_quiz_scores.csv", "student_family_name,student_given_name,Quiz1\nDoe,Jane,90\nRoe,Rick,10\n"),
        ("bio_101_students.csv", "name,email\nAnn Lee,ann@x.com\n"),
        ("empty_students.csv", "name,email\n"),
        ("noemail_students.csv", "name,phone\nAnn Lee,1\n"),
    ]

    result = run_batch(files, today=TODAY)

    assert [e["source"] for e in result.file_errors] == ["empty_students.csv", "noemail_students.csv"]
    assert [e["reason"] for e in result.file_errors] == ["InsufficientData", "MissingRequiredColumn"]
    reasons = [d["reason"] for d in result.diagnostics]
    assert reasons.count("file_error") == 2
    assert "incomplete_course" in reasons
    assert result.unmatched_count == 1
    assert [a.email for a in result.aggregates] == ["jane@x.com"]


def test_rules_drive_exclusions_and_deny_list() -> None:
    rules = load_rules()
    rules["disallowed_email_domains"] = ["cmu.edu"]
    rules["deny_email_fragments"] = ["kim@"]
    files = [
        (
            "aifi_301_students.csv",
            "name,email,last_interaction\n"
            "Jane Doe,jane@x.com,2024-01-05\n"
            "Carl Mellon,carl@andrew.cmu.edu,2024-01-05\n"
            "Kim Lee,kim@x.com,2024-01-05\n",
        ),
        (
            "aifi_301_quiz_scores.csv",
            "student_family_name,student_given_name,Quiz1\nDoe,Jane,90\nMellon,Carl,95\nLee,Kim,99\n",
        ),
    ]

    result = run_batch(files, today=TODAY, rules=rules)
    eligible, stats = evaluate(
        result.aggregates, Settings(), policy=SeriesPolicy.from_rules(rules), deny_list=DenyList.from_rules(rules),
    )

    assert result.excluded_count == 1
    assert [a.email for a in result.aggregates] == ["jane@x.com", "kim@x.com"]
    assert [s.email for s in eligible] == ["jane@x.com"]
    assert stats["total_students"] == 2


def test_sections_with_differently_cased_headers_keep_every_row() -> None:
    files = [
        ("aifi_301_students.csv", "name,email,last_interaction\nJane Doe,jane@x.com,2024-01-05\n"),
        ("aifi_302_students.csv", "Name,Email,Last Interaction\nJohn Roe,john@x.com,2024-01-06\n"),
        ("aifi_301_quiz_scores.csv", "student_family_name,student_given_name,Quiz1\nDoe,Jane,80\n"),
        ("aifi_302_quiz_scores.csv", "Student Family Name,Student Given Name,Quiz1\nRoe,John,70\n"),
    ]

    result = run_batch(files, today=TODAY)

    assert [(a.email, a.first_name) for a in result.aggregates] == [("jane@x.com", "Jane"), ("john@x.com", "John")]
    assert result.aggregates[1].quiz_scores == [QuizScore("Quiz1", 70.0)]
    assert result.aggregates[1].last_activity_date == date(2024, 1, 6)
    assert [d for d in result.diagnostics if d["reason"] == "row_skipped"] == []
