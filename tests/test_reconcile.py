from __future__ import annotations

from datetime import date

import pytest

from certify.ingest import parse
from certify.models import INCOMPLETE, QuizScore
from certify.reconcile import is_disallowed_domain, is_excluded_name, reconcile
from certify.utils import load_rules

TODAY = date(2024, 6, 1)


def _rules(**overrides):
    rules = load_rules()
    rules["disallowed_email_domains"] = []
    rules.update(overrides)
    return rules


def _enrollment(*rows: str, header: str = "name,email,last_interaction"):
    return parse("aifi_301_students.csv", header + "\n" + "\n".join(rows) + "\n")


def _assessment(*rows: str, header: str = "student_family_name,student_given_name,Quiz1"):
    return parse("aifi_301_quiz_scores.csv", header + "\n" + "\n".join(rows) + "\n")


def test_reconcile_matches_assessment_row_by_first_last_key() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05 10:00")
    assessment = _assessment("Doe,Jane,90%")

    aggregates, diagnostics = reconcile(enrollment, assessment, today=TODAY, rules=_rules())

    assert diagnostics == []
    assert len(aggregates) == 1
    jane = aggregates[0]
    assert jane.email == "jane@x.com"
    assert (jane.first_name, jane.last_name) == ("Jane", "Doe")
    assert jane.course_id == "aifi_301"
    assert jane.quiz_scores == [QuizScore("Quiz1", 90.0)]
    assert jane.average_score == pytest.approx(90.0)
    assert jane.completed
    assert jane.last_activity_date == date(2024, 1, 5)


def test_reconcile_is_idempotent() -> None:
    enrollment = _enrollment(
        "Jane Doe,jane@x.com,2024-01-05",
        "John Roe,john@x.com,",
        "Ann Lee,ann@x.com,2024-02-01",
    )
    assessment = _assessment("Doe,Jane,90%", "Roe,John,not finished", "Lee,Ann,0.75", "Nobody,Here,50")
    rules = _rules()

    first = reconcile(enrollment, assessment, today=TODAY, rules=rules)
    second = reconcile(enrollment, assessment, today=TODAY, rules=rules)

    assert first == second
    assert [a.email for a in first[0]] == ["jane@x.com", "john@x.com", "ann@x.com"]


def test_reconcile_reports_unmatched_assessment_rows() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05")
    assessment = _assessment("Doe,Jane,90", "Stranger,Sam,40")

    aggregates, diagnostics = reconcile(enrollment, assessment, today=TODAY, rules=_rules())

    assert len(aggregates) == 1
    unmatched = [d for d in diagnostics if d["reason"] == "unmatched_assessment_row"]
    assert len(unmatched) == 1
    assert unmatched[0]["student"] == "Sam Stranger"
    assert unmatched[0]["row"] == 3
    assert unmatched[0]["level"] == "warn"


def test_reconcile_drops_students_without_scores() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05", "John Roe,john@x.com,2024-01-05")
    assessment = _assessment("Doe,Jane,90")

    aggregates, diagnostics = reconcile(enrollment, assessment, today=TODAY, rules=_rules())

    assert [a.email for a in aggregates] == ["jane@x.com"]
    assert [d["reason"] for d in diagnostics] == ["no_scores"]


def test_reconcile_excludes_disallowed_domains() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05", "Carl Mellon,carl@andrew.cmu.edu,2024-01-05")
    assessment = _assessment("Doe,Jane,90", "Mellon,Carl,95")

    aggregates, diagnostics = reconcile(
        enrollment, assessment, today=TODAY, rules=_rules(disallowed_email_domains=["cmu.edu"]),
    )

    assert [a.email for a in aggregates] == ["jane@x.com"]
    reasons = [d["reason"] for d in diagnostics]
    assert "excluded_domain" in reasons
    assert "unmatched_assessment_row" in reasons


def test_reconcile_excludes_name_pairs() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05", "John Roe,john@x.com,2024-01-05")
    assessment = _assessment("Doe,Jane,90", "Roe,John,80")

    aggregates, diagnostics = reconcile(
        enrollment, assessment, today=TODAY, rules=_rules(excluded_names=[["john", "roe"]]),
    )

    assert [a.email for a in aggregates] == ["jane@x.com"]
    assert [d["reason"] for d in diagnostics] == ["excluded_name"]


def test_repeated_enrollment_rows_fold_into_one_aggregate() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05", "Jane Doe,JANE@x.com,2024-03-01")
    assessment = _assessment("Doe,Jane,90")

    aggregates, _ = reconcile(enrollment, assessment, today=TODAY, rules=_rules())

    assert len(aggregates) == 1
    assert aggregates[0].enrollment_date == date(2024, 1, 5)
    assert aggregates[0].last_activity_date == date(2024, 3, 1)


def test_repeated_quiz_overwrites_previous_score() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05")
    assessment = _assessment("Doe,Jane,50", "Doe,Jane,90")

    aggregates, _ = reconcile(enrollment, assessment, today=TODAY, rules=_rules())

    assert aggregates[0].quiz_scores == [QuizScore("Quiz1", 90.0)]
    assert aggregates[0].average_score == pytest.approx(90.0)


def test_incomplete_scores_do_not_count_in_average() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05")
    assessment = _assessment("Doe,Jane,80,-", header="student_family_name,student_given_name,Quiz1,Quiz2")

    aggregates, _ = reconcile(enrollment, assessment, today=TODAY, rules=_rules())

    jane = aggregates[0]
    assert jane.quiz_scores == [QuizScore("Quiz1", 80.0), QuizScore("Quiz2", INCOMPLETE)]
    assert jane.average_score == pytest.approx(80.0)
    assert jane.incomplete_count == 1
    assert jane.completed


def test_require_all_quizzes_marks_partial_students_not_completed() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05", "John Roe,john@x.com,2024-01-05")
    assessment = _assessment(
        "Doe,Jane,80,90",
        "Roe,John,80,not finished",
        header="student_family_name,student_given_name,Quiz1,Quiz2",
    )

    aggregates, _ = reconcile(enrollment, assessment, today=TODAY, rules=_rules(require_all_quizzes=True))

    assert [(a.email, a.completed) for a in aggregates] == [("jane@x.com", True), ("john@x.com", False)]


def test_missing_assessment_file_yields_incomplete_course() -> None:
    enrollment = _enrollment("Jane Doe,jane@x.com,2024-01-05")

    aggregates, diagnostics = reconcile(enrollment, None, today=TODAY, rules=_rules())

    assert aggregates == []
    assert diagnostics[0]["reason"] == "incomplete_course"
    assert diagnostics[0]["course_id"] == "aifi_301"


def test_domain_and_name_helpers() -> None:
    assert is_disallowed_domain("x@andrew.cmu.edu", ["cmu.edu"])
    assert is_disallowed_domain("x@CMU.EDU", ["@cmu.edu"])
    assert not is_disallowed_domain("x@notcmu.edu", ["cmu.edu"])
    assert not is_disallowed_domain("", ["cmu.edu"])
    assert is_excluded_name("John", "Roe-Smith", [["john", "roe"]])
    assert not is_excluded_name("John", "Doe", [["john", "roe"]])
