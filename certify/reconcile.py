from __future__ import annotations
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .entity import IdentityIndex
from .extract import EnrollmentRecord, extract_assessments, extract_enrollments, quiz_columns
from .models import INCOMPLETE, SourceFile, StudentAggregate, make_diagnostic
from .utils import load_rules, norm_name

log = logging.getLogger(__name__)


def _email_domain(email: str) -> str:
    if "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().lower()


def is_disallowed_domain(email: str, domains: Sequence[str]) -> bool:
    # "andrew.cmu.edu" попадает и под "cmu.edu"
    dom = _email_domain(email)
    if not dom:
        return False
    for d in domains:
        d = str(d).strip().lower().lstrip("@")
        if d and (dom == d or dom.endswith("." + d)):
            return True
    return False


def is_excluded_name(first: str, last: str, pairs: Sequence[Sequence[str]]) -> bool:
    # пара токенов: оба должны встретиться в полном имени
    full = norm_name(f"{first} {last}")
    if not full:
        return False
    for pair in pairs:
        tokens = [norm_name(t) for t in pair if norm_name(t)]
        if tokens and all(t in full for t in tokens):
            return True
    return False


def _fold(agg: StudentAggregate, rec: EnrollmentRecord) -> None:
    # повтор студента (склеенные секции): самая ранняя запись на курс, самая поздняя активность
    if rec.enrollment_date < agg.enrollment_date:
        agg.enrollment_date = rec.enrollment_date
    if rec.last_activity_date > agg.last_activity_date:
        agg.last_activity_date = rec.last_activity_date
    if not agg.first_name and rec.first_name:
        agg.first_name = rec.first_name
    if not agg.last_name and rec.last_name:
        agg.last_name = rec.last_name


def _course_of(enrollment: Optional[SourceFile], assessment: Optional[SourceFile]) -> str:
    for f in (enrollment, assessment):
        if f is not None:
            return f.course_id
    return ""


def reconcile(
    enrollment: Optional[SourceFile],
    assessment: Optional[SourceFile],
    *,
    today: date,
    rules: Optional[Dict[str, Any]] = None,
) -> Tuple[List[StudentAggregate], List[Dict[str, Any]]]:
    """
    Сводит список курса и выгрузку оценок одного (канонического) курса.
    Возвращает:
      - aggregates: по одному StudentAggregate на студента, в порядке списка курса
      - diagnostics: строки, которые не вошли в результат, с причиной
    Повторный вызов на тех же входах даёт тот же результат (today передаётся снаружи).
    """
    rules = rules if rules is not None else load_rules()
    course_id = _course_of(enrollment, assessment)

    if enrollment is None or assessment is None or enrollment.is_empty or assessment.is_empty:
        missing = []
        if enrollment is None or enrollment.is_empty:
            missing.append("список курса")
        if assessment is None or assessment.is_empty:
            missing.append("выгрузка оценок")
        return [], [make_diagnostic(
            "incomplete_course", "error", course_id,
            detail="нет файла или он пуст: " + ", ".join(missing),
        )]

    diagnostics: List[Dict[str, Any]] = []
    domains = list(rules.get("disallowed_email_domains") or [])
    excluded_names = list(rules.get("excluded_names") or [])

    # 1) агрегаты из списка курса
    enrolled, issues = extract_enrollments(enrollment, today)
    diagnostics.extend(issues)

    table: Dict[str, StudentAggregate] = {}
    index: IdentityIndex[StudentAggregate] = IdentityIndex()

    for rec in enrolled:
        if rec.email and is_disallowed_domain(rec.email, domains):
            diagnostics.append(make_diagnostic(
                "excluded_domain", "info", course_id, enrollment.filename, rec.origin_row,
                f"{rec.first_name} {rec.last_name}".strip(), rec.email,
            ))
            continue

        agg = StudentAggregate(
            first_name=rec.first_name,
            last_name=rec.last_name,
            email=rec.email,
            course_id=course_id,
            enrollment_date=rec.enrollment_date,
            last_activity_date=rec.last_activity_date,
        )
        existing = table.get(agg.key)
        if existing is not None:
            _fold(existing, rec)
            continue
        table[agg.key] = agg
        index.add(agg, agg.first_name, agg.last_name, agg.email)

    # 2) оценки: email -> "first last" -> "last, first" -> склейка -> имя -> фамилия
    graded, issues = extract_assessments(assessment)
    diagnostics.extend(issues)

    for recs in graded:
        head = recs[0]
        hit = index.match(head.first_name, head.last_name, head.email)
        if hit is None:
            diagnostics.append(make_diagnostic(
                "unmatched_assessment_row", "warn", course_id, assessment.filename, head.origin_row,
                f"{head.first_name} {head.last_name}".strip(), head.email,
            ))
            continue
        kind, agg = hit
        log.debug("%s row %d matched %s by %s", assessment.filename, head.origin_row, agg.key, kind)
        for r in recs:
            agg.set_score(r.quiz_name, r.score)

    # 3) отбор и completed
    all_quizzes = quiz_columns(assessment)
    require_all = bool(rules.get("require_all_quizzes", False))

    out: List[StudentAggregate] = []
    for agg in table.values():
        student = agg.full_name or agg.email
        if not agg.quiz_scores:
            diagnostics.append(make_diagnostic(
                "no_scores", "info", course_id, enrollment.filename, None, student, "нет ни одного балла",
            ))
            continue
        if not (agg.first_name and agg.last_name) and not agg.email:
            diagnostics.append(make_diagnostic(
                "row_skipped", "warn", course_id, enrollment.filename, None, student, "нет имени и email",
            ))
            continue
        if is_excluded_name(agg.first_name, agg.last_name, excluded_names):
            diagnostics.append(make_diagnostic(
                "excluded_name", "info", course_id, enrollment.filename, None, student, "",
            ))
            continue

        completed = len(agg.quiz_scores) > 0
        if completed and require_all:
            got = {q.quiz_name for q in agg.quiz_scores if q.score is not INCOMPLETE}
            completed = all(q in got for q in all_quizzes)
        agg.completed = completed
        out.append(agg)

    log.info("%s: %d students, %d diagnostics", course_id, len(out), len(diagnostics))
    return out, diagnostics
