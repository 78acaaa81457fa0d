from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .infer import infer_assessment_columns, infer_enrollment_columns
from .models import Score, SourceFile, make_diagnostic
from .scores import normalize
from .utils import norm_email, norm_text, try_parse_date

log = logging.getLogger(__name__)

_EMPTY_MARKERS = {"", "nan", "none", "null", "unknown", "-"}


@dataclass(frozen=True)
class EnrollmentRecord:
    first_name: str
    last_name: str
    email: str
    last_activity_date: date
    enrollment_date: date
    origin_row: int


@dataclass(frozen=True)
class AssessmentRecord:
    first_name: str
    last_name: str
    email: str
    quiz_name: str
    score: Score
    origin_row: int


def _cell(row, col: Optional[str]) -> str:
    if not col:
        return ""
    v = row.get(col)
    if v is None:
        return ""
    s = str(v).strip()
    return "" if norm_text(s) in _EMPTY_MARKERS else s


def parse_name(name: str) -> Tuple[str, str]:
    """
    Делит полное имя на (имя, фамилия):
      "Doe, Jane"         -> ("Jane", "Doe")
      "Jane Doe"          -> ("Jane", "Doe")
      "Mary Ann van Dyke" -> ("Mary", "Ann van Dyke")
      "Cher"              -> ("Cher", "")
    """
    s = " ".join(str(name or "").split())
    if not s or norm_text(s) in _EMPTY_MARKERS:
        return "", ""

    if "," in s:
        last, _, first = s.partition(",")
        return first.strip(), last.strip()

    parts = s.split(" ")
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], " ".join(parts[1:])


def _skip(source: SourceFile, origin_row: int, detail: str, student: str = "") -> Dict[str, Any]:
    return make_diagnostic("row_skipped", "warn", source.course_id, source.filename, origin_row, student, detail)
# =========================

# 1) Список курса (enrollment)
# =========================
def extract_enrollments(source: SourceFile, today: date) -> Tuple[List[EnrollmentRecord], List[Dict[str, Any]]]:
    """
    today - дата по умолчанию, когда в строке нет даты последней активности.
    Передаётся вызывающим кодом, чтобы результат не зависел от часов.
    """
    cols = infer_enrollment_columns(source.headers)
    records: List[EnrollmentRecord] = []
    issues: List[Dict[str, Any]] = []

    for i, row in enumerate(source.rows):
        origin = i + 2  # строка 1 - заголовок

        if cols["first_name"] and cols["last_name"]:
            first = _cell(row, cols["first_name"])
            last = _cell(row, cols["last_name"])
            if not first and not last and cols["full_name"]:
                first, last = parse_name(_cell(row, cols["full_name"]))
        else:
            first, last = parse_name(_cell(row, cols["full_name"]))

        email = norm_email(_cell(row, cols["email"]))

        if not (first or last) and not email:
            issues.append(_skip(source, origin, "нет ни имени, ни email"))
            continue

        raw_activity = _cell(row, cols["last_activity"])
        last_activity = try_parse_date(raw_activity, today) if raw_activity else None
        if last_activity is None:
            last_activity = today

        raw_enrolled = _cell(row, cols["enrollment_date"])
        enrolled = try_parse_date(raw_enrolled, today) if raw_enrolled else None
        if enrolled is None:
            enrolled = last_activity

        records.append(EnrollmentRecord(
            first_name=first,
            last_name=last,
            email=email,
            last_activity_date=last_activity,
            enrollment_date=enrolled,
            origin_row=origin,
        ))

    log.debug("%s: %d enrollment rows, %d skipped", source.filename, len(records), len(issues))
    return records, issues
# =========================

# 2) Выгрузка оценок (assessment)
# =========================
def quiz_columns(source: SourceFile) -> List[str]:
    return list(infer_assessment_columns(source.headers)["quiz_cols"])


def extract_assessments(source: SourceFile) -> Tuple[List[List[AssessmentRecord]], List[Dict[str, Any]]]:
    """
    Возвращает записи, сгруппированные по строке файла: одна строка -> список (студент, тест, балл).
    Отсутствующая (короткая строка) ячейка записи не даёт, пустая -> INCOMPLETE.
    """
    cols = infer_assessment_columns(source.headers)
    out: List[List[AssessmentRecord]] = []
    issues: List[Dict[str, Any]] = []

    for i, row in enumerate(source.rows):
        origin = i + 2

        if cols["family_name"] or cols["given_name"]:
            last = _cell(row, cols["family_name"])
            first = _cell(row, cols["given_name"])
        else:
            first, last = parse_name(_cell(row, cols["student"]))
        email = norm_email(_cell(row, cols["email"]))

        if not (first or last) and not email:
            issues.append(_skip(source, origin, "нет ни имени, ни email"))
            continue

        recs = []
        for q in cols["quiz_cols"]:
            if q not in row:
                continue
            recs.append(AssessmentRecord(
                first_name=first,
                last_name=last,
                email=email,
                quiz_name=q,
                score=normalize(row.get(q, "")),
                origin_row=origin,
            ))

        if not recs:
            issues.append(_skip(source, origin, "в строке нет ни одного балла", f"{first} {last}".strip()))
            continue
        out.append(recs)

    return out, issues
