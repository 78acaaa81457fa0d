from __future__ import annotations
import os
import re
from typing import Any, Dict, List, Optional, Sequence
from rapidfuzz import fuzz

from .models import StreamType
from .utils import norm_header, norm_text

# Синонимы заголовков по ролям колонок (после norm_header: "_" -> пробел)
SYN = {
    "full_name": ["name", "full name", "student name", "student", "learner", "learner name", "display name"],
    "first_name": ["first name", "firstname", "given name", "student given name", "forename"],
    "last_name": ["last name", "lastname", "surname", "family name", "student family name"],
    "email": ["email", "e-mail", "email address", "student email", "mail", "user email"],
    "last_activity": ["last interaction", "last activity", "last active", "last accessed", "last access",
                      "last seen", "last login"],
    "enrollment_date": ["enrollment date", "enrolled", "enrolled at", "enrolled on", "date enrolled", "joined"],
    "family_name": ["student family name", "family name"],
    "given_name": ["student given name", "given name"],
    "student": ["student", "student name", "name", "full name", "learner"],
}

# служебные колонки выгрузки оценок - не тесты
ASSESSMENT_META = [
    "student id", "student lms id", "lms id", "id", "user id", "sis id", "section", "group",
    "completed at", "submitted at", "timestamp", "enrollment date", "last interaction",
]

FUZZY_THRESHOLD = 88

_COPY_MARKER_RE = re.compile(r"\s*\(\d+\)\s*$")
_TRAILING_SEP_RE = re.compile(r"[\s_\-.]+$")
# подпись для пустого заголовка, см. ingest._header_labels
BLANK_HEADER_RE = re.compile(r"^col_\d+(__\d+)?$")


def _best_match(col: str, targets: Sequence[str]) -> int:
    n = norm_header(col)
    return max((int(fuzz.ratio(n, t)) for t in targets), default=0)

def find_column(headers: Sequence[str], role: str, exclude: Sequence[Optional[str]] = ()) -> Optional[str]:
    """
    Ищет колонку по роли:
      1) точное совпадение нормализованного заголовка с синонимом (в порядке синонимов)
      2) подстрока синонима в заголовке ("Student Email Address")
      3) rapidfuzz ratio >= FUZZY_THRESHOLD (опечатки: "Emal", "Last Intraction")
    """
    targets = SYN[role]
    skip = {c for c in exclude if c}
    cols = [h for h in headers if h not in skip]
    normed = {h: norm_header(h) for h in cols}

    for t in targets:
        for h in cols:
            if normed[h] == t:
                return h

    # подстрока только для многословных синонимов, иначе "name" ловит "Quiz: name the parts"
    for t in targets:
        if " " not in t and "-" not in t:
            continue
        for h in cols:
            if t in normed[h]:
                return h

    best = None
    best_score = 0
    for h in cols:
        sc = _best_match(h, targets)
        if sc > best_score:
            best_score = sc
            best = h
    if best is not None and best_score >= FUZZY_THRESHOLD:
        return best
    return None


def infer_enrollment_columns(headers: Sequence[str]) -> Dict[str, Optional[str]]:
    email = find_column(headers, "email")
    first = find_column(headers, "first_name", exclude=[email])
    last = find_column(headers, "last_name", exclude=[email, first])
    full = find_column(headers, "full_name", exclude=[email, first, last])
    last_activity = find_column(headers, "last_activity", exclude=[email, first, last, full])
    enrolled = find_column(headers, "enrollment_date", exclude=[email, first, last, full, last_activity])
    return {
        "full_name": full,
        "first_name": first,
        "last_name": last,
        "email": email,
        "last_activity": last_activity,
        "enrollment_date": enrolled,
    }


def infer_assessment_columns(headers: Sequence[str]) -> Dict[str, Any]:
    family = find_column(headers, "family_name")
    given = find_column(headers, "given_name", exclude=[family])
    email = find_column(headers, "email", exclude=[family, given])
    student = None
    if not (family and given):
        student = find_column(headers, "student", exclude=[family, given, email])

    identity = {c for c in (family, given, email, student) if c}
    quiz_cols: List[str] = []
    for h in headers:
        if h in identity:
            continue
        nh = norm_header(h)
        if not nh or BLANK_HEADER_RE.match(h):
            continue
        if nh in ASSESSMENT_META:
            continue
        quiz_cols.append(h)

    return {
        "family_name": family,
        "given_name": given,
        "email": email,
        "student": student,
        "quiz_cols": quiz_cols,
    }


def has_family_name_column(headers: Sequence[str]) -> bool:
    # только формат выгрузки оценок: "student_family_name"; обычное "Family Name" бывает и в списках
    return any(_best_match(h, ["student family name"]) >= FUZZY_THRESHOLD for h in headers)


def missing_required(stream_type: StreamType, headers: Sequence[str]) -> List[str]:
    if stream_type == StreamType.ENROLLMENT:
        cols = infer_enrollment_columns(headers)
        missing = []
        if not cols["email"]:
            missing.append("email")
        if not cols["full_name"] and not (cols["first_name"] and cols["last_name"]):
            missing.append("name")
        return missing

    cols = infer_assessment_columns(headers)
    if cols["family_name"] and cols["given_name"]:
        return []
    if cols["student"]:
        return []
    return ["student_family_name", "student_given_name"]


def _file_stem(filename: str) -> str:
    base = os.path.basename(str(filename or "").replace("\\", "/"))
    stem, _ext = os.path.splitext(base)
    return stem.strip()


def _has_marker(stem: str, marker: str) -> bool:
    # маркер - целый токен имени: "aifi_quiz_scores" да, "quizcraft_101" нет
    return re.search(r"(?:^|[^0-9a-z])" + re.escape(marker) + r"(?:$|[^0-9a-z])", stem) is not None


def infer_stream_type(filename: str, headers: Sequence[str], rules: Dict[str, Any]) -> StreamType:
    stem = norm_text(_file_stem(filename))
    markers = [norm_text(m) for m in rules.get("assessment_markers", [])]
    if any(m and _has_marker(stem, m) for m in markers):
        return StreamType.ASSESSMENT
    if has_family_name_column(headers):
        return StreamType.ASSESSMENT
    return StreamType.ENROLLMENT


def infer_course_id(filename: str, rules: Dict[str, Any]) -> str:
    """
    "aifi_301_quiz_scores.csv" -> "aifi_301"
    "aifi_301_students (1).csv" -> "aifi_301"
    "bio101.csv" -> "bio101"
    """
    stem = _COPY_MARKER_RE.sub("", _file_stem(filename))
    suffixes = list(rules.get("assessment_suffixes", [])) + list(rules.get("enrollment_suffixes", []))
    # длинные суффиксы раньше: "_quiz_scores" до "_scores"
    suffixes.sort(key=len, reverse=True)
    low = stem.lower()
    for suf in suffixes:
        s = str(suf).lower()
        if s and low.endswith(s) and len(low) > len(s):
            stem = stem[: len(stem) - len(s)]
            break
    course = _TRAILING_SEP_RE.sub("", stem)
    return course or stem
