from __future__ import annotations
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .grouping import SeriesPolicy
from .models import Settings, StudentAggregate
from .utils import norm_name, norm_text

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DenyList:
    """
    Студенты, которые никогда не проходят на сертификат.
      email_fragments: подстрока email ("someone@", "example.org")
      name_pairs: пара токенов, оба должны быть в полном имени
    По умолчанию пуст.
    """
    email_fragments: Tuple[str, ...] = ()
    name_pairs: Tuple[Tuple[str, ...], ...] = ()

    @classmethod
    def from_rules(cls, rules: Dict[str, Any]) -> "DenyList":
        frags = tuple(norm_text(x) for x in rules.get("deny_email_fragments") or [] if norm_text(x))
        pairs = tuple(tuple(str(t) for t in p) for p in rules.get("deny_names") or [] if p)
        return cls(email_fragments=frags, name_pairs=pairs)

    def is_denied(self, email: str, first: str = "", last: str = "") -> bool:
        e = norm_text(email)
        if e and any(f in e for f in self.email_fragments):
            return True
        if first and last:
            full = norm_name(f"{first} {last}")
            for pair in self.name_pairs:
                tokens = [norm_name(t) for t in pair if norm_name(t)]
                if tokens and all(t in full for t in tokens):
                    return True
        return False


@dataclass
class Decision:
    student_key: str
    eligible: bool
    courses: Tuple[str, ...]
    reason: str = ""  # "", missing_course, below_threshold, not_completed, denied
    records: List[StudentAggregate] = field(default_factory=list, repr=False)

    @property
    def average_score(self) -> float:
        if not self.records:
            return 0.0
        return sum(r.average_score for r in self.records) / len(self.records)


def _student_key(agg: StudentAggregate) -> str:
    # без email студент всё равно считается один раз - по ключу имени
    return agg.email.strip().lower() if agg.email else agg.key


def filter_by_date(aggregates: Sequence[StudentAggregate], settings: Settings) -> List[StudentAggregate]:
    if settings.date_since is None:
        return list(aggregates)
    return [a for a in aggregates if a.last_activity_date >= settings.date_since]


def group_by_student(aggregates: Sequence[StudentAggregate]) -> Dict[str, List[StudentAggregate]]:
    out: Dict[str, List[StudentAggregate]] = {}
    for a in aggregates:
        out.setdefault(_student_key(a), []).append(a)
    return out


def _check_series(
    records: List[StudentAggregate],
    available: List[str],
    threshold: float,
    policy: SeriesPolicy,
) -> str:
    by_series: Dict[str, List[StudentAggregate]] = {}
    for r in records:
        if not r.course_id:
            continue
        by_series.setdefault(policy.series_of(r.course_id), []).append(r)

    for series, recs in by_series.items():
        taken = {r.course_id for r in recs}
        needed = [c for c in available if policy.series_of(c) == series]
        if any(c not in taken for c in needed):
            return "missing_course"
        if any(r.average_score < threshold for r in recs):
            return "below_threshold"
        if not all(r.completed for r in recs):
            return "not_completed"
    return ""


def decide(
    aggregates: Sequence[StudentAggregate],
    settings: Settings,
    *,
    policy: Optional[SeriesPolicy] = None,
    deny_list: Optional[DenyList] = None,
) -> List[Decision]:
    """
    Решение по каждому студенту (уникальный email) после фильтра по дате.
    Допуск: по каждой затронутой серии студент есть во всех курсах серии,
    встречающихся во входе, и в каждом средний балл >= порога и курс завершён.
    """
    policy = policy or SeriesPolicy()
    deny_list = deny_list or DenyList()

    filtered = filter_by_date(aggregates, settings)
    available: List[str] = []
    for a in filtered:
        if a.course_id and a.course_id not in available:
            available.append(a.course_id)

    decisions: List[Decision] = []
    for key, records in group_by_student(filtered).items():
        head = records[0]
        courses = tuple(r.course_id for r in records if r.course_id)

        if deny_list.is_denied(head.email, head.first_name, head.last_name):
            decisions.append(Decision(key, False, courses, "denied", records))
            continue

        reason = _check_series(records, available, settings.pass_threshold, policy)
        decisions.append(Decision(key, reason == "", courses, reason, records))
        if reason:
            log.debug("%s not eligible: %s", key, reason)

    return decisions


def _stats_prefixes(aggregates: Sequence[StudentAggregate], policy: SeriesPolicy) -> List[str]:
    # префикс курса, который встречается хотя бы у двух записей
    counts: Dict[str, int] = {}
    for a in aggregates:
        p = policy.candidate_prefix(a.course_id) if a.course_id else None
        if p:
            counts[p] = counts.get(p, 0) + 1
    return [p for p, n in counts.items() if n > 1]


def compute_stats(
    filtered: Sequence[StudentAggregate],
    eligible_count: int,
    policy: SeriesPolicy,
) -> Dict[str, Any]:
    total = len(group_by_student(filtered))
    if total == 0:
        return {
            "total_students": 0,
            "eligible_students": 0,
            "average_score": 0.0,
            "pass_rate": 0.0,
            "course_averages": {},
        }

    avg = sum(a.average_score for a in filtered) / len(filtered)
    course_averages: Dict[str, float] = {}
    for p in _stats_prefixes(filtered, policy):
        scores = [a.average_score for a in filtered if a.course_id.startswith(p)]
        course_averages[p] = sum(scores) / len(scores) if scores else 0.0

    return {
        "total_students": total,
        "eligible_students": eligible_count,
        "average_score": avg,
        "pass_rate": eligible_count / total * 100.0,
        "course_averages": course_averages,
    }


def evaluate(
    aggregates: Sequence[StudentAggregate],
    settings: Settings,
    *,
    policy: Optional[SeriesPolicy] = None,
    deny_list: Optional[DenyList] = None,
) -> Tuple[List[StudentAggregate], Dict[str, Any]]:
    """
    Возвращает:
      - eligible: по одной записи на допущенного студента (копия первой записи,
        average_score - среднее по всем его курсам, all_courses - эти курсы)
      - stats: total_students, eligible_students, average_score, pass_rate, course_averages
    Входные агрегаты не изменяются.
    """
    policy = policy or SeriesPolicy()
    decisions = decide(aggregates, settings, policy=policy, deny_list=deny_list)

    eligible: List[StudentAggregate] = []
    for d in decisions:
        if not d.eligible:
            continue
        head = d.records[0]
        eligible.append(replace(
            head,
            quiz_scores=list(head.quiz_scores),
            average_score=d.average_score,
            all_courses=d.courses,
        ))

    stats = compute_stats(filter_by_date(aggregates, settings), len(eligible), policy)
    log.info("eligible %d of %d", stats["eligible_students"], stats["total_students"])
    return eligible, stats
