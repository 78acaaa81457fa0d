from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import SourceFile, StreamType
from .utils import norm_header

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeriesPolicy:
    """
    Одна политика для "многосекционного" курса:
      - prefix_length: префикс для склейки файлов секций ("aifi_301", "aifi_302" -> "aifi")
      - separator: серия для правила допуска ("aifi_301" -> "aifi")
    """
    prefix_length: int = 4
    separator: str = "_"

    @classmethod
    def from_rules(cls, rules: Dict[str, Any]) -> "SeriesPolicy":
        return cls(
            prefix_length=int(rules.get("prefix_length", 4) or 4),
            separator=str(rules.get("series_separator", "_") or "_"),
        )

    def candidate_prefix(self, course_id: str) -> Optional[str]:
        # короткие id не склеиваются
        if len(course_id) < self.prefix_length:
            return None
        return course_id[: self.prefix_length]

    def series_of(self, course_id: str) -> str:
        head = course_id.split(self.separator, 1)[0]
        return head or course_id


@dataclass(frozen=True)
class CourseFiles:
    course_id: str
    enrollment: Optional[SourceFile] = None
    assessment: Optional[SourceFile] = None

    @property
    def is_complete(self) -> bool:
        return self.enrollment is not None and self.assessment is not None


def detect_prefixes(course_ids: Iterable[str], policy: SeriesPolicy) -> List[str]:
    """
    Префикс принимается, если встречается хотя бы у двух разных course_id.
    Порядок - порядок первого появления.
    """
    seen_ids: Dict[str, set] = {}
    order: List[str] = []
    for cid in course_ids:
        if not cid:
            continue
        p = policy.candidate_prefix(cid)
        if p is None:
            continue
        if p not in seen_ids:
            seen_ids[p] = set()
            order.append(p)
        seen_ids[p].add(cid)
    return [p for p in order if len(seen_ids[p]) >= 2]


def canonicalize(course_id: str, prefixes: Sequence[str]) -> str:
    # самый длинный подходящий префикс
    for p in sorted(prefixes, key=len, reverse=True):
        if course_id.startswith(p):
            return p
    return course_id


def _aligned_labels(base: Sequence[str], other: Sequence[str]) -> Dict[str, str]:
    """
    Метки второго файла -> метки первого, если совпадают после norm_header
    ("Email" -> "email", "Student Family Name" -> "student_family_name").
    """
    by_norm: Dict[str, str] = {}
    for h in base:
        by_norm.setdefault(norm_header(h), h)
    out: Dict[str, str] = {}
    taken = set()
    for h in other:
        target = by_norm.get(norm_header(h), h)
        # своя метка файла или уже занятая цель не переименовываются
        if target in taken or (target != h and target in other):
            target = h
        taken.add(target)
        out[h] = target
    return out


def _merge(a: SourceFile, b: SourceFile) -> SourceFile:
    labels = _aligned_labels(a.headers, b.headers)
    headers = list(a.headers)
    for h in b.headers:
        if labels[h] not in headers:
            headers.append(labels[h])
    rows = tuple(MappingProxyType({labels.get(k, k): v for k, v in r.items()}) for r in b.rows)
    filename = a.filename if b.filename in a.filename.split(" + ") else f"{a.filename} + {b.filename}"
    return replace(a, headers=tuple(headers), rows=a.rows + rows, filename=filename)


def group_source_files(files: Sequence[SourceFile], policy: Optional[SeriesPolicy] = None) -> Dict[str, CourseFiles]:
    """
    Переписывает course_id на канонический и склеивает файлы одного типа одного курса
    (строки в порядке входа). Enrollment и assessment никогда не смешиваются.
    Префиксы считаются заново при каждом вызове.
    """
    policy = policy or SeriesPolicy()
    prefixes = detect_prefixes([f.course_id for f in files], policy)
    if prefixes:
        log.info("course prefixes: %s", ", ".join(prefixes))

    out: Dict[str, CourseFiles] = {}
    for f in files:
        cid = canonicalize(f.course_id.strip(), prefixes)
        f = replace(f, course_id=cid)
        cur = out.get(cid) or CourseFiles(course_id=cid)

        if f.stream_type == StreamType.ENROLLMENT:
            merged = f if cur.enrollment is None else _merge(cur.enrollment, f)
            cur = replace(cur, enrollment=merged)
        else:
            merged = f if cur.assessment is None else _merge(cur.assessment, f)
            cur = replace(cur, assessment=merged)
        out[cid] = cur

    return out
