from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from .grouping import CourseFiles, SeriesPolicy, group_source_files
from .ingest import load_source_files
from .models import StudentAggregate, make_diagnostic
from .reconcile import reconcile
from .utils import load_rules

log = logging.getLogger(__name__)


@dataclass
class BatchResult:
    files: Dict[str, CourseFiles] = field(default_factory=dict)
    aggregates: List[StudentAggregate] = field(default_factory=list)
    diagnostics: List[Dict[str, Any]] = field(default_factory=list)
    file_errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def excluded_count(self) -> int:
        return sum(1 for d in self.diagnostics if d["reason"] in ("excluded_domain", "excluded_name"))

    @property
    def unmatched_count(self) -> int:
        return sum(1 for d in self.diagnostics if d["reason"] == "unmatched_assessment_row")

    @property
    def complete_courses(self) -> List[str]:
        return [cid for cid, cf in self.files.items() if cf.is_complete]


def run_batch(
    items: Iterable[Any],
    *,
    today: date,
    rules: Optional[Dict[str, Any]] = None,
) -> BatchResult:
    """
    Полный прогон: разбор файлов -> группировка по курсам -> сведение по каждому курсу.
    Ошибки уровня файла попадают в file_errors и diagnostics (file_error), прогон не прерывается.
    """
    rules = rules if rules is not None else load_rules()
    policy = SeriesPolicy.from_rules(rules)
    result = BatchResult()

    parsed, errors = load_source_files(items, rules)
    result.file_errors = errors
    for e in errors:
        result.diagnostics.append(make_diagnostic("file_error", "error", source=e["source"], detail=e["detail"]))

    result.files = group_source_files(parsed, policy)

    for cf in result.files.values():
        aggs, diags = reconcile(cf.enrollment, cf.assessment, today=today, rules=rules)
        result.aggregates.extend(aggs)
        result.diagnostics.extend(diags)

    log.info(
        "batch: %d files, %d courses (%d complete), %d students",
        len(parsed), len(result.files), len(result.complete_courses), len(result.aggregates),
    )
    return result
