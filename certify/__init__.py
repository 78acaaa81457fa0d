"""
Этот пакет содержит:
- разбор выгрузок курса (CSV/TSV) и распознавание колонок
- нормализацию баллов за тесты
- склейку секций одного курса
- сопоставление студентов между списком курса и выгрузкой оценок
- проверку допуска к сертификату и сводную статистику
- экспорт отчётов и сохранение результатов
"""
from .scores import normalize
from .ingest import parse, load_source_files
from .grouping import SeriesPolicy, detect_prefixes, canonicalize, group_source_files
from .reconcile import reconcile
from .scoring import DenyList, decide, evaluate
from .pipeline import BatchResult, run_batch
from .export import eligible_to_csv, build_report_frames, export_to_excel_bytes
from .models import INCOMPLETE, Settings, SourceFile, StreamType, StudentAggregate

__all__ = [
    "normalize",
    "parse",
    "load_source_files",
    "SeriesPolicy",
    "detect_prefixes",
    "canonicalize",
    "group_source_files",
    "reconcile",
    "DenyList",
    "decide",
    "evaluate",
    "BatchResult",
    "run_batch",
    "eligible_to_csv",
    "build_report_frames",
    "export_to_excel_bytes",
    "INCOMPLETE",
    "Settings",
    "SourceFile",
    "StreamType",
    "StudentAggregate",
]
