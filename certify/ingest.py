from __future__ import annotations
import csv
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .infer import infer_course_id, infer_stream_type, missing_required
from .models import (InsufficientData, MissingRequiredColumn, ParseError, SourceFile, make_raw_row)
from .utils import load_rules

log = logging.getLogger(__name__)

_LINE_SPLIT_RE = re.compile(r"\r\n|\n|\r")
# =========================

# Текст -> строки -> ячейки
# =========================
def _split_lines(content: str) -> List[str]:
    content = (content or "").replace("\ufeff", "")
    return [ln for ln in _LINE_SPLIT_RE.split(content) if ln.strip()]


def _tabs_to_commas(content: str) -> str:
    # TSV-выгрузка: табы есть, запятых нет -> переписываем в CSV до разбора строк
    if "\t" in content and "," not in content:
        return content.replace("\t", ",")
    return content


def _split_cells(line: str) -> List[str]:
    # кавычки "a, b" держат разделитель внутри поля
    try:
        return next(csv.reader([line], skipinitialspace=False))
    except (csv.Error, StopIteration):
        return line.split(",")


def _clean_header_cell(v: Any) -> str:
    if v is None:
        return ""
    s = str(v).replace("\ufeff", "").strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ('"', "'"):
        s = s[1:-1].strip()
    return s


def _make_unique(cols: List[str]) -> List[str]:
    seen: Dict[str, int] = {}
    out = []
    for c in cols:
        n = seen.get(c, 0) + 1
        seen[c] = n
        out.append(c if n == 1 else f"{c}__{n}")
    return out


def _header_labels(cells: List[str]) -> List[str]:
    labels = []
    for i, v in enumerate(cells):
        s = _clean_header_cell(v)
        labels.append(s if s else f"col_{i+1}")
    return _make_unique(labels)
# =========================

# Main: (имя файла, текст) -> SourceFile
# =========================
def parse(filename: str, content: str, rules: Optional[Dict[str, Any]] = None) -> SourceFile:
    """
    Разбирает выгрузку курса:
      - первая непустая строка - заголовок, дальше данные
      - course_id и тип потока (enrollment/assessment) берутся из имени файла и заголовка
    Бросает InsufficientData (< 2 строк) и MissingRequiredColumn (нет колонок идентификации).
    """
    rules = rules if rules is not None else load_rules()

    lines = _split_lines(_tabs_to_commas(content or ""))
    if len(lines) < 2:
        raise InsufficientData(filename, "нужна строка заголовка и хотя бы одна строка данных")

    headers = _header_labels(_split_cells(lines[0]))
    rows = tuple(make_raw_row(headers, [c.strip() for c in _split_cells(ln)]) for ln in lines[1:])

    stream_type = infer_stream_type(filename, headers, rules)
    missing = missing_required(stream_type, headers)
    if missing:
        raise MissingRequiredColumn(filename, stream_type, missing)

    course_id = infer_course_id(filename, rules)
    log.debug("%s: course=%s type=%s rows=%d", filename, course_id, stream_type.value, len(rows))

    return SourceFile(
        course_id=course_id,
        stream_type=stream_type,
        headers=tuple(headers),
        rows=rows,
        filename=str(filename),
    )


def decode_bytes(data: bytes) -> str:
    # выгрузки бывают в utf-8 с BOM и в cp1251
    for enc in ("utf-8-sig", "utf-8", "cp1251"):
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")


def read_upload(item: Any) -> Tuple[str, str]:
    # (имя, текст) или объект загрузки streamlit (.name, .getvalue())
    if isinstance(item, (tuple, list)) and len(item) == 2:
        name, data = item
    else:
        name, data = item.name, item.getvalue()
    if isinstance(data, (bytes, bytearray)):
        return str(name), decode_bytes(bytes(data))
    return str(name), str(data or "")


def load_source_files(uploads, rules: Optional[Dict[str, Any]] = None) -> Tuple[List[SourceFile], List[Dict[str, Any]]]:
    """
    Разбирает загруженные файлы: пары (имя, текст) или объекты с .name и .getvalue(), как у streamlit.
    Возвращает:
      - files: успешно разобранные SourceFile
      - errors: [{"source", "reason", "detail"}] по файлам, которые пришлось пропустить
    """
    rules = rules if rules is not None else load_rules()
    files: List[SourceFile] = []
    errors: List[Dict[str, Any]] = []

    for up in uploads:
        name, text = read_upload(up)
        try:
            files.append(parse(name, text, rules))
        except ParseError as e:
            log.warning("file skipped: %s", e)
            errors.append({
                "source": name,
                "reason": type(e).__name__,
                "detail": str(e),
            })

    return files, errors
