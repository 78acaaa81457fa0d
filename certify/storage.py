from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence

from .models import Settings, StudentAggregate
from .utils import load_json, save_json, settings_path, students_path

log = logging.getLogger(__name__)


def _record_ok(rec: Any) -> bool:
    if not isinstance(rec, dict):
        return False
    if not rec.get("enrollment_date") or not rec.get("last_activity_date"):
        return False
    return bool(rec.get("email") or rec.get("first_name") or rec.get("last_name"))


def save_students(aggregates: Sequence[StudentAggregate], path: Optional[Path] = None) -> None:
    # плоский список агрегатов; INCOMPLETE пишется как null
    path = path or students_path()
    save_json(path, [a.to_record() for a in aggregates])
    log.info("saved %d students to %s", len(aggregates), path)


def _from_records(obj: Any) -> List[StudentAggregate]:
    # битые записи пропускаются
    if not isinstance(obj, list):
        return []

    out: List[StudentAggregate] = []
    for rec in obj:
        if not _record_ok(rec):
            continue
        try:
            out.append(StudentAggregate.from_record(rec))
        except (KeyError, TypeError, ValueError) as e:
            log.warning("stored student skipped: %s", e)
    return out


def load_students(path: Optional[Path] = None) -> List[StudentAggregate]:
    return _from_records(load_json(path or students_path(), []))


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    save_json(path or settings_path(), settings.to_record())


def load_settings(path: Optional[Path] = None) -> Settings:
    # нет файла или он испорчен -> значения по умолчанию
    obj = load_json(path or settings_path(), {})
    if not isinstance(obj, dict):
        return Settings()
    return Settings.from_record(obj)


def clear_stored_data(paths: Optional[Sequence[Path]] = None) -> int:
    """Удаляет сохранённые студентов и настройки. Возвращает число удалённых файлов."""
    removed = 0
    for p in paths or (students_path(), settings_path()):
        p = Path(p)
        if p.exists():
            p.unlink()
            removed += 1
    return removed


def dumps_students(aggregates: Sequence[StudentAggregate]) -> str:
    # для скачивания резервной копии из интерфейса
    return json.dumps([a.to_record() for a in aggregates], ensure_ascii=False, indent=2)


def loads_students(text: str) -> List[StudentAggregate]:
    try:
        obj = json.loads(text)
    except ValueError:
        return []
    return _from_records(obj)
