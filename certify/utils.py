import os
import re
import json
import copy
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, Optional
from dateutil import parser as dtparser

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_DATA_DIR = PACKAGE_DIR / "data"

APPDATA = os.environ.get("APPDATA")
if APPDATA:
    USER_DATA_DIR = Path(APPDATA) / "CertificationDashboard" / "data"
else:
    USER_DATA_DIR = DEFAULT_DATA_DIR  # fallback

# значения по умолчанию, rules.json перекрывает их по ключам
DEFAULT_RULES: Dict[str, Any] = {
    "enrollment_suffixes": ["_students", "_enrollments", "_enrollment", "_roster"],
    "assessment_suffixes": ["_quiz_scores", "_quizzes", "_scores", "_grades"],
    "assessment_markers": ["quiz_scores", "quizzes", "quiz", "scores", "grades"],
    "disallowed_email_domains": [],
    "excluded_names": [],
    "deny_email_fragments": [],
    "deny_names": [],
    "require_all_quizzes": False,
    "prefix_length": 4,
    "series_separator": "_",
    "pass_threshold": 70.0,
}


def load_json(path: Path, default: Any):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except Exception:
        return default

def save_json(path: Path, obj: Any):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)

_DASH_CHARS_RE = re.compile(r"[\u2010\u2011\u2012\u2013\u2014\u2212]")
_NBSP_RE = re.compile(r"[\u00A0\u2007\u202F]")  # NBSP варианты
_ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
# два разных умолчания для dateutil: совпадение результатов значит, что дата в ячейке полная
_PROBE_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def norm_text(s: Any) -> str:
    """
    Универсальная нормализация текста:
    - lower
    - BOM/неразрывные пробелы
    - внешние кавычки
    - все виды тире -> '-'
    - схлопывание пробелов
    """
    if s is None:
        return ""

    s = str(s)

    # частые "невидимые" символы CSV/Excel
    s = s.replace("\ufeff", "")
    s = _NBSP_RE.sub(" ", s)
    s = s.strip()
    # убрать внешние кавычки
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ('"', "'"):
        s = s[1:-1].strip()
    s = s.lower()
    s = _DASH_CHARS_RE.sub("-", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s

def norm_name(s: Any) -> str:
    """
    Нормализация части имени для ключей сопоставления:
    - основана на norm_text
    - пунктуация (точки, дефисы, апострофы, запятые) удаляется
    - пробелы схлопываются
    """
    s = norm_text(s)
    if not s:
        return ""
    s = re.sub(r"[^\w\s]", "", s)
    s = s.replace("_", " ")
    s = re.sub(r"\s+", " ", s).strip()
    return s

def norm_header(s: Any) -> str:
    # заголовок колонки: "Student_Family_Name" -> "student family name"
    t = norm_text(s).replace("_", " ")
    return re.sub(r"\s+", " ", t).strip()

def norm_email(s: Any) -> str:
    t = norm_text(s)
    if t in ("nan", "none", "null"):
        return ""
    return t.replace(" ", "")

def extract_iso_date(s: Any) -> Optional[date]:
    # первая подстрока YYYY-MM-DD, например из "2024-01-05 10:00:00 UTC"
    m = _ISO_DATE_RE.search(str(s or ""))
    if not m:
        return None
    try:
        return date.fromisoformat(m.group(0))
    except ValueError:
        return None

def try_parse_date(s: Any, today: Optional[date] = None) -> Optional[date]:
    """
    Дата из ячейки: date/datetime, YYYY-MM-DD внутри строки, иначе dateutil.
    Недостающие год/месяц/день берутся из today ("Mar 3", "10:00").
    Без today неполная дата не распознаётся: системные часы не читаются.
    """
    if s is None:
        return None
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s

    iso = extract_iso_date(s)
    if iso is not None:
        return iso

    txt = norm_text(s)
    if not txt or txt in ("nan", "none", "null", "-", "never"):
        return None
    # без цифр это не дата ("вчера", "n/a")
    if not re.search(r"\d", txt):
        return None
    try:
        if today is not None:
            return dtparser.parse(txt, fuzzy=True, default=datetime.combine(today, time())).date()
        a = dtparser.parse(txt, fuzzy=True, default=_PROBE_DEFAULTS[0]).date()
        b = dtparser.parse(txt, fuzzy=True, default=_PROBE_DEFAULTS[1]).date()
    except (ValueError, OverflowError):
        return None
    # разные умолчания дали разные даты -> в ячейке нет полной даты
    return a if a == b else None

def rules_path() -> Path:
    return DEFAULT_DATA_DIR / "rules.json"

def load_rules(path: Optional[Path] = None) -> Dict[str, Any]:
    # каждый вызов возвращает новую копию: правила не разделяются между прогонами
    rules = copy.deepcopy(DEFAULT_RULES)
    loaded = load_json(path or rules_path(), {})
    if isinstance(loaded, dict):
        for k, v in loaded.items():
            if k in rules:
                rules[k] = copy.deepcopy(v)
    return rules

def students_path() -> Path:
    USER_DATA_DIR.mkdir(parents=True, exist_ok=True)
    return USER_DATA_DIR / "students.json"

def settings_path() -> Path:
    USER_DATA_DIR.mkdir(parents=True, exist_ok=True)
    return USER_DATA_DIR / "settings.json"
