from __future__ import annotations
import math
import re
from numbers import Real
from typing import Any, Iterable

from .models import INCOMPLETE, Score
from .utils import norm_text

_NON_NUMERIC_RE = re.compile(r"[^\d.]")

# подстроки, означающие "не сдано / нет данных"
_INCOMPLETE_SUBSTRINGS = ("n/a", "not", "incomplete", "null", "undefined", "nan")


def is_incomplete(score: Any) -> bool:
    return score is INCOMPLETE


def is_incomplete_text(value: str) -> bool:
    t = norm_text(value)
    if t in ("", "-"):
        return True
    return any(k in t for k in _INCOMPLETE_SUBSTRINGS)


def _from_number(x: float) -> Score:
    if math.isnan(x) or math.isinf(x):
        return INCOMPLETE
    if x < 0:
        return 0.0
    # доля 0..1 -> проценты
    if x <= 1:
        return float(x * 100)
    if x <= 100:
        return float(x)
    return 100.0


def normalize(raw: Any) -> Score:
    """
    Приводит балл из выгрузки к процентам 0..100 или INCOMPLETE.
    Никогда не бросает исключений:
      0.85 -> 85.0, "85%" -> 85.0, 150 -> 100.0, -5 -> 0.0,
      "Not finished" / "" / "-" / мусор -> INCOMPLETE
    """
    if raw is None or isinstance(raw, bool):
        return INCOMPLETE

    if isinstance(raw, Real):
        return _from_number(float(raw))

    if not isinstance(raw, str):
        return INCOMPLETE

    if is_incomplete_text(raw):
        return INCOMPLETE

    s = raw.strip()
    if s.endswith("%"):
        s = s[:-1]
    s = _NON_NUMERIC_RE.sub("", s)
    if not s:
        return INCOMPLETE
    try:
        value = float(s)
    except ValueError:
        # например "1.2.3" после чистки
        return INCOMPLETE
    return _from_number(value)


def average(scores: Iterable[Score]) -> float:
    # INCOMPLETE не входит ни в числитель, ни в знаменатель
    valid = [float(s) for s in scores if s is not INCOMPLETE]
    if not valid:
        return 0.0
    return sum(valid) / len(valid)


def format_score(score: Score, digits: int = 1) -> str:
    if score is INCOMPLETE:
        return "не завершён"
    return f"{float(score):.{digits}f}%"
