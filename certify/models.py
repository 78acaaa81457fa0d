from __future__ import annotations
import enum
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union

from .utils import try_parse_date


class Incomplete(enum.Enum):
    """Тест начат, но не завершён, либо значение в ячейке не распознано."""
    INCOMPLETE = "incomplete"

    def __repr__(self) -> str:
        return "INCOMPLETE"


INCOMPLETE = Incomplete.INCOMPLETE

# процент 0..100 либо INCOMPLETE
Score = Union[float, Incomplete]


class StreamType(str, enum.Enum):
    ENROLLMENT = "enrollment"
    ASSESSMENT = "assessment"


RawRow = Mapping[str, str]


def make_raw_row(headers: List[str], cells: List[str]) -> RawRow:
    # короткая строка: хвостовые ячейки просто отсутствуют
    return MappingProxyType({h: c for h, c in zip(headers, cells)})


@dataclass(frozen=True)
class SourceFile:
    course_id: str
    stream_type: StreamType
    headers: Tuple[str, ...]
    rows: Tuple[RawRow, ...]
    filename: str = ""

    @property
    def is_empty(self) -> bool:
        return len(self.rows) == 0


class QuizScore(NamedTuple):
    quiz_name: str
    score: Score


@dataclass
class StudentAggregate:
    first_name: str
    last_name: str
    email: str
    course_id: str
    enrollment_date: date
    last_activity_date: date
    quiz_scores: List[QuizScore] = field(default_factory=list)
    average_score: float = 0.0
    completed: bool = False
    all_courses: Tuple[str, ...] = ()

    @property
    def key(self) -> str:
        # email - основной ключ; без email ключ строится по имени
        if self.email:
            return self.email.strip().lower()
        return f"name:{self.first_name.strip().lower()} {self.last_name.strip().lower()}".strip()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def incomplete_count(self) -> int:
        return sum(1 for q in self.quiz_scores if q.score is INCOMPLETE)

    def set_score(self, quiz_name: str, score: Score) -> None:
        """Записывает балл за тест (повтор того же теста перезаписывает) и пересчитывает среднее."""
        for i, q in enumerate(self.quiz_scores):
            if q.quiz_name == quiz_name:
                self.quiz_scores[i] = QuizScore(quiz_name, score)
                break
        else:
            self.quiz_scores.append(QuizScore(quiz_name, score))
        valid = [q.score for q in self.quiz_scores if q.score is not INCOMPLETE]
        self.average_score = float(sum(valid) / len(valid)) if valid else 0.0

    def to_record(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "course_id": self.course_id,
            "enrollment_date": self.enrollment_date.isoformat(),
            "last_activity_date": self.last_activity_date.isoformat(),
            "quiz_scores": [
                {"quiz_name": q.quiz_name, "score": None if q.score is INCOMPLETE else float(q.score)}
                for q in self.quiz_scores
            ],
            "average_score": self.average_score,
            "completed": self.completed,
            "all_courses": list(self.all_courses),
        }

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "StudentAggregate":
        agg = cls(
            first_name=str(rec.get("first_name", "") or ""),
            last_name=str(rec.get("last_name", "") or ""),
            email=str(rec.get("email", "") or ""),
            course_id=str(rec.get("course_id", "") or ""),
            enrollment_date=date.fromisoformat(rec["enrollment_date"]),
            last_activity_date=date.fromisoformat(rec["last_activity_date"]),
            completed=bool(rec.get("completed", False)),
            all_courses=tuple(rec.get("all_courses") or ()),
        )
        for q in rec.get("quiz_scores") or []:
            s = q.get("score")
            agg.set_score(str(q.get("quiz_name", "")), INCOMPLETE if s is None else float(s))
        return agg


@dataclass(frozen=True)
class Settings:
    pass_threshold: float = 70.0
    date_since: Optional[date] = None

    def __post_init__(self) -> None:
        # datetime / строка -> date, время суток не учитывается
        if self.date_since is not None and type(self.date_since) is not date:
            object.__setattr__(self, "date_since", try_parse_date(self.date_since))

    def to_record(self) -> Dict[str, Any]:
        return {
            "pass_threshold": self.pass_threshold,
            "date_since": self.date_since.isoformat() if self.date_since else None,
        }

    @classmethod
    def create(cls, pass_threshold: Any = 70.0, date_since: Any = None) -> "Settings":
        # date_since: date / datetime / строка ISO или любая дата, понятная dateutil
        try:
            thr = float(pass_threshold)
        except (TypeError, ValueError):
            thr = 70.0
        return cls(pass_threshold=thr, date_since=try_parse_date(date_since) if date_since else None)

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Settings":
        return cls.create(rec.get("pass_threshold", 70.0), rec.get("date_since"))


# =========================
# Ошибки уровня файла
# =========================
class ParseError(ValueError):
    """Файл целиком непригоден для обработки."""

    def __init__(self, filename: str, message: str):
        super().__init__(f"{filename}: {message}")
        self.filename = filename


class InsufficientData(ParseError):
    pass


class MissingRequiredColumn(ParseError):
    def __init__(self, filename: str, stream_type: StreamType, missing: List[str]):
        super().__init__(filename, f"нет обязательных колонок ({stream_type.value}): {', '.join(missing)}")
        self.stream_type = stream_type
        self.missing = list(missing)


# =========================
# Диагностика (уровни как в листе качества данных: error / warn / info)
# =========================
DIAGNOSTIC_REASONS = (
    "row_skipped",
    "unmatched_assessment_row",
    "excluded_domain",
    "excluded_name",
    "no_scores",
    "incomplete_course",
    "file_error",
)


def make_diagnostic(reason: str, level: str, course_id: str = "", source: str = "",
                    row: Optional[int] = None, student: str = "", detail: str = "") -> Dict[str, Any]:
    return {
        "reason": reason,
        "level": level,
        "course_id": course_id,
        "source": source,
        "row": row,
        "student": student,
        "detail": detail,
    }
