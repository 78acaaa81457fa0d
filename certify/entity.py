from __future__ import annotations
import re
from typing import Dict, Generic, Iterator, List, Optional, Set, Tuple, TypeVar

from .utils import norm_email, norm_name

T = TypeVar("T")

_EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")

# порядок важен: это порядок поиска при сопоставлении
KEY_KINDS = ("email", "first_last", "last_first", "concat", "first", "last")


def _looks_like_email(s: str) -> bool:
    return bool(_EMAIL_RE.search(s or ""))


def _canon_name(s: str) -> str:
    # часть имени для ключа: email/логин в поле имени - не имя
    raw = str(s or "").strip()
    if not raw or _looks_like_email(raw):
        return ""
    x = norm_name(raw)
    if x in ("", "nan", "none"):
        return ""
    return x


def identity_keys(first: str, last: str, email: str) -> List[Tuple[str, str]]:
    """
    Ключи студента в порядке поиска:
      email       "jane@x.com"
      first_last  "jane doe"
      last_first  "doe, jane"
      concat      "janedoe" и "doejane"
      first       "jane"
      last        "doe"
    """
    fn = _canon_name(first)
    ln = _canon_name(last)
    e = norm_email(email)

    keys: List[Tuple[str, str]] = []
    if e and _looks_like_email(e):
        keys.append(("email", e))
    if fn and ln:
        keys.append(("first_last", f"{fn} {ln}"))
        keys.append(("last_first", f"{ln}, {fn}"))
        keys.append(("concat", (fn + ln).replace(" ", "")))
        keys.append(("concat", (ln + fn).replace(" ", "")))
    if fn:
        keys.append(("first", fn))
    if ln:
        keys.append(("last", ln))
    return keys


class IdentityIndex(Generic[T]):
    """
    Индекс вида ключа -> ключ -> ссылка на агрегат.
    Индекс хранит только ссылки на объекты из одной таблицы, копий не делает.
    Если ключ заявлен двумя разными агрегатами, он становится неоднозначным и больше не совпадает.
    """

    def __init__(self) -> None:
        self._by_kind: Dict[str, Dict[str, T]] = {k: {} for k in KEY_KINDS}
        self._ambiguous: Dict[str, Set[str]] = {k: set() for k in KEY_KINDS}

    def add(self, item: T, first: str, last: str, email: str) -> None:
        for kind, key in identity_keys(first, last, email):
            table = self._by_kind[kind]
            if key in self._ambiguous[kind]:
                continue
            owner = table.get(key)
            if owner is None:
                table[key] = item
            elif owner is not item:
                del table[key]
                self._ambiguous[kind].add(key)

    def lookup(self, kind: str, key: str) -> Optional[T]:
        return self._by_kind[kind].get(key)

    def match(self, first: str, last: str, email: str) -> Optional[Tuple[str, T]]:
        """
        Первое совпадение по порядку KEY_KINDS: (вид ключа, агрегат) или None.
        Шаг last_first ищет имя и фамилию, перепутанные местами:
        given="Doe", family="Jane" находит "Jane Doe".
        """
        swapped = dict(identity_keys(last, first, ""))
        for kind, key in identity_keys(first, last, email):
            if kind == "last_first":
                key = swapped.get(kind, "")
            hit = self._by_kind[kind].get(key)
            if hit is not None:
                return kind, hit
        return None

    def is_ambiguous(self, kind: str, key: str) -> bool:
        return key in self._ambiguous[kind]

    def __len__(self) -> int:
        return len({id(v) for table in self._by_kind.values() for v in table.values()})

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        for kind in KEY_KINDS:
            for key in self._by_kind[kind]:
                yield kind, key
