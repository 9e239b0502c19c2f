"""Input parsers and normalizers for the data-entry wizard."""

import math
import re
from datetime import date, datetime
from typing import Callable, Iterable

from crm2_bot.errors import EntryValidationError

DATE_FORMAT = "%d.%m.%Y"

_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
_TODAY_RE = re.compile(r"^(сегодня|today|now)$", re.IGNORECASE)
_GEO_RE = re.compile(r"^[A-Za-z]{2}$")
_SKIP_COMMENT_RE = re.compile(
    r"^(без\s+комментария|пропустить|нет(\s+комментария)?|skip|—|-|–|\.{0,3})$",
    re.IGNORECASE,
)


def format_date(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def is_today_input(raw: str) -> bool:
    return bool(_TODAY_RE.match((raw or "").strip()))


def parse_date(raw: str, today: date) -> date:
    """Parse a DD.MM.YYYY date. Empty input and "today" words resolve to ``today``."""
    text = (raw or "").strip()
    if not text or is_today_input(text):
        return today
    match = _DATE_RE.match(text)
    if not match:
        raise EntryValidationError("Дата должна быть ДД.ММ.ГГГГ или «Сегодня»")
    day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        raise EntryValidationError("Некорректная дата") from None


def parse_amount(raw: str) -> float:
    """Parse a positive amount; comma or dot is accepted as the decimal separator."""
    text = (raw or "").strip().replace(" ", "").replace(",", ".", 1)
    try:
        value = float(text)
    except ValueError:
        raise EntryValidationError("Сумма должна быть > 0. Введите снова.") from None
    if not math.isfinite(value) or value <= 0:
        raise EntryValidationError("Сумма должна быть > 0. Введите снова.")
    return value


def normalize_geo(raw: str) -> str:
    text = (raw or "").strip()
    if not _GEO_RE.match(text):
        raise EntryValidationError("GEO — две латинские буквы (UA, PL).")
    return text.upper()


def normalize_currency(raw: str) -> str:
    return (raw or "").strip().upper()


def capitalize_first(raw: str) -> str:
    text = (raw or "").strip()
    return text[:1].upper() + text[1:]


def is_skip_comment(raw: str) -> bool:
    return bool(_SKIP_COMMENT_RE.match((raw or "").strip()))


def match_option(raw: str, options: Iterable[str]) -> str | None:
    """Return the option equal to ``raw`` ignoring case, or None."""
    needle = (raw or "").strip().casefold()
    for option in options:
        if option.strip().casefold() == needle:
            return option
    return None


def best_effort_normalize(
    raw: str,
    options: Iterable[str],
    fallback: Callable[[str], str] = capitalize_first,
) -> tuple[str, bool]:
    """Map free text onto a reference list.

    Returns ``(value, matched)``. A case-insensitive hit yields the canonical
    spelling from ``options``; otherwise ``fallback`` is applied to the raw text
    and ``matched`` is False.
    """
    found = match_option(raw, options)
    if found is not None:
        return found, True
    return fallback((raw or "").strip()), False


# ── Lenient cell parsers (reading existing rows) ─────────────────────────

# Slash dates come from en_US-formatted cells: month first
_CELL_DATE_FORMATS = ["%d.%m.%Y", "%Y-%m-%d", "%m/%d/%Y", "%m/%d/%Y %H:%M:%S", "%d.%m.%y"]
_TRUE_FLAGS = {"1", "true", "yes", "y", "да", "истина", "✅"}


def parse_date_cell(value) -> date | None:
    """Try the date formats found in the sheets; None when nothing fits."""
    text = str(value or "").strip()
    if not text:
        return None
    for fmt in _CELL_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def parse_number(value) -> float:
    """Float from a cell; unparsable or non-finite values give 0.0."""
    text = str(value if value is not None else "").strip()
    text = text.replace("\u00a0", "").replace(" ", "").replace("$", "").replace(",", ".", 1)
    try:
        number = float(text)
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_int(value) -> int:
    return int(parse_number(value))


def parse_flag(value) -> bool:
    return str(value or "").strip().casefold() in _TRUE_FLAGS


class ReferencePolicy:
    """Decides whether values outside a reference list are accepted.

    The permissive policy keeps whatever ``best_effort_normalize`` produced;
    the strict one only admits listed values.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict

    @classmethod
    def from_name(cls, name: str) -> "ReferencePolicy":
        return cls(strict=name == "strict")

    def resolve(
        self,
        raw: str,
        options: list[str],
        label: str,
        fallback: Callable[[str], str] = capitalize_first,
    ) -> str:
        value, matched = best_effort_normalize(raw, options, fallback)
        if not value:
            raise EntryValidationError(f"{label} не может быть пустым. Введите снова.")
        if not matched and self.strict:
            raise EntryValidationError(f"{label}: выберите значение из списка.")
        return value

    def accepts(self, value: str, options: list[str]) -> bool:
        if not value:
            return False
        return not self.strict or value in options
