"""
Office days / office hours gate.

Merchants describe when they take orders in free text ("lunes a viernes",
"9 a 13 y 17:30 a 21hs"). Both fields are parsed leniently; a field that
cannot be parsed does not restrict anything.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Set

from . import replies
from .text import normalize

# 0 = domingo ... 6 = sabado
DAY_NUMBERS = {
    "domingo": 0, "dom": 0,
    "lunes": 1, "lun": 1,
    "martes": 2, "mar": 2,
    "miercoles": 3, "mier": 3,
    "jueves": 4, "jue": 4,
    "viernes": 5, "vie": 5,
    "sabado": 6, "sab": 6,
}

_DAY = r"(domingo|lunes|martes|miercoles|jueves|viernes|sabado|dom|lun|mar|mier|jue|vie|sab)"
_DAY_RANGE = re.compile(r"\b" + _DAY + r"\s*(?:a|al|hasta|-)\s*" + _DAY + r"\b")

_SUFFIX = r"(am|pm|a\.m\.|p\.m\.|hs|h|hrs|horas)?"
_HOUR_RANGE = re.compile(
    r"(\d{1,2})(?::(\d{2}))?\s*" + _SUFFIX + r"\s*(?:a|hasta|-)\s*(\d{1,2})(?::(\d{2}))?\s*" + _SUFFIX
)
_TIME = re.compile(r"(\d{1,2})(?::(\d{2}))?")


@dataclass(frozen=True)
class Window:
    start_minute: int
    end_minute: int

    def contains(self, minute: int) -> bool:
        return self.start_minute <= minute <= self.end_minute


def to_minutes(hour: str, minute: Optional[str] = None, suffix: Optional[str] = None) -> Optional[int]:
    h = int(hour)
    m = int(minute) if minute else 0
    if m < 0 or m > 59:
        return None
    suffix = (suffix or "").replace(".", "").strip().lower()
    if "pm" in suffix and h < 12:
        h += 12
    elif "am" in suffix and h == 12:
        h = 0
    if h >= 24:
        h = h % 24
    return h * 60 + m


def parse_office_hours(raw: Optional[str]) -> List[Window]:
    if not raw:
        return []
    text = re.sub(r"[–—−]", "-", raw.lower())
    text = re.sub(r"[/|]", " ", text)
    text = re.sub(r"\s+", " ", text).strip()

    windows = []
    for sh, sm, ss, eh, em, es in _HOUR_RANGE.findall(text):
        start = to_minutes(sh, sm, ss)
        end = to_minutes(eh, em, es)
        if start is None or end is None or end <= start:
            continue
        windows.append(Window(start, end))

    if not windows:
        # bare times without separators: pair them up in order ("9 13 17 20")
        times = []
        for h, m in _TIME.findall(text)[:8]:
            minutes = to_minutes(h, m)
            if minutes is not None:
                times.append(minutes)
        for i in range(0, len(times) - 1, 2):
            if times[i + 1] > times[i]:
                windows.append(Window(times[i], times[i + 1]))

    return sorted(windows, key=lambda w: w.start_minute)


def parse_office_days(raw: Optional[str]) -> Optional[Set[int]]:
    """Weekday numbers (0 = domingo) the merchant works, or None when unrestricted."""
    text = normalize((raw or "").replace("-", " a "))
    if not text:
        return None

    days: Set[int] = set()
    for start_name, end_name in _DAY_RANGE.findall(text):
        current, end = DAY_NUMBERS[start_name], DAY_NUMBERS[end_name]
        days.add(current)
        for _ in range(7):
            if current == end:
                break
            current = (current + 1) % 7
            days.add(current)

    for token in _DAY_RANGE.sub(" ", text).split():
        if token in ("y", "a", "al"):
            continue
        idx = DAY_NUMBERS.get(token)
        if idx is None and token.endswith("s") and len(token) > 3:
            idx = DAY_NUMBERS.get(token[:-1])
        if idx is not None:
            days.add(idx)

    return days or None


def weekday_number(now: datetime) -> int:
    # datetime.weekday(): lunes = 0
    return (now.weekday() + 1) % 7


def closed_reply(merchant, now: Optional[datetime] = None) -> Optional[str]:
    """The reply to send when the merchant is not taking orders at `now`, else None."""
    if merchant is None:
        return None
    now = now or datetime.now()

    days = parse_office_days(merchant.office_days)
    if days is not None and weekday_number(now) not in days:
        return replies.CLOSED_TODAY

    windows = parse_office_hours(merchant.office_hours)
    minute = now.hour * 60 + now.minute
    if windows and not any(w.contains(minute) for w in windows):
        return replies.CLOSED_NOW
    return None


def is_open(merchant, now: Optional[datetime] = None) -> bool:
    return closed_reply(merchant, now) is None
