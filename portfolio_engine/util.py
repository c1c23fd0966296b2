from __future__ import annotations

import csv
import datetime as dt
import math
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

UTC = dt.timezone.utc
MILLIS_PER_DAY = 24 * 60 * 60 * 1000

_MONEY_RE = re.compile(r"[-+]?\d[\d,]*\.?\d*(?:[eE][-+]?\d+)?")


def sniff_delimiter(text: str) -> str:
    sample = "\n".join((text or "").splitlines()[:30])
    if not sample:
        return ","
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",\t;")
        return getattr(dialect, "delimiter", ",") or ","
    except csv.Error:
        return ","


def norm_key(s: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "_" for ch in (s or "")).strip("_")


def pick(row: dict[str, Any], keys: list[str]) -> Any:
    """First value in `row` whose normalized header matches one of `keys`."""
    norm = {norm_key(k): k for k in row.keys() if k}
    for k in keys:
        if k in norm:
            return row.get(norm[k])
    return None


def parse_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    if not s:
        return None
    neg = False
    # Formats like "(123.45)".
    if s.startswith("(") and s.endswith(")"):
        neg = True
        s = s[1:-1]
    m = _MONEY_RE.search(s.replace("$", "").replace(" ", ""))
    if not m:
        return None
    try:
        x = float(m.group(0).replace(",", ""))
    except ValueError:
        return None
    return -x if neg else x


def to_millis(value: dt.datetime | dt.date) -> int:
    if isinstance(value, dt.datetime):
        d = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    else:
        d = dt.datetime(value.year, value.month, value.day, tzinfo=UTC)
    return int(round(d.timestamp() * 1000))


def from_millis(ms: int | float) -> dt.datetime:
    return dt.datetime.fromtimestamp(float(ms) / 1000.0, UTC)


def parse_timestamp_millis(value: Any) -> int | None:
    """
    Accepts epoch millis, epoch seconds, or an ISO-like date/datetime string.

    Numbers below 1e11 are treated as seconds.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dt.datetime) or isinstance(value, dt.date):
        return to_millis(value)
    if isinstance(value, (int, float)):
        x = float(value)
        return int(x * 1000) if abs(x) < 1e11 else int(x)
    s = str(value).strip()
    if not s:
        return None
    if re.fullmatch(r"\d+(\.\d+)?", s):
        return parse_timestamp_millis(float(s))
    try:
        return to_millis(dt.datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d", "%d-%b-%Y"):
        try:
            return to_millis(dt.datetime.strptime(s.split()[0], fmt))
        except ValueError:
            continue
    return None


def days_between(start_ms: int | float, end_ms: int | float) -> float:
    return (float(end_ms) - float(start_ms)) / MILLIS_PER_DAY


def safe_div(n: float, d: float, default: float = 0.0) -> float:
    if d == 0:
        return default
    return n / d


def pct(n: float, d: float) -> float:
    return safe_div(n, d) * 100.0


def uniq_sorted(xs: Iterable[str]) -> list[str]:
    return sorted({str(x).strip() for x in xs if str(x).strip()})


def format_money(value: Any, digits: int = 2, currency: str = "$", dash: str = "—") -> str:
    """
    "$1,234.56" style formatting for recommendation text.

    - `None` -> dash
    - infinite values -> "∞"
    """
    if value is None:
        return dash
    if isinstance(value, float) and math.isinf(value):
        return "-∞" if value < 0 else "∞"
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        return str(value)
    digits = max(0, int(digits))
    q = Decimal(1) if digits == 0 else Decimal("1").scaleb(-digits)
    d = d.quantize(q, rounding=ROUND_HALF_UP)
    sign = "-" if d < 0 else ""
    d_abs = -d if d < 0 else d
    return f"{sign}{currency}{d_abs:,.{digits}f}"
