"""Value normalizers shared by both extraction phases."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from crm_chat.extraction.patterns import CJK

_INCOME_RE = re.compile(r"(\d[\d.,]*)\s*([万wk千元]?)", re.IGNORECASE)
_DATE_RE = re.compile(r"(\d{4})[年/-](\d{1,2})[月/-](\d{1,2})")

# Address grammar with explicit 省/市/区县 markers
_MARKER_ADDRESS_RE = re.compile(
    r"(?:(?P<province>[^省市]+?)省)?"
    r"(?:(?P<city>[^省市]+?)市)?"
    r"(?:(?P<district>[^省市区县]+?)[区县])?"
)
# Marker-less "山东济南历城区" shape: a bare CJK run ending in 区/县
_SUFFIX_ADDRESS_RE = re.compile(rf"([{CJK}]{{2,}})[区县]")

_GENDERS = {"男": "male", "女": "female"}
_LEVELS = {"高": "high", "中": "medium", "低": "low"}


def normalize_income(text: str) -> str | None:
    """Convert an income figure to 万 (10k yuan) units.

    万/w are taken as-is and k/千 are divided by 10. A 元 suffix or a bare
    number is also taken as-is rather than divided by 10,000, matching what the
    lead forms have always received.
    """
    match = _INCOME_RE.search(text)
    if not match:
        return None
    unit = match.group(2).lower()
    try:
        amount = Decimal(match.group(1).replace(",", ""))
        if unit in ("k", "千"):
            amount = amount / 10
        return format_decimal(amount)
    except InvalidOperation:
        return None


def format_decimal(amount: Decimal) -> str:
    """Round half-up to 2 places and drop trailing zeros: 12, 1.5, 0.25."""
    rounded = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{rounded:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def normalize_date(text: str) -> str | None:
    """First ``YYYY?MM?DD`` date in ``text`` as zero-padded ``YYYY-MM-DD``."""
    match = _DATE_RE.search(text)
    if not match:
        return None
    year, month, day = match.groups()
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"


def normalize_gender(value: str) -> str:
    return _GENDERS.get(value.strip(), "unknown")


def normalize_level(value: str) -> str | None:
    """高/中/低 to high/medium/low."""
    return _LEVELS.get(value.strip())


def decompose_address(address: str) -> dict[str, str]:
    """Best-effort province/city/district breakdown of a Chinese address.

    Explicit 省/市 markers win. Without them, a marker-less run ending in 区/县
    is split into two-character province and city prefixes. Failing both, a
    district found before a 区/县 marker is still reported.
    """
    address = address.strip()
    parts = {}
    marker = _MARKER_ADDRESS_RE.match(address)
    if marker:
        parts = {k: v for k, v in marker.groupdict().items() if v}
    if "province" in parts or "city" in parts:
        return parts

    suffix = _SUFFIX_ADDRESS_RE.fullmatch(address)
    if suffix:
        return _split_bare_region(suffix.group(1))

    return parts


def _split_bare_region(run: str) -> dict[str, str]:
    if len(run) >= 6:
        return {"province": run[:2], "city": run[2:4], "district": run[4:]}
    if len(run) >= 4:
        return {"city": run[:2], "district": run[2:]}
    return {"district": run}
