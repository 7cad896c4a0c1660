"""Rule-based extraction of lead/customer fields from free-form chat text.

Extraction runs in two phases over the same accumulating record:

1. Labeled patterns. Each field's patterns (custom templates first, built-in
   defaults otherwise) are tried in order against the whole text; the first
   match fills the field.
2. Line heuristics. The raw text is split into non-empty lines and every line
   is offered to an ordered chain of ``LineRule`` objects. A rule only runs
   while one of its target fields is still empty, so nothing filled earlier
   is ever overwritten.

``extract`` never raises and never does I/O; a field that cannot be found is
simply absent from the result.
"""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from crm_chat.extraction.normalize import (
    decompose_address,
    normalize_date,
    normalize_gender,
    normalize_income,
    normalize_level,
)
from crm_chat.extraction.patterns import CJK, DEFAULT_PATTERNS, LABELED_FIELDS

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"[\t ]+")
_LINE_SPLIT_RE = re.compile(r"[\n\r]+")

# Fields whose captured text goes through a normalizer instead of being
# stored verbatim
_NORMALIZED_FIELDS: dict[str, Callable[[str], str | None]] = {
    "annual_income": normalize_income,
    "birth_date": normalize_date,
    "follow_up_date": normalize_date,
}


def extract(text: str, templates: Mapping[str, list[str]] | None = None) -> dict[str, str]:
    """Extract structured fields from ``text``.

    Args:
        text: Free-form message text, possibly several messages joined by
            newlines.
        templates: Active template set (field -> regex list). Fields missing
            from it, or mapped to an empty list, use the built-in patterns.

    Returns:
        Flat field -> value dict. An address match also writes ``province``,
        ``city`` and ``district`` when they can be found.
    """
    raw = text if isinstance(text, str) else str(text or "")
    record: dict[str, str] = {}
    _labeled_pass(raw, templates or {}, record)
    _line_pass(raw, record)
    return record


# ----------------------------------------------------------------------
# Phase A: labeled patterns
# ----------------------------------------------------------------------


def _labeled_pass(raw: str, templates: Mapping[str, list[str]], record: dict[str, str]) -> None:
    normalized = _WHITESPACE_RE.sub(" ", raw).strip()
    for field in LABELED_FIELDS:
        custom = templates.get(field)
        patterns = custom if isinstance(custom, list) and custom else DEFAULT_PATTERNS[field]
        for pattern in patterns:
            regex = _compile(pattern) if isinstance(pattern, str) else None
            if regex is None:
                continue
            match = regex.search(normalized)
            if not match:
                continue
            value = _field_value(field, match)
            if value:
                _store(field, value, record)
                break


def _field_value(field: str, match: re.Match) -> str | None:
    if field in _NORMALIZED_FIELDS:
        captured = _named_value(match)
        return _NORMALIZED_FIELDS[field](captured if captured is not None else match.group(0))
    value = _named_value(match)
    if value is None:
        value = _last_group(match)
    value = value.strip()
    if field == "gender":
        return normalize_gender(value)
    return value


def _store(field: str, value: str, record: dict[str, str]) -> None:
    record[field] = value
    if field == "address":
        for key, part in decompose_address(value).items():
            record.setdefault(key, part)


def _named_value(match: re.Match) -> str | None:
    if "value" in match.re.groupindex:
        return match.group("value")
    return None


def _last_group(match: re.Match) -> str:
    for index in range(match.re.groups, 0, -1):
        if match.group(index) is not None:
            return match.group(index)
    return match.group(0)


@functools.lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Skipping invalid extraction pattern {pattern!r}: {e}")
        return None


# ----------------------------------------------------------------------
# Phase B: line heuristics
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class LineRule:
    """One heuristic over a single trimmed line.

    ``match`` returns the fields it would set, or None. The rule is only
    consulted while at least one of ``targets`` is unset, and it only ever
    writes fields that are still unset. After a rule fires the rest of the
    chain is skipped for that line unless ``stop`` is False.
    """

    name: str
    targets: tuple[str, ...]
    match: Callable[[str], dict[str, str] | None]
    stop: bool = True


_MOBILE_LINE_RE = re.compile(r"1[3-9]\d{9}")
_INCOME_LINE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*万")
_DATE_LINE_RE = re.compile(r"\d{4}[-/年]\d{1,2}[-/月]\d{1,2}")
_GRADE_LINE_RE = re.compile(r"([ABCD])级$", re.IGNORECASE)
_REGION_END_RE = re.compile(r"[省市区县]$")
_REGION_INNER_RE = re.compile(r"[区县]")
_NAME_LINE_RE = re.compile(rf"[{CJK}]{{2,6}}")
_OCCUPATION_LINE_RE = re.compile(rf"[{CJK}A-Za-z]{{2,10}}")
_REGION_CHARS_RE = re.compile(r"[省市区县]")


def _phone_line(line: str) -> dict[str, str] | None:
    if _MOBILE_LINE_RE.fullmatch(line):
        return {"phone": line}
    return None


def _gender_line(line: str) -> dict[str, str] | None:
    if line in ("男", "女"):
        return {"gender": normalize_gender(line)}
    return None


def _income_line(line: str) -> dict[str, str] | None:
    match = _INCOME_LINE_RE.search(line)
    if match:
        return {"annual_income": match.group(1)}
    return None


def _birth_date_line(line: str) -> dict[str, str] | None:
    match = _DATE_LINE_RE.search(line)
    if match:
        return {"birth_date": normalize_date(match.group(0))}
    return None


def _grade_line(line: str) -> dict[str, str] | None:
    match = _GRADE_LINE_RE.search(line)
    if match:
        return {"quality_grade": match.group(1).upper()}
    return None


def _level_line(line: str) -> dict[str, str] | None:
    level = normalize_level(line) if len(line) == 1 else None
    if level:
        # Legacy forms read the same 高/中/低 line as both priority and value grade
        return {"priority": level, "value_grade": level}
    return None


def _address_line(line: str) -> dict[str, str] | None:
    if _REGION_END_RE.search(line) or _REGION_INNER_RE.search(line):
        return {"address": line, **decompose_address(line)}
    return None


def _name_line(line: str) -> dict[str, str] | None:
    if _NAME_LINE_RE.fullmatch(line):
        return {"name": line}
    return None


def _occupation_line(line: str) -> dict[str, str] | None:
    if _OCCUPATION_LINE_RE.fullmatch(line) and not _REGION_CHARS_RE.search(line):
        return {"occupation": line}
    return None


LINE_RULES: tuple[LineRule, ...] = (
    LineRule("phone", ("phone",), _phone_line),
    LineRule("gender", ("gender",), _gender_line),
    LineRule("annual_income", ("annual_income",), _income_line),
    LineRule("birth_date", ("birth_date",), _birth_date_line),
    LineRule("quality_grade", ("quality_grade",), _grade_line),
    LineRule("level", ("priority", "value_grade"), _level_line, stop=False),
    LineRule("address", ("address",), _address_line),
    LineRule("name", ("name",), _name_line),
    LineRule("occupation", ("occupation",), _occupation_line),
)


def split_lines(raw: str) -> list[str]:
    """Non-empty trimmed lines of ``raw``."""
    return [line.strip() for line in _LINE_SPLIT_RE.split(raw) if line.strip()]


def apply_line_rules(
    lines: list[str],
    record: dict[str, str],
    rules: tuple[LineRule, ...] = LINE_RULES,
) -> dict[str, str]:
    """Thread ``record`` through ``rules`` for every line, filling only gaps."""
    for line in lines:
        for rule in rules:
            if all(target in record for target in rule.targets):
                continue
            found = rule.match(line)
            if not found:
                continue
            for key, value in found.items():
                if value and key not in record:
                    record[key] = value
            if rule.stop:
                break
    return record


def _line_pass(raw: str, record: dict[str, str]) -> None:
    apply_line_rules(split_lines(raw), record)
