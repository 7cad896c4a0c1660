"""Swappable store for field-extraction templates.

A template set maps a field name to an ordered list of regular expressions,
e.g. ``{"phone": ["手机[:：]\\s*(1\\d{10})"]}``. The store starts with the
built-in defaults and is replaced wholesale by a successful import; a failed
import leaves it untouched.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from pathlib import Path

from crm_chat.exceptions import TemplateValidationError
from crm_chat.extraction.patterns import default_template_set

logger = logging.getLogger(__name__)

TEMPLATES_PATH_ENV = "CRM_CHAT_TEMPLATES_PATH"


def validate_template_set(obj) -> dict[str, list[str]]:
    """Check the ``{field: [regex, ...]}`` shape and pattern syntax.

    Returns a copy of ``obj`` safe to install; raises TemplateValidationError
    describing the first problem found.
    """
    if not isinstance(obj, dict):
        raise TemplateValidationError(
            f"Template set must be a JSON object, got {type(obj).__name__}"
        )
    validated: dict[str, list[str]] = {}
    for field, patterns in obj.items():
        if not isinstance(patterns, list):
            raise TemplateValidationError(
                f"Field {field!r} must map to a list of pattern strings, "
                f"got {type(patterns).__name__}"
            )
        for index, pattern in enumerate(patterns):
            if not isinstance(pattern, str):
                raise TemplateValidationError(
                    f"Field {field!r} pattern #{index} must be a string, "
                    f"got {type(pattern).__name__}"
                )
            try:
                re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                raise TemplateValidationError(
                    f"Field {field!r} pattern #{index} is not a valid regex: {e}"
                ) from e
        validated[field] = list(patterns)
    return validated


class TemplateStore:
    """Holds the active template set; swaps are all-or-nothing."""

    def __init__(self, templates: dict[str, list[str]] | None = None):
        if templates is None:
            self._active = default_template_set()
        else:
            self._active = validate_template_set(templates)
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> TemplateStore:
        """Defaults, or the JSON file named by CRM_CHAT_TEMPLATES_PATH."""
        store = cls()
        path = os.environ.get(TEMPLATES_PATH_ENV)
        if path:
            store.import_file(path)
        return store

    def get_active(self) -> dict[str, list[str]]:
        with self._lock:
            active = self._active
        return {field: list(patterns) for field, patterns in active.items()}

    def import_set(self, raw: str) -> None:
        """Parse, validate and install a JSON template set."""
        try:
            obj = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise TemplateValidationError(f"Template set is not valid JSON: {e}") from e
        validated = validate_template_set(obj)
        with self._lock:
            self._active = validated
        logger.info(f"Imported extraction templates for {len(validated)} fields")

    def export_active(self) -> str:
        """Pretty JSON of the active set, re-importable as-is."""
        return json.dumps(self.get_active(), ensure_ascii=False, indent=2)

    def reset(self) -> None:
        """Restore the built-in defaults."""
        defaults = default_template_set()
        with self._lock:
            self._active = defaults

    def import_file(self, path: str | Path) -> None:
        try:
            raw = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise TemplateValidationError(f"Cannot read template file {path}: {e}") from e
        self.import_set(raw)

    def export_file(self, path: str | Path) -> Path:
        target = Path(path)
        target.write_text(self.export_active(), encoding="utf-8")
        logger.info(f"Exported extraction templates to {target}")
        return target
