"""Rule-based field extraction from chat text, with swappable templates."""

from crm_chat.extraction.engine import LINE_RULES, LineRule, extract
from crm_chat.extraction.templates import TemplateStore, validate_template_set

__all__ = [
    "extract",
    "LineRule",
    "LINE_RULES",
    "TemplateStore",
    "validate_template_set",
]
