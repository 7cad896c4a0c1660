"""Built-in labeled patterns for field extraction.

Each field maps to an ordered list of regular expressions, matched
case-insensitively against the whole message text. Where a pattern defines a
``value`` group, that group is the extracted value. Labeled variants come
before bare ones so a ``label: value`` pair beats a loose match elsewhere in
the text.
"""

from __future__ import annotations

CJK = r"\u4e00-\u9fa5"

_DATE = r"\d{4}[年/-]\d{1,2}[月/-]\d{1,2}日?"

DEFAULT_PATTERNS: dict[str, list[str]] = {
    "name": [
        rf"(姓名|联系人|客户名)[:：]\s*(?P<value>[{CJK}A-Za-z ]{{1,30}})",
    ],
    "phone": [
        r"(手机号|联系电话|手机|电话)[:：]?\s*(?P<value>1[3-9]\d{9})(?!\d)",
        r"(?<!\d)(?P<value>1[3-9]\d{9})(?!\d)",
    ],
    "gender": [
        r"性别[:：]\s*(?P<value>男|女|未知|不详)",
    ],
    "email": [
        r"(电子邮箱|邮箱|email|e-mail)[:：]?\s*(?P<value>[\w.-]+@[\w.-]+\.[A-Za-z]{2,})",
    ],
    "wechat": [
        r"(微信号|微信|wechat)[:：]?\s*(?P<value>[a-zA-Z][a-zA-Z0-9_-]{5,})",
    ],
    "annual_income": [
        r"(年收入|年薪|薪资|收入)[:：]?\s*(?P<value>\d[\d.,]*\s*[万wk千元]?)",
    ],
    "identification_number": [
        r"(身份证号码|身份证号|身份证|证件号码|证件号)[:：]\s*(?P<value>[0-9A-Za-z]{8,20})",
    ],
    "birth_date": [
        rf"(出生日期|生日)[:：]\s*(?P<value>{_DATE})",
        rf"(?P<value>{_DATE})",
    ],
    "follow_up_date": [
        rf"(下次跟进|跟进)(日期|时间)?[:：]\s*(?P<value>{_DATE})",
    ],
    "company": [
        r"(公司|单位|企业)[:：]\s*(?P<value>[^，。\n]{2,})",
    ],
    "occupation": [
        r"(职业|岗位|职位)[:：]\s*(?P<value>[^，。\n]{2,})",
    ],
    "source": [
        r"(来源|渠道)[:：]\s*(?P<value>[^，。\n]+)",
    ],
    "postal_code": [
        r"(邮政编码|邮编)[:：]?\s*(?P<value>\d{6})(?!\d)",
    ],
    "address": [
        r"地址[:：]\s*(?P<value>[^\n。]*)",
    ],
}

# Phase A visits fields in this order
LABELED_FIELDS = tuple(DEFAULT_PATTERNS)


def default_template_set() -> dict[str, list[str]]:
    """Fresh copy of the built-in template set."""
    return {field: list(patterns) for field, patterns in DEFAULT_PATTERNS.items()}
