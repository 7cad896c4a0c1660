"""Tests for the field extraction engine."""

from crm_chat.extraction.engine import (
    LINE_RULES,
    LineRule,
    apply_line_rules,
    extract,
    split_lines,
)


def test_labeled_basic_record():
    text = "姓名：王芳\n手机：13912345678\n年收入：12万"
    assert extract(text) == {"name": "王芳", "phone": "13912345678", "annual_income": "12"}


def test_unlabeled_region_line_becomes_address():
    assert extract("山东济南历城区") == {
        "address": "山东济南历城区",
        "province": "山东",
        "city": "济南",
        "district": "历城",
    }


def test_grade_and_level_lines():
    # A lone 高/中/低 line fills both priority and value_grade (legacy dual-write)
    assert extract("B级\n高") == {"quality_grade": "B", "priority": "high", "value_grade": "high"}


def test_first_level_line_wins_for_both_fields():
    record = extract("低\n高")
    assert record["priority"] == "low"
    assert record["value_grade"] == "low"


def test_labeled_phone_beats_bare_line():
    assert extract("电话: 13800138000\n13900139001")["phone"] == "13800138000"
    assert extract("13900139001\n电话: 13800138000")["phone"] == "13800138000"


def test_bare_phone_line():
    assert extract("13900139001") == {"phone": "13900139001"}


def test_full_labeled_card():
    text = (
        "客户名：李四\n"
        "性别：男\n"
        "邮箱：li.si@example.com\n"
        "微信号：lisi_2024\n"
        "身份证：11010519491231002X\n"
        "出生日期：1990年3月5日\n"
        "下次跟进时间：2024/7/1\n"
        "公司：平安保险，总部\n"
        "职位：理财经理\n"
        "来源：转介绍\n"
        "邮编：100000\n"
        "地址：广东省深圳市南山区科技园。"
    )
    record = extract(text)
    assert record["name"] == "李四"
    assert record["gender"] == "male"
    assert record["email"] == "li.si@example.com"
    assert record["wechat"] == "lisi_2024"
    assert record["identification_number"] == "11010519491231002X"
    assert record["birth_date"] == "1990-03-05"
    assert record["follow_up_date"] == "2024-07-01"
    assert record["company"] == "平安保险"
    assert record["occupation"] == "理财经理"
    assert record["source"] == "转介绍"
    assert record["postal_code"] == "100000"
    assert record["address"] == "广东省深圳市南山区科技园"
    assert record["province"] == "广东"
    assert record["city"] == "深圳"
    assert record["district"] == "南山"


def test_gender_unknown_values():
    assert extract("性别：不详")["gender"] == "unknown"
    assert extract("性别：未知")["gender"] == "unknown"
    assert extract("女")["gender"] == "female"


def test_income_units():
    assert extract("年收入：30w")["annual_income"] == "30"
    assert extract("年薪 500k")["annual_income"] == "50"
    assert extract("收入：8千")["annual_income"] == "0.8"
    assert extract("薪资：1,234.567万")["annual_income"] == "1234.57"


def test_income_yuan_is_not_divided():
    # Legacy quirk kept on purpose: 元 or no unit is read as already in 万,
    # so 200000元 pre-fills 200000 rather than 20. Pending product decision.
    assert extract("年收入：200000元")["annual_income"] == "200000"
    assert extract("年收入：15")["annual_income"] == "15"


def test_income_line_heuristic_keeps_raw_number():
    assert extract("大概 25.50 万")["annual_income"] == "25.50"


def test_bare_date_fills_birth_date():
    assert extract("1985-1-9")["birth_date"] == "1985-01-09"
    assert extract("生日：1985/12/30")["birth_date"] == "1985-12-30"


def test_labeled_birth_date_preferred_over_earlier_bare_date():
    record = extract("登记 2024-01-01\n出生日期：1990-02-03")
    assert record["birth_date"] == "1990-02-03"


def test_name_and_occupation_lines():
    record = extract("张伟\n教师")
    assert record["name"] == "张伟"
    assert record["occupation"] == "教师"


def test_occupation_line_excludes_region_characters():
    record = extract("地址：北京市朝阳区\n张伟\n市场部\nDriver")
    assert record["name"] == "张伟"
    assert record["occupation"] == "Driver"


def test_labeled_address_without_markers_uses_suffix_grammar():
    record = extract("地址：山东济南历城区")
    assert record["province"] == "山东"
    assert record["city"] == "济南"
    assert record["district"] == "历城"


def test_address_marker_partial():
    record = extract("地址：北京市朝阳区建国路88号")
    assert record["address"] == "北京市朝阳区建国路88号"
    assert record["city"] == "北京"
    assert record["district"] == "朝阳"
    assert "province" not in record


def test_labeled_address_not_overwritten_by_line():
    record = extract("地址：上海市浦东新区\n历城区")
    assert record["address"] == "上海市浦东新区"
    assert record["district"] == "浦东新"


def test_tabs_and_spaces_collapsed_for_labels():
    assert extract("姓名：\t  赵六")["name"] == "赵六"


def test_custom_template_overrides_default():
    templates = {"name": [r"称呼[:：]\s*(?P<value>\S+)"]}
    assert extract("称呼：老王\n姓名：王五", templates)["name"] == "老王"


def test_custom_template_without_named_group_uses_last_group():
    templates = {"company": [r"(就职于)\s*(\S+?)(?:。|$)"]}
    assert extract("就职于 太平人寿。", templates)["company"] == "太平人寿"


def test_empty_custom_list_falls_back_to_default():
    assert extract("姓名：王芳", {"name": []})["name"] == "王芳"


def test_invalid_custom_pattern_is_skipped():
    templates = {"name": ["(unclosed", r"名字[:：](?P<value>\S+)"]}
    assert extract("名字：阿明", templates)["name"] == "阿明"


def test_custom_date_pattern_is_normalized():
    templates = {"follow_up_date": [r"回访\s*\S+"]}
    assert extract("回访 2024年9月8日", templates)["follow_up_date"] == "2024-09-08"


def test_empty_and_junk_input():
    assert extract("") == {}
    assert extract("   \n\t\n") == {}
    assert extract(None) == {}
    assert extract("？？？！！！") == {}


def test_extract_is_deterministic():
    text = "联系人：Amy Lee\n13800138000\nA级\n中\n江苏南京玄武区"
    assert extract(text) == extract(text)


def test_split_lines():
    assert split_lines(" a \r\n\r\n b\n") == ["a", "b"]


def test_line_rules_never_overwrite():
    record = {"phone": "13800000000"}
    apply_line_rules(["13911112222", "男"], record)
    assert record == {"phone": "13800000000", "gender": "male"}


def test_line_rules_custom_chain():
    rule = LineRule("vip", ("tier",), lambda line: {"tier": "vip"} if line == "VIP" else None)
    assert apply_line_rules(["VIP", "张三"], {}, (rule,) + LINE_RULES) == {
        "tier": "vip",
        "name": "张三",
    }
