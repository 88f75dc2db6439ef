import pytest

from src.text_normalizer import (
    clean_company_name,
    company_match_key,
    extract_prefecture,
    is_company_match,
    norm_text_compact,
    normalize_address,
    normalize_area,
    normalize_employees,
    normalize_industry,
    normalize_phone,
    parse_employee_count,
    parse_salary_range,
    prefecture_code,
)


def test_clean_company_name_drops_suffix_and_promo_tags():
    assert clean_company_name("株式会社サンプル｜東京本社") == "株式会社サンプル"
    assert clean_company_name("【プライム市場】株式会社サンプル") == "株式会社サンプル"
    assert clean_company_name("株式会社サンプル（サンプルグループ）") == "株式会社サンプル"


def test_clean_company_name_halfwidth_alnum():
    assert clean_company_name("株式会社ＡＢＣ１２３") == "株式会社ABC123"
    assert clean_company_name(None) == ""


def test_company_match_key_strips_corporate_tokens():
    assert company_match_key("株式会社 サンプル") == "サンプル"
    assert company_match_key("(株)サンプル") == "サンプル"
    assert company_match_key("") == ""


def test_is_company_match_is_bidirectional():
    assert is_company_match("株式会社サンプル", "サンプル")
    assert is_company_match("サンプル", "株式会社サンプル東京")
    assert not is_company_match("株式会社サンプル", "株式会社テスト")


def test_is_company_match_rejects_empty_keys():
    # 法人格だけの名前は何にでも一致してしまうので不一致扱い
    assert not is_company_match("株式会社", "株式会社サンプル")
    assert not is_company_match("", "")


def test_prefecture_helpers():
    assert extract_prefecture("〒150-0002 東京都渋谷区渋谷1-1-1") == "東京都"
    assert extract_prefecture("どこか") == ""
    assert prefecture_code("東京都") == "13"
    assert prefecture_code("北海道") == "01"
    assert prefecture_code("沖縄県") == "47"
    assert prefecture_code("東京") is None


def test_normalize_address_strips_postal_code():
    assert normalize_address("〒１５０-０００２ 東京都渋谷区渋谷1-1-1") == "東京都渋谷区渋谷1-1-1"
    assert normalize_address("本社：大阪府大阪市北区梅田1-1") == "大阪府大阪市北区梅田1-1"
    assert normalize_address("") == ""


def test_normalize_area_aliases():
    assert normalize_area("東京") == "東京都"
    assert normalize_area("神奈川県") == "神奈川県"
    assert normalize_area("大阪市内勤務") == "大阪府"
    assert normalize_area("全国") == "全国"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("ソフトウェア開発", "IT・通信"),
        ("総合人材サービス（人材派遣）", "人材・教育"),
        ("不動産の売買・仲介", "不動産・建設"),
        ("食品メーカー", "メーカー・製造"),
    ],
)
def test_normalize_industry_categories(raw, expected):
    assert normalize_industry(raw) == expected


def test_normalize_industry_unknown_is_truncated():
    assert normalize_industry("養蜂、はちみつ") == "養蜂"
    long_name = "あ" * 30
    assert normalize_industry(long_name) == "あ" * 20 + "..."


def test_parse_salary_range():
    assert parse_salary_range("年収400万円～600万円") == (400, 600)
    assert parse_salary_range("月給25万円～35万円") == (300, 420)
    assert parse_salary_range("年収500万円以上") == (500, None)
    assert parse_salary_range("年収450万円") == (450, 450)
    assert parse_salary_range("応相談") == (None, None)


def test_employees_band():
    assert parse_employee_count("1,200名（2024年4月時点）") == 1200
    assert normalize_employees("75名") == "51〜100名"
    assert normalize_employees("８人") == "〜10名"
    assert normalize_employees("10000名") == "5001名以上"
    assert normalize_employees("非公開") == "非公開"


def test_normalize_phone_dashes():
    assert normalize_phone("０３ー１２３４ー５６７８") == "03-1234-5678"
    assert normalize_phone(None) == ""


def test_norm_text_compact():
    assert norm_text_compact("従業員 数") == "従業員数"
    assert norm_text_compact("代表者・役員") == "代表者役員"
