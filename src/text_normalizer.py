from __future__ import annotations

import re
import unicodedata
from typing import Any, Optional, Tuple

_SYMBOL_RE = re.compile(r"[／/・,，.．\-‐‑‒–—―ー_()（）\[\]{}<>＜＞「」『』【】〈〉《》\"'`´･:：]+")
_SPACE_RE = re.compile(r"\s+")

# JIS X 0401 の順（index + 1 が都道府県コード）
PREFECTURE_NAMES = [
    "北海道", "青森県", "岩手県", "宮城県", "秋田県", "山形県", "福島県",
    "茨城県", "栃木県", "群馬県", "埼玉県", "千葉県", "東京都", "神奈川県",
    "新潟県", "富山県", "石川県", "福井県", "山梨県", "長野県",
    "岐阜県", "静岡県", "愛知県", "三重県",
    "滋賀県", "京都府", "大阪府", "兵庫県", "奈良県", "和歌山県",
    "鳥取県", "島根県", "岡山県", "広島県", "山口県",
    "徳島県", "香川県", "愛媛県", "高知県",
    "福岡県", "佐賀県", "長崎県", "熊本県", "大分県", "宮崎県", "鹿児島県", "沖縄県",
]
PREFECTURE_NAME_RE = re.compile("|".join(re.escape(p) for p in PREFECTURE_NAMES))

PREFECTURE_ALIASES = {
    "東京": "東京都",
    "大阪": "大阪府",
    "京都": "京都府",
    "北海道": "北海道",
    "神奈川": "神奈川県",
    "埼玉": "埼玉県",
    "千葉": "千葉県",
    "愛知": "愛知県",
    "福岡": "福岡県",
    "兵庫": "兵庫県",
    "広島": "広島県",
    "宮城": "宮城県",
}

# リクナビNEXT の area-{slug}/ 用
PREFECTURE_ROMAJI = dict(zip(PREFECTURE_NAMES, [
    "hokkaido", "aomori", "iwate", "miyagi", "akita", "yamagata", "fukushima",
    "ibaraki", "tochigi", "gunma", "saitama", "chiba", "tokyo", "kanagawa",
    "niigata", "toyama", "ishikawa", "fukui", "yamanashi", "nagano",
    "gifu", "shizuoka", "aichi", "mie",
    "shiga", "kyoto", "osaka", "hyogo", "nara", "wakayama",
    "tottori", "shimane", "okayama", "hiroshima", "yamaguchi",
    "tokushima", "kagawa", "ehime", "kochi",
    "fukuoka", "saga", "nagasaki", "kumamoto", "oita", "miyazaki", "kagoshima", "okinawa",
]))

_CORP_TOKENS = (
    "株式会社",
    "有限会社",
    "合同会社",
    "合資会社",
    "合名会社",
    "一般社団法人",
    "一般財団法人",
    "医療法人",
    "社会福祉法人",
    "（株）",
    "(株)",
    "㈱",
    "（有）",
    "(有)",
    "㈲",
)

_PROMO_TAG_RE = re.compile(
    r"【(?:プライム市場|スタンダード市場|グロース市場|東証一部|東証二部|TOKYO PRO Market上場|急募|未経験歓迎)】"
)
_GROUP_PAREN_RE = re.compile(r"\(.*グループ.*\)|（.*グループ.*）")
_FULLWIDTH_ALNUM_RE = re.compile(r"[Ａ-Ｚａ-ｚ０-９]")
_FULLWIDTH_DIGIT_RE = re.compile(r"[０-９]")
_POSTAL_RE = re.compile(r"〒?\d{3}-?\d{4}\s*")
_PHONE_DASH_RE = re.compile(r"[‐‑‒–—―ー－−]")

INDUSTRY_CATEGORIES = [
    ("IT・通信", ["IT", "システム", "ソフトウェア", "Web", "インターネット", "情報処理", "SaaS", "クラウド", "アプリ", "ネットワーク", "通信", "セキュリティ", "AI", "人工知能", "DX"]),
    ("メーカー・製造", ["製造", "メーカー", "機械", "電機", "電子", "部品", "素材", "化学", "鉄鋼", "金属", "自動車", "食品", "医薬品", "化粧品", "繊維", "アパレル"]),
    ("商社・流通・小売", ["商社", "卸売", "小売", "流通", "百貨店", "スーパー", "コンビニ", "EC", "通販", "専門店", "量販店"]),
    ("金融・保険", ["銀行", "証券", "保険", "金融", "ファイナンス", "信用金庫", "信託", "投資", "リース", "クレジット", "カード"]),
    ("不動産・建設", ["不動産", "建設", "建築", "ゼネコン", "ハウス", "住宅", "マンション", "ビル", "土木", "設計", "施工", "デベロッパー"]),
    ("広告・マスコミ・エンタメ", ["広告", "マスコミ", "メディア", "放送", "出版", "印刷", "新聞", "テレビ", "ラジオ", "映像", "エンタメ", "ゲーム", "音楽", "芸能", "イベント"]),
    ("コンサルティング", ["コンサル", "シンクタンク", "調査", "リサーチ", "経営", "戦略", "会計", "監査", "税理士", "弁護士", "士業"]),
    ("人材・教育", ["人材", "派遣", "紹介", "採用", "研修", "教育", "学校", "塾", "予備校", "スクール", "資格", "eラーニング"]),
    ("医療・福祉・介護", ["医療", "病院", "クリニック", "福祉", "介護", "薬局", "調剤", "ヘルスケア", "健康", "歯科", "看護"]),
    ("サービス・飲食・レジャー", ["サービス", "飲食", "レストラン", "ホテル", "旅行", "観光", "レジャー", "アミューズメント", "美容", "エステ", "ブライダル", "葬儀", "清掃"]),
    ("物流・運輸", ["物流", "運輸", "運送", "倉庫", "配送", "宅配", "貨物", "海運", "航空", "鉄道", "タクシー", "バス"]),
    ("エネルギー・インフラ", ["電力", "ガス", "石油", "エネルギー", "水道", "インフラ", "再生可能", "太陽光", "風力", "原子力"]),
    ("官公庁・団体", ["官公庁", "公務員", "自治体", "団体", "協会", "組合", "NPO", "NGO", "財団", "社団"]),
]

EMPLOYEE_BANDS = [
    ("〜10名", 0, 10),
    ("11〜50名", 11, 50),
    ("51〜100名", 51, 100),
    ("101〜300名", 101, 300),
    ("301〜500名", 301, 500),
    ("501〜1000名", 501, 1000),
    ("1001〜5000名", 1001, 5000),
    ("5001名以上", 5001, None),
]

_SALARY_RANGE_RE = re.compile(r"(\d+(?:,\d+)?)\s*万?円?\s*[〜~～\-－ー―]+\s*(\d+(?:,\d+)?)\s*万")
_SALARY_MIN_ONLY_RE = re.compile(r"(\d+(?:,\d+)?)\s*万.*以上")
_SALARY_SINGLE_RE = re.compile(r"(\d+(?:,\d+)?)\s*万")
_EMPLOYEE_RE = re.compile(r"(\d+(?:,\d+)?)\s*(?:名|人)")
_LEADING_NUMBER_RE = re.compile(r"^(\d+(?:,\d+)?)")


def norm_text(value: Any) -> str:
    """
    Normalize text for label comparison.
    - NFKC
    - lowercase
    - remove punctuation/symbols used as separators
    - compress whitespaces
    """
    text = unicodedata.normalize("NFKC", str(value or ""))
    text = text.lower().replace("　", " ")
    text = _SYMBOL_RE.sub(" ", text)
    text = _SPACE_RE.sub(" ", text).strip()
    return text


def norm_text_compact(value: Any) -> str:
    return norm_text(value).replace(" ", "")


def squash_ws(value: Any) -> str:
    return _SPACE_RE.sub(" ", str(value or "").replace("　", " ")).strip()


def to_halfwidth_digits(text: str) -> str:
    return _FULLWIDTH_DIGIT_RE.sub(lambda m: chr(ord(m.group(0)) - 0xFEE0), text or "")


def _to_int(num: str) -> int:
    return int(num.replace(",", ""))


# ---------- 会社名 ----------
def clean_company_name(name: Optional[str]) -> str:
    if not name:
        return ""
    text = re.split(r"[|｜]", name)[0]
    text = _PROMO_TAG_RE.sub("", text)
    text = _GROUP_PAREN_RE.sub("", text)
    text = _FULLWIDTH_ALNUM_RE.sub(lambda m: chr(ord(m.group(0)) - 0xFEE0), text)
    return squash_ws(text)


def company_match_key(name: Optional[str]) -> str:
    """照合用キー: 法人格トークンと空白を落として小文字化"""
    if not name:
        return ""
    text = name
    for token in _CORP_TOKENS:
        text = text.replace(token, "")
    text = unicodedata.normalize("NFKC", text)
    text = _SPACE_RE.sub("", text)
    return text.lower()


def is_company_match(target: Optional[str], candidate: Optional[str]) -> bool:
    """どちらかがもう一方を含めば一致（略称ゆれを許容する緩い判定）"""
    a = company_match_key(target)
    b = company_match_key(candidate)
    if not a or not b:
        return False
    return a in b or b in a


# ---------- 住所・エリア ----------
def extract_prefecture(text: Optional[str]) -> str:
    if not text:
        return ""
    m = PREFECTURE_NAME_RE.search(text)
    return m.group(0) if m else ""


def prefecture_code(prefecture: str) -> Optional[str]:
    """JIS 都道府県コード（'01'..'47'）"""
    try:
        return f"{PREFECTURE_NAMES.index(prefecture) + 1:02d}"
    except ValueError:
        return None


def normalize_address(address: Optional[str]) -> str:
    if not address:
        return ""
    text = _POSTAL_RE.sub("", to_halfwidth_digits(address)).strip()
    text = squash_ws(text)
    m = PREFECTURE_NAME_RE.search(text)
    if m:
        return text[m.start():]
    return text


def normalize_area(area: Optional[str]) -> str:
    if not area:
        return ""
    text = area.strip()
    if text in PREFECTURE_NAMES:
        return text
    if text in PREFECTURE_ALIASES:
        return PREFECTURE_ALIASES[text]
    pref = extract_prefecture(text)
    if pref:
        return pref
    for alias, pref in PREFECTURE_ALIASES.items():
        if alias in text:
            return pref
    return text


# ---------- 業種 ----------
def normalize_industry(industry: Optional[str]) -> str:
    if not industry:
        return ""
    lowered = industry.lower()
    for category, keywords in INDUSTRY_CATEGORIES:
        for kw in keywords:
            if kw.lower() in lowered:
                return category
    head = re.split(r"[、,・/]", squash_ws(industry))[0].strip()
    return head[:20] + "..." if len(head) > 20 else head


# ---------- 給与・従業員数 ----------
def parse_salary_range(salary_text: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    """給与テキストから年収レンジ（万円）を取り出す。月給は×12。"""
    if not salary_text:
        return None, None
    text = to_halfwidth_digits(salary_text)
    multiplier = 12 if ("月給" in text or "月収" in text) else 1

    m = _SALARY_RANGE_RE.search(text)
    if m:
        return _to_int(m.group(1)) * multiplier, _to_int(m.group(2)) * multiplier
    m = _SALARY_MIN_ONLY_RE.search(text)
    if m:
        return _to_int(m.group(1)) * multiplier, None
    m = _SALARY_SINGLE_RE.search(text)
    if m:
        value = _to_int(m.group(1)) * multiplier
        return value, value
    return None, None


def parse_employee_count(employees_text: Optional[str]) -> Optional[int]:
    if not employees_text:
        return None
    text = to_halfwidth_digits(employees_text).strip()
    m = _EMPLOYEE_RE.search(text) or _LEADING_NUMBER_RE.search(text)
    return _to_int(m.group(1)) if m else None


def normalize_employees(employees_text: Optional[str]) -> str:
    if not employees_text:
        return ""
    count = parse_employee_count(employees_text)
    if count is None:
        return squash_ws(employees_text)[:20]
    for label, lo, hi in EMPLOYEE_BANDS:
        if count >= lo and (hi is None or count <= hi):
            return label
    return EMPLOYEE_BANDS[-1][0]


# ---------- 電話 ----------
def normalize_phone(phone: Optional[str]) -> str:
    if not phone:
        return ""
    text = to_halfwidth_digits(phone)
    text = _PHONE_DASH_RE.sub("-", text)
    text = text.replace("（", "(").replace("）", ")")
    return squash_ws(text)
