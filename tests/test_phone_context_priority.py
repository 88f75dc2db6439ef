import pytest

from src.contact_extractor import (
    ContactExtractor,
    build_url,
    find_email_in_html,
    find_phone_in_html,
    is_not_found_page,
    pick_email,
    pick_phone,
)


def test_pick_phone_prefers_toll_free():
    text = "本社 代表電話: 03-1111-2222 お客様窓口 0120-123-456"
    assert pick_phone(text) == "0120-123-456"


def test_pick_phone_skips_navi_dial():
    text = "お問い合わせ 0570-000-1111 / 本社 06-1234-5678"
    assert pick_phone(text) == "06-1234-5678"


def test_pick_phone_context_keyword_but_not_fax():
    # 直前が FAX の番号は「代表」文脈があっても選ばない
    text = "代表 FAX: 03-9999-0000 ／ 代表TEL: 03-1111-2222"
    assert pick_phone(text) == "03-1111-2222"


def test_pick_phone_without_context_avoids_fax():
    text = "FAX 045-111-2222 ................................ 045-333-4444"
    assert pick_phone(text) == "045-333-4444"


def test_pick_phone_fullwidth_digits_and_none():
    assert pick_phone("電話番号：０３－１２３４－５６７８") == "03-1234-5678"
    assert pick_phone("番号の記載なし") is None


def test_pick_email_priority_and_noreply():
    candidates = ["noreply@example.co.jp", "taro@example.co.jp", "info@example.co.jp"]
    assert pick_email(candidates) == "info@example.co.jp"
    assert pick_email(["no-reply@example.co.jp"]) is None


def test_pick_email_deobfuscates():
    assert pick_email(["sales[at]example[dot]co[dot]jp"]) == "sales@example.co.jp"


def test_find_email_prefers_mailto():
    html = """
    <html><body>
      <a href="mailto:contact@example.co.jp?subject=hello">お問い合わせ</a>
      <footer>info@other.co.jp</footer>
    </body></html>
    """
    assert find_email_in_html(html) == "contact@example.co.jp"


def test_find_email_mailto_goes_through_noreply_filter():
    html = """
    <html><body>
      <a href="mailto:noreply@example.co.jp">通知専用</a>
      <footer>お問い合わせ info@example.co.jp</footer>
    </body></html>
    """
    assert find_email_in_html(html) == "info@example.co.jp"


def test_find_email_prefers_priority_mailto():
    html = """
    <html><body>
      <a href="mailto:taro@example.co.jp">担当</a>
      <a href="mailto:sales@example.co.jp">営業窓口</a>
    </body></html>
    """
    assert find_email_in_html(html) == "sales@example.co.jp"


def test_find_phone_in_footer_region():
    html = """
    <html><body>
      <main><p>採用について 090-0000-0000 は担当者携帯です。</p></main>
      <footer>
        株式会社サンプル 〒150-0002 東京都渋谷区渋谷1-1-1 サンプルビル5階
        本社 TEL 03-5555-6666 FAX 03-5555-6667
        Copyright (c) Sample Co., Ltd. All Rights Reserved.
      </footer>
    </body></html>
    """
    assert find_phone_in_html(html) == "03-5555-6666"


def test_build_url_and_not_found():
    assert build_url("https://example.co.jp/top?x=1#a", "/company/") == "https://example.co.jp/company/"
    assert is_not_found_page("404 Not Found", "")
    assert is_not_found_page("", "お探しのページは存在しません")
    assert not is_not_found_page("会社概要", "x" * 600 + "404")


class _Resp:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


class _HttpSession:
    def __init__(self, resp):
        self.resp = resp

    def get(self, url, **kwargs):
        return self.resp


def _extractor(status_code):
    extractor = ContactExtractor(request_interval_sec=0, http_first=True)
    extractor.http_session = _HttpSession(_Resp(status_code, "<html><body>x</body></html>"))
    browsed = []

    async def fake_browser(page, url):
        browsed.append(url)
        return {"html": "<footer>本社 TEL 03-1234-5678</footer>", "title": "会社概要", "text": "本社 TEL 03-1234-5678"}

    extractor._fetch_browser = fake_browser
    return extractor, browsed


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 429, 500])
async def test_http_error_status_falls_back_to_browser(status):
    extractor, browsed = _extractor(status)
    got = await extractor._fetch(None, "https://example.co.jp/company/")
    assert browsed == ["https://example.co.jp/company/"]
    assert "03-1234-5678" in got["html"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 410])
async def test_http_gone_status_is_not_found(status):
    extractor, browsed = _extractor(status)
    got = await extractor._fetch(None, "https://example.co.jp/company/")
    assert got["not_found"] == "1"
    assert browsed == []
