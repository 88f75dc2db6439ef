from src.label_lookup import LabelLookup


HTML = """
<html><body>
  <dl>
    <dt>設立</dt><dd>2001年4月</dd>
    <dt>従業員数</dt><dd>120名</dd>
  </dl>
  <table>
    <tr><th>設立</th><td>1999年</td></tr>
    <tr><th>代表者名</th><td>山田 太郎</td></tr>
    <tr><th>企業ホームページ</th><td><a href="https://next.rikunabi.com/redirect">https://example.co.jp</a></td></tr>
    <tr><th>事業内容</th><td>ソフトウェアの受託開発</td></tr>
  </table>
  <p>売上高：12億円（2023年度）</p>
  <script>var x = "売上高：999億円";</script>
</body></html>
"""


def test_dl_wins_over_table():
    lookup = LabelLookup(HTML)
    assert lookup.lookup("設立") == "2001年4月"


def test_table_partial_label_match():
    lookup = LabelLookup(HTML)
    # 「代表者」は「代表者名」に部分一致
    assert lookup.lookup("代表者") == "山田 太郎"


def test_free_text_fallback_ignores_script():
    lookup = LabelLookup(HTML)
    assert lookup.lookup("売上高") == "12億円（2023年度）"


def test_get_returns_first_non_empty_label():
    lookup = LabelLookup(HTML)
    assert lookup.get("資本金", "事業内容") == "ソフトウェアの受託開発"
    assert lookup.get("資本金") == ""


def test_get_link_prefers_external_url():
    lookup = LabelLookup(HTML)
    assert lookup.get_link("企業ホームページ", exclude_hosts=("rikunabi.com",)) == "https://example.co.jp"
    assert lookup.get_link("事業内容") == ""


def test_empty_html():
    assert LabelLookup("").get("設立") == ""
