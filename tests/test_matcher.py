"""matcher モジュールのユニットテスト."""

from rank_tracker.matcher import (
    candidate_urls,
    equals,
    extract_candidate_ids,
    matches_any,
    normalize,
    safe_decode,
)
from rank_tracker.models import IdentifierCandidateSet


class TestNormalize:
    """normalize のテスト."""

    def test_leading_zeros_and_zero_width(self):
        """先頭ゼロ・空白・ゼロ幅文字の有無で結果が変わらないこと."""
        assert normalize("007558362412") == normalize(" 7558362412\u200b")
        assert normalize("007558362412") == "7558362412"

    def test_idempotent(self):
        """正規化済みの値を再度正規化しても変わらないこと."""
        for raw in ("00123", "\ufeff 45-67 ", "abc", "", "000"):
            assert normalize(normalize(raw)) == normalize(raw)

    def test_none_and_numbers(self):
        assert normalize(None) == ""
        assert normalize(7558362412) == "7558362412"

    def test_non_digits_removed(self):
        assert normalize("ID: 12 34") == "1234"


class TestEquals:
    """equals のテスト."""

    def test_same_after_normalize(self):
        assert equals("007558362412", " 7558362412\u200c")

    def test_none_never_equal(self):
        """None はどの値とも一致しないこと."""
        assert not equals(None, "7558362412")
        assert not equals("7558362412", None)
        assert not equals(None, None)

    def test_empty_never_equal(self):
        """正規化後に空になる ID 同士は一致扱いにしないこと."""
        assert not equals("000", "0")
        assert not equals("", "")
        assert not equals("abc", "xyz")

    def test_different(self):
        assert not equals("123", "1234")

    def test_matches_any_with_extra(self):
        ids = IdentifierCandidateSet(prod_no="111", nv_mid="222")
        assert matches_any(ids, "0222")
        assert not matches_any(ids, "333")
        assert matches_any(ids, "333", None, "333")


class TestSafeDecode:
    """safe_decode のテスト."""

    def test_entities_and_double_encoding(self):
        assert safe_decode("a=1&amp;b=https%253A%252F%252Fx.com") == "a=1&b=https://x.com"

    def test_stops_after_three_rounds(self):
        """デコード回数の上限が 3 回であること."""
        assert safe_decode("%2525252F") == "%2F"

    def test_plain_text_unchanged(self):
        assert safe_decode("https://smartstore.naver.com/a/products/1") == (
            "https://smartstore.naver.com/a/products/1"
        )


class TestExtractCandidateIds:
    """extract_candidate_ids のテスト."""

    def test_smartstore_product_path(self):
        ids = extract_candidate_ids("https://smartstore.naver.com/shop/products/7558362412")
        assert ids.prod_no == "7558362412"

    def test_double_encoded_wrapper(self):
        """二重エンコードされた url= の中の ID を抽出できること."""
        url = (
            "https://cr.shopping.naver.com/adcr?x=1"
            "&url=https%253A%252F%252Fsmartstore.naver.com%252Fs%252Fproducts%252F7558362412"
        )
        ids = extract_candidate_ids(url)
        assert ids.prod_no == "7558362412"

    def test_html_entity_query(self):
        ids = extract_candidate_ids("https://search.shopping.naver.com/gate.nhn?id=1&amp;nvMid=82001")
        assert ids.nv_mid == "82001"

    def test_catalog_and_query_ids(self):
        assert extract_candidate_ids(
            "https://search.shopping.naver.com/catalog/22222222222"
        ).product_id == "22222222222"
        assert extract_candidate_ids(
            "https://msearch.shopping.naver.com/product?productId=777"
        ).product_id == "777"
        assert extract_candidate_ids(
            "https://www.11st.co.kr/products/view?prdNo=4321"
        ).product_id == "4321"
        assert extract_candidate_ids("https://x.com/a?prodNo=55").prod_no == "55"

    def test_case_insensitive(self):
        assert extract_candidate_ids("https://x.com/a?NVMID=99").nv_mid == "99"

    def test_outer_url_wins(self):
        """外側 URL で ID が見つかれば内側は見ないこと."""
        url = (
            "https://smartstore.naver.com/a/products/111"
            "?url=https%3A%2F%2Fsmartstore.naver.com%2Fb%2Fproducts%2F222"
        )
        assert extract_candidate_ids(url).prod_no == "111"

    def test_inner_target_url_key(self):
        url = "https://r.example.com/go?targetUrl=https%3A%2F%2Fsearch.shopping.naver.com%2Fcatalog%2F999"
        assert extract_candidate_ids(url).product_id == "999"

    def test_no_ids(self):
        """ID を含まない URL・空値は空の候補を返すこと."""
        assert not extract_candidate_ids("https://search.shopping.naver.com/help/notice")
        assert not extract_candidate_ids("")
        assert not extract_candidate_ids(None)

    def test_candidate_order(self):
        """外側 → デコード済み → 内側 URL の順に並ぶこと."""
        url = "https://r.example.com/go?x=1&url=https%3A%2F%2Fa.com%2Fp"
        urls = candidate_urls(url)
        assert urls[0] == url
        assert urls[1] == "https://r.example.com/go?x=1&url=https://a.com/p"
        assert "https://a.com/p" in urls[2:]
