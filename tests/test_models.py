"""models モジュールのユニットテスト."""

from datetime import datetime, timezone

import pytest

from rank_tracker.models import (
    IdentifierCandidateSet,
    ItemKind,
    PeriodKind,
    RankResult,
    StatSummary,
    TrackedItem,
)


class TestRankResult:
    """RankResult の不変条件とページ計算のテスト."""

    @pytest.mark.parametrize(
        "rank, page, in_page",
        [(1, 1, 1), (40, 1, 40), (41, 2, 1), (80, 2, 40), (200, 5, 40)],
    )
    def test_page_derivation(self, rank, page, in_page):
        """40 件/ページでページ番号とページ内順位が導出されること."""
        result = RankResult.hit("123", rank)
        assert result.page_number == page
        assert result.rank_within_page == in_page

    def test_found_requires_rank(self):
        with pytest.raises(ValueError):
            RankResult(external_product_id="123", found=True)
        with pytest.raises(ValueError):
            RankResult.hit("123", 0)

    def test_miss_rejects_rank_and_price(self):
        """found=False に順位・価格・店舗を持たせると例外になること."""
        with pytest.raises(ValueError):
            RankResult(external_product_id="123", found=False, global_rank=3)
        with pytest.raises(ValueError):
            RankResult(external_product_id="123", found=False, price=1000)
        with pytest.raises(ValueError):
            RankResult(external_product_id="123", found=False, store_name="상점")

    def test_miss_has_no_page(self):
        result = RankResult.miss("123", "上位 200 件（top-200）内に一致なし")
        assert result.page_number is None
        assert result.rank_within_page is None
        assert result.notes == ("上位 200 件（top-200）内に一致なし",)

    def test_to_dict(self):
        result = RankResult.hit(
            "7558362412", 41, store_name="번호판몰", store_link="https://x", price=15900,
            notes=["OpenAPI productId 直接一致"],
        )
        assert result.to_dict() == {
            "productId": "7558362412",
            "found": True,
            "storeName": "번호판몰",
            "storeLink": "https://x",
            "price": 15900,
            "globalRank": 41,
            "page": 2,
            "rankInPage": 1,
            "notes": ["OpenAPI productId 直接一致"],
        }


class TestTrackedItem:
    """TrackedItem.from_row のテスト."""

    def test_from_row(self):
        item = TrackedItem.from_row({
            "id": 7,
            "product_name": "번호판 케이스",
            "product_no": 7558362412,
            "keyword": "주차번호판",
            "type": "ad",
            "interval_min": 360,
            "active": True,
        })
        assert item.id == 7
        assert item.external_product_id == "7558362412"
        assert item.kind is ItemKind.SPONSORED
        assert item.interval_minutes == 360
        assert item.name == "번호판 케이스"

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            TrackedItem.from_row({"id": 1, "product_no": "1", "keyword": "k", "type": "banner"})


class TestIdentifierCandidateSet:
    def test_truthiness(self):
        assert not IdentifierCandidateSet()
        assert IdentifierCandidateSet(nv_mid="1")
        assert IdentifierCandidateSet(prod_no="1", product_id="2").values() == ["1", "2"]


class TestStatSummary:
    def test_record(self):
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)
        end = datetime(2026, 3, 2, tzinfo=timezone.utc)
        summary = StatSummary(
            item_id=3, period_kind=PeriodKind.DAILY, period_start=start, period_end=end,
            sample_count=4, found_count=3, best_rank=2, worst_rank=9, avg_rank=5.0, avg_price=1000.0,
        )
        record = summary.to_record()
        assert record["period_kind"] == "daily"
        assert record["period_start"] == start.isoformat()
        assert record["found_rate"] == 0.75

    def test_zero_samples(self):
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)
        summary = StatSummary(3, PeriodKind.WEEKLY, start, start, 0, 0, None, None, None, None)
        assert summary.found_rate == 0.0
