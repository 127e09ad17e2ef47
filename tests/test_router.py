"""router モジュールのユニットテスト."""

from unittest.mock import MagicMock

import pytest

from conftest import make_item
from rank_tracker.models import ItemKind, RankResult
from rank_tracker.openapi import StructuredLookupResolver
from rank_tracker.router import RankResolutionRouter, build_router


def _router(structured=True):
    browsing = MagicMock()
    api_resolver = MagicMock() if structured else None
    router = RankResolutionRouter(browsing, api_resolver, organic_max_pages=5, ad_max_pages=10)
    return router, browsing, api_resolver


class TestRoute:
    """RankResolutionRouter.route のテスト."""

    def test_sponsored_uses_browser(self):
        """広告は OpenAPI が使えてもブラウザで検索すること."""
        router, browsing, structured = _router()
        item = make_item(kind=ItemKind.SPONSORED)
        browsing.resolve.return_value = RankResult.hit(item.external_product_id, 3)

        result = router.route(item)

        assert result.global_rank == 3
        browsing.resolve.assert_called_once_with(
            "주차번호판", "7558362412", max_pages=10, want_sponsored_only=True
        )
        structured.resolve.assert_not_called()

    def test_organic_uses_openapi(self):
        router, browsing, structured = _router()
        item = make_item()
        structured.resolve.return_value = RankResult.miss(item.external_product_id, "OpenAPI 結果 0 件")

        result = router.route(item)

        assert not result.found
        structured.resolve.assert_called_once_with("주차번호판", "7558362412")
        browsing.resolve.assert_not_called()

    def test_organic_without_credentials(self):
        """OpenAPI 未設定なら通常順位もブラウザで検索すること."""
        router, browsing, _ = _router(structured=False)
        item = make_item()
        browsing.resolve.return_value = RankResult.hit(item.external_product_id, 12)

        router.route(item)

        browsing.resolve.assert_called_once_with(
            "주차번호판", "7558362412", max_pages=5, want_sponsored_only=False
        )

    def test_invalid_result_type(self):
        router, _, structured = _router()
        structured.resolve.return_value = {"found": True}

        with pytest.raises(TypeError):
            router.route(make_item())

    def test_mismatched_product(self):
        router, _, structured = _router()
        structured.resolve.return_value = RankResult.hit("111", 1)

        with pytest.raises(ValueError):
            router.route(make_item())


class TestBuildRouter:
    def test_without_credentials(self):
        router = build_router("", "", browsing=MagicMock())
        assert router.structured is None

    def test_with_credentials(self):
        router = build_router("client-id", "client-secret", browsing=MagicMock())
        assert isinstance(router.structured, StructuredLookupResolver)
