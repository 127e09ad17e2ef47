"""追跡対象ごとの検索方式の振り分け."""

from __future__ import annotations

import logging

from rank_tracker.config import AD_MAX_PAGES, BROWSER_MAX_PAGES, NAVER_CLIENT_ID, NAVER_CLIENT_SECRET
from rank_tracker.models import ItemKind, RankResult, TrackedItem
from rank_tracker.openapi import NaverShopApi, StructuredLookupResolver
from rank_tracker.scraper import EmulatedBrowsingResolver

logger = logging.getLogger(__name__)


class RankResolutionRouter:
    """広告はブラウザ、通常は OpenAPI（未設定ならブラウザ）で検索する.

    Args:
        browsing: ブラウザ検索
        structured: OpenAPI 検索. 認証情報が無い場合は None
    """

    def __init__(
        self,
        browsing: EmulatedBrowsingResolver,
        structured: StructuredLookupResolver | None = None,
        organic_max_pages: int = BROWSER_MAX_PAGES,
        ad_max_pages: int = AD_MAX_PAGES,
    ) -> None:
        self.browsing = browsing
        self.structured = structured
        self.organic_max_pages = organic_max_pages
        self.ad_max_pages = ad_max_pages

    def route(self, item: TrackedItem) -> RankResult:
        if item.kind is ItemKind.SPONSORED:
            logger.info("ブラウザ検索（広告）: item=%s", item.id)
            result = self.browsing.resolve(
                item.keyword, item.external_product_id,
                max_pages=self.ad_max_pages, want_sponsored_only=True,
            )
        elif self.structured is not None:
            logger.info("OpenAPI 検索: item=%s", item.id)
            result = self.structured.resolve(item.keyword, item.external_product_id)
        else:
            logger.info("OpenAPI 認証情報なし。ブラウザ検索（通常）: item=%s", item.id)
            result = self.browsing.resolve(
                item.keyword, item.external_product_id,
                max_pages=self.organic_max_pages, want_sponsored_only=False,
            )
        return _validated(result, item)


def _validated(result: object, item: TrackedItem) -> RankResult:
    if not isinstance(result, RankResult):
        raise TypeError(f"検索結果の型が不正: {type(result).__name__}")
    if result.external_product_id != item.external_product_id:
        raise ValueError(
            f"検索結果の商品 ID が一致しない: {result.external_product_id} != {item.external_product_id}"
        )
    return result


def build_router(
    client_id: str = NAVER_CLIENT_ID,
    client_secret: str = NAVER_CLIENT_SECRET,
    browsing: EmulatedBrowsingResolver | None = None,
) -> RankResolutionRouter:
    """認証情報の有無に応じて OpenAPI 検索を組み込んだルーターを作る."""
    api = NaverShopApi(client_id, client_secret)
    structured = StructuredLookupResolver(api) if api.configured() else None
    if structured is None:
        logger.warning("NAVER_CLIENT_ID / NAVER_CLIENT_SECRET 未設定。通常順位もブラウザで検索します")
    return RankResolutionRouter(browsing or EmulatedBrowsingResolver(), structured)
