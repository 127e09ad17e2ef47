"""ネイバーショッピング OpenAPI による通常（オーガニック）順位検索.

取得戦略:
  1. 上位 200 件を 100 件 × 2 ページの並行リクエストで取得
  2. 第 1 段階: API の productId を直接照合
  3. 第 2 段階: 各結果リンクのリダイレクト先 URL から ID を抽出して照合
     （8 件ずつのバッチで並行に追跡し、外部リクエスト数を抑える）
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import requests

from rank_tracker.config import (
    API_PAGE_SIZE,
    API_PAGE_STARTS,
    OPENAPI_URL,
    PC_USER_AGENT,
    REDIRECT_BATCH_SIZE,
    REDIRECT_TIMEOUT,
    REQUEST_TIMEOUT,
)
from rank_tracker.matcher import equals, extract_candidate_ids, matches_any
from rank_tracker.models import RankedCandidate, RankResult

logger = logging.getLogger(__name__)

REDIRECT_NOTE = "リダイレクト先 URL の ID で照合"


class NaverShopApi:
    """ネイバーショッピング検索 OpenAPI クライアント."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        session: requests.Session | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or requests.Session()

    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def search(
        self, keyword: str, start: int, display: int = API_PAGE_SIZE
    ) -> list[RankedCandidate]:
        """start 位から display 件の検索結果を取得する.

        Raises:
            requests.RequestException: 通信失敗または 2xx 以外の応答
            ValueError: 応答 JSON の形が想定と違う
        """
        headers = {
            "X-Naver-Client-Id": self.client_id,
            "X-Naver-Client-Secret": self.client_secret,
            "User-Agent": PC_USER_AGENT,
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "ko-KR,ko;q=0.9,en;q=0.8",
        }
        params = {"query": keyword, "display": display, "start": start, "sort": "sim"}
        resp = self.session.get(
            OPENAPI_URL, headers=headers, params=params, timeout=REQUEST_TIMEOUT
        )
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict):
            raise ValueError(f"OpenAPI 応答の形式が不正: {type(payload).__name__}")
        items = payload.get("items") or []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise ValueError("OpenAPI 応答の items が不正")
        logger.info("OpenAPI 応答: keyword=%s, start=%d, %d 件", keyword, start, len(items))
        return [RankedCandidate.from_api(item) for item in items]


def follow_redirects(url: str, session: requests.Session | None = None) -> str:
    """リダイレクトを追跡して最終 URL を返す. 失敗時は元の URL を返す."""
    if not url:
        return url
    http = session or requests
    try:
        resp = http.head(
            url,
            allow_redirects=True,
            timeout=REDIRECT_TIMEOUT,
            headers={"User-Agent": PC_USER_AGENT, "Accept-Language": "ko-KR,ko;q=0.9"},
        )
        return resp.url or url
    except requests.RequestException as e:
        logger.debug("リダイレクト追跡失敗: url=%s, error=%s", url, e)
        return url


class StructuredLookupResolver:
    """OpenAPI の上位 200 件から対象商品の順位を求める."""

    def __init__(
        self,
        api: NaverShopApi,
        resolve_url: Callable[[str], str] | None = None,
        batch_size: int = REDIRECT_BATCH_SIZE,
    ) -> None:
        self.api = api
        self.resolve_url = resolve_url or (lambda url: follow_redirects(url, api.session))
        self.batch_size = batch_size

    def resolve(self, keyword: str, external_product_id: str) -> RankResult:
        """キーワード検索結果内の順位を返す. 例外は送出しない."""
        logger.info("OpenAPI 順位検索開始: keyword=%s, id=%s", keyword, external_product_id)
        try:
            candidates = self._fetch_ranked_list(keyword)
        except (requests.RequestException, ValueError) as e:
            logger.error("OpenAPI 取得失敗: keyword=%s, error=%s", keyword, e)
            return RankResult.miss(external_product_id, f"API エラー: {e}")

        if not candidates:
            return RankResult.miss(external_product_id, "OpenAPI 結果 0 件")

        # 第 1 段階: productId の直接一致
        for index, candidate in enumerate(candidates):
            if equals(candidate.product_id, external_product_id):
                logger.info("productId 直接一致: %d 位", index + 1)
                return self._hit(external_product_id, index, candidate, "OpenAPI productId 直接一致")

        # 第 2 段階: リダイレクト先 URL の ID
        try:
            index = self._match_by_redirect(candidates, external_product_id)
        except Exception as e:
            logger.error("リダイレクト照合失敗: keyword=%s, error=%s", keyword, e)
            return RankResult.miss(external_product_id, f"リダイレクト照合エラー: {e}")
        if index is not None:
            logger.info("リダイレクト先 ID 一致: %d 位", index + 1)
            return self._hit(external_product_id, index, candidates[index], REDIRECT_NOTE)

        logger.info("上位 %d 件内に該当なし: id=%s", len(candidates), external_product_id)
        return RankResult.miss(
            external_product_id, f"上位 {len(candidates)} 件（top-200）内に一致なし"
        )

    def _fetch_ranked_list(self, keyword: str) -> list[RankedCandidate]:
        """2 ページを並行取得し、ページ順 → ページ内順で連結する."""
        with ThreadPoolExecutor(max_workers=len(API_PAGE_STARTS)) as executor:
            futures = [
                executor.submit(self.api.search, keyword, start, API_PAGE_SIZE)
                for start in API_PAGE_STARTS
            ]
            pages = [future.result() for future in futures]
        return [candidate for page in pages for candidate in page]

    def _match_by_redirect(
        self, candidates: list[RankedCandidate], target: str
    ) -> int | None:
        """バッチ順 → バッチ内順で最初に一致した候補の index を返す."""
        with ThreadPoolExecutor(max_workers=self.batch_size) as executor:
            for offset in range(0, len(candidates), self.batch_size):
                batch = candidates[offset:offset + self.batch_size]
                final_urls = list(executor.map(self.resolve_url, [c.link for c in batch]))
                for position, (candidate, final_url) in enumerate(zip(batch, final_urls)):
                    ids = extract_candidate_ids(final_url)
                    if matches_any(ids, target, candidate.product_id):
                        return offset + position
        return None

    @staticmethod
    def _hit(
        external_product_id: str, index: int, candidate: RankedCandidate, note: str
    ) -> RankResult:
        return RankResult.hit(
            external_product_id,
            index + 1,
            store_name=candidate.mall_name or None,
            store_link=candidate.link or None,
            price=parse_price(candidate.lprice),
            notes=[note],
        )


def parse_price(text: str | None) -> int:
    """価格文字列を整数にする. 解析できなければ 0."""
    try:
        return int(str(text).replace(",", "").strip())
    except (TypeError, ValueError):
        return 0
