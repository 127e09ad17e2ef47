"""ネイバーショッピング検索画面のスクレイピングモジュール.

広告順位（および OpenAPI 未設定時の通常順位）はヘッドレスブラウザで
検索画面を開いて求める。

取得戦略:
  1. Playwright で検索結果ページを開き、人間らしいスクロールと待機を挟む
  2. 描画後の HTML を BeautifulSoup でパースして商品カードを抽出
  3. カードの商品リンクから ID を抽出して照合（ページをまたいで累積順位）
  4. ブロック画面（CAPTCHA 等）を検知したら即中断
"""

from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import dataclass
from typing import Callable
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup, Tag
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from rank_tracker.config import (
    AD_SEARCH_URL_TEMPLATE,
    BROWSER_MAX_PAGES,
    CARD_WAIT_TIMEOUT_MS,
    HEADLESS,
    NAVIGATION_TIMEOUT_MS,
    PAGE_SIZE,
    PC_USER_AGENT,
    SEARCH_BASE_URL,
    SEARCH_URL_TEMPLATE,
)
from rank_tracker.matcher import extract_candidate_ids, matches_any
from rank_tracker.models import PageCandidate, RankResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectorSet:
    """検索画面の構造に依存するセレクタ・判定パターン."""

    card_selectors: tuple[str, ...] = (
        ".product_list_item",
        "[class*='basicList_item']",
        "[class*='adProduct_item']",
        ".list_basis li",
        "[class*='list__item']",
    )
    store_selectors: tuple[str, ...] = (
        "[class*='mall_title']",
        "[class*='product_mall']",
        "[class*='mall_name']",
        "[class*='price_mall']",
        "[data-nclick*='shop']",
    )
    price_selectors: tuple[str, ...] = (
        ".price_num",
        "[class*='price_num']",
        "[class*='price'] em",
        "[class*='price']",
    )
    block_markers: tuple[str, ...] = (
        "보안 확인",
        "자동입력 방지",
        "비정상적인 접근",
        "접근이 제한",
        "security check",
        "captcha",
        "blocked",
    )
    sponsor_text: re.Pattern = re.compile(r"\bAD\b|광고|스폰서|파워링크")
    sponsor_class: re.Pattern = re.compile(
        r"^(?:ad|ads|advertisement)(?:$|[_-])|^ad[A-Z]|[Ss]ponsor"
    )
    sponsor_data_attrs: tuple[str, ...] = ("data-ad", "data-is-ad", "data-advertisement")

    @property
    def card_wait_selector(self) -> str:
        return ", ".join(self.card_selectors)


DEFAULT_SELECTORS = SelectorSet()


@dataclass(frozen=True)
class BrowsingTiming:
    """検知回避のための待機・スクロール設定（秒・ミリ秒）."""

    navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS
    card_timeout_ms: int = CARD_WAIT_TIMEOUT_MS
    settle_delay: tuple[float, float] = (2.5, 5.0)  # 抽出前
    page_delay: tuple[float, float] = (4.0, 9.0)  # 次ページへ移る前
    scroll_step_px: int = 400
    scroll_pause_ms: int = 150
    scroll_max_steps: int = 12


def build_search_url(keyword: str, page: int, sponsored: bool = False) -> str:
    template = AD_SEARCH_URL_TEMPLATE if sponsored else SEARCH_URL_TEMPLATE
    return template.format(keyword=quote(keyword, safe=""), page=page, page_size=PAGE_SIZE)


# --- HTML パース ---

def parse_result_cards(
    html: str,
    want_sponsored_only: bool = False,
    selectors: SelectorSet = DEFAULT_SELECTORS,
) -> list[PageCandidate]:
    """検索結果 HTML から順位付け対象のカードを DOM 順に抽出する.

    商品リンクを 1 つも持たないカードは除外する。
    want_sponsored_only なら広告カードのみを対象にする。
    """
    soup = BeautifulSoup(html, "html.parser")
    cards = _select_cards(soup, selectors)

    results: list[PageCandidate] = []
    for card in cards:
        sponsored = is_sponsored_card(card, selectors)
        if want_sponsored_only and not sponsored:
            continue
        links = _product_links(card)
        if not links:
            continue
        results.append(PageCandidate(
            position=len(results) + 1,
            links=links,
            store_name=_first_text(card, selectors.store_selectors),
            price=_first_price(card, selectors.price_selectors),
            sponsored=sponsored,
        ))
    return results


def _select_cards(soup: BeautifulSoup, selectors: SelectorSet) -> list[Tag]:
    """カードセレクタを優先順に試し、最初に見つかったものを使う.

    別のカードの内側にある要素（レビュー欄の li など）はカードとして数えない。
    """
    for selector in selectors.card_selectors:
        cards = soup.select(selector)
        if cards:
            selected = {id(card) for card in cards}
            return [
                card for card in cards
                if not any(id(parent) in selected for parent in card.parents)
            ]
    return []


def is_sponsored_card(card: Tag, selectors: SelectorSet = DEFAULT_SELECTORS) -> bool:
    """広告カードか判定する.

    表示テキスト・広告用クラス・広告データ属性・広告用の祖先要素のいずれか。
    """
    if selectors.sponsor_text.search(card.get_text(" ", strip=True)):
        return True
    for element in (card, *card.find_all(True)):
        if _has_sponsor_class(element, selectors) or _has_ad_flag(element, selectors):
            return True
    return any(_has_sponsor_class(parent, selectors) for parent in card.parents)


def _has_sponsor_class(element: Tag, selectors: SelectorSet) -> bool:
    classes = element.get("class") or []
    return any(selectors.sponsor_class.search(name) for name in classes)


def _has_ad_flag(element: Tag, selectors: SelectorSet) -> bool:
    for attr in selectors.sponsor_data_attrs:
        value = element.get(attr)
        if value is not None and str(value).strip().lower() not in {"", "false", "0", "n"}:
            return True
    return False


def _product_links(card: Tag) -> tuple:
    links = []
    for anchor in card.select("a[href]"):
        href = urljoin(SEARCH_BASE_URL, anchor["href"])
        ids = extract_candidate_ids(href)
        if ids:
            links.append((href, ids))
    return tuple(links)


def _first_text(card: Tag, selector_list: tuple[str, ...]) -> str | None:
    for selector in selector_list:
        element = card.select_one(selector)
        if element is None:
            continue
        text = element.get_text(" ", strip=True)
        if text:
            return text
    return None


def _first_price(card: Tag, selector_list: tuple[str, ...]) -> int | None:
    for selector in selector_list:
        element = card.select_one(selector)
        if element is None:
            continue
        digits = re.sub(r"[^\d]", "", element.get_text())
        if digits:
            return int(digits)
    return None


def find_block_marker(html: str, selectors: SelectorSet = DEFAULT_SELECTORS) -> str | None:
    """ブロック画面・CAPTCHA の目印を探す. 見つかった目印を返す.

    商品カード内の文字列（商品名など）は対象にしない。
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    for card in _select_cards(soup, selectors):
        card.decompose()
    text = soup.get_text(" ", strip=True).lower()
    for marker in selectors.block_markers:
        if marker.lower() in text:
            return marker
    return None


def find_target(
    candidates: list[PageCandidate], target: str
) -> tuple[PageCandidate, str] | None:
    """対象商品のカードと一致したリンクを返す."""
    for candidate in candidates:
        for href, ids in candidate.links:
            if matches_any(ids, target):
                return candidate, href
    return None


# --- ブラウザ ---

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]

_STEALTH_SCRIPT = "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"

_SCROLL_SCRIPT = """
async ([step, pause, maxSteps]) => {
  for (let i = 0; i < maxSteps; i++) {
    window.scrollBy(0, step);
    await new Promise((resolve) => setTimeout(resolve, pause));
    if (window.innerHeight + window.scrollY >= document.body.scrollHeight) break;
  }
  window.scrollTo(0, 0);
}
"""


class PlaywrightSession:
    """ブラウザ 1 セッション（1 回の順位検索ごとに起動・終了する）.

    minimal=True はフォールバック用で、検知回避の設定を行わない。
    """

    def __init__(self, *, minimal: bool = False, headless: bool = HEADLESS) -> None:
        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.chromium.launch(
                headless=headless, args=_LAUNCH_ARGS
            )
            if minimal:
                self._context = self._browser.new_context(user_agent=PC_USER_AGENT)
            else:
                self._context = self._browser.new_context(
                    viewport={"width": 1366, "height": 768},
                    locale="ko-KR",
                    timezone_id="Asia/Seoul",
                    user_agent=PC_USER_AGENT,
                    extra_http_headers={"Accept-Language": "ko-KR,ko;q=0.9"},
                )
                self._context.add_init_script(_STEALTH_SCRIPT)
            self._page = self._context.new_page()
        except Exception:
            self._playwright.stop()
            raise

    def goto(self, url: str, timeout_ms: int) -> None:
        self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)

    def wait_for_cards(self, selector: str, timeout_ms: int) -> bool:
        try:
            self._page.wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    def scroll_through(self, step_px: int, pause_ms: int, max_steps: int) -> None:
        self._page.evaluate(_SCROLL_SCRIPT, [step_px, pause_ms, max_steps])

    def html(self) -> str:
        return self._page.content()

    def close(self) -> None:
        try:
            try:
                self._context.close()
            finally:
                self._browser.close()
        finally:
            self._playwright.stop()


class EmulatedBrowsingResolver:
    """検索画面をページ送りしながら対象商品の累積順位を求める."""

    def __init__(
        self,
        session_factory: Callable[..., PlaywrightSession] = PlaywrightSession,
        timing: BrowsingTiming | None = None,
        selectors: SelectorSet = DEFAULT_SELECTORS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session_factory = session_factory
        self.timing = timing or BrowsingTiming()
        self.selectors = selectors
        self._sleep = sleep

    def resolve(
        self,
        keyword: str,
        external_product_id: str,
        max_pages: int = BROWSER_MAX_PAGES,
        want_sponsored_only: bool = False,
    ) -> RankResult:
        """対象商品の順位を返す.

        未発見・ブロック検知は found=False の結果で返す。
        ブラウザ起動失敗やページ遷移のタイムアウトは例外のまま呼び出し元へ送る。
        """
        label = "広告" if want_sponsored_only else "通常"
        logger.info(
            "ブラウザ順位検索開始 (%s): keyword=%s, id=%s, max_pages=%d",
            label, keyword, external_product_id, max_pages,
        )
        session = self.session_factory(minimal=False)
        try:
            outcome = self._scan_pages(
                session, keyword, external_product_id, max_pages, want_sponsored_only
            )
        finally:
            self._close(session)

        if isinstance(outcome, RankResult):
            return outcome
        return self._fallback(
            keyword, external_product_id, want_sponsored_only, outcome, max_pages
        )

    def _scan_pages(
        self,
        session: PlaywrightSession,
        keyword: str,
        target: str,
        max_pages: int,
        want_sponsored_only: bool,
    ) -> RankResult | int:
        """全ページを走査する. 結果が確定すれば RankResult、未発見なら走査件数を返す."""
        timing = self.timing
        cumulative = 0

        for page_index in range(1, max_pages + 1):
            url = build_search_url(keyword, page_index, want_sponsored_only)
            logger.info("%d ページ目を取得中: %s", page_index, url)
            session.goto(url, timing.navigation_timeout_ms)
            if not session.wait_for_cards(
                self.selectors.card_wait_selector, timing.card_timeout_ms
            ):
                logger.warning("%d ページ目: 商品カードが表示されない（ブロックの可能性）", page_index)

            session.scroll_through(
                timing.scroll_step_px, timing.scroll_pause_ms, timing.scroll_max_steps
            )
            self._pause(timing.settle_delay)

            html = session.html()
            candidates = parse_result_cards(html, want_sponsored_only, self.selectors)

            marker = find_block_marker(html, self.selectors)
            if marker:
                logger.warning("%d ページ目でブロック検知: %s", page_index, marker)
                return RankResult.miss(target, f"{page_index} ページ目でブロック検知（{marker}）")

            hit = find_target(candidates, target)
            if hit is not None:
                card, href = hit
                rank = cumulative + card.position
                logger.info("発見: %d ページ目 %d 番目 → 累積 %d 位", page_index, card.position, rank)
                return RankResult.hit(
                    target,
                    rank,
                    store_name=card.store_name,
                    store_link=href,
                    price=card.price,
                    notes=[f"{page_index} ページ目で発見（{'広告' if want_sponsored_only else '通常'}）"],
                )

            logger.info("%d ページ目: 候補 %d 件, 一致なし", page_index, len(candidates))
            cumulative += len(candidates)
            if page_index < max_pages:
                self._pause(timing.page_delay)

        return cumulative

    def _fallback(
        self,
        keyword: str,
        target: str,
        want_sponsored_only: bool,
        scanned: int,
        max_pages: int,
    ) -> RankResult:
        """簡易セッションで 1 ページ目だけを再取得し、未発見の理由を切り分ける."""
        scanned_note = f"{max_pages} ページ・候補 {scanned} 件を走査"
        session = None
        try:
            session = self.session_factory(minimal=True)
            session.goto(
                build_search_url(keyword, 1, want_sponsored_only),
                self.timing.navigation_timeout_ms,
            )
            session.wait_for_cards(self.selectors.card_wait_selector, self.timing.card_timeout_ms)
            loaded = len(parse_result_cards(session.html(), want_sponsored_only, self.selectors))
        except Exception as e:
            logger.warning("フォールバック取得失敗: keyword=%s, error=%s", keyword, e)
            return RankResult.miss(target, scanned_note, f"フォールバック失敗: {e}")
        finally:
            if session is not None:
                self._close(session)

        if scanned or loaded:
            return RankResult.miss(
                target,
                scanned_note,
                f"候補はあるが一致なし（フォールバック 1 ページ目 {loaded} 件）",
            )
        return RankResult.miss(target, scanned_note, "候補を 1 件も取得できなかった")

    def _pause(self, bounds: tuple[float, float]) -> None:
        low, high = bounds
        if high <= 0:
            return
        self._sleep(random.uniform(low, high))

    @staticmethod
    def _close(session: PlaywrightSession) -> None:
        try:
            session.close()
        except Exception as e:
            logger.warning("ブラウザ終了エラー（無視）: %s", e)
