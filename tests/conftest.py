"""テスト共通のフェイク（DB・イベント送信先・ブラウザセッション）."""

from __future__ import annotations

from pathlib import Path

from rank_tracker.models import ItemKind, PurgeSummary, TrackedItem
from rank_tracker.stats import summarize_tracks

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


def make_item(
    item_id: int = 1,
    product_no: str = "7558362412",
    keyword: str = "주차번호판",
    kind: ItemKind = ItemKind.ORGANIC,
    interval: int = 60,
) -> TrackedItem:
    return TrackedItem(
        id=item_id,
        keyword=keyword,
        external_product_id=product_no,
        kind=kind,
        interval_minutes=interval,
    )


class RecordingNotifier:
    """送信イベントをメモリに記録する."""

    def __init__(self):
        self.events = []

    def emit(self, kind, item_id, payload=None):
        self.events.append((kind, item_id, payload or {}))

    def kinds(self):
        return [kind for kind, _, _ in self.events]


class FakeStore:
    """db モジュールと同じ関数を持つインメモリ実装."""

    def __init__(self, items=None, tracks=None):
        self.items = list(items or [])
        self.tracks = tracks or {}  # item_id -> [row, ...]
        self.saved_tracks = []
        self.statistics = []
        self.snapshots = {}
        self.purged_before = None

    def list_active_tracked_items(self):
        return [item for item in self.items if item.active]

    def save_track(self, result, item_id, is_ad=False):
        self.saved_tracks.append((item_id, result, is_ad))

    def list_tracks(self, item_id, start, end):
        return list(self.tracks.get(item_id, []))

    def compute_statistics(self, item_id, period_kind, start, end):
        return summarize_tracks(item_id, period_kind, start, end, self.list_tracks(item_id, start, end))

    def save_statistic(self, summary):
        self.statistics.append(summary)

    def save_snapshot(self, item_id, snapshot):
        self.snapshots[item_id] = snapshot

    def purge_older_than(self, cutoff):
        self.purged_before = cutoff
        return PurgeSummary(cutoff=cutoff, deleted_tracks=3)


class FakeSession:
    """PlaywrightSession の代わり. pages[i] が (i+1) ページ目の HTML."""

    def __init__(self, pages, minimal=False, cards_visible=True, goto_error=None, close_error=None):
        self.pages = list(pages)
        self.minimal = minimal
        self.cards_visible = cards_visible
        self.goto_error = goto_error
        self.close_error = close_error
        self.urls = []
        self.scrolls = 0
        self.closed = False

    def goto(self, url, timeout_ms):
        if self.goto_error is not None:
            raise self.goto_error
        self.urls.append(url)

    def wait_for_cards(self, selector, timeout_ms):
        return self.cards_visible

    def scroll_through(self, step_px, pause_ms, max_steps):
        self.scrolls += 1

    def html(self):
        index = len(self.urls) - 1
        return self.pages[index] if index < len(self.pages) else "<html><body></body></html>"

    def close(self):
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class SessionFactory:
    """呼ばれるたびに用意したセッションを順に返す. 例外を入れておくと送出する."""

    def __init__(self, *sessions):
        self._sessions = list(sessions)
        self.created = []

    def __call__(self, minimal=False):
        session = self._sessions.pop(0)
        if isinstance(session, Exception):
            raise session
        session.minimal = minimal
        self.created.append(session)
        return session


def result_page(*hrefs: str) -> str:
    """通常カードだけの検索結果ページ HTML を作る."""
    cards = "".join(
        f'<li class="product_list_item"><a href="{href}">商品</a>'
        f'<div class="product_mall_title">상점{i}</div>'
        f'<span class="price_num">{1000 * (i + 1):,}원</span></li>'
        for i, href in enumerate(hrefs)
    )
    return f'<html><body><ul class="list_basis">{cards}</ul></body></html>'
