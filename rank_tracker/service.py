"""順位検索キューと逐次処理ループ.

検索は常に 1 件ずつ処理する（同時に 2 件以上を検索しない）。

状態遷移:
  Queued → Searching → Completed
                     → Retrying → Searching ...（最大 2 回）
                     → Failed
失敗したエントリはキューの末尾に戻す（先頭には戻さない）。
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Protocol

from rank_tracker.config import AFTER_SUCCESS_DELAY, MAX_RETRIES, PROGRESS_RETENTION, RETRY_BACKOFF
from rank_tracker.models import (
    ItemKind,
    QueueEntry,
    RankResult,
    SearchProgress,
    SearchStatus,
    TrackedItem,
)
from rank_tracker.notifier import EventKind

logger = logging.getLogger(__name__)


class Router(Protocol):
    def route(self, item: TrackedItem) -> RankResult: ...


class TrackStore(Protocol):
    def save_track(self, result: RankResult, item_id: int, is_ad: bool) -> None: ...


class EventSink(Protocol):
    def emit(self, kind: EventKind, item_id: int, payload: dict | None = None) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SearchQueue:
    """スレッドセーフな FIFO. 重複排除はしない."""

    def __init__(self) -> None:
        self._entries: deque[QueueEntry] = deque()
        self._lock = threading.Lock()

    def push(self, entry: QueueEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def pop(self) -> QueueEntry | None:
        with self._lock:
            return self._entries.popleft() if self._entries else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ProgressBoard:
    """item_id ごとの検索状態. 読み取りはコピーを返す."""

    def __init__(self, retention=PROGRESS_RETENTION, clock: Callable[[], datetime] = _utcnow) -> None:
        self._entries: dict[int, SearchProgress] = {}
        self._lock = threading.Lock()
        self._retention = retention
        self._clock = clock

    def start(self, entry: QueueEntry) -> None:
        with self._lock:
            self._entries[entry.item.id] = SearchProgress(
                item_id=entry.item.id,
                keyword=entry.item.keyword,
                status=SearchStatus.SEARCHING,
                started_at=self._clock(),
                retry_count=entry.retry_count,
            )

    def update(self, item_id: int, status: SearchStatus, error: str | None = None) -> None:
        with self._lock:
            progress = self._entries.get(item_id)
            if progress is None:
                return
            progress.status = status
            if error is not None:
                progress.last_error = error
            if status is SearchStatus.RETRYING:
                progress.retry_count += 1
            if status in (SearchStatus.COMPLETED, SearchStatus.FAILED):
                progress.completed_at = self._clock()

    def get(self, item_id: int) -> SearchProgress | None:
        with self._lock:
            progress = self._entries.get(item_id)
            return None if progress is None else SearchProgress(**vars(progress))

    def snapshot(self) -> list[SearchProgress]:
        """保持期間を過ぎた完了済みエントリを削除してから一覧を返す."""
        cutoff = self._clock() - self._retention
        with self._lock:
            expired = [
                item_id for item_id, p in self._entries.items()
                if p.completed_at is not None and p.completed_at < cutoff
            ]
            for item_id in expired:
                del self._entries[item_id]
            return [SearchProgress(**vars(p)) for p in self._entries.values()]


class RankSearchService:
    """検索キュー・進捗・処理中フラグをまとめて保持するサービス.

    スケジューラと状態照会の両方から同じインスタンスを参照する。
    """

    def __init__(
        self,
        router: Router,
        store: TrackStore,
        notifier: EventSink,
        *,
        max_retries: int = MAX_RETRIES,
        retry_backoff: float = RETRY_BACKOFF,
        after_success_delay: float = AFTER_SUCCESS_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        progress: ProgressBoard | None = None,
    ) -> None:
        self.router = router
        self.store = store
        self.notifier = notifier
        self.queue = SearchQueue()
        self.progress = progress or ProgressBoard()
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.after_success_delay = after_success_delay
        self._sleep = sleep
        self._guard = threading.Lock()
        self._draining = False

    @property
    def is_processing(self) -> bool:
        with self._guard:
            return self._draining

    def enqueue(self, item: TrackedItem) -> QueueEntry:
        entry = QueueEntry(item=item, enqueued_at=_utcnow())
        self.queue.push(entry)
        logger.info("キュー追加: item=%s, keyword=%s (待機 %d 件)", item.id, item.keyword, len(self.queue))
        return entry

    def request_drain(self) -> threading.Thread | None:
        """処理ループが止まっていればバックグラウンドで開始する."""
        with self._guard:
            if self._draining or not len(self.queue):
                return None
        thread = threading.Thread(target=self.drain, name="rank-search-drain", daemon=True)
        thread.start()
        return thread

    def drain(self) -> bool:
        """キューが空になるまで 1 件ずつ処理する.

        Returns:
            このループが処理を担当したか（既に実行中なら False）
        """
        with self._guard:
            if self._draining:
                return False
            self._draining = True
        logger.info("キュー処理開始: 待機 %d 件", len(self.queue))

        try:
            while True:
                # 取り出しとフラグ解除は同じロック内
                with self._guard:
                    entry = self.queue.pop()
                    if entry is None:
                        self._draining = False
                        break
                self._process(entry)
        except BaseException:
            with self._guard:
                self._draining = False
            raise

        logger.info("キュー処理完了")
        return True

    def _process(self, entry: QueueEntry) -> None:
        item = entry.item
        self.progress.start(entry)
        self.notifier.emit(
            EventKind.STARTED, item.id,
            {"keyword": item.keyword, "retryCount": entry.retry_count},
        )
        logger.info(
            "検索開始: item=%s, keyword=%s, 種別=%s, 試行=%d",
            item.id, item.keyword, item.kind.value, entry.retry_count + 1,
        )

        try:
            result = self.router.route(item)
            self.store.save_track(result, item.id, item.kind is ItemKind.SPONSORED)
        except Exception as e:
            self._handle_failure(entry, e)
            return

        self.progress.update(item.id, SearchStatus.COMPLETED)
        self.notifier.emit(
            EventKind.COMPLETED, item.id,
            {"keyword": item.keyword, "result": result.to_dict()},
        )
        status = f"{result.global_rank}位" if result.found else "圏外"
        logger.info("保存完了: item=%s → %s", item.id, status)
        self._sleep(self.after_success_delay)

    def _handle_failure(self, entry: QueueEntry, error: Exception) -> None:
        item = entry.item
        message = str(error) or type(error).__name__
        logger.error("検索失敗: item=%s, 試行=%d, error=%s", item.id, entry.retry_count + 1, message)

        if entry.retry_count < self.max_retries:
            entry.retry_count += 1
            self.queue.push(entry)
            self.progress.update(item.id, SearchStatus.RETRYING, message)
            logger.info("再試行 %d/%d: item=%s（キュー末尾へ）", entry.retry_count, self.max_retries, item.id)
            self._sleep(self.retry_backoff)
            return

        self.progress.update(item.id, SearchStatus.FAILED, message)
        self.notifier.emit(
            EventKind.FAILED, item.id,
            {"keyword": item.keyword, "error": message, "retryCount": entry.retry_count},
        )
        logger.error("最大再試行回数を超過: item=%s を破棄", item.id)

    def get_search_status(self) -> dict:
        """処理中フラグ・待機件数・検索状態一覧を返す."""
        return {
            "isProcessing": self.is_processing,
            "queueLength": len(self.queue),
            "activeSearches": [p.to_dict() for p in self.progress.snapshot()],
        }
