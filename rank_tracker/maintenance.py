"""定期メンテナンス（古い履歴の削除・期間統計・スナップショット）.

どの処理も商品単位のループで、1 商品の失敗は記録して次へ進む。
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Protocol

from rank_tracker.config import HISTORY_RETENTION_YEARS, KST, SNAPSHOT_DAYS
from rank_tracker.models import PeriodKind, PurgeSummary, SnapshotDay, StatSummary, TrackedItem
from rank_tracker.stats import build_weekly_snapshot, period_window

logger = logging.getLogger(__name__)


class MaintenanceStore(Protocol):
    def list_active_tracked_items(self) -> list[TrackedItem]: ...
    def list_tracks(self, item_id: int, start: datetime, end: datetime) -> list[dict]: ...
    def compute_statistics(
        self, item_id: int, period_kind: PeriodKind, start: datetime, end: datetime
    ) -> StatSummary | None: ...
    def save_statistic(self, summary: StatSummary) -> None: ...
    def save_snapshot(self, item_id: int, snapshot: list[SnapshotDay]) -> None: ...
    def purge_older_than(self, cutoff: datetime) -> PurgeSummary: ...


def retention_cutoff(now: datetime, years: int = HISTORY_RETENTION_YEARS) -> datetime:
    """now の years 年前（2/29 は 2/28 に寄せる）."""
    try:
        return now.replace(year=now.year - years)
    except ValueError:
        return now.replace(year=now.year - years, day=28)


def purge_old_history(store: MaintenanceStore, now: datetime) -> PurgeSummary:
    cutoff = retention_cutoff(now)
    logger.info("古い履歴の削除開始: cutoff=%s", cutoff.isoformat())
    return store.purge_older_than(cutoff)


def recompute_statistics(store: MaintenanceStore, kind: PeriodKind, now: datetime) -> int:
    """直前の期間の統計を全商品について作り直す.

    Returns:
        保存できた統計の件数
    """
    start, end = period_window(kind, now)
    logger.info("期間統計の集計開始: %s [%s, %s)", kind.value, start.isoformat(), end.isoformat())

    saved = 0
    for item in store.list_active_tracked_items():
        try:
            summary = store.compute_statistics(item.id, kind, start, end)
            if summary is None:
                continue
            store.save_statistic(summary)
            saved += 1
        except Exception:
            logger.exception("統計の集計失敗: item=%s, period=%s", item.id, kind.value)
    logger.info("期間統計の集計完了: %s, %d 件保存", kind.value, saved)
    return saved


def rebuild_weekly_snapshots(store: MaintenanceStore, now: datetime) -> int:
    """昨日までの 7 日分のスナップショットを全商品について作り直す."""
    today = now.astimezone(KST).replace(hour=0, minute=0, second=0, microsecond=0)
    start = today - timedelta(days=SNAPSHOT_DAYS)
    last_day = (today - timedelta(days=1)).date()

    saved = 0
    for item in store.list_active_tracked_items():
        try:
            tracks = store.list_tracks(item.id, start, today)
            store.save_snapshot(item.id, build_weekly_snapshot(tracks, last_day))
            saved += 1
        except Exception:
            logger.exception("スナップショット作成失敗: item=%s", item.id)
    logger.info("スナップショット作成完了: %d 件", saved)
    return saved


def run_daily(store: MaintenanceStore, now: datetime) -> None:
    """毎日 0 時: 古い履歴の削除 → 日次統計 → 7 日スナップショット."""
    try:
        purge_old_history(store, now)
    except Exception:
        logger.exception("古い履歴の削除失敗")
    recompute_statistics(store, PeriodKind.DAILY, now)
    rebuild_weekly_snapshots(store, now)
