"""定期実行スケジューラ.

- tick（60 秒または 10 秒ごと）: 追跡間隔が来た対象をキューに積み、処理ループを起こす
- 毎日・毎週月曜・毎月 1 日・毎年 1/1 の 0 時（KST）: メンテナンス
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from rank_tracker import maintenance
from rank_tracker.config import KST, TICK_SECONDS
from rank_tracker.models import PeriodKind, TrackedItem
from rank_tracker.service import RankSearchService

logger = logging.getLogger(__name__)


def _seconds_of_day(now: datetime) -> int:
    return now.hour * 3600 + now.minute * 60 + now.second


def is_due(interval_minutes: int, now: datetime, tick_seconds: int = TICK_SECONDS) -> bool:
    """now を含む tick が追跡間隔の区切りにあたるか.

    分単位（tick=60）なら「0 時からの経過分 % 間隔 == 0」、
    秒単位（tick=10）なら「経過秒 % (間隔 × 60) が tick 未満」と同じ判定になる。
    """
    if interval_minutes <= 0:
        return False
    return _seconds_of_day(now) % (interval_minutes * 60) < tick_seconds


def _slot(item: TrackedItem, now: datetime) -> tuple:
    return now.date(), _seconds_of_day(now) // (item.interval_minutes * 60)


class RankScheduler:
    """tick ごとの対象選定とカレンダー実行のメンテナンスを担当する."""

    def __init__(
        self,
        store: maintenance.MaintenanceStore,
        service: RankSearchService,
        *,
        tick_seconds: int = TICK_SECONDS,
        tz=KST,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        if tick_seconds <= 0 or 60 % tick_seconds:
            raise ValueError(f"tick_seconds は 60 の約数で指定する: {tick_seconds}")
        self.store = store
        self.service = service
        self.tick_seconds = tick_seconds
        self.tz = tz
        self._scheduler = scheduler or BackgroundScheduler(timezone=tz)
        self._tick_lock = threading.Lock()
        self._last_slot: dict[int, tuple] = {}

    def tick(self, now: datetime | None = None) -> list[TrackedItem]:
        """間隔が来た対象をキューに積み、処理ループを起こす. 前回の tick が実行中なら何もしない.

        Returns:
            キューに積んだ対象
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.info("前回の tick が実行中のためスキップ")
            return []
        try:
            now = (now or datetime.now(self.tz)).astimezone(self.tz)
            items = self.store.list_active_tracked_items()
            logger.info("tick: %s, 有効な追跡対象 %d 件", now.isoformat(), len(items))

            due: list[TrackedItem] = []
            for item in items:
                if not item.active or not is_due(item.interval_minutes, now, self.tick_seconds):
                    continue
                slot = _slot(item, now)
                if self._last_slot.get(item.id) == slot:
                    continue
                self._last_slot[item.id] = slot
                self.service.enqueue(item)
                due.append(item)

            # 積んだものが無くても、残っているエントリがあれば処理ループを起こす
            self.service.request_drain()
            return due
        finally:
            self._tick_lock.release()

    def _tick_trigger(self) -> CronTrigger:
        if self.tick_seconds == 60:
            return CronTrigger(second=0, timezone=self.tz)
        return CronTrigger(second=f"*/{self.tick_seconds}", timezone=self.tz)

    def _run_statistics(self, kind: PeriodKind) -> None:
        maintenance.recompute_statistics(self.store, kind, datetime.now(self.tz))

    def _run_daily(self) -> None:
        maintenance.run_daily(self.store, datetime.now(self.tz))

    def start(self) -> None:
        add = self._scheduler.add_job
        add(self.tick, self._tick_trigger(), id="rank_tick",
            max_instances=1, coalesce=True, misfire_grace_time=self.tick_seconds)
        add(self._run_daily, CronTrigger(hour=0, minute=0, timezone=self.tz),
            id="maintenance_daily", max_instances=1, coalesce=True)
        add(self._run_statistics, CronTrigger(day_of_week="mon", hour=0, minute=0, timezone=self.tz),
            args=[PeriodKind.WEEKLY], id="stats_weekly", max_instances=1, coalesce=True)
        add(self._run_statistics, CronTrigger(day=1, hour=0, minute=0, timezone=self.tz),
            args=[PeriodKind.MONTHLY], id="stats_monthly", max_instances=1, coalesce=True)
        add(self._run_statistics, CronTrigger(month=1, day=1, hour=0, minute=0, timezone=self.tz),
            args=[PeriodKind.YEARLY], id="stats_yearly", max_instances=1, coalesce=True)
        self._scheduler.start()
        logger.info("スケジューラ開始: tick=%d 秒, タイムゾーン=%s", self.tick_seconds, self.tz)

    def shutdown(self) -> None:
        self._scheduler.shutdown(wait=False)
        logger.info("スケジューラ停止")
