"""ネイバーショッピング順位追跡のメインエントリーポイント.

処理フロー:
  1. tick ごとに DB から有効な追跡対象を取得
  2. 追跡間隔が来た対象を検索キューへ追加
  3. キューを 1 件ずつ処理（広告 → ブラウザ、通常 → OpenAPI）
  4. 結果を tracks に保存し、検索イベントを配信
  5. 毎日 0 時などに古い履歴の削除と期間統計の集計
"""

from __future__ import annotations

import logging
import sys
import time
from datetime import datetime

from rank_tracker import db
from rank_tracker.config import LOG_DIR, TICK_SECONDS
from rank_tracker.notifier import ConnectionRegistry
from rank_tracker.router import build_router
from rank_tracker.scheduler import RankScheduler
from rank_tracker.service import RankSearchService


def setup_logging() -> None:
    """ロギングの初期設定."""
    log_file = LOG_DIR / f"tracker_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def build_service(registry: ConnectionRegistry | None = None) -> RankSearchService:
    """本番用の依存関係でサービスを組み立てる."""
    return RankSearchService(build_router(), db, registry or ConnectionRegistry())


def run() -> None:
    """メイン処理."""
    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("=== 順位追跡 開始 (tick=%d 秒) ===", TICK_SECONDS)

    service = build_service()
    scheduler = RankScheduler(db, service, tick_seconds=TICK_SECONDS)
    scheduler.start()

    try:
        while True:
            time.sleep(60)
            status = service.get_search_status()
            logger.debug("状態: 処理中=%s, 待機=%d 件", status["isProcessing"], status["queueLength"])
    except (KeyboardInterrupt, SystemExit):
        logger.info("停止要求を受信")
    finally:
        scheduler.shutdown()
        logger.info("=== 順位追跡 終了 ===")


if __name__ == "__main__":
    run()
