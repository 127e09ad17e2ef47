"""Supabase データベース操作モジュール.

全テーブルは rank_tracker スキーマに配置。
Supabase client のスキーマ指定は .schema() で行う。

テーブル:
  products   追跡対象（商品番号 × キーワード × 種別 × 追跡間隔）
  tracks     順位・価格の履歴（追記のみ）
  statistics 期間統計
  snapshots  7 日スナップショット（商品ごとに 1 行）
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from supabase import Client, create_client

from rank_tracker.config import SUPABASE_SCHEMA, SUPABASE_SECRET_KEY, SUPABASE_URL
from rank_tracker.models import (
    ALLOWED_INTERVALS,
    PeriodKind,
    PurgeSummary,
    RankResult,
    SnapshotDay,
    StatSummary,
    TrackedItem,
)
from rank_tracker.stats import summarize_tracks

logger = logging.getLogger(__name__)

_client: Client | None = None


def _get_client() -> Client:
    """初回利用時にクライアントを作る."""
    global _client
    if _client is None:
        _client = create_client(SUPABASE_URL, SUPABASE_SECRET_KEY)
    return _client


def _table(name: str):
    """rank_tracker スキーマのテーブルを参照する."""
    return _get_client().schema(SUPABASE_SCHEMA).table(name)


def list_active_tracked_items() -> list[TrackedItem]:
    """全アカウントの有効な追跡対象を取得する.

    種別や追跡間隔が不正な行は警告を出して除外する。
    """
    resp = (
        _table("products")
        .select("id, product_name, product_no, keyword, type, interval_min, active")
        .eq("active", True)
        .execute()
    )

    items: list[TrackedItem] = []
    for row in resp.data:
        try:
            item = TrackedItem.from_row(row)
        except (KeyError, ValueError) as e:
            logger.warning("追跡対象の行が不正のため除外: row=%s, error=%s", row, e)
            continue
        if item.interval_minutes not in ALLOWED_INTERVALS:
            logger.warning("追跡間隔が不正のため除外: id=%s, interval=%s", item.id, item.interval_minutes)
            continue
        items.append(item)
    return items


def save_track(result: RankResult, item_id: int, is_ad: bool = False) -> None:
    """順位結果を tracks に 1 行追記する."""
    record = {
        "product_id": item_id,
        "checked_at": datetime.now(timezone.utc).isoformat(),
        "is_ad": is_ad,
        "page": result.page_number,
        "rank_on_page": result.rank_within_page,
        "global_rank": result.global_rank,
        "price_krw": result.price,
        "mall_name": result.store_name,
        "product_link": result.store_link,
    }
    _table("tracks").insert(record).execute()
    logger.info("tracks に挿入: product_id=%s, rank=%s", item_id, result.global_rank)


def list_tracks(item_id: int, start: datetime, end: datetime) -> list[dict]:
    """[start, end) の順位履歴を古い順に取得する."""
    resp = (
        _table("tracks")
        .select("checked_at, global_rank, price_krw")
        .eq("product_id", item_id)
        .gte("checked_at", start.isoformat())
        .lt("checked_at", end.isoformat())
        .order("checked_at")
        .execute()
    )
    return resp.data


def compute_statistics(
    item_id: int, period_kind: PeriodKind, start: datetime, end: datetime
) -> StatSummary | None:
    return summarize_tracks(item_id, period_kind, start, end, list_tracks(item_id, start, end))


def save_statistic(summary: StatSummary) -> None:
    record = summary.to_record()
    record["product_id"] = record.pop("item_id")
    (
        _table("statistics")
        .upsert(record, on_conflict="product_id,period_kind,period_start")
        .execute()
    )


def save_snapshot(item_id: int, snapshot: list[SnapshotDay]) -> None:
    record = {
        "product_id": item_id,
        "days": [day.to_dict() for day in snapshot],
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    _table("snapshots").upsert(record, on_conflict="product_id").execute()


def purge_older_than(cutoff: datetime) -> PurgeSummary:
    """cutoff より古い順位・価格履歴を削除する（商品・キーワードは残す）."""
    resp = (
        _table("tracks")
        .delete(count="exact")
        .lt("checked_at", cutoff.isoformat())
        .execute()
    )
    deleted = resp.count or 0
    logger.info("tracks を %d 件削除 (checked_at < %s)", deleted, cutoff.isoformat())
    return PurgeSummary(cutoff=cutoff, deleted_tracks=deleted)
