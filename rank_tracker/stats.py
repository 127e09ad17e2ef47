"""順位履歴の集計（期間統計・7 日スナップショット）."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta

from rank_tracker.config import KST, SNAPSHOT_DAYS
from rank_tracker.models import PeriodKind, SnapshotDay, StatSummary


def period_window(kind: PeriodKind, now: datetime) -> tuple[datetime, datetime]:
    """now（KST）時点で締まった直前の集計期間 [start, end) を返す."""
    today = now.astimezone(KST).replace(hour=0, minute=0, second=0, microsecond=0)
    if kind is PeriodKind.DAILY:
        return today - timedelta(days=1), today
    if kind is PeriodKind.WEEKLY:
        return today - timedelta(days=7), today
    if kind is PeriodKind.MONTHLY:
        end = today.replace(day=1)
        start = (end - timedelta(days=1)).replace(day=1)
        return start, end
    end = today.replace(month=1, day=1)
    return end.replace(year=end.year - 1), end


def _checked_at(track: dict) -> datetime:
    value = track["checked_at"]
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _mean(values: list[int]) -> float | None:
    return round(sum(values) / len(values), 2) if values else None


def summarize_tracks(
    item_id: int,
    kind: PeriodKind,
    start: datetime,
    end: datetime,
    tracks: list[dict],
) -> StatSummary | None:
    """tracks 行から期間統計を作る. 記録が無ければ None."""
    if not tracks:
        return None
    ranks = [t["global_rank"] for t in tracks if t.get("global_rank") is not None]
    prices = [
        t["price_krw"] for t in tracks
        if t.get("global_rank") is not None and t.get("price_krw")
    ]
    return StatSummary(
        item_id=item_id,
        period_kind=kind,
        period_start=start,
        period_end=end,
        sample_count=len(tracks),
        found_count=len(ranks),
        best_rank=min(ranks) if ranks else None,
        worst_rank=max(ranks) if ranks else None,
        avg_rank=_mean(ranks),
        avg_price=_mean(prices),
    )


def build_weekly_snapshot(
    tracks: list[dict], last_day: date, days: int = SNAPSHOT_DAYS
) -> list[SnapshotDay]:
    """last_day までの days 日分を日別（KST）に集計する. 記録の無い日も含める."""
    by_day: dict[date, list[dict]] = defaultdict(list)
    for track in tracks:
        by_day[_checked_at(track).astimezone(KST).date()].append(track)

    snapshot = []
    for offset in range(days - 1, -1, -1):
        day = last_day - timedelta(days=offset)
        rows = by_day.get(day, [])
        ranks = [r["global_rank"] for r in rows if r.get("global_rank") is not None]
        prices = [r["price_krw"] for r in rows if r.get("global_rank") is not None and r.get("price_krw")]
        snapshot.append(SnapshotDay(
            day=day,
            samples=len(rows),
            best_rank=min(ranks) if ranks else None,
            avg_rank=_mean(ranks),
            avg_price=_mean(prices),
            found_rate=round(len(ranks) / len(rows), 4) if rows else 0.0,
        ))
    return snapshot
