"""データモデル定義."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum

from rank_tracker.config import PAGE_SIZE

ALLOWED_INTERVALS = (60, 360, 720, 1440)


class ItemKind(str, Enum):
    """追跡対象の掲載種別（DB の products.type の値）."""

    ORGANIC = "organic"
    SPONSORED = "ad"


class SearchStatus(str, Enum):
    SEARCHING = "searching"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


class PeriodKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class TrackedItem:
    """追跡対象（商品番号 × キーワード × 種別）."""

    id: int
    keyword: str
    external_product_id: str  # products.product_no
    kind: ItemKind
    interval_minutes: int
    active: bool = True
    name: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> TrackedItem:
        """products テーブルの 1 行から生成する."""
        return cls(
            id=row["id"],
            keyword=row.get("keyword", ""),
            external_product_id=str(row.get("product_no", "")),
            kind=ItemKind(row.get("type", ItemKind.ORGANIC.value)),
            interval_minutes=int(row.get("interval_min", 60)),
            active=bool(row.get("active", True)),
            name=row.get("product_name"),
        )


@dataclass
class QueueEntry:
    """検索キューの 1 エントリ."""

    item: TrackedItem
    enqueued_at: datetime
    retry_count: int = 0


@dataclass
class SearchProgress:
    """検索中・検索済みアイテムの状態（item_id 単位）."""

    item_id: int
    keyword: str
    status: SearchStatus
    started_at: datetime
    completed_at: datetime | None = None
    last_error: str | None = None
    retry_count: int = 0

    def to_dict(self) -> dict:
        return {
            "itemId": self.item_id,
            "keyword": self.keyword,
            "status": self.status.value,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "lastError": self.last_error,
            "retryCount": self.retry_count,
        }


@dataclass(frozen=True)
class IdentifierCandidateSet:
    """URL から抽出した 3 種類の商品 ID."""

    prod_no: str | None = None  # スマートストア /products/{n}
    nv_mid: str | None = None  # ネイバー統合商品 ID
    product_id: str | None = None  # カタログ ID

    def __bool__(self) -> bool:
        return bool(self.prod_no or self.nv_mid or self.product_id)

    def values(self) -> list[str]:
        return [v for v in (self.prod_no, self.nv_mid, self.product_id) if v]


@dataclass(frozen=True)
class RankedCandidate:
    """OpenAPI 検索結果の 1 商品."""

    product_id: str
    mall_name: str
    link: str
    lprice: str

    @classmethod
    def from_api(cls, item: dict) -> RankedCandidate:
        return cls(
            product_id=str(item.get("productId", "")),
            mall_name=item.get("mallName", ""),
            link=item.get("link", ""),
            lprice=str(item.get("lprice", "")),
        )


@dataclass(frozen=True)
class PageCandidate:
    """検索画面から抽出した 1 カード."""

    position: int  # ページ内順位（1始まり）
    links: tuple[tuple[str, IdentifierCandidateSet], ...]  # (href, 抽出 ID)
    store_name: str | None = None
    price: int | None = None
    sponsored: bool = False


@dataclass(frozen=True)
class RankResult:
    """順位検索の結果.

    found=True なら global_rank >= 1 が必須で、ページ番号・ページ内順位は
    40 件/ページで導出する。found=False なら順位・価格・店舗は持たない。
    """

    external_product_id: str
    found: bool
    store_name: str | None = None
    store_link: str | None = None
    price: int | None = None
    global_rank: int | None = None
    notes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.found:
            if self.global_rank is None or self.global_rank < 1:
                raise ValueError(f"found=True には global_rank >= 1 が必要: {self.global_rank}")
        elif any(
            v is not None
            for v in (self.store_name, self.store_link, self.price, self.global_rank)
        ):
            raise ValueError("found=False の結果に順位・価格・店舗情報は含められない")

    @classmethod
    def hit(
        cls,
        external_product_id: str,
        global_rank: int,
        *,
        store_name: str | None = None,
        store_link: str | None = None,
        price: int | None = None,
        notes: list[str] | tuple[str, ...] = (),
    ) -> RankResult:
        return cls(
            external_product_id=external_product_id,
            found=True,
            store_name=store_name,
            store_link=store_link,
            price=price,
            global_rank=global_rank,
            notes=tuple(notes),
        )

    @classmethod
    def miss(cls, external_product_id: str, *notes: str) -> RankResult:
        return cls(external_product_id=external_product_id, found=False, notes=tuple(notes))

    @property
    def page_number(self) -> int | None:
        if self.global_rank is None:
            return None
        return math.ceil(self.global_rank / PAGE_SIZE)

    @property
    def rank_within_page(self) -> int | None:
        if self.global_rank is None:
            return None
        return (self.global_rank - 1) % PAGE_SIZE + 1

    def to_dict(self) -> dict:
        return {
            "productId": self.external_product_id,
            "found": self.found,
            "storeName": self.store_name,
            "storeLink": self.store_link,
            "price": self.price,
            "globalRank": self.global_rank,
            "page": self.page_number,
            "rankInPage": self.rank_within_page,
            "notes": list(self.notes),
        }


@dataclass
class StatSummary:
    """期間集計（最高・最低・平均順位、ヒット率、平均価格）."""

    item_id: int
    period_kind: PeriodKind
    period_start: datetime
    period_end: datetime
    sample_count: int
    found_count: int
    best_rank: int | None
    worst_rank: int | None
    avg_rank: float | None
    avg_price: float | None

    @property
    def found_rate(self) -> float:
        if not self.sample_count:
            return 0.0
        return self.found_count / self.sample_count

    def to_record(self) -> dict:
        record = asdict(self)
        record["period_kind"] = self.period_kind.value
        record["period_start"] = self.period_start.isoformat()
        record["period_end"] = self.period_end.isoformat()
        record["found_rate"] = round(self.found_rate, 4)
        return record


@dataclass
class SnapshotDay:
    """7 日スナップショットの 1 日分."""

    day: date
    samples: int = 0
    best_rank: int | None = None
    avg_rank: float | None = None
    avg_price: float | None = None
    found_rate: float = 0.0

    def to_dict(self) -> dict:
        record = asdict(self)
        record["day"] = self.day.isoformat()
        return record


@dataclass
class PurgeSummary:
    cutoff: datetime
    deleted_tracks: int = 0
