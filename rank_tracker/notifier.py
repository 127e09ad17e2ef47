"""検索ライフサイクルイベントの配信.

接続中のクライアント（SSE / WebSocket 側で登録される送信関数）へ
JSON メッセージをブロードキャストする。配信保証はしない。
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    STARTED = "searchStarted"
    COMPLETED = "searchCompleted"
    FAILED = "searchFailed"


class ConnectionRegistry:
    """接続クライアントの登録簿兼イベント送信先."""

    def __init__(self) -> None:
        self._clients: dict[str, Callable[[str], None]] = {}
        self._lock = threading.Lock()

    def connect(self, send: Callable[[str], None]) -> str:
        client_id = uuid.uuid4().hex
        with self._lock:
            self._clients[client_id] = send
            total = len(self._clients)
        logger.info("クライアント接続: %s (計 %d 件)", client_id, total)
        return client_id

    def disconnect(self, client_id: str) -> None:
        with self._lock:
            self._clients.pop(client_id, None)
            total = len(self._clients)
        logger.info("クライアント切断: %s (計 %d 件)", client_id, total)

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def emit(self, kind: EventKind, item_id: int, payload: dict | None = None) -> None:
        """全クライアントへ送信する. 送信に失敗したクライアントは切断扱い."""
        message = json.dumps(
            {
                "type": kind.value,
                "itemId": item_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **(payload or {}),
            },
            ensure_ascii=False,
        )
        with self._lock:
            clients = list(self._clients.items())
        if not clients:
            return

        dead: list[str] = []
        for client_id, send in clients:
            try:
                send(message)
            except Exception as e:
                logger.warning("イベント送信失敗: client=%s, error=%s", client_id, e)
                dead.append(client_id)
        for client_id in dead:
            self.disconnect(client_id)
