"""notifier モジュールのユニットテスト."""

import json

from rank_tracker.notifier import ConnectionRegistry, EventKind


class TestConnectionRegistry:
    """ConnectionRegistry のテスト."""

    def test_broadcast(self):
        """接続中の全クライアントに同じ JSON が届くこと."""
        registry = ConnectionRegistry()
        inbox_a, inbox_b = [], []
        registry.connect(inbox_a.append)
        registry.connect(inbox_b.append)

        registry.emit(EventKind.COMPLETED, 7, {"keyword": "주차번호판", "result": {"globalRank": 41}})

        assert inbox_a == inbox_b
        message = json.loads(inbox_a[0])
        assert message["type"] == "searchCompleted"
        assert message["itemId"] == 7
        assert message["result"] == {"globalRank": 41}
        assert "timestamp" in message
        assert "주차번호판" in inbox_a[0]

    def test_failed_client_removed(self):
        """送信に失敗したクライアントは切断扱いになること."""
        registry = ConnectionRegistry()
        inbox = []

        def broken(_message):
            raise ConnectionResetError("client gone")

        registry.connect(broken)
        registry.connect(inbox.append)

        registry.emit(EventKind.STARTED, 1)
        registry.emit(EventKind.FAILED, 1, {"error": "timeout"})

        assert len(registry) == 1
        assert [json.loads(m)["type"] for m in inbox] == ["searchStarted", "searchFailed"]

    def test_disconnect(self):
        registry = ConnectionRegistry()
        client_id = registry.connect(lambda _: None)

        registry.disconnect(client_id)
        registry.disconnect("unknown")

        assert len(registry) == 0

    def test_emit_without_clients(self):
        ConnectionRegistry().emit(EventKind.STARTED, 1, {"keyword": "k"})
