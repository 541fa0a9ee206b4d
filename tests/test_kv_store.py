from __future__ import annotations

from tradedesk.storage.kv import MemoryKeyValueStore, SqliteKeyValueStore


def test_memory_store_get_set_delete() -> None:
    store = MemoryKeyValueStore()
    assert store.get("a") is None
    store.set("a", "1")
    store.set("a", "2")
    assert store.get("a") == "2"
    store.delete("a")
    store.delete("missing")
    assert store.get("a") is None


def test_sqlite_store_persists_across_connections(tmp_path) -> None:
    db_path = tmp_path / "state.db"
    store = SqliteKeyValueStore.open(db_path)
    store.set("vwap_active_trade", '{"id": "t1"}')
    store.set("vwap_active_trade", '{"id": "t2"}')
    store.set("vwap_saved_trades", "[]")
    store.delete("vwap_saved_trades")
    store.close()

    reopened = SqliteKeyValueStore.open(db_path)
    assert reopened.get("vwap_active_trade") == '{"id": "t2"}'
    assert reopened.get("vwap_saved_trades") is None
    reopened.close()
