import pytest

from doc_archiver.database.db import DBManager
from doc_archiver.database.kv import KeyValueStore
from doc_archiver.database.schema import CURRENT_SCHEMA_VERSION, init_schema
from doc_archiver.exceptions import PersistenceError

def test_kv_roundtrip_and_overwrite(kv):
    assert kv.get("missing") is None
    assert kv.get("missing", []) == []

    kv.set("k", {"title": "عقد توريد", "n": 1})
    kv.set("k", {"title": "updated"})

    assert kv.get("k") == {"title": "updated"}
    assert kv.keys() == ["k"]

def test_kv_delete(kv):
    kv.set("a", 1)
    kv.delete("a")
    kv.delete("never-existed")

    assert kv.get("a") is None

def test_kv_corrupt_value_returns_default(conn, kv):
    with conn:
        conn.execute("INSERT INTO kv (key, value, updated_at) VALUES ('bad', '{oops', '')")

    assert kv.get("bad", "fallback") == "fallback"

def test_kv_unserializable_value_raises(kv):
    with pytest.raises(PersistenceError):
        kv.set("k", {"not json": object()})

def test_kv_closed_connection_raises(conn, kv):
    conn.close()
    with pytest.raises(PersistenceError):
        kv.set("k", 1)

def test_schema_is_idempotent(conn):
    init_schema(conn)
    init_schema(conn)

    rows = conn.execute("SELECT version FROM schema_version").fetchall()
    assert rows == [(CURRENT_SCHEMA_VERSION,)]

def test_db_manager_persists_between_connections(tmp_path):
    db = tmp_path / "archive.db"

    with DBManager(db) as conn:
        KeyValueStore(conn).set("arshif_last_sync", "2025-01-01")

    with DBManager(db) as conn:
        assert KeyValueStore(conn).get("arshif_last_sync") == "2025-01-01"
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        # NORMAL
        assert conn.execute("PRAGMA synchronous").fetchone()[0] == 1

def test_db_manager_bad_path(tmp_path):
    with pytest.raises(PersistenceError):
        DBManager(tmp_path / "no" / "such" / "dir" / "archive.db").connect()
