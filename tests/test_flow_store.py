"""
Unit tests for flow persistence.
"""

import sqlite3

import pytest

from visual_flow_core.exceptions import FlowNotFoundError, PersistenceError
from visual_flow_core.flow_store import InMemoryFlowStore, SQLiteFlowStore
from visual_flow_core.models import graph_hash
from visual_flow_core.mutations import new_graph


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryFlowStore()
    return SQLiteFlowStore(str(tmp_path / "data" / "flows.db"))


class TestFlowStore:
    """Behaviour shared by every store adapter."""

    def test_save_and_load(self, store, users_graph):
        flow_id = store.save_flow("Users", users_graph)
        assert store.load_flow(flow_id) == users_graph

    def test_overwrite_keeps_id(self, store, users_graph):
        flow_id = store.save_flow("Users", users_graph)
        same_id = store.save_flow("Users v2", new_graph(), flow_id=flow_id)
        assert same_id == flow_id
        assert store.load_flow(flow_id) == new_graph()
        [record] = store.list_flows()
        assert record['name'] == "Users v2"
        assert record['graph_hash'] == graph_hash(new_graph())

    def test_list_is_metadata_only(self, store, users_graph):
        store.save_flow("Users", users_graph, description="demo")
        [record] = store.list_flows()
        assert record['description'] == "demo"
        assert 'graph' not in record
        assert 'graph_json' not in record

    def test_unknown_id(self, store):
        with pytest.raises(FlowNotFoundError) as exc_info:
            store.load_flow("missing")
        assert exc_info.value.flow_id == "missing"

    def test_delete(self, store, users_graph):
        flow_id = store.save_flow("Users", users_graph)
        assert store.delete_flow(flow_id) is True
        assert store.delete_flow(flow_id) is False
        assert store.list_flows() == []


class TestSQLiteFlowStore:
    """SQLite-specific behaviour."""

    def test_corrupt_row(self, tmp_path):
        db_path = str(tmp_path / "flows.db")
        store = SQLiteFlowStore(db_path)
        conn = sqlite3.connect(db_path)
        conn.execute(
            "INSERT INTO flows (id, name, created_at, updated_at, graph_hash, graph_json) "
            "VALUES ('bad', 'Bad', 0, 0, '', '{not json')")
        conn.commit()
        conn.close()
        with pytest.raises(PersistenceError):
            store.load_flow("bad")

    def test_resolve_setting_order(self, tmp_path, monkeypatch):
        store = SQLiteFlowStore(str(tmp_path / "flows.db"))
        monkeypatch.delenv("VISUAL_FLOW_PUBLISH_DIR", raising=False)
        assert store.resolve_setting("publish_dir", "VISUAL_FLOW_PUBLISH_DIR", "default") == "default"

        monkeypatch.setenv("VISUAL_FLOW_PUBLISH_DIR", "/from/env")
        assert store.resolve_setting("publish_dir", "VISUAL_FLOW_PUBLISH_DIR", "default") == "/from/env"

        store.set_setting("PUBLISH_DIR", "/from/db")
        assert store.resolve_setting("publish_dir", "VISUAL_FLOW_PUBLISH_DIR", "default") == "/from/db"

        assert store.delete_setting("publish_dir") is True
        assert store.get_setting("publish_dir") is None
