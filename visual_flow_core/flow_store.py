"""
Flow Store - persistence for saved flows.

Schema (SQLite adapter):
  flows     : id, name, description, created_at, updated_at, graph_hash, graph_json
  settings  : key, value, updated_at
"""

import json
import logging
import os
import sqlite3
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .exceptions import FlowNotFoundError, GraphError, PersistenceError
from .models import Graph, graph_from_dict, graph_hash, graph_to_dict


class FlowStore(ABC):
    """Where the editing session saves and loads flows."""

    @abstractmethod
    def save_flow(self, name: str, graph: Graph, flow_id: Optional[str] = None,
                  description: str = '') -> str:
        """Save or overwrite a flow and return its id."""
        pass

    @abstractmethod
    def load_flow(self, flow_id: str) -> Graph:
        """Load a flow. Raises FlowNotFoundError for unknown ids."""
        pass

    @abstractmethod
    def list_flows(self) -> List[Dict[str, Any]]:
        """Metadata for every saved flow, most recently updated first."""
        pass

    @abstractmethod
    def delete_flow(self, flow_id: str) -> bool:
        pass


class InMemoryFlowStore(FlowStore):
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self):
        self._flows: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save_flow(self, name: str, graph: Graph, flow_id: Optional[str] = None,
                  description: str = '') -> str:
        now = time.time()
        with self._lock:
            flow_id = flow_id or str(uuid.uuid4())
            existing = self._flows.get(flow_id)
            self._flows[flow_id] = {
                'id': flow_id,
                'name': name,
                'description': description,
                'created_at': existing['created_at'] if existing else now,
                'updated_at': now,
                'graph_hash': graph_hash(graph),
                'graph': graph,
            }
        return flow_id

    def load_flow(self, flow_id: str) -> Graph:
        with self._lock:
            record = self._flows.get(flow_id)
        if record is None:
            raise FlowNotFoundError(flow_id)
        return record['graph']

    def list_flows(self) -> List[Dict[str, Any]]:
        with self._lock:
            records = [
                {k: v for k, v in r.items() if k != 'graph'}
                for r in self._flows.values()
            ]
        return sorted(records, key=lambda r: r['updated_at'], reverse=True)

    def delete_flow(self, flow_id: str) -> bool:
        with self._lock:
            return self._flows.pop(flow_id, None) is not None


class SQLiteFlowStore(FlowStore):
    """SQLite-backed flow persistence plus a small settings table.

    A new connection is opened per call, so one store can be shared between
    the Flask request threads.
    """

    def __init__(self, db_path: str):
        self.logger = logging.getLogger(__name__)
        self.db_path = db_path
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        conn = self._get_db()
        conn.close()

    def _get_db(self) -> sqlite3.Connection:
        """Return a connection to the flows database, creating tables if needed."""
        try:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            conn.execute('PRAGMA journal_mode=WAL')
            conn.executescript('''
                CREATE TABLE IF NOT EXISTS flows (
                    id            TEXT PRIMARY KEY,
                    name          TEXT NOT NULL,
                    description   TEXT DEFAULT '',
                    created_at    REAL NOT NULL,
                    updated_at    REAL NOT NULL,
                    graph_hash    TEXT NOT NULL,
                    graph_json    TEXT NOT NULL DEFAULT '{}'
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key           TEXT PRIMARY KEY,
                    value         TEXT NOT NULL,
                    updated_at    REAL NOT NULL
                );
            ''')
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open flow database {self.db_path}: {e}") from e
        return conn

    # ─────────────────────────────────────────────────────────────────
    # Flow CRUD
    # ─────────────────────────────────────────────────────────────────

    def save_flow(self, name: str, graph: Graph, flow_id: Optional[str] = None,
                  description: str = '') -> str:
        """Save or update a flow.

        Args:
            name:         Human-readable flow name.
            graph:        The graph to store.
            flow_id:      If provided, overwrites that flow (or creates it with this id).
            description:  Optional description.

        Returns:
            The flow id.
        """
        now = time.time()
        payload = json.dumps(graph_to_dict(graph), sort_keys=True)
        digest = graph_hash(graph)
        flow_id = flow_id or str(uuid.uuid4())

        conn = self._get_db()
        try:
            conn.execute('''
                INSERT INTO flows (id, name, description, created_at, updated_at, graph_hash, graph_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE
                   SET name = excluded.name,
                       description = excluded.description,
                       updated_at = excluded.updated_at,
                       graph_hash = excluded.graph_hash,
                       graph_json = excluded.graph_json
            ''', (flow_id, name, description, now, now, digest, payload))
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not save flow {flow_id}: {e}") from e
        finally:
            conn.close()

        self.logger.info(f"Saved flow {name!r} as {flow_id}")
        return flow_id

    def load_flow(self, flow_id: str) -> Graph:
        conn = self._get_db()
        try:
            row = conn.execute('SELECT graph_json FROM flows WHERE id = ?', (flow_id,)).fetchone()
        finally:
            conn.close()
        if not row:
            raise FlowNotFoundError(flow_id)

        try:
            graph = graph_from_dict(json.loads(row['graph_json']))
        except (ValueError, GraphError) as e:
            raise PersistenceError(f"Stored flow {flow_id} is corrupt: {e}",
                                   details={'flow_id': flow_id}) from e
        self.logger.info(f"Loaded flow {flow_id}")
        return graph

    def list_flows(self) -> List[Dict[str, Any]]:
        """Return all saved flows (metadata only, no graph blob)."""
        conn = self._get_db()
        try:
            rows = conn.execute('''
                SELECT id, name, description, created_at, updated_at, graph_hash
                  FROM flows
                 ORDER BY updated_at DESC
            ''').fetchall()
        finally:
            conn.close()
        return [dict(r) for r in rows]

    def delete_flow(self, flow_id: str) -> bool:
        conn = self._get_db()
        try:
            cursor = conn.execute('DELETE FROM flows WHERE id = ?', (flow_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        finally:
            conn.close()
        if deleted:
            self.logger.info(f"Deleted flow {flow_id}")
        return deleted

    # ─────────────────────────────────────────────────────────────────
    # Settings KV store  (database overrides for .env defaults)
    # ─────────────────────────────────────────────────────────────────
    #
    # Known keys (stored lowercase):
    #   publish_dir    – directory the DirectoryPublisher writes into
    #   publisher_url  – base url of the HTTP publisher
    # ─────────────────────────────────────────────────────────────────

    def get_setting(self, key: str) -> Optional[str]:
        conn = self._get_db()
        try:
            row = conn.execute(
                'SELECT value FROM settings WHERE key = ?', (key.lower(),)
            ).fetchone()
        finally:
            conn.close()
        return row['value'] if row else None

    def set_setting(self, key: str, value: str) -> Dict[str, Any]:
        """Upsert a setting. Returns the saved record."""
        now = time.time()
        conn = self._get_db()
        try:
            conn.execute('''
                INSERT INTO settings (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE
                   SET value = excluded.value,
                       updated_at = excluded.updated_at
            ''', (key.lower(), value, now))
            conn.commit()
        finally:
            conn.close()
        return {'key': key.lower(), 'value': value, 'updated_at': now}

    def delete_setting(self, key: str) -> bool:
        """Remove a setting (reverts to env / default)."""
        conn = self._get_db()
        try:
            cursor = conn.execute('DELETE FROM settings WHERE key = ?', (key.lower(),))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def resolve_setting(self, key: str, env_var: str, default: str) -> str:
        """Three-tier resolution: DB → env → default."""
        db_val = self.get_setting(key)
        if db_val is not None:
            return db_val
        env_val = os.environ.get(env_var, '').strip()
        if env_val:
            return env_val
        return default
