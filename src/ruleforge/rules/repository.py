"""SQLite persistence for the rule store.

The database lives at ``{project_root}/.ruleforge/rules.db``. The in-memory
:class:`~ruleforge.rules.store.RuleStore` writes through to it so that rules
and their statistics survive between runs. Counters are kept in their own
columns so that outcome recording does not rewrite the whole payload.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from ruleforge.core.errors import StoreUnavailable
from ruleforge.core.models import Rule
from ruleforge.rules.serializer import rule_from_dict, rule_to_dict

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS rules (
    id            TEXT PRIMARY KEY,
    category      TEXT NOT NULL,
    enabled       INTEGER NOT NULL DEFAULT 1,
    created_at    TEXT NOT NULL,
    applied_count INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    last_applied_at TEXT,
    payload       TEXT NOT NULL,
    CHECK (success_count <= applied_count)
);

CREATE INDEX IF NOT EXISTS idx_rules_category ON rules(category);
"""


class RuleRepository:
    """Thread-safe SQLite store for compiled rules.

    Usage::

        repo = RuleRepository(state_dir / "rules.db")
        store = RuleStore(repository=repo)
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            with self._connect() as conn:
                conn.executescript(_SCHEMA_SQL)
                columns = {row["name"] for row in conn.execute("PRAGMA table_info(rules)")}
                if "last_applied_at" not in columns:
                    conn.execute("ALTER TABLE rules ADD COLUMN last_applied_at TEXT")
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open rule database {db_path}: {exc}") from exc

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        return conn

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, rule: Rule) -> None:
        """Insert or replace the full rule definition."""
        payload = json.dumps(rule_to_dict(rule), sort_keys=True)
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO rules "
                    "(id, category, enabled, created_at, applied_count, success_count, "
                    "last_applied_at, payload) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        rule.id,
                        rule.category.value,
                        1 if rule.enabled else 0,
                        rule.created_at.isoformat(),
                        rule.applied_count,
                        rule.success_count,
                        rule.last_applied_at.isoformat() if rule.last_applied_at else None,
                        payload,
                    ),
                )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot save rule {rule.id}: {exc}") from exc

    def update_stats(
        self,
        rule_id: str,
        applied_count: int,
        success_count: int,
        last_applied_at: datetime | None = None,
    ) -> None:
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    "UPDATE rules SET applied_count = ?, success_count = ?, "
                    "last_applied_at = COALESCE(?, last_applied_at) WHERE id = ?",
                    (
                        applied_count,
                        success_count,
                        last_applied_at.isoformat() if last_applied_at else None,
                        rule_id,
                    ),
                )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot update statistics of {rule_id}: {exc}") from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_all(self) -> list[Rule]:
        """Return every stored rule, enabled or not, oldest first."""
        try:
            with self._lock, self._connect() as conn:
                rows = conn.execute(
                    "SELECT payload, applied_count, success_count, last_applied_at, enabled FROM rules "
                    "ORDER BY created_at ASC, id ASC"
                ).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot read rule database: {exc}") from exc

        rules: list[Rule] = []
        for row in rows:
            rule = rule_from_dict(json.loads(row["payload"]))
            # Counter columns are authoritative over the payload snapshot.
            rule.applied_count = row["applied_count"]
            rule.success_count = row["success_count"]
            rule.enabled = bool(row["enabled"])
            if row["last_applied_at"]:
                rule.last_applied_at = datetime.fromisoformat(row["last_applied_at"])
            rules.append(rule)
        logger.debug("Loaded %d rule(s) from %s", len(rules), self._db_path)
        return rules

    def count(self) -> int:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS cnt FROM rules").fetchone()
        return row["cnt"] if row else 0
