"""Diagnostic report history per target."""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ruleforge.core.errors import StoreUnavailable
from ruleforge.core.models import DiagnosticReport
from ruleforge.pipeline.report import report_from_dict, report_to_dict

REGRESSION_DELTA = 5


@dataclass
class HistoryEntry:
    """A single pass result for one target."""

    target_id: str
    recorded_at: datetime
    health_score: int
    state: str
    findings: int = 0
    decisions: int = 0
    outcomes: int = 0


@dataclass
class RegressionAlert:
    """Alert for a significant health score drop."""

    target_id: str
    from_score: int
    to_score: int
    delta: int
    date: datetime


class ReportHistory:
    """Stores and queries diagnostic reports over time."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._ensure_table()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=10)

    def _ensure_table(self) -> None:
        """Create history table if it doesn't exist."""
        try:
            conn = self._connect()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS report_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        target_id TEXT NOT NULL,
                        recorded_at TIMESTAMP NOT NULL,
                        health_score INTEGER NOT NULL,
                        state TEXT NOT NULL,
                        findings INTEGER DEFAULT 0,
                        decisions INTEGER DEFAULT 0,
                        outcomes INTEGER DEFAULT 0,
                        report_json TEXT NOT NULL
                    )
                """)
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_history_target ON report_history(target_id, recorded_at)"
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open report history {self.db_path}: {exc}") from exc

    def record(self, report: DiagnosticReport) -> None:
        """Append a report to the history."""
        with self._lock:
            try:
                conn = self._connect()
                try:
                    conn.execute(
                        """INSERT INTO report_history
                           (target_id, recorded_at, health_score, state, findings, decisions, outcomes, report_json)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            report.target_id,
                            report.timestamp.astimezone(timezone.utc).isoformat(),
                            report.health_score,
                            report.state.value,
                            len(report.findings),
                            len(report.decisions),
                            len(report.outcomes),
                            json.dumps(report_to_dict(report), default=str),
                        ),
                    )
                    conn.commit()
                finally:
                    conn.close()
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"Cannot record report for {report.target_id}: {exc}") from exc

    def latest(self, target_id: str) -> DiagnosticReport | None:
        """Most recent report for a target."""
        conn = self._connect()
        try:
            row = conn.execute(
                """SELECT report_json FROM report_history
                   WHERE target_id = ?
                   ORDER BY recorded_at DESC, id DESC LIMIT 1""",
                (target_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return report_from_dict(json.loads(row[0]))

    def targets(self) -> list[str]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT DISTINCT target_id FROM report_history ORDER BY target_id"
            ).fetchall()
        finally:
            conn.close()
        return [r[0] for r in rows]

    def trend(self, target_id: str, days: int = 90) -> list[HistoryEntry]:
        """Score history for a target over the last N days, oldest first."""
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        conn = self._connect()
        try:
            rows = conn.execute(
                """SELECT target_id, recorded_at, health_score, state,
                          findings, decisions, outcomes
                   FROM report_history
                   WHERE target_id = ? AND recorded_at >= ?
                   ORDER BY recorded_at ASC, id ASC""",
                (target_id, since),
            ).fetchall()
        finally:
            conn.close()

        return [
            HistoryEntry(
                target_id=r[0],
                recorded_at=datetime.fromisoformat(r[1]),
                health_score=r[2],
                state=r[3],
                findings=r[4] or 0,
                decisions=r[5] or 0,
                outcomes=r[6] or 0,
            )
            for r in rows
        ]

    def regression_alerts(self, target_id: str, days: int = 30) -> list[RegressionAlert]:
        """Detect significant score drops (>5 points between consecutive passes)."""
        entries = [e for e in self.trend(target_id, days=days) if e.state == "complete"]
        alerts = []

        for i in range(1, len(entries)):
            delta = entries[i].health_score - entries[i - 1].health_score
            if delta < -REGRESSION_DELTA:
                alerts.append(RegressionAlert(
                    target_id=target_id,
                    from_score=entries[i - 1].health_score,
                    to_score=entries[i].health_score,
                    delta=delta,
                    date=entries[i].recorded_at,
                ))

        return alerts
