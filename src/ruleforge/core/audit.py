"""Append-only audit logs for distillation decisions and repair outcomes.

Every rejected pattern and every repair attempt is recorded to a local,
pipe-delimited log so operators can review what the engine did and why.

Log locations::

    .ruleforge/distillation.log
    .ruleforge/repair.log

Format (one line per record)::

    timestamp | <field> | <field> | ...
"""

from __future__ import annotations

import fcntl
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO


class AuditLog:
    """Pipe-delimited append-only log.

    Thread-safe: writes are serialised through a lock *and* an ``fcntl``
    advisory lock so that several processes sharing one state directory
    will not interleave lines.
    """

    filename: str = "audit.log"
    title: str = "RuleForge Audit Log"
    fields: tuple[str, ...] = ()

    def __init__(self, state_dir: Path) -> None:
        state_dir.mkdir(parents=True, exist_ok=True)
        self._path = state_dir / self.filename
        self._lock = threading.Lock()
        self._ensure_header()

    @property
    def header(self) -> str:
        return (
            f"# {self.title}\n"
            f"# Format: {' | '.join(('timestamp',) + self.fields)}\n"
            "#\n"
        )

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, **values: object) -> None:
        ts = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        parts = [ts] + [_sanitise(str(values.get(name, ""))) for name in self.fields]
        self._append(" | ".join(parts) + "\n")

    def read_entries(self, last_n: int = 50) -> list[dict[str, str]]:
        """Parse the last *n* entries into dicts keyed by field name."""
        with self._lock:
            if not self._path.exists():
                return []
            text = self._path.read_text(encoding="utf-8")

        lines = [ln for ln in text.splitlines() if ln.strip() and not ln.startswith("#")]
        entries: list[dict[str, str]] = []
        names = ("timestamp",) + self.fields
        for ln in lines[-last_n:]:
            parts = [p.strip() for p in ln.split("|")]
            if len(parts) < len(names):
                continue
            entries.append(dict(zip(names, parts)))
        return entries

    def clear(self) -> None:
        with self._lock:
            self._path.write_text(self.header, encoding="utf-8")

    def _ensure_header(self) -> None:
        if not self._path.exists():
            self._path.write_text(self.header, encoding="utf-8")

    def _append(self, text: str) -> None:
        with self._lock:
            fd: TextIO | None = None
            try:
                fd = open(self._path, "a", encoding="utf-8")
                try:
                    fcntl.flock(fd.fileno(), fcntl.LOCK_EX)
                except OSError:
                    pass  # filesystem without flock support; the thread lock still applies
                fd.write(text)
                fd.flush()
            finally:
                if fd is not None:
                    try:
                        fcntl.flock(fd.fileno(), fcntl.LOCK_UN)
                    except OSError:
                        pass
                    fd.close()


class DistillationLog(AuditLog):
    filename = "distillation.log"
    title = "RuleForge Distillation Log"
    fields = ("pattern", "outcome", "result", "rule", "reason")

    def record(self, *, pattern: str, outcome: str, result: str, rule: str = "", reason: str = "") -> None:
        """Record one distillation decision.

        ``result`` is ``accepted``, ``merged`` or ``rejected``; ``reason`` is
        the stable reason code for rejections.
        """
        self._write(pattern=pattern, outcome=outcome, result=result, rule=rule, reason=reason)


class RepairLog(AuditLog):
    filename = "repair.log"
    title = "RuleForge Repair Log"
    fields = ("target", "rule", "action", "status", "reason", "duration_ms")

    def record(
        self,
        *,
        target: str,
        rule: str,
        action: str,
        status: str,
        reason: str = "",
        duration_ms: float = 0.0,
    ) -> None:
        self._write(
            target=target,
            rule=rule,
            action=action,
            status=status,
            reason=reason,
            duration_ms=f"{duration_ms:.1f}",
        )


def _sanitise(value: str) -> str:
    """Replace pipes and newlines so they don't break the log format."""
    return value.replace("|", "/").replace("\n", " ").replace("\r", "")
