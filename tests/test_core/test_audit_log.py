"""Tests for the distillation and repair audit logs."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from ruleforge.core.audit import DistillationLog, RepairLog


@pytest.fixture()
def repair_log(tmp_path: Path) -> RepairLog:
    return RepairLog(tmp_path / ".ruleforge")


class TestAuditLogInit:
    def test_creates_log_file_with_header(self, repair_log: RepairLog):
        assert repair_log.path.exists()
        content = repair_log.path.read_text(encoding="utf-8")
        assert content.startswith("# RuleForge Repair Log")
        assert "timestamp | target | rule | action | status | reason | duration_ms" in content

    def test_existing_log_is_kept(self, tmp_path: Path):
        first = DistillationLog(tmp_path)
        first.record(pattern="p-1", outcome="outdated-deps", result="accepted", rule="r")
        assert len(DistillationLog(tmp_path).read_entries()) == 1


class TestRecording:
    def test_repair_entry_fields(self, repair_log: RepairLog):
        repair_log.record(
            target="github:acme/api",
            rule="needs-license",
            action="inject-file",
            status="applied",
            duration_ms=12.345,
        )
        [entry] = repair_log.read_entries()
        assert entry["target"] == "github:acme/api"
        assert entry["status"] == "applied"
        assert entry["reason"] == ""
        assert entry["duration_ms"] == "12.3"

    def test_pipes_and_newlines_are_sanitised(self, repair_log: RepairLog):
        repair_log.record(
            target="github:acme/api",
            rule="r",
            action="open-proposal",
            status="failed",
            reason="bad | thing\nhappened",
        )
        [entry] = repair_log.read_entries()
        assert entry["reason"] == "bad / thing happened"

    def test_last_n(self, repair_log: RepairLog):
        for i in range(5):
            repair_log.record(target=f"t{i}", rule="r", action="a", status="applied")
        assert [e["target"] for e in repair_log.read_entries(last_n=2)] == ["t3", "t4"]

    def test_clear(self, repair_log: RepairLog):
        repair_log.record(target="t", rule="r", action="a", status="applied")
        repair_log.clear()
        assert repair_log.read_entries() == []

    def test_concurrent_writers_do_not_interleave(self, repair_log: RepairLog):
        def write(n: int) -> None:
            for i in range(20):
                repair_log.record(target=f"w{n}", rule=f"r{i}", action="a", status="applied")

        threads = [threading.Thread(target=write, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entries = repair_log.read_entries(last_n=1000)
        assert len(entries) == 160
        assert all(e["status"] == "applied" for e in entries)
