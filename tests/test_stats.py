"""Tests for sniper.stats and the CSV audit log behind it."""

import csv
import logging

import pytest

from sniper.logger import AsyncAuditLogger, setup_console_logger
from sniper.models import SequenceStatus, TradeSequence
from sniper.stats import CSV_HEADER, StatsRecorder, to_row


def finished(asset_id, status, **durations):
    seq = TradeSequence(asset_id=asset_id, started_at=1700000000.0)
    seq.status = status
    seq.acquire_tx = "tx-1"
    seq.durations.update(durations)
    seq.finished_at = 1700000003.0
    return seq


def read_rows(path):
    with open(path, newline="") as f:
        return list(csv.reader(f))


class TestToRow:
    def test_row_matches_header(self):
        row = to_row(finished("MintA", SequenceStatus.COMPLETED, acquire=12.5, total=3000))
        assert len(row) == len(CSV_HEADER)
        record = dict(zip(CSV_HEADER, row))
        assert record["asset_id"] == "MintA"
        assert record["status"] == "completed"
        assert record["acquire_ms"] == "12.50"
        assert record["partial_dispose_ms"] == ""
        assert record["total_ms"] == "3000.00"
        assert record["finished_at"].startswith("2023-11-14T22:13:23")


class TestStatsRecorder:
    def test_summary_counts_by_status(self, logger):
        stats = StatsRecorder(None, logger)
        stats.record(finished("A", SequenceStatus.COMPLETED))
        stats.record(finished("B", SequenceStatus.DEGRADED))
        stats.record(finished("C", SequenceStatus.ABORTED_AT_ACQUIRE))
        stats.record(finished("D", SequenceStatus.COMPLETED))

        summary = stats.summary()
        assert summary["total"] == 4
        assert summary["completed"] == 2
        assert summary["degraded"] == 1
        assert summary["aborted"] == 1
        assert summary["last"].asset_id == "D"

    def test_recent_is_bounded(self, logger):
        stats = StatsRecorder(None, logger, keep=2)
        for name in "ABC":
            stats.record(finished(name, SequenceStatus.COMPLETED))
        assert [s.asset_id for s in stats.recent] == ["B", "C"]

    @pytest.mark.asyncio
    async def test_flush_without_audit_log_is_noop(self, logger):
        stats = StatsRecorder(None, logger)
        stats.record(finished("A", SequenceStatus.COMPLETED))
        assert await stats.flush() == 0

    @pytest.mark.asyncio
    async def test_flush_appends_rows(self, tmp_path, logger):
        path = tmp_path / "out" / "sequences.csv"
        audit = AsyncAuditLogger(str(path), header=CSV_HEADER)
        await audit.start()
        stats = StatsRecorder(audit, logger)

        stats.record(finished("A", SequenceStatus.COMPLETED))
        stats.record(finished("B", SequenceStatus.DEGRADED))
        assert await stats.flush() == 2
        assert await stats.flush() == 0
        await audit.stop()

        rows = read_rows(path)
        assert rows[0] == CSV_HEADER
        assert [r[1] for r in rows[1:]] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_header_written_once_across_restarts(self, tmp_path, logger):
        path = str(tmp_path / "sequences.csv")
        for name in ("A", "B"):
            audit = AsyncAuditLogger(path, header=CSV_HEADER)
            await audit.start()
            stats = StatsRecorder(audit, logger)
            stats.record(finished(name, SequenceStatus.COMPLETED))
            await stats.flush()
            await audit.stop()

        rows = read_rows(path)
        assert rows.count(CSV_HEADER) == 1
        assert len(rows) == 3

    @pytest.mark.asyncio
    async def test_failed_flush_is_logged_not_raised(self, logger):
        class BrokenAudit:
            filepath = "nowhere.csv"

            async def log_trade(self, row):
                raise OSError("disk full")

        stats = StatsRecorder(BrokenAudit(), logger)
        stats.record(finished("A", SequenceStatus.COMPLETED))
        assert await stats.flush() == 0


def test_console_logger_writes_daily_file(tmp_path):
    logger = setup_console_logger("sniper.tests.file", "DEBUG", log_dir=str(tmp_path))
    logger.info("hello")
    for handler in logger.handlers:
        handler.flush()

    files = list(tmp_path.glob("sniper_*.log"))
    assert len(files) == 1
    assert "| INFO |" in files[0].read_text()
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    assert isinstance(logger, logging.Logger)
