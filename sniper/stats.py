# sniper/stats.py
import asyncio
import logging
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from .logger import AsyncAuditLogger
from .models import SequenceStatus, TradeSequence

PHASES = ("acquire", "partial_dispose", "full_dispose", "total")

CSV_HEADER = [
    "finished_at", "asset_id", "status",
    "acquire_tx", "partial_dispose_tx", "full_dispose_tx", "remediation_tx",
    *[f"{p}_ms" for p in PHASES],
    "acquire_polls", "final_confirm_polls",
]


def to_row(seq: TradeSequence) -> List[Any]:
    finished = datetime.fromtimestamp(seq.finished_at or seq.started_at, tz=timezone.utc)
    return [
        finished.isoformat(),
        seq.asset_id,
        seq.status.value if seq.status else "",
        seq.acquire_tx or "",
        seq.partial_dispose_tx or "",
        seq.full_dispose_tx or "",
        seq.remediation_tx or "",
        *[f"{seq.durations[p]:.2f}" if p in seq.durations else "" for p in PHASES],
        seq.acquire_polls,
        seq.final_confirm_polls,
    ]


class StatsRecorder:
    """
    Archive of finished sequences. Rows reach disk on a timer, append-only
    and best-effort: a failed flush is logged and the bot carries on.
    """
    def __init__(self, audit_log: Optional[AsyncAuditLogger], logger: logging.Logger,
                 interval: float = 60.0, keep: int = 20):
        self.audit_log = audit_log
        self.logger = logger
        self.interval = interval
        self.recent: Deque[TradeSequence] = deque(maxlen=keep)
        self.counts: Counter = Counter()
        self._pending: List[TradeSequence] = []

    def record(self, seq: TradeSequence):
        self.recent.append(seq)
        if seq.status:
            self.counts[seq.status] += 1
        self._pending.append(seq)

    async def flush(self) -> int:
        if not self._pending or self.audit_log is None:
            return 0
        batch, self._pending = self._pending, []
        try:
            for seq in batch:
                await self.audit_log.log_trade(to_row(seq))
        except Exception as e:
            self.logger.error(f"Saving sequence stats failed: {e}")
            return 0
        self.logger.debug(f"Sequence stats queued for {self.audit_log.filepath} ({len(batch)} rows)")
        return len(batch)

    async def run_loop(self):
        while True:
            await asyncio.sleep(self.interval)
            await self.flush()

    def summary(self) -> Dict[str, Any]:
        return {
            "total": sum(self.counts.values()),
            "completed": self.counts[SequenceStatus.COMPLETED],
            "degraded": self.counts[SequenceStatus.DEGRADED],
            "aborted": self.counts[SequenceStatus.ABORTED_AT_ACQUIRE],
            "last": self.recent[-1] if self.recent else None,
        }
