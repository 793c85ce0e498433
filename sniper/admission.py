# sniper/admission.py
import asyncio
import logging
from collections import Counter
from typing import Optional

from .models import AdmissionDecision, Event, RejectReason
from .sequencer import TradeSequencer
from .state import ProcessState


class AdmissionGate:
    """
    Decides, without ever waiting, whether an event may start a sequence.
    A late event is a bad fill waiting to happen, so freshness is a hard limit.
    Nothing is queued: while a sequence runs, every event is dropped.
    """
    def __init__(self, config: dict, state: ProcessState, sequencer: TradeSequencer, logger: logging.Logger):
        self.staleness_ms = config['admission']['staleness_threshold_ms']
        self.state = state
        self.sequencer = sequencer
        self.logger = logger
        self.accepting = True
        self.accepted = 0
        self.rejected: Counter = Counter()
        self.task: Optional[asyncio.Task] = None

    def check(self, event: Event) -> Optional[RejectReason]:
        """Why `event` would be rejected right now, or None if it may run."""
        # 1. Exclusivity
        if self.state.in_flight:
            return RejectReason.IN_FLIGHT

        # 2. Dedup (feed redelivery, repeat notifications)
        if self.state.has_seen(event.asset_id):
            return RejectReason.DUPLICATE

        # 3. Staleness, measured from the receipt time stamped at decode
        if event.age_ms > self.staleness_ms:
            return RejectReason.STALE

        return None

    def submit(self, event: Event) -> AdmissionDecision:
        if not self.accepting:
            return self._reject(event, RejectReason.CLOSED)

        reason = self.check(event)
        if reason is not None:
            return self._reject(event, reason)

        if not self.state.try_acquire():
            return self._reject(event, RejectReason.IN_FLIGHT)
        self.state.mark_seen(event.asset_id)

        self.logger.info(f"🟢 ADMITTED: {event.asset_id} | Age: {event.age_ms:.0f}ms <= {self.staleness_ms}ms "
                         f"| {event.metadata.get('name', 'N/A')} ({event.metadata.get('symbol', 'N/A')})")
        try:
            self.task = asyncio.create_task(self.sequencer.run(event))
        except Exception:
            self.state.release()
            raise
        self.task.add_done_callback(self._on_sequence_done)
        self.accepted += 1
        return AdmissionDecision.ACCEPT

    def _reject(self, event: Event, reason: RejectReason) -> AdmissionDecision:
        self.rejected[reason] += 1
        if reason is RejectReason.STALE:
            self.logger.warning(f"⏱️ STALE: {event.asset_id} | Age: {event.age_ms:.0f}ms > {self.staleness_ms}ms")
        else:
            self.logger.debug(f"Dropped {event.asset_id}: {reason.value}")
        return AdmissionDecision.REJECT

    def _on_sequence_done(self, task: asyncio.Task):
        if task.cancelled():
            self.logger.warning("Sequence task was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error(f"Sequence task ended with an error: {exc!r}")

    def stop(self):
        """Stop admitting. An in-flight sequence is left to finish."""
        self.accepting = False

    async def drain(self):
        """Waits for the in-flight sequence, if any, to reach a terminal state."""
        if self.task is not None and not self.task.done():
            self.logger.info("⏳ Waiting for the in-flight sequence to finish...")
            await asyncio.shield(self.task)
