# sniper/sequencer.py
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .execution import ExecutionGateway
from .ledger import LedgerClient
from .models import (
    Event, SequenceState, SequenceStatus, Side, TradeRequest, TradeSequence, TxOutcome,
)
from .retry import Backoff, RetryPolicy, retry_until
from .state import ProcessState
from .stats import StatsRecorder


def _ms(seconds: float) -> float:
    return seconds * 1000.0


class TradeSequencer:
    """
    Runs acquire -> partial dispose -> full dispose for one admitted asset.

    The single-flight lock is taken by the Admission Gate before `run` is
    scheduled; `run` releases it exactly once, whatever happens inside.
    No phase error escapes: the worst outcome is a logged, degraded sequence.
    """
    def __init__(self, config: dict, state: ProcessState, gateway: ExecutionGateway,
                 ledger: LedgerClient, logger: logging.Logger, stats: Optional[StatsRecorder] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.state = state
        self.gateway = gateway
        self.ledger = ledger
        self.logger = logger
        self.stats = stats
        self._sleep = sleep
        self.current: Optional[TradeSequence] = None

        self.pool = config['execution']['pool']
        acq = config['acquire']
        part = config['partial_dispose']
        full = config['full_dispose']

        self.acquire_amount = acq['amount_sol']
        self.acquire_slippage = acq['slippage']
        self.acquire_priority_fee = acq['priority_fee']
        self.acquire_settle = acq['settle_delay_ms'] / 1000
        self.acquire_confirm_policy = RetryPolicy(None, Backoff.FIXED, acq['confirm_interval_ms'] / 1000)

        self.partial_fraction = part['fraction_pct']
        self.partial_slippage = part['slippage']
        self.partial_priority_fee = part['priority_fee']
        self.partial_delay = part['delay_ms'] / 1000
        self.partial_submit_policy = RetryPolicy(None, Backoff.FIXED, part['retry_interval_ms'] / 1000)

        self.full_slippage = full['slippage']
        self.full_priority_fee = full['priority_fee']
        self.full_delay = full['delay_ms'] / 1000
        self.full_submit_policy = RetryPolicy(None, Backoff.FIXED, full['retry_interval_ms'] / 1000)
        self.full_settle = full['settle_delay_ms'] / 1000
        self.final_confirm_policy = RetryPolicy(full['confirm_attempts'], Backoff.FIXED,
                                                full['confirm_interval_ms'] / 1000)

    # --- REQUESTS ---

    def acquire_request(self, asset_id: str) -> TradeRequest:
        return TradeRequest(asset_id, Side.BUY, self.acquire_amount, True,
                            self.acquire_slippage, self.acquire_priority_fee, self.pool)

    def partial_dispose_request(self, asset_id: str) -> TradeRequest:
        return TradeRequest(asset_id, Side.SELL, f"{self.partial_fraction:g}%", False,
                            self.partial_slippage, self.partial_priority_fee, self.pool)

    def full_dispose_request(self, asset_id: str) -> TradeRequest:
        return TradeRequest(asset_id, Side.SELL, "100%", False,
                            self.full_slippage, self.full_priority_fee, self.pool)

    # --- STATE MACHINE ---

    def _transition(self, seq: TradeSequence, new_state: SequenceState):
        self.logger.info(f"[{seq.asset_id}] {seq.state.value} -> {new_state.value}")
        seq.state = new_state

    def _finish(self, seq: TradeSequence, final_state: SequenceState, status: SequenceStatus):
        self._transition(seq, final_state)
        seq.status = status

    def _fail_unexpectedly(self, seq: TradeSequence, reason: str):
        if seq.is_terminal:
            return
        # Past CONFIRM_ACQUIRE we hold (or held) a position: never report that as an abort
        acquired = seq.state not in (SequenceState.ACQUIRING, SequenceState.CONFIRM_ACQUIRE)
        if acquired:
            self._finish(seq, SequenceState.DONE, SequenceStatus.DEGRADED)
        else:
            self._finish(seq, SequenceState.ABORTED, SequenceStatus.ABORTED_AT_ACQUIRE)
        self.logger.error(f"🚨 [{seq.asset_id}] sequence interrupted ({reason}) -> {seq.status.value}")

    async def run(self, event: Event) -> TradeSequence:
        """
        Drives one sequence to a terminal state. The caller must hold the
        single-flight lock; it is released here on every exit path.
        """
        seq = TradeSequence(asset_id=event.asset_id)
        self.current = seq
        started = time.perf_counter()

        try:
            self.logger.info(f"🎯 SEQUENCE START: {seq.asset_id} | Event age: {event.age_ms:.0f}ms")

            # 1. ACQUIRE + CONFIRM
            acquire_start = time.perf_counter()
            acquired = await self._acquire(seq)
            acquired_at = time.perf_counter()
            seq.durations['acquire'] = _ms(acquired_at - acquire_start)
            if not acquired:
                return seq

            # 2. PARTIAL DISPOSE (fixed cadence from acquire start)
            await self._partial_dispose(seq, acquire_start)
            partial_done = time.perf_counter()
            seq.durations['partial_dispose'] = _ms(partial_done - acquired_at)

            # 3. FULL DISPOSE + BOUNDED CONFIRM
            await self._full_dispose(seq)
            seq.durations['full_dispose'] = _ms(time.perf_counter() - partial_done)

        except asyncio.CancelledError:
            self._fail_unexpectedly(seq, "cancelled")
            raise
        except Exception as e:
            self.logger.exception(f"Unexpected fault in sequence {seq.asset_id}: {e}")
            self._fail_unexpectedly(seq, type(e).__name__)
        finally:
            seq.durations['total'] = _ms(time.perf_counter() - started)
            seq.finished_at = time.time()
            self.current = None
            self.state.release()
            self._report(seq)
            if self.stats:
                self.stats.record(seq)

        return seq

    def _report(self, seq: TradeSequence):
        status = seq.status.value if seq.status else "unknown"
        if seq.status is SequenceStatus.COMPLETED:
            self.logger.info(f"✅ SEQUENCE DONE: {seq.asset_id} | Total: {seq.durations['total']:.2f}ms")
        elif seq.status is SequenceStatus.DEGRADED:
            self.logger.error(f"⚠️ SEQUENCE DEGRADED: {seq.asset_id} | final dispose unconfirmed | "
                              f"Total: {seq.durations['total']:.2f}ms")
        else:
            self.logger.error(f"❌ SEQUENCE {status.upper()}: {seq.asset_id}")

        for phase in ("acquire", "partial_dispose", "full_dispose"):
            if phase in seq.durations:
                self.logger.info(f"   - {phase}: {seq.durations[phase]:.2f}ms")
        self.logger.info("🔓 Single-flight lock released, watching for new assets")

    # --- PHASES ---

    async def _acquire(self, seq: TradeSequence) -> bool:
        try:
            seq.acquire_tx = await self.gateway.submit(self.acquire_request(seq.asset_id))
        except Exception as e:
            # One shot only: a missed launch is not worth chasing
            self.logger.error(f"❌ ACQUIRE SUBMIT FAILED: {seq.asset_id}: {e}")
            self._finish(seq, SequenceState.ABORTED, SequenceStatus.ABORTED_AT_ACQUIRE)
            return False

        self._transition(seq, SequenceState.CONFIRM_ACQUIRE)
        await self._sleep(self.acquire_settle)

        tx = seq.acquire_tx
        result = await retry_until(
            lambda: self.ledger.get_outcome(tx),
            self.acquire_confirm_policy,
            accept=lambda outcome: outcome.is_definite,
            logger=self.logger,
            label=f"confirm acquire {tx}",
            sleep=self._sleep,
        )
        seq.acquire_polls = result.attempts

        if result.value is not TxOutcome.CONFIRMED_SUCCESS:
            self.logger.error(f"❌ ACQUIRE FAILED ON-CHAIN: {seq.asset_id} -> {tx}")
            self._finish(seq, SequenceState.ABORTED, SequenceStatus.ABORTED_AT_ACQUIRE)
            return False

        self.logger.info(f"✅ ACQUIRE CONFIRMED: {seq.asset_id} -> {tx} ({result.retries} retries)")
        return True

    async def _partial_dispose(self, seq: TradeSequence, acquire_start: float):
        self._transition(seq, SequenceState.PARTIAL_DISPOSE_WAIT)
        remaining = self.partial_delay - (time.perf_counter() - acquire_start)
        if remaining > 0:
            await self._sleep(remaining)

        self._transition(seq, SequenceState.PARTIAL_DISPOSING)
        request = self.partial_dispose_request(seq.asset_id)
        result = await retry_until(
            lambda: self.gateway.submit(request),
            self.partial_submit_policy,
            logger=self.logger,
            label=f"partial dispose {seq.asset_id}",
            sleep=self._sleep,
        )
        # Not confirmed on the ledger: the full dispose follows regardless
        seq.partial_dispose_tx = result.value
        self.logger.info(f"✅ PARTIAL DISPOSE SENT ({request.amount}): {seq.asset_id} -> {result.value}")

    async def _full_dispose(self, seq: TradeSequence):
        self._transition(seq, SequenceState.FULL_DISPOSE_WAIT)
        await self._sleep(self.full_delay)

        self._transition(seq, SequenceState.FULL_DISPOSING)
        request = self.full_dispose_request(seq.asset_id)
        result = await retry_until(
            lambda: self.gateway.submit(request),
            self.full_submit_policy,
            logger=self.logger,
            label=f"full dispose {seq.asset_id}",
            sleep=self._sleep,
        )
        seq.full_dispose_tx = tx = result.value
        self.logger.info(f"✅ FULL DISPOSE SENT: {seq.asset_id} -> {tx}")

        self._transition(seq, SequenceState.CONFIRM_FULL_DISPOSE)
        await self._sleep(self.full_settle)

        confirm = await retry_until(
            lambda: self.ledger.get_outcome(tx),
            self.final_confirm_policy,
            accept=lambda outcome: outcome.is_definite,
            logger=self.logger,
            label=f"confirm full dispose {tx}",
            sleep=self._sleep,
        )
        seq.final_confirm_polls = confirm.attempts

        if confirm.value is TxOutcome.CONFIRMED_SUCCESS:
            self.logger.info(f"✅ FULL DISPOSE CONFIRMED: {seq.asset_id} -> {tx}")
            self._finish(seq, SequenceState.DONE, SequenceStatus.COMPLETED)
            return

        # Remediate once, unpolled, then move on
        self.logger.error(f"🚨 FULL DISPOSE UNCONFIRMED after {confirm.attempts} poll(s) "
                          f"({confirm.value.value if confirm.value else confirm.last_error}). Re-sending once.")
        try:
            seq.remediation_tx = await self.gateway.submit(request)
            self.logger.warning(f"🏳️ REMEDIATION SENT: {seq.asset_id} -> {seq.remediation_tx}")
        except Exception as e:
            self.logger.critical(f"💀 REMEDIATION FAILED: {seq.asset_id}: {e}")
        self._finish(seq, SequenceState.DONE, SequenceStatus.DEGRADED)
