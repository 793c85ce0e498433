# sniper/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union
import time


class Side(Enum):
    BUY = "buy"
    SELL = "sell"


class AdmissionDecision(Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


class RejectReason(Enum):
    IN_FLIGHT = "IN_FLIGHT"
    DUPLICATE = "DUPLICATE"
    STALE = "STALE"
    CLOSED = "CLOSED"


class SequenceState(Enum):
    """
    Lifecycle states of a single trade sequence.
    ABORTED is only reachable from ACQUIRING / CONFIRM_ACQUIRE.
    """
    ACQUIRING = "ACQUIRING"
    CONFIRM_ACQUIRE = "CONFIRM_ACQUIRE"
    PARTIAL_DISPOSE_WAIT = "PARTIAL_DISPOSE_WAIT"
    PARTIAL_DISPOSING = "PARTIAL_DISPOSING"
    FULL_DISPOSE_WAIT = "FULL_DISPOSE_WAIT"
    FULL_DISPOSING = "FULL_DISPOSING"
    CONFIRM_FULL_DISPOSE = "CONFIRM_FULL_DISPOSE"
    DONE = "DONE"
    ABORTED = "ABORTED"

    @property
    def is_terminal(self) -> bool:
        return self in (SequenceState.DONE, SequenceState.ABORTED)


class SequenceStatus(Enum):
    COMPLETED = "completed"
    ABORTED_AT_ACQUIRE = "aborted_at_acquire"
    DEGRADED = "degraded"


class TxOutcome(Enum):
    """Answer from a ledger lookup. Only the CONFIRMED_* values are definite."""
    CONFIRMED_SUCCESS = "CONFIRMED_SUCCESS"
    CONFIRMED_FAILURE = "CONFIRMED_FAILURE"
    NOT_FOUND = "NOT_FOUND"
    QUERY_ERROR = "QUERY_ERROR"

    @property
    def is_definite(self) -> bool:
        return self in (TxOutcome.CONFIRMED_SUCCESS, TxOutcome.CONFIRMED_FAILURE)


class ConnectionStatus(Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class Event:
    """
    One asset-creation notification from the feed.
    Timestamps are epoch seconds; received_at is captured when the frame is read.
    """
    asset_id: str
    created_at: float
    received_at: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def age_ms(self) -> float:
        return (self.received_at - self.created_at) * 1000.0


@dataclass(frozen=True, slots=True)
class TradeRequest:
    """
    Opaque order handed to the Execution Gateway.
    amount is SOL when denominated_in_sol, otherwise a holdings percentage like '70%'.
    """
    asset_id: str
    side: Side
    amount: Union[float, str]
    denominated_in_sol: bool
    slippage: float
    priority_fee: float
    pool: str

    def to_payload(self, public_key: str) -> Dict[str, Any]:
        return {
            "publicKey": public_key,
            "action": self.side.value,
            "mint": self.asset_id,
            "amount": self.amount,
            "denominatedInSol": "true" if self.denominated_in_sol else "false",
            "slippage": self.slippage,
            "priorityFee": self.priority_fee,
            "pool": self.pool,
        }


@dataclass(slots=True)
class TradeSequence:
    """
    Unit of work for one admitted asset. Owned by the TradeSequencer until terminal.
    Durations are in milliseconds.
    """
    asset_id: str
    started_at: float = field(default_factory=time.time)
    state: SequenceState = SequenceState.ACQUIRING
    status: Optional[SequenceStatus] = None
    acquire_tx: Optional[str] = None
    partial_dispose_tx: Optional[str] = None
    full_dispose_tx: Optional[str] = None
    remediation_tx: Optional[str] = None
    acquire_polls: int = 0
    final_confirm_polls: int = 0
    durations: Dict[str, float] = field(default_factory=dict)
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not None


@dataclass(slots=True)
class ConnectionState:
    """Process-wide feed connection bookkeeping. attempts resets on every successful connect."""
    ws: Any = None
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    attempts: int = 0
    last_inbound: float = field(default_factory=time.time)

    @property
    def silence(self) -> float:
        """Seconds since the last inbound frame of any kind."""
        return time.time() - self.last_inbound
