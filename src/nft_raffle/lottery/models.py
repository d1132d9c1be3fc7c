"""Core data models for the raffle engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

BPS_DENOMINATOR = 10_000


class RoundState(IntEnum):
    """Raffle round states.

    CLOSED is never stored: it is reported for a deadline round whose entry
    window has elapsed while it still waits for its draw.
    """

    IDLE = 0
    OPEN = 1
    SETTLING = 2
    CLOSED = 3


class CloseMode(str, Enum):
    """How a round stops accepting entries."""

    CAPACITY = "capacity"  # capacity-th entry settles the round in the same call
    DEADLINE = "deadline"  # entries rejected after closes_at; operator draws


class AccrualPolicy(str, Enum):
    """How a new refund combines with an unclaimed one."""

    ADDITIVE = "additive"
    OVERWRITE = "overwrite"


class WithdrawalPolicy(str, Enum):
    """How the operator's withdrawable amount is computed."""

    PROFIT = "profit"
    FIXED_FRACTION = "fixed_fraction"


@dataclass(frozen=True)
class RoundConfig:
    """Raffle parameters; immutable for the lifetime of a round."""

    entry_fee: int
    capacity: int
    close_mode: CloseMode = CloseMode.CAPACITY
    round_duration: Optional[int] = None
    operator_fee_bps: int = 0
    accrual_policy: AccrualPolicy = AccrualPolicy.ADDITIVE
    withdrawal_policy: WithdrawalPolicy = WithdrawalPolicy.PROFIT
    reopen_after_settle: bool = True
    release_stranded: bool = False

    def __post_init__(self) -> None:
        if self.entry_fee <= 0:
            raise ValueError("entry_fee must be positive")
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")
        if not 0 <= self.operator_fee_bps <= BPS_DENOMINATOR:
            raise ValueError(f"operator_fee_bps must be within 0..{BPS_DENOMINATOR}")
        if self.round_duration is not None and self.round_duration <= 0:
            raise ValueError("round_duration must be positive")
        # Enum coercion so configs built from plain strings behave the same
        object.__setattr__(self, "close_mode", CloseMode(self.close_mode))
        object.__setattr__(self, "accrual_policy", AccrualPolicy(self.accrual_policy))
        object.__setattr__(self, "withdrawal_policy", WithdrawalPolicy(self.withdrawal_policy))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entryFee": self.entry_fee,
            "capacity": self.capacity,
            "closeMode": self.close_mode.value,
            "roundDuration": self.round_duration,
            "operatorFeeBps": self.operator_fee_bps,
            "accrualPolicy": self.accrual_policy.value,
            "withdrawalPolicy": self.withdrawal_policy.value,
            "reopenAfterSettle": self.reopen_after_settle,
            "releaseStranded": self.release_stranded,
        }


@dataclass(frozen=True)
class RoundInfo:
    """Snapshot of the round currently held by the engine."""

    round_number: int
    state: RoundState
    opened_at: Optional[int]
    closes_at: Optional[int]
    settled_at: Optional[int]
    participant_count: int
    capacity: int
    entry_fee: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roundNumber": self.round_number,
            "state": self.state.value,
            "stateName": self.state.name,
            "openedAt": self.opened_at,
            "closesAt": self.closes_at,
            "settledAt": self.settled_at,
            "participantCount": self.participant_count,
            "capacity": self.capacity,
            "entryFee": self.entry_fee,
        }


@dataclass(frozen=True)
class RaffleResult:
    """Permanent record of one settled round."""

    round_number: int
    winner: str
    prize_id: int
    prize_uri: str
    settled_at: int
    participant_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roundNumber": self.round_number,
            "winner": self.winner,
            "prizeId": self.prize_id,
            "prizeUri": self.prize_uri,
            "settledAt": self.settled_at,
            "participantCount": self.participant_count,
        }


@dataclass(frozen=True)
class RefundRecord:
    """Refund owed to one address. ``amount == 0`` means no pending refund."""

    address: str
    amount: int = 0
    accrued_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "amount": self.amount, "accruedAt": self.accrued_at}


@dataclass(frozen=True)
class EntryReceipt:
    """Outcome of a successful entry."""

    round_number: int
    slot: int
    participant: str
    result: Optional[RaffleResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roundNumber": self.round_number,
            "slot": self.slot,
            "participant": self.participant,
            "result": self.result.to_dict() if self.result else None,
        }


@dataclass(frozen=True)
class FinancialSummary:
    """Where the held balance is owed.

    ``stranded`` is value whose refund liability was swept or overwritten but
    which never left the balance.
    """

    balance: int
    outstanding_refunds: int
    stranded: int
    pending_entries: int
    withdrawable: int
    total_refunded: int
    total_withdrawn: int
    withdrawal_policy: WithdrawalPolicy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": self.balance,
            "outstandingRefunds": self.outstanding_refunds,
            "stranded": self.stranded,
            "pendingEntries": self.pending_entries,
            "withdrawable": self.withdrawable,
            "totalRefunded": self.total_refunded,
            "totalWithdrawn": self.total_withdrawn,
            "withdrawalPolicy": self.withdrawal_policy.value,
        }


@dataclass
class Notification:
    """Entry pushed to listeners and the activity feed."""

    event_type: str
    round_number: int
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0

    def get_item_id(self) -> str:
        return f"{self.round_number}-{self.timestamp}-{self.event_type}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.get_item_id(),
            "type": self.event_type,
            "roundNumber": self.round_number,
            "details": dict(self.details),
            "timestamp": self.timestamp,
        }
