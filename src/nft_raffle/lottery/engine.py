"""
Raffle Engine - round lifecycle, refund custody and treasury settlement

The engine is the single owner of all raffle state. Every mutating call runs
under one re-entrant lock and is all-or-nothing: state is snapshotted on entry
and restored if anything raises. Notifications raised during a call are only
published once the outermost call has committed. Side effects already made by
collaborators (a minted prize, a sent payout) are not part of the snapshot.

Value leaves the engine only through ``ValueTransfer.send`` and always after
the ledger has been updated, so a recipient that calls back into the engine
sees its refund already cleared.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, Iterator, List, Optional

from nft_raffle.chain.oracle import Clock, RandomnessSource, SystemClock, SystemRandomness, select_winner_index
from nft_raffle.chain.prize import PrizeIssuer
from nft_raffle.chain.transfer import ValueTransfer
from nft_raffle.lottery import notifications as events
from nft_raffle.lottery.access import AccessGate, AccessPolicy
from nft_raffle.lottery.errors import (
    DeadlinePassed,
    InsufficientBalance,
    InvalidIndex,
    NoParticipants,
    NoRefund,
    RaffleActive,
    RaffleClosed,
    RaffleError,
    RaffleFull,
    WrongFee,
)
from nft_raffle.lottery.ledger import FundLedger, LedgerState
from nft_raffle.lottery.models import (
    CloseMode,
    EntryReceipt,
    FinancialSummary,
    Notification,
    RaffleResult,
    RefundRecord,
    RoundConfig,
    RoundInfo,
    RoundState,
)
from nft_raffle.lottery.notifications import NotificationBus
from nft_raffle.lottery.treasury import Treasury
from nft_raffle.utils.common import normalize_address
from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class _Snapshot:
    config: RoundConfig
    state: RoundState
    round_number: int
    participants: List[str]
    result_count: int
    opened_at: Optional[int]
    closes_at: Optional[int]
    settled_at: Optional[int]
    balance: int
    total_refunded: int
    total_withdrawn: int
    ledger: LedgerState
    paused: bool


class RaffleEngine:
    """Aggregate owning one raffle's rounds, entries, results and funds."""

    def __init__(
        self,
        config: RoundConfig,
        access: AccessPolicy,
        prize_issuer: PrizeIssuer,
        transfer: ValueTransfer,
        *,
        clock: Optional[Clock] = None,
        randomness: Optional[RandomnessSource] = None,
        bus: Optional[NotificationBus] = None,
    ) -> None:
        self.config = config
        self.gate = AccessGate(access)
        self.prize_issuer = prize_issuer
        self.transfer = transfer
        self.clock = clock or SystemClock()
        self.randomness = randomness or SystemRandomness()
        self.bus = bus or NotificationBus()

        self.ledger = FundLedger(config.accrual_policy)
        self.treasury = Treasury(self.ledger)

        self._lock = RLock()
        self._depth = 0
        self._pending: List[Notification] = []

        self._state = RoundState.IDLE
        self._round_number = 0
        self._participants: List[str] = []
        self._results: List[RaffleResult] = []
        self._opened_at: Optional[int] = None
        self._closes_at: Optional[int] = None
        self._settled_at: Optional[int] = None
        self._balance = 0
        self._total_refunded = 0
        self._total_withdrawn = 0

        logger.info(
            "Raffle engine initialized: fee=%s capacity=%s mode=%s accrual=%s withdrawal=%s",
            config.entry_fee,
            config.capacity,
            config.close_mode.value,
            config.accrual_policy.value,
            config.withdrawal_policy.value,
        )

    # =============== TRANSACTION HANDLING ===============

    def _snapshot(self) -> _Snapshot:
        return _Snapshot(
            config=self.config,
            state=self._state,
            round_number=self._round_number,
            participants=list(self._participants),
            result_count=len(self._results),
            opened_at=self._opened_at,
            closes_at=self._closes_at,
            settled_at=self._settled_at,
            balance=self._balance,
            total_refunded=self._total_refunded,
            total_withdrawn=self._total_withdrawn,
            ledger=self.ledger._get_state(),
            paused=self.gate._get_state(),
        )

    def _restore(self, snap: _Snapshot) -> None:
        self.config = snap.config
        self.ledger.policy = snap.config.accrual_policy
        self._state = snap.state
        self._round_number = snap.round_number
        self._participants = snap.participants
        del self._results[snap.result_count:]
        self._opened_at = snap.opened_at
        self._closes_at = snap.closes_at
        self._settled_at = snap.settled_at
        self._balance = snap.balance
        self._total_refunded = snap.total_refunded
        self._total_withdrawn = snap.total_withdrawn
        self.ledger._set_state(snap.ledger)
        self.gate._set_state(snap.paused)

    @contextmanager
    def _transaction(self, action: str) -> Iterator[None]:
        published: List[Notification] = []
        with self._lock:
            snapshot = self._snapshot()
            mark = len(self._pending)
            self._depth += 1
            try:
                yield
            except RaffleError as exc:
                self._restore(snapshot)
                del self._pending[mark:]
                logger.info("%s rejected: %s (%s)", action, exc.code, exc.message)
                raise
            except BaseException:
                self._restore(snapshot)
                del self._pending[mark:]
                logger.exception("%s failed; state rolled back", action)
                raise
            finally:
                self._depth -= 1
            if self._depth == 0:
                published, self._pending = self._pending, []
        for notification in published:
            self.bus.publish(notification)

    def _notify(self, event_type: str, now: int, details: Dict[str, Any]) -> None:
        self._pending.append(
            Notification(
                event_type=event_type,
                round_number=self._round_number,
                details=details,
                timestamp=now,
            )
        )

    # =============== ROUND LIFECYCLE ===============

    def start_round(self, caller: str, duration: Optional[int] = None) -> RoundInfo:
        """Open the entry window. Operator only.

        An open deadline round whose window elapsed without a single entry can
        be re-armed this way; any other open round must be drawn first.
        """
        caller = normalize_address(caller)
        with self._transaction("start_round"):
            self.gate.check(caller, operator_only=True)
            now = self.clock.now()
            if self._state == RoundState.OPEN and not (self._participants == [] and self._deadline_elapsed(now)):
                raise RaffleActive("A round is already open")
            self._open_round(now, duration, required=True)
        return self.round_info()

    def enter(self, caller: str, value: int) -> EntryReceipt:
        """Buy one slot in the open round for exactly the entry fee.

        In capacity mode the entry that fills the last slot also settles the
        round; the receipt then carries the result.
        """
        caller = normalize_address(caller)
        with self._transaction("enter"):
            self.gate.check(caller)
            if self._state != RoundState.OPEN:
                raise RaffleClosed("No round is open")
            if value != self.config.entry_fee:
                raise WrongFee(f"Entry fee is {self.config.entry_fee}, got {value}")
            now = self.clock.now()
            if self._deadline_elapsed(now):
                raise DeadlinePassed(f"Round closed for entries at {self._closes_at}")
            if len(self._participants) >= self.config.capacity:
                raise RaffleFull(f"All {self.config.capacity} slots are taken")

            draw_round = self._round_number + 1
            self._participants.append(caller)
            self._balance += value
            slot = len(self._participants) - 1
            self._notify(events.RAFFLE_ENTERED, now, {
                "participant": caller,
                "slot": slot,
                "participantCount": len(self._participants),
                "value": value,
            })

            result = None
            if self.config.close_mode is CloseMode.CAPACITY and len(self._participants) == self.config.capacity:
                result = self._settle(now)
        return EntryReceipt(round_number=draw_round, slot=slot, participant=caller, result=result)

    def close_and_draw(self, caller: str) -> RaffleResult:
        """Settle the open round on demand. Operator only."""
        caller = normalize_address(caller)
        with self._transaction("close_and_draw"):
            self.gate.check(caller, operator_only=True)
            if self._state != RoundState.OPEN:
                raise RaffleClosed("No round is open")
            result = self._settle(self.clock.now())
        return result

    def _deadline_elapsed(self, now: int) -> bool:
        return self._closes_at is not None and now > self._closes_at

    def _open_round(self, now: int, duration: Optional[int], *, required: bool) -> bool:
        if duration is None:
            duration = self.config.round_duration
        if duration is not None and duration <= 0:
            raise ValueError("duration must be positive")
        if self.config.close_mode is CloseMode.DEADLINE and duration is None:
            if required:
                raise ValueError("Deadline rounds need a duration")
            return False

        self._participants = []
        self._state = RoundState.OPEN
        self._opened_at = now
        self._closes_at = now + duration if duration is not None else None
        self._notify(events.ROUND_STARTED, now, {"openedAt": now, "closesAt": self._closes_at})
        logger.info("Round window opened at %s (closes at %s)", now, self._closes_at)
        return True

    def _settle(self, now: int) -> RaffleResult:
        if not self._participants:
            raise NoParticipants("Cannot draw a round without participants")

        self._state = RoundState.SETTLING
        participants = self._participants
        seed = self.randomness.seed()
        index = select_winner_index(now, seed, len(participants))
        winner = participants[index]

        self._round_number += 1
        prize_id = self._round_number
        self.prize_issuer.mint(winner, prize_id)
        prize_uri = self.prize_issuer.uri_of(prize_id)

        result = RaffleResult(
            round_number=self._round_number,
            winner=winner,
            prize_id=prize_id,
            prize_uri=prize_uri,
            settled_at=now,
            participant_count=len(participants),
        )
        self._results.append(result)

        refunds = 0
        for address in participants:
            if address != winner:
                self.ledger.accrue(address, self.config.entry_fee, now)
                refunds += 1

        self._participants = []
        self._settled_at = now
        self._notify(events.WINNER_SELECTED, now, {
            "winner": winner,
            "prizeId": prize_id,
            "prizeUri": prize_uri,
            "winnerIndex": index,
            "seed": hex(seed),
            "timestamp": now,
            "participantCount": len(participants),
            "refundsAccrued": refunds,
        })
        logger.info(
            "Round %s settled: winner=%s index=%s/%s refunds=%s",
            self._round_number, winner, index, len(participants), refunds,
        )

        reopened = self.config.reopen_after_settle and self._open_round(now, None, required=False)
        if not reopened:
            self._go_idle()
        return result

    def _go_idle(self) -> None:
        self._state = RoundState.IDLE
        self._opened_at = None
        self._closes_at = None

    # =============== FUND LEDGER ===============

    def claim_refund(self, caller: str) -> int:
        """Pay out everything owed to the caller."""
        caller = normalize_address(caller)
        with self._transaction("claim_refund"):
            self.gate.check(caller)
            amount = self.ledger.zero(caller)
            if amount == 0:
                raise NoRefund(f"No refund owed to {caller}")
            if amount > self._balance:
                raise InsufficientBalance(f"Balance {self._balance} cannot cover refund of {amount}")
            self._balance -= amount
            self._total_refunded += amount
            self._notify(events.REFUND_ISSUED, self.clock.now(), {"recipient": caller, "amount": amount})
            self.transfer.send(caller, amount)
        return amount

    def sweep_stale(self, caller: str, max_age_seconds: int) -> List[RefundRecord]:
        """Cancel refunds left unclaimed for longer than ``max_age_seconds``.

        The cancelled amounts stay in the balance and show up as ``stranded``
        in the financial summary; nothing is paid to anyone.
        """
        caller = normalize_address(caller)
        with self._transaction("sweep_stale"):
            self.gate.check(caller, operator_only=True)
            now = self.clock.now()
            swept = self.ledger.sweep(now, max_age_seconds)
            if swept:
                self._notify(events.STALE_REFUNDS_SWEPT, now, {
                    "count": len(swept),
                    "amount": sum(r.amount for r in swept),
                    "maxAgeSeconds": max_age_seconds,
                    "addresses": [r.address for r in swept],
                })
        return swept

    # =============== TREASURY ===============

    def withdraw(self, caller: str) -> int:
        """Send the operator's withdrawable amount to the calling operator."""
        caller = normalize_address(caller)
        with self._transaction("withdraw"):
            self.gate.check(caller, operator_only=True)
            amount = self.treasury.amount_to_withdraw(
                self.config, self._balance, pending_entries=len(self._participants)
            )
            self._balance -= amount
            self._total_withdrawn += amount
            self._notify(events.TREASURY_WITHDRAWN, self.clock.now(), {
                "recipient": caller,
                "amount": amount,
                "policy": self.config.withdrawal_policy.value,
            })
            self.transfer.send(caller, amount)
        return amount

    # =============== ADMINISTRATION ===============

    def pause(self, caller: str) -> None:
        self._set_paused(caller, True)

    def unpause(self, caller: str) -> None:
        self._set_paused(caller, False)

    def _set_paused(self, caller: str, paused: bool) -> None:
        caller = normalize_address(caller)
        with self._transaction("pause" if paused else "unpause"):
            if self.gate.set_paused(caller, paused):
                self._notify(events.PAUSED if paused else events.UNPAUSED, self.clock.now(), {"operator": caller})

    def configure(self, caller: str, config: RoundConfig) -> None:
        """Replace the raffle parameters while no entries are pending.

        An open round without entries is re-armed under the new parameters; if
        they cannot open a window (deadline mode without a duration) the engine
        goes IDLE instead.
        """
        caller = normalize_address(caller)
        with self._transaction("configure"):
            self.gate.check(caller, operator_only=True)
            if self._participants:
                raise RaffleActive("Configuration cannot change while entries are pending")
            now = self.clock.now()
            self.config = config
            self.ledger.policy = config.accrual_policy
            self._notify(events.CONFIG_UPDATED, now, config.to_dict())
            if self._state == RoundState.OPEN and not self._open_round(now, None, required=False):
                self._go_idle()

    # =============== READ-ONLY VIEWS ===============

    @property
    def state(self) -> RoundState:
        with self._lock:
            if self._state == RoundState.OPEN and self._deadline_elapsed(self.clock.now()):
                return RoundState.CLOSED
            return self._state

    @property
    def round_number(self) -> int:
        return self._round_number

    @property
    def balance(self) -> int:
        return self._balance

    @property
    def paused(self) -> bool:
        return self.gate.paused

    @property
    def operator(self) -> Optional[str]:
        return getattr(self.gate.policy, "operator", None)

    def is_operator(self, address: str) -> bool:
        return self.gate.policy.is_operator(normalize_address(address))

    def participants(self) -> List[str]:
        with self._lock:
            return list(self._participants)

    @property
    def participant_count(self) -> int:
        return len(self._participants)

    def results(self) -> List[RaffleResult]:
        with self._lock:
            return list(self._results)

    def result(self, index: int) -> RaffleResult:
        with self._lock:
            if not 0 <= index < len(self._results):
                raise InvalidIndex(f"No result at index {index}")
            return self._results[index]

    def latest_result(self) -> Optional[RaffleResult]:
        with self._lock:
            return self._results[-1] if self._results else None

    def refund_of(self, address: str) -> RefundRecord:
        with self._lock:
            return self.ledger.refund_of(normalize_address(address))

    def round_info(self) -> RoundInfo:
        with self._lock:
            return RoundInfo(
                round_number=self._round_number,
                state=self.state,
                opened_at=self._opened_at,
                closes_at=self._closes_at,
                settled_at=self._settled_at,
                participant_count=len(self._participants),
                capacity=self.config.capacity,
                entry_fee=self.config.entry_fee,
            )

    def financial_summary(self) -> FinancialSummary:
        with self._lock:
            pending = len(self._participants) * self.config.entry_fee
            return FinancialSummary(
                balance=self._balance,
                outstanding_refunds=self.ledger.total_owed,
                stranded=self.ledger.stranded,
                pending_entries=pending,
                withdrawable=self.treasury.withdrawable(self.config, self._balance, pending),
                total_refunded=self._total_refunded,
                total_withdrawn=self._total_withdrawn,
                withdrawal_policy=self.config.withdrawal_policy,
            )
