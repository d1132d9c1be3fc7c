"""Refund ledger: what the raffle owes to each non-winning participant."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List

from nft_raffle.lottery.models import AccrualPolicy, RefundRecord
from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class LedgerState:
    records: Dict[str, RefundRecord]
    total_owed: int
    stranded: int


class FundLedger:
    """Per-address owed amounts plus the running total of all of them.

    The ledger only does bookkeeping; moving value is the engine's job.
    Records are never removed: a zero amount means nothing is owed.

    Under ``AccrualPolicy.OVERWRITE`` a new refund replaces an unclaimed one,
    and the replaced amount is counted as stranded, since it stays in the
    balance with nobody able to claim it.
    """

    def __init__(self, policy: AccrualPolicy = AccrualPolicy.ADDITIVE) -> None:
        self.policy = AccrualPolicy(policy)
        self._records: Dict[str, RefundRecord] = {}
        self._total_owed = 0
        self._stranded = 0

    @property
    def total_owed(self) -> int:
        return self._total_owed

    @property
    def stranded(self) -> int:
        return self._stranded

    def refund_of(self, address: str) -> RefundRecord:
        return self._records.get(address) or RefundRecord(address=address)

    def owed(self, address: str) -> int:
        record = self._records.get(address)
        return record.amount if record else 0

    def records(self, *, include_zero: bool = False) -> List[RefundRecord]:
        return [r for r in self._records.values() if include_zero or r.amount > 0]

    def accrue(self, address: str, amount: int, timestamp: int) -> RefundRecord:
        if amount <= 0:
            raise ValueError("Refund amount must be positive")
        previous = self.owed(address)
        if self.policy is AccrualPolicy.ADDITIVE:
            new_amount = previous + amount
        else:
            new_amount = amount
            self._stranded += previous
        record = RefundRecord(address=address, amount=new_amount, accrued_at=timestamp)
        self._records[address] = record
        self._total_owed += new_amount - previous
        return record

    def zero(self, address: str) -> int:
        """Clear what ``address`` is owed and return the cleared amount."""
        record = self._records.get(address)
        if record is None or record.amount == 0:
            return 0
        self._records[address] = replace(record, amount=0)
        self._total_owed -= record.amount
        return record.amount

    def sweep(self, now: int, max_age_seconds: int) -> List[RefundRecord]:
        """Zero every nonzero record accrued more than ``max_age_seconds`` ago.

        The swept amounts are not moved anywhere; they are added to the
        stranded total so the balance stays explainable.
        """
        if max_age_seconds < 0:
            raise ValueError("max_age_seconds must not be negative")
        swept: List[RefundRecord] = []
        for address, record in list(self._records.items()):
            if record.amount == 0 or record.accrued_at is None:
                continue
            if now - record.accrued_at > max_age_seconds:
                swept.append(record)
                self.zero(address)
                self._stranded += record.amount
        if swept:
            logger.info(
                "Swept %d stale refunds totalling %d older than %ss",
                len(swept),
                sum(r.amount for r in swept),
                max_age_seconds,
            )
        return swept

    def check_totals(self) -> bool:
        return self._total_owed == sum(r.amount for r in self._records.values())

    def _get_state(self) -> LedgerState:
        return LedgerState(dict(self._records), self._total_owed, self._stranded)

    def _set_state(self, state: LedgerState) -> None:
        self._records = dict(state.records)
        self._total_owed = state.total_owed
        self._stranded = state.stranded
