"""Operator withdrawal rules."""

from __future__ import annotations

from nft_raffle.lottery.errors import NoProfit, RaffleActive
from nft_raffle.lottery.ledger import FundLedger
from nft_raffle.lottery.models import BPS_DENOMINATOR, RoundConfig, WithdrawalPolicy


class Treasury:
    """Computes what the operator may take out of the balance.

    PROFIT withdraws whatever is not owed to participants. FIXED_FRACTION
    withdraws ``operator_fee_bps`` of the whole balance and ignores unclaimed
    refunds, so repeated withdrawals can eat into money owed to participants.
    Neither policy may withdraw while the open round holds entries.
    """

    def __init__(self, ledger: FundLedger) -> None:
        self.ledger = ledger

    def withdrawable(self, config: RoundConfig, balance: int, pending: int = 0) -> int:
        """Amount the operator could take now, ignoring round-state restrictions.

        ``pending`` is the value of entries in the open round; it never counts
        as profit.
        """
        if config.withdrawal_policy is WithdrawalPolicy.FIXED_FRACTION:
            return max(0, balance * config.operator_fee_bps // BPS_DENOMINATOR)
        amount = balance - pending - self.ledger.total_owed
        if not config.release_stranded:
            amount -= self.ledger.stranded
        return max(0, amount)

    def check_can_withdraw(self, *, pending_entries: int) -> None:
        if pending_entries > 0:
            raise RaffleActive("Withdrawals are not allowed while entries are pending")

    def amount_to_withdraw(self, config: RoundConfig, balance: int, *, pending_entries: int) -> int:
        self.check_can_withdraw(pending_entries=pending_entries)
        amount = self.withdrawable(config, balance)
        if amount <= 0:
            raise NoProfit("Nothing to withdraw")
        return amount
