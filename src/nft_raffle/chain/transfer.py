"""Value transfer capability used to pay refunds and operator withdrawals.

A transfer is the one place where control can leave the engine. The engine
always finishes its own bookkeeping before calling ``send``.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from eth_account import Account
from web3 import Web3

from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class ValueTransfer(Protocol):
    def send(self, recipient: str, amount: int) -> Optional[str]:
        """Move ``amount`` wei to ``recipient``. Raise on failure."""
        ...


class InMemoryTransfer:
    """Records payouts instead of moving real value.

    ``on_send`` is invoked after a payout is recorded, before ``send``
    returns, which is where a malicious recipient contract would re-enter.
    """

    def __init__(self, on_send: Optional[Callable[[str, int], None]] = None) -> None:
        self.on_send = on_send
        self.received: Dict[str, int] = defaultdict(int)
        self.history: List[Tuple[str, int]] = []

    def send(self, recipient: str, amount: int) -> Optional[str]:
        if amount <= 0:
            raise ValueError("Transfer amount must be positive")
        self.received[recipient] += amount
        self.history.append((recipient, amount))
        if self.on_send is not None:
            try:
                self.on_send(recipient, amount)
            except Exception:
                # a failing recipient reverts the payout
                self.received[recipient] -= amount
                self.history.pop()
                raise
        return None


class Web3Transfer:
    """Signs and broadcasts a plain value transaction from the raffle wallet."""

    def __init__(
        self,
        w3: Web3,
        private_key: str,
        *,
        chain_id: Optional[int] = None,
        gas_limit: int = 21_000,
        gas_price_gwei: Optional[str] = None,
        wait_timeout: Optional[int] = 180,
    ) -> None:
        self._w3 = w3
        self.account = Account.from_key(private_key)
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.wait_timeout = wait_timeout
        self._gas_price_override: Optional[int] = None
        if gas_price_gwei:
            self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_gwei)), "gwei")
        logger.info("Transfer wallet loaded: %s", self.account.address)

    def _build(self, recipient: str, amount: int) -> Dict[str, Any]:
        w3 = self._w3
        return {
            "from": self.account.address,
            "to": Web3.to_checksum_address(recipient),
            "value": int(amount),
            "gas": self.gas_limit,
            "gasPrice": self._gas_price_override or w3.eth.gas_price,
            "nonce": w3.eth.get_transaction_count(self.account.address),
            "chainId": self.chain_id if self.chain_id is not None else w3.eth.chain_id,
        }

    def send(self, recipient: str, amount: int) -> Optional[str]:
        if amount <= 0:
            raise ValueError("Transfer amount must be positive")
        txn = self._build(recipient, amount)
        signed = self.account.sign_transaction(txn)
        raw = getattr(signed, "raw_transaction", None)
        if raw is None:
            raw = signed.rawTransaction
        tx_hash = self._w3.eth.send_raw_transaction(raw)
        tx_hex = tx_hash.hex() if hasattr(tx_hash, "hex") else str(tx_hash)
        logger.info("Sent %s wei to %s in %s", amount, recipient, tx_hex)
        if self.wait_timeout:
            receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.wait_timeout)
            if int(receipt["status"]) != 1:
                raise RuntimeError(f"Transfer {tx_hex} reverted")
        return tx_hex
