"""Authorization policy and the emergency pause switch."""

from __future__ import annotations

from typing import Iterable, Protocol, Tuple

from nft_raffle.lottery.errors import Paused, Unauthorized
from nft_raffle.utils.common import normalize_address
from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class AccessPolicy(Protocol):
    """Decides who may call operator-only operations."""

    def is_operator(self, address: str) -> bool:
        ...


class SingleOperatorPolicy:
    """One fixed operator address, set at construction and never transferred."""

    def __init__(self, operator: str) -> None:
        self.operator = normalize_address(operator)

    def is_operator(self, address: str) -> bool:
        return address == self.operator


class MultiOperatorPolicy:
    """Any address from a fixed set may act as operator."""

    def __init__(self, operators: Iterable[str]) -> None:
        self.operators: Tuple[str, ...] = tuple(normalize_address(op) for op in operators)
        if not self.operators:
            raise ValueError("At least one operator address is required")

    @property
    def operator(self) -> str:
        return self.operators[0]

    def is_operator(self, address: str) -> bool:
        return address in self.operators


class AccessGate:
    """Guard evaluated before every mutating engine operation.

    Caller identity is checked before the pause flag so that a paused engine
    still answers ``Unauthorized`` to strangers calling operator operations.
    """

    def __init__(self, policy: AccessPolicy) -> None:
        self.policy = policy
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    def check(self, caller: str, *, operator_only: bool = False, pausable: bool = True) -> None:
        if operator_only and not self.policy.is_operator(caller):
            logger.warning("Rejected operator call from %s", caller)
            raise Unauthorized(f"{caller} is not an operator")
        if pausable and self._paused:
            raise Paused("Raffle is paused")

    def set_paused(self, caller: str, paused: bool) -> bool:
        """Toggle the pause flag. Returns True when the flag actually changed."""
        self.check(caller, operator_only=True, pausable=False)
        changed = self._paused != paused
        self._paused = paused
        return changed

    # snapshot support for the engine's all-or-nothing calls
    def _get_state(self) -> bool:
        return self._paused

    def _set_state(self, paused: bool) -> None:
        self._paused = paused
