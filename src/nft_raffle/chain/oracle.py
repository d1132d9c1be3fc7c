"""Timestamp and randomness sources consumed by the settlement step.

The winner index is ``keccak256(abi.encodePacked(uint256 timestamp, uint256
seed)) % participant_count``. Both inputs come from the execution environment.
With ``BlockClock``/``BlockRandomness`` they are the latest block's timestamp
and prevRandao value: public once the block exists and, before that,
influenceable by whoever produces or orders blocks. The raffle therefore is
not a verifiable lottery; a different source can be injected where that
matters, but the selection formula stays the same.
"""

from __future__ import annotations

import secrets
import time
from typing import Iterable, Protocol

from web3 import Web3

from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class Clock(Protocol):
    def now(self) -> int:
        """Current time as integer seconds since the epoch."""
        ...


class RandomnessSource(Protocol):
    def seed(self) -> int:
        """A fresh uint256 seed for one settlement."""
        ...


def selection_hash(timestamp: int, seed: int) -> int:
    digest = Web3.solidity_keccak(["uint256", "uint256"], [timestamp, seed])
    return int.from_bytes(bytes(digest), "big")


def select_winner_index(timestamp: int, seed: int, participant_count: int) -> int:
    if participant_count <= 0:
        raise ValueError("participant_count must be positive")
    return selection_hash(timestamp, seed) % participant_count


# ----------------------------------------------------------------------
# Local sources
# ----------------------------------------------------------------------
class SystemClock:
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock that only moves when told to. Used by tests and simulations."""

    def __init__(self, start: int = 1_700_000_000) -> None:
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        self._now += int(seconds)
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = int(timestamp)


class SystemRandomness:
    def seed(self) -> int:
        return secrets.randbits(256)


class SequenceRandomness:
    """Replays a fixed list of seeds, cycling when exhausted."""

    def __init__(self, seeds: Iterable[int]) -> None:
        values = [int(s) for s in seeds]
        if not values:
            raise ValueError("At least one seed is required")
        self._values = values
        self.calls = 0

    def seed(self) -> int:
        value = self._values[self.calls % len(self._values)]
        self.calls += 1
        return value


# ----------------------------------------------------------------------
# Chain-backed sources
# ----------------------------------------------------------------------
class BlockClock:
    """Timestamp of the latest block."""

    def __init__(self, w3: Web3) -> None:
        self._w3 = w3

    def now(self) -> int:
        block = self._w3.eth.get_block("latest")
        return int(block["timestamp"])


class BlockRandomness:
    """prevRandao of the latest block (exposed as ``mixHash`` by most nodes).

    Weak by construction: the value is known to the block proposer before
    the block is published.
    """

    def __init__(self, w3: Web3) -> None:
        self._w3 = w3

    def seed(self) -> int:
        block = self._w3.eth.get_block("latest")
        raw = block.get("prevRandao") or block.get("mixHash")
        if raw is None:
            logger.warning("Block %s carries no prevRandao; falling back to its hash", block.get("number"))
            raw = block["hash"]
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str):
            return int(raw, 16)
        return int.from_bytes(bytes(raw), "big")
