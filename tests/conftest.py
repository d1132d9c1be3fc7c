import pytest
from web3 import Web3

from nft_raffle.chain.oracle import ManualClock, SequenceRandomness, select_winner_index
from nft_raffle.chain.prize import InMemoryPrizeIssuer
from nft_raffle.chain.transfer import InMemoryTransfer
from nft_raffle.lottery.access import SingleOperatorPolicy
from nft_raffle.lottery.engine import RaffleEngine
from nft_raffle.lottery.models import RoundConfig
from nft_raffle.lottery.notifications import NotificationBus

START_TIME = 1_700_000_000
SEED = 0xC0FFEE
FEE = 100


def addr(n: int) -> str:
    return Web3.to_checksum_address("0x" + f"{n:040x}")


OPERATOR = addr(0x0BEEF)
PLAYERS = [addr(0x1000 + i) for i in range(20)]


def expected_winner(participants, now=START_TIME, seed=SEED):
    return participants[select_winner_index(now, seed, len(participants))]


@pytest.fixture
def clock():
    return ManualClock(START_TIME)


@pytest.fixture
def randomness():
    return SequenceRandomness([SEED])


@pytest.fixture
def issuer():
    return InMemoryPrizeIssuer("ipfs://prizes/")


@pytest.fixture
def transfer():
    return InMemoryTransfer()


@pytest.fixture
def bus():
    return NotificationBus()


@pytest.fixture
def make_engine(clock, randomness, issuer, transfer, bus):
    """Factory building an engine with test collaborators; kwargs override RoundConfig."""

    def _make(start=True, **overrides):
        params = {"entry_fee": FEE, "capacity": 5}
        params.update(overrides)
        engine = RaffleEngine(
            RoundConfig(**params),
            SingleOperatorPolicy(OPERATOR),
            issuer,
            transfer,
            clock=clock,
            randomness=randomness,
            bus=bus,
        )
        if start:
            engine.start_round(OPERATOR)
        return engine

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()
