import pytest

from conftest import OPERATOR, PLAYERS
from nft_raffle.lottery.access import AccessGate, MultiOperatorPolicy, SingleOperatorPolicy
from nft_raffle.lottery.engine import RaffleEngine
from nft_raffle.lottery.errors import InvalidAddress, Paused, Unauthorized
from nft_raffle.lottery.models import RoundConfig


def test_single_operator_policy_normalizes():
    policy = SingleOperatorPolicy(OPERATOR.lower())
    assert policy.operator == OPERATOR
    assert policy.is_operator(OPERATOR)
    assert not policy.is_operator(PLAYERS[0])


def test_single_operator_policy_rejects_bad_address():
    with pytest.raises(InvalidAddress):
        SingleOperatorPolicy("0x1234")


def test_multi_operator_policy():
    policy = MultiOperatorPolicy([OPERATOR, PLAYERS[0]])
    assert policy.operator == OPERATOR
    assert policy.is_operator(PLAYERS[0])
    assert not policy.is_operator(PLAYERS[1])
    with pytest.raises(ValueError):
        MultiOperatorPolicy([])


def test_gate_checks_identity_then_pause():
    gate = AccessGate(SingleOperatorPolicy(OPERATOR))
    gate.check(PLAYERS[0])
    gate.check(OPERATOR, operator_only=True)
    with pytest.raises(Unauthorized):
        gate.check(PLAYERS[0], operator_only=True)

    assert gate.set_paused(OPERATOR, True) is True
    assert gate.set_paused(OPERATOR, True) is False
    with pytest.raises(Paused):
        gate.check(PLAYERS[0])
    with pytest.raises(Unauthorized):
        gate.check(PLAYERS[0], operator_only=True)
    gate.check(PLAYERS[0], pausable=False)


def test_only_operator_toggles_pause():
    gate = AccessGate(SingleOperatorPolicy(OPERATOR))
    with pytest.raises(Unauthorized):
        gate.set_paused(PLAYERS[0], True)
    assert not gate.paused
    gate.set_paused(OPERATOR, True)
    assert gate.set_paused(OPERATOR, False) is True
    assert not gate.paused


def test_second_operator_can_act(clock, randomness, issuer, transfer, bus):
    engine = RaffleEngine(
        RoundConfig(entry_fee=100, capacity=5),
        MultiOperatorPolicy([OPERATOR, PLAYERS[9]]),
        issuer,
        transfer,
        clock=clock,
        randomness=randomness,
        bus=bus,
    )
    engine.start_round(PLAYERS[9])
    assert engine.operator == OPERATOR
    assert engine.is_operator(PLAYERS[9].lower())
    engine.pause(OPERATOR)
    engine.unpause(PLAYERS[9])
    assert not engine.paused
