from conftest import OPERATOR
from nft_raffle.chain.oracle import SystemClock, SystemRandomness
from nft_raffle.chain.transfer import InMemoryTransfer
from nft_raffle.lottery.access import MultiOperatorPolicy
from nft_raffle.main import RaffleApp, build_engine, parse_args

CONFIG = {
    "raffle": {
        "entry_fee_wei": 100,
        "capacity": 3,
        "operator_address": OPERATOR,
        "prize_base_uri": "ipfs://test/",
    },
    "operator": {"enabled": True, "check_interval": 5},
    "app": {"feed_capacity": 10},
}


def test_build_engine_without_chain():
    engine = build_engine(CONFIG)
    assert engine.config.entry_fee == 100
    assert engine.config.capacity == 3
    assert engine.operator == OPERATOR
    assert isinstance(engine.clock, SystemClock)
    assert isinstance(engine.randomness, SystemRandomness)
    assert isinstance(engine.transfer, InMemoryTransfer)
    assert engine.prize_issuer.base_uri == "ipfs://test/"


def test_build_engine_with_several_operators():
    config = {"raffle": {"operator_address": f"{OPERATOR},0x{'22' * 20}"}}
    engine = build_engine(config)
    assert isinstance(engine.gate.policy, MultiOperatorPolicy)
    assert engine.is_operator("0x" + "22" * 20)


def test_app_initialize_wires_components():
    app = RaffleApp(CONFIG)
    app.initialize()
    assert app.engine is not None
    assert app.operator is not None
    assert app.operator.check_interval == 5
    assert app.web_server.engine is app.engine


def test_operator_can_be_disabled():
    config = dict(CONFIG, operator={"enabled": "false"})
    app = RaffleApp(config)
    app.initialize()
    assert app.operator is None


def test_parse_args():
    args = parse_args(["--config", "custom.conf", "--port", "7000"])
    assert args.config == "custom.conf"
    assert args.port == 7000
    assert args.host is None
    assert args.env_file == ".env"


def test_handle_signal_stops_app():
    app = RaffleApp(CONFIG)
    app.handle_signal(15, None)
    assert app.running is False
