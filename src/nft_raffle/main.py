#!/usr/bin/env python3
"""
NFT Raffle Application

Main entry point: builds the raffle engine and its collaborators from
configuration, then runs the operator loop and the web gateway until a
shutdown signal arrives.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from web3 import Web3

from nft_raffle.chain.oracle import BlockClock, BlockRandomness, SystemClock, SystemRandomness
from nft_raffle.chain.prize import InMemoryPrizeIssuer
from nft_raffle.chain.transfer import InMemoryTransfer, Web3Transfer
from nft_raffle.lottery.access import MultiOperatorPolicy, SingleOperatorPolicy
from nft_raffle.lottery.engine import RaffleEngine
from nft_raffle.lottery.notifications import NotificationBus
from nft_raffle.lottery.operator import RaffleOperator
from nft_raffle.utils.config import as_bool, get_config_value, load_config, round_config_from
from nft_raffle.utils.key_manager import resolve_operator_addresses
from nft_raffle.utils.logger import get_logger
from nft_raffle.web_server import RaffleWebServer

logger = get_logger(__name__)


def build_engine(config: Dict[str, Any], w3: Optional[Web3] = None) -> RaffleEngine:
    """Wire a RaffleEngine from configuration.

    Without a Web3 provider the engine runs against the local clock, the
    ``secrets`` module and an in-memory transfer ledger. With one, time and
    randomness come from the latest block and payouts are real transactions
    when ``chain.operator_private_key`` is set.
    """
    round_config = round_config_from(config)
    operators = resolve_operator_addresses(config)
    policy = SingleOperatorPolicy(operators[0]) if len(operators) == 1 else MultiOperatorPolicy(operators)

    chain_cfg = config.get("chain", {})
    prize_issuer = InMemoryPrizeIssuer(config.get("raffle", {}).get("prize_base_uri", "ipfs://raffle-prizes/"))

    if w3 is not None and as_bool(chain_cfg.get("use_block_randomness", True)):
        clock, randomness = BlockClock(w3), BlockRandomness(w3)
        logger.warning("Using block timestamp/prevRandao as the draw seed; block producers can influence it")
    else:
        clock, randomness = SystemClock(), SystemRandomness()

    private_key = chain_cfg.get("operator_private_key")
    if w3 is not None and private_key:
        chain_id = chain_cfg.get("chain_id")
        transfer = Web3Transfer(
            w3,
            private_key,
            chain_id=int(chain_id) if chain_id else None,
            gas_price_gwei=chain_cfg.get("gas_price"),
        )
    else:
        if w3 is not None:
            logger.warning("No chain.operator_private_key configured; payouts are only recorded in memory")
        transfer = InMemoryTransfer()

    feed_capacity = int(get_config_value(config, "app.feed_capacity", 200))
    return RaffleEngine(
        round_config,
        policy,
        prize_issuer,
        transfer,
        clock=clock,
        randomness=randomness,
        bus=NotificationBus(feed_capacity=feed_capacity),
    )


class RaffleApp:
    """Owns the engine, the operator loop and the web server for one process."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.engine: Optional[RaffleEngine] = None
        self.operator: Optional[RaffleOperator] = None
        self.web_server: Optional[RaffleWebServer] = None
        self.running = True

    def _display_config_summary(self) -> None:
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        raffle_cfg = self.config.get("raffle", {})
        logger.info(f"Entry fee: {raffle_cfg.get('entry_fee_wei') or raffle_cfg.get('entry_fee', '0.01 ether')}")
        logger.info(f"Capacity: {raffle_cfg.get('capacity', 5)}")
        logger.info(f"Close mode: {raffle_cfg.get('close_mode', 'capacity')}")
        logger.info(f"RPC URL: {self.config.get('chain', {}).get('rpc_url', 'Not configured (local mode)')}")
        server_cfg = self.config.get("server", {})
        logger.info(f"Server: {server_cfg.get('host', '0.0.0.0')}:{server_cfg.get('port', 6080)}")
        logger.info("=" * 60)

    def _connect_web3(self) -> Optional[Web3]:
        rpc_url = self.config.get("chain", {}).get("rpc_url")
        if not rpc_url:
            return None
        timeout = float(self.config.get("chain", {}).get("rpc_timeout", 10.0))
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        if not w3.is_connected():
            raise ConnectionError(f"Failed to connect to RPC at {rpc_url}")
        logger.info("Connected to RPC %s (chain id %s)", rpc_url, w3.eth.chain_id)
        return w3

    def initialize(self) -> None:
        self._display_config_summary()
        self.engine = build_engine(self.config, self._connect_web3())
        operator_address = resolve_operator_addresses(self.config)[0]
        if as_bool(self.config.get("operator", {}).get("enabled", True)):
            self.operator = RaffleOperator(self.engine, operator_address, self.config)
        self.web_server = RaffleWebServer(self.config, self.engine, self.operator)
        logger.info("Raffle application initialized")

    async def start(self) -> None:
        self.initialize()
        if self.operator:
            await self.operator.start()

        host = get_config_value(self.config, "server.host", "0.0.0.0")
        port = int(get_config_value(self.config, "server.port", 6080))
        server_task = asyncio.create_task(self.web_server.start(host=host, port=port))
        try:
            while self.running and not server_task.done():
                await asyncio.sleep(1)
            if server_task.done() and server_task.exception():
                raise server_task.exception()
        finally:
            await self.stop()

    async def stop(self) -> None:
        logger.info("Stopping raffle application")
        self.running = False
        if self.operator:
            await self.operator.stop()
        if self.web_server:
            await self.web_server.stop()
        logger.info("Raffle application stopped")

    def handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the NFT raffle operator and API server")
    parser.add_argument("--config", help="Path to the JSON configuration file")
    parser.add_argument("--env-file", default=".env", help="dotenv file to load before reading configuration")
    parser.add_argument("--host", help="Override server.host")
    parser.add_argument("--port", type=int, help="Override server.port")
    return parser.parse_args(argv)


def run(argv=None) -> None:
    args = parse_args(argv)
    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    config = load_config(args.config)
    if args.host:
        config.setdefault("server", {})["host"] = args.host
    if args.port:
        config.setdefault("server", {})["port"] = args.port

    app = RaffleApp(config)
    signal.signal(signal.SIGINT, app.handle_signal)
    signal.signal(signal.SIGTERM, app.handle_signal)

    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        logger.info("Raffle application interrupted by user")
    except Exception as e:
        logger.exception(f"Raffle application failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
