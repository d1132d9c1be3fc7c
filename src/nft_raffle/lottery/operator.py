"""
Passive raffle operator.

Acts as the operator account from outside the engine:
- If a deadline round's entry window has elapsed: draw it, or re-arm it when
  nobody entered
- If stale-refund sweeping is enabled: sweep refunds older than the
  configured age
- If no round is open and auto start is enabled: start one

The engine never does any of this by itself; every action here is an
ordinary operator call.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from nft_raffle.lottery.engine import RaffleEngine
from nft_raffle.lottery.errors import RaffleError
from nft_raffle.lottery.models import CloseMode, RaffleResult, RoundState
from nft_raffle.utils.config import as_bool
from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class RaffleOperator:
    """Periodic operator loop driving a single engine."""

    def __init__(self, engine: RaffleEngine, operator_address: str, config: Dict[str, Any]) -> None:
        self._engine = engine
        self._address = operator_address
        operator_cfg = config.get("operator", {})
        self.check_interval = float(operator_cfg.get("check_interval", 30))
        self.auto_start = as_bool(operator_cfg.get("auto_start", True))
        self.sweep_max_age: Optional[int] = None
        if operator_cfg.get("sweep_max_age_seconds") not in (None, ""):
            self.sweep_max_age = int(operator_cfg["sweep_max_age_seconds"])
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.last_result: Optional[RaffleResult] = None
        self.consecutive_failures = 0

    async def start(self) -> None:
        if self._running:
            logger.warning("Raffle operator already running")
            return
        self._running = True
        self._task = asyncio.create_task(self.run(), name="raffle-operator")
        logger.info("Raffle operator started (interval %ss)", self.check_interval)

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping raffle operator")
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Raffle operator stopped")

    async def run(self) -> None:
        while self._running:
            await asyncio.to_thread(self.tick)
            await asyncio.sleep(self.check_interval)

    def get_status(self) -> Dict[str, Any]:
        info = self._engine.round_info()
        return {
            "status": "running" if self._running else "stopped",
            "operator_address": self._address,
            "round_number": info.round_number,
            "round_state": info.state.name,
            "auto_start": self.auto_start,
            "sweep_max_age_seconds": self.sweep_max_age,
            "consecutive_failures": self.consecutive_failures,
        }

    def tick(self) -> None:
        """Run one operator pass; errors are logged and counted, never raised."""
        try:
            self.check_round()
            self.sweep()
            self.consecutive_failures = 0
        except RaffleError as exc:
            self.consecutive_failures += 1
            logger.warning("Operator action rejected: %s", exc.code)
        except Exception as exc:
            self.consecutive_failures += 1
            logger.error("Operator pass failed: %s", exc)

    def check_round(self) -> Optional[RaffleResult]:
        engine = self._engine
        if engine.paused:
            return None
        state = engine.state

        if state == RoundState.CLOSED:
            if engine.participant_count == 0:
                logger.info("Round window elapsed with no entries, re-arming")
                engine.start_round(self._address)
                return None
            logger.info("Round window elapsed, drawing winner")
            self.last_result = engine.close_and_draw(self._address)
            return self.last_result

        if state == RoundState.IDLE and self.auto_start:
            if engine.config.close_mode is CloseMode.DEADLINE and engine.config.round_duration is None:
                logger.warning("Auto start skipped: deadline rounds need raffle.round_duration")
                return None
            logger.info("No round open, starting a new one")
            engine.start_round(self._address)
        return None

    def sweep(self) -> int:
        if self.sweep_max_age is None or self._engine.paused:
            return 0
        swept = self._engine.sweep_stale(self._address, self.sweep_max_age)
        return len(swept)

