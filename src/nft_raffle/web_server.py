"""FastAPI gateway exposing the raffle engine's boundary operations."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from nft_raffle import __version__
from nft_raffle.lottery.engine import RaffleEngine
from nft_raffle.lottery.errors import RaffleError
from nft_raffle.lottery.models import Notification
from nft_raffle.lottery.notifications import ALL_EVENTS, describe
from nft_raffle.lottery.operator import RaffleOperator
from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class CallerRequest(BaseModel):
    caller: str


class EnterRequest(BaseModel):
    caller: str
    value: int


class StartRoundRequest(BaseModel):
    caller: str
    duration: Optional[int] = None


class SweepRequest(BaseModel):
    caller: str
    max_age_seconds: int


class RaffleWebServer:
    """HTTP and WebSocket gateway for one raffle engine."""

    def __init__(
        self,
        config: Dict[str, Any],
        engine: RaffleEngine,
        operator: Optional[RaffleOperator] = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.operator = operator

        self.app = FastAPI(
            title="NFT Raffle API",
            description="Entry, refund, treasury and read-only views for the NFT raffle",
            version=__version__,
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue] = None
        self._broadcast_task: Optional[asyncio.Task] = None
        self._websockets: Set[WebSocket] = set()
        self._listener_registered = False
        self._server = None

        self._setup_middleware()
        self._setup_error_handlers()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        origins = self.config.get("server", {}).get("cors_origins", "*")
        if isinstance(origins, str):
            origins = [o.strip() for o in origins.split(",") if o.strip()]
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_error_handlers(self) -> None:
        @self.app.exception_handler(RaffleError)
        async def raffle_error_handler(request: Request, exc: RaffleError) -> JSONResponse:
            return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

        @self.app.exception_handler(ValueError)
        async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
            return JSONResponse(status_code=400, content={"error": "InvalidRequest", "detail": str(exc)})

    def _setup_routes(self) -> None:  # noqa: C901
        engine = self.engine

        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            operator_state = await asyncio.to_thread(self.operator.get_status) if self.operator else {}
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "web": True,
                    "operator": operator_state.get("status", "disabled"),
                    "engine": {"round": engine.round_number, "paused": engine.paused},
                },
            }

        @self.app.get("/api/status")
        async def system_status() -> Dict[str, Any]:
            latest = engine.latest_result()
            info = await asyncio.to_thread(engine.round_info)
            operator_state = await asyncio.to_thread(self.operator.get_status) if self.operator else None
            return {
                "timestamp": datetime.utcnow().isoformat(),
                "round": info.to_dict(),
                "config": engine.config.to_dict(),
                "operator": operator_state,
                "operatorAddress": engine.operator,
                "paused": engine.paused,
                "latestResult": latest.to_dict() if latest else None,
                "websocket_connections": len(self._websockets),
            }

        # ------------------------------------------------------------------
        # Read-only views
        # ------------------------------------------------------------------
        @self.app.get("/api/round")
        async def get_round() -> Dict[str, Any]:
            info = await asyncio.to_thread(engine.round_info)
            return info.to_dict()

        @self.app.get("/api/round/participants")
        async def get_participants() -> Dict[str, Any]:
            participants = engine.participants()
            return {
                "round": engine.round_number + 1,
                "participants": participants,
                "total_participants": len(participants),
                "capacity": engine.config.capacity,
            }

        @self.app.get("/api/results")
        async def get_results(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 500))
            results = engine.results()
            return {
                "results": [r.to_dict() for r in results[-limit:]],
                "total": len(results),
            }

        @self.app.get("/api/results/{index}")
        async def get_result(index: int) -> Dict[str, Any]:
            return engine.result(index).to_dict()

        @self.app.get("/api/refunds/{address}")
        async def get_refund(address: str) -> Dict[str, Any]:
            return engine.refund_of(address).to_dict()

        @self.app.get("/api/summary")
        async def get_summary() -> Dict[str, Any]:
            summary = await asyncio.to_thread(engine.financial_summary)
            return summary.to_dict()

        @self.app.get("/api/activities")
        async def get_activities(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            feed = engine.bus.get_feed(limit=limit)
            return {"activities": [self._serialize_activity(item) for item in reversed(feed)]}

        # ------------------------------------------------------------------
        # Mutating operations
        # ------------------------------------------------------------------
        @self.app.post("/api/round/start")
        async def start_round(request: StartRoundRequest) -> Dict[str, Any]:
            info = await asyncio.to_thread(engine.start_round, request.caller, request.duration)
            return info.to_dict()

        @self.app.post("/api/round/enter")
        async def enter(request: EnterRequest) -> Dict[str, Any]:
            receipt = await asyncio.to_thread(engine.enter, request.caller, request.value)
            return receipt.to_dict()

        @self.app.post("/api/round/draw")
        async def close_and_draw(request: CallerRequest) -> Dict[str, Any]:
            result = await asyncio.to_thread(engine.close_and_draw, request.caller)
            return result.to_dict()

        @self.app.post("/api/refunds/claim")
        async def claim_refund(request: CallerRequest) -> Dict[str, Any]:
            amount = await asyncio.to_thread(engine.claim_refund, request.caller)
            return {"recipient": request.caller, "amount": amount}

        @self.app.post("/api/refunds/sweep")
        async def sweep_stale(request: SweepRequest) -> Dict[str, Any]:
            swept = await asyncio.to_thread(engine.sweep_stale, request.caller, request.max_age_seconds)
            return {
                "swept": [r.to_dict() for r in swept],
                "amount": sum(r.amount for r in swept),
            }

        @self.app.post("/api/treasury/withdraw")
        async def withdraw(request: CallerRequest) -> Dict[str, Any]:
            amount = await asyncio.to_thread(engine.withdraw, request.caller)
            return {"recipient": request.caller, "amount": amount}

        @self.app.post("/api/pause")
        async def pause(request: CallerRequest) -> Dict[str, Any]:
            await asyncio.to_thread(engine.pause, request.caller)
            return {"paused": engine.paused}

        @self.app.post("/api/unpause")
        async def unpause(request: CallerRequest) -> Dict[str, Any]:
            await asyncio.to_thread(engine.unpause, request.caller)
            return {"paused": engine.paused}

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws/raffle")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))
            try:
                snapshot = await asyncio.to_thread(self._build_snapshot)
                await websocket.send_json({"type": "snapshot", "payload": snapshot})
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting raffle web server on %s:%s", host, port)
        self._loop = asyncio.get_running_loop()
        self._broadcast_queue = asyncio.Queue()
        self._register_bus_listener()
        self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="raffle-web-broadcast")

        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        finally:
            logger.info("Raffle web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping raffle web server")
        if self._server is not None:
            self._server.should_exit = True
        if self._listener_registered:
            self.engine.bus.remove_listener(ALL_EVENTS, self._enqueue_broadcast)
            self._listener_registered = False
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        for websocket in list(self._websockets):
            try:
                await websocket.close(code=1001, reason="Server shutdown")
            except RuntimeError as exc:
                logger.debug("Error closing websocket: %s", exc)
        self._websockets.clear()

    # ------------------------------------------------------------------
    # Broadcasting
    # ------------------------------------------------------------------
    def _register_bus_listener(self) -> None:
        if self._listener_registered:
            return
        self.engine.bus.add_listener(ALL_EVENTS, self._enqueue_broadcast)
        self._listener_registered = True

    def _enqueue_broadcast(self, notification: Notification) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, notification)
        except RuntimeError:  # loop already closing
            logger.debug("Failed to enqueue broadcast for %s", notification.event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            notification = await self._broadcast_queue.get()
            await self._broadcast_to_clients(notification)

    async def _broadcast_to_clients(self, notification: Notification) -> None:
        if not self._websockets:
            return
        message = {"type": notification.event_type, "payload": self._serialize_activity(notification)}
        stale: List[WebSocket] = []
        for websocket in list(self._websockets):
            try:
                await websocket.send_json(message)
            except (RuntimeError, WebSocketDisconnect) as exc:
                logger.debug("WebSocket send failed: %s", exc)
                stale.append(websocket)
        for websocket in stale:
            self._websockets.discard(websocket)

    def _build_snapshot(self) -> Dict[str, Any]:
        feed = self.engine.bus.get_feed(limit=20)
        return {
            "round": self.engine.round_info().to_dict(),
            "participants": self.engine.participants(),
            "results": [r.to_dict() for r in self.engine.results()[-10:]],
            "summary": self.engine.financial_summary().to_dict(),
            "live_feed": [self._serialize_activity(item) for item in reversed(feed)],
        }

    @staticmethod
    def _serialize_activity(item: Notification) -> Dict[str, Any]:
        payload = item.to_dict()
        payload["message"] = describe(item)
        return payload
