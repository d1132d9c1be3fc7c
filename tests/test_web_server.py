import asyncio
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FEE, OPERATOR, PLAYERS
from nft_raffle.chain.transfer import InMemoryTransfer
from nft_raffle.lottery.operator import RaffleOperator
from nft_raffle.web_server import RaffleWebServer


@pytest.fixture
def client(engine):
    operator = RaffleOperator(engine, OPERATOR, {"operator": {"check_interval": 30}})
    server = RaffleWebServer({"server": {"cors_origins": "http://localhost:3000"}}, engine, operator)
    return TestClient(server.app)


def enter(client, player, value=FEE):
    return client.post("/api/round/enter", json={"caller": player, "value": value})


def test_health_and_status(client):
    health = client.get("/api/health").json()
    assert health["status"] == "ok"
    assert health["components"]["operator"] == "stopped"

    status = client.get("/api/status").json()
    assert status["operatorAddress"] == OPERATOR
    assert status["round"]["stateName"] == "OPEN"
    assert status["config"]["entryFee"] == FEE
    assert status["latestResult"] is None


def test_full_round_over_http(client):
    for p in PLAYERS[:4]:
        assert enter(client, p).status_code == 200
    participants = client.get("/api/round/participants").json()
    assert participants["total_participants"] == 4
    assert participants["round"] == 1

    receipt = enter(client, PLAYERS[4]).json()
    assert receipt["slot"] == 4
    winner = receipt["result"]["winner"]
    assert winner in PLAYERS[:5]

    results = client.get("/api/results").json()
    assert results["total"] == 1
    assert client.get("/api/results/0").json()["winner"] == winner

    summary = client.get("/api/summary").json()
    assert summary["balance"] == 5 * FEE
    assert summary["outstandingRefunds"] == 4 * FEE
    assert summary["withdrawable"] == FEE

    loser = next(p for p in PLAYERS[:5] if p != winner)
    assert client.get(f"/api/refunds/{loser}").json()["amount"] == FEE
    claim = client.post("/api/refunds/claim", json={"caller": loser})
    assert claim.json() == {"recipient": loser, "amount": FEE}

    withdraw = client.post("/api/treasury/withdraw", json={"caller": OPERATOR})
    assert withdraw.json()["amount"] == FEE

    activities = client.get("/api/activities", params={"limit": 3}).json()["activities"]
    assert activities[0]["type"] == "treasury_withdrawn"
    assert "message" in activities[0]


@pytest.mark.parametrize(
    "path,body,status,code",
    [
        ("/api/round/enter", {"caller": PLAYERS[0], "value": 1}, 402, "WrongFee"),
        ("/api/round/enter", {"caller": "0xnope", "value": FEE}, 400, "InvalidAddress"),
        ("/api/round/start", {"caller": OPERATOR}, 409, "RaffleActive"),
        ("/api/round/draw", {"caller": PLAYERS[0]}, 403, "Unauthorized"),
        ("/api/round/draw", {"caller": OPERATOR}, 409, "NoParticipants"),
        ("/api/refunds/claim", {"caller": PLAYERS[0]}, 409, "NoRefund"),
        ("/api/treasury/withdraw", {"caller": OPERATOR}, 409, "NoProfit"),
    ],
)
def test_errors_map_to_status_codes(client, path, body, status, code):
    response = client.post(path, json=body)
    assert response.status_code == status
    assert response.json()["error"] == code


def test_missing_result_is_404(client):
    response = client.get("/api/results/3")
    assert response.status_code == 404
    assert response.json()["error"] == "InvalidIndex"


def test_pause_over_http(client):
    assert client.post("/api/pause", json={"caller": OPERATOR}).json() == {"paused": True}
    response = enter(client, PLAYERS[0])
    assert response.status_code == 423
    assert response.json()["error"] == "Paused"
    assert client.post("/api/unpause", json={"caller": OPERATOR}).json() == {"paused": False}


def test_sweep_over_http(client, clock):
    for p in PLAYERS[:5]:
        enter(client, p)
    clock.advance(8 * 86400)
    body = client.post("/api/refunds/sweep", json={"caller": OPERATOR, "max_age_seconds": 604800}).json()
    assert len(body["swept"]) == 4
    assert body["amount"] == 4 * FEE
    assert client.get("/api/summary").json()["stranded"] == 4 * FEE


def test_start_deadline_round_without_duration(make_engine):
    engine = make_engine(start=False, close_mode="deadline")
    client = TestClient(RaffleWebServer({}, engine).app)
    response = client.post("/api/round/start", json={"caller": OPERATOR})
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidRequest"

    started = client.post("/api/round/start", json={"caller": OPERATOR, "duration": 600}).json()
    assert started["closesAt"] == started["openedAt"] + 600


def test_websocket_snapshot(client):
    enter(client, PLAYERS[0])
    with client.websocket_connect("/ws/raffle") as ws:
        message = ws.receive_json()
    assert message["type"] == "snapshot"
    assert message["payload"]["participants"] == [PLAYERS[0]]
    assert message["payload"]["live_feed"][0]["type"] == "raffle_entered"


def test_slow_payout_does_not_block_other_requests(engine):
    engine.transfer = InMemoryTransfer(on_send=lambda recipient, amount: time.sleep(0.3))
    for p in PLAYERS[:5]:
        result = engine.enter(p, FEE).result
    loser = next(p for p in PLAYERS[:5] if p != result.winner)
    server = RaffleWebServer({}, engine)

    async def scenario():
        transport = httpx.ASGITransport(app=server.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://raffle.test") as http:
            loop = asyncio.get_running_loop()
            claim = asyncio.create_task(http.post("/api/refunds/claim", json={"caller": loser}))
            await asyncio.sleep(0)
            started = loop.time()
            await asyncio.sleep(0.01)
            elapsed = loop.time() - started
            response = await claim
        return elapsed, response

    elapsed, response = asyncio.run(scenario())
    assert elapsed < 0.1
    assert response.json() == {"recipient": loser, "amount": FEE}
