"""
HTTP API tests through FastAPI's TestClient.
"""
import pytest
from fastapi.testclient import TestClient

from bandbot import __version__, main
from bandbot.backtest import STRATEGIES
from bandbot.market_data import arrays_to_candles
from bandbot.multi_timeframe import MultiTimeframeOptimizer
from conftest import SmallSpace


@pytest.fixture
def client():
    with TestClient(main.app) as test_client:
        yield test_client


@pytest.fixture
def candles(ohlcv_arrays):
    return [c.model_dump() for c in arrays_to_candles(ohlcv_arrays)]


@pytest.fixture
def small_grid(monkeypatch):
    """Every strategy sweeps the eight-combination grid"""
    monkeypatch.setattr('bandbot.optimizer.get_search_space', lambda strategy, seconds=False: SmallSpace(seconds))
    monkeypatch.setattr(MultiTimeframeOptimizer, 'space_for', lambda self, seconds: SmallSpace(seconds))


class TestInfo:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "online"
        assert body["version"] == __version__

    def test_strategies(self, client):
        body = client.get("/strategies").json()
        assert set(body) == set(STRATEGIES)
        assert body["baseline"]["period"] == 20
        assert body["day-trading"]["minConfirmations"] == 4


class TestBacktest:

    def test_backtest(self, client, candles):
        response = client.post("/backtest", json={"strategy": "baseline", "candles": candles,
                                                  "config": {"period": 10, "offset": 0}})
        assert response.status_code == 200
        body = response.json()
        assert body["totalTrades"] == len(body["trades"])
        assert body["winningTrades"] + body["losingTrades"] == body["totalTrades"]

    def test_unknown_strategy(self, client, candles):
        response = client.post("/backtest", json={"strategy": "martingale", "candles": candles})
        assert response.status_code == 400

    def test_invalid_config(self, client, candles):
        response = client.post("/backtest", json={"candles": candles, "config": {"period": 0}})
        assert response.status_code == 400

    def test_inconsistent_candle(self, client, candles):
        candles[5]["low"] = candles[5]["high"] + 1
        response = client.post("/backtest", json={"candles": candles})
        assert response.status_code == 400

    def test_missing_candles(self, client):
        assert client.post("/backtest", json={"strategy": "baseline"}).status_code == 422


class TestOptimize:

    def test_optimize(self, client, candles, small_grid):
        response = client.post("/optimize", json={"candles": candles, "top": 3})
        assert response.status_code == 200

        body = response.json()
        assert body["success"]
        assert body["total_combinations"] == 8
        assert body["evaluated"] == 8
        assert len(body["results"]) == 3
        scores = [r["score"] for r in body["results"]]
        assert scores == sorted(scores, reverse=True)

    def test_optimize_with_filters(self, client, candles, small_grid):
        response = client.post("/optimize", json={"candles": candles, "filters": {"minimumTrades": 100_000}})
        body = response.json()
        assert body["results"] == []
        assert body["filtered_out"] == 8

    def test_grid_too_large(self, client, candles, small_grid, monkeypatch):
        monkeypatch.setattr(main, 'SYNC_OPTIMIZE_MAX_COMBINATIONS', 1)
        response = client.post("/optimize", json={"candles": candles})
        assert response.status_code == 400
        assert "/optimize/jobs" in response.json()["detail"]

    def test_unknown_strategy(self, client, candles):
        response = client.post("/optimize", json={"strategy": "martingale", "candles": candles})
        assert response.status_code == 400


class TestJobs:

    def test_job_lifecycle(self, client, candles, small_grid):
        response = client.post("/optimize/jobs", json={"candles": candles, "top": 2})
        assert response.status_code == 202
        job_id = response.json()["id"]
        assert response.json()["total_combinations"] == 8

        main.jobs[job_id].thread.join(timeout=60)

        body = client.get(f"/optimize/jobs/{job_id}").json()
        assert body["status"] == "completed"
        assert body["error"] is None
        assert body["progress"]["current"] == 8
        assert not body["progress"]["isRunning"]
        assert len(body["progress"]["results"]) == 2

        listed = client.get("/optimize/jobs").json()
        assert {"id": job_id, "strategy": "baseline", "status": "completed"} in listed

    def test_cancel_finished_job(self, client, candles, small_grid):
        job_id = client.post("/optimize/jobs", json={"candles": candles}).json()["id"]
        main.jobs[job_id].thread.join(timeout=60)

        response = client.delete(f"/optimize/jobs/{job_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_unknown_job(self, client):
        assert client.get("/optimize/jobs/nope").status_code == 404
        assert client.delete("/optimize/jobs/nope").status_code == 404

    def test_invalid_job_request(self, client, candles):
        response = client.post("/optimize/jobs", json={"strategy": "martingale", "candles": candles})
        assert response.status_code == 400


class TestMultiTimeframe:

    def test_multi_timeframe(self, client, ohlcv_arrays, seconds_ohlcv_arrays, small_grid):
        datasets = [
            {"name": "hourly", "candles": [c.model_dump() for c in arrays_to_candles(ohlcv_arrays)]},
            {"name": "seconds", "candles": [c.model_dump() for c in arrays_to_candles(seconds_ohlcv_arrays)]},
        ]
        response = client.post("/optimize/multi-timeframe", json={"datasets": datasets, "top": 5})
        assert response.status_code == 200

        body = response.json()
        assert body["datasets"] == 2
        assert len(body["results"]) == 5
        assert set(body["by_timeframe"]) == {"1h", "1s"}
        assert all(r["datasetName"] == "seconds" for r in body["by_timeframe"]["1s"])

    def test_no_datasets(self, client):
        response = client.post("/optimize/multi-timeframe", json={"datasets": []})
        assert response.status_code == 400
