"""Tests for the FastAPI batch, health and version endpoints."""

from uuid import UUID

import pytest
from httpx import AsyncClient
from uuid_extensions import uuid7

from bingosim.engine.cancellation import CancellationToken


async def _post_batch(client: AsyncClient, board: dict, **overrides):
    body = {"board": board, "runs_per_team": 2, "seed": "api", **overrides}
    return await client.post("/v1/batches", json=body)


class TestStartBatchEndpoint:
    """POST /v1/batches starts a batch or rejects the request with 400."""

    @pytest.mark.anyio
    async def test_created(self, client: AsyncClient, board_dict, runtime) -> None:
        response = await _post_batch(client, board_dict())
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "RUNNING"
        assert data["total_runs"] == 4
        assert data["execution_mode"] == "LOCAL"
        assert data["seed"] == "api"
        assert len(runtime.queue) == 4

    @pytest.mark.anyio
    async def test_board_without_rows(self, client: AsyncClient, board_dict) -> None:
        response = await _post_batch(client, board_dict(rows=[]))
        assert response.status_code == 400
        assert "no rows" in response.json()["detail"]

    @pytest.mark.anyio
    async def test_unknown_strategy(self, client: AsyncClient, board_dict) -> None:
        board = board_dict()
        board["teams"][1]["strategy"]["strategy_key"] = "coin_flip"
        response = await _post_batch(client, board)
        assert response.status_code == 400
        assert "coin_flip" in response.json()["detail"]

    @pytest.mark.anyio
    async def test_distributed_without_broker(self, client: AsyncClient, board_dict) -> None:
        response = await _post_batch(client, board_dict(), execution_mode="DISTRIBUTED")
        assert response.status_code == 400

    @pytest.mark.anyio
    async def test_schema_violation(self, client: AsyncClient, board_dict) -> None:
        response = await _post_batch(client, board_dict(), runs_per_team=0)
        assert response.status_code == 422


class TestBatchReadEndpoints:
    """Batch status, progress, aggregates and run results."""

    @pytest.mark.anyio
    async def test_lifecycle(self, client: AsyncClient, board_dict, runtime) -> None:
        created = (await _post_batch(client, board_dict())).json()
        batch_id = created["batch_id"]

        progress = (await client.get(f"/v1/batches/{batch_id}/progress")).json()
        assert progress["pending"] == 4
        assert progress["completed"] == 0

        await runtime.local_dispatcher().run(CancellationToken(), stop_when_idle=True)

        batch = (await client.get(f"/v1/batches/{batch_id}")).json()
        assert batch["status"] == "COMPLETED"
        assert batch["completed_at"] is not None

        progress = (await client.get(f"/v1/batches/{batch_id}/progress")).json()
        assert progress["completed"] == 4
        assert progress["pending"] == 0

        aggregates = (await client.get(f"/v1/batches/{batch_id}/aggregates")).json()
        assert sorted(a["team_name"] for a in aggregates) == ["Alpha", "Bravo"]
        assert all(a["total_runs"] == 2 for a in aggregates)

    @pytest.mark.anyio
    async def test_run_result(self, client: AsyncClient, board_dict, runtime) -> None:
        created = (await _post_batch(client, board_dict())).json()
        await runtime.local_dispatcher().run(CancellationToken(), stop_when_idle=True)
        run = (await runtime.store.list_runs(UUID(created["batch_id"])))[0]

        response = await client.get(f"/v1/runs/{run.run_id}/result")

        assert response.status_code == 200
        data = response.json()
        assert data["run_id"] == str(run.run_id)
        assert data["seed"] == run.seed

    @pytest.mark.anyio
    @pytest.mark.parametrize("path", [
        "/v1/batches/{id}",
        "/v1/batches/{id}/progress",
        "/v1/batches/{id}/aggregates",
        "/v1/runs/{id}/result",
    ])
    async def test_not_found(self, client: AsyncClient, path: str) -> None:
        missing = uuid7()
        response = await client.get(path.format(id=missing))
        assert response.status_code == 404
        assert str(missing) in response.json()["detail"]

    @pytest.mark.anyio
    async def test_invalid_id(self, client: AsyncClient) -> None:
        response = await client.get("/v1/batches/not-a-uuid")
        assert response.status_code == 422


class TestHealthEndpoint:
    """GET /health always answers 200."""

    @pytest.mark.anyio
    async def test_health_returns_200(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200

    @pytest.mark.anyio
    async def test_health_response_body(self, client: AsyncClient) -> None:
        data = (await client.get("/health")).json()
        assert data["status"] in ("ok", "degraded")
        assert data["checks"]["api"] is True
        assert "environment" in data


class TestVersionEndpoint:
    """GET /api/version returns application version info."""

    @pytest.mark.anyio
    async def test_version_response_body(self, client: AsyncClient) -> None:
        response = await client.get("/api/version")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "BingoSim"
        assert "version" in data
        assert "environment" in data
