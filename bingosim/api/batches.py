"""FastAPI batch endpoints.

POST /v1/batches                      start a batch from a board definition
GET  /v1/batches/{batch_id}           batch status
GET  /v1/batches/{batch_id}/progress  run-status counts and throughput
GET  /v1/batches/{batch_id}/aggregates per-team statistics
GET  /v1/runs/{run_id}/result         result of one run
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from bingosim.api.dependencies import get_batch_service
from bingosim.models.board import BoardSnapshot
from bingosim.models.common import ExecutionMode
from bingosim.models.faults import NotFoundError
from bingosim.models.run import BatchProgress, RunResult, SimulationBatch, TeamAggregate
from bingosim.services.batches import SimulationBatchService

router = APIRouter(prefix="/v1", tags=["batches"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class StartBatchRequest(BaseModel):
    board: BoardSnapshot
    runs_per_team: int = Field(..., ge=1, le=100_000)
    execution_mode: ExecutionMode = ExecutionMode.LOCAL
    seed: str | None = None
    name: str = ""


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/batches", status_code=201, response_model=SimulationBatch)
async def start_batch(
    body: StartBatchRequest,
    service: SimulationBatchService = Depends(get_batch_service),
) -> SimulationBatch:
    try:
        return await service.start_batch(
            body.board,
            runs_per_team=body.runs_per_team,
            execution_mode=body.execution_mode,
            seed=body.seed,
            name=body.name,
        )
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=str(exc).strip("'\"")) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/batches/{batch_id}", response_model=SimulationBatch)
async def get_batch(
    batch_id: UUID,
    service: SimulationBatchService = Depends(get_batch_service),
) -> SimulationBatch:
    try:
        return await service.get_batch(batch_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/batches/{batch_id}/progress", response_model=BatchProgress)
async def get_batch_progress(
    batch_id: UUID,
    service: SimulationBatchService = Depends(get_batch_service),
) -> BatchProgress:
    try:
        return await service.get_progress(batch_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/batches/{batch_id}/aggregates", response_model=list[TeamAggregate])
async def get_batch_aggregates(
    batch_id: UUID,
    service: SimulationBatchService = Depends(get_batch_service),
) -> list[TeamAggregate]:
    try:
        return await service.get_aggregates(batch_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/runs/{run_id}/result", response_model=RunResult)
async def get_run_result(
    run_id: UUID,
    service: SimulationBatchService = Depends(get_batch_service),
) -> RunResult:
    try:
        return await service.get_result(run_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
