"""FastAPI dependency injection factories.

The process runtime (store, registries, publishers) is built once in the app
lifespan and kept on ``app.state``; endpoints reach it through these
factories via Depends().
"""

from fastapi import Depends, HTTPException, Request

from bingosim.dispatch.runtime import SimulationRuntime
from bingosim.services.batches import SimulationBatchService


async def get_runtime(request: Request) -> SimulationRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Simulation runtime not started")
    return runtime


async def get_batch_service(
    runtime: SimulationRuntime = Depends(get_runtime),
) -> SimulationBatchService:
    return runtime.batches
