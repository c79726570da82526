"""Run executor: claim, resolve, simulate and persist one run.

Every fault inside a run is caught here, at the run boundary: the run is
marked FAILED (or returned to PENDING for another attempt while attempts
remain) and the fault comes back as a ``RunOutcome``. Nothing raised by one
run reaches the dispatcher or its sibling runs. Cancellation is the one
exception: the claim is released (the run is left PENDING, never COMPLETED)
and ``RunCancelledError`` propagates so the dispatcher can stop.
"""

import asyncio
import logging
import time
from uuid import UUID

from bingosim.dispatch.contracts import RunPublisher, SimulationStore
from bingosim.dispatch.finalizer import BatchFinalizer
from bingosim.engine.cancellation import CancellationToken, RunCancelledError
from bingosim.engine.runner import RunContext, RunSimulator
from bingosim.engine.strategies import StrategyRegistry
from bingosim.engine.timing import TimeSamplerRegistry
from bingosim.models.common import RunStatus
from bingosim.models.faults import Fault, FaultKind, NotFoundError, RunOutcome, summarize_cause
from bingosim.models.run import SimulationRun
from bingosim.observability.metrics import SimulationMetrics

logger = logging.getLogger(__name__)


class RunExecutor:
    def __init__(
        self,
        store: SimulationStore,
        strategies: StrategyRegistry,
        time_samplers: TimeSamplerRegistry,
        *,
        finalizer: BatchFinalizer | None = None,
        retry_publisher: RunPublisher | None = None,
        metrics: SimulationMetrics | None = None,
        max_attempts: int = 5,
        lease_seconds: int = 300,
    ) -> None:
        self._store = store
        self._strategies = strategies
        self._time_samplers = time_samplers
        self._simulator = RunSimulator(time_samplers)
        self._finalizer = finalizer
        self._retry_publisher = retry_publisher
        self._metrics = metrics or SimulationMetrics()
        self._max_attempts = max_attempts
        self._lease_seconds = lease_seconds

    @property
    def metrics(self) -> SimulationMetrics:
        return self._metrics

    async def execute(
        self,
        run_id: UUID,
        token: CancellationToken,
        *,
        claim_token: UUID | None = None,
    ) -> RunOutcome:
        """Execute one run.

        Args:
            run_id: Run to execute.
            token: Cancellation token of the calling dispatcher.
            claim_token: Token of a claim already made by the caller (batch
                consumers claim a whole message up front). When None, the
                run is claimed here.
        """
        run = await self._store.get_run(run_id)
        if run is None:
            logger.warning("Run %s not found; skipping", run_id)
            return RunOutcome(
                run_id, None, Fault(FaultKind.NOT_FOUND, f"run {run_id} not found", str(run_id)),
            )

        if claim_token is None:
            if run.status != RunStatus.PENDING:
                logger.debug("Run %s is %s; skipping", run_id, run.status)
                return RunOutcome(run_id, run.status)
            claim = await self._store.claim_runs([run_id], lease_seconds=self._lease_seconds)
            if run_id not in claim:
                logger.debug("Run %s was claimed elsewhere", run_id)
                return RunOutcome(run_id, None)
            claim_token = claim.token

        started = time.perf_counter()
        try:
            outcome = await self._execute_claimed(run, token, claim_token)
        except (RunCancelledError, asyncio.CancelledError):
            await self._store.release_run(run_id, claim_token)
            self._metrics.record_cancelled(run.batch_id, run_id)
            logger.info("Run %s cancelled; left PENDING", run_id)
            raise
        except Exception as exc:
            outcome = await self._record_failure(run, claim_token, exc)
        else:
            if outcome.status == RunStatus.COMPLETED:
                self._metrics.record_completed(
                    run.batch_id, run_id, time.perf_counter() - started,
                )

        if outcome.status is not None and outcome.status.is_terminal:
            await self._finalize(run.batch_id)
        return outcome

    async def _execute_claimed(
        self, run: SimulationRun, token: CancellationToken, claim_token: UUID,
    ) -> RunOutcome:
        snapshot = await self._store.get_snapshot(run.batch_id)
        team = snapshot.team(run.team_id)
        config = await self._store.get_strategy_config(run.batch_id, run.team_id)
        strategy = self._strategies.create(config)
        self._time_samplers.validate(t for row in snapshot.rows for t in row.tasks)

        token.raise_if_cancelled()
        result = await asyncio.to_thread(
            self._simulator.simulate,
            context=RunContext(run_id=run.run_id, batch_id=run.batch_id),
            snapshot=snapshot,
            team=team,
            strategy=strategy,
            seed=run.seed,
            cancel=token,
        )

        if not await self._store.complete_run(run.run_id, claim_token, result):
            logger.warning("Run %s lost its claim before completing; result discarded", run.run_id)
            return RunOutcome(run.run_id, None, executed=True)
        logger.debug(
            "Run %s completed: %d rows, %d points in %.0fs simulated",
            run.run_id, result.rows_completed, result.points, result.elapsed_seconds,
        )
        return RunOutcome(run.run_id, RunStatus.COMPLETED, executed=True)

    async def _record_failure(
        self, run: SimulationRun, claim_token: UUID, exc: Exception,
    ) -> RunOutcome:
        fault = Fault.from_exception(exc)
        if isinstance(exc, NotFoundError):
            logger.warning("Run %s failed: %s", run.run_id, fault.message)
        else:
            logger.exception("Run %s failed", run.run_id)

        status = await self._store.fail_run(
            run.run_id,
            claim_token,
            summarize_cause(exc),
            max_attempts=self._max_attempts,
        )
        if status == RunStatus.FAILED:
            self._metrics.record_failed(run.batch_id, run.run_id)
        elif status == RunStatus.PENDING:
            self._metrics.record_retried(run.batch_id, run.run_id)
            if self._retry_publisher is not None:
                await self._retry_publisher.publish(run.run_id)
        return RunOutcome(run.run_id, status, fault, executed=True)

    async def _finalize(self, batch_id: UUID) -> None:
        if self._finalizer is None:
            return
        try:
            await self._finalizer.try_finalize(batch_id)
        except Exception:
            # The maintenance sweep retries finalization.
            logger.exception("Finalizing batch %s failed", batch_id)
