"""Aggregation service: recompute per-team aggregates of a batch from scratch.

Idempotent: every call reads the full result set and upserts one aggregate
per (batch, team). Safe to call on a partial result set and safe to repeat.
Readers pass ``persist=False``: only the finalizer writes aggregates, so a
slow read of a partial set can never overwrite the final ones.
"""

import logging
from uuid import UUID

from bingosim.dispatch.contracts import SimulationStore
from bingosim.engine.aggregation import aggregate_team
from bingosim.models.faults import NotFoundError, SnapshotUnreadableError
from bingosim.models.run import RunResult, TeamAggregate

logger = logging.getLogger(__name__)


class AggregationService:
    def __init__(self, store: SimulationStore) -> None:
        self._store = store

    async def recompute(self, batch_id: UUID, *, persist: bool = True) -> list[TeamAggregate]:
        if await self._store.get_batch(batch_id) is None:
            raise NotFoundError("batch", batch_id)

        runs_per_team = await self._store.runs_per_team(batch_id)
        results = await self._store.list_results(batch_id)
        by_team: dict[UUID, list[RunResult]] = {team_id: [] for team_id in runs_per_team}
        for result in results:
            by_team.setdefault(result.team_id, []).append(result)

        names: dict[UUID, tuple[str, str]] = {}
        try:
            snapshot = await self._store.get_snapshot(batch_id)
            names = {t.team_id: (t.name, t.strategy.strategy_key) for t in snapshot.teams}
        except (NotFoundError, SnapshotUnreadableError) as exc:
            logger.warning("Aggregating batch %s without team names: %s", batch_id, exc)

        aggregates: list[TeamAggregate] = []
        for team_id in sorted(by_team, key=str):
            team_name, strategy_key = names.get(team_id, ("", ""))
            aggregate = aggregate_team(
                batch_id=batch_id,
                team_id=team_id,
                total_runs=runs_per_team.get(team_id, 0),
                results=sorted(by_team[team_id], key=lambda r: str(r.run_id)),
                team_name=team_name,
                strategy_key=strategy_key,
            )
            if persist:
                await self._store.save_aggregate(aggregate)
            aggregates.append(aggregate)

        logger.debug(
            "Recomputed %d team aggregates for batch %s from %d results",
            len(aggregates), batch_id, len(results),
        )
        return aggregates
