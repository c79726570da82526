"""BingoSim command line.

    python -m scripts simulate [board.json] [--runs N] [--concurrency C] [--seed S]
    python -m scripts worker        # Celery worker for this host's partition
    python -m scripts maintenance   # lease reaper + batch finalizer loop
"""

import argparse
import asyncio
import sys
from pathlib import Path

import structlog

from bingosim.config.logging import configure_logging
from bingosim.config.settings import get_settings


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="python -m scripts")
    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Run a local batch and print aggregates.")
    sim.add_argument("board", nargs="?", type=Path, help="Board snapshot JSON file.")
    sim.add_argument("--runs", type=int, default=200, help="Runs per team.")
    sim.add_argument("--concurrency", type=int, default=None, help="Simultaneous runs.")
    sim.add_argument("--seed", default=None, help="Batch seed (default: batch id).")

    sub.add_parser("worker", help="Start a Celery worker.")
    sub.add_parser("maintenance", help="Run the maintenance sweep loop.")
    return parser.parse_args(argv)


def _simulate(args: argparse.Namespace) -> int:
    from scripts.simulate import format_aggregates, load_board, simulate

    settings = get_settings()
    if args.concurrency is not None:
        settings = settings.model_copy(update={"MAX_CONCURRENT_RUNS": args.concurrency})
    batch, aggregates, _ = asyncio.run(simulate(
        load_board(args.board), runs_per_team=args.runs, seed=args.seed, settings=settings,
    ))
    print(format_aggregates(batch, aggregates))
    return 0


def _worker() -> int:
    from bingosim.dispatch.distributed import get_celery_app
    from bingosim.dispatch.partition import WorkerPartition

    settings = get_settings()
    partition = WorkerPartition.from_settings(settings)
    logger = structlog.get_logger()
    logger.info(
        "worker_starting",
        worker_index=partition.worker_index,
        worker_count=partition.worker_count,
        queues=partition.queues(),
    )
    get_celery_app(settings).worker_main([
        "worker",
        "--queues", ",".join(partition.queues()),
        "--concurrency", str(settings.MAX_CONCURRENT_RUNS),
        "--loglevel", settings.LOG_LEVEL.value,
    ])
    return 0


def _maintenance() -> int:
    from bingosim.dispatch.runtime import build_worker_runtime
    from bingosim.engine.cancellation import CancellationToken

    settings = get_settings()
    runtime = build_worker_runtime(settings)
    token = CancellationToken()
    try:
        asyncio.run(runtime.maintenance.run(
            token, interval_seconds=settings.MAINTENANCE_INTERVAL_SECONDS,
        ))
    except KeyboardInterrupt:
        token.cancel()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(get_settings())
    if args.command == "simulate":
        return _simulate(args)
    if args.command == "worker":
        return _worker()
    return _maintenance()


if __name__ == "__main__":
    sys.exit(main())
