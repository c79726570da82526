"""Process wiring: build the store, registries, executor and dispatch pieces once.

- build_local_runtime: API / CLI process executing runs in-process.
- get_worker_runtime: Celery worker process, built on first task and cached.
"""

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from bingosim.config.settings import Settings, get_settings
from bingosim.dispatch.contracts import RunPublisher, SimulationStore
from bingosim.dispatch.distributed import CeleryRunPublisher, RunBatchConsumer, get_celery_app
from bingosim.dispatch.executor import RunExecutor
from bingosim.dispatch.finalizer import BatchFinalizer, BatchMaintenance
from bingosim.dispatch.local import InMemoryRunQueue, LocalDispatcher
from bingosim.dispatch.partition import WorkerPartition
from bingosim.engine.strategies import StrategyRegistry, default_strategy_registry
from bingosim.engine.timing import TimeSamplerRegistry, default_time_samplers
from bingosim.observability.metrics import SimulationMetrics
from bingosim.services.aggregates import AggregationService
from bingosim.services.batches import SimulationBatchService


@dataclass
class SimulationRuntime:
    settings: Settings
    store: SimulationStore
    publisher: RunPublisher
    strategies: StrategyRegistry
    time_samplers: TimeSamplerRegistry
    executor: RunExecutor
    finalizer: BatchFinalizer
    maintenance: BatchMaintenance
    batches: SimulationBatchService
    metrics: SimulationMetrics = field(default_factory=SimulationMetrics)
    queue: InMemoryRunQueue | None = None
    partition: WorkerPartition | None = None

    def local_dispatcher(self) -> LocalDispatcher:
        if self.queue is None:
            msg = "Runtime has no local queue"
            raise ValueError(msg)
        return LocalDispatcher(
            self.queue,
            self.executor,
            max_concurrent=self.settings.MAX_CONCURRENT_RUNS,
            poll_interval_seconds=self.settings.QUEUE_POLL_INTERVAL_MS / 1000.0,
            delay_seconds=self.settings.SIMULATION_DELAY_MS / 1000.0,
        )

    def consumer(self) -> RunBatchConsumer:
        return RunBatchConsumer(
            self.store,
            self.executor,
            self.partition or WorkerPartition(worker_index=None),
            self.publisher,
            lease_seconds=self.settings.RUN_LEASE_SECONDS,
        )


def build_runtime(
    settings: Settings,
    store: SimulationStore,
    publisher: RunPublisher,
    *,
    queue: InMemoryRunQueue | None = None,
    partition: WorkerPartition | None = None,
    distributed_publisher: RunPublisher | None = None,
) -> SimulationRuntime:
    strategies = default_strategy_registry()
    time_samplers = default_time_samplers()
    metrics = SimulationMetrics()
    aggregation = AggregationService(store)
    finalizer = BatchFinalizer(store, aggregation)
    executor = RunExecutor(
        store,
        strategies,
        time_samplers,
        finalizer=finalizer,
        retry_publisher=publisher,
        metrics=metrics,
        max_attempts=settings.MAX_RUN_ATTEMPTS,
        lease_seconds=settings.RUN_LEASE_SECONDS,
    )
    maintenance = BatchMaintenance(
        store, finalizer, publisher, max_attempts=settings.MAX_RUN_ATTEMPTS,
    )
    batches = SimulationBatchService(
        store,
        strategies,
        time_samplers,
        aggregation,
        local_publisher=queue,
        distributed_publisher=distributed_publisher,
    )
    return SimulationRuntime(
        settings=settings,
        store=store,
        publisher=publisher,
        strategies=strategies,
        time_samplers=time_samplers,
        executor=executor,
        finalizer=finalizer,
        maintenance=maintenance,
        batches=batches,
        metrics=metrics,
        queue=queue,
        partition=partition,
    )


def build_local_runtime(
    settings: Settings | None = None,
    store: SimulationStore | None = None,
    *,
    distributed_publisher: RunPublisher | None = None,
) -> SimulationRuntime:
    """Runtime executing LOCAL batches in this process."""
    settings = settings or get_settings()
    if store is None:
        from bingosim.db.session import async_session_factory
        from bingosim.stores.sql import SqlSimulationStore

        store = SqlSimulationStore(async_session_factory)
    queue = InMemoryRunQueue()
    return build_runtime(
        settings, store, queue, queue=queue, distributed_publisher=distributed_publisher,
    )


def build_worker_runtime(settings: Settings) -> SimulationRuntime:
    """Runtime of a Celery worker process."""
    from bingosim.stores.sql import SqlSimulationStore

    # Each Celery task runs its own event loop, so connections are never pooled.
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    store = SqlSimulationStore(
        async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False),
    )
    partition = WorkerPartition.from_settings(settings)
    publisher = CeleryRunPublisher(
        get_celery_app(settings),
        worker_count=settings.WORKER_COUNT,
        batch_size=settings.RUN_BATCH_SIZE,
    )
    return build_runtime(
        settings, store, publisher, partition=partition, distributed_publisher=publisher,
    )


_worker_runtime: SimulationRuntime | None = None


def get_worker_runtime() -> SimulationRuntime:
    global _worker_runtime
    if _worker_runtime is None:
        _worker_runtime = build_worker_runtime(get_settings())
    return _worker_runtime
