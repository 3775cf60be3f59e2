from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Sequence

from metricbridge.packages.federation.executor.cache import CacheLease
from metricbridge.packages.federation.models.plans import MetricLoadMetrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MetricLoadTask:
    metric_name: str
    run: Callable[[], CacheLease]
    pushed_predicates: int = 0


@dataclass(slots=True)
class SchedulerResult:
    leases: list[CacheLease]
    metrics: list[MetricLoadMetrics]

    def close(self) -> None:
        for lease in self.leases:
            lease.close()


class MetricLoadScheduler:
    """Runs metric loads on a bounded worker pool and waits for all of them.

    Results come back in task order regardless of completion order. If any load
    fails, the leases of the successful loads are closed and the first failure
    (in task order) is raised.
    """

    def __init__(self, *, max_workers: int) -> None:
        self._max_workers = max(1, max_workers)
        self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="metric-load")

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def run(self, tasks: Sequence[MetricLoadTask]) -> SchedulerResult:
        futures: list[Future] = [self._executor.submit(self._execute, task) for task in tasks]
        wait(futures)

        leases: list[CacheLease] = []
        metrics: list[MetricLoadMetrics] = []
        first_error: BaseException | None = None
        for task, future in zip(tasks, futures):
            error = future.exception()
            if error is not None:
                logger.warning("Metric load for '%s' failed: %s", task.metric_name, error)
                if first_error is None:
                    first_error = error
                continue
            lease, metric = future.result()
            leases.append(lease)
            metrics.append(metric)

        if first_error is not None:
            for lease in leases:
                lease.close()
            raise first_error
        return SchedulerResult(leases=leases, metrics=metrics)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _execute(task: MetricLoadTask) -> tuple[CacheLease, MetricLoadMetrics]:
        started_at = time.time()
        started = time.perf_counter()
        lease = task.run()
        metric = MetricLoadMetrics(
            metric_name=task.metric_name,
            rows=lease.table.row_count,
            runtime_ms=int((time.perf_counter() - started) * 1000),
            cached=lease.hit,
            pushed_predicates=task.pushed_predicates,
            started_at=started_at,
            finished_at=time.time(),
        )
        return lease, metric
