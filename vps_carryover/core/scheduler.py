"""
Bounded fan-out of work items.

A fixed pool of worker threads drains the queued work items; each worker takes
one server through plan, reset, update and audit before picking up the next.
There is no ordering between servers.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Iterable, List

from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_exponential

from vps_carryover.core.errors import PanelError
from vps_carryover.core.executor import MutationExecutor, OutcomeStatus, ResourceOutcome
from vps_carryover.storage.models import WorkItem

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Aggregate outcome of one invocation."""
    outcomes: List[ResourceOutcome] = field(default_factory=list)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def changed(self) -> int:
        return self._count(OutcomeStatus.CHANGED)

    @property
    def reset_only(self) -> int:
        return self._count(OutcomeStatus.RESET_ONLY)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        return (
            f"processed={self.processed} failed={self.failed} changed={self.changed} "
            f"reset_only={self.reset_only} skipped={self.skipped}"
        )


class WorkScheduler:
    """Runs work items through the executor on a bounded thread pool."""

    def __init__(
        self,
        executor: MutationExecutor,
        max_workers: int = 5,
        retries: int = 0,
        backoff: float = 1.0,
    ):
        """Initialize the scheduler.

        Args:
            executor: Executor shared by all workers
            max_workers: Number of concurrent workers
            retries: Extra attempts for an item that failed on transport
            backoff: Base seconds of the exponential wait between attempts
        """
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.executor = executor
        self.max_workers = max_workers
        self.retries = retries
        self.backoff = backoff

    def run(self, items: Iterable[WorkItem]) -> RunResult:
        """Process every item and wait for all of them.

        Args:
            items: Work items; each id is processed at most once

        Returns:
            RunResult with exactly one outcome per distinct item
        """
        queue: List[WorkItem] = []
        seen = set()
        for item in items:
            if item.vps_id in seen:
                logger.warning("VPS %s queued twice, ignoring duplicate", item.vps_id)
                continue
            seen.add(item.vps_id)
            queue.append(item)

        result = RunResult()
        if not queue:
            return result

        workers = min(self.max_workers, len(queue))
        logger.info("Processing %d VPS(s) with %d worker(s)", len(queue), workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="carryover") as pool:
            futures = {pool.submit(self._process, item): item for item in queue}
            for future in as_completed(futures):
                item = futures[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    logger.exception("VPS %s → unexpected error", item.vps_id)
                    error = PanelError(f"unexpected error: {e}", vps_id=item.vps_id)
                    outcome = ResourceOutcome(item.vps_id, OutcomeStatus.FAILED, error=error)
                result.outcomes.append(outcome)

        return result

    def _process(self, item: WorkItem) -> ResourceOutcome:
        retrying = Retrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=self.backoff, max=30),
            retry=retry_if_result(lambda outcome: outcome.retryable),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=lambda state: logger.warning(
                "VPS %s → transport failure, retrying (attempt %d of %d)",
                item.vps_id, state.attempt_number + 1, self.retries + 1,
            ),
        )
        return retrying(self.executor.execute, item)
