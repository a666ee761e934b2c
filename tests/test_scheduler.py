"""
Unit tests for the work scheduler.

Tests bounded concurrency, exactly-once outcomes, failure isolation and
transport retries.
"""

import os
import tempfile
import threading
import time

import httpx

from vps_carryover.client.panel_client import PanelClient
from vps_carryover.core.errors import TransportError
from vps_carryover.core.executor import MutationExecutor, OutcomeStatus, ResourceOutcome
from vps_carryover.core.scheduler import RunResult, WorkScheduler
from vps_carryover.demo.fake_panel import FakePanel
from vps_carryover.storage.audit_log import AuditLog
from vps_carryover.storage.models import WorkItem

from conftest import API_BASE


class _CountingExecutor:
    """Records concurrency while returning a fixed outcome."""

    def __init__(self, delay: float = 0.01, fail_ids=(), raise_ids=()):
        self.delay = delay
        self.fail_ids = set(fail_ids)
        self.raise_ids = set(raise_ids)
        self.active = 0
        self.peak = 0
        self.seen = []
        self._lock = threading.Lock()

    def execute(self, item: WorkItem) -> ResourceOutcome:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.seen.append(item.vps_id)
        try:
            time.sleep(self.delay)
            if item.vps_id in self.raise_ids:
                raise RuntimeError("boom")
            if item.vps_id in self.fail_ids:
                error = TransportError("refused", vps_id=item.vps_id, step="reset")
                return ResourceOutcome(item.vps_id, OutcomeStatus.FAILED, error=error)
            return ResourceOutcome(item.vps_id, OutcomeStatus.CHANGED)
        finally:
            with self._lock:
                self.active -= 1


def _items(count: int):
    return [WorkItem(str(i), 100, 10, 1) for i in range(count)]


class TestScheduler:
    """Test WorkScheduler."""

    def test_exactly_one_outcome_per_item(self):
        """M items give M outcomes, none processed twice."""
        executor = _CountingExecutor()

        result = WorkScheduler(executor, max_workers=4).run(_items(25))

        assert result.processed == 25
        assert sorted(o.vps_id for o in result.outcomes) == sorted(str(i) for i in range(25))
        assert sorted(executor.seen) == sorted(str(i) for i in range(25))

    def test_concurrency_bounded(self):
        """No more than N workers run at once."""
        executor = _CountingExecutor(delay=0.02)

        WorkScheduler(executor, max_workers=3).run(_items(12))

        assert 1 <= executor.peak <= 3

    def test_duplicates_dropped(self):
        """The same id is never processed twice."""
        executor = _CountingExecutor()
        items = _items(3) + [WorkItem("1", 100, 10, 1)]

        result = WorkScheduler(executor, max_workers=2).run(items)

        assert result.processed == 3
        assert executor.seen.count("1") == 1

    def test_failures_isolated(self):
        """A failing or crashing item does not stop the others."""
        executor = _CountingExecutor(fail_ids={"2"}, raise_ids={"4"})

        result = WorkScheduler(executor, max_workers=2).run(_items(6))

        assert result.processed == 6
        assert result.failed == 2
        assert result.changed == 4
        assert not result.success
        crashed = [o for o in result.outcomes if o.vps_id == "4"][0]
        assert "boom" in crashed.error.message

    def test_empty_queue(self):
        """An empty queue is a successful no-op."""
        result = WorkScheduler(_CountingExecutor()).run([])

        assert result.processed == 0
        assert result.success

    def test_no_retry_by_default(self):
        """Transport failures are not retried unless configured."""
        executor = _CountingExecutor(fail_ids={"0"})

        WorkScheduler(executor).run(_items(1))

        assert executor.seen == ["0"]

    def test_transport_retry(self):
        """Configured retries re-run a transport failure until it succeeds."""
        temp_dir = tempfile.mkdtemp()
        panel = FakePanel()
        panel.add_server(901, 3997, 3, plid=2)
        panel.fail("reset", error=httpx.ConnectError("refused"), times=2)
        client = PanelClient(API_BASE, transport=panel.transport())
        executor = MutationExecutor(client, AuditLog(os.path.join(temp_dir, "c.log")))

        result = WorkScheduler(executor, retries=2, backoff=0).run([WorkItem("901", 3997, 3, 2)])

        assert result.success
        assert result.changed == 1
        assert len(panel.calls_for("reset")) == 3
        client.close()

    def test_retries_exhausted(self):
        """The last failed outcome is reported once retries run out."""
        executor = _CountingExecutor(fail_ids={"0"})

        result = WorkScheduler(executor, retries=2, backoff=0).run(_items(1))

        assert executor.seen == ["0", "0", "0"]
        assert result.processed == 1
        assert result.failed == 1

    def test_semantic_failure_not_retried(self):
        """Only transport failures are retried."""
        temp_dir = tempfile.mkdtemp()
        panel = FakePanel()
        panel.add_server(901, 3997, 3)
        panel.fail("reset", body='{"done": 0}')
        client = PanelClient(API_BASE, transport=panel.transport())
        executor = MutationExecutor(client, AuditLog(os.path.join(temp_dir, "c.log")))

        result = WorkScheduler(executor, retries=3, backoff=0).run([WorkItem("901", 3997, 3, 1)])

        assert result.failed == 1
        assert len(panel.calls_for("reset")) == 1
        client.close()


class TestRunResult:
    """Test RunResult aggregation."""

    def test_counts(self):
        result = RunResult(outcomes=[
            ResourceOutcome("1", OutcomeStatus.CHANGED),
            ResourceOutcome("2", OutcomeStatus.RESET_ONLY),
            ResourceOutcome("3", OutcomeStatus.SKIPPED),
            ResourceOutcome("4", OutcomeStatus.FAILED),
        ])

        assert result.processed == 4
        assert (result.changed, result.reset_only, result.skipped, result.failed) == (1, 1, 1, 1)
        assert not result.success
        assert "failed=1" in result.summary()
