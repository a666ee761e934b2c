"""
Carry-over engine entry points.

``run_all``, ``run_one`` and ``list_roster`` are the only operations callers
need; the CLI is a thin layer over them.
"""

import logging
from typing import List, Optional

import httpx

from vps_carryover.client.panel_client import PanelClient
from vps_carryover.config.loader import PanelConfig
from vps_carryover.storage.audit_log import AuditLog
from vps_carryover.storage.models import ResourceSnapshot, WorkItem

from .executor import MutationExecutor
from .roster import RosterFetcher
from .scheduler import RunResult, WorkScheduler

logger = logging.getLogger(__name__)


class CarryOverEngine:
    """Wires fetcher, executor and scheduler from one configuration value."""

    def __init__(
        self,
        config: PanelConfig,
        client: Optional[PanelClient] = None,
        audit_log: Optional[AuditLog] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the engine.

        Args:
            config: Runtime configuration
            client: Panel client (built from config when omitted)
            audit_log: Change log (defaults to the configured change log path)
            transport: Transport for a client built here
        """
        self.config = config
        self._owns_client = client is None
        self.client = client or PanelClient.from_config(config, transport=transport)
        self.audit_log = audit_log or AuditLog(config.change_log_path)
        self.fetcher = RosterFetcher(self.client, config.page_size, config.max_pages)
        self.executor = MutationExecutor(self.client, self.audit_log, config.over_usage_policy)
        self.scheduler = WorkScheduler(
            self.executor, max_workers=config.parallel_jobs, retries=config.retries
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "CarryOverEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def list_roster(self) -> List[ResourceSnapshot]:
        """Fetch the roster, sorted by numeric id where possible.

        Raises:
            PanelError: If the roster cannot be fetched
        """
        roster = self.fetcher.fetch()
        return sorted(roster.values(), key=_id_sort_key)

    def run_all(self) -> RunResult:
        """Carry over bandwidth for every server in the roster.

        Raises:
            PanelError: If the roster cannot be fetched (fatal for the run)
        """
        logger.info("Fetching VPS data...")
        roster = self.fetcher.fetch()
        if not roster:
            logger.info("No VPS to process.")
            return RunResult()

        items = [WorkItem.from_snapshot(snapshot) for snapshot in sorted(roster.values(), key=_id_sort_key)]
        return self._schedule(items)

    def run_one(self, vps_id: str) -> RunResult:
        """Carry over bandwidth for a single server.

        Raises:
            NotFound: If the server cannot be located
            PanelError: If the roster cannot be fetched
        """
        logger.info("Fetching VPS data...")
        snapshot = self.fetcher.find(vps_id)
        return self._schedule([WorkItem.from_snapshot(snapshot)])

    def _schedule(self, items: List[WorkItem]) -> RunResult:
        logger.info(
            "Over-usage policy: %s, parallel jobs: %d",
            self.config.over_usage_policy.value, self.config.parallel_jobs,
        )
        result = self.scheduler.run(items)

        for outcome in result.outcomes:
            if outcome.failed:
                logger.error("FAILED %s", outcome.error.describe() if outcome.error else outcome.vps_id)

        if result.success:
            logger.info("Done. %s", result.summary())
        else:
            logger.error("Done with failures. %s", result.summary())
        return result


def _id_sort_key(snapshot: ResourceSnapshot):
    vps_id = snapshot.vps_id
    return (0, int(vps_id), vps_id) if vps_id.isdigit() else (1, 0, vps_id)
