"""
Per-server mutation.

Runs the two dependent panel calls for one server: usage reset, then quota
update. The update is only attempted after the reset has been confirmed.
Failures are collected into the outcome instead of raised so one server can
never abort another.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from vps_carryover.client.panel_client import STEP_UPDATE, PanelClient
from vps_carryover.config.loader import OverUsagePolicy
from vps_carryover.core.errors import PanelError, TransportError
from vps_carryover.core.planner import DecisionKind, PlanDecision, plan_quota
from vps_carryover.storage.audit_log import AuditLog
from vps_carryover.storage.models import ChangeRecord, WorkItem

logger = logging.getLogger(__name__)


class OutcomeStatus(Enum):
    """Final state of one work item."""
    CHANGED = "changed"        # usage reset and quota rewritten
    RESET_ONLY = "reset-only"  # unlimited plan, usage reset
    SKIPPED = "skipped"        # no remote calls
    FAILED = "failed"


@dataclass(frozen=True)
class ResourceOutcome:
    """Structured result for one work item."""
    vps_id: str
    status: OutcomeStatus
    decision: Optional[PlanDecision] = None
    record: Optional[ChangeRecord] = None
    error: Optional[PanelError] = None

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    @property
    def step(self) -> Optional[str]:
        return self.error.step if self.error else None

    @property
    def retryable(self) -> bool:
        return isinstance(self.error, TransportError)


class MutationExecutor:
    """Applies the planned change for one server at a time.

    Safe to share between worker threads: the client is thread-safe and the
    audit log serializes its own writes.
    """

    def __init__(
        self,
        client: PanelClient,
        audit_log: AuditLog,
        policy: OverUsagePolicy = OverUsagePolicy.CLAMP,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.client = client
        self.audit_log = audit_log
        self.policy = policy
        self.clock = clock

    def execute(self, item: WorkItem) -> ResourceOutcome:
        """Plan and apply the change for one server.

        Args:
            item: Server to process

        Returns:
            ResourceOutcome describing what happened; never raises PanelError
        """
        decision = plan_quota(item.bandwidth_limit, item.used_bandwidth, self.policy)
        logger.info("─ VPS %s", item.vps_id)

        if not decision.requires_reset:
            self._log_skip(item, decision)
            return ResourceOutcome(item.vps_id, OutcomeStatus.SKIPPED, decision)

        if decision.kind == DecisionKind.UNLIMITED:
            logger.info("%s → unlimited plan, resetting usage only", item.vps_id)
        else:
            logger.info(
                "%s : %d/%d GB → 0/%d GB",
                item.vps_id, item.used_bandwidth, item.bandwidth_limit, decision.new_limit,
            )

        try:
            self.client.reset_usage(item.vps_id)
            logger.info("%s → usage reset OK", item.vps_id)

            if not decision.requires_update:
                return ResourceOutcome(item.vps_id, OutcomeStatus.RESET_ONLY, decision)

            self.client.update_quota(item.vps_id, decision.new_limit, item.plan_id)
        except PanelError as e:
            if e.vps_id is None:
                e.vps_id = item.vps_id
            logger.error("%s → %s failed: %s", item.vps_id, e.step or "request", e.describe())
            if e.step == STEP_UPDATE:
                logger.error(
                    "%s → usage was reset but limit is still %d (wanted %d)",
                    item.vps_id, item.bandwidth_limit, decision.new_limit,
                )
            return ResourceOutcome(item.vps_id, OutcomeStatus.FAILED, decision, error=e)

        logger.info("%s → limit updated (plan %s preserved)", item.vps_id, item.plan_id)
        record = ChangeRecord(
            timestamp=self.clock(),
            vps_id=item.vps_id,
            used_before=item.used_bandwidth,
            limit_before=item.bandwidth_limit,
            new_limit=decision.new_limit,
            plan_id=item.plan_id,
        )
        self.audit_log.append(record)
        return ResourceOutcome(item.vps_id, OutcomeStatus.CHANGED, decision, record=record)

    def _log_skip(self, item: WorkItem, decision: PlanDecision) -> None:
        if decision.kind == DecisionKind.OVER_USAGE:
            logger.warning(
                "%s : used (%d) > limit (%d), skipping (plan %s)",
                item.vps_id, item.used_bandwidth, item.bandwidth_limit, item.plan_id,
            )
        else:
            logger.info("%s : no usage this cycle, limit %d unchanged", item.vps_id, item.bandwidth_limit)
