"""
Carry-over quota planning.

Maps a server's current (limit, used) pair to the quota for the next cycle.
Pure and synchronous: no I/O and no knowledge of the plan id, which is only
threaded through by the caller.

Rules, evaluated in order:
1. limit == 0 - unlimited plan, reset usage only
2. limit < 0 - negative allowance plan, new limit moves toward zero by usage
3. limit > 0, used <= limit - unused remainder becomes the new limit
4. limit > 0, used > limit - over-usage, resolved by the configured policy
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from vps_carryover.config.loader import OverUsagePolicy


class DecisionKind(Enum):
    """Classification of a planned quota change."""
    UNLIMITED = "unlimited"
    CARRY_OVER = "carry-over"
    OVER_USAGE = "over-usage"
    NO_CHANGE = "no-change"


@dataclass(frozen=True)
class PlanDecision:
    """Planner output for one server."""
    kind: DecisionKind
    new_limit: Optional[int] = None

    @property
    def requires_reset(self) -> bool:
        """Whether the usage counter must be reset."""
        if self.kind == DecisionKind.UNLIMITED:
            return True
        return self.requires_update

    @property
    def requires_update(self) -> bool:
        """Whether a quota update call follows the reset."""
        if self.kind in (DecisionKind.CARRY_OVER, DecisionKind.OVER_USAGE):
            return self.new_limit is not None
        return False


def plan_quota(
    bandwidth_limit: int,
    used_bandwidth: int,
    policy: OverUsagePolicy = OverUsagePolicy.CLAMP,
) -> PlanDecision:
    """Compute the next cycle's quota.

    Args:
        bandwidth_limit: Current limit (0 means unlimited, negative is allowed)
        used_bandwidth: Usage in the current cycle
        policy: How to resolve usage above a positive limit

    Returns:
        PlanDecision; new_limit is only set when the limit is non-zero

    Raises:
        ValueError: If used_bandwidth is negative
    """
    if used_bandwidth < 0:
        raise ValueError("used_bandwidth must be >= 0")

    if bandwidth_limit == 0:
        return PlanDecision(DecisionKind.UNLIMITED)

    if bandwidth_limit > 0 and used_bandwidth > bandwidth_limit:
        if policy == OverUsagePolicy.SKIP:
            return PlanDecision(DecisionKind.OVER_USAGE)
        if policy == OverUsagePolicy.ALLOW_NEGATIVE:
            return PlanDecision(DecisionKind.OVER_USAGE, bandwidth_limit - used_bandwidth)
        return PlanDecision(DecisionKind.OVER_USAGE, 0)

    if bandwidth_limit < 0:
        new_limit = bandwidth_limit + used_bandwidth
    else:
        new_limit = bandwidth_limit - used_bandwidth

    # Nothing consumed, nothing to carry
    if new_limit == bandwidth_limit:
        return PlanDecision(DecisionKind.NO_CHANGE, new_limit)
    return PlanDecision(DecisionKind.CARRY_OVER, new_limit)
