"""
Data models for roster snapshots and change records.

Deserialization of panel payloads happens here and nowhere else.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union


PlanId = Union[int, str]

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _coerce_int(value: Any, field_name: str) -> int:
    """Convert a panel numeric field to int, treating missing values as 0.

    The panel reports numbers either as JSON numbers or as strings. Decimal
    values are truncated toward zero.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError, OverflowError):
        raise ValueError(f"'{field_name}' is not numeric: {value!r}")


def _coerce_plan_id(value: Any) -> PlanId:
    """Keep the plan id verbatim, defaulting to 0 when missing."""
    if value is None or value == "":
        return 0
    return value


@dataclass(frozen=True)
class ResourceSnapshot:
    """One server's quota state as reported at fetch time."""
    vps_id: str
    bandwidth_limit: int
    used_bandwidth: int
    plan_id: PlanId
    name: Optional[str] = None
    hostname: Optional[str] = None

    @classmethod
    def from_api(cls, key: Optional[str], payload: Dict[str, Any]) -> "ResourceSnapshot":
        """Build a snapshot from one entry of the panel's ``vs`` field.

        Args:
            key: Mapping key the entry was found under (None for list-shaped pages)
            payload: Raw entry

        Returns:
            ResourceSnapshot with defaults applied

        Raises:
            ValueError: If the entry has no usable id or a non-numeric quota field
        """
        if not isinstance(payload, dict):
            raise ValueError(f"roster entry must be an object, got {type(payload).__name__}")

        raw_id = payload.get("vpsid") if payload.get("vpsid") is not None else key
        if raw_id is None or str(raw_id).strip() == "":
            raise ValueError("roster entry has no vpsid")

        return cls(
            vps_id=str(raw_id).strip(),
            bandwidth_limit=_coerce_int(payload.get("bandwidth"), "bandwidth"),
            used_bandwidth=max(0, _coerce_int(payload.get("used_bandwidth"), "used_bandwidth")),
            plan_id=_coerce_plan_id(payload.get("plid")),
            name=payload.get("vps_name"),
            hostname=payload.get("hostname"),
        )


@dataclass(frozen=True)
class WorkItem:
    """Immutable unit of work handed to a single worker."""
    vps_id: str
    bandwidth_limit: int
    used_bandwidth: int
    plan_id: PlanId

    @classmethod
    def from_snapshot(cls, snapshot: ResourceSnapshot) -> "WorkItem":
        return cls(
            vps_id=snapshot.vps_id,
            bandwidth_limit=snapshot.bandwidth_limit,
            used_bandwidth=snapshot.used_bandwidth,
            plan_id=snapshot.plan_id,
        )


@dataclass(frozen=True)
class ChangeRecord:
    """Immutable record of a resource whose usage and quota were both rewritten.

    Written exactly once per fully successful resource and never modified.
    """
    timestamp: datetime
    vps_id: str
    used_before: int
    limit_before: int
    new_limit: int
    plan_id: PlanId

    def format_line(self) -> str:
        """Render the audit log line."""
        return (
            f"{self.timestamp.strftime(TIMESTAMP_FORMAT)}  VPS {self.vps_id}  "
            f"{self.used_before}/{self.limit_before} => 0/{self.new_limit} "
            f"(plan {self.plan_id})"
        )
