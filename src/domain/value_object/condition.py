from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from domain.enums import ConditionStatus, ConditionType


def utc_now_rfc3339() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class Condition:
    """A Value Object representing one observed condition of an Ec2Instance resource."""
    type: str
    status: str
    last_transition_time: str = ""
    reason: str = ""
    message: str = ""

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Condition":
        return Condition(
            type=data.get("type", ""),
            status=data.get("status", ConditionStatus.UNKNOWN.value),
            last_transition_time=data.get("lastTransitionTime", ""),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "lastTransitionTime": self.last_transition_time,
            "reason": self.reason,
            "message": self.message,
        }


def set_condition(
    conditions: list[Condition],
    type: ConditionType,
    status: ConditionStatus,
    reason: str = "",
    message: str = "",
) -> tuple[list[Condition], bool]:
    """Insert or update a condition by type.

    The transition time only moves when the status flips. Setting a condition
    identical to the current one leaves the list untouched.

    Returns:
        The resulting condition list and whether anything changed.
    """
    for index, existing in enumerate(conditions):
        if existing.type != type.value:
            continue
        if existing.status == status.value and existing.reason == reason and existing.message == message:
            return conditions, False
        transition_time = existing.last_transition_time
        if existing.status != status.value or not transition_time:
            transition_time = utc_now_rfc3339()
        updated = list(conditions)
        updated[index] = replace(
            existing,
            status=status.value,
            reason=reason,
            message=message,
            last_transition_time=transition_time,
        )
        return updated, True

    created = Condition(
        type=type.value,
        status=status.value,
        last_transition_time=utc_now_rfc3339(),
        reason=reason,
        message=message,
    )
    return [*conditions, created], True


def find_condition(conditions: list[Condition], type: ConditionType) -> Condition | None:
    return next((c for c in conditions if c.type == type.value), None)
