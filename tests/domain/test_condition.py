"""Tests for status conditions."""

from domain.enums import ConditionStatus, ConditionType
from domain.value_object.condition import Condition, find_condition, set_condition


def test_set_condition_appends_new_type():
    conditions, changed = set_condition([], ConditionType.READY, ConditionStatus.TRUE, "InstanceRunning", "ok")

    assert changed is True
    assert len(conditions) == 1
    assert conditions[0].type == "Ready"
    assert conditions[0].status == "True"
    assert conditions[0].last_transition_time.endswith("Z")


def test_identical_condition_is_not_a_change():
    conditions, _ = set_condition([], ConditionType.READY, ConditionStatus.TRUE, "InstanceRunning", "ok")

    updated, changed = set_condition(conditions, ConditionType.READY, ConditionStatus.TRUE, "InstanceRunning", "ok")

    assert changed is False
    assert updated is conditions


def test_transition_time_kept_when_status_unchanged():
    existing = [Condition("Ready", "False", "2024-01-01T00:00:00Z", "InstanceNotRunning", "pending")]

    updated, changed = set_condition(
        existing, ConditionType.READY, ConditionStatus.FALSE, "InstanceNotRunning", "stopped"
    )

    assert changed is True
    assert updated[0].message == "stopped"
    assert updated[0].last_transition_time == "2024-01-01T00:00:00Z"
    assert existing[0].message == "pending"


def test_transition_time_moves_when_status_flips():
    existing = [Condition("Ready", "False", "2024-01-01T00:00:00Z", "InstanceNotRunning", "")]

    updated, _ = set_condition(existing, ConditionType.READY, ConditionStatus.TRUE, "InstanceRunning", "")

    assert updated[0].status == "True"
    assert updated[0].last_transition_time != "2024-01-01T00:00:00Z"


def test_other_conditions_are_untouched():
    existing = [Condition("SpecValid", "True", "2024-01-01T00:00:00Z", "SpecAccepted", "")]

    updated, _ = set_condition(existing, ConditionType.READY, ConditionStatus.TRUE, "InstanceRunning", "")

    assert [c.type for c in updated] == ["SpecValid", "Ready"]
    assert find_condition(updated, ConditionType.SPEC_VALID) == existing[0]
    assert find_condition(updated, ConditionType.INSTANCE_MISSING) is None


def test_condition_wire_format():
    condition = Condition.from_dict({"type": "Ready", "status": "True", "lastTransitionTime": "t", "reason": "r"})

    assert condition.to_dict() == {
        "type": "Ready",
        "status": "True",
        "lastTransitionTime": "t",
        "reason": "r",
        "message": "",
    }
