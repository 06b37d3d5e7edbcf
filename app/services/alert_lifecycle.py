"""
Alert lifecycle rules.

The functions in this module never touch the database. Each one inspects an
``AlertSnapshot`` and either raises ``InvalidTransition`` or returns a
``Transition``: the column changes, the history rows to append and the guard
the store must check when it applies the update. ``AlertRepository`` applies
transitions atomically.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from app.core.exceptions import InvalidTransition, EscalationLimitReached, ValidationError
from app.models.alert import AlertStatus, AlertSeverity, TERMINAL_STATUSES

SEVERITY_BASE_PRIORITY = {
    AlertSeverity.CRITICAL.value: 10,
    AlertSeverity.HIGH.value: 8,
    AlertSeverity.MEDIUM.value: 5,
    AlertSeverity.LOW.value: 2,
}
SEVERITY_RANK = {
    AlertSeverity.LOW.value: 0,
    AlertSeverity.MEDIUM.value: 1,
    AlertSeverity.HIGH.value: 2,
    AlertSeverity.CRITICAL.value: 3,
}
ESCALATION_PRIORITY_STEP = 2
MAX_PRIORITY = 10
DEFAULT_MAX_ESCALATION_LEVEL = 5

OPEN_STATUSES: Tuple[str, ...] = (AlertStatus.ACTIVE.value, AlertStatus.ACKNOWLEDGED.value)


def derive_priority(severity: str, escalation_level: int = 0) -> int:
    """Severity base priority plus two per escalation, capped at 10"""
    try:
        base = SEVERITY_BASE_PRIORITY[severity]
    except KeyError:
        raise ValidationError(f"Unknown severity '{severity}'", field_errors={"severity": "invalid"})
    return min(base + ESCALATION_PRIORITY_STEP * escalation_level, MAX_PRIORITY)


@dataclass(frozen=True)
class AlertSnapshot:
    """The lifecycle-relevant state of an alert at one point in time"""

    status: str
    severity: str
    priority: int
    escalation_level: int = 0

    @classmethod
    def from_alert(cls, alert) -> "AlertSnapshot":
        return cls(
            status=alert.status,
            severity=alert.severity,
            priority=alert.priority,
            escalation_level=alert.escalation_level or 0,
        )


@dataclass
class Transition:
    """State change to apply to one alert in a single atomic write"""

    event: str
    expected_statuses: Tuple[str, ...]
    changes: Dict[str, Any] = field(default_factory=dict)
    guard: Dict[str, Any] = field(default_factory=dict)
    resolution_actions: List[Dict[str, Any]] = field(default_factory=list)
    escalation: Optional[Dict[str, Any]] = None


def acknowledge(
    snapshot: AlertSnapshot,
    actor_id: int,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    """active -> acknowledged"""
    if snapshot.status == AlertStatus.ACKNOWLEDGED.value:
        raise InvalidTransition("Alert is already acknowledged", current_status=snapshot.status)
    if snapshot.status != AlertStatus.ACTIVE.value:
        raise InvalidTransition("Only active alerts can be acknowledged", current_status=snapshot.status)

    return Transition(
        event="acknowledged",
        expected_statuses=(AlertStatus.ACTIVE.value,),
        changes={
            "status": AlertStatus.ACKNOWLEDGED.value,
            "acknowledged_by": actor_id,
            "acknowledged_at": now or datetime.utcnow(),
            "acknowledged_notes": notes or None,
        },
    )


def resolve(
    snapshot: AlertSnapshot,
    actor_id: int,
    notes: Optional[str] = None,
    actions: Optional[List[Dict[str, Any]]] = None,
    now: Optional[datetime] = None,
) -> Transition:
    """active | acknowledged -> resolved"""
    if snapshot.status == AlertStatus.RESOLVED.value:
        raise InvalidTransition("Alert is already resolved", current_status=snapshot.status)
    if snapshot.status not in OPEN_STATUSES:
        raise InvalidTransition(
            f"Alerts in status '{snapshot.status}' cannot be resolved",
            current_status=snapshot.status,
        )

    now = now or datetime.utcnow()
    resolution_actions = []
    for action in actions or []:
        if not action.get("action"):
            raise ValidationError(
                "Every resolution action needs a description",
                field_errors={"actions": "action is required"},
            )
        resolution_actions.append({
            "action": action["action"],
            "notes": action.get("notes"),
            "performed_by": actor_id,
            "performed_at": now,
        })

    return Transition(
        event="resolved",
        expected_statuses=OPEN_STATUSES,
        changes={
            "status": AlertStatus.RESOLVED.value,
            "resolved_by": actor_id,
            "resolved_at": now,
            "resolution_notes": notes or None,
        },
        resolution_actions=resolution_actions,
    )


def escalate(
    snapshot: AlertSnapshot,
    actor_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    max_level: int = DEFAULT_MAX_ESCALATION_LEVEL,
) -> Transition:
    """Raise the escalation level by one and the priority by two"""
    if snapshot.status not in OPEN_STATUSES:
        raise InvalidTransition(
            "Only active or acknowledged alerts can be escalated",
            current_status=snapshot.status,
        )
    if snapshot.escalation_level >= max_level:
        raise EscalationLimitReached(
            f"Alert is already at the maximum escalation level ({max_level})",
            current_status=snapshot.status,
            details={"escalation_level": snapshot.escalation_level},
        )

    now = now or datetime.utcnow()
    level = snapshot.escalation_level + 1
    return Transition(
        event="escalated",
        expected_statuses=OPEN_STATUSES,
        guard={"escalation_level": snapshot.escalation_level},
        changes={
            "escalation_level": level,
            "priority": min(snapshot.priority + ESCALATION_PRIORITY_STEP, MAX_PRIORITY),
        },
        escalation={
            "level": level,
            "escalated_by": actor_id,
            "escalated_at": now,
            "reason": reason or None,
        },
    )


def change_severity(snapshot: AlertSnapshot, severity: str) -> Transition:
    """Reclassify an open alert; priority follows the new severity"""
    if snapshot.status in TERMINAL_STATUSES:
        raise InvalidTransition(
            "Severity can only be changed on active or acknowledged alerts",
            current_status=snapshot.status,
        )
    if severity == snapshot.severity:
        raise InvalidTransition(f"Alert severity is already '{severity}'", current_status=snapshot.status)

    return Transition(
        event="severity_changed",
        expected_statuses=OPEN_STATUSES,
        guard={"severity": snapshot.severity},
        changes={
            "severity": severity,
            "priority": derive_priority(severity, snapshot.escalation_level),
        },
    )


def is_severity_upgrade(previous: str, current: str) -> bool:
    return SEVERITY_RANK.get(current, -1) > SEVERITY_RANK.get(previous, -1)


def mark_false_positive(snapshot: AlertSnapshot, notes: Optional[str] = None) -> Transition:
    """active | acknowledged -> false_positive; resolved_at stays unset"""
    if snapshot.status == AlertStatus.FALSE_POSITIVE.value:
        raise InvalidTransition("Alert is already marked as a false positive", current_status=snapshot.status)
    if snapshot.status not in OPEN_STATUSES:
        raise InvalidTransition(
            "Only active or acknowledged alerts can be marked as false positives",
            current_status=snapshot.status,
        )

    return Transition(
        event="false_positive",
        expected_statuses=OPEN_STATUSES,
        changes={
            "status": AlertStatus.FALSE_POSITIVE.value,
            "resolution_notes": notes or None,
        },
    )


def expire(snapshot: AlertSnapshot) -> Transition:
    """System transition once ``expires_at`` has elapsed"""
    if snapshot.status in TERMINAL_STATUSES:
        raise InvalidTransition(
            f"Alerts in status '{snapshot.status}' cannot expire",
            current_status=snapshot.status,
        )

    return Transition(
        event="expired",
        expected_statuses=OPEN_STATUSES,
        changes={"status": AlertStatus.EXPIRED.value},
    )
