"""
Message rendering for outgoing notifications.

Email bodies are Jinja2 templates under ``email_templates/``; SMS and in-app
payloads are short enough to build inline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from app.models.alert import AlertCategory, AlertSeverity, AlertStatus, AlertType

SMS_MAX_LENGTH = 160

SEVERITY_COLORS = {
    AlertSeverity.LOW.value: "#28a745",
    AlertSeverity.MEDIUM.value: "#ffc107",
    AlertSeverity.HIGH.value: "#fd7e14",
    AlertSeverity.CRITICAL.value: "#dc3545",
}

_template_env = Environment(
    loader=PackageLoader("app.notifications", "email_templates"),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass
class TransientAlert:
    """Alert-shaped message that is delivered but never stored"""

    title: str
    description: str
    severity: str = AlertSeverity.LOW.value
    category: str = AlertCategory.SYSTEM.value
    type: str = AlertType.SYSTEM.value
    status: str = AlertStatus.ACTIVE.value
    created_at: datetime = field(default_factory=datetime.utcnow)
    district: Optional[str] = None
    address: Optional[str] = None
    threshold: Optional[dict] = None
    id: Optional[int] = None
    alert_id: str = "system"


@dataclass
class AlertMessage:
    """One rendering of an alert for every channel"""

    subject: str
    text: str
    html: str
    sms: str
    payload: Dict[str, Any]


def _location(alert) -> Optional[str]:
    return alert.district or alert.address or None


def _sensor_value(alert) -> Optional[str]:
    threshold = alert.threshold
    if not threshold or threshold.get("actual_value") is None:
        return None
    unit = threshold.get("unit") or ""
    return f"{threshold['actual_value']} {unit}".strip()


def _truncate_sms(body: str) -> str:
    if len(body) <= SMS_MAX_LENGTH:
        return body
    return body[:SMS_MAX_LENGTH - 3] + "..."


def build_alert_message(alert, frontend_url: str) -> AlertMessage:
    """Render ``alert`` (stored or transient) for email, SMS and in-app delivery"""
    link = f"{frontend_url.rstrip('/')}/alerts/{alert.id}" if alert.id is not None else None
    created = alert.created_at or datetime.utcnow()
    context = {
        "alert": alert,
        "severity_color": SEVERITY_COLORS.get(alert.severity, "#007bff"),
        "created": created.strftime("%Y-%m-%d %H:%M UTC"),
        "location": _location(alert),
        "sensor_value": _sensor_value(alert),
        "link": link,
    }

    sms = _truncate_sms(
        f"Smart City Alert: {alert.title}\n"
        f"Severity: {alert.severity}\n"
        f"Time: {context['created']}"
    )

    payload = {
        "type": "alert",
        "id": alert.id,
        "alert_id": alert.alert_id,
        "title": alert.title,
        "message": alert.description,
        "severity": alert.severity,
        "category": alert.category,
        "status": alert.status,
        "url": link,
        "timestamp": datetime.utcnow().isoformat(),
        "read": False,
    }

    return AlertMessage(
        subject=f"Smart City Alert: {alert.title}",
        text=_template_env.get_template("alert.txt").render(**context),
        html=_template_env.get_template("alert.html").render(**context),
        sms=sms,
        payload=payload,
    )


def build_summary_message(
    period: str,
    recipient_name: str,
    start: datetime,
    end: datetime,
    severity_counts: Dict[str, int],
    frontend_url: str,
) -> AlertMessage:
    """Render the daily or weekly summary report email"""
    rows: List[Dict[str, Any]] = [
        {"severity": severity.value, "count": severity_counts.get(severity.value, 0)}
        for severity in AlertSeverity
    ]
    context = {
        "period_title": period.capitalize(),
        "recipient_name": recipient_name,
        "start": start.strftime("%Y-%m-%d"),
        "end": end.strftime("%Y-%m-%d"),
        "rows": rows,
        "total": sum(severity_counts.values()),
        "dashboard_url": f"{frontend_url.rstrip('/')}/dashboard",
    }
    subject = f"Smart City {period.capitalize()} Summary Report"
    text = _template_env.get_template("summary.txt").render(**context)
    return AlertMessage(
        subject=subject,
        text=text,
        html=_template_env.get_template("summary.html").render(**context),
        sms=_truncate_sms(f"{subject}: {context['total']} alerts"),
        payload={"type": "summary", "period": period, "total": context["total"]},
    )
