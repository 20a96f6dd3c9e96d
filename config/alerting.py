"""
Engine alerting.

Every alert is logged on the ``alerting`` logger. When configured, it also
goes to a Slack webhook, and critical alerts are emailed to ALERT_EMAIL.

Alerts name their ``source`` (the scheduled loop or engine component that
raised them), carry a ``context`` dict of engine fields (match_id,
consecutive_failures, ...) and the correlation id of the run, so an alert
can be traced back to the log lines of the cycle that produced it.

Usage:
    send_alert("critical", "learning cycle failing", "last error: store down",
               source="learning-loop", context={"consecutive_failures": 3})
"""
import logging
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings

from config.logging_filters import get_correlation_id

logger = logging.getLogger("alerting")

SLACK_EMOJI = {
    "critical": ":red_circle:",
    "warning": ":warning:",
}


def _context_lines(context: Dict[str, Any], correlation_id: str) -> List[str]:
    lines = [f"{key}: {value}" for key, value in sorted(context.items())]
    if correlation_id:
        lines.append(f"correlation_id: {correlation_id}")
    return lines


def send_alert(
    severity: str,
    title: str,
    detail: str = "",
    source: str = "engine",
    context: Optional[Dict[str, Any]] = None,
    correlation_id: Optional[str] = None,
) -> None:
    """
    Send alert through configured channels.

    Args:
        severity: "critical", "warning", or "info"
        title: Short alert title
        detail: Additional context
        source: Loop or component raising the alert
        context: Engine fields to attach (ids, counters)
        correlation_id: Run to trace; defaults to the current one
    """
    cid = correlation_id if correlation_id is not None else get_correlation_id()
    lines = _context_lines(context or {}, cid)

    log_fn = {
        "critical": logger.critical,
        "warning": logger.warning,
    }.get(severity, logger.info)
    log_fn(
        f"ALERT [{severity.upper()}] {source}: {title} -- {detail}",
        extra={"alert_source": source, "alert_context": context or {}},
    )

    webhook = getattr(settings, "SLACK_WEBHOOK_URL", "")
    if webhook:
        emoji = SLACK_EMOJI.get(severity, ":information_source:")
        parts = [f"{emoji} *{title}* ({source})"]
        if detail:
            parts.append(detail)
        parts.extend(f"> {line}" for line in lines)
        try:
            requests.post(webhook, json={"text": "\n".join(parts)}, timeout=5)
        except Exception:
            logger.exception(f"Failed to send Slack alert from {source}")

    # Email for critical alerts only
    alert_email = getattr(settings, "ALERT_EMAIL", "")
    if alert_email and severity == "critical":
        try:
            from django.core.mail import send_mail
            send_mail(
                subject=f"[Advisor Matching CRITICAL] {source}: {title}",
                message="\n".join([detail or title, "", *lines]),
                from_email=None,
                recipient_list=[alert_email],
                fail_silently=True,
            )
        except Exception:
            logger.exception(f"Failed to send email alert from {source}")
