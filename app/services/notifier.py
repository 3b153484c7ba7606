from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str


class ResendClient:
    """Outbound mail over the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        url: str = "https://api.resend.com/emails",
        timeout_s: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.url = url
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def send(self, msg: EmailMessage) -> None:
        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": [msg.to],
            "subject": msg.subject,
            "html": msg.html,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        with httpx.Client(timeout=self.timeout_s, transport=self._transport) as client:
            r = client.post(self.url, json=payload, headers=headers)
            r.raise_for_status()


def default_mailer() -> ResendClient:
    return ResendClient(
        api_key=settings.resend_api_key,
        sender=settings.resend_from,
        url=settings.resend_api_url,
        timeout_s=settings.notify_timeout_s,
    )


def deliver(msg: EmailMessage, mailer: Optional[ResendClient] = None) -> bool:
    """Send one email. Never raises: notification is best-effort."""
    mailer = mailer or default_mailer()
    if not mailer.configured or not msg.to:
        return False
    try:
        mailer.send(msg)
        return True
    except Exception:
        logger.exception("email to %s failed (subject=%r)", msg.to, msg.subject)
        return False


def status_link(family: str, job_id: str) -> str:
    return f"{settings.public_base.rstrip('/')}/api/{family}/status?id={job_id}"


def compose(family: str, record: Dict[str, Any]) -> Optional[EmailMessage]:
    """Email for a status transition, or ``None`` when there is nobody to tell."""
    to = (record.get("email") or "").strip()
    if not to:
        return None

    job_id = record.get("id", "")
    status = record.get("status", "")
    sku = record.get("sku") or family
    minutes = record.get("minutes")
    link = status_link(family, job_id)

    if status == "queued":
        subject = f"Your {family} job is queued"
        lead = f"Job <b>{job_id}</b> queued."
    elif status == "running":
        subject = f"Indianode: job {job_id} is running"
        lead = f"Job <b>{job_id}</b> has been picked up by a provider and is running."
    else:
        subject = f"Indianode: job {job_id} {status}"
        lead = f"Job <b>{job_id}</b> finished with status <b>{status}</b>."

    parts = [
        f"<p>{lead}</p>",
        f"<p>SKU: <b>{sku}</b> • Minutes: <b>{minutes}</b></p>",
    ]
    if record.get("log_url"):
        parts.append(f'<p>Logs: <a href="{record["log_url"]}">{record["log_url"]}</a></p>')
    if record.get("message"):
        parts.append(f"<p>Note: {record['message']}</p>")
    parts.append(f'<p>Check status: <a href="{link}">status link</a></p>')
    return EmailMessage(to=to, subject=subject, html="\n".join(parts))
