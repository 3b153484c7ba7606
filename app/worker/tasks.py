import logging

from app.services.notifier import EmailMessage, deliver
from app.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="notify.send_email")
def send_email(to: str, subject: str, html: str) -> dict:
    sent = deliver(EmailMessage(to=to, subject=subject, html=html))
    return {"ok": sent, "to": to}


def enqueue_email(msg: EmailMessage) -> None:
    """Hand an email to the worker; a broker outage is logged, never raised."""
    try:
        send_email.delay(msg.to, msg.subject, msg.html)
    except Exception:
        logger.exception("could not dispatch email task to %s", msg.to)
