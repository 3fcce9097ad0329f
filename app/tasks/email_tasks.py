"""
Email Tasks

send-email renders a template and hands it to the email transport.
Transport errors propagate so the email-dispatch queue retries them.
"""

import logging
from typing import Any, Dict, Optional

from app.schemas.jobs import EmailPayload
from app.transports.base import EmailTransport
from app.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


async def send_email(ctx: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    job = EmailPayload.model_validate(payload)

    logger.info(
        f"Sending '{job.template}' email to {job.to} "
        f"(job: {ctx.get('job_id', 'unknown')}, attempt: {ctx.get('job_try', 1)})"
    )

    transport: Optional[EmailTransport] = ctx.get("email_transport")
    if transport is None:
        logger.warning(f"Email transport not configured, '{job.subject}' to {job.to} not sent")
        return {"to": job.to, "subject": job.subject, "skipped": "email_not_configured"}

    await transport.send(job.to, job.subject, job.template, job.data)

    sent_at = ctx.get("clock", utc_now)()
    return {
        "to": job.to,
        "subject": job.subject,
        "template": job.template,
        "sent_at": sent_at.isoformat(),
    }
