"""
Web Push Transport

Delivers push messages through the browser push services using VAPID
(pywebpush). pywebpush is blocking, so every send runs in a worker
thread to keep the event loop free for the rest of the fan-out.
"""

import asyncio
import logging
from typing import Dict, Optional

from pywebpush import WebPushException, webpush

from app.core.config import settings
from app.schemas.jobs import PushSubscriptionInfo
from app.transports.base import PushSubscriptionGoneError, PushTransport, TransportError

logger = logging.getLogger(__name__)


class WebPushTransport(PushTransport):
    """
    Args:
        vapid_private_key: VAPID private key (PEM, DER base64 or file path)
        vapid_claims_email: Contact for the "sub" claim
        ttl: Seconds the push service keeps an undelivered message
    """

    def __init__(
        self,
        vapid_private_key: str,
        vapid_claims_email: str,
        ttl: int = 86400,
        headers: Optional[Dict[str, str]] = None
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_claims_email = vapid_claims_email
        self.ttl = ttl
        self.headers = headers or {"Urgency": "high"}

    async def send(self, subscription: PushSubscriptionInfo, payload: str) -> None:
        await asyncio.to_thread(self._send_sync, subscription, payload)

    def _send_sync(self, subscription: PushSubscriptionInfo, payload: str) -> None:
        subscription_info = {
            "endpoint": subscription.endpoint,
            "keys": {
                "p256dh": subscription.p256dh_key,
                "auth": subscription.auth_key,
            },
        }

        try:
            webpush(
                subscription_info=subscription_info,
                data=payload,
                vapid_private_key=self.vapid_private_key,
                # pywebpush mutates the claims dict, so build it per call
                vapid_claims={"sub": f"mailto:{self.vapid_claims_email}"},
                ttl=self.ttl,
                headers=dict(self.headers),
            )
        except WebPushException as e:
            response = getattr(e, "response", None)
            if response is not None and response.status_code in (404, 410):
                raise PushSubscriptionGoneError(subscription.endpoint) from e
            raise TransportError(f"Push delivery failed: {e}") from e
        except Exception as e:
            raise TransportError(f"Push delivery failed: {e}") from e


def create_webpush_transport() -> Optional[WebPushTransport]:
    """Transport from settings, or None when VAPID keys are not configured."""
    if not settings.VAPID_PRIVATE_KEY:
        logger.warning("VAPID keys not configured. Push notifications are disabled.")
        return None

    return WebPushTransport(
        vapid_private_key=settings.VAPID_PRIVATE_KEY,
        vapid_claims_email=settings.VAPID_CLAIMS_EMAIL,
        ttl=settings.PUSH_TTL_SECONDS,
    )
