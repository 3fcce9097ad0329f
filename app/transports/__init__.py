from app.transports.base import (
    EmailTransport,
    PushSubscriptionGoneError,
    PushTransport,
    TransportError,
)
from app.transports.smtp import SmtpEmailTransport, create_smtp_transport
from app.transports.webpush import WebPushTransport, create_webpush_transport

__all__ = [
    "EmailTransport",
    "PushSubscriptionGoneError",
    "PushTransport",
    "SmtpEmailTransport",
    "TransportError",
    "WebPushTransport",
    "create_smtp_transport",
    "create_webpush_transport",
]
