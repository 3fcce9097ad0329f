"""
Delivery Transport Interfaces

A transport hands one message to an external channel. Transports know
nothing about notifications, preferences or retries: they either
deliver, or raise TransportError and let the queue decide what happens
next.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from app.schemas.jobs import PushSubscriptionInfo


class TransportError(Exception):
    """
    Base exception for delivery failures.

    Raised inside a processor, it makes the job eligible for retry.
    """
    pass


class PushSubscriptionGoneError(TransportError):
    """The push service reported the endpoint as expired (404/410)."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__(f"Push subscription gone: {endpoint}")


class PushTransport(ABC):
    """Sends one web push message to one subscription."""

    @abstractmethod
    async def send(self, subscription: PushSubscriptionInfo, payload: str) -> None:
        """
        Args:
            subscription: Endpoint and keys
            payload: JSON-encoded message body

        Raises:
            PushSubscriptionGoneError: Endpoint no longer exists
            TransportError: Any other delivery failure
        """
        pass


class EmailTransport(ABC):
    """Sends one rendered email."""

    @abstractmethod
    async def send(self, to: str, subject: str, template: str, data: Dict[str, Any]) -> None:
        """
        Args:
            to: Recipient address
            subject: Subject line
            template: Template name ("notification", "notification-digest")
            data: Template variables

        Raises:
            TransportError: Delivery failed
        """
        pass
