"""
Errors

Exceptions raised along the outbox ingest, storage and delivery paths.
"""

from typing import Any, Dict, List, Optional


class FediboxError(Exception):
    """Base class for all server errors."""


class UnsupportedContentType(FediboxError):
    """The request body is not an ActivityPub media type."""

    def __init__(self, content_type: Optional[str]):
        self.content_type = content_type
        super().__init__(f"Unsupported content type: {content_type!r}")


class InvalidActivity(FediboxError):
    """The submission failed shape validation or was otherwise rejected."""

    message = "Invalid activity"

    def __init__(self, errors: Optional[List[Dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(self.message)


class ActorNotFound(FediboxError):
    """No local actor exists with the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"'{name}' not found on this instance")


class StoreError(FediboxError):
    """The record store could not complete an operation."""


class DeliveryFailure(FediboxError):
    """
    A single delivery to a remote inbox failed.

    Never propagated to the submission that scheduled the delivery;
    it is logged and optionally handed to the redelivery queue.
    """

    def __init__(self, inbox: str, activity: Dict[str, Any], actor_id: str,
                 status_code: Optional[int] = None, reason: str = ""):
        self.inbox = inbox
        self.activity = activity
        self.actor_id = actor_id
        self.status_code = status_code
        self.reason = reason
        detail = f"HTTP {status_code}" if status_code is not None else reason
        super().__init__(f"Delivery to {inbox} failed: {detail}")

    def to_message(self, attempt: int = 1) -> Dict[str, Any]:
        """
        Serialize the failure for the redelivery queue.

        Args:
            attempt: Number of delivery attempts already made

        Returns:
            JSON-serializable message dict
        """
        return {
            'inbox': self.inbox,
            'actor_id': self.actor_id,
            'activity': self.activity,
            'attempt': attempt,
            'last_error': str(self),
        }
