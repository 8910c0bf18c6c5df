"""
Federation Delivery

Resolves the recipients of an outbound activity to their inboxes and
delivers one signed POST per distinct inbox, concurrently. Delivery runs
as a background task decoupled from the submission that triggered it:
failures are logged and handed to an optional ``on_failure`` hook (the
redelivery queue), never raised back to the caller.
"""

import asyncio
import copy
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import httpx

from ..config import Settings
from ..database import RecordStore, strip_internal
from ..errors import DeliveryFailure
from .constants import ACCEPT_HEADER, ACTIVITY_MEDIA_TYPE, ADDRESSING_FIELDS, BLIND_FIELDS, PUBLIC_ADDRESSES
from .signature import key_id_for, sign_request

logger = logging.getLogger(__name__)

FailureHook = Callable[[DeliveryFailure], Union[None, Awaitable[None]]]


def hide_blind_recipients(activity: Dict[str, Any]) -> Dict[str, Any]:
    """
    Copy of ``activity`` without ``bto``/``bcc``, on the activity and on
    its embedded object.
    """
    visible = {k: v for k, v in activity.items() if k not in BLIND_FIELDS}
    obj = visible.get('object')
    if isinstance(obj, dict):
        visible['object'] = {k: v for k, v in obj.items() if k not in BLIND_FIELDS}
    return visible


def serialize_for_delivery(activity: Dict[str, Any]) -> bytes:
    """
    Serialize an activity for remote inboxes.

    Blind recipients are removed before it leaves the server.
    """
    delivered = strip_internal(hide_blind_recipients(activity))
    return json.dumps(delivered).encode('utf-8')


class Dispatcher:
    """Handles signed delivery of outgoing activities."""

    def __init__(self, store: RecordStore, client: httpx.AsyncClient, settings: Settings,
                 on_failure: Optional[FailureHook] = None):
        """
        Initialize the dispatcher.

        Args:
            store: Record store holding the senders' private keys
            client: HTTP client with its own timeout, independent of any request
            settings: Instance settings
            on_failure: Optional hook receiving every DeliveryFailure
        """
        self.store = store
        self.client = client
        self.settings = settings
        self.on_failure = on_failure
        self._tasks: Set[asyncio.Task] = set()

    def recipients(self, activity: Dict[str, Any], actor_id: Optional[str] = None) -> List[str]:
        """
        Expand the addressing fields into distinct remote recipient IRIs.

        Public markers, IRIs on this instance and the sender are skipped.

        Args:
            activity: Outbound activity
            actor_id: Sender IRI

        Returns:
            Recipient IRIs in first-seen order
        """
        targets = []
        for field in ADDRESSING_FIELDS:
            values = activity.get(field)
            if values is None:
                continue
            if not isinstance(values, list):
                values = [values]
            for value in values:
                iri = value.get('id') if isinstance(value, dict) else value
                if not isinstance(iri, str) or not iri:
                    continue
                if iri in PUBLIC_ADDRESSES or iri == actor_id or self.settings.is_local(iri):
                    continue
                if iri not in targets:
                    targets.append(iri)
        return targets

    async def resolve_inbox(self, iri: str) -> Optional[str]:
        """
        Fetch a remote actor and return its inbox.

        Args:
            iri: Remote actor IRI

        Returns:
            Inbox URL, or None if the actor could not be resolved
        """
        try:
            response = await self.client.get(iri, headers={'Accept': ACCEPT_HEADER})
            response.raise_for_status()
            document = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not resolve recipient {iri}: {e!r}")
            return None

        inbox = document.get('inbox') if isinstance(document, dict) else None
        if not isinstance(inbox, str) or not inbox:
            logger.warning(f"Recipient {iri} has no inbox")
            return None
        return inbox

    async def load_private_key(self, actor_id: str) -> Optional[str]:
        actor = await asyncio.to_thread(self.store.get, actor_id, include_meta=True)
        if actor is None:
            return None
        return (actor.get('_meta') or {}).get('privateKey')

    def dispatch(self, activity: Dict[str, Any], actor_id: str) -> asyncio.Task:
        """
        Schedule delivery in the background and return immediately.

        Args:
            activity: Persisted activity
            actor_id: Sending local actor IRI

        Returns:
            The delivery task
        """
        task = asyncio.create_task(self.deliver(copy.deepcopy(activity), actor_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def deliver(self, activity: Dict[str, Any], actor_id: str) -> List[DeliveryFailure]:
        """
        Deliver an activity to all of its remote recipients.

        Never raises; every failure is logged and reported to ``on_failure``.

        Returns:
            The failed deliveries
        """
        try:
            targets = self.recipients(activity, actor_id)
            if not targets:
                return []

            resolved = await asyncio.gather(*(self.resolve_inbox(iri) for iri in targets))
            inboxes = list(dict.fromkeys(inbox for inbox in resolved if inbox))
            if not inboxes:
                return []

            private_key = await self.load_private_key(actor_id)
            if not private_key:
                logger.error(f"No signing key for {actor_id}, dropping {activity.get('id')}")
                return []

            results = await asyncio.gather(
                *(self.deliver_to_inbox(activity, actor_id, inbox, private_key) for inbox in inboxes),
                return_exceptions=True,
            )
        except Exception:
            logger.exception(f"Delivery of {activity.get('id')} aborted")
            return []

        failures = []
        for inbox, result in zip(inboxes, results):
            if isinstance(result, DeliveryFailure):
                failures.append(result)
            elif isinstance(result, BaseException):
                logger.error(f"Unexpected error delivering to {inbox}: {result!r}")
        for failure in failures:
            logger.warning(str(failure))
            await self._report(failure)
        return failures

    async def deliver_to_inbox(self, activity: Dict[str, Any], actor_id: str, inbox: str,
                               private_key: Optional[str] = None) -> None:
        """
        Make one signed POST to a remote inbox.

        Args:
            activity: Activity to deliver
            actor_id: Sending local actor IRI
            inbox: Remote inbox URL
            private_key: Sender private key PEM, loaded from the store if omitted

        Raises:
            DeliveryFailure: On a transport error or a non-2xx response
        """
        if private_key is None:
            private_key = await self.load_private_key(actor_id)
            if not private_key:
                raise DeliveryFailure(inbox, activity, actor_id, reason="no signing key")

        body = serialize_for_delivery(activity)
        headers = sign_request('POST', inbox, body, private_key, key_id_for(actor_id))
        headers['Content-Type'] = ACTIVITY_MEDIA_TYPE

        try:
            response = await self.client.post(inbox, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryFailure(inbox, activity, actor_id, reason=repr(e)) from e

        if not response.is_success:
            raise DeliveryFailure(inbox, activity, actor_id, status_code=response.status_code)
        logger.info(f"Delivered {activity.get('id')} to {inbox}")

    async def _report(self, failure: DeliveryFailure):
        if self.on_failure is None:
            return
        try:
            result = self.on_failure(failure)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Failure hook raised for {failure.inbox}")

    async def drain(self, timeout: Optional[float] = None):
        """
        Wait for outstanding delivery tasks.

        Tasks still running after ``timeout`` are cancelled, so the HTTP
        client can be closed safely afterwards.
        """
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} deliveries still running after {timeout}s")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
