"""
ActivityPub Outbox

Ingest pipeline for outbox submissions. Each stage is a plain function
(content type, parse, validate, normalize, assign ids); the ``Outbox``
orchestrator adds the I/O stages (resolve actor, persist, dispatch).
"""

import asyncio
import copy
import json
import logging
import uuid
from typing import Any, Dict, Optional, Union

from ..config import Settings
from ..database import RecordStore, strip_internal
from ..errors import ActorNotFound, InvalidActivity, UnsupportedContentType
from .constants import ADDRESSING_FIELDS, AS_CONTEXT, JSONLD_TYPES
from .delivery import Dispatcher
from .validation import ActivityPayload, ObjectPayload, is_activity, validate_submission

logger = logging.getLogger(__name__)


def is_activitypub_media_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(';', 1)[0].strip().lower()
    return media_type in JSONLD_TYPES


def check_content_type(content_type: Optional[str]):
    if not is_activitypub_media_type(content_type):
        raise UnsupportedContentType(content_type)


def parse_body(body: bytes) -> Any:
    """
    Decode a JSON request body.

    Raises:
        InvalidActivity: If the body is empty or not valid JSON
    """
    if not body or not body.strip():
        raise InvalidActivity([{'type': 'missing', 'msg': 'empty body'}])
    try:
        return json.loads(body)
    except ValueError as e:
        raise InvalidActivity([{'type': 'json_invalid', 'msg': str(e)}]) from e


def normalize(payload: Dict[str, Any], submission: Union[ActivityPayload, ObjectPayload],
              actor_id: str) -> Dict[str, Any]:
    """
    Turn a validated submission into the activity to store.

    A bare object is wrapped in a ``Create`` by ``actor_id`` that copies
    the object's addressing. Submitted internal fields are dropped.

    Args:
        payload: Decoded submission
        submission: Its validated variant
        actor_id: IRI of the resolved local actor

    Returns:
        A new activity dict
    """
    document = strip_internal(copy.deepcopy(payload))
    if isinstance(document.get('object'), dict):
        document['object'] = strip_internal(document['object'])

    if not is_activity(submission):
        activity = {
            '@context': AS_CONTEXT,
            'type': 'Create',
            'actor': actor_id,
            'object': document,
        }
        for field in ADDRESSING_FIELDS:
            if field in document:
                activity[field] = copy.deepcopy(document[field])
        return activity

    if document.get('actor') is None:
        document['actor'] = actor_id
    return document


def assign_ids(activity: Dict[str, Any], base_url: str) -> Dict[str, Any]:
    """Give the activity, and an object it creates, fresh ids where missing."""
    if not activity.get('id'):
        activity['id'] = f"{base_url}/s/{uuid.uuid4().hex}"
    obj = activity.get('object')
    if activity.get('type') == 'Create' and isinstance(obj, dict) and not obj.get('id'):
        obj['id'] = f"{base_url}/o/{uuid.uuid4().hex}"
    return activity


class Outbox:
    """Handles outgoing activities."""

    def __init__(self, store: RecordStore, dispatcher: Dispatcher, settings: Settings):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings

    async def resolve_actor(self, name: str) -> Dict[str, Any]:
        """
        Look up a local actor by username.

        Raises:
            ActorNotFound: If no such actor is stored
        """
        actor = await asyncio.to_thread(self.store.get, self.settings.actor_iri(name))
        if actor is None:
            raise ActorNotFound(name)
        return actor

    async def submit(self, actor_name: str, body: bytes, content_type: Optional[str]) -> Dict[str, Any]:
        """
        Ingest a submission to ``actor_name``'s outbox.

        1. validate the media type and the activity shape
        2. resolve the local actor
        3. normalize and assign ids
        4. persist the object and the stream entry
        5. schedule delivery (not awaited)

        Args:
            actor_name: Local actor username from the route
            body: Raw request body
            content_type: Request Content-Type header

        Returns:
            The persisted activity

        Raises:
            UnsupportedContentType, InvalidActivity, ActorNotFound, StoreError
        """
        check_content_type(content_type)
        payload = parse_body(body)
        submission = validate_submission(payload)
        actor = await self.resolve_actor(actor_name)

        activity = assign_ids(normalize(payload, submission, actor['id']), self.settings.base_url)
        activity = await self.persist(activity, actor['id'])

        self.dispatcher.dispatch(activity, actor['id'])
        logger.info(f"Accepted {activity['type']} {activity['id']} from {actor['id']}")
        return activity

    async def persist(self, activity: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
        """
        Store the embedded object, then the stream entry.

        There is no transaction spanning both writes. A failure of the
        second write raises StoreError and the client retries; the object
        write is idempotent.

        Returns:
            The activity as stored. A resubmitted id returns the entry
            already in the actor's stream.

        Raises:
            InvalidActivity: If the id is taken by another actor's
                activity, or an Update matched nothing
        """
        obj = activity.get('object')
        if activity['type'] == 'Create' and isinstance(obj, dict):
            if not await asyncio.to_thread(self.store.save, obj):
                logger.info(f"Object {obj['id']} already stored")
        elif activity['type'] == 'Update' and isinstance(obj, dict) and obj.get('id'):
            updated = await asyncio.to_thread(self.store.update, obj, actor_id)
            if updated is None:
                raise InvalidActivity([{'type': 'no_match', 'msg': 'update target not found'}])

        if await asyncio.to_thread(self.store.save_activity, activity, actor_id):
            return activity

        stored = await asyncio.to_thread(self.store.get_activity, activity['id'], actor_id)
        if stored is None:
            logger.warning(f"Activity id {activity['id']} already used outside {actor_id}'s stream")
            raise InvalidActivity([{'type': 'id_taken', 'msg': 'activity id belongs to another actor'}])
        logger.info(f"Activity {activity['id']} already in stream")
        return stored
