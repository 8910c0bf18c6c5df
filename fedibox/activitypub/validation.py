"""
Submission Validation

Outbox submissions are parsed into one of two tagged variants keyed on
``type``: an activity, or a bare object that still needs wrapping in a
``Create``. Anything else is rejected with the pydantic error list.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import InvalidActivity
from .constants import ACTIVITY_TYPES, OBJECT_TYPES

Reference = Union[str, Dict[str, Any]]
Addressing = Optional[Union[Reference, List[Reference]]]


class _Payload(BaseModel):
    model_config = ConfigDict(extra='allow', populate_by_name=True)

    id: Optional[str] = None
    to: Addressing = None
    cc: Addressing = None
    bto: Addressing = None
    bcc: Addressing = None
    audience: Addressing = None


class ActivityPayload(_Payload):
    """A submission that is already an activity."""
    type: Literal[ACTIVITY_TYPES]
    actor: Optional[Reference] = None
    object: Optional[Union[Reference, List[Reference]]] = None


class ObjectPayload(_Payload):
    """A bare object submitted to an outbox."""
    type: Literal[OBJECT_TYPES]
    attributed_to: Optional[Union[Reference, List[Reference]]] = Field(None, alias='attributedTo')


Submission = Annotated[Union[ActivityPayload, ObjectPayload], Field(discriminator='type')]

_submission_adapter = TypeAdapter(Submission)


def validate_submission(payload: Any) -> Union[ActivityPayload, ObjectPayload]:
    """
    Check the shape of an outbox submission.

    Args:
        payload: Decoded JSON body

    Returns:
        The matching variant

    Raises:
        InvalidActivity: If the payload is not an object with a recognized type
    """
    if not isinstance(payload, dict):
        raise InvalidActivity([{'type': 'model_type', 'msg': 'payload must be a JSON object'}])
    try:
        return _submission_adapter.validate_python(payload)
    except ValidationError as e:
        raise InvalidActivity(e.errors(include_url=False)) from e


def is_activity(submission: Union[ActivityPayload, ObjectPayload]) -> bool:
    return isinstance(submission, ActivityPayload)
