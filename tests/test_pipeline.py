"""Tests for the pure ingest stages."""

import pytest

from fedibox.activitypub.outbox import (
    assign_ids,
    check_content_type,
    is_activitypub_media_type,
    normalize,
    parse_body,
)
from fedibox.activitypub.validation import ActivityPayload, ObjectPayload, validate_submission
from fedibox.errors import InvalidActivity, UnsupportedContentType

ACTOR = 'https://localhost/u/dummy'


@pytest.mark.parametrize('content_type, expected', [
    ('application/activity+json', True),
    ('application/activity+json; charset=utf-8', True),
    ('application/ld+json; profile="https://www.w3.org/ns/activitystreams"', True),
    ('application/json', False),
    ('text/plain', False),
    (None, False),
])
def test_media_types(content_type, expected):
    assert is_activitypub_media_type(content_type) is expected


def test_check_content_type_raises():
    with pytest.raises(UnsupportedContentType):
        check_content_type('application/json')


@pytest.mark.parametrize('body', [b'', b'   ', b'{not json', b'\xff\xfe'])
def test_parse_body_rejects(body):
    with pytest.raises(InvalidActivity):
        parse_body(body)


@pytest.mark.parametrize('payload', [
    {},
    [],
    'Create',
    {'type': 'Unknown'},
    {'content': 'no type'},
    {'type': 'Create', 'to': 5},
    {'type': 'Note', 'id': 12},
])
def test_invalid_shapes(payload):
    with pytest.raises(InvalidActivity) as excinfo:
        validate_submission(payload)
    assert str(excinfo.value) == 'Invalid activity'
    assert excinfo.value.errors


def test_variants(activity):
    assert isinstance(validate_submission(activity), ActivityPayload)
    assert isinstance(validate_submission(activity['object']), ObjectPayload)


def test_normalize_wraps_bare_object(activity):
    note = dict(activity['object'], cc=['https://mocked.com/user/mocked'])
    wrapped = normalize(note, validate_submission(note), ACTOR)

    assert wrapped['type'] == 'Create'
    assert wrapped['actor'] == ACTOR
    assert wrapped['object'] == note
    assert wrapped['to'] == note['to']
    assert wrapped['cc'] == note['cc']
    assert 'bcc' not in wrapped
    assert wrapped['object'] is not note


def test_normalize_keeps_activity(activity):
    result = normalize(activity, validate_submission(activity), ACTOR)
    assert result == activity


def test_normalize_fills_missing_actor():
    follow = {'type': 'Follow', 'object': 'https://mocked.com/user/mocked'}
    assert normalize(follow, validate_submission(follow), ACTOR)['actor'] == ACTOR


def test_assign_ids(activity):
    result = assign_ids(activity, 'https://localhost')
    assert result['id'].startswith('https://localhost/s/')
    assert result['object']['id'].startswith('https://localhost/o/')


def test_assign_ids_keeps_existing_and_skips_non_create():
    like = {'id': 'https://localhost/s/1', 'type': 'Like', 'object': {'type': 'Note'}}
    assign_ids(like, 'https://localhost')
    assert like['id'] == 'https://localhost/s/1'
    assert 'id' not in like['object']
