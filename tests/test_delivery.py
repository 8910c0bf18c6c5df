"""Tests for recipient resolution and signed delivery."""

import asyncio
import json

import pytest

from fedibox.activitypub.delivery import Dispatcher, serialize_for_delivery
from fedibox.activitypub.signature import verify_signature
from fedibox.database import MemoryRecordStore

MOCKED = 'https://mocked.com/user/mocked'
MOCKED_INBOX = 'https://mocked.com/inbox/mocked'


@pytest.fixture
def failures():
    return []


@pytest.fixture
def dispatcher(store, http_client, settings, dummy, failures):
    return Dispatcher(store, http_client, settings, on_failure=failures.append)


def make_activity(dummy, **addressing):
    activity = {
        'id': 'https://localhost/s/1',
        'type': 'Create',
        'actor': dummy['id'],
        'object': {'id': 'https://localhost/o/1', 'type': 'Note', 'content': 'hi'},
    }
    activity.update(addressing)
    return activity


def test_recipients_skip_public_local_and_sender(dispatcher, dummy):
    activity = make_activity(
        dummy,
        to=['https://www.w3.org/ns/activitystreams#Public', MOCKED],
        cc=[dummy['followers'], 'as:Public', {'id': 'https://other.org/u/a', 'type': 'Person'}],
        bto=MOCKED,
        bcc=[dummy['id']],
        audience='https://other.org/u/b',
    )
    assert dispatcher.recipients(activity, dummy['id']) == [
        MOCKED, 'https://other.org/u/a', 'https://other.org/u/b',
    ]


def test_serialize_strips_blind_recipients(dummy):
    activity = make_activity(dummy, to=[MOCKED], bto=['https://a.org/u/1'], bcc=['https://a.org/u/2'])
    activity['object']['bcc'] = ['https://a.org/u/2']
    sent = json.loads(serialize_for_delivery(activity))
    assert 'bto' not in sent and 'bcc' not in sent
    assert 'bcc' not in sent['object']
    assert sent['to'] == [MOCKED]


async def test_delivers_signed_request(dispatcher, remote, dummy, key_pair, failures):
    activity = make_activity(dummy, to=[MOCKED])
    assert await dispatcher.deliver(activity, dummy['id']) == []

    [request] = remote.posts()
    assert str(request.url) == MOCKED_INBOX
    assert request.headers['content-type'] == 'application/activity+json'
    assert json.loads(request.content) == activity
    assert verify_signature('POST', '/inbox/mocked', request.headers, key_pair[1], body=request.content)
    assert failures == []


async def test_blind_recipients_are_delivered_without_addressing(dispatcher, remote, dummy):
    activity = make_activity(dummy, bcc=[MOCKED])
    await dispatcher.deliver(activity, dummy['id'])

    [request] = remote.posts()
    assert 'bcc' not in json.loads(request.content)


async def test_resolution_failure_does_not_block_others(dispatcher, remote, dummy, failures):
    remote.unreachable.add('down.example')
    activity = make_activity(dummy, to=['https://down.example/u/x', 'https://missing.org/u/y', MOCKED])

    assert await dispatcher.deliver(activity, dummy['id']) == []
    assert [str(r.url) for r in remote.posts()] == [MOCKED_INBOX]
    assert failures == []


async def test_deduplicates_shared_inboxes(dispatcher, remote, dummy):
    remote.actors['https://mocked.com/user/twin'] = {'id': 'https://mocked.com/user/twin', 'inbox': MOCKED_INBOX}
    activity = make_activity(dummy, to=[MOCKED], cc=['https://mocked.com/user/twin'])

    await dispatcher.deliver(activity, dummy['id'])
    assert len(remote.posts_to(MOCKED_INBOX)) == 1


async def test_non_2xx_is_reported_not_raised(dispatcher, remote, dummy, failures):
    remote.inbox_status[MOCKED_INBOX] = 503
    activity = make_activity(dummy, to=[MOCKED])

    result = await dispatcher.deliver(activity, dummy['id'])
    assert len(result) == 1
    assert result[0].inbox == MOCKED_INBOX
    assert result[0].status_code == 503
    assert failures == result
    assert len(remote.posts()) == 1


async def test_network_failure_is_reported(dispatcher, remote, dummy, failures):
    remote.actors['https://flaky.org/u/z'] = {'id': 'https://flaky.org/u/z', 'inbox': 'https://flaky-inbox.org/inbox'}
    remote.unreachable.add('flaky-inbox.org')
    activity = make_activity(dummy, to=['https://flaky.org/u/z', MOCKED])

    result = await dispatcher.deliver(activity, dummy['id'])
    assert [f.inbox for f in result] == ['https://flaky-inbox.org/inbox']
    assert result[0].status_code is None
    assert len(remote.posts_to(MOCKED_INBOX)) == 1


async def test_failing_hook_is_contained(store, http_client, settings, remote, dummy):
    def explode(failure):
        raise RuntimeError("queue down")

    remote.inbox_status[MOCKED_INBOX] = 500
    dispatcher = Dispatcher(store, http_client, settings, on_failure=explode)
    result = await dispatcher.deliver(make_activity(dummy, to=[MOCKED]), dummy['id'])
    assert len(result) == 1


async def test_async_hook_is_awaited(store, http_client, settings, remote, dummy):
    seen = []

    async def record(failure):
        seen.append(failure.inbox)

    remote.inbox_status[MOCKED_INBOX] = 500
    dispatcher = Dispatcher(store, http_client, settings, on_failure=record)
    await dispatcher.deliver(make_activity(dummy, to=[MOCKED]), dummy['id'])
    assert seen == [MOCKED_INBOX]


async def test_missing_signing_key_drops_delivery(http_client, settings, remote, dummy):
    store = MemoryRecordStore()
    store.save(dict(dummy))
    dispatcher = Dispatcher(store, http_client, settings)
    assert await dispatcher.deliver(make_activity(dummy, to=[MOCKED]), dummy['id']) == []
    assert remote.posts() == []


async def test_dispatch_runs_in_background(dispatcher, remote, dummy):
    task = dispatcher.dispatch(make_activity(dummy, to=[MOCKED]), dummy['id'])
    await dispatcher.drain(timeout=5)
    assert task.done()
    assert task.result() == []
    assert len(remote.posts()) == 1


async def test_drain_cancels_stuck_deliveries(dispatcher, dummy):
    async def hang(activity, actor_id):
        await asyncio.sleep(3600)

    dispatcher.deliver = hang
    task = dispatcher.dispatch(make_activity(dummy, to=[MOCKED]), dummy['id'])
    await dispatcher.drain(timeout=0.01)
    assert task.cancelled()
