"""Shared fixtures: settings, an in-memory store, a local actor and simulated remote servers."""

import copy
from typing import Dict, List

import httpx
import pytest

from fedibox.activitypub.actor import create_local_actor, generate_key_pair
from fedibox.config import Settings
from fedibox.database import MemoryRecordStore
from fedibox.main import create_app

ACTIVITY = {
    '@context': 'https://www.w3.org/ns/activitystreams',
    'type': 'Create',
    'to': ['https://ignore.com/u/ignored'],
    'actor': 'https://localhost/u/dummy',
    'object': {
        'type': 'Note',
        'attributedTo': 'https://localhost/u/dummy',
        'to': ['https://ignore.com/u/ignored'],
        'content': 'Say, did you finish reading that book I lent you?',
    },
}

class RemoteServers:
    """Simulates remote instances behind an httpx.MockTransport."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.actors: Dict[str, object] = {
            'https://mocked.com/user/mocked': {
                'id': 'https://mocked.com/user/mocked',
                'inbox': 'https://mocked.com/inbox/mocked',
            },
        }
        self.inbox_status: Dict[str, int] = {}
        self.unreachable = set()

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if request.url.host in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.host == 'ignore.com':
            # block federation attempts
            return httpx.Response(200, json={}) if request.method == 'GET' else httpx.Response(200)
        if request.method == 'GET':
            if url in self.actors:
                return httpx.Response(200, json=self.actors[url])
            return httpx.Response(404)
        return httpx.Response(self.inbox_status.get(url, 200))

    def posts_to(self, inbox: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == 'POST' and str(r.url) == inbox]

    def posts(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == 'POST']


@pytest.fixture
def activity():
    return copy.deepcopy(ACTIVITY)


@pytest.fixture(scope='session')
def key_pair():
    return generate_key_pair()


@pytest.fixture
def settings():
    return Settings(DOMAIN='localhost', SCHEME='https', OUTBOX_PAGE_SIZE=20,
                    DELIVERY_TIMEOUT=5.0, RABBITMQ_URL=None)


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def dummy(store, settings, key_pair):
    return create_local_actor(store, settings, 'dummy', 'dummy group', key_pair=key_pair)


@pytest.fixture
def remote():
    return RemoteServers()


@pytest.fixture
def http_client(remote):
    return httpx.AsyncClient(transport=httpx.MockTransport(remote.handle))


@pytest.fixture
def app(settings, store, http_client, dummy):
    return create_app(settings, store=store, http_client=http_client)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url='https://localhost') as client:
        yield client
    await app.state.dispatcher.drain(timeout=5)
