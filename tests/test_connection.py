"""Tests for the psycopg2 connection pool wrapper, against a fake pool."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import psycopg2
import pytest
from psycopg2.pool import PoolError

from fedibox.database import connection
from fedibox.database.connection import Database
from fedibox.errors import StoreError


class FakeCursor:

    def __init__(self, conn):
        self.conn = conn
        self.description = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        if self.conn.fail_with is not None:
            self.conn.closed = 2
            raise self.conn.fail_with
        time.sleep(self.conn.delay)
        self.description = [('id',)]

    def fetchall(self):
        return [{'id': 'a'}]

    def fetchone(self):
        return {'id': 'a'}


class FakeConnection:

    def __init__(self, fail_with=None, delay=0):
        self.closed = 0
        self.autocommit = False
        self.fail_with = fail_with
        self.delay = delay

    def cursor(self):
        return FakeCursor(self)


class FakePool:
    """Mimics ThreadedConnectionPool: raises PoolError once maxconn are out."""

    def __init__(self, minconn, maxconn, dsn, cursor_factory=None):
        self.maxconn = maxconn
        self.out = 0
        self.returned = []
        self.exhausted = False
        self.next_conn = None
        self._lock = threading.Lock()

    def getconn(self):
        with self._lock:
            if self.exhausted or self.out >= self.maxconn:
                raise PoolError("connection pool exhausted")
            self.out += 1
        return self.next_conn or FakeConnection(delay=0.02)

    def putconn(self, conn, close=False):
        with self._lock:
            self.out -= 1
            self.returned.append(close)

    def closeall(self):
        pass


@pytest.fixture
def db(monkeypatch):
    monkeypatch.setattr(connection, 'ThreadedConnectionPool', FakePool)
    return Database('postgresql://fake/db', pool_size=2)


def test_execute_returns_rows(db):
    assert db.execute('SELECT id FROM objects') == [{'id': 'a'}]
    assert db.execute('SELECT id FROM objects', fetch_one=True) == {'id': 'a'}
    assert db.pool.returned == [False, False]


def test_unavailable_connection_is_store_error(db):
    db.pool.exhausted = True
    with pytest.raises(StoreError):
        db.execute('SELECT 1')
    assert db.pool.returned == []


def test_broken_connection_is_discarded(db):
    db.pool.next_conn = FakeConnection(fail_with=psycopg2.OperationalError("server closed the connection"))
    with pytest.raises(StoreError):
        db.execute('SELECT 1')
    assert db.pool.returned == [True]


def test_callers_wait_for_a_free_connection(db):
    with ThreadPoolExecutor(max_workers=6) as executor:
        results = list(executor.map(lambda _: db.execute('SELECT id FROM objects'), range(6)))
    assert results == [[{'id': 'a'}]] * 6
    assert db.pool.out == 0


def test_closed_database(db):
    db.close()
    with pytest.raises(StoreError):
        db.execute('SELECT 1')
