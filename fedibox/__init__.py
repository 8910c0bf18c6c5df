"""
Fedibox Server Package

This package provides an ActivityPub outbox server with FastAPI:
validated outbox ingest, a document record store and signed
federation delivery.
"""

from .main import create_app
from .activitypub import Outbox, Dispatcher, sign_request, verify_signature
from .database import MemoryRecordStore, PostgresRecordStore

__all__ = [
    'create_app',
    'Outbox',
    'Dispatcher',
    'sign_request',
    'verify_signature',
    'MemoryRecordStore',
    'PostgresRecordStore',
]
