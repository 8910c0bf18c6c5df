"""
ActivityPub Module

This module implements outbox ingest, collections, HTTP signatures and
federation delivery.
"""

from .actor import create_local_actor, generate_key_pair
from .collection import CollectionAssembler
from .delivery import Dispatcher
from .outbox import Outbox
from .signature import sign_request, verify_signature

__all__ = [
    'CollectionAssembler',
    'Dispatcher',
    'Outbox',
    'create_local_actor',
    'generate_key_pair',
    'sign_request',
    'verify_signature',
]
