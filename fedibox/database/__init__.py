"""
Database Module

This module provides the record store backing outbox streams and objects.
"""

from .connection import Database
from .memory import MemoryRecordStore
from .store import PostgresRecordStore, RecordStore, StreamEntry, strip_internal

__all__ = [
    'Database',
    'MemoryRecordStore',
    'PostgresRecordStore',
    'RecordStore',
    'StreamEntry',
    'strip_internal',
]
