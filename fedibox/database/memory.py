"""
In-memory record store, substitutable for PostgreSQL in tests and
single-process development runs.
"""

import copy
import itertools
import threading
import uuid
from typing import Any, Dict, List, Optional

from .store import RecordStore, StreamEntry, is_authorized, split_document, split_patch


class MemoryRecordStore(RecordStore):

    def __init__(self):
        self._objects: Dict[str, Dict[str, Any]] = {}
        self._streams: Dict[str, Dict[str, Any]] = {}
        self._seq = itertools.count(1)
        self._lock = threading.RLock()

    def get(self, id: str, include_meta: bool = False) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._objects.get(id)
            if record is None:
                return None
            document = copy.deepcopy(record['document'])
            if include_meta is True and record['meta'] is not None:
                document['_meta'] = copy.deepcopy(record['meta'])
            return document

    def save(self, document: Dict[str, Any]) -> bool:
        doc, meta = split_document(document)
        with self._lock:
            if doc['id'] in self._objects:
                return False
            self._objects[doc['id']] = {'_id': uuid.uuid4(), 'document': doc, 'meta': meta}
            return True

    def update(self, partial: Dict[str, Any], actor_id: str) -> Optional[Dict[str, Any]]:
        set_fields, unset_keys = split_patch(partial)
        with self._lock:
            record = self._objects.get(partial.get('id'))
            if record is None or not is_authorized(record['document'], actor_id):
                return None
            document = record['document']
            document.update(set_fields)
            for key in unset_keys:
                document.pop(key, None)
            return copy.deepcopy(document)

    def save_activity(self, activity: Dict[str, Any], owner: str) -> bool:
        doc, meta = split_document(activity)
        with self._lock:
            if doc['id'] in self._streams:
                return False
            self._streams[doc['id']] = {
                '_id': uuid.uuid4(),
                'seq': next(self._seq),
                'owner': owner,
                'document': doc,
                'meta': meta,
            }
            return True

    def get_activity(self, id: str, owner: Optional[str] = None) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._streams.get(id)
            if record is None or (owner is not None and record['owner'] != owner):
                return None
            return copy.deepcopy(record['document'])

    def count_stream(self, owner: str) -> int:
        with self._lock:
            return sum(1 for record in self._streams.values() if record['owner'] == owner)

    def get_stream(self, owner: str, limit: int,
                   before: Optional[int] = None) -> List[StreamEntry]:
        with self._lock:
            records = [
                r for r in self._streams.values()
                if r['owner'] == owner and (before is None or r['seq'] < before)
            ]
            records.sort(key=lambda r: r['seq'], reverse=True)
            return [StreamEntry(r['seq'], copy.deepcopy(r['document'])) for r in records[:limit]]
