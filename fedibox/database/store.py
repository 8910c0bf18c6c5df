"""
Record Store

Generic keyed-document persistence for ActivityPub objects and outbox
stream entries. Every document is keyed by its ``id``; storage-internal
fields (``_id``) and the private metadata block (``_meta``, e.g. private
key material) never leave the store unless explicitly requested.

Patch semantics for :meth:`RecordStore.update`: a field whose value is
``None`` is *removed* from the stored document, any other value
overwrites the field. There is no way to store an explicit ``null``
through a patch.
"""

import copy
import logging
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from psycopg2.extras import Json

from ..config import Settings
from .connection import Database

logger = logging.getLogger(__name__)

INTERNAL_FIELDS = ('_id', '_meta')

# attributedTo may be an IRI, an {"id": ...} object or an array of either
OWNED_BY = """
    (id = %s
     OR document->'attributedTo' @> to_jsonb(%s::text)
     OR document->'attributedTo' @> jsonb_build_object('id', %s::text)
     OR document->'attributedTo' @> jsonb_build_array(jsonb_build_object('id', %s::text)))
"""


class StreamEntry(NamedTuple):
    """An outbox entry with its opaque, newest-first ordering cursor."""
    cursor: int
    document: Dict[str, Any]


def split_document(document: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """
    Separate the public document from its private metadata block.

    Args:
        document: Document as submitted by a caller

    Returns:
        Tuple of (deep-copied document without internal fields, metadata or None)
    """
    doc = copy.deepcopy(document)
    doc.pop('_id', None)
    meta = doc.pop('_meta', None)
    return doc, meta


def split_patch(partial: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Split a field-level patch into fields to set and fields to remove.

    ``id`` and the internal fields are never patched.

    Args:
        partial: Patch document, ``partial['id']`` names the target

    Returns:
        Tuple of (fields to overwrite, names of fields to remove)
    """
    set_fields = {}
    unset_keys = []
    for key, value in partial.items():
        if key == 'id' or key in INTERNAL_FIELDS:
            continue
        if value is None:
            unset_keys.append(key)
        else:
            set_fields[key] = copy.deepcopy(value)
    return set_fields, unset_keys


def strip_internal(document: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``document`` without storage-internal fields."""
    return {k: v for k, v in document.items() if k not in INTERNAL_FIELDS}


def attributed_ids(document: Dict[str, Any]) -> List[str]:
    """IRIs named by ``attributedTo``, whether given as a string, an object or a list."""
    value = document.get('attributedTo')
    ids = []
    for item in value if isinstance(value, list) else [value]:
        iri = item.get('id') if isinstance(item, dict) else item
        if isinstance(iri, str):
            ids.append(iri)
    return ids


def is_authorized(document: Dict[str, Any], actor_id: str) -> bool:
    """Only an attributed actor, or the actor record itself, may mutate a document."""
    return document.get('id') == actor_id or actor_id in attributed_ids(document)


class RecordStore:
    """
    Record store contract.

    ``objects`` holds individually addressable documents (notes, actors);
    ``streams`` holds activities indexed by their owning actor's IRI.
    """

    def get(self, id: str, include_meta: bool = False) -> Optional[Dict[str, Any]]:
        """
        Point lookup of an object.

        Args:
            id: Document id
            include_meta: Include the private metadata block. Only the
                literal ``True`` enables it; this path is for internal
                use such as loading signing keys.

        Returns:
            The document, or None if absent
        """
        raise NotImplementedError

    def save(self, document: Dict[str, Any]) -> bool:
        """
        Idempotently create an object.

        Returns:
            True if inserted, False if a document with this id already
            existed (nothing is modified in that case)
        """
        raise NotImplementedError

    def update(self, partial: Dict[str, Any], actor_id: str) -> Optional[Dict[str, Any]]:
        """
        Apply a field-level patch to the object named by ``partial['id']``.

        Returns:
            The updated document, or None when no document matched. A
            missing document and an unauthorized actor look the same.
        """
        raise NotImplementedError

    def save_activity(self, activity: Dict[str, Any], owner: str) -> bool:
        """Idempotently append an activity to ``owner``'s stream."""
        raise NotImplementedError

    def get_activity(self, id: str, owner: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Look up a stream entry by id.

        Args:
            id: Activity id
            owner: Only match an entry in this actor's stream

        Returns:
            The activity, or None if absent
        """
        raise NotImplementedError

    def count_stream(self, owner: str) -> int:
        raise NotImplementedError

    def get_stream(self, owner: str, limit: int,
                   before: Optional[int] = None) -> List[StreamEntry]:
        """
        Fetch stream entries newest first.

        Args:
            owner: Owning actor IRI
            limit: Maximum number of entries
            before: Only return entries older than this cursor

        Returns:
            List of stream entries
        """
        raise NotImplementedError

    def close(self):
        pass


class PostgresRecordStore(RecordStore):
    """Record store backed by JSONB columns in PostgreSQL/CockroachDB."""

    def __init__(self, db: Database):
        self.db = db

    @classmethod
    def from_settings(cls, settings: Settings) -> 'PostgresRecordStore':
        return cls(Database(settings.DATABASE_URL, pool_size=settings.DATABASE_POOL_SIZE))

    # --- Object Methods ---
    def get(self, id: str, include_meta: bool = False) -> Optional[Dict[str, Any]]:
        row = self.db.execute(
            "SELECT document, meta FROM objects WHERE id = %s LIMIT 1",
            (id,),
            fetch_one=True,
        )
        if row is None:
            return None
        document = dict(row['document'])
        # strict comparison so private keys are never returned by accident
        if include_meta is True and row['meta'] is not None:
            document['_meta'] = row['meta']
        return document

    def save(self, document: Dict[str, Any]) -> bool:
        doc, meta = split_document(document)
        row = self.db.execute(
            """
            INSERT INTO objects (id, document, meta)
            VALUES (%s, %s, %s)
            ON CONFLICT (id) DO NOTHING
            RETURNING _id
            """,
            (doc['id'], Json(doc), Json(meta) if meta is not None else None),
            fetch_one=True,
        )
        if row is None:
            logger.debug(f"Object {doc['id']} already exists, not created")
        return row is not None

    def update(self, partial: Dict[str, Any], actor_id: str) -> Optional[Dict[str, Any]]:
        target = partial.get('id')
        if not target:
            return None
        set_fields, unset_keys = split_patch(partial)
        owner_params = (actor_id,) * 4
        if not set_fields and not unset_keys:
            row = self.db.execute(
                "SELECT document FROM objects WHERE id = %s AND" + OWNED_BY,
                (target,) + owner_params,
                fetch_one=True,
            )
        else:
            row = self.db.execute(
                "UPDATE objects SET document = (document || %s::jsonb) - %s::text[]"
                " WHERE id = %s AND" + OWNED_BY + "RETURNING document",
                (Json(set_fields), unset_keys, target) + owner_params,
                fetch_one=True,
            )
        return dict(row['document']) if row else None

    # --- Stream Methods ---
    def save_activity(self, activity: Dict[str, Any], owner: str) -> bool:
        doc, meta = split_document(activity)
        row = self.db.execute(
            """
            INSERT INTO streams (id, owner, document, meta)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (id) DO NOTHING
            RETURNING _id
            """,
            (doc['id'], owner, Json(doc), Json(meta) if meta is not None else None),
            fetch_one=True,
        )
        return row is not None

    def get_activity(self, id: str, owner: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query = "SELECT document FROM streams WHERE id = %s"
        params = [id]
        if owner is not None:
            query += " AND owner = %s"
            params.append(owner)
        row = self.db.execute(query + " LIMIT 1", tuple(params), fetch_one=True)
        return dict(row['document']) if row else None

    def count_stream(self, owner: str) -> int:
        row = self.db.execute(
            "SELECT count(*) AS total FROM streams WHERE owner = %s",
            (owner,),
            fetch_one=True,
        )
        return int(row['total']) if row else 0

    def get_stream(self, owner: str, limit: int,
                   before: Optional[int] = None) -> List[StreamEntry]:
        query = "SELECT seq, document FROM streams WHERE owner = %s"
        params = [owner]
        if before is not None:
            query += " AND seq < %s"
            params.append(before)
        query += " ORDER BY seq DESC LIMIT %s"
        params.append(limit)

        rows = self.db.execute(query, tuple(params)) or []
        return [StreamEntry(int(row['seq']), dict(row['document'])) for row in rows]

    def close(self):
        self.db.close()
