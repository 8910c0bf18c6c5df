"""
Outbox Collections

Renders an actor's stream entries as an OrderedCollection, newest first,
with cursor-paginated OrderedCollectionPages for large outboxes.
"""

import asyncio
from typing import Any, Dict, List, Optional

from ..config import Settings
from ..database import RecordStore, StreamEntry, strip_internal
from .constants import AS_CONTEXT, SECURITY_CONTEXT
from .delivery import hide_blind_recipients

COLLECTION_CONTEXT = [AS_CONTEXT, SECURITY_CONTEXT]


def render_items(entries: List[StreamEntry]) -> List[Dict[str, Any]]:
    items = []
    for entry in entries:
        item = strip_internal(hide_blind_recipients(entry.document))
        item.pop('@context', None)
        items.append(item)
    return items


class CollectionAssembler:
    """Builds outbox collection documents from the record store."""

    def __init__(self, store: RecordStore, settings: Settings):
        self.store = store
        self.settings = settings

    @property
    def page_size(self) -> int:
        return self.settings.OUTBOX_PAGE_SIZE

    async def list_outbox(self, actor_id: str, outbox_id: str) -> Dict[str, Any]:
        """
        Render the outbox collection.

        Items are inlined when they fit on a single page; otherwise only
        ``first`` is given and clients page through ``next`` links.

        Args:
            actor_id: Owning actor IRI
            outbox_id: Outbox IRI

        Returns:
            OrderedCollection document
        """
        entries = await asyncio.to_thread(self.store.get_stream, actor_id, self.page_size + 1)
        collection = {
            '@context': COLLECTION_CONTEXT,
            'id': outbox_id,
            'type': 'OrderedCollection',
            'first': f"{outbox_id}?page=true",
        }
        if len(entries) <= self.page_size:
            collection['totalItems'] = len(entries)
            collection['orderedItems'] = render_items(entries)
        else:
            collection['totalItems'] = await asyncio.to_thread(self.store.count_stream, actor_id)
        return collection

    async def outbox_page(self, actor_id: str, outbox_id: str,
                          before: Optional[int] = None) -> Dict[str, Any]:
        """
        Render one page of the outbox.

        Args:
            actor_id: Owning actor IRI
            outbox_id: Outbox IRI
            before: Cursor from a previous page's ``next`` link

        Returns:
            OrderedCollectionPage document
        """
        entries = await asyncio.to_thread(self.store.get_stream, actor_id, self.page_size + 1, before)
        items = entries[:self.page_size]

        page_id = f"{outbox_id}?page=true"
        if before is not None:
            page_id += f"&before={before}"
        page = {
            '@context': COLLECTION_CONTEXT,
            'id': page_id,
            'type': 'OrderedCollectionPage',
            'partOf': outbox_id,
            'orderedItems': render_items(items),
        }
        if len(entries) > self.page_size:
            page['next'] = f"{outbox_id}?page=true&before={items[-1].cursor}"
        return page
