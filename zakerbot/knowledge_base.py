from __future__ import annotations

import logging
from typing import List

from .errors import NotFoundError
from .models import KnowledgeItem
from .utils import new_id

logger = logging.getLogger("zakerbot.knowledge")


class KnowledgeBase:
    """In-memory grounding material for the active study session.

    Items are newest-first and are not persisted; a new session starts empty.
    """

    def __init__(self) -> None:
        self._items: List[KnowledgeItem] = []

    def items(self) -> List[KnowledgeItem]:
        return list(self._items)

    def add(self, item: KnowledgeItem) -> KnowledgeItem:
        """Purpose: Store a new knowledge item at the top of the list.
        Inputs/Outputs: Input is an item (its id is ignored); output is the stored copy.
        Side Effects / State: Prepends to the in-memory list.
        Dependencies: Uses new_id for a fresh identifier.
        Failure Modes: None.
        If Removed: Uploaded files and links never reach the prompt.
        Testing Notes: Two adds keep newest-first order with distinct ids.
        """
        # Always assign a fresh id so re-adding the same file yields two entries.
        stored = item.model_copy(update={"id": new_id("kb")})
        self._items.insert(0, stored)
        logger.info("knowledge action=add id=%s type=%s title=%s", stored.id, stored.type.value, stored.title)
        return stored

    def remove(self, item_id: str) -> None:
        remaining = [item for item in self._items if item.id != item_id]
        if len(remaining) == len(self._items):
            raise NotFoundError(f"knowledge item {item_id} not found")
        self._items = remaining

    def clear(self) -> None:
        self._items = []

    def merge_resources(self, resources: List[KnowledgeItem]) -> List[KnowledgeItem]:
        """Purpose: Append discovered resources whose URL is not already present.
        Inputs/Outputs: Input is a resource list; output is the items actually added.
        Side Effects / State: Appends to the end of the in-memory list.
        Dependencies: Compares on KnowledgeItem.url.
        Failure Modes: None; items without a URL are ignored.
        If Removed: Retrying a resource search duplicates every link.
        Testing Notes: Merging the same URL twice adds it once.
        """
        # Track URLs seen so far, including ones added earlier in this call.
        known = {item.url for item in self._items if item.url}
        added: List[KnowledgeItem] = []
        for resource in resources:
            if not resource.url or resource.url in known:
                continue
            known.add(resource.url)
            added.append(resource)
        self._items.extend(added)
        return added
