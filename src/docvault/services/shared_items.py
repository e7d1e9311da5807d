"""Items shared with the current user: ancestry deduplication and drill-down browsing.

Shared items are a flat collection kept apart from the user's own tree. A
user granted both a folder and one of its subfolders would otherwise see the
subfolder twice, once on its own and once inside the parent.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ..core.config import settings as default_settings
from ..exceptions import ValidationError
from ..schemas.documents import FolderTreeResponse, SharedItem
from ..schemas.tree import Breadcrumb

logger = logging.getLogger(__name__)


def dedupe_shared_items(
    items: Sequence[SharedItem],
    max_depth: Optional[int] = None,
) -> List[SharedItem]:
    """Drop every item that sits below a folder of the same shared collection.

    Parent links are followed only through the shared folders themselves, not
    through the user's own tree. Order is preserved. Idempotent.
    """
    depth = max_depth if max_depth is not None else default_settings.max_ancestor_depth
    shared_folders: Dict[str, SharedItem] = {}
    for item in items:
        if item.is_folder:
            shared_folders.setdefault(item.id, item)

    kept = [item for item in items if not _has_shared_ancestor(item, shared_folders, depth)]
    if len(kept) != len(items):
        logger.debug(
            "Dropped nested shared items",
            extra={"shared_items": len(items), "dropped": len(items) - len(kept)},
        )
    return kept


def _has_shared_ancestor(
    item: SharedItem,
    shared_folders: Dict[str, SharedItem],
    max_depth: int,
) -> bool:
    visited = {item.id}
    found = False
    current = item.container_id
    hops = 0
    while current is not None and hops < max_depth:
        parent = shared_folders.get(current)
        if parent is None:
            break
        if current == item.id:
            # The chain loops back to the item itself: malformed data, keep it visible.
            return False
        if current in visited:
            # Loop above the item; it still sits under a shared folder.
            return True
        found = True
        visited.add(current)
        current = parent.parent_id
        hops += 1
    return found


class SharedFolderNavigator:
    """Breadcrumb state for browsing into a shared folder, one level per fetch.

    Independent of the main tree. ``go_to(-1)`` (or ``back()`` from the first
    level) returns to the top-level shared list.
    """

    def __init__(self, client):
        self.client = client
        self.current_folder: Optional[Breadcrumb] = None
        self.breadcrumb_path: List[Breadcrumb] = []
        self.contents: Optional[FolderTreeResponse] = None
        self._epoch = 0

    @property
    def is_browsing(self) -> bool:
        return self.current_folder is not None

    async def open_folder(self, folder_id: str, name: str) -> FolderTreeResponse:
        """Fetch *folder_id*'s immediate contents and push it onto the trail."""
        contents = await self._fetch(folder_id)
        if contents is None:
            return FolderTreeResponse()
        crumb = Breadcrumb(id=folder_id, name=name)
        self.breadcrumb_path = [*self.breadcrumb_path, crumb]
        self.current_folder = crumb
        self.contents = contents
        return contents

    async def go_to(self, index: int) -> Optional[FolderTreeResponse]:
        """Truncate the trail to *index* (inclusive) and refetch that level."""
        if index < 0:
            self.reset()
            return None
        if index >= len(self.breadcrumb_path):
            raise ValidationError(f"No breadcrumb at index {index}", field="index")

        target = self.breadcrumb_path[index]
        contents = await self._fetch(target.id)
        if contents is None:
            return None
        self.breadcrumb_path = self.breadcrumb_path[:index + 1]
        self.current_folder = target
        self.contents = contents
        return contents

    async def back(self) -> Optional[FolderTreeResponse]:
        return await self.go_to(len(self.breadcrumb_path) - 2)

    def reset(self) -> None:
        """Back to the top-level shared list; in-flight fetches are discarded."""
        self._epoch += 1
        self.current_folder = None
        self.breadcrumb_path = []
        self.contents = None

    async def _fetch(self, folder_id: str) -> Optional[FolderTreeResponse]:
        epoch = self._epoch
        contents = await self.client.list_shared_folder_contents(folder_id)
        if epoch != self._epoch:
            logger.debug("Discarding shared folder contents for %s after reset", folder_id)
            return None
        return contents
