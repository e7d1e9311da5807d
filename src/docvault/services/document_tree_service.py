"""Deep module for one user's view of a document vault: the tree, navigation and mutations.

Every mutation follows the same three phases:

1. apply the change to the local tree immediately (temporary id for creates);
2. send it to the document service and, on success, swap in the server's
   version of the node;
3. on failure, undo exactly what phase 1 did and re-raise.

Creates and deletes then trigger a background resync that rebuilds the tree
from the server. The resync overwrites the tree wholesale; if it lands after
a newer optimistic edit, that edit disappears until the next resync.
"""

import asyncio
import logging
import re
from datetime import date
from enum import Enum
from typing import List, Optional, Set

from ..core.config import Settings, settings as default_settings
from ..core.logging_config import mutation_id_var
from ..exceptions import (
    ExpiryRequiredError,
    FolderNotDeletableError,
    ReconciliationFailure,
    ValidationError,
)
from ..schemas.documents import ROOT_ID, FileUpload, SharedItem
from ..schemas.tree import Breadcrumb, NavigationContext, TreeNode, new_temporary_id
from .deletability import deletion_blocker, is_deletable
from .expiry import RenewalEntry, collect_renewals, has_expired_documents, renewals_from_documents
from .mutations import Mutation, MutationKind
from .shared_items import SharedFolderNavigator, dedupe_shared_items
from .tree_builder import build_tree
from .tree_ops import insert_child, remove_node, rename_node, replace_node, restore_node
from .tree_paths import find_folder, find_node, find_parent, find_path

logger = logging.getLogger(__name__)

ITEM_KINDS = ("folder", "document")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Tab(str, Enum):
    MY_FILES = "my_files"
    SHARED = "shared"
    RENEWALS = "renewals"


class DocumentTreeService:
    """Tree state and optimistic mutations for one navigation context.

    Public methods:
        load / refresh     -- fetch the entity's folders and documents, rebuild the tree
        switch_entity      -- discard the tree and load another entity's
        switch_organization -- accountants: look at another client's tree and shares
        navigate_to        -- browse into a folder; go_back to its parent
        create_folder      -- optimistic create in the current folder
        upload_document    -- optimistic upload, gated on an expiry decision
        rename_folder      -- optimistic rename
        delete_item        -- optimistic delete, gated on the deletability rules
        load_shared        -- fetch items shared with the user
        share_item         -- share a folder or document by email
        share_link         -- direct link to a saved document or folder
        load_renewals      -- server-side expiring documents with statuses
        wait_for_resync    -- await background resyncs (tests, shutdown)
        close              -- cancel resyncs and ignore late results

    Read-only views: tree, context, current_folder, breadcrumbs,
    visible_children, shared_items, renewals, mutations.
    """

    def __init__(
        self,
        client,
        context: Optional[NavigationContext] = None,
        config: Optional[Settings] = None,
    ):
        self.client = client
        self.config = config or default_settings
        self.context = context or NavigationContext()
        self.tree = TreeNode.root()
        self.active_tab = Tab.MY_FILES
        self.shared_navigator = SharedFolderNavigator(client)
        self.mutations: List[Mutation] = []
        self._shared: List[SharedItem] = []
        self._resync_tasks: Set[asyncio.Task] = set()
        # Bumped on entity or client switch and on close; results fetched under an older epoch are dropped.
        self._epoch = 0
        self._closed = False

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def current_folder(self) -> Optional[TreeNode]:
        return find_folder(self.tree, self.context.folder_id)

    @property
    def breadcrumbs(self) -> List[Breadcrumb]:
        return [Breadcrumb(id=n.id, name=n.name) for n in find_path(self.tree, self.context.folder_id)]

    @property
    def shared_items(self) -> List[SharedItem]:
        """Shared-with-me items, minus those nested in another shared folder.

        An accountant looking at one client only sees that client's items.
        """
        items = self._shared
        if self.context.is_accountant and self.context.organization_id:
            items = [item for item in items if item.organization_id == self.context.organization_id]
        return dedupe_shared_items(items, self.config.max_ancestor_depth)

    def visible_children(self, search_term: Optional[str] = None) -> List[TreeNode]:
        """Children of the current folder, excluding items that also show under Shared."""
        folder = self.current_folder
        if folder is None:
            return []
        shared_ids = {item.id for item in self._shared}
        children = [child for child in folder.children if child.id not in shared_ids]
        if search_term:
            needle = search_term.lower()
            children = [child for child in children if needle in child.name.lower()]
        return children

    def search_shared(self, search_term: Optional[str] = None) -> List[SharedItem]:
        items = self.shared_items
        if not search_term:
            return items
        needle = search_term.lower()
        return [item for item in items if needle in item.name.lower()]

    def renewals(self, today: Optional[date] = None) -> List[RenewalEntry]:
        return collect_renewals(self.tree, today)

    def folder_has_expired(self, folder_id: str, today: Optional[date] = None) -> bool:
        return has_expired_documents(find_folder(self.tree, folder_id), today)

    def can_delete(self, folder_id: str) -> bool:
        folder = find_folder(self.tree, folder_id)
        return folder is not None and is_deletable(folder, self.context.user_id)

    # ------------------------------------------------------------------
    # Loading and navigation
    # ------------------------------------------------------------------

    async def load(self) -> TreeNode:
        """Fetch the entity's folders and documents and rebuild the tree.

        On failure the current tree is kept and the RequestFailure propagates.
        """
        epoch = self._epoch
        data = await self.client.list_folder_tree(self.context.entity_id)
        if epoch != self._epoch:
            logger.debug("Discarding tree fetched for a previous context")
            return self.tree
        self._replace_tree(build_tree(
            data.folders,
            data.documents,
            include_root_documents=self.config.show_root_documents,
        ))
        logger.info(
            "Loaded document tree",
            extra={
                "entity_id": self.context.entity_id,
                "folders": len(data.folders),
                "documents": len(data.documents),
            },
        )
        return self.tree

    async def refresh(self) -> TreeNode:
        return await self.load()

    async def switch_entity(self, entity_id: Optional[str]) -> TreeNode:
        """Point the session at another entity; the old tree is discarded first."""
        self._epoch += 1
        self.context = self.context.with_entity(entity_id)
        self.tree = TreeNode.root()
        self._shared = []
        self.shared_navigator.reset()
        return await self.load()

    async def switch_organization(
        self, organization_id: Optional[str], entity_id: Optional[str] = None,
    ) -> TreeNode:
        """Accountants only: look at another client (None = all clients).

        The tree shown is *entity_id* when given, otherwise the client's own.
        """
        if not self.context.is_accountant:
            raise ValidationError("Only accountants can switch client", field="organization_id")
        self._epoch += 1
        self.context = self.context.with_organization(organization_id, entity_id)
        self.tree = TreeNode.root()
        self.shared_navigator.reset()
        return await self.load()

    def navigate_to(self, folder_id: str) -> TreeNode:
        folder = find_folder(self.tree, folder_id)
        if folder is None:
            raise ValidationError(f"Folder not found: {folder_id}", field="folder_id")
        self.context = self.context.with_folder(folder.id)
        return folder

    def go_back(self) -> TreeNode:
        path = find_path(self.tree, self.context.folder_id)
        target = path[-2].id if len(path) >= 2 else ROOT_ID
        return self.navigate_to(target)

    def set_active_tab(self, tab: Tab) -> None:
        if self.active_tab == Tab.SHARED and tab != Tab.SHARED:
            self.shared_navigator.reset()
        self.active_tab = tab

    async def load_shared(self) -> List[SharedItem]:
        epoch = self._epoch
        items = await self._fetch_shared()
        if epoch == self._epoch:
            self._shared = list(items)
        return self.shared_items

    async def load_renewals(self, today: Optional[date] = None) -> List[RenewalEntry]:
        documents = await self.client.list_expiring_documents(self.context.entity_id)
        return renewals_from_documents(documents, today)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_folder(self, name: str, parent_id: Optional[str] = None) -> TreeNode:
        """Create a folder under *parent_id* (default: the current folder)."""
        name = self._clean_folder_name(name)
        parent = self._writable_folder(parent_id or self.context.folder_id)

        temp_id = new_temporary_id()
        node = TreeNode(id=temp_id, name=name, is_folder=True, owner_id=self.context.user_id)
        mutation = Mutation(
            kind=MutationKind.CREATE_FOLDER,
            target_id=temp_id,
            parent_id=parent.id,
            temp_id=temp_id,
        )
        token = mutation_id_var.set(mutation.id)
        try:
            epoch = self._epoch
            insert_child(self.tree, parent.id, node)
            self._record(mutation)
            try:
                if self.context.is_accountant:
                    dto = await self.client.create_accountant_folder(name, parent.id)
                else:
                    dto = await self.client.create_folder(name, self.context.entity_id, parent.id)
            except Exception as exc:
                remove_node(self.tree, temp_id)
                self._record(mutation.roll_back(exc))
                logger.warning("Folder creation rolled back: %s", exc, extra={"parent_id": parent.id})
                raise

            confirmed = TreeNode.from_folder(dto)
            if not replace_node(self.tree, temp_id, confirmed):
                logger.debug("Pending folder %s no longer in tree; keeping server state", temp_id)
            self._record(mutation.commit(confirmed.id))
            logger.info("Created folder %s", confirmed.id, extra={"parent_id": parent.id})
            self._schedule_resync(epoch)
            return confirmed
        finally:
            mutation_id_var.reset(token)

    async def upload_document(
        self,
        file: FileUpload,
        expiry_date: Optional[date] = None,
        no_expiry: bool = False,
        folder_id: Optional[str] = None,
    ) -> TreeNode:
        """Upload *file* into *folder_id* (default: the current folder).

        The caller must decide on expiry: pass a date, or ``no_expiry=True``.
        """
        if file.size == 0:
            raise ValidationError("Please select a non-empty file to upload", field="file")
        if expiry_date is None and not no_expiry:
            raise ExpiryRequiredError()
        if expiry_date is not None and no_expiry:
            raise ValidationError(
                "A document cannot have an expiry date and be marked as never expiring",
                field="expiry_date",
            )
        parent = self._writable_folder(folder_id or self.context.folder_id)

        temp_id = new_temporary_id()
        node = TreeNode(
            id=temp_id,
            name=file.filename,
            is_folder=False,
            owner_id=self.context.user_id,
            expiry_date=expiry_date,
            size=file.size,
            file_type=file.content_type or "Unknown",
        )
        mutation = Mutation(
            kind=MutationKind.UPLOAD_DOCUMENT,
            target_id=temp_id,
            parent_id=parent.id,
            temp_id=temp_id,
        )
        token = mutation_id_var.set(mutation.id)
        try:
            epoch = self._epoch
            insert_child(self.tree, parent.id, node)
            self._record(mutation)
            try:
                if self.context.is_accountant:
                    dto = await self.client.upload_accountant_document(parent.id, file, expiry_date)
                else:
                    dto = await self.client.upload_document(
                        parent.id, self.context.entity_id, file, expiry_date,
                    )
            except Exception as exc:
                remove_node(self.tree, temp_id)
                self._record(mutation.roll_back(exc))
                logger.warning("Upload rolled back: %s", exc, extra={"folder_id": parent.id})
                raise

            confirmed = TreeNode.from_document(dto)
            if not replace_node(self.tree, temp_id, confirmed):
                logger.debug("Pending document %s no longer in tree; keeping server state", temp_id)
            self._record(mutation.commit(confirmed.id))
            logger.info(
                "Uploaded document %s", confirmed.id,
                extra={"folder_id": parent.id, "size": file.size},
            )
            self._schedule_resync(epoch)
            return confirmed
        finally:
            mutation_id_var.reset(token)

    async def rename_folder(self, folder_id: str, name: str) -> TreeNode:
        name = self._clean_folder_name(name)
        folder = find_folder(self.tree, folder_id)
        if folder is None:
            raise ValidationError(f"Folder not found: {folder_id}", field="folder_id")
        if folder.is_root:
            raise ValidationError("The root folder cannot be renamed", field="folder_id")
        if folder.is_virtual:
            raise ValidationError(
                f"{folder.name} is a placeholder for a folder that was not returned by the server",
                field="folder_id",
            )
        self._require_saved(folder)
        if folder.name == name:
            return folder

        mutation = Mutation(
            kind=MutationKind.RENAME_FOLDER,
            target_id=folder.id,
            previous_name=folder.name,
        )
        token = mutation_id_var.set(mutation.id)
        try:
            rename_node(self.tree, folder.id, name)
            self._record(mutation)
            try:
                await self.client.rename_folder(folder.id, name)
            except Exception as exc:
                current = find_folder(self.tree, folder.id)
                if current is not None and current.name == name:
                    rename_node(self.tree, folder.id, mutation.previous_name)
                self._record(mutation.roll_back(exc))
                logger.warning("Rename rolled back: %s", exc, extra={"folder_id": folder.id})
                raise
            self._record(mutation.commit())
            logger.info("Renamed folder %s", folder.id)
            return folder
        finally:
            mutation_id_var.reset(token)

    async def delete_item(self, item_id: str, kind: str) -> None:
        """Delete a folder or document from the tree, or an item from the shared list."""
        if kind not in ITEM_KINDS:
            raise ValidationError(f"Unknown item kind: {kind}", field="kind")

        node = find_node(self.tree, item_id)
        if node is None:
            await self._delete_shared_item(item_id, kind)
            return
        if node.is_root:
            raise ValidationError("The root folder cannot be deleted", field="item_id")
        if node.is_folder != (kind == "folder"):
            raise ValidationError(f"{node.name} is not a {kind}", field="kind")
        self._require_saved(node)
        if node.is_folder:
            reason = deletion_blocker(node, self.context.user_id)
            if reason:
                raise FolderNotDeletableError(node.id, reason)

        # Never leave the view pointed at a node that is about to disappear.
        browsing = find_path(self.tree, self.context.folder_id)
        if any(n.id == node.id for n in browsing):
            parent = find_parent(self.tree, node.id)
            self.navigate_to(parent.id if parent is not None else ROOT_ID)

        epoch = self._epoch
        removed = remove_node(self.tree, node.id)
        mutation = Mutation(kind=MutationKind.DELETE_ITEM, target_id=node.id, removed=removed)
        token = mutation_id_var.set(mutation.id)
        try:
            self._record(mutation)
            try:
                await self.client.delete_item(node.id, kind)
            except Exception as exc:
                if removed is not None:
                    restore_node(self.tree, removed)
                self._record(mutation.roll_back(exc))
                logger.warning("Delete rolled back: %s", exc, extra={"item_id": node.id, "kind": kind})
                raise
            self._record(mutation.commit())
            logger.info("Deleted %s %s", kind, node.id)
            self._schedule_resync(epoch)
        finally:
            mutation_id_var.reset(token)

    async def share_item(self, item_id: str, emails: str) -> List[str]:
        """Share a folder or document with comma-separated *emails*; returns the addresses used."""
        addresses = [e.strip() for e in (emails or "").split(",") if e.strip()]
        if not addresses:
            raise ValidationError("Enter at least one email address", field="emails")
        invalid = [a for a in addresses if not _EMAIL_RE.match(a)]
        if invalid:
            raise ValidationError(f"Invalid email address: {', '.join(invalid)}", field="emails")

        node = find_node(self.tree, item_id)
        if node is not None:
            self._require_saved(node)
            is_folder = node.is_folder
        else:
            shared = next((item for item in self._shared if item.id == item_id), None)
            if shared is None:
                raise ValidationError(f"Item not found: {item_id}", field="item_id")
            is_folder = shared.is_folder

        if is_folder:
            # The folder endpoint takes one address per call.
            for address in addresses:
                await self.client.share_folder(item_id, address)
        else:
            await self.client.share_document(item_id, addresses)
        logger.info("Shared %s with %d recipient(s)", item_id, len(addresses))
        return addresses

    def share_link(self, item_id: str) -> str:
        """Direct link to *item_id* for pasting into a message."""
        node = find_node(self.tree, item_id)
        if node is not None:
            self._require_saved(node)
        elif all(item.id != item_id for item in self._shared):
            raise ValidationError(f"Item not found: {item_id}", field="item_id")
        return self.client.document_url(item_id)

    async def download_document(self, document_id: str) -> bytes:
        return await self.client.download_document(document_id)

    # ------------------------------------------------------------------
    # Background reconciliation
    # ------------------------------------------------------------------

    async def wait_for_resync(self) -> None:
        while self._resync_tasks:
            await asyncio.gather(*list(self._resync_tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop applying server results to this session (the host view went away)."""
        self._closed = True
        self._epoch += 1
        tasks = list(self._resync_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.shared_navigator.reset()

    def _schedule_resync(self, epoch: int, shared: bool = False) -> None:
        if self._closed or epoch != self._epoch:
            return
        task = asyncio.get_running_loop().create_task(self._resync(epoch, shared))
        self._resync_tasks.add(task)
        task.add_done_callback(self._resync_tasks.discard)

    async def _resync(self, epoch: int, shared: bool) -> None:
        entity_id = self.context.entity_id
        try:
            if shared:
                items = await self._fetch_shared()
            else:
                data = await self.client.list_folder_tree(entity_id)
        except Exception as exc:
            failure = ReconciliationFailure(entity_id, exc)
            logger.warning(failure.message, extra=failure.details)
            return

        if self._closed or epoch != self._epoch:
            logger.debug("Discarding resync result for a previous context")
            return
        if shared:
            self._shared = list(items)
        else:
            self._replace_tree(build_tree(
                data.folders,
                data.documents,
                include_root_documents=self.config.show_root_documents,
            ))
        logger.debug("Resync applied", extra={"entity_id": entity_id, "shared": shared})

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _delete_shared_item(self, item_id: str, kind: str) -> None:
        index = next((i for i, item in enumerate(self._shared) if item.id == item_id), None)
        if index is None:
            raise ValidationError(f"Item not found: {item_id}", field="item_id")
        item = self._shared[index]
        if item.is_folder != (kind == "folder"):
            raise ValidationError(f"{item.name} is not a {kind}", field="kind")

        mutation = Mutation(
            kind=MutationKind.DELETE_ITEM,
            target_id=item_id,
            removed_shared=(index, item),
        )
        token = mutation_id_var.set(mutation.id)
        try:
            epoch = self._epoch
            self._shared.pop(index)
            self._record(mutation)
            try:
                await self.client.delete_item(item_id, kind)
            except Exception as exc:
                if all(existing.id != item_id for existing in self._shared):
                    self._shared.insert(min(index, len(self._shared)), item)
                self._record(mutation.roll_back(exc))
                logger.warning("Shared delete rolled back: %s", exc, extra={"item_id": item_id})
                raise
            self._record(mutation.commit())
            logger.info("Deleted shared %s %s", kind, item_id)
            self._schedule_resync(epoch, shared=True)
        finally:
            mutation_id_var.reset(token)

    async def _fetch_shared(self) -> List[SharedItem]:
        if self.context.is_accountant:
            return await self.client.list_shared_items(accountant=True)
        return await self.client.list_shared_items(self.context.entity_id)

    def _replace_tree(self, tree: TreeNode) -> None:
        self.tree = tree
        if find_folder(tree, self.context.folder_id) is None:
            logger.info(
                "Folder %s no longer exists; returning to root", self.context.folder_id,
            )
            self.context = self.context.with_folder(ROOT_ID)

    def _writable_folder(self, folder_id: str) -> TreeNode:
        folder = find_folder(self.tree, folder_id)
        if folder is None:
            raise ValidationError(f"Folder not found: {folder_id}", field="folder_id")
        self._require_saved(folder)
        return folder

    @staticmethod
    def _require_saved(node: TreeNode) -> None:
        if node.is_temporary:
            raise ValidationError(
                f"{node.name} is still being saved; try again in a moment",
                field="item_id",
            )

    @staticmethod
    def _clean_folder_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Folder name cannot be empty", field="name")
        if "/" in name:
            raise ValidationError("Folder name cannot contain '/'", field="name")
        return name

    def _record(self, mutation: Mutation) -> None:
        """Insert or update *mutation* in the history, trimming old finished entries."""
        for i, existing in enumerate(self.mutations):
            if existing.id == mutation.id:
                self.mutations[i] = mutation
                break
        else:
            self.mutations.append(mutation)

        finished = [m for m in self.mutations if not m.is_pending]
        excess = len(finished) - self.config.mutation_history_limit
        if excess > 0:
            dropped = {m.id for m in finished[:excess]}
            self.mutations = [m for m in self.mutations if m.id not in dropped]
