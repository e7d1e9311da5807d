"""Build the client-side folder/document tree from flat API payloads."""

import logging
from typing import Dict, List, Optional, Sequence

from ..schemas.documents import ROOT_ID, DocumentDTO, FolderDTO
from ..schemas.tree import TreeNode

logger = logging.getLogger(__name__)


def build_tree(
    folders: Sequence[FolderDTO],
    documents: Sequence[DocumentDTO],
    include_root_documents: bool = False,
) -> TreeNode:
    """Turn flat folders and documents into a tree under a synthetic root.

    Folders hang under their parent when it is a known folder, otherwise under
    root. Documents hang under their folder; a document whose folder is not in
    *folders* goes into a virtual folder (one per missing id) attached to root.
    Documents without a folder are not attached unless *include_root_documents*
    is set: root only lists folders.

    A folder whose parent chain loops back on itself is attached to root.
    """
    root = TreeNode.root()

    # Index folders by id; the first DTO wins if the service repeats one.
    folder_map: Dict[str, TreeNode] = {}
    folder_dtos: List[FolderDTO] = []
    for dto in folders:
        if dto.id in folder_map or dto.id == ROOT_ID:
            logger.warning("Skipping duplicate folder %s in tree payload", dto.id)
            continue
        folder_map[dto.id] = TreeNode.from_folder(dto)
        folder_dtos.append(dto)

    placed_ids = set(folder_map)
    parents = _effective_parents(folder_dtos)

    for dto in folder_dtos:
        node = folder_map[dto.id]
        parent_id = parents[dto.id]
        node.parent_id = parent_id
        if parent_id is None:
            root.children.append(node)
        else:
            folder_map[parent_id].children.append(node)

        # Nested API shape: the folder carries its own documents inline.
        for doc in dto.documents:
            if doc.id in placed_ids:
                continue
            node.children.append(_document_node(doc, dto.id))
            placed_ids.add(doc.id)

    virtual_count = 0
    for doc in documents:
        folder_id = doc.folder_id or ROOT_ID
        if folder_id == ROOT_ID:
            if include_root_documents and doc.id not in placed_ids:
                root.children.append(_document_node(doc, None))
                placed_ids.add(doc.id)
            continue

        if doc.id in placed_ids:
            continue

        target = folder_map.get(folder_id)
        if target is None:
            target = TreeNode.virtual_folder(folder_id)
            folder_map[folder_id] = target
            root.children.append(target)
            virtual_count += 1
        target.children.append(_document_node(doc, folder_id))
        placed_ids.add(doc.id)

    logger.debug(
        "Built tree",
        extra={
            "folders": len(folder_dtos),
            "documents": len(documents),
            "virtual_folders": virtual_count,
        },
    )
    return root


def _document_node(doc: DocumentDTO, folder_id: Optional[str]) -> TreeNode:
    node = TreeNode.from_document(doc)
    node.folder_id = folder_id
    node.parent_id = folder_id
    return node


def _effective_parents(folder_dtos: Sequence[FolderDTO]) -> Dict[str, Optional[str]]:
    """Parent id per folder after dropping unknown parents and breaking cycles.

    Each cycle is broken at its first-listed member, which is attached to
    root. Folders that merely hang below a cycle keep their parent.
    """
    parents: Dict[str, Optional[str]] = {}
    for dto in folder_dtos:
        parents[dto.id] = dto.parent_id
    for folder_id, parent_id in parents.items():
        if parent_id is not None and parent_id not in parents:
            parents[folder_id] = None

    for dto in folder_dtos:
        if _returns_to_self(dto.id, parents):
            logger.warning(
                "Folder %s has a cyclic parent chain; attaching it to root",
                dto.id, extra={"folder_id": dto.id, "parent_id": dto.parent_id},
            )
            parents[dto.id] = None
    return parents


def _returns_to_self(folder_id: str, parents: Dict[str, Optional[str]]) -> bool:
    seen = set()
    current = parents[folder_id]
    while current is not None and current not in seen:
        if current == folder_id:
            return True
        seen.add(current)
        current = parents[current]
    return False
