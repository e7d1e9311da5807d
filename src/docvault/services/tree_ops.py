"""In-place edits of the tree, each paired with its exact inverse.

Every function keeps the parent/child invariant: a node's ``parent_id`` (and a
document's ``folder_id``) names the folder whose ``children`` hold it, with
None standing for root. Functions return None/False on a miss instead of
raising, because a background resync may have replaced the tree since the
caller last looked.
"""

from dataclasses import dataclass
from typing import Optional

from ..schemas.documents import ROOT_ID
from ..schemas.tree import TreeNode
from .tree_paths import find_folder, find_node, find_parent


@dataclass(frozen=True)
class RemovedNode:
    """Enough to put a removed node back exactly where it was."""
    parent_id: str
    index: int
    node: TreeNode


def _attach(node: TreeNode, parent_id: str) -> None:
    link = None if parent_id == ROOT_ID else parent_id
    node.parent_id = link
    if not node.is_folder:
        node.folder_id = link


def insert_child(root: TreeNode, parent_id: str, node: TreeNode) -> bool:
    """Append *node* to the folder *parent_id*."""
    parent = find_folder(root, parent_id)
    if parent is None:
        return False
    if any(child.id == node.id for child in parent.children):
        return False
    _attach(node, parent.id)
    parent.children.append(node)
    return True


def replace_node(root: TreeNode, node_id: str, replacement: TreeNode) -> bool:
    """Swap the node *node_id* for *replacement* at the same position."""
    parent = find_parent(root, node_id)
    if parent is None:
        return False
    index = next(i for i, child in enumerate(parent.children) if child.id == node_id)
    _attach(replacement, parent.id)
    parent.children[index] = replacement
    return True


def remove_node(root: TreeNode, node_id: str) -> Optional[RemovedNode]:
    """Detach *node_id* from its parent; root itself cannot be removed."""
    parent = find_parent(root, node_id)
    if parent is None:
        return None
    index = next(i for i, child in enumerate(parent.children) if child.id == node_id)
    node = parent.children.pop(index)
    return RemovedNode(parent_id=parent.id, index=index, node=node)


def restore_node(root: TreeNode, removed: RemovedNode) -> bool:
    """Undo :func:`remove_node`: put the node back at its old index."""
    parent = find_folder(root, removed.parent_id)
    if parent is None:
        return False
    if any(child.id == removed.node.id for child in parent.children):
        return False
    index = min(removed.index, len(parent.children))
    _attach(removed.node, parent.id)
    parent.children.insert(index, removed.node)
    return True


def rename_node(root: TreeNode, node_id: str, name: str) -> Optional[str]:
    """Rename *node_id* and return its previous name."""
    node = find_node(root, node_id)
    if node is None:
        return None
    previous = node.name
    node.name = name
    return previous
