"""Depth-first lookups over the tree. Pure: nothing here mutates or raises on a miss."""

from typing import List, Optional

from ..schemas.tree import TreeNode


def find_path(root: TreeNode, node_id: str) -> List[TreeNode]:
    """Root-to-target node list (both ends included), or [] if *node_id* is absent."""
    path: List[TreeNode] = []

    def search(node: TreeNode) -> bool:
        path.append(node)
        if node.id == node_id:
            return True
        if node.is_folder:
            for child in node.children:
                if search(child):
                    return True
        path.pop()
        return False

    search(root)
    return path


def find_folder(root: TreeNode, folder_id: str) -> Optional[TreeNode]:
    """First folder (or root itself) with *folder_id*, searching folders only."""
    if root.id == folder_id and root.is_folder:
        return root
    for child in root.children:
        if child.is_folder:
            found = find_folder(child, folder_id)
            if found is not None:
                return found
    return None


def find_node(root: TreeNode, node_id: str) -> Optional[TreeNode]:
    """First node of either kind with *node_id*."""
    path = find_path(root, node_id)
    return path[-1] if path else None


def find_parent(root: TreeNode, node_id: str) -> Optional[TreeNode]:
    """The folder whose children hold *node_id*; None for root or a miss."""
    path = find_path(root, node_id)
    if len(path) < 2:
        return None
    return path[-2]


def iter_nodes(root: TreeNode):
    """Yield every node below *root* in pre-order (root excluded)."""
    for child in root.children:
        yield child
        if child.is_folder:
            yield from iter_nodes(child)
