"""Rules deciding whether a folder may be deleted.

Checked locally before any delete reaches the document service:

- only the folder's owner may delete it;
- a folder created from a template may keep empty subfolders forever, but
  never any document anywhere below it;
- any other folder must have no children at all.
"""

from typing import Optional

from ..schemas.tree import TreeNode
from .tree_paths import iter_nodes


def folder_has_documents_recursive(folder: TreeNode) -> bool:
    """True if a document exists anywhere in *folder*'s subtree."""
    return any(not node.is_folder for node in iter_nodes(folder))


def deletion_blocker(folder: TreeNode, current_user_id: Optional[str]) -> Optional[str]:
    """Why *folder* cannot be deleted, or None if it can."""
    if not folder.is_folder:
        return f"{folder.name} is not a folder"
    if folder.is_root:
        return "The root folder cannot be deleted"
    if folder.owner_id and folder.owner_id != current_user_id:
        return "Only the user who created this folder can delete it"
    if folder.template_id:
        if folder_has_documents_recursive(folder):
            return (
                f"Folder {folder.name} was created from a template and still "
                "contains documents; remove them first"
            )
        return None
    if folder.children:
        return f"Folder {folder.name} is not empty; remove its contents first"
    return None


def is_deletable(folder: TreeNode, current_user_id: Optional[str]) -> bool:
    return deletion_blocker(folder, current_user_id) is None
