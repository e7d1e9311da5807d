"""Tree building, navigation, mutation, sharing, template and expiry services."""

from .document_tree_service import DocumentTreeService, Tab
from .shared_items import SharedFolderNavigator, dedupe_shared_items
from .template_service import TemplateService
from .tree_builder import build_tree
from .tree_paths import find_folder, find_path

__all__ = [
    "DocumentTreeService",
    "Tab",
    "SharedFolderNavigator",
    "dedupe_shared_items",
    "TemplateService",
    "build_tree",
    "find_folder",
    "find_path",
]
