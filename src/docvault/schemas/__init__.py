"""Pydantic schemas for the document service and the client-side tree."""

from .documents import (
    ROOT_ID,
    DocumentDTO,
    FolderDTO,
    FolderTreeResponse,
    SharedItem,
    SharedItemsResponse,
    FileUpload,
)
from .tree import (
    TreeNode,
    Breadcrumb,
    NavigationContext,
    is_temporary_id,
    ACCOUNTANT_ROLE,
)
from .template import (
    TemplateFolder,
    FolderTemplate,
    FolderTemplateRecord,
    ApplyTemplateResult,
)

__all__ = [
    "ROOT_ID",
    "DocumentDTO",
    "FolderDTO",
    "FolderTreeResponse",
    "SharedItem",
    "SharedItemsResponse",
    "FileUpload",
    "TreeNode",
    "Breadcrumb",
    "NavigationContext",
    "is_temporary_id",
    "ACCOUNTANT_ROLE",
    "TemplateFolder",
    "FolderTemplate",
    "FolderTemplateRecord",
    "ApplyTemplateResult",
]
