"""Tree and navigation schemas."""

import uuid
from dataclasses import dataclass, replace
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from .documents import ROOT_ID, DocumentDTO, FolderDTO

ROOT_NAME = "Home"
ACCOUNTANT_ROLE = "CA_ACCOUNTANT"
TEMP_ID_PREFIX = "temp-"


def new_temporary_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temporary_id(node_id: Optional[str]) -> bool:
    """True for ids minted locally for a pending optimistic create."""
    return bool(node_id) and node_id.startswith(TEMP_ID_PREFIX)


class TreeNode(BaseModel):
    """A folder or document in the client-side tree.

    Folder-only fields: children, template_id, is_virtual.
    Document-only fields: folder_id, expiry_date, size, file_type.
    """
    id: str
    name: str
    is_folder: bool
    parent_id: Optional[str] = None  # None = attached to root
    owner_id: Optional[str] = None

    # Folders
    children: List['TreeNode'] = Field(default_factory=list)
    template_id: Optional[str] = None
    is_virtual: bool = False  # synthesized for documents whose folder is missing

    # Documents
    folder_id: Optional[str] = None
    expiry_date: Optional[date] = None
    size: Optional[int] = None
    file_type: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.id == ROOT_ID

    @property
    def is_temporary(self) -> bool:
        return is_temporary_id(self.id)

    @classmethod
    def root(cls) -> 'TreeNode':
        return cls(id=ROOT_ID, name=ROOT_NAME, is_folder=True)

    @classmethod
    def from_folder(cls, dto: FolderDTO) -> 'TreeNode':
        return cls(
            id=dto.id,
            name=dto.name,
            is_folder=True,
            parent_id=dto.parent_id,
            owner_id=dto.owner_id,
            template_id=dto.template_id,
        )

    @classmethod
    def from_document(cls, dto: DocumentDTO) -> 'TreeNode':
        return cls(
            id=dto.id,
            name=dto.name,
            is_folder=False,
            parent_id=dto.folder_id,
            folder_id=dto.folder_id,
            owner_id=dto.owner_id,
            expiry_date=dto.expiry_date,
            size=dto.size,
            file_type=dto.file_type,
        )

    @classmethod
    def virtual_folder(cls, folder_id: str) -> 'TreeNode':
        return cls(id=folder_id, name=f"Folder {folder_id}", is_folder=True, is_virtual=True)


class Breadcrumb(BaseModel):
    """One entry of a breadcrumb trail."""
    id: str
    name: str


@dataclass(frozen=True)
class NavigationContext:
    """What the session is looking at: whose tree, which folder, as whom.

    Accountants (``user_role == "CA_ACCOUNTANT"``) work across client
    organisations; ``organization_id`` is the client they are looking at, or
    None for all of them.

    Immutable; navigation produces a new context via :meth:`with_folder`.
    """
    entity_id: Optional[str] = None
    folder_id: str = ROOT_ID
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    organization_id: Optional[str] = None

    @property
    def is_accountant(self) -> bool:
        return self.user_role == ACCOUNTANT_ROLE

    def with_folder(self, folder_id: str) -> 'NavigationContext':
        return replace(self, folder_id=folder_id)

    def with_entity(self, entity_id: Optional[str]) -> 'NavigationContext':
        return replace(self, entity_id=entity_id, folder_id=ROOT_ID)

    def with_organization(
        self, organization_id: Optional[str], entity_id: Optional[str] = None,
    ) -> 'NavigationContext':
        """Switch client; the tree shown is *entity_id* if given, else the client's own."""
        return replace(
            self,
            organization_id=organization_id,
            entity_id=entity_id or organization_id,
            folder_id=ROOT_ID,
        )
