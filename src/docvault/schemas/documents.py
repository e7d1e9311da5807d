"""Wire schemas for the document/folder service."""

from datetime import date
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

ROOT_ID = "root"


def _coerce_id(v: Any) -> Optional[str]:
    """Server ids may arrive as integers; the tree always keys by string."""
    if v is None:
        return None
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return v


def _coerce_parent(v: Any) -> Optional[str]:
    """Normalize the many spellings of "attached to root" to None."""
    v = _coerce_id(v)
    if v in ("", ROOT_ID):
        return None
    return v


def _coerce_date(v: Any) -> Any:
    """Accept ``2024-06-10T00:00:00`` as well as ``2024-06-10``."""
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return None
        if len(v) > 10 and v[10] in ("T", " "):
            return v[:10]
    return v


class DocumentDTO(BaseModel):
    """A document as returned by the document service."""
    id: str
    name: str
    folder_id: Optional[str] = None
    expiry_date: Optional[date] = None
    owner_id: Optional[str] = None
    size: Optional[int] = None
    file_type: Optional[str] = None

    @field_validator('id', 'owner_id', mode='before')
    @classmethod
    def validate_id(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator('folder_id', mode='before')
    @classmethod
    def validate_folder_id(cls, v: Any) -> Any:
        return _coerce_parent(v)

    @field_validator('expiry_date', mode='before')
    @classmethod
    def validate_expiry_date(cls, v: Any) -> Any:
        return _coerce_date(v)


class FolderDTO(BaseModel):
    """A folder as returned by the document service.

    Some endpoints nest the folder's documents inline; others return them in
    the sibling ``documents`` array of :class:`FolderTreeResponse`.
    """
    id: str
    name: str
    parent_id: Optional[str] = None
    template_id: Optional[str] = None
    owner_id: Optional[str] = None
    documents: List[DocumentDTO] = Field(default_factory=list)

    @field_validator('id', 'template_id', 'owner_id', mode='before')
    @classmethod
    def validate_id(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator('parent_id', mode='before')
    @classmethod
    def validate_parent_id(cls, v: Any) -> Any:
        return _coerce_parent(v)

    @field_validator('documents', mode='before')
    @classmethod
    def validate_documents(cls, v: Any) -> Any:
        return v or []


class FolderTreeResponse(BaseModel):
    """Flat folders + documents payload for one entity (or one shared level)."""
    folders: List[FolderDTO] = Field(default_factory=list)
    documents: List[DocumentDTO] = Field(default_factory=list)

    @field_validator('folders', 'documents', mode='before')
    @classmethod
    def validate_lists(cls, v: Any) -> Any:
        return v or []


class SharedItem(BaseModel):
    """A folder or document another user shared with the current user.

    Flat: parent links point into the same shared collection (or nowhere),
    never into the user's own tree.
    """
    id: str
    name: str
    is_folder: bool
    parent_id: Optional[str] = None
    folder_id: Optional[str] = None
    template_id: Optional[str] = None
    owner_id: Optional[str] = None
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    expiry_date: Optional[date] = None
    size: Optional[int] = None
    file_type: Optional[str] = None
    organization_id: Optional[str] = None

    @field_validator('id', 'template_id', 'owner_id', 'organization_id', mode='before')
    @classmethod
    def validate_id(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator('parent_id', 'folder_id', mode='before')
    @classmethod
    def validate_parent_id(cls, v: Any) -> Any:
        return _coerce_parent(v)

    @field_validator('expiry_date', mode='before')
    @classmethod
    def validate_expiry_date(cls, v: Any) -> Any:
        return _coerce_date(v)

    @property
    def container_id(self) -> Optional[str]:
        """The folder this item sits in: parent_id for folders, folder_id for documents."""
        if self.is_folder:
            return self.parent_id
        return self.folder_id or self.parent_id


class SharedItemsResponse(BaseModel):
    """Shared-with-me payload; folders and documents arrive separately."""
    folders: List[SharedItem] = Field(default_factory=list)
    documents: List[SharedItem] = Field(default_factory=list)

    @field_validator('folders', mode='before')
    @classmethod
    def validate_folders(cls, v: Any) -> Any:
        return [dict(item, is_folder=True) if isinstance(item, dict) else item for item in (v or [])]

    @field_validator('documents', mode='before')
    @classmethod
    def validate_documents(cls, v: Any) -> Any:
        return [dict(item, is_folder=False) if isinstance(item, dict) else item for item in (v or [])]

    def items(self) -> List[SharedItem]:
        """Documents first, then folders, as the vault lists them."""
        return [*self.documents, *self.folders]


class FileUpload(BaseModel):
    """A file picked by the user for upload."""
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @field_validator('filename')
    @classmethod
    def validate_filename(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Filename cannot be empty")
        return v

    @property
    def size(self) -> int:
        return len(self.content)
