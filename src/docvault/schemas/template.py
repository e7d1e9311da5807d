"""Folder template schemas."""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from .documents import _coerce_id


class TemplateFolder(BaseModel):
    """A top-level template folder with its direct subfolders (UI shape)."""
    name: str
    subfolders: List[str] = Field(default_factory=list)


class FolderTemplate(BaseModel):
    """A named folder template in its nested, UI-friendly shape."""
    id: str
    name: str
    folders: List[TemplateFolder] = Field(default_factory=list)

    @field_validator('id', mode='before')
    @classmethod
    def validate_id(cls, v: Any) -> Any:
        return _coerce_id(v)


class FolderTemplateRecord(BaseModel):
    """A folder template as stored by the template service (flat folders)."""
    id: str
    name: str
    folders: List[str] = Field(default_factory=list)

    @field_validator('id', mode='before')
    @classmethod
    def validate_id(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator('folders', mode='before')
    @classmethod
    def validate_folders(cls, v: Any) -> Any:
        return v or []


class ApplyTemplateError(BaseModel):
    """Per-client failure reported when applying a template."""
    client_id: Optional[str] = None
    error: str = ""

    @field_validator('client_id', mode='before')
    @classmethod
    def validate_client_id(cls, v: Any) -> Any:
        return _coerce_id(v)


class ApplyTemplateResult(BaseModel):
    """Outcome of applying a template to several clients at once."""
    success: List[str] = Field(default_factory=list)
    errors: List[ApplyTemplateError] = Field(default_factory=list)

    @field_validator('success', mode='before')
    @classmethod
    def validate_success(cls, v: Any) -> Any:
        return [_coerce_id(item) for item in (v or [])]

    @field_validator('errors', mode='before')
    @classmethod
    def validate_errors(cls, v: Any) -> Any:
        # Older service versions report bare error strings.
        return [{"error": item} if isinstance(item, str) else item for item in (v or [])]
