"""Folder templates: reusable nested folder skeletons applied to many clients."""

import logging
from typing import List, Sequence

from ..exceptions import ValidationError
from ..schemas.template import (
    ApplyTemplateResult,
    FolderTemplate,
    FolderTemplateRecord,
    TemplateFolder,
)
from .template_codec import decode_template_folders, encode_template_folders

logger = logging.getLogger(__name__)


class TemplateService:
    """Template CRUD in the nested shape; the wire format never leaks out.

    Public methods:
        list_templates   -- all templates, folders decoded
        create_template  -- validate, encode, create
        update_template  -- validate, encode, replace name and folders
        delete_template
        apply_template   -- create the skeleton for several clients at once
    """

    def __init__(self, client):
        self.client = client

    async def list_templates(self) -> List[FolderTemplate]:
        records = await self.client.list_templates()
        return [self._decode(record) for record in records]

    async def create_template(self, name: str, folders: Sequence[TemplateFolder]) -> FolderTemplate:
        name, flat = self._prepare(name, folders)
        record = await self.client.create_template(name, flat)
        logger.info("Created folder template", extra={"template_id": record.id, "folders": len(flat)})
        return self._decode(record)

    async def update_template(
        self, template_id: str, name: str, folders: Sequence[TemplateFolder],
    ) -> FolderTemplate:
        name, flat = self._prepare(name, folders)
        record = await self.client.update_template(template_id, name, flat)
        logger.info("Updated folder template", extra={"template_id": template_id, "folders": len(flat)})
        return self._decode(record)

    async def delete_template(self, template_id: str) -> None:
        await self.client.delete_template(template_id)
        logger.info("Deleted folder template", extra={"template_id": template_id})

    async def apply_template(self, template_id: str, client_ids: Sequence[str]) -> ApplyTemplateResult:
        """Apply to every client in *client_ids*; per-client failures come back in ``errors``."""
        ids = [str(cid) for cid in client_ids if str(cid).strip()]
        if not ids:
            raise ValidationError("Select at least one client", field="client_ids")
        result = await self.client.apply_template(template_id, ids)
        if result.errors:
            logger.warning(
                "Template applied with errors",
                extra={
                    "template_id": template_id,
                    "succeeded": len(result.success),
                    "failed": len(result.errors),
                },
            )
        return result

    @staticmethod
    def _prepare(name: str, folders: Sequence[TemplateFolder]) -> tuple[str, List[str]]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Template name cannot be empty", field="name")
        flat = encode_template_folders(folders)
        if not flat:
            raise ValidationError("A template needs at least one folder", field="folders")
        return name, flat

    @staticmethod
    def _decode(record: FolderTemplateRecord) -> FolderTemplate:
        return FolderTemplate(
            id=record.id,
            name=record.name,
            folders=decode_template_folders(record.folders),
        )
