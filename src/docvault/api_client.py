"""HTTP client for the document, folder and template REST API."""

import asyncio
import logging
from datetime import date
from typing import Any, Optional

import httpx

from .core.config import Settings, settings as default_settings
from .exceptions import RequestFailure, ValidationError
from .schemas.documents import (
    ROOT_ID,
    DocumentDTO,
    FileUpload,
    FolderDTO,
    FolderTreeResponse,
    SharedItem,
    SharedItemsResponse,
)
from .schemas.template import ApplyTemplateResult, FolderTemplateRecord
from .schemas.tree import is_temporary_id

logger = logging.getLogger(__name__)

# Requests that are safe to repeat after a 5xx or a dropped connection.
IDEMPOTENT_METHODS = frozenset({"GET", "PUT", "DELETE"})


def _error_message(resp: httpx.Response) -> str:
    """Pull the server's ``detail`` out of an error response, if it sent one."""
    fallback = f"HTTP error! status: {resp.status_code}"
    try:
        body = resp.json()
    except ValueError:
        return resp.text.strip() or fallback
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message")
        if isinstance(detail, str) and detail:
            return detail
        if detail:
            return str(detail)
    return fallback


def _reject_temporary(**ids: Optional[str]) -> None:
    """Temporary ids only live in the local tree and must never go upstream."""
    for field, value in ids.items():
        if is_temporary_id(value):
            raise ValidationError(
                f"Item {value} is still being created; try again once it is saved",
                field=field,
            )


def _upload_fields(folder_id: Optional[str], expiry_date: Optional[date]) -> dict[str, str]:
    data: dict[str, str] = {}
    if folder_id and folder_id != ROOT_ID:
        data["folder_id"] = folder_id
    if expiry_date:
        data["expiry_date"] = expiry_date.isoformat()
    return data


def _upload_file(file: FileUpload) -> dict[str, tuple[str, bytes, str]]:
    return {"file": (file.filename, file.content, file.content_type or "application/octet-stream")}


class DocVaultClient:
    """Async client wrapping the document service REST API.

    Configuration comes from :class:`~docvault.core.config.Settings`
    (``DOCVAULT_API_URL``, ``DOCVAULT_API_TOKEN``, ``DOCVAULT_AGENCY_ID``,
    ``DOCVAULT_API_TIMEOUT``...). Every failure surfaces as
    :class:`~docvault.exceptions.RequestFailure`.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or default_settings
        self.base_url = self.config.api_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "DocVaultClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers: dict[str, str] = {"accept": "application/json"}
            if self.config.api_token:
                headers["Authorization"] = f"Bearer {self.config.api_token}"
            if self.config.agency_id:
                headers["x-agency-id"] = self.config.agency_id
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.config.api_timeout,
                transport=self._transport,
            )
        return self._client

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Execute an HTTP request, retrying idempotent ones on transient failures.

        GET/PUT/DELETE are retried on connection errors and 5xx responses with
        exponential backoff. POST is sent exactly once so a slow create is
        never duplicated. Client errors (4xx) are never retried.
        """
        client = await self._get_client()
        attempts = self.config.max_retries if method in IDEMPOTENT_METHODS else 1
        last_exc: Optional[RequestFailure] = None

        for attempt in range(attempts):
            try:
                resp = await client.request(method, path, **kwargs)
                if resp.status_code < 500:
                    if resp.is_error:
                        raise RequestFailure(_error_message(resp), status_code=resp.status_code)
                    return resp
                # 5xx: retry
                last_exc = RequestFailure(_error_message(resp), status_code=resp.status_code)
            except httpx.TransportError as exc:
                last_exc = RequestFailure(f"Could not reach document service: {exc}")

            if attempt < attempts - 1:
                delay = self.config.retry_base_delay * (2 ** attempt)
                logger.warning(
                    "Request %s %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    method, path, attempt + 1, attempts, delay, last_exc,
                )
                await asyncio.sleep(delay)

        logger.error("Request %s %s failed: %s", method, path, last_exc)
        raise last_exc  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Own tree
    # ------------------------------------------------------------------

    async def list_folder_tree(self, entity_id: Optional[str] = None) -> FolderTreeResponse:
        """Folders and documents of one entity. Maps to GET /api/documents/folders/."""
        params: dict[str, str] = {"exclude_shared": "true"}
        if entity_id:
            params["entity_id"] = entity_id
        resp = await self._request_with_retry("GET", "/api/documents/folders/", params=params)
        return FolderTreeResponse.model_validate(resp.json() or {})

    async def create_folder(
        self,
        name: str,
        entity_id: Optional[str],
        parent_id: Optional[str],
    ) -> FolderDTO:
        """Create a folder. Maps to POST /api/documents/folders/."""
        _reject_temporary(parent_id=parent_id)
        resp = await self._request_with_retry(
            "POST",
            "/api/documents/folders/",
            json={
                "name": name,
                "entity_id": entity_id,
                "parent_id": None if parent_id == ROOT_ID else parent_id,
            },
        )
        return FolderDTO.model_validate(resp.json())

    async def upload_document(
        self,
        folder_id: Optional[str],
        entity_id: Optional[str],
        file: FileUpload,
        expiry_date: Optional[date],
    ) -> DocumentDTO:
        """Upload a file as multipart form data. Maps to POST /api/documents/."""
        _reject_temporary(folder_id=folder_id)
        data = _upload_fields(folder_id, expiry_date)
        if entity_id:
            data["entity_id"] = entity_id
        resp = await self._request_with_retry(
            "POST", "/api/documents/", data=data, files=_upload_file(file),
        )
        return DocumentDTO.model_validate(resp.json())

    # Accountants (CA_ACCOUNTANT role) create in whichever client tree the
    # server resolves for them, so no entity id is sent.

    async def create_accountant_folder(self, name: str, parent_id: Optional[str]) -> FolderDTO:
        """Create a folder as an accountant. Maps to POST /api/ca/documents/folders/ (form)."""
        _reject_temporary(parent_id=parent_id)
        data = {"folder_name": name}
        if parent_id and parent_id != ROOT_ID:
            data["parent_id"] = parent_id
        resp = await self._request_with_retry("POST", "/api/ca/documents/folders/", data=data)
        return FolderDTO.model_validate(resp.json())

    async def upload_accountant_document(
        self,
        folder_id: Optional[str],
        file: FileUpload,
        expiry_date: Optional[date],
    ) -> DocumentDTO:
        """Upload as an accountant. Maps to POST /api/ca/documents/ (multipart)."""
        _reject_temporary(folder_id=folder_id)
        resp = await self._request_with_retry(
            "POST",
            "/api/ca/documents/",
            data=_upload_fields(folder_id, expiry_date),
            files=_upload_file(file),
        )
        return DocumentDTO.model_validate(resp.json())

    async def rename_folder(self, folder_id: str, name: str) -> None:
        """Rename a folder. Maps to PUT /api/documents/folders/{folder_id}."""
        _reject_temporary(folder_id=folder_id)
        await self._request_with_retry(
            "PUT", f"/api/documents/folders/{folder_id}", json={"name": name},
        )

    async def delete_item(self, item_id: str, kind: str) -> None:
        """Delete a folder or a document. Maps to DELETE /api/documents/[folders/]{id}."""
        _reject_temporary(item_id=item_id)
        if kind == "folder":
            path = f"/api/documents/folders/{item_id}"
        elif kind == "document":
            path = f"/api/documents/{item_id}"
        else:
            raise ValidationError(f"Unknown item kind: {kind}", field="kind")
        await self._request_with_retry("DELETE", path)

    async def download_document(self, document_id: str) -> bytes:
        """Raw file content. Maps to GET /api/documents/{document_id}."""
        _reject_temporary(document_id=document_id)
        resp = await self._request_with_retry(
            "GET", f"/api/documents/{document_id}", headers={"accept": "*/*"},
        )
        return resp.content

    def document_url(self, document_id: str) -> str:
        """Link handed out when sharing; resolves to the raw document."""
        _reject_temporary(document_id=document_id)
        return f"{self.base_url}/api/documents/{document_id}"

    async def list_expiring_documents(self, entity_id: Optional[str] = None) -> list[DocumentDTO]:
        """Documents with an expiry date. Maps to GET /api/documents/expiring."""
        params: dict[str, str] = {}
        if entity_id:
            params["entity_id"] = entity_id
        resp = await self._request_with_retry("GET", "/api/documents/expiring", params=params)
        body = resp.json() or []
        if isinstance(body, dict):
            body = body.get("documents") or []
        return [DocumentDTO.model_validate(item) for item in body]

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def list_shared_items(
        self, entity_id: Optional[str] = None, accountant: bool = False,
    ) -> list[SharedItem]:
        """Items shared with the current user.

        Maps to GET /api/documents/share, or GET /api/ca/documents/shared/ for
        accountants, whose list spans every client organisation.
        """
        if accountant:
            resp = await self._request_with_retry("GET", "/api/ca/documents/shared/")
        else:
            params: dict[str, str] = {}
            if entity_id:
                params["entity_id"] = entity_id
            resp = await self._request_with_retry("GET", "/api/documents/share", params=params)
        body = resp.json() or {}
        if isinstance(body, list):
            return [SharedItem.model_validate(item) for item in body]
        return SharedItemsResponse.model_validate(body).items()

    async def list_shared_folder_contents(self, folder_id: str) -> FolderTreeResponse:
        """One level of a shared folder. Maps to GET /api/documents/share/folders/{folder_id}."""
        resp = await self._request_with_retry("GET", f"/api/documents/share/folders/{folder_id}")
        return FolderTreeResponse.model_validate(resp.json() or {})

    async def share_document(self, document_id: str, emails: list[str]) -> None:
        """Share a document by email. Maps to POST /api/documents/{document_id}/share."""
        _reject_temporary(document_id=document_id)
        await self._request_with_retry(
            "POST", f"/api/documents/{document_id}/share", json={"emails": emails},
        )

    async def share_folder(self, folder_id: str, email: str) -> None:
        """Share a folder with one address. Maps to POST /api/ca/documents/folders/{folder_id}/share (form)."""
        _reject_temporary(folder_id=folder_id)
        await self._request_with_retry(
            "POST", f"/api/ca/documents/folders/{folder_id}/share", data={"email": email},
        )

    # ------------------------------------------------------------------
    # Folder templates
    # ------------------------------------------------------------------

    async def list_templates(self) -> list[FolderTemplateRecord]:
        """All folder templates. Maps to GET /api/folder-templates/."""
        resp = await self._request_with_retry("GET", "/api/folder-templates/")
        return [FolderTemplateRecord.model_validate(item) for item in resp.json() or []]

    async def create_template(self, name: str, folders: list[str]) -> FolderTemplateRecord:
        """Maps to POST /api/folder-templates/."""
        resp = await self._request_with_retry(
            "POST", "/api/folder-templates/", json={"name": name, "folders": folders},
        )
        return FolderTemplateRecord.model_validate(resp.json())

    async def update_template(
        self, template_id: str, name: str, folders: list[str],
    ) -> FolderTemplateRecord:
        """Maps to PUT /api/folder-templates/{template_id}."""
        resp = await self._request_with_retry(
            "PUT",
            f"/api/folder-templates/{template_id}",
            json={"name": name, "folders": folders},
        )
        return FolderTemplateRecord.model_validate(resp.json())

    async def delete_template(self, template_id: str) -> None:
        """Maps to DELETE /api/folder-templates/{template_id}."""
        await self._request_with_retry("DELETE", f"/api/folder-templates/{template_id}")

    async def apply_template(self, template_id: str, client_ids: list[str]) -> ApplyTemplateResult:
        """Create the template's folders for each client. Maps to POST /api/folder-templates/{id}/apply."""
        resp = await self._request_with_retry(
            "POST",
            f"/api/folder-templates/{template_id}/apply",
            json={"client_ids": client_ids},
        )
        return ApplyTemplateResult.model_validate(resp.json() or {})

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
