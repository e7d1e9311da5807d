"""Shared test fixtures for the docvault test suite.

The document service is replaced by an ``AsyncMock`` specced on
``DocVaultClient``, so service tests exercise the real tree logic without
any network. Client tests use ``httpx.MockTransport`` instead.
"""

import os

# Text logs and no retry sleeps before any docvault import reads settings.
os.environ["DOCVAULT_LOG_FORMAT"] = "text"
os.environ["DOCVAULT_RETRY_BASE_DELAY"] = "0"

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from docvault.api_client import DocVaultClient
from docvault.core.config import Settings
from docvault.schemas.documents import DocumentDTO, FolderDTO, FolderTreeResponse, SharedItem
from docvault.schemas.tree import NavigationContext
from docvault.services.document_tree_service import DocumentTreeService


def make_folder(folder_id: str, name: str = "", parent_id=None, **overrides) -> FolderDTO:
    """Factory for folder payloads."""
    payload = {"id": folder_id, "name": name or f"Folder {folder_id}", "parent_id": parent_id}
    payload.update(overrides)
    return FolderDTO.model_validate(payload)


def make_document(doc_id: str, folder_id=None, name: str = "", **overrides) -> DocumentDTO:
    """Factory for document payloads."""
    payload = {"id": doc_id, "name": name or f"{doc_id}.pdf", "folder_id": folder_id}
    payload.update(overrides)
    return DocumentDTO.model_validate(payload)


def make_shared(item_id: str, is_folder: bool, parent_id=None, **overrides) -> SharedItem:
    """Factory for shared-with-me items; documents use folder_id as their parent."""
    payload = {"id": item_id, "name": item_id, "is_folder": is_folder}
    if is_folder:
        payload["parent_id"] = parent_id
    else:
        payload["folder_id"] = parent_id
    payload.update(overrides)
    return SharedItem.model_validate(payload)


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        api_url="http://docs.test",
        api_token="test-token",
        agency_id="agency-1",
        max_retries=3,
        retry_base_delay=0,
    )


@pytest.fixture()
def client() -> AsyncMock:
    """Document service stub. Tests set return values / side effects per call."""
    mock = AsyncMock(spec=DocVaultClient)
    mock.list_folder_tree.return_value = FolderTreeResponse()
    mock.list_shared_items.return_value = []
    return mock


@pytest.fixture()
def invoices_tree() -> FolderTreeResponse:
    """Root > Invoices (F1, owned by user-1) and Root > Tax (F2) > 2024 (F3) with one document."""
    return FolderTreeResponse(
        folders=[
            make_folder("F1", "Invoices", owner_id="user-1"),
            make_folder("F2", "Tax", owner_id="user-1"),
            make_folder("F3", "2024", parent_id="F2", owner_id="user-1"),
        ],
        documents=[make_document("d1", folder_id="F3", name="return.pdf")],
    )


@pytest_asyncio.fixture()
async def service(client, invoices_tree, test_settings) -> DocumentTreeService:
    """A loaded session for entity E1 as user-1."""
    client.list_folder_tree.return_value = invoices_tree
    svc = DocumentTreeService(
        client,
        NavigationContext(entity_id="E1", user_id="user-1"),
        config=test_settings,
    )
    await svc.load()
    yield svc
    await svc.close()
