"""Tests for DocumentTreeService: loading, navigation and optimistic mutations.

The document service is an AsyncMock; each test decides whether the call
succeeds or fails and then inspects the local tree. Every failure case checks
that the tree is back to exactly what it was before the optimistic apply.
"""

import logging
from datetime import date

import pytest
import pytest_asyncio

from docvault.exceptions import (
    ExpiryRequiredError,
    FolderNotDeletableError,
    RequestFailure,
    ValidationError,
)
from docvault.schemas.documents import FileUpload, FolderTreeResponse
from docvault.schemas.tree import ACCOUNTANT_ROLE, Breadcrumb, NavigationContext, TreeNode
from docvault.services.document_tree_service import DocumentTreeService, Tab
from docvault.services.mutations import MutationKind, MutationState
from docvault.services.tree_ops import insert_child
from docvault.services.tree_paths import find_folder, find_node
from tests.conftest import make_document, make_folder, make_shared


def _child_ids(service, folder_id):
    return [child.id for child in find_folder(service.tree, folder_id).children]


def _pdf(name="invoice.pdf"):
    return FileUpload(filename=name, content=b"%PDF-1.7 test", content_type="application/pdf")


# ---------------------------------------------------------------------------
# Loading and navigation
# ---------------------------------------------------------------------------


class TestLoadAndNavigate:
    @pytest.mark.asyncio
    async def test_load_builds_tree_for_entity(self, service, client):
        assert _child_ids(service, "root") == ["F1", "F2"]
        assert _child_ids(service, "F3") == ["d1"]
        client.list_folder_tree.assert_awaited_with("E1")

    @pytest.mark.asyncio
    async def test_navigation_updates_breadcrumbs(self, service):
        service.navigate_to("F3")
        assert [b.name for b in service.breadcrumbs] == ["Home", "Tax", "2024"]
        assert service.current_folder.id == "F3"

        service.go_back()
        assert service.context.folder_id == "F2"
        service.go_back()
        service.go_back()
        assert service.context.folder_id == "root"

    @pytest.mark.asyncio
    async def test_navigate_to_unknown_folder_rejected(self, service):
        with pytest.raises(ValidationError):
            service.navigate_to("nope")
        assert service.context.folder_id == "root"

    @pytest.mark.asyncio
    async def test_navigation_produces_new_context(self, service):
        before = service.context
        service.navigate_to("F1")
        assert before.folder_id == "root"
        assert service.context is not before
        assert service.context.entity_id == "E1"

    @pytest.mark.asyncio
    async def test_switch_entity_discards_tree(self, service, client):
        service.navigate_to("F3")
        client.list_folder_tree.return_value = FolderTreeResponse(folders=[make_folder("G1", "Other")])
        await service.switch_entity("E2")
        assert service.context.entity_id == "E2"
        assert service.context.folder_id == "root"
        assert _child_ids(service, "root") == ["G1"]
        client.list_folder_tree.assert_awaited_with("E2")

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_tree(self, service, client):
        before = service.tree.model_dump()
        client.list_folder_tree.side_effect = RequestFailure("down", status_code=503)
        with pytest.raises(RequestFailure):
            await service.refresh()
        assert service.tree.model_dump() == before

    @pytest.mark.asyncio
    async def test_refresh_that_removes_current_folder_returns_to_root(self, service, client):
        service.navigate_to("F1")
        client.list_folder_tree.return_value = FolderTreeResponse(folders=[make_folder("F2", "Tax")])
        await service.refresh()
        assert service.context.folder_id == "root"
        assert service.current_folder is service.tree


# ---------------------------------------------------------------------------
# Create folder
# ---------------------------------------------------------------------------


class TestCreateFolder:
    @pytest.mark.asyncio
    async def test_create_commits_server_folder_in_place(self, service, client):
        service.navigate_to("F1")
        client.create_folder.return_value = make_folder("F9", "Receipts", parent_id="F1")

        node = await service.create_folder("  Receipts ")

        assert node.id == "F9"
        assert _child_ids(service, "F1") == ["F9"]
        assert find_folder(service.tree, "F9").parent_id == "F1"
        client.create_folder.assert_awaited_once_with("Receipts", "E1", "F1")
        assert service.mutations[-1].state == MutationState.COMMITTED
        assert service.mutations[-1].target_id == "F9"

    @pytest.mark.asyncio
    async def test_temp_folder_visible_while_request_in_flight(self, service, client):
        seen = []

        async def create(name, entity_id, parent_id):
            seen.extend(_child_ids(service, parent_id))
            return make_folder("F9", name, parent_id=parent_id)

        client.create_folder.side_effect = create
        await service.create_folder("Receipts", parent_id="F1")

        assert len(seen) == 1
        assert seen[0].startswith("temp-")
        assert _child_ids(service, "F1") == ["F9"]

    @pytest.mark.asyncio
    async def test_failed_create_rolls_back_exactly(self, service, client):
        before = service.tree.model_dump()
        client.create_folder.side_effect = RequestFailure("Folder already exists", status_code=409)

        with pytest.raises(RequestFailure) as exc_info:
            await service.create_folder("Receipts", parent_id="F1")

        assert exc_info.value.message == "Folder already exists"
        assert service.tree.model_dump() == before
        assert service.mutations[-1].state == MutationState.ROLLED_BACK
        # No resync after a failed mutation.
        await service.wait_for_resync()
        assert client.list_folder_tree.await_count == 1

    @pytest.mark.asyncio
    async def test_successful_create_triggers_background_resync(self, service, client, invoices_tree):
        client.create_folder.return_value = make_folder("F9", "Receipts", parent_id="F1")
        client.list_folder_tree.return_value = FolderTreeResponse(
            folders=[*invoices_tree.folders, make_folder("F9", "Receipts", parent_id="F1"),
                     make_folder("F10", "Server side", parent_id="F9")],
            documents=invoices_tree.documents,
        )
        await service.create_folder("Receipts", parent_id="F1")
        await service.wait_for_resync()

        assert client.list_folder_tree.await_count == 2
        assert _child_ids(service, "F9") == ["F10"]

    @pytest.mark.asyncio
    async def test_resync_failure_is_logged_not_raised(self, service, client, caplog):
        client.create_folder.return_value = make_folder("F9", "Receipts", parent_id="F1")
        client.list_folder_tree.side_effect = RequestFailure("gateway timeout", status_code=504)

        with caplog.at_level(logging.WARNING):
            await service.create_folder("Receipts", parent_id="F1")
            await service.wait_for_resync()

        assert _child_ids(service, "F1") == ["F9"]
        assert "Background resync failed" in caplog.text

    @pytest.mark.asyncio
    async def test_close_discards_pending_resync(self, service, client):
        client.create_folder.return_value = make_folder("F9", "Receipts", parent_id="F1")
        await service.create_folder("Receipts", parent_id="F1")
        await service.close()
        assert client.list_folder_tree.await_count == 1
        assert _child_ids(service, "F1") == ["F9"]

    @pytest.mark.asyncio
    async def test_blank_name_rejected_locally(self, service, client):
        with pytest.raises(ValidationError):
            await service.create_folder("   ")
        client.create_folder.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slash_in_name_rejected(self, service, client):
        with pytest.raises(ValidationError):
            await service.create_folder("a/b")
        client.create_folder.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_inside_pending_folder_rejected(self, service, client):
        insert_child(service.tree, "F1", TreeNode(id="temp-abc", name="Pending", is_folder=True))
        with pytest.raises(ValidationError):
            await service.create_folder("Child", parent_id="temp-abc")
        client.create_folder.assert_not_awaited()


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


class TestUploadDocument:
    @pytest.mark.asyncio
    async def test_upload_then_server_error_rolls_back(self, service, client):
        service.navigate_to("F1")
        client.upload_document.side_effect = RequestFailure("Internal Server Error", status_code=500)

        with pytest.raises(RequestFailure) as exc_info:
            await service.upload_document(_pdf(), expiry_date=None, no_expiry=True)

        assert exc_info.value.status_code == 500
        assert find_folder(service.tree, "F1").children == []
        assert service.mutations[-1].kind == MutationKind.UPLOAD_DOCUMENT
        assert service.mutations[-1].state == MutationState.ROLLED_BACK

    @pytest.mark.asyncio
    async def test_upload_commits_server_document(self, service, client):
        service.navigate_to("F1")
        expiry = date(2025, 3, 31)
        client.upload_document.return_value = make_document(
            "doc-7", folder_id="F1", name="invoice.pdf", expiry_date="2025-03-31",
        )
        file = _pdf()

        node = await service.upload_document(file, expiry_date=expiry)

        assert node.id == "doc-7"
        assert _child_ids(service, "F1") == ["doc-7"]
        assert find_node(service.tree, "doc-7").expiry_date == expiry
        client.upload_document.assert_awaited_once_with("F1", "E1", file, expiry)

    @pytest.mark.asyncio
    async def test_upload_into_explicit_folder(self, service, client):
        client.upload_document.return_value = make_document("doc-8", folder_id="F3")
        await service.upload_document(_pdf(), no_expiry=True, folder_id="F3")
        assert _child_ids(service, "F3") == ["d1", "doc-8"]

    @pytest.mark.asyncio
    async def test_expiry_decision_required(self, service, client):
        before = service.tree.model_dump()
        with pytest.raises(ExpiryRequiredError):
            await service.upload_document(_pdf(), folder_id="F1")
        client.upload_document.assert_not_awaited()
        assert service.tree.model_dump() == before

    @pytest.mark.asyncio
    async def test_expiry_and_no_expiry_conflict(self, service, client):
        with pytest.raises(ValidationError):
            await service.upload_document(_pdf(), expiry_date=date(2025, 1, 1), no_expiry=True)
        client.upload_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_file_rejected(self, service, client):
        empty = FileUpload(filename="empty.txt", content=b"")
        with pytest.raises(ValidationError):
            await service.upload_document(empty, no_expiry=True)
        client.upload_document.assert_not_awaited()


# ---------------------------------------------------------------------------
# Rename
# ---------------------------------------------------------------------------


class TestRenameFolder:
    @pytest.mark.asyncio
    async def test_rename_commits_without_resync(self, service, client):
        await service.rename_folder("F2", "Taxes")
        assert find_folder(service.tree, "F2").name == "Taxes"
        client.rename_folder.assert_awaited_once_with("F2", "Taxes")
        await service.wait_for_resync()
        assert client.list_folder_tree.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_rename_restores_name(self, service, client):
        before = service.tree.model_dump()
        client.rename_folder.side_effect = RequestFailure("Forbidden", status_code=403)
        with pytest.raises(RequestFailure):
            await service.rename_folder("F2", "Taxes")
        assert service.tree.model_dump() == before

    @pytest.mark.asyncio
    async def test_same_name_is_a_no_op(self, service, client):
        await service.rename_folder("F2", "Tax")
        client.rename_folder.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_root_and_unknown_rejected(self, service, client):
        with pytest.raises(ValidationError):
            await service.rename_folder("root", "Top")
        with pytest.raises(ValidationError):
            await service.rename_folder("ghost", "Top")
        client.rename_folder.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_virtual_folder_cannot_be_renamed(self, service, client):
        client.list_folder_tree.return_value = FolderTreeResponse(
            documents=[make_document("orphan", folder_id="gone")],
        )
        await service.refresh()
        assert find_folder(service.tree, "gone").is_virtual
        with pytest.raises(ValidationError):
            await service.rename_folder("gone", "Recovered")
        client.rename_folder.assert_not_awaited()


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


class TestDeleteItem:
    @pytest.mark.asyncio
    async def test_delete_empty_folder(self, service, client):
        await service.delete_item("F1", "folder")
        assert _child_ids(service, "root") == ["F2"]
        client.delete_item.assert_awaited_once_with("F1", "folder")
        assert service.mutations[-1].state == MutationState.COMMITTED

    @pytest.mark.asyncio
    async def test_failed_delete_reinserts_at_same_position(self, service, client):
        before = service.tree.model_dump()
        client.delete_item.side_effect = RequestFailure("nope", status_code=500)
        with pytest.raises(RequestFailure):
            await service.delete_item("F1", "folder")
        assert service.tree.model_dump() == before
        assert _child_ids(service, "root") == ["F1", "F2"]

    @pytest.mark.asyncio
    async def test_non_empty_plain_folder_rejected_locally(self, service, client):
        with pytest.raises(FolderNotDeletableError):
            await service.delete_item("F2", "folder")
        client.delete_item.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_users_folder_rejected(self, service, client):
        service.context = NavigationContext(entity_id="E1", user_id="user-2")
        with pytest.raises(FolderNotDeletableError):
            await service.delete_item("F1", "folder")
        client.delete_item.assert_not_awaited()
        assert service.can_delete("F1") is False

    @pytest.mark.asyncio
    async def test_deleting_browsed_folder_navigates_to_parent_first(self, service, client, invoices_tree):
        client.list_folder_tree.return_value = FolderTreeResponse(folders=invoices_tree.folders)
        await service.delete_item("d1", "document")
        await service.wait_for_resync()
        service.navigate_to("F3")
        observed = []

        async def delete(item_id, kind):
            observed.append(service.context.folder_id)

        client.delete_item.side_effect = delete
        await service.delete_item("F3", "folder")

        assert observed == ["F2"]
        assert service.context.folder_id == "F2"
        assert _child_ids(service, "F2") == []

    @pytest.mark.asyncio
    async def test_delete_document_then_folder_becomes_deletable(self, service, client):
        assert service.can_delete("F3") is False
        await service.delete_item("d1", "document")
        assert _child_ids(service, "F3") == []
        assert service.can_delete("F3") is True

    @pytest.mark.asyncio
    async def test_kind_mismatch_rejected(self, service, client):
        with pytest.raises(ValidationError):
            await service.delete_item("d1", "folder")
        with pytest.raises(ValidationError):
            await service.delete_item("F1", "archive")
        client.delete_item.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_shared_item(self, service, client):
        client.list_shared_items.return_value = [make_shared("s1", False), make_shared("s2", True)]
        await service.load_shared()
        client.list_shared_items.return_value = [make_shared("s2", True)]

        await service.delete_item("s1", "document")
        assert [item.id for item in service.shared_items] == ["s2"]
        await service.wait_for_resync()
        assert client.list_shared_items.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_shared_delete_restores_item(self, service, client):
        client.list_shared_items.return_value = [make_shared("s1", False), make_shared("s2", True)]
        await service.load_shared()
        client.delete_item.side_effect = RequestFailure("nope", status_code=500)
        with pytest.raises(RequestFailure):
            await service.delete_item("s1", "document")
        assert [item.id for item in service.shared_items] == ["s1", "s2"]

    @pytest.mark.asyncio
    async def test_unknown_item_rejected(self, service, client):
        with pytest.raises(ValidationError):
            await service.delete_item("ghost", "document")
        client.delete_item.assert_not_awaited()


# ---------------------------------------------------------------------------
# Views, sharing and tabs
# ---------------------------------------------------------------------------


class TestViews:
    @pytest.mark.asyncio
    async def test_visible_children_excludes_shared_and_filters(self, service, client):
        client.list_shared_items.return_value = [make_shared("F1", True)]
        await service.load_shared()
        assert [c.id for c in service.visible_children()] == ["F2"]

        client.list_shared_items.return_value = []
        await service.load_shared()
        assert [c.id for c in service.visible_children("TA")] == ["F2"]
        assert [c.id for c in service.visible_children("voice")] == ["F1"]

    @pytest.mark.asyncio
    async def test_shared_items_are_deduplicated(self, service, client):
        client.list_shared_items.return_value = [
            make_shared("parent", True),
            make_shared("child", True, parent_id="parent"),
            make_shared("loose.pdf", False),
        ]
        items = await service.load_shared()
        assert [item.id for item in items] == ["parent", "loose.pdf"]
        assert [item.id for item in service.search_shared("LOOSE")] == ["loose.pdf"]

    @pytest.mark.asyncio
    async def test_leaving_shared_tab_resets_navigator(self, service):
        service.set_active_tab(Tab.SHARED)
        service.shared_navigator.breadcrumb_path = [Breadcrumb(id="x", name="x")]
        service.set_active_tab(Tab.MY_FILES)
        assert service.shared_navigator.breadcrumb_path == []
        assert service.shared_navigator.current_folder is None

    @pytest.mark.asyncio
    async def test_share_folder_one_call_per_address(self, service, client):
        used = await service.share_item("F1", "a@example.com, b@example.com")
        assert used == ["a@example.com", "b@example.com"]
        assert client.share_folder.await_count == 2
        client.share_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_share_document_in_one_call(self, service, client):
        await service.share_item("d1", "a@example.com,b@example.com")
        client.share_document.assert_awaited_once_with("d1", ["a@example.com", "b@example.com"])

    @pytest.mark.asyncio
    async def test_share_requires_valid_emails(self, service, client):
        with pytest.raises(ValidationError):
            await service.share_item("d1", " , ")
        with pytest.raises(ValidationError):
            await service.share_item("d1", "not-an-email")
        client.share_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_renewals_from_tree(self, service, client):
        client.upload_document.return_value = make_document(
            "doc-9", folder_id="F1", name="licence.pdf", expiry_date="2024-06-12",
        )
        await service.upload_document(_pdf("licence.pdf"), expiry_date=date(2024, 6, 12), folder_id="F1")
        entries = service.renewals(today=date(2024, 6, 10))
        assert [e.document_id for e in entries] == ["doc-9"]
        assert entries[0].status.label == "Expiring in 2 days"
        assert entries[0].folder_path == ("Invoices",)
        assert service.folder_has_expired("F1", today=date(2024, 6, 12)) is True
        assert service.folder_has_expired("F1", today=date(2024, 6, 11)) is False

    @pytest.mark.asyncio
    async def test_load_renewals_from_server(self, service, client):
        client.list_expiring_documents.return_value = [
            make_document("x", expiry_date="2024-06-09"),
            make_document("y", expiry_date="2024-06-10"),
        ]
        entries = await service.load_renewals(today=date(2024, 6, 10))
        assert [e.status.label for e in entries] == ["Expired", "Expires Today"]
        client.list_expiring_documents.assert_awaited_once_with("E1")


# ---------------------------------------------------------------------------
# Accountants working across client organisations
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def accountant(client, invoices_tree, test_settings) -> DocumentTreeService:
    """A loaded session for an accountant looking at client ORG1."""
    client.list_folder_tree.return_value = invoices_tree
    svc = DocumentTreeService(
        client,
        NavigationContext(
            entity_id="ORG1", user_id="user-1", user_role=ACCOUNTANT_ROLE, organization_id="ORG1",
        ),
        config=test_settings,
    )
    await svc.load()
    yield svc
    await svc.close()


class TestAccountant:
    @pytest.mark.asyncio
    async def test_create_and_upload_use_accountant_endpoints(self, accountant, client):
        client.create_accountant_folder.return_value = make_folder("F9", "Payroll", parent_id="F1")
        client.upload_accountant_document.return_value = make_document("d9", folder_id="F1")

        await accountant.create_folder("Payroll", parent_id="F1")
        await accountant.upload_document(_pdf(), no_expiry=True, folder_id="F1")

        client.create_accountant_folder.assert_awaited_once_with("Payroll", "F1")
        client.upload_accountant_document.assert_awaited_once()
        assert client.upload_accountant_document.await_args.args[0] == "F1"
        client.create_folder.assert_not_awaited()
        client.upload_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_shared_list_limited_to_current_client(self, accountant, client):
        client.list_shared_items.return_value = [
            make_shared("mine.pdf", False, organization_id="ORG1"),
            make_shared("other.pdf", False, organization_id="ORG2"),
        ]
        items = await accountant.load_shared()
        client.list_shared_items.assert_awaited_with(accountant=True)
        assert [item.id for item in items] == ["mine.pdf"]

    @pytest.mark.asyncio
    async def test_all_clients_view_is_unfiltered(self, accountant, client):
        client.list_shared_items.return_value = [
            make_shared("mine.pdf", False, organization_id="ORG1"),
            make_shared("other.pdf", False, organization_id="ORG2"),
        ]
        await accountant.load_shared()
        await accountant.switch_organization(None)
        assert [item.id for item in accountant.shared_items] == ["mine.pdf", "other.pdf"]

    @pytest.mark.asyncio
    async def test_switch_organization_reloads_client_tree(self, accountant, client):
        accountant.navigate_to("F2")
        client.list_folder_tree.return_value = FolderTreeResponse(folders=[make_folder("G1", "Payroll")])

        await accountant.switch_organization("ORG2")

        assert accountant.context.organization_id == "ORG2"
        assert accountant.context.entity_id == "ORG2"
        assert accountant.context.folder_id == "root"
        client.list_folder_tree.assert_awaited_with("ORG2")
        assert _child_ids(accountant, "root") == ["G1"]

    @pytest.mark.asyncio
    async def test_switch_organization_with_explicit_entity(self, accountant, client):
        await accountant.switch_organization("ORG2", entity_id="SUB7")
        client.list_folder_tree.assert_awaited_with("SUB7")

    @pytest.mark.asyncio
    async def test_only_accountants_switch_client(self, service, client):
        with pytest.raises(ValidationError):
            await service.switch_organization("ORG2")
        assert service.context.organization_id is None


class TestShareLink:
    @pytest.mark.asyncio
    async def test_link_for_tree_and_shared_items(self, service, client):
        client.document_url.side_effect = lambda item_id: f"http://docs.test/api/documents/{item_id}"
        client.list_shared_items.return_value = [make_shared("s1", False)]
        await service.load_shared()

        assert service.share_link("d1") == "http://docs.test/api/documents/d1"
        assert service.share_link("s1") == "http://docs.test/api/documents/s1"

    @pytest.mark.asyncio
    async def test_unknown_or_unsaved_item_rejected(self, service, client):
        insert_child(service.tree, "F1", TreeNode(id="temp-1", name="new.pdf", is_folder=False))
        with pytest.raises(ValidationError):
            service.share_link("ghost")
        with pytest.raises(ValidationError):
            service.share_link("temp-1")
        client.document_url.assert_not_called()
