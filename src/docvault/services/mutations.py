"""Lifecycle record of one optimistic tree mutation.

States:
  PENDING     -- applied locally, request in flight
  COMMITTED   -- the document service accepted it
  ROLLED_BACK -- the request failed and the local change was undone

A Mutation is immutable; each transition returns a new value so the history
kept by DocumentTreeService reads as a log of what happened.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ..schemas.documents import SharedItem
from .tree_ops import RemovedNode


class MutationKind(str, Enum):
    CREATE_FOLDER = "create_folder"
    UPLOAD_DOCUMENT = "upload_document"
    RENAME_FOLDER = "rename_folder"
    DELETE_ITEM = "delete_item"


class MutationState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


def _new_mutation_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Mutation:
    kind: MutationKind
    target_id: str
    parent_id: Optional[str] = None
    temp_id: Optional[str] = None
    previous_name: Optional[str] = None
    removed: Optional[RemovedNode] = None
    removed_shared: Optional[tuple[int, SharedItem]] = None
    state: MutationState = MutationState.PENDING
    error: Optional[str] = None
    id: str = field(default_factory=_new_mutation_id)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_pending(self) -> bool:
        return self.state == MutationState.PENDING

    def commit(self, confirmed_id: Optional[str] = None) -> "Mutation":
        """PENDING -> COMMITTED; creates record the server-assigned id."""
        self._require_pending()
        return replace(
            self,
            state=MutationState.COMMITTED,
            target_id=confirmed_id or self.target_id,
        )

    def roll_back(self, error: Exception) -> "Mutation":
        """PENDING -> ROLLED_BACK, keeping the error message for the log."""
        self._require_pending()
        return replace(self, state=MutationState.ROLLED_BACK, error=str(error))

    def _require_pending(self) -> None:
        if self.state != MutationState.PENDING:
            raise ValueError(f"Mutation {self.id} already {self.state.value}")
