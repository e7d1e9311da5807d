"""Document expiry and renewal status."""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, List, Optional

from ..schemas.documents import DocumentDTO
from ..schemas.tree import TreeNode


class Severity(str, Enum):
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class RenewalStatus:
    label: str
    severity: Severity
    days_left: Optional[int] = None


@dataclass(frozen=True)
class RenewalEntry:
    """A document in the renewals view with its computed status."""
    document_id: str
    name: str
    expiry_date: date
    status: RenewalStatus
    folder_path: tuple[str, ...] = ()


NO_EXPIRY = RenewalStatus(label="-", severity=Severity.NONE)


def renewal_status(expiry_date: Optional[date], today: Optional[date] = None) -> RenewalStatus:
    if expiry_date is None:
        return NO_EXPIRY
    today = today or date.today()
    days_left = (expiry_date - today).days
    if days_left < 0:
        return RenewalStatus("Expired", Severity.HIGH, days_left)
    if days_left == 0:
        return RenewalStatus("Expires Today", Severity.HIGH, 0)
    unit = "day" if days_left == 1 else "days"
    return RenewalStatus(f"Expiring in {days_left} {unit}", Severity.MEDIUM, days_left)


def _is_expired(expiry_date: Optional[date], today: date) -> bool:
    # Coarser than renewal_status: expiring today already counts.
    return expiry_date is not None and expiry_date <= today


def has_expired_documents(folder: Optional[TreeNode], today: Optional[date] = None) -> bool:
    """True if any document below *folder*, at any depth, is expired or expires today."""
    if folder is None:
        return False
    today = today or date.today()
    for child in folder.children:
        if child.is_folder:
            if has_expired_documents(child, today):
                return True
        elif _is_expired(child.expiry_date, today):
            return True
    return False


def collect_renewals(root: TreeNode, today: Optional[date] = None) -> List[RenewalEntry]:
    """Every document in the tree that has an expiry date, soonest first."""
    today = today or date.today()
    entries: List[RenewalEntry] = []

    def walk(node: TreeNode, trail: tuple[str, ...]) -> None:
        for child in node.children:
            if child.is_folder:
                walk(child, trail + (child.name,))
            elif child.expiry_date is not None:
                entries.append(RenewalEntry(
                    document_id=child.id,
                    name=child.name,
                    expiry_date=child.expiry_date,
                    status=renewal_status(child.expiry_date, today),
                    folder_path=trail,
                ))

    walk(root, ())
    entries.sort(key=lambda e: (e.expiry_date, e.name))
    return entries


def renewals_from_documents(
    documents: Iterable[DocumentDTO], today: Optional[date] = None,
) -> List[RenewalEntry]:
    """Same as :func:`collect_renewals` for a flat list from the expiring-documents endpoint."""
    today = today or date.today()
    entries = [
        RenewalEntry(
            document_id=doc.id,
            name=doc.name,
            expiry_date=doc.expiry_date,
            status=renewal_status(doc.expiry_date, today),
        )
        for doc in documents
        if doc.expiry_date is not None
    ]
    entries.sort(key=lambda e: (e.expiry_date, e.name))
    return entries
