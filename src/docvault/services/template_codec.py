"""Convert folder templates between the nested UI shape and the flat wire shape.

Wire shape: one entry per top-level folder, followed by one ``"Parent / Child"``
entry per subfolder::

    ["Tax", "Tax / 2023", "Tax / 2024", "Payroll"]
"""

from typing import Dict, List, Sequence

from ..exceptions import ValidationError
from ..schemas.template import TemplateFolder

SEPARATOR = "/"
JOINER = " / "


def encode_template_folders(folders: Sequence[TemplateFolder]) -> List[str]:
    """Flatten nested template folders.

    Blank names are skipped, names are trimmed, and a parent listed twice is
    emitted once with the subfolders of both listings.
    """
    grouped: Dict[str, List[str]] = {}
    for folder in folders:
        parent = folder.name.strip()
        if not parent:
            continue
        _check_name(parent)
        children = grouped.setdefault(parent, [])
        for sub in folder.subfolders:
            sub = sub.strip()
            if not sub:
                continue
            _check_name(sub)
            children.append(sub)

    flat: List[str] = []
    for parent, children in grouped.items():
        flat.append(parent)
        flat.extend(f"{parent}{JOINER}{child}" for child in children)
    return flat


def decode_template_folders(entries: Sequence[str]) -> List[TemplateFolder]:
    """Group flat entries back into nested template folders, in first-seen order.

    Splits on the first ``/`` only; any further slashes stay in the subfolder
    name. Entries with an empty side are ignored.
    """
    grouped: Dict[str, List[str]] = {}
    for entry in entries:
        if not entry or not entry.strip():
            continue
        parent, sep, child = entry.partition(SEPARATOR)
        parent = parent.strip()
        if not parent:
            continue
        children = grouped.setdefault(parent, [])
        if sep:
            child = child.strip()
            if child:
                children.append(child)

    return [TemplateFolder(name=name, subfolders=subs) for name, subs in grouped.items()]


def _check_name(name: str) -> None:
    if SEPARATOR in name:
        raise ValidationError(
            f"Template folder name cannot contain '{SEPARATOR}': {name}",
            field="folders",
        )
