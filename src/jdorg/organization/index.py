"""Folder index lookups used to turn rule targets into destination directories.

The index itself (areas, categories, folders) is maintained outside jdorg;
this module only reads it. Destinations follow the layout
``root/NN-NN Area/NN Category/NN.NN Folder``.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping, Optional, Protocol

from jdorg.classification.models import ClassificationDecision
from jdorg.config.models import IndexSettings
from jdorg.state.models import TargetType

from .errors import IndexLookupError

_FOLDER_NUMBER = re.compile(r"^(\d{2})\.(\d{2,3})$")
_AREA_RANGE = re.compile(r"^(\d{2})-(\d{2})$")
_UNSAFE = re.compile(r'[<>:"|?*\x00-\x1f]')


class FolderIndex(Protocol):
    """Read-only view of the hierarchical index."""

    def resolve_target(self, target_type: TargetType, target_id: str) -> Optional[str]:
        """Return the folder number a rule target designates, if any."""

    def folder_path(self, folder_number: str) -> Path:
        """Return the destination directory for ``folder_number``."""


def sanitize_component(name: str) -> str:
    """Make ``name`` safe as a single path component."""
    cleaned = name.replace("/", "-").replace("\\", "-").replace("..", "")
    cleaned = _UNSAFE.sub("", cleaned).strip().strip(".")
    return cleaned or "Untitled"


class ConfiguredIndex:
    """Index backed by the ``index`` configuration section."""

    def __init__(
        self,
        root: Path,
        *,
        areas: Mapping[str, str] | None = None,
        categories: Mapping[str, str] | None = None,
        folders: Mapping[str, str] | None = None,
    ) -> None:
        self._root = root.expanduser()
        self._areas: list[tuple[int, int, str]] = []
        for key, name in (areas or {}).items():
            match = _AREA_RANGE.match(str(key).strip())
            if match is None:
                raise IndexLookupError(f"Invalid area range {key!r}; expected NN-NN.")
            self._areas.append((int(match.group(1)), int(match.group(2)), name))
        self._areas.sort()
        self._categories = {
            str(key).strip().zfill(2): name for key, name in (categories or {}).items()
        }
        self._folders = {str(key).strip(): name for key, name in (folders or {}).items()}

    @classmethod
    def from_settings(cls, settings: IndexSettings) -> "ConfiguredIndex":
        return cls(
            Path(settings.root),
            areas=settings.areas,
            categories=settings.categories,
            folders=settings.folders,
        )

    @property
    def root(self) -> Path:
        return self._root

    def folders(self) -> list[str]:
        """Return the known folder numbers in index order."""
        return sorted(self._folders)

    def resolve_target(self, target_type: TargetType, target_id: str) -> Optional[str]:
        """Return the folder number designated by a rule target.

        Folder targets resolve to themselves when registered. Category and area
        targets resolve to their first registered folder.
        """
        target_id = target_id.strip()
        if target_type is TargetType.FOLDER:
            return target_id if target_id in self._folders else None
        if target_type is TargetType.CATEGORY:
            wanted = target_id.zfill(2)
            candidates = [number for number in self.folders() if number.split(".")[0] == wanted]
            return candidates[0] if candidates else None
        match = _AREA_RANGE.match(target_id)
        if match is None:
            return None
        low, high = int(match.group(1)), int(match.group(2))
        candidates = [
            number for number in self.folders() if low <= int(number.split(".")[0]) <= high
        ]
        return candidates[0] if candidates else None

    def folder_path(self, folder_number: str) -> Path:
        """Return the destination directory for a folder number.

        Raises:
            IndexLookupError: If the folder, its category, or its area is unknown,
                or the resulting path would leave the index root.
        """
        folder_number = folder_number.strip()
        match = _FOLDER_NUMBER.match(folder_number)
        if match is None:
            raise IndexLookupError(f"Invalid folder number {folder_number!r}; expected NN.NN.")
        if folder_number not in self._folders:
            raise IndexLookupError(f"Folder {folder_number} is not in the index.")
        category = match.group(1)
        category_name = self._categories.get(category)
        if category_name is None:
            raise IndexLookupError(f"Category {category} is not in the index.")
        area = self._area_for(int(category))
        if area is None:
            raise IndexLookupError(f"No area covers category {category}.")
        low, high, area_name = area

        root = self._root.resolve()
        destination = (
            root
            / sanitize_component(f"{low:02d}-{high:02d} {area_name}")
            / sanitize_component(f"{category} {category_name}")
            / sanitize_component(f"{folder_number} {self._folders[folder_number]}")
        )
        if root not in destination.resolve().parents:
            raise IndexLookupError(f"Destination for {folder_number} escapes the index root.")
        return destination

    def _area_for(self, category: int) -> Optional[tuple[int, int, str]]:
        for low, high, name in self._areas:
            if low <= category <= high:
                return low, high, name
        return None


def resolve_decision(index: FolderIndex, decision: ClassificationDecision) -> Optional[str]:
    """Return the folder number a classification decision points at, if resolvable."""
    if decision.target_type is None or decision.target_id is None:
        return None
    return index.resolve_target(decision.target_type, decision.target_id)


__all__ = ["FolderIndex", "ConfiguredIndex", "resolve_decision", "sanitize_component"]
