"""Selective sync folder filters.

Folder rules are relative paths under the sync root, such as ``Photos`` or
``Docs/2024``. A rule matches the folder itself and everything below it.
"""

from __future__ import annotations

from collections.abc import Iterable


def normalize_path(path: str) -> str:
    """Strip surrounding slashes and collapse empty segments."""
    return "/".join(part for part in path.replace("\\", "/").split("/") if part)


def _is_within(path: str, folder: str) -> bool:
    return path == folder or path.startswith(folder + "/")


class FolderFilter:
    """Allow/deny rules for folders under a sync root.

    An empty allow list allows everything. Deny rules always win.
    """

    def __init__(
        self,
        include: Iterable[str] | None = None,
        exclude: Iterable[str] | None = None,
    ) -> None:
        self._include = [p for p in (normalize_path(p) for p in include or []) if p]
        self._exclude = [p for p in (normalize_path(p) for p in exclude or []) if p]

    @property
    def is_empty(self) -> bool:
        """Check if the filter lets everything through."""
        return not self._include and not self._exclude

    def _excluded(self, folder: str) -> bool:
        return any(_is_within(folder, rule) for rule in self._exclude)

    def should_descend(self, folder: str) -> bool:
        """Check if a folder may contain files that pass the filter.

        Args:
            folder: Relative path of the folder ("" for the root).
        """
        folder = normalize_path(folder)
        if folder and self._excluded(folder):
            return False
        if not self._include or not folder:
            return True
        return any(_is_within(folder, rule) or _is_within(rule, folder) for rule in self._include)

    def allows_file(self, folder: str) -> bool:
        """Check if files directly inside a folder pass the filter.

        Args:
            folder: Relative path of the file's parent folder ("" for root).
        """
        folder = normalize_path(folder)
        if folder and self._excluded(folder):
            return False
        if not self._include:
            return True
        return any(_is_within(folder, rule) for rule in self._include)
