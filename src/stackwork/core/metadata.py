"""Persistent parent/child bookkeeping stored as git refs.

Each tracked branch owns one ref, refs/branch-metadata/<branch>, pointing at a
JSON blob. Keeping the data in the ref store rather than side files means it
travels with fetch/push and is unaffected by working-tree state.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stackwork.core.errors import MetadataWriteError
from stackwork.core.git.abc import Git

logger = logging.getLogger(__name__)

METADATA_REF_PREFIX = "refs/branch-metadata/"


@dataclass(frozen=True)
class StackEntry:
    """Recorded parent of a tracked branch.

    Attributes:
        branch: Tracked branch name
        parent: Parent branch name (another tracked branch or trunk)
        parent_revision: Parent tip SHA recorded when the branch was last synced
        extra: Keys written by other tools, preserved verbatim on rewrite
    """

    branch: str
    parent: str
    parent_revision: str
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_json(self) -> str:
        data = dict(self.extra)
        data["parentBranchName"] = self.parent
        data["parentBranchRevision"] = self.parent_revision
        return json.dumps(data, sort_keys=True)

    @staticmethod
    def from_json(branch: str, content: str) -> "StackEntry":
        """Parse a metadata blob.

        Raises:
            ValueError: If the content is not an object with string parent fields
        """
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError("metadata is not a JSON object")

        parent = data.pop("parentBranchName", None)
        revision = data.pop("parentBranchRevision", None)
        if not isinstance(parent, str) or not parent:
            raise ValueError("missing 'parentBranchName'")
        if not isinstance(revision, str) or not revision:
            raise ValueError("missing 'parentBranchRevision'")

        return StackEntry(branch=branch, parent=parent, parent_revision=revision, extra=data)


def metadata_ref(branch: str) -> str:
    return f"{METADATA_REF_PREFIX}{branch}"


class MetadataStore(ABC):
    """Interface for reading and writing stack entries."""

    @abstractmethod
    def read(self, branch: str) -> StackEntry | None:
        """Read one entry, or None if the branch is untracked."""
        ...

    @abstractmethod
    def read_all(self) -> list[StackEntry]:
        """Read every entry, skipping malformed ones with a warning."""
        ...

    @abstractmethod
    def write(self, branch: str, parent: str, parent_revision: str) -> StackEntry:
        """Persist a relationship.

        Raises:
            MetadataWriteError: If the underlying ref update fails
        """
        ...

    @abstractmethod
    def delete(self, branch: str) -> None:
        """Remove a relationship.

        Raises:
            MetadataWriteError: If the underlying ref deletion fails
        """
        ...

    def restore(self, branch: str, entry: StackEntry | None) -> None:
        """Make the stored state for `branch` equal `entry` (None removes it)."""
        if entry is None:
            try:
                present = self.read(branch) is not None
            except ValueError:
                present = True
            if present:
                self.delete(branch)
            return
        self.write(branch, entry.parent, entry.parent_revision)


class GitRefMetadataStore(MetadataStore):
    """Metadata store backed by blob refs under refs/branch-metadata/."""

    def __init__(self, git: Git, repo_root: Path) -> None:
        self._git = git
        self._repo_root = repo_root

    def read(self, branch: str) -> StackEntry | None:
        content = self._git.read_ref_blob(self._repo_root, metadata_ref(branch))
        if content is None:
            return None
        return StackEntry.from_json(branch, content)

    def read_all(self) -> list[StackEntry]:
        refs = self._git.list_refs(self._repo_root, METADATA_REF_PREFIX)
        entries: list[StackEntry] = []
        for ref in sorted(refs):
            branch = ref.removeprefix(METADATA_REF_PREFIX)
            try:
                content = self._git.read_ref_blob(self._repo_root, ref)
                if content is None:
                    continue
                entries.append(StackEntry.from_json(branch, content))
            except (RuntimeError, ValueError) as e:
                logger.warning("Skipping malformed stack metadata for '%s': %s", branch, e)
        return entries

    def write(self, branch: str, parent: str, parent_revision: str) -> StackEntry:
        existing_extra: dict[str, Any] = {}
        try:
            existing = self.read(branch)
        except (RuntimeError, ValueError):
            existing = None
        if existing is not None:
            existing_extra = existing.extra

        entry = StackEntry(
            branch=branch, parent=parent, parent_revision=parent_revision, extra=existing_extra
        )
        try:
            self._git.write_ref_blob(self._repo_root, metadata_ref(branch), entry.to_json())
        except RuntimeError as e:
            raise MetadataWriteError(branch, str(e)) from e

        logger.debug("Wrote metadata: %s -> %s@%s", branch, parent, parent_revision[:12])
        return entry

    def delete(self, branch: str) -> None:
        try:
            self._git.delete_ref(self._repo_root, metadata_ref(branch))
        except RuntimeError as e:
            raise MetadataWriteError(branch, str(e)) from e
        logger.debug("Deleted metadata for %s", branch)
