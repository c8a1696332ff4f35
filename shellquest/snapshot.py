"""Snapshot schema for save/restore.

``validate_snapshot`` checks that a blob describes a whole, well-formed
tree before ``FileSystem.restore`` is allowed to touch live state. Shape
checks are done by pydantic; the tree-level rules (unique names, root
directory, cwd present) are checked afterwards on the parsed model.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import InvalidSnapshotError
from .identity import PERMISSIONS_PATTERN

SNAPSHOT_VERSION = 1


class SnapshotNode(BaseModel):
    """One file or directory in a snapshot."""

    name: str = Field(min_length=1)
    type: Literal["file", "dir"]
    permissions: str = Field(pattern=PERMISSIONS_PATTERN.pattern)
    owner: str = Field(min_length=1)
    group: str = Field(min_length=1)
    modified_at: float = 0.0
    content: str = ""
    children: List["SnapshotNode"] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_kind(self) -> "SnapshotNode":
        if self.type == "file" and self.children:
            raise ValueError(f"file '{self.name}' cannot have children")
        if self.type == "dir" and self.content:
            raise ValueError(f"directory '{self.name}' cannot have content")
        seen = set()
        for child in self.children:
            if child.name in seen:
                raise ValueError(f"duplicate entry '{child.name}' in '{self.name}'")
            if "/" in child.name or child.name in (".", ".."):
                raise ValueError(f"invalid entry name '{child.name}'")
            seen.add(child.name)
        return self


SnapshotNode.model_rebuild()


class SnapshotUser(BaseModel):
    username: str = Field(min_length=1)
    primary_group: str = Field(min_length=1)
    supplemental_groups: List[str] = Field(default_factory=list)
    home: str = ""


class Snapshot(BaseModel):
    """Whole-state snapshot: tree, working directory and identity tables."""

    version: int = SNAPSHOT_VERSION
    tree: SnapshotNode
    cwd: Optional[str] = None
    username: Optional[str] = None
    users: Optional[List[SnapshotUser]] = None
    groups: Optional[List[str]] = None

    @model_validator(mode="after")
    def _check_tree(self) -> "Snapshot":
        if self.tree.type != "dir" or self.tree.name != "/":
            raise ValueError("snapshot tree must be rooted at a directory named '/'")
        if self.cwd is not None and not _is_directory(self.tree, self.cwd):
            raise ValueError(f"working directory '{self.cwd}' is not a directory in the tree")
        if self.users is not None:
            names = {u.username for u in self.users}
            if len(names) != len(self.users):
                raise ValueError("duplicate user records")
            if self.username is not None and self.username not in names:
                raise ValueError(f"unknown session user '{self.username}'")
            if self.groups is not None:
                known = set(self.groups)
                for user in self.users:
                    missing = ({user.primary_group} | set(user.supplemental_groups)) - known
                    if missing:
                        raise ValueError(
                            f"user '{user.username}' references unknown group(s) {sorted(missing)}"
                        )
        return self


def _is_directory(root: SnapshotNode, path: str) -> bool:
    if not path.startswith("/"):
        return False
    node = root
    for part in [p for p in path.split("/") if p]:
        match = next((c for c in node.children if c.name == part), None)
        if match is None or match.type != "dir":
            return False
        node = match
    return True


def validate_snapshot(blob: Any) -> Snapshot:
    """Parse ``blob`` or raise ``InvalidSnapshotError`` describing the defect."""
    if not isinstance(blob, dict):
        raise InvalidSnapshotError("invalid snapshot: expected an object")
    if "tree" not in blob:
        raise InvalidSnapshotError("invalid snapshot: missing filesystem tree")
    try:
        return Snapshot.model_validate(blob)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = first.get("msg", "invalid value")
        raise InvalidSnapshotError(
            f"invalid snapshot: {location + ': ' if location else ''}{detail}"
        ) from exc
