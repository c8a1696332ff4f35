"""In-memory virtual filesystem for ShellQuest.

The tree is a set of ``Node`` records; each directory owns its children
in a name -> Node dict, so every node has exactly one parent and no
cycles can form. Structural edits (create, remove, move, copy) validate
everything first and then commit in a single step, so a failed operation
never leaves a partial change behind.

Every public operation returns an ``OpResult``. Access checks go through
the pure functions in ``shellquest.identity`` using the current subject,
which is re-derived from the user table whenever it is read.

Layout of the session state held by a ``FileSystem``:
{
    "root": Node,                       # the "/" directory
    "cwd": str,                         # current working directory
    "username": str,                    # active subject
    "users": dict[str, User],           # account table
    "groups": set[str],                 # known group names
}
"""

from __future__ import annotations

import copy as _copy
import functools
import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .errors import (
    ConflictError,
    ErrorKind,
    FilesystemError,
    IsDirectoryError,
    NotDirectoryError,
    NotFoundError,
    NotPermittedError,
    InvalidPathError,
    InvalidSnapshotError,
    OpResult,
    PermissionDeniedError,
)
from .identity import (
    ADMIN_USER,
    Subject,
    User,
    apply_mode,
    can_change_attributes,
    can_execute,
    can_read,
    can_write,
    is_owner,
    parse_owner_spec,
    validate_username,
)
from .seed import DEFAULT_USER, default_groups, default_structure, default_users, stamp
from .snapshot import SNAPSHOT_VERSION, validate_snapshot

LOGGER = logging.getLogger(__name__)

FILE_TYPE = "file"
DIR_TYPE = "dir"

DEFAULT_FILE_PERMISSIONS = "rw-r--r--"
DEFAULT_DIR_PERMISSIONS = "rwxr-xr-x"

# Characters never accepted in a path written by the player.
UNSAFE_PATH_CHARS = re.compile(r"[<>\"'`|;&$\\\x00-\x1f\x7f]")


# ---------- Path helpers ----------


def split_path(path: str) -> List[str]:
    return [part for part in path.split("/") if part]


def join_path(parent: str, name: str) -> str:
    if parent == "/":
        return "/" + name
    return parent + "/" + name


def parent_of(path: str) -> str:
    parts = split_path(path)
    if len(parts) <= 1:
        return "/"
    return "/" + "/".join(parts[:-1])


def base_name(path: str) -> str:
    parts = split_path(path)
    return parts[-1] if parts else "/"


def is_same_or_descendant(path: str, ancestor: str) -> bool:
    """True when ``path`` is ``ancestor`` or lies somewhere below it."""
    if ancestor == "/":
        return True
    return path == ancestor or path.startswith(ancestor + "/")


# ---------- Nodes ----------


@dataclass(eq=False)
class Node:
    """A file or directory in the virtual tree."""

    name: str
    kind: str
    permissions: str
    owner: str
    group: str
    content: str = ""
    children: Dict[str, "Node"] = field(default_factory=dict)
    modified_at: float = field(default_factory=time.time)

    @property
    def is_dir(self) -> bool:
        return self.kind == DIR_TYPE

    @property
    def is_file(self) -> bool:
        return self.kind == FILE_TYPE

    @property
    def size(self) -> int:
        if self.is_dir:
            return 4096
        return len(self.content.encode("utf-8"))

    def mode_string(self) -> str:
        """Return ``ls -l`` style mode, e.g. ``drwxr-xr-x``."""
        return ("d" if self.is_dir else "-") + self.permissions

    def format_ls_long(self, name: Optional[str] = None) -> str:
        """Format this node as an ``ls -l`` line."""
        nlink = 2 + sum(1 for c in self.children.values() if c.is_dir) if self.is_dir else 1
        date_str = time.strftime("%b %d %H:%M", time.localtime(self.modified_at))
        return (
            f"{self.mode_string()} {nlink:>2} {self.owner:<8} {self.group:<8} "
            f"{self.size:>6} {date_str} {name or self.name}"
        )

    def iter_children(self) -> List["Node"]:
        """Children sorted by name."""
        return [self.children[name] for name in sorted(self.children)]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "type": self.kind,
            "permissions": self.permissions,
            "owner": self.owner,
            "group": self.group,
            "modified_at": self.modified_at,
        }
        if self.is_dir:
            data["children"] = [child.to_dict() for child in self.iter_children()]
        else:
            data["content"] = self.content
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        node = cls(
            name=data["name"],
            kind=data["type"],
            permissions=data["permissions"],
            owner=data["owner"],
            group=data["group"],
            content=data.get("content", "") if data["type"] == FILE_TYPE else "",
            modified_at=data.get("modified_at", time.time()),
        )
        for child_data in data.get("children", []):
            child = cls.from_dict(child_data)
            node.children[child.name] = child
        return node

    def clone(self, owner: str, group: str, now: float, name: Optional[str] = None) -> "Node":
        """Deep copy owned by ``owner:group`` (cp semantics)."""
        twin = Node(
            name=name or self.name,
            kind=self.kind,
            permissions=self.permissions,
            owner=owner,
            group=group,
            content=self.content,
            modified_at=now,
        )
        for child in self.children.values():
            twin.children[child.name] = child.clone(owner, group, now)
        return twin

    def walk(self, path: str) -> Iterator[Tuple[str, "Node"]]:
        """Pre-order (path, node) pairs for this subtree, no access checks."""
        yield path, self
        for child in self.iter_children():
            yield from child.walk(join_path(path, child.name))


def _operation(func: Callable[..., OpResult]) -> Callable[..., OpResult]:
    """Turn ``FilesystemError`` raised by ``func`` into a failed ``OpResult``."""

    @functools.wraps(func)
    def wrapper(self: "FileSystem", *args: Any, **kwargs: Any) -> OpResult:
        try:
            return func(self, *args, **kwargs)
        except FilesystemError as exc:
            LOGGER.debug("%s refused for %s: %s", func.__name__, self.username, exc.message)
            return OpResult.from_error(exc)

    return wrapper


# ---------- Filesystem ----------


class FileSystem:
    """Virtual tree plus the identity state of the session."""

    def __init__(
        self,
        structure: Optional[Dict[str, Any]] = None,
        users: Optional[Iterable[Dict[str, Any]]] = None,
        groups: Optional[Iterable[str]] = None,
        username: str = DEFAULT_USER,
        clock: Callable[[], float] = time.time,
    ):
        self.clock = clock
        seed = structure if structure is not None else default_structure()
        self.root = Node.from_dict(stamp(seed, clock()))
        self.users: Dict[str, User] = {
            data["username"]: User.from_dict(data)
            for data in (users if users is not None else default_users())
        }
        self.groups: Set[str] = set(groups if groups is not None else default_groups())
        if username not in self.users:
            raise ValueError(f"unknown user '{username}'")
        self.username = username
        self._elevation_stack: List[str] = []
        self._switch_count = 0
        home = self.users[username].home
        self.cwd = home if self._is_dir(home) else "/"

    # ----- identity -----

    @property
    def subject(self) -> Subject:
        """Snapshot of the acting user with freshly derived groups."""
        user = self.users.get(self.username)
        if user is None:
            return Subject(self.username)
        return Subject.for_user(user)

    @property
    def home(self) -> str:
        user = self.users.get(self.username)
        return user.home if user else "/"

    @property
    def primary_group(self) -> str:
        user = self.users.get(self.username)
        return user.primary_group if user else self.username

    def get_user(self, username: str) -> Optional[User]:
        return self.users.get(username)

    def active_users(self) -> Set[str]:
        """Users with a live session: the subject and anyone sudo will return to."""
        return {self.username, *self._elevation_stack}

    @contextmanager
    def elevate(self) -> Iterator[None]:
        """Run the body as the administrator, then return to the caller.

        An explicit ``switch_user`` in the body (``sudo su``, ``sudo su alice``)
        is kept, cwd included.
        """
        previous = self.username
        switches = self._switch_count
        self._elevation_stack.append(previous)
        self.username = ADMIN_USER
        LOGGER.debug("Elevated %s to %s", previous, ADMIN_USER)
        try:
            yield
        finally:
            self._elevation_stack.pop()
            if self._switch_count == switches:
                self.username = previous

    @_operation
    def switch_user(self, username: str) -> OpResult:
        if username not in self.users:
            raise NotFoundError(f"user {username} does not exist")
        if not self.subject.is_admin and username != self.username:
            raise PermissionDeniedError("Authentication failure")
        self.username = username
        self._switch_count += 1
        return OpResult.ok(username)

    # ----- path resolution -----

    def resolve_path(self, raw: Optional[str], cwd: Optional[str] = None) -> str:
        """Make ``raw`` absolute: handles ``~``, ``.`` and ``..`` lexically."""
        cwd = cwd or self.cwd
        if not raw:
            return cwd
        if raw == "~" or raw.startswith("~/"):
            raw = self.home + raw[1:]
        parts: List[str] = [] if raw.startswith("/") else split_path(cwd)
        for part in raw.split("/"):
            if part in ("", "."):
                continue
            if part == "..":
                if parts:
                    parts.pop()
                continue
            parts.append(part)
        return "/" + "/".join(parts)

    def normalize_write_path(self, raw: str) -> Optional[str]:
        """Absolute path for a create/write target, or None if it is unsafe.

        Rejects markup/shell metacharacters and any ``..`` segment; a name
        such as ``file..txt`` is fine.
        """
        if not raw or UNSAFE_PATH_CHARS.search(raw):
            return None
        if any(part == ".." for part in raw.split("/")):
            return None
        resolved = self.resolve_path(raw)
        if resolved == "/":
            return None
        return resolved

    def _lookup(self, path: str) -> Optional[Node]:
        node = self.root
        for part in split_path(path):
            if not node.is_dir:
                return None
            node = node.children.get(part)
            if node is None:
                return None
        return node

    def _is_dir(self, path: str) -> bool:
        node = self._lookup(path)
        return node is not None and node.is_dir

    def _walk_to(self, path: str, display: Optional[str] = None) -> Node:
        """Follow ``path`` requiring search (x) permission on every ancestor."""
        display = display or path
        subject = self.subject
        node = self.root
        for part in split_path(path):
            if not node.is_dir:
                raise NotDirectoryError(f"{display}: Not a directory")
            if not can_execute(subject, node):
                raise PermissionDeniedError(f"{display}: Permission denied")
            child = node.children.get(part)
            if child is None:
                raise NotFoundError(f"{display}: No such file or directory")
            node = child
        return node

    def _walk_to_dir(self, path: str, display: Optional[str] = None) -> Node:
        node = self._walk_to(path, display)
        if not node.is_dir:
            raise NotDirectoryError(f"{display or path}: Not a directory")
        return node

    def _require_write_path(self, raw: str) -> str:
        target = self.normalize_write_path(raw)
        if target is None:
            raise InvalidPathError(f"{raw}: Invalid path")
        return target

    def _require_modifiable(self, directory: Node, display: str) -> None:
        subject = self.subject
        if not (can_write(subject, directory) and can_execute(subject, directory)):
            raise PermissionDeniedError(f"{display}: Permission denied")

    # ----- inspection -----

    def get_node(self, path: str) -> Optional[Node]:
        """Return the node at ``path`` without access checks (inspection only)."""
        return self._lookup(self.resolve_path(path))

    @_operation
    def stat(self, path: str) -> OpResult:
        """Node at ``path`` if every ancestor is searchable."""
        return OpResult.ok(self._walk_to(self.resolve_path(path), path))

    @_operation
    def list_dir(self, path: str = ".", include_hidden: bool = False) -> OpResult:
        """Sorted child nodes of a directory the subject may read."""
        target = self.resolve_path(path)
        node = self._walk_to_dir(target, path)
        subject = self.subject
        if not (can_read(subject, node) and can_execute(subject, node)):
            raise PermissionDeniedError(f"cannot open directory '{path}': Permission denied")
        entries = [
            child for child in node.iter_children()
            if include_hidden or not child.name.startswith(".")
        ]
        return OpResult.ok(entries)

    @_operation
    def cd(self, path: Optional[str] = None) -> OpResult:
        target = self.resolve_path(path or "~")
        node = self._walk_to_dir(target, path)
        if not can_execute(self.subject, node):
            raise PermissionDeniedError(f"{path}: Permission denied")
        self.cwd = target
        return OpResult.ok(target)

    @_operation
    def read_file(self, path: str) -> OpResult:
        node = self._walk_to(self.resolve_path(path), path)
        if node.is_dir:
            raise IsDirectoryError(f"{path}: Is a directory")
        if not can_read(self.subject, node):
            raise PermissionDeniedError(f"{path}: Permission denied")
        return OpResult.ok(node.content)

    # ----- creation and content -----

    @_operation
    def create_file(self, path: str, content: str = "") -> OpResult:
        """Create an empty (or seeded) file; on an existing file act like touch."""
        target = self._require_write_path(path)
        parent = self._walk_to_dir(parent_of(target), path)
        name = base_name(target)
        now = self.clock()
        subject = self.subject

        existing = parent.children.get(name)
        if existing is not None:
            if existing.is_dir:
                raise IsDirectoryError(f"{path}: Is a directory")
            if not (can_write(subject, existing) or is_owner(subject, existing)):
                raise PermissionDeniedError(f"cannot touch '{path}': Permission denied")
            existing.modified_at = now
            return OpResult.ok(target)

        self._require_modifiable(parent, f"cannot touch '{path}'")
        parent.children[name] = self._new_node(name, FILE_TYPE, now, content)
        parent.modified_at = now
        LOGGER.debug("Created file %s as %s", target, subject.username)
        return OpResult.ok(target)

    @_operation
    def create_dir(self, path: str, parents: bool = False) -> OpResult:
        target = self._require_write_path(path)
        parts = split_path(target)
        subject = self.subject

        # Plan first so that a late failure cannot leave half the chain behind.
        node = self.root
        first_missing = None
        for index, part in enumerate(parts):
            if not can_execute(subject, node):
                raise PermissionDeniedError(f"cannot create directory '{path}': Permission denied")
            child = node.children.get(part)
            last = index == len(parts) - 1
            if child is None:
                if not last and not parents:
                    raise NotFoundError(
                        f"cannot create directory '{path}': No such file or directory"
                    )
                first_missing = index
                break
            if not child.is_dir:
                if last:
                    raise ConflictError(f"cannot create directory '{path}': File exists")
                raise NotDirectoryError(f"cannot create directory '{path}': Not a directory")
            if last:
                if parents:
                    return OpResult.ok(target)
                raise ConflictError(f"cannot create directory '{path}': File exists")
            node = child

        self._require_modifiable(node, f"cannot create directory '{path}'")
        now = self.clock()
        node.modified_at = now
        for part in parts[first_missing:]:
            child = self._new_node(part, DIR_TYPE, now)
            node.children[part] = child
            node = child
        LOGGER.debug("Created directory %s as %s", target, subject.username)
        return OpResult.ok(target)

    @_operation
    def write_file(self, path: str, content: str, append: bool = False) -> OpResult:
        target = self._require_write_path(path)
        parent = self._walk_to_dir(parent_of(target), path)
        name = base_name(target)
        subject = self.subject
        now = self.clock()

        existing = parent.children.get(name)
        if existing is not None:
            if existing.is_dir:
                raise IsDirectoryError(f"{path}: Is a directory")
            if not can_write(subject, existing):
                raise PermissionDeniedError(f"{path}: Permission denied")
            existing.content = existing.content + content if append else content
            existing.modified_at = now
            return OpResult.ok(target)

        self._require_modifiable(parent, path)
        parent.children[name] = self._new_node(name, FILE_TYPE, now, content)
        parent.modified_at = now
        return OpResult.ok(target)

    def _new_node(self, name: str, kind: str, now: float, content: str = "") -> Node:
        """Node owned by the acting subject and its primary group."""
        return Node(
            name=name,
            kind=kind,
            permissions=DEFAULT_DIR_PERMISSIONS if kind == DIR_TYPE else DEFAULT_FILE_PERMISSIONS,
            owner=self.username,
            group=self.primary_group,
            content=content if kind == FILE_TYPE else "",
            modified_at=now,
        )

    # ----- removal -----

    @_operation
    def remove(self, path: str, recursive: bool = False) -> OpResult:
        target = self.resolve_path(path)
        if target == "/":
            raise NotPermittedError(f"cannot remove '{path}': Operation not permitted")
        node = self._walk_to(target, path)
        parent = self._lookup(parent_of(target))
        if node.is_dir and not recursive:
            raise IsDirectoryError(f"cannot remove '{path}': Is a directory")
        self._require_modifiable(parent, f"cannot remove '{path}'")
        if node.is_dir:
            self._require_subtree_removable(node, target)
        self._detach(target)
        LOGGER.debug("Removed %s as %s", target, self.username)
        return OpResult.ok(target)

    @_operation
    def remove_dir(self, path: str) -> OpResult:
        """rmdir: only empty directories."""
        target = self.resolve_path(path)
        if target == "/":
            raise NotPermittedError(f"failed to remove '{path}': Operation not permitted")
        node = self._walk_to(target, path)
        if not node.is_dir:
            raise NotDirectoryError(f"failed to remove '{path}': Not a directory")
        if node.children:
            raise ConflictError(f"failed to remove '{path}': Directory not empty")
        self._require_modifiable(self._lookup(parent_of(target)), f"failed to remove '{path}'")
        self._detach(target)
        return OpResult.ok(target)

    def _require_subtree_removable(self, node: Node, path: str) -> None:
        subject = self.subject
        for sub_path, sub in node.walk(path):
            if sub.is_dir and not (
                can_read(subject, sub) and can_write(subject, sub) and can_execute(subject, sub)
            ):
                raise PermissionDeniedError(f"cannot remove '{sub_path}': Permission denied")

    def _detach(self, path: str) -> Node:
        parent = self._lookup(parent_of(path))
        node = parent.children.pop(base_name(path))
        parent.modified_at = self.clock()
        if is_same_or_descendant(self.cwd, path):
            # The shell stays in the nearest directory that survives.
            self.cwd = parent_of(path)
        return node

    # ----- move / copy -----

    def _destination(self, source_node: Node, dest: str) -> Tuple[str, str]:
        """Resolve ``dest`` to (parent_path, final_name) with mv/cp rules."""
        dest_path = self.resolve_path(dest)
        dest_node = self._lookup(dest_path)
        if dest.endswith("/") and (dest_node is None or not dest_node.is_dir):
            raise NotDirectoryError(f"'{dest}': Not a directory")
        if dest_node is not None and dest_node.is_dir:
            return dest_path, source_node.name
        return parent_of(dest_path), base_name(dest_path)

    @_operation
    def move(self, source: str, dest: str) -> OpResult:
        src_path = self.resolve_path(source)
        if src_path == "/":
            raise NotPermittedError(f"cannot move '{source}': Operation not permitted")
        src_node = self._walk_to(src_path, source)

        dest_path = self.resolve_path(dest)
        if is_same_or_descendant(dest_path, src_path):
            raise ConflictError(
                f"Cannot move a directory into itself: '{source}' -> '{dest}'"
            )

        parent_path, name = self._destination(src_node, dest)
        final_path = join_path(parent_path, name)
        if final_path == src_path:
            return OpResult.ok(src_path)
        if is_same_or_descendant(final_path, src_path):
            raise ConflictError(
                f"Cannot move a directory into itself: '{source}' -> '{dest}'"
            )
        if UNSAFE_PATH_CHARS.search(name):
            raise InvalidPathError(f"{dest}: Invalid path")

        src_parent = self._lookup(parent_of(src_path))
        dest_parent = self._walk_to_dir(parent_path, dest)
        self._require_modifiable(src_parent, f"cannot move '{source}'")
        self._require_modifiable(dest_parent, f"cannot move '{source}' to '{dest}'")

        existing = dest_parent.children.get(name)
        if existing is not None:
            if existing.is_dir or src_node.is_dir:
                raise ConflictError(
                    f"cannot overwrite '{final_path}' with '{source}': File exists"
                )

        # Single detach + attach step.
        now = self.clock()
        del src_parent.children[src_node.name]
        src_node.name = name
        dest_parent.children[name] = src_node
        src_parent.modified_at = now
        dest_parent.modified_at = now
        if is_same_or_descendant(self.cwd, src_path):
            self.cwd = final_path + self.cwd[len(src_path):]
        LOGGER.debug("Moved %s -> %s as %s", src_path, final_path, self.username)
        return OpResult.ok(final_path)

    @_operation
    def copy(self, source: str, dest: str, recursive: bool = False) -> OpResult:
        src_path = self.resolve_path(source)
        src_node = self._walk_to(src_path, source)
        subject = self.subject
        if src_node.is_dir and not recursive:
            raise IsDirectoryError(f"-r not specified; omitting directory '{source}'")
        for sub_path, sub in src_node.walk(src_path):
            readable = can_read(subject, sub) and (not sub.is_dir or can_execute(subject, sub))
            if not readable:
                raise PermissionDeniedError(f"cannot open '{sub_path}' for reading: Permission denied")

        parent_path, name = self._destination(src_node, dest)
        final_path = join_path(parent_path, name)
        if src_node.is_dir and is_same_or_descendant(final_path, src_path):
            raise ConflictError(f"cannot copy a directory, '{source}', into itself, '{dest}'")
        if final_path == src_path:
            raise ConflictError(f"'{source}' and '{dest}' are the same file")
        if UNSAFE_PATH_CHARS.search(name):
            raise InvalidPathError(f"{dest}: Invalid path")

        dest_parent = self._walk_to_dir(parent_path, dest)
        now = self.clock()
        existing = dest_parent.children.get(name)
        if existing is not None:
            if existing.is_dir or src_node.is_dir:
                raise ConflictError(f"cannot overwrite '{final_path}': File exists")
            if not can_write(subject, existing):
                raise PermissionDeniedError(f"cannot create regular file '{dest}': Permission denied")
            existing.content = src_node.content
            existing.modified_at = now
            return OpResult.ok(final_path)

        self._require_modifiable(dest_parent, f"cannot create '{dest}'")
        dest_parent.children[name] = src_node.clone(self.username, self.primary_group, now, name)
        dest_parent.modified_at = now
        return OpResult.ok(final_path)

    # ----- attributes -----

    @_operation
    def chmod(self, path: str, mode: str) -> OpResult:
        node = self._walk_to(self.resolve_path(path), path)
        if not can_change_attributes(self.subject, node):
            raise NotPermittedError(
                f"changing permissions of '{path}': Operation not permitted"
            )
        node.permissions = apply_mode(mode, node.permissions)
        return OpResult.ok(node.permissions)

    @_operation
    def chown(self, path: str, spec: str, recursive: bool = False) -> OpResult:
        owner, group = parse_owner_spec(spec)
        if owner is None and group is None:
            raise FilesystemError(f"invalid spec: '{spec}'", ErrorKind.INVALID_ARGUMENT)
        if owner is not None and owner not in self.users:
            raise FilesystemError(f"invalid user: '{spec}'", ErrorKind.INVALID_ARGUMENT)
        if group is not None and group not in self.groups:
            raise FilesystemError(f"invalid group: '{spec}'", ErrorKind.INVALID_ARGUMENT)

        target = self.resolve_path(path)
        root_node = self._walk_to(target, path)
        nodes = [n for _, n in root_node.walk(target)] if recursive else [root_node]
        subject = self.subject
        if not subject.is_admin:
            for node in nodes:
                allowed = (
                    is_owner(subject, node)
                    and (owner is None or owner == node.owner)
                    and (group is None or group in subject.groups)
                )
                if not allowed:
                    raise NotPermittedError(
                        f"changing ownership of '{path}': Operation not permitted"
                    )
        for node in nodes:
            if owner is not None:
                node.owner = owner
            if group is not None:
                node.group = group
        return OpResult.ok(target)

    # ----- accounts -----

    def _require_admin(self, command: str) -> None:
        if not self.subject.is_admin:
            raise PermissionDeniedError(f"{command}: permission denied (try sudo)")

    @_operation
    def add_group(self, name: str) -> OpResult:
        self._require_admin("groupadd")
        problem = validate_username(name)
        if problem:
            raise FilesystemError(problem.replace("user", "group"), ErrorKind.INVALID_ARGUMENT)
        if name in self.groups:
            raise ConflictError(f"group '{name}' already exists")
        self.groups.add(name)
        return OpResult.ok(name)

    @_operation
    def add_user(
        self,
        username: str,
        groups: Iterable[str] = (),
        primary_group: Optional[str] = None,
        create_home: bool = True,
    ) -> OpResult:
        self._require_admin("useradd")
        problem = validate_username(username)
        if problem:
            raise FilesystemError(problem, ErrorKind.INVALID_ARGUMENT)
        if username in self.users:
            raise ConflictError(f"user '{username}' already exists")
        supplemental = set(groups)
        missing = sorted(g for g in supplemental if g not in self.groups)
        if missing:
            raise NotFoundError(f"group '{missing[0]}' does not exist")
        if primary_group is not None and primary_group not in self.groups:
            raise NotFoundError(f"group '{primary_group}' does not exist")

        home = f"/home/{username}"
        home_parent = self._lookup("/home")
        if create_home and (home_parent is None or not home_parent.is_dir):
            raise NotFoundError("/home: No such file or directory")

        primary = primary_group or username
        self.groups.add(primary)
        self.users[username] = User(username, primary, supplemental, home)
        if create_home and username not in home_parent.children:
            now = self.clock()
            home_parent.children[username] = Node(
                name=username,
                kind=DIR_TYPE,
                permissions=DEFAULT_DIR_PERMISSIONS,
                owner=username,
                group=primary,
                modified_at=now,
            )
            home_parent.modified_at = now
        LOGGER.info("Added user %s (groups: %s)", username, ",".join(sorted(supplemental)) or "-")
        return OpResult.ok(self.users[username])

    @_operation
    def modify_user_groups(self, username: str, groups: Iterable[str], append: bool = True) -> OpResult:
        self._require_admin("usermod")
        user = self.users.get(username)
        if user is None:
            raise NotFoundError(f"user '{username}' does not exist")
        wanted = set(groups)
        missing = sorted(g for g in wanted if g not in self.groups)
        if missing:
            raise NotFoundError(f"group '{missing[0]}' does not exist")
        user.supplemental_groups = (user.supplemental_groups | wanted) if append else wanted
        return OpResult.ok(user)

    @_operation
    def delete_user(self, username: str, remove_home: bool = False) -> OpResult:
        """userdel; with ``remove_home`` the home subtree goes with the record."""
        self._require_admin("userdel")
        user = self.users.get(username)
        if user is None:
            raise NotFoundError(f"user '{username}' does not exist")
        if username == ADMIN_USER or username in self.active_users():
            raise ConflictError(f"user {username} is currently logged in")

        home_path = user.home
        home_node = self._lookup(home_path) if remove_home else None
        if remove_home and home_path in ("/", ""):
            raise NotPermittedError(f"refusing to remove home directory '{home_path}'")
        if home_node is not None and is_same_or_descendant(self.cwd, home_path):
            raise ConflictError(f"cannot remove '{home_path}': directory is in use")

        # Commit both together: nothing below can fail.
        del self.users[username]
        if home_node is not None:
            self._detach(home_path)
        still_used = any(user.primary_group in u.groups for u in self.users.values())
        if user.primary_group == username and not still_used:
            self.groups.discard(username)
        LOGGER.info("Deleted user %s%s", username, " and home" if home_node is not None else "")
        return OpResult.ok(username)

    # ----- snapshot / restore -----

    def snapshot(self) -> Dict[str, Any]:
        """JSON-serialisable copy of the tree, cwd and identity state."""
        return {
            "version": SNAPSHOT_VERSION,
            "tree": self.root.to_dict(),
            "cwd": self.cwd,
            "username": self.username,
            "users": [self.users[name].to_dict() for name in sorted(self.users)],
            "groups": sorted(self.groups),
        }

    @_operation
    def restore(self, blob: Any) -> OpResult:
        """Replace live state with ``blob``; all-or-nothing."""
        try:
            model = validate_snapshot(blob)
        except InvalidSnapshotError as exc:
            LOGGER.warning("Rejected snapshot: %s", exc.message)
            raise

        root = Node.from_dict(model.tree.model_dump())
        if model.users is not None:
            users = {u.username: User.from_dict(u.model_dump()) for u in model.users}
        else:
            users = _copy.deepcopy(self.users)
        groups = set(model.groups) if model.groups is not None else set(self.groups)
        for user in users.values():
            groups |= user.groups
        username = model.username or (self.username if self.username in users else DEFAULT_USER)
        if username not in users:
            raise InvalidSnapshotError(f"invalid snapshot: unknown session user '{username}'")
        cwd = model.cwd or users[username].home

        # Everything validated: swap in one go.
        self.root = root
        self.users = users
        self.groups = groups
        self.username = username
        self._elevation_stack = []
        self.cwd = cwd if self._is_dir(cwd) else "/"
        LOGGER.info("Restored snapshot (user=%s, cwd=%s)", self.username, self.cwd)
        return OpResult.ok()

    def check_integrity(self) -> List[str]:
        """Return a list of tree invariant violations (empty when healthy)."""
        problems: List[str] = []
        seen: Set[int] = set()
        stack: List[Tuple[str, Node]] = [("/", self.root)]
        while stack:
            path, node = stack.pop()
            if id(node) in seen:
                problems.append(f"{path}: node reachable twice")
                continue
            seen.add(id(node))
            if node.is_file and node.children:
                problems.append(f"{path}: file has children")
            for name, child in node.children.items():
                if child.name != name:
                    problems.append(f"{join_path(path, name)}: name mismatch '{child.name}'")
                stack.append((join_path(path, name), child))
        if not self._is_dir(self.cwd):
            problems.append(f"cwd {self.cwd} is not a directory")
        return problems
