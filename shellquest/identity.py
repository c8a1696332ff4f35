"""Identity & access model for ShellQuest.

Users, groups, permission triads and the pure decision functions that
answer "can subject S do action A on node N". Nothing here touches the
tree; the filesystem passes in a ``Subject`` snapshot and a node.

Permission strings are the nine-character ``ls`` rendering of the three
triads (``rwxr-x---``), the same representation stored on every node.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from .errors import InvalidModeError

if TYPE_CHECKING:
    from .filesystem import Node

ADMIN_USER = "root"
ADMIN_GROUP = "root"

PERMISSIONS_PATTERN = re.compile(r"^[r-][w-][x-][r-][w-][x-][r-][w-][x-]$")
USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")

_OCTAL_PATTERN = re.compile(r"^0?[0-7]{3}$")
_CLAUSE_PATTERN = re.compile(r"^([ugoa]*)([+\-=])([rwx]*)$")
_TRIAD_OFFSETS = {"u": 0, "g": 3, "o": 6}
_BITS = "rwx"

# Elevated commands refused no matter who asks.
BLOCKED_COMMANDS = frozenset({"mkfs", "dd", "shutdown", "reboot", "halt", "poweroff"})
_ROOT_TARGETS = frozenset({"/", "/*", "/.", "/.."})


@dataclass
class User:
    """A simulated account."""

    username: str
    primary_group: str
    supplemental_groups: Set[str] = field(default_factory=set)
    home: str = ""

    def __post_init__(self) -> None:
        if not self.home:
            self.home = "/root" if self.username == ADMIN_USER else f"/home/{self.username}"

    @property
    def groups(self) -> Set[str]:
        """Effective group set: primary plus supplemental."""
        return {self.primary_group} | set(self.supplemental_groups)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "primary_group": self.primary_group,
            "supplemental_groups": sorted(self.supplemental_groups),
            "home": self.home,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "User":
        return cls(
            username=data["username"],
            primary_group=data["primary_group"],
            supplemental_groups=set(data.get("supplemental_groups", [])),
            home=data.get("home", ""),
        )


@dataclass(frozen=True)
class Subject:
    """Immutable view of the acting user used by the permission checks."""

    username: str
    groups: FrozenSet[str] = frozenset()

    @property
    def is_admin(self) -> bool:
        return self.username == ADMIN_USER

    @classmethod
    def for_user(cls, user: User) -> "Subject":
        return cls(username=user.username, groups=frozenset(user.groups))


# ---------- Permission decisions ----------


def select_triad(subject: Subject, node: "Node") -> str:
    """Return the one triad that applies to ``subject`` for ``node``."""
    if subject.username == node.owner:
        return node.permissions[0:3]
    if node.group in subject.groups:
        return node.permissions[3:6]
    return node.permissions[6:9]


def is_owner(subject: Subject, node: "Node") -> bool:
    return subject.username == node.owner


def can_read(subject: Subject, node: "Node") -> bool:
    if subject.is_admin:
        return True
    return select_triad(subject, node)[0] == "r"


def can_write(subject: Subject, node: "Node") -> bool:
    if subject.is_admin:
        return True
    return select_triad(subject, node)[1] == "w"


def can_execute(subject: Subject, node: "Node") -> bool:
    if subject.is_admin:
        # root may search any directory but only runs files marked executable
        return node.is_dir or "x" in node.permissions
    return select_triad(subject, node)[2] == "x"


def can_change_attributes(subject: Subject, node: "Node") -> bool:
    """chmod/chown gate: owner or administrator."""
    return subject.is_admin or is_owner(subject, node)


# ---------- Mode expressions ----------


def permissions_to_octal(permissions: str) -> str:
    digits = []
    for start in (0, 3, 6):
        value = 0
        for offset, bit in enumerate(_BITS):
            if permissions[start + offset] == bit:
                value |= 4 >> offset
        digits.append(str(value))
    return "".join(digits)


def octal_to_permissions(octal: str) -> str:
    """Convert ``"750"`` (or ``"0750"``) to ``"rwxr-x---"``."""
    if not _OCTAL_PATTERN.match(octal):
        raise InvalidModeError(f"invalid mode: '{octal}'")
    out = []
    for digit in octal[-3:]:
        value = int(digit)
        for offset, bit in enumerate(_BITS):
            out.append(bit if value & (4 >> offset) else "-")
    return "".join(out)


def apply_mode(expression: str, current: str) -> str:
    """Apply an octal or symbolic mode expression to ``current``.

    Symbolic clauses are comma separated and applied left to right.
    Every clause is validated before any change is computed, so an invalid
    expression raises ``InvalidModeError`` and leaves nothing half-applied.
    """
    expression = expression.strip()
    if not expression:
        raise InvalidModeError("invalid mode: ''")
    if expression.isdigit():
        return octal_to_permissions(expression)

    clauses = []
    for raw_clause in expression.split(","):
        match = _CLAUSE_PATTERN.match(raw_clause)
        if match is None:
            raise InvalidModeError(f"invalid mode: '{expression}'")
        who, op, perms = match.groups()
        if not perms and op != "=":
            raise InvalidModeError(f"invalid mode: '{expression}'")
        if not who or "a" in who:
            who = "ugo"
        clauses.append((who, op, perms))

    bits = list(current)
    for who, op, perms in clauses:
        for triad in sorted(set(who), key="ugo".index):
            start = _TRIAD_OFFSETS[triad]
            for offset, bit in enumerate(_BITS):
                index = start + offset
                if op == "+" and bit in perms:
                    bits[index] = bit
                elif op == "-" and bit in perms:
                    bits[index] = "-"
                elif op == "=":
                    bits[index] = bit if bit in perms else "-"
    return "".join(bits)


def parse_owner_spec(spec: str) -> Tuple[Optional[str], Optional[str]]:
    """Split ``owner[:group]`` (also ``owner.group`` and ``:group``)."""
    separator = ":" if ":" in spec else ("." if "." in spec else None)
    if separator is None:
        return spec, None
    owner, group = spec.split(separator, 1)
    return owner or None, group or None


# ---------- Elevated execution ----------


def is_blocked_command(
    name: str,
    args: List[str],
    flags: Mapping[str, Any],
    extra: Iterable[str] = (),
) -> bool:
    """True when an elevated command must be refused outright."""
    if name in BLOCKED_COMMANDS or name in set(extra):
        return True
    if name == "rm":
        recursive = any(flags.get(f) for f in ("r", "R", "recursive"))
        if flags.get("no-preserve-root"):
            return True
        if recursive and any(arg in _ROOT_TARGETS for arg in args):
            return True
    return False


def validate_username(username: str) -> Optional[str]:
    """Return an error message when ``username`` is not acceptable."""
    if not USERNAME_PATTERN.match(username):
        return f"invalid user name '{username}'"
    return None
