"""Tests for the identity and access model."""

import pytest

from shellquest.errors import InvalidModeError
from shellquest.filesystem import Node
from shellquest.identity import (
    Subject,
    User,
    apply_mode,
    can_execute,
    can_read,
    can_write,
    is_blocked_command,
    octal_to_permissions,
    parse_owner_spec,
    permissions_to_octal,
    select_triad,
    validate_username,
)


def make_node(permissions="rw-r-----", owner="alice", group="staff", kind="file"):
    return Node(name="x", kind=kind, permissions=permissions, owner=owner, group=group)


ALICE = Subject("alice", frozenset({"alice"}))
BOB_STAFF = Subject("bob", frozenset({"bob", "staff"}))
CAROL = Subject("carol", frozenset({"carol"}))
ROOT = Subject("root", frozenset({"root"}))


class TestTriadSelection:
    """Exactly one triad applies."""

    def test_owner_triad(self):
        """The owner gets the owner triad."""
        assert select_triad(ALICE, make_node("r--rw-rwx")) == "r--"

    def test_group_triad(self):
        """A group member gets the group triad."""
        assert select_triad(BOB_STAFF, make_node("r--rw-rwx")) == "rw-"

    def test_other_triad(self):
        """Everyone else gets the other triad."""
        assert select_triad(CAROL, make_node("r--rw-rwx")) == "rwx"

    def test_owner_does_not_fall_through(self):
        """An owner denied by the owner triad is not rescued by other bits."""
        node = make_node("---rwxrwx")
        assert not can_read(ALICE, node)
        assert can_read(CAROL, node)


class TestPermissionChecks:
    """Tests for can_read/can_write/can_execute."""

    def test_mode_000_blocks_group(self):
        """A 000 file is unreadable for group members."""
        node = make_node("---------")
        assert not can_read(BOB_STAFF, node)
        assert not can_write(BOB_STAFF, node)

    def test_root_bypasses_read_write(self):
        """The administrator reads and writes anything."""
        node = make_node("---------")
        assert can_read(ROOT, node)
        assert can_write(ROOT, node)

    def test_root_execute_needs_a_bit_on_files(self):
        """root only executes files with some x bit."""
        assert not can_execute(ROOT, make_node("rw-rw-rw-"))
        assert can_execute(ROOT, make_node("rw-rw-r-x"))

    def test_root_executes_directories(self):
        """root may search any directory."""
        assert can_execute(ROOT, make_node("---------", kind="dir"))


class TestModes:
    """Tests for octal and symbolic mode handling."""

    def test_octal_round_trip(self):
        """750 <-> rwxr-x---"""
        assert octal_to_permissions("750") == "rwxr-x---"
        assert permissions_to_octal("rwxr-x---") == "750"

    def test_octal_with_leading_zero(self):
        """0644 is accepted."""
        assert apply_mode("0644", "---------") == "rw-r--r--"

    def test_invalid_octal(self):
        """Digits outside 0-7 are rejected."""
        with pytest.raises(InvalidModeError):
            apply_mode("789", "rw-r--r--")

    def test_symbolic_sequence(self):
        """u=r,g=r,o=r then u+wx."""
        perms = apply_mode("u=r,g=r,o=r", "rwxrwxrwx")
        assert perms == "r--r--r--"
        assert apply_mode("u+wx", perms) == "rwxr--r--"

    def test_empty_who_means_all(self):
        """+x with no who addresses every triad."""
        assert apply_mode("+x", "rw-r--r--") == "rwxr-xr-x"

    def test_equals_without_perms_clears(self):
        """o= clears the other triad."""
        assert apply_mode("o=", "rwxrwxrwx") == "rwxrwx---"

    def test_minus(self):
        """g-w removes only the group write bit."""
        assert apply_mode("g-w", "rw-rw-rw-") == "rw-r--rw-"

    def test_invalid_clause_applies_nothing(self):
        """One bad clause fails the whole expression."""
        with pytest.raises(InvalidModeError) as excinfo:
            apply_mode("u+x,g?rw", "rw-r--r--")
        assert "invalid mode" in excinfo.value.message

    def test_plus_without_perms_is_invalid(self):
        """u+ is not a valid clause."""
        with pytest.raises(InvalidModeError):
            apply_mode("u+", "rw-r--r--")


class TestOwnerSpec:
    """Tests for owner[:group] parsing."""

    def test_owner_only(self):
        assert parse_owner_spec("alice") == ("alice", None)

    def test_owner_and_group(self):
        assert parse_owner_spec("alice:staff") == ("alice", "staff")

    def test_group_only(self):
        assert parse_owner_spec(":staff") == (None, "staff")

    def test_dot_separator(self):
        assert parse_owner_spec("alice.staff") == ("alice", "staff")


class TestBlockedCommands:
    """Tests for the elevated-command denylist."""

    def test_recursive_root_removal(self):
        """rm -rf / is blocked."""
        assert is_blocked_command("rm", ["/"], {"r": True, "f": True})

    def test_recursive_root_glob(self):
        """rm -r /* is blocked."""
        assert is_blocked_command("rm", ["/*"], {"r": True})

    def test_no_preserve_root(self):
        """--no-preserve-root is always blocked."""
        assert is_blocked_command("rm", ["/tmp/x"], {"no-preserve-root": True})

    def test_ordinary_rm_allowed(self):
        """rm -r of a normal directory is fine."""
        assert not is_blocked_command("rm", ["/tmp/old"], {"r": True})

    def test_denylisted_name(self):
        """Destructive system commands are blocked."""
        assert is_blocked_command("mkfs", [], {})

    def test_configured_extra(self):
        """Extra names from configuration are honoured."""
        assert is_blocked_command("passwd", [], {}, extra=["passwd"])


class TestUsers:
    """Tests for User records."""

    def test_default_home(self):
        """Home defaults to /home/<name> (or /root)."""
        assert User("alice", "alice").home == "/home/alice"
        assert User("root", "root").home == "/root"

    def test_effective_groups(self):
        """Effective groups are primary plus supplemental."""
        user = User("alice", "alice", {"staff"})
        assert user.groups == {"alice", "staff"}

    def test_validate_username(self):
        """Names must look like POSIX user names."""
        assert validate_username("analyst1") is None
        assert validate_username("Bad Name") is not None
