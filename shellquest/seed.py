"""Seed structure for a fresh ShellQuest filesystem.

The tree is described in the same dict shape ``FileSystem.snapshot()``
produces, so the constructor and ``restore()`` share one loader.
Timestamps are relative to "now" so age-based ``find`` filters behave the
same whenever a game starts.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR

DEFAULT_USER = "user"


def _file(
    name: str,
    content: str = "",
    *,
    owner: str = "root",
    group: Optional[str] = None,
    permissions: str = "rw-r--r--",
    age: float = 2 * DAY,
) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "file",
        "permissions": permissions,
        "owner": owner,
        "group": group or owner,
        "content": content,
        "age": age,
    }


def _dir(
    name: str,
    children: List[Dict[str, Any]],
    *,
    owner: str = "root",
    group: Optional[str] = None,
    permissions: str = "rwxr-xr-x",
    age: float = 10 * DAY,
) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "dir",
        "permissions": permissions,
        "owner": owner,
        "group": group or owner,
        "children": children,
        "age": age,
    }


BASHRC = """# ~/.bashrc: executed by bash for non-login shells.
export PS1='\\u@\\h:\\w\\$ '
alias ll='ls -la'
alias la='ls -a'
"""

NOTES = """Welcome to Linux Game!
These notes will help you get started:
- pwd shows where you are
- ls lists the files in a directory
- cd moves you around
- cat prints a file
Have fun exploring the terminal.
"""

BONUSES = """Q1 bonus pool: 12000
Q2 bonus pool: 15500
Confidential - HR and management only.
"""

REPORT = """Quarterly report
================
Revenue grew by 12% over the previous quarter.
Action items: review access rights on shared documents.
"""

TODO = """TODO
- clean up the downloads folder
- archive old reports
- learn grep and find
"""

README = """# Downloads
Files downloaded from the internet land here.
Move what you want to keep into ~/documents.
"""

SCRIPT = """#!/bin/bash
echo "Backing up documents..."
cp -r ~/documents /tmp/backup
echo "Done."
"""

SYSTEM_LOG = """[2024-01-15 08:00:01] Info: system boot completed
[2024-01-15 08:00:05] Info: network interface eth0 up
[2024-01-15 09:12:44] Warning: disk usage above 80% on /var
[2024-01-15 10:03:17] Info: user login: user
[2024-01-15 11:22:33] Error: connection timeout to remote server
[2024-01-15 11:25:02] Info: retrying connection
[2024-01-15 11:25:09] Info: connection established
[2024-01-15 14:47:51] Error: failed to write /var/backups/daily.tar
[2024-01-15 18:30:00] Info: scheduled maintenance finished"""

AUTH_LOG = """Jan 15 10:03:17 linux-game login[812]: session opened for user user
Jan 15 10:41:02 linux-game sudo: user : TTY=pts/0 ; PWD=/home/user ; USER=root ; COMMAND=/usr/bin/apt update
Jan 15 12:15:40 linux-game sshd[1044]: Failed password for invalid user admin from 203.0.113.7 port 51122"""

PASSWD = """root:x:0:0:root:/root:/bin/bash
user:x:1000:1000:Player:/home/user:/bin/bash
admin:x:1001:1001:Administrator:/home/admin:/bin/bash"""

GROUP = """root:x:0:
user:x:1000:
admin:x:1001:
security:x:1002:user
marketing:x:1003:"""

ADMIN_NOTES = """Rotate the backup keys on Friday.
Temporary password for the staging box is in the vault.
"""


def default_structure() -> Dict[str, Any]:
    """Return the seed tree (relative ``age`` in seconds instead of mtimes)."""
    return _dir(
        "/",
        [
            _dir(
                "bin",
                [
                    _file(name, f"#!ELF {name}", permissions="rwxr-xr-x", age=90 * DAY)
                    for name in ("bash", "cat", "ls", "grep", "find")
                ],
                age=90 * DAY,
            ),
            _dir(
                "etc",
                [
                    _file("hostname", "linux-game", age=90 * DAY),
                    _file("passwd", PASSWD, age=30 * DAY),
                    _file("group", GROUP, age=30 * DAY),
                    _file("shadow", "root:*:19000:0:99999:7:::", permissions="rw-------", age=30 * DAY),
                    _file("motd", "Welcome to the Linux Game training system.", age=60 * DAY),
                ],
                age=30 * DAY,
            ),
            _dir(
                "home",
                [
                    _dir(
                        "user",
                        [
                            _file(".bashrc", BASHRC, owner="user", age=20 * DAY),
                            _file(".profile", "# ~/.profile\n", owner="user", age=20 * DAY),
                            _dir(
                                "documents",
                                [
                                    _file("notes.txt", NOTES, owner="user", age=1 * DAY),
                                    _file(
                                        "bonuses.txt",
                                        BONUSES,
                                        owner="user",
                                        group="marketing",
                                        permissions="rw-rw----",
                                        age=5 * DAY,
                                    ),
                                    _file("rapport.txt", REPORT, owner="user", age=3 * DAY),
                                    _file("todo.txt", TODO, owner="user", age=2 * HOUR),
                                ],
                                owner="user",
                                age=1 * DAY,
                            ),
                            _dir(
                                "telechargements",
                                [
                                    _file("readme.md", README, owner="user", age=4 * DAY),
                                    _file("archive.zip", "PK\x03\x04 old archive", owner="user", age=40 * DAY),
                                    _file("photo.jpg", "JFIF image data", owner="user", age=12 * DAY),
                                ],
                                owner="user",
                                age=4 * DAY,
                            ),
                            _dir(
                                "projets",
                                [
                                    _file(
                                        "backup.sh",
                                        SCRIPT,
                                        owner="user",
                                        permissions="rwxr-xr-x",
                                        age=6 * DAY,
                                    ),
                                ],
                                owner="user",
                                age=6 * DAY,
                            ),
                        ],
                        owner="user",
                        age=20 * DAY,
                    ),
                    _dir(
                        "admin",
                        [_file("notes.txt", ADMIN_NOTES, owner="admin", permissions="rw-------", age=8 * DAY)],
                        owner="admin",
                        permissions="rwx------",
                        age=20 * DAY,
                    ),
                ],
                age=60 * DAY,
            ),
            _dir(
                "root",
                [_file(".bashrc", BASHRC, age=60 * DAY)],
                permissions="rwx------",
                age=60 * DAY,
            ),
            _dir("tmp", [], permissions="rwxrwxrwx", age=1 * HOUR),
            _dir(
                "var",
                [
                    _dir(
                        "log",
                        [
                            _file("system.log", SYSTEM_LOG, age=1 * DAY),
                            _file("auth.log", AUTH_LOG, permissions="rw-r-----", age=1 * DAY),
                        ],
                        age=1 * DAY,
                    ),
                ],
                age=60 * DAY,
            ),
        ],
        age=90 * DAY,
    )


def default_users() -> List[Dict[str, Any]]:
    return [
        {"username": "root", "primary_group": "root", "supplemental_groups": [], "home": "/root"},
        {"username": "user", "primary_group": "user", "supplemental_groups": ["security"], "home": "/home/user"},
        {"username": "admin", "primary_group": "admin", "supplemental_groups": [], "home": "/home/admin"},
    ]


def default_groups() -> List[str]:
    return ["root", "user", "admin", "security", "marketing"]


def stamp(structure: Dict[str, Any], now: Optional[float] = None) -> Dict[str, Any]:
    """Replace relative ``age`` entries with absolute ``modified_at`` times."""
    now = time.time() if now is None else now
    node = {k: v for k, v in structure.items() if k not in ("age", "children")}
    if "age" in structure:
        node["modified_at"] = now - structure["age"]
    else:
        node["modified_at"] = structure.get("modified_at", now)
    if structure["type"] == "dir":
        node["children"] = [stamp(child, now) for child in structure.get("children", [])]
    return node
