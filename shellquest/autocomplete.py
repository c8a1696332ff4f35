"""Tab completion for command names and paths."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .command_handler import CommandRegistry
    from .filesystem import FileSystem


@dataclass
class Completion:
    """``completed`` replaces the word being typed; ``options`` lists candidates."""

    completed: Optional[str] = None
    options: List[str] = field(default_factory=list)


class Autocomplete:
    def __init__(self, fs: "FileSystem", registry: "CommandRegistry"):
        self.fs = fs
        self.registry = registry

    def complete(self, line: str) -> Completion:
        parts = line.split(" ")
        if len(parts) <= 1:
            return self._complete_command(parts[0])
        return self._complete_path(parts[-1])

    def _complete_command(self, partial: str) -> Completion:
        matches = [name for name in self.registry.names() if name.startswith(partial)]
        if not matches:
            return Completion()
        if len(matches) == 1:
            return Completion(matches[0] + " ")
        common = os.path.commonprefix(matches)
        return Completion(common if common != partial else None, matches)

    def _complete_path(self, partial: str) -> Completion:
        if "/" in partial:
            slash = partial.rindex("/")
            directory = partial[:slash] or "/"
            prefix = partial[slash + 1:]
            base = partial[: slash + 1]
        else:
            directory, prefix, base = ".", partial, ""

        # Unlistable directories offer nothing.
        listing = self.fs.list_dir(directory, include_hidden=True)
        if not listing.success:
            return Completion()

        entries = [node for node in listing.value if node.name.startswith(prefix)]
        if not entries:
            return Completion()
        if len(entries) == 1:
            entry = entries[0]
            return Completion(base + entry.name + ("/" if entry.is_dir else " "))

        common = os.path.commonprefix([node.name for node in entries])
        options = [node.name + "/" if node.is_dir else node.name for node in entries]
        return Completion(base + common if common != prefix else None, options)
