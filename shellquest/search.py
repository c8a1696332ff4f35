"""Permission-aware traversal, ``find`` filters and ``grep``."""

from __future__ import annotations

import fnmatch
import html
import logging
import math
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence, Tuple

from .errors import ErrorKind
from .filesystem import Node, join_path
from .identity import can_execute, can_read

if TYPE_CHECKING:
    from .filesystem import FileSystem

LOGGER = logging.getLogger(__name__)

INVALID_REGEX = "grep: invalid regular expression"

_AGE_PATTERN = re.compile(r"^([+-]?)(\d+)$")
_AGE_UNITS = {"mtime": 86400, "mmin": 60}


@dataclass
class AgeFilter:
    """``-mtime``/``-mmin`` predicate: ``+N`` older, ``-N`` newer, ``N`` exact."""

    comparison: str
    amount: int
    unit: int

    @classmethod
    def parse(cls, value: str, unit: int) -> "AgeFilter":
        match = _AGE_PATTERN.match(value)
        if match is None:
            raise ValueError(f"invalid argument '{value}'")
        return cls(match.group(1), int(match.group(2)), unit)

    def matches(self, age_seconds: float) -> bool:
        age = age_seconds / self.unit
        if self.comparison == "+":
            return age > self.amount
        if self.comparison == "-":
            return age < self.amount
        return math.floor(age) == self.amount


@dataclass
class FindFilters:
    name: Optional[str] = None
    iname: Optional[str] = None
    kind: Optional[str] = None
    mtime: Optional[AgeFilter] = None
    mmin: Optional[AgeFilter] = None

    @classmethod
    def from_args(cls, args: Sequence[str]) -> Tuple[List[str], "FindFilters"]:
        """Split ``find`` arguments into start paths and filters.

        Raises ValueError on unknown predicates or missing values.
        """
        paths: List[str] = []
        filters = cls()
        i = 0
        while i < len(args):
            token = args[i]
            if not token.startswith("-") or token == "-":
                if filters != cls():
                    raise ValueError(f"paths must precede expression: '{token}'")
                paths.append(token)
                i += 1
                continue
            if i + 1 >= len(args):
                raise ValueError(f"missing argument to '{token}'")
            value = args[i + 1]
            if token == "-name":
                filters.name = value
            elif token == "-iname":
                filters.iname = value
            elif token == "-type":
                if value not in ("f", "d"):
                    raise ValueError(f"Unknown argument to -type: {value}")
                filters.kind = value
            elif token in ("-mtime", "-mmin"):
                setattr(filters, token[1:], AgeFilter.parse(value, _AGE_UNITS[token[1:]]))
            else:
                raise ValueError(f"unknown predicate '{token}'")
            i += 2
        return paths, filters

    def matches(self, node: Node, now: float) -> bool:
        if self.name is not None and not fnmatch.fnmatchcase(node.name, self.name):
            return False
        if self.iname is not None and not fnmatch.fnmatchcase(
            node.name.lower(), self.iname.lower()
        ):
            return False
        if self.kind == "f" and not node.is_file:
            return False
        if self.kind == "d" and not node.is_dir:
            return False
        age = now - node.modified_at
        if self.mtime is not None and not self.mtime.matches(age):
            return False
        if self.mmin is not None and not self.mmin.matches(age):
            return False
        return True


def walk(fs: "FileSystem", start: str) -> Iterator[Tuple[str, Node]]:
    """Depth-first pre-order walk from ``start`` honouring permissions.

    A directory the subject cannot read or search is yielded itself, but
    nothing below it is.
    """
    result = fs.stat(start)
    if not result.success:
        return
    subject = fs.subject
    stack: List[Tuple[str, Node]] = [(fs.resolve_path(start), result.value)]
    while stack:
        path, node = stack.pop()
        yield path, node
        if not node.is_dir:
            continue
        if not (can_read(subject, node) and can_execute(subject, node)):
            LOGGER.debug("Skipping unreadable directory %s", path)
            continue
        for child in reversed(node.iter_children()):
            stack.append((join_path(path, child.name), child))


def find(fs: "FileSystem", start: str, filters: Optional[FindFilters] = None) -> List[str]:
    """Absolute paths under ``start`` matching every filter."""
    filters = filters or FindFilters()
    now = fs.clock()
    return [path for path, node in walk(fs, start) if filters.matches(node, now)]


@dataclass
class GrepMatch:
    path: str
    line_number: int
    line: str


@dataclass
class GrepReport:
    matches: List[GrepMatch] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    multi_file: bool = False

    @property
    def fatal(self) -> bool:
        return self.error_kind == ErrorKind.INVALID_REGEX

    def render(self, line_numbers: bool = False) -> str:
        lines = []
        for match in self.matches:
            prefix = f"{match.path}:" if self.multi_file else ""
            if line_numbers:
                prefix += f"{match.line_number}:"
            lines.append(prefix + match.line)
        return "\n".join(lines)

    def render_html(self, regex: Optional["re.Pattern[str]"], line_numbers: bool = False) -> str:
        lines = []
        for match in self.matches:
            prefix = ""
            if self.multi_file:
                prefix = f'<span class="grep-path">{html.escape(match.path)}</span>:'
            if line_numbers:
                prefix += f"{match.line_number}:"
            lines.append(prefix + highlight(match.line, regex))
        return "\n".join(lines)


def compile_pattern(pattern: str, ignore_case: bool = False) -> Optional["re.Pattern[str]"]:
    try:
        return re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error:
        return None


def highlight(line: str, regex: Optional["re.Pattern[str]"]) -> str:
    """Escape ``line`` for HTML and wrap each match in a highlight span."""
    if regex is None:
        return html.escape(line)
    parts = []
    last = 0
    for match in regex.finditer(line):
        if match.start() == match.end():
            continue
        parts.append(html.escape(line[last:match.start()]))
        parts.append(f'<span class="grep-match">{html.escape(match.group(0))}</span>')
        last = match.end()
    parts.append(html.escape(line[last:]))
    return "".join(parts)


def grep(
    fs: "FileSystem",
    pattern: str,
    paths: Sequence[str],
    recursive: bool = False,
    ignore_case: bool = False,
    invert: bool = False,
) -> GrepReport:
    """Search files for ``pattern``; per-file problems are collected, not raised."""
    regex = compile_pattern(pattern, ignore_case)
    if regex is None:
        LOGGER.debug("Rejected grep pattern %r", pattern)
        return GrepReport(errors=[INVALID_REGEX], error_kind=ErrorKind.INVALID_REGEX)

    report = GrepReport(multi_file=recursive or len(paths) > 1)
    subject = fs.subject
    for raw in paths:
        result = fs.stat(raw)
        if not result.success:
            report.errors.append(f"grep: {result.error}")
            report.error_kind = result.kind
            continue
        node = result.value
        if node.is_dir and not recursive:
            report.errors.append(f"grep: {raw}: Is a directory")
            report.error_kind = ErrorKind.IS_A_DIRECTORY
            continue

        targets = walk(fs, raw) if node.is_dir else [(fs.resolve_path(raw), node)]
        for path, target in targets:
            if target.is_dir:
                continue
            display = raw if target is node else path
            if not can_read(subject, target):
                report.errors.append(f"grep: {display}: Permission denied")
                report.error_kind = ErrorKind.PERMISSION_DENIED
                continue
            _search(report, display, target.content, regex, invert)
    return report


def grep_text(text: str, pattern: str, ignore_case: bool = False, invert: bool = False) -> GrepReport:
    """grep over piped input."""
    regex = compile_pattern(pattern, ignore_case)
    if regex is None:
        return GrepReport(errors=[INVALID_REGEX], error_kind=ErrorKind.INVALID_REGEX)
    report = GrepReport()
    _search(report, "(standard input)", text, regex, invert)
    return report


def _search(report: GrepReport, path: str, text: str, regex: "re.Pattern[str]", invert: bool) -> None:
    for number, line in enumerate(text.splitlines(), start=1):
        if bool(regex.search(line)) != invert:
            report.matches.append(GrepMatch(path, number, line))
