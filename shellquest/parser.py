"""Shell-grammar command parser.

Turns a raw input line into one of four parse results:

- ``EmptyCommand``  blank input
- ``ParseError``    syntax error, reported verbatim to the player
- ``Command``       a single command with args, flags and optional redirect
- ``Pipeline``      two or more commands joined by ``|``

Parsing has no filesystem knowledge and no hidden state: the same line
always produces an equal result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

# Short options whose following value the command needs verbatim (find).
PASSTHROUGH_SHORT_OPTIONS = frozenset({"-name", "-iname", "-type", "-mtime", "-mmin"})

UNMATCHED_QUOTE = "syntax error: unmatched quote"
UNEXPECTED_NEWLINE = "syntax error near unexpected token `newline'"
UNEXPECTED_PIPE = "syntax error near unexpected token `|'"

_NEGATIVE_NUMBER = re.compile(r"^-\d+$")

FlagValue = Union[bool, str]


@dataclass(frozen=True)
class Redirect:
    """Output redirection for the final command of a line."""

    mode: str  # "overwrite" | "append"
    target: str

    @property
    def append(self) -> bool:
        return self.mode == "append"


@dataclass(frozen=True)
class EmptyCommand:
    raw: str = ""


@dataclass(frozen=True)
class ParseError:
    message: str
    raw: str = ""


@dataclass(frozen=True)
class Command:
    name: str
    args: Tuple[str, ...] = ()
    flags: Dict[str, FlagValue] = field(default_factory=dict)
    raw: str = ""
    redirect: Optional[Redirect] = None


@dataclass(frozen=True)
class Pipeline:
    stages: Tuple[Command, ...]
    raw: str = ""
    redirect: Optional[Redirect] = None


ParsedCommand = Union[EmptyCommand, ParseError, Command, Pipeline]


def parse(line: str) -> ParsedCommand:
    """Parse a raw command line."""
    trimmed = line.strip()
    if not trimmed:
        return EmptyCommand(raw=line)

    syntax_error = validate_syntax(trimmed)
    if syntax_error:
        return ParseError(syntax_error, raw=line)

    # Redirection is taken from the whole line so it binds to the last stage.
    command_part, redirect, redirect_error = extract_redirect(trimmed)
    if redirect_error:
        return ParseError(redirect_error, raw=line)
    # Only the last operator counts; earlier ones go away with their targets.
    earlier = redirect
    while earlier is not None:
        command_part, earlier, redirect_error = extract_redirect(command_part)
        if redirect_error:
            return ParseError(redirect_error, raw=line)

    segments = split_pipes(command_part)
    if len(segments) > 1:
        if any(not seg.strip() for seg in segments):
            return ParseError(UNEXPECTED_PIPE, raw=line)
        stages = []
        for seg in segments:
            stage = parse_single(seg.strip())
            if not isinstance(stage, Command):
                return ParseError(UNEXPECTED_PIPE, raw=line)
            stages.append(stage)
        return Pipeline(stages=tuple(stages), raw=trimmed, redirect=redirect)

    parsed = parse_single(command_part)
    if isinstance(parsed, Command) and redirect is not None:
        return Command(
            name=parsed.name,
            args=parsed.args,
            flags=parsed.flags,
            raw=parsed.raw,
            redirect=redirect,
        )
    if isinstance(parsed, EmptyCommand) and redirect is not None:
        # "> file" alone: nothing to run, nothing to write
        return EmptyCommand(raw=line)
    return parsed


def validate_syntax(text: str) -> Optional[str]:
    """Reject unbalanced quoting before any structural parsing."""
    in_single = in_double = escaped = False
    for char in text:
        if escaped:
            escaped = False
            continue
        if char == "\\" and not in_single:
            escaped = True
        elif char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
    if in_single or in_double:
        return UNMATCHED_QUOTE
    return None


def tokenize(text: str) -> List[str]:
    """Split on unquoted whitespace, removing quotes and escapes."""
    tokens: List[str] = []
    current: List[str] = []
    has_token = False
    in_single = in_double = escaped = False

    for char in text:
        if escaped:
            current.append(char)
            escaped = False
            continue
        if char == "\\" and not in_single:
            escaped = True
            has_token = True
            continue
        if char == "'" and not in_double:
            in_single = not in_single
            has_token = True
            continue
        if char == '"' and not in_single:
            in_double = not in_double
            has_token = True
            continue
        if char.isspace() and not in_single and not in_double:
            if has_token:
                tokens.append("".join(current))
                current = []
                has_token = False
            continue
        current.append(char)
        has_token = True

    if escaped:
        current.append("\\")
    if has_token:
        tokens.append("".join(current))
    return tokens


def split_pipes(text: str) -> List[str]:
    """Split on unquoted, unescaped ``|``; quoting is preserved in segments."""
    segments: List[str] = []
    current: List[str] = []
    in_single = in_double = escaped = False

    for char in text:
        if escaped:
            current.append(char)
            escaped = False
            continue
        if char == "\\" and not in_single:
            current.append(char)
            escaped = True
            continue
        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif char == "|" and not in_single and not in_double:
            segments.append("".join(current))
            current = []
            continue
        current.append(char)

    segments.append("".join(current))
    return segments


def extract_redirect(text: str) -> Tuple[str, Optional[Redirect], Optional[str]]:
    """Find the last unquoted ``>``/``>>`` and strip it with its target.

    Returns ``(command_text, redirect, error)``.
    """
    in_single = in_double = escaped = False
    index = -1
    mode = "overwrite"
    i = 0
    while i < len(text):
        char = text[i]
        if escaped:
            escaped = False
        elif char == "\\" and not in_single:
            escaped = True
        elif char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif char == ">" and not in_single and not in_double:
            index = i
            if i + 1 < len(text) and text[i + 1] == ">":
                mode = "append"
                i += 1
            else:
                mode = "overwrite"
        i += 1

    if index == -1:
        return text, None, None

    operator_len = 2 if mode == "append" else 1
    remainder = text[index + operator_len :]
    target_tokens = tokenize(remainder)
    if not target_tokens:
        return text, None, UNEXPECTED_NEWLINE

    # Anything after the target word stays part of the command (echo a > f b).
    leftover = strip_first_word(remainder)
    command = (text[:index].rstrip() + (" " + leftover if leftover else "")).strip()
    return command, Redirect(mode=mode, target=target_tokens[0]), None


def strip_first_word(text: str) -> str:
    """Return ``text`` with its first shell word removed, quoting intact."""
    stripped = text.lstrip()
    in_single = in_double = escaped = False
    for i, char in enumerate(stripped):
        if escaped:
            escaped = False
            continue
        if char == "\\" and not in_single:
            escaped = True
        elif char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif char.isspace() and not in_single and not in_double:
            return stripped[i:].strip()
    return ""


def parse_single(text: str) -> Union[EmptyCommand, Command]:
    """Parse one pipeline stage (or a whole pipe-free line)."""
    tokens = tokenize(text)
    if not tokens:
        return EmptyCommand(raw=text)

    name, rest = tokens[0], tokens[1:]
    args: List[str] = []
    flags: Dict[str, FlagValue] = {}

    for token in rest:
        if token == "--":
            args.append(token)
        elif token.startswith("--"):
            flag = token[2:]
            if "=" in flag:
                key, value = flag.split("=", 1)
                flags[key] = value
            else:
                flags[flag] = True
        elif token in PASSTHROUGH_SHORT_OPTIONS:
            args.append(token)
        elif _NEGATIVE_NUMBER.match(token):
            args.append(token)
        elif token.startswith("-") and len(token) > 1 and not token.startswith("-/"):
            for char in token[1:]:
                flags[char] = True
        else:
            args.append(token)

    return Command(name=name, args=tuple(args), flags=flags, raw=text)
