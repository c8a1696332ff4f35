"""Command dispatch for ShellQuest.

Parses a raw line, runs each pipeline stage through the command registry
against the session's ``FileSystem`` and applies output redirection.

Handlers share one signature:

    handler(args, flags, piped_input, context) -> CommandResult

``args``/``flags`` come from the parser, ``piped_input`` is the previous
stage's text output (or None) and ``context`` is the ``ExecutionContext``
of the running line. Handlers never raise to the caller: filesystem
failures arrive as a failed ``OpResult`` and are turned into an error
result here, anything unexpected is logged and reported as a generic
command error.
"""

from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import Config, get_config
from .errors import ErrorKind, OpResult
from .filesystem import FileSystem, Node, parent_of
from .identity import is_blocked_command, permissions_to_octal
from .metrics import get_metrics_collector
from .parser import (
    Command,
    EmptyCommand,
    FlagValue,
    ParsedCommand,
    ParseError,
    Pipeline,
    parse,
    parse_single,
    strip_first_word,
    tokenize,
)
from .search import FindFilters, compile_pattern, find, grep, grep_text

LOGGER = logging.getLogger(__name__)

EXIT_COMMANDS = ("exit", "logout")
TRUNCATION_NOTICE = "\n[output truncated]"


@dataclass
class EditorRequest:
    """Asks the terminal to open its line editor on ``path``."""

    path: str
    content: str = ""
    new_file: bool = False
    action: str = "open"


@dataclass
class CommandResult:
    """What a command hands back to the terminal."""

    output: str = ""
    is_error: bool = False
    is_html: bool = False
    exit: bool = False
    kind: Optional[ErrorKind] = None
    editor: Optional[EditorRequest] = None

    @classmethod
    def error(cls, message: str, kind: Optional[ErrorKind] = None) -> "CommandResult":
        return cls(output=message, is_error=True, kind=kind)


@dataclass
class ExecutionContext:
    fs: FileSystem
    registry: "CommandRegistry"
    command: Optional[Command] = None
    html: bool = False
    config: Config = field(default_factory=get_config)


Handler = Callable[
    [Tuple[str, ...], Dict[str, FlagValue], Optional[str], ExecutionContext], CommandResult
]


@dataclass
class CommandSpec:
    name: str
    handler: Handler
    description: str = ""
    admin_only: bool = False


class CommandRegistry:
    """Name -> handler table with one-line descriptions for whatis/apropos."""

    def __init__(self):
        self._commands: Dict[str, CommandSpec] = {}

    def register(
        self, name: str, handler: Handler, description: str = "", admin_only: bool = False
    ) -> None:
        self._commands[name] = CommandSpec(name, handler, description, admin_only)

    def command(self, name: str, description: str = "", admin_only: bool = False):
        """Decorator form of ``register``."""

        def decorator(func: Handler) -> Handler:
            self.register(name, func, description, admin_only)
            return func

        return decorator

    def get(self, name: str) -> Optional[CommandSpec]:
        return self._commands.get(name)

    def names(self) -> List[str]:
        return sorted(self._commands)

    def description(self, name: str) -> Optional[str]:
        spec = self._commands.get(name)
        return spec.description if spec else None

    def __contains__(self, name: str) -> bool:
        return name in self._commands


_REGISTRY = CommandRegistry()
command = _REGISTRY.command


def get_registry() -> CommandRegistry:
    """Registry holding every built-in command."""
    return _REGISTRY


# ---------- Execution ----------


def handle_command(
    line: str,
    fs: FileSystem,
    registry: Optional[CommandRegistry] = None,
    html_output: Optional[bool] = None,
    config: Optional[Config] = None,
) -> CommandResult:
    """Main command processing entry point: parse, dispatch, redirect."""
    config = config or get_config()
    if line.strip() in EXIT_COMMANDS:
        return CommandResult(exit=True)
    context = ExecutionContext(
        fs=fs,
        registry=registry or get_registry(),
        html=config.session.html_output if html_output is None else html_output,
        config=config,
    )
    return execute(parse(line), context)


def execute(parsed: ParsedCommand, context: ExecutionContext) -> CommandResult:
    """Run an already parsed line."""
    if isinstance(parsed, EmptyCommand):
        return CommandResult()
    if isinstance(parsed, ParseError):
        get_metrics_collector().record_parse_error()
        return CommandResult.error(parsed.message, ErrorKind.SYNTAX)

    if isinstance(parsed, Pipeline):
        stages: Sequence[Command] = parsed.stages
    else:
        stages = (parsed,)
    redirect = parsed.redirect

    piped: Optional[str] = None
    result = CommandResult()
    for index, stage in enumerate(stages):
        final = index == len(stages) - 1
        # Markup only ever reaches the terminal, never a pipe or a file.
        stage_context = replace(
            context, command=stage, html=context.html and final and redirect is None
        )
        result = run_stage(stage, piped, stage_context)
        if result.is_error:
            return _cap(result, context.config.security.max_output_chars)
        piped = result.output

    if redirect is not None:
        content = result.output + "\n" if result.output else ""
        written = context.fs.write_file(redirect.target, content, append=redirect.append)
        if not written.success:
            return CommandResult.error(f"bash: {written.error}", written.kind)
        return CommandResult()
    return _cap(result, context.config.security.max_output_chars)


def run_stage(cmd: Command, piped_input: Optional[str], context: ExecutionContext) -> CommandResult:
    """Dispatch one command through the registry."""
    spec = context.registry.get(cmd.name)
    if spec is None:
        return CommandResult.error(f"{cmd.name}: command not found", ErrorKind.NOT_FOUND)
    if spec.admin_only and not context.fs.subject.is_admin:
        get_metrics_collector().record_denial(ErrorKind.PERMISSION_DENIED.value)
        return CommandResult.error(
            f"{cmd.name}: permission denied (try sudo)", ErrorKind.PERMISSION_DENIED
        )

    context = replace(context, command=cmd)
    started = time.perf_counter()
    try:
        result = spec.handler(cmd.args, cmd.flags, piped_input, context)
    except Exception:
        LOGGER.exception("Unhandled error in %s", cmd.name)
        result = CommandResult.error(f"{cmd.name}: unexpected error")

    metrics = get_metrics_collector()
    metrics.record_command(cmd.name, not result.is_error, time.perf_counter() - started)
    if result.kind is not None:
        metrics.record_denial(result.kind.value)
    return result


def _cap(result: CommandResult, limit: int) -> CommandResult:
    if limit <= 0 or len(result.output) <= limit:
        return result
    kept = result.output[:limit]
    if result.is_html:
        # Markup is only whole per line.
        kept = kept[: kept.rfind("\n") + 1].rstrip("\n")
    result.output = kept + TRUNCATION_NOTICE
    return result


# ---------- Helpers ----------


def _raw_args(context: ExecutionContext) -> List[str]:
    """Arguments exactly as typed, for commands whose options the parser can't know."""
    if context.command is None:
        return []
    return tokenize(context.command.raw)[1:]


def _fs_error(name: str, result: OpResult, verb: Optional[str] = None, target: str = "") -> str:
    if verb and result.kind == ErrorKind.NOT_FOUND:
        return f"{name}: {verb} '{target}': No such file or directory"
    return f"{name}: {result.error}"


def _finish(
    lines: List[str], errors: List[str], kinds: List[ErrorKind], is_html: bool = False
) -> CommandResult:
    """Combine per-operand output and errors into one result."""
    output = "\n".join(lines + errors)
    if errors:
        return CommandResult(output=output, is_error=True, is_html=is_html, kind=kinds[-1])
    return CommandResult(output=output, is_html=is_html)


def _parse_options(
    tokens: Iterable[str], takes_value: str = ""
) -> Tuple[Dict[str, object], List[str]]:
    """Minimal getopt: ``-aG grp`` style bundles, value options listed in ``takes_value``."""
    options: Dict[str, object] = {}
    positionals: List[str] = []
    items = list(tokens)
    i = 0
    while i < len(items):
        token = items[i]
        if token.startswith("-") and len(token) > 1:
            for pos, char in enumerate(token[1:]):
                if char in takes_value:
                    rest = token[pos + 2:]
                    if rest:
                        options[char] = rest
                    elif i + 1 < len(items):
                        i += 1
                        options[char] = items[i]
                    else:
                        raise ValueError(f"option requires an argument -- '{char}'")
                    break
                options[char] = True
        else:
            positionals.append(token)
        i += 1
    return options, positionals


def _read_inputs(
    name: str, paths: Sequence[str], piped_input: Optional[str], context: ExecutionContext
) -> Tuple[List[Tuple[str, str]], List[str], List[ErrorKind]]:
    """Texts to process: each named file, or the piped input."""
    if not paths:
        return [("", piped_input or "")], [], []
    texts: List[Tuple[str, str]] = []
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for path in paths:
        result = context.fs.read_file(path)
        if result.success:
            texts.append((path, result.value))
        else:
            errors.append(f"{name}: {result.error}")
            kinds.append(result.kind)
    return texts, errors, kinds


def _line_count(name: str, args: Sequence[str], flags: Dict[str, FlagValue]) -> Tuple[int, List[str]]:
    """Resolve ``-n N`` / ``-N`` for head and tail."""
    rest = list(args)
    count = "10"
    if flags.get("n") and rest:
        count = rest.pop(0)
    elif rest and rest[0].startswith("-") and rest[0][1:].isdigit():
        count = rest.pop(0)[1:]
    if not count.isdigit():
        raise ValueError(f"{name}: invalid number of lines: '{count}'")
    return int(count), rest


# ---------- Navigation ----------


@command("pwd", "Print the current working directory")
def _handle_pwd(args, flags, piped_input, context):
    return CommandResult(context.fs.cwd)


@command("cd", "Change the current directory")
def _handle_cd(args, flags, piped_input, context):
    if len(args) > 1:
        return CommandResult.error("cd: too many arguments", ErrorKind.INVALID_ARGUMENT)
    result = context.fs.cd(args[0] if args else None)
    if not result.success:
        return CommandResult.error(f"cd: {result.error}", result.kind)
    return CommandResult()


def _ls_name(node: Node, as_html: bool) -> str:
    if not as_html:
        return node.name
    escaped = html.escape(node.name)
    if node.is_dir:
        return f'<span class="ls-dir">{escaped}</span>'
    if "x" in node.permissions:
        return f'<span class="ls-exec">{escaped}</span>'
    return escaped


def _ls_block(entries: List[Node], long_format: bool, as_html: bool) -> List[str]:
    if long_format:
        lines = [f"total {len(entries) * 4}"]
        for node in entries:
            line = node.format_ls_long()
            lines.append(html.escape(line) if as_html else line)
        return lines
    if not entries:
        return []
    return ["  ".join(_ls_name(node, as_html) for node in entries)]


@command("ls", "List directory contents")
def _handle_ls(args, flags, piped_input, context):
    """ls [-a] [-l] [path...]"""
    fs = context.fs
    show_hidden = bool(flags.get("a") or flags.get("all"))
    long_format = bool(flags.get("l"))
    as_html = context.html
    targets = list(args) or ["."]

    blocks: List[str] = []
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for target in targets:
        stat = fs.stat(target)
        if not stat.success:
            message = _fs_error("ls", stat, "cannot access", target)
            errors.append(html.escape(message) if as_html else message)
            kinds.append(stat.kind)
            continue
        node = stat.value
        if not node.is_dir:
            line = node.format_ls_long(target) if long_format else target
            blocks.append(html.escape(line) if as_html else line)
            continue
        listing = fs.list_dir(target, include_hidden=show_hidden)
        if not listing.success:
            message = f"ls: {listing.error}"
            errors.append(html.escape(message) if as_html else message)
            kinds.append(listing.kind)
            continue
        lines = _ls_block(listing.value, long_format, as_html)
        if len(targets) > 1:
            header = (html.escape(target) if as_html else target) + ":"
            lines = [header] + lines
        blocks.append("\n".join(lines))

    separator = "\n\n" if len(targets) > 1 else "\n"
    output = separator.join(block for block in blocks if block)
    if errors:
        output = "\n".join(filter(None, errors + [output]))
        return CommandResult(output, is_error=True, is_html=as_html, kind=kinds[-1])
    return CommandResult(output, is_html=as_html)


# ---------- File content ----------


@command("cat", "Concatenate and print files")
def _handle_cat(args, flags, piped_input, context):
    if not args:
        if piped_input is not None:
            return CommandResult(piped_input)
        return CommandResult.error("cat: missing file operand", ErrorKind.INVALID_ARGUMENT)
    parts: List[str] = []
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for path in args:
        result = context.fs.read_file(path)
        if result.success:
            parts.append(result.value.rstrip("\n"))
        else:
            errors.append(f"cat: {result.error}")
            kinds.append(result.kind)
    return _finish(parts, errors, kinds)


@command("less", "View file contents one screen at a time")
def _handle_less(args, flags, piped_input, context):
    if not args:
        if piped_input is not None:
            return CommandResult(piped_input)
        return CommandResult.error(
            'Missing filename ("less --help" for help)', ErrorKind.INVALID_ARGUMENT
        )
    result = context.fs.read_file(args[0])
    if not result.success:
        return CommandResult.error(f"less: {result.error}", result.kind)
    return CommandResult(result.value.rstrip("\n"))


@command("nano", "Edit files in a simplified mode")
def _handle_nano(args, flags, piped_input, context):
    """Validate the target and hand an ``EditorRequest`` to the terminal."""
    if not args:
        return CommandResult.error("nano: missing file operand", ErrorKind.INVALID_ARGUMENT)
    fs = context.fs
    path = args[0]
    target = fs.resolve_path(path)
    stat = fs.stat(path)
    if stat.success:
        if stat.value.is_dir:
            return CommandResult.error(f"nano: {path}: Is a directory", ErrorKind.IS_A_DIRECTORY)
        read = fs.read_file(path)
        if not read.success:
            return CommandResult.error(f"nano: {read.error}", read.kind)
        return CommandResult(editor=EditorRequest(target, read.value))
    if stat.kind != ErrorKind.NOT_FOUND:
        return CommandResult.error(f"nano: {stat.error}", stat.kind)

    parent = fs.stat(parent_of(target))
    if not parent.success or not parent.value.is_dir:
        return CommandResult.error(f"nano: {path}: No such file or directory", ErrorKind.NOT_FOUND)
    return CommandResult(editor=EditorRequest(target, new_file=True))


@command("echo", "Display a line of text")
def _handle_echo(args, flags, piped_input, context):
    words = _raw_args(context) if context.command is not None else list(args)
    if words and words[0] == "-n":
        words = words[1:]
    return CommandResult(" ".join(words))


@command("head", "Output the first part of files")
def _handle_head(args, flags, piped_input, context):
    return _head_tail("head", args, flags, piped_input, context)


@command("tail", "Output the last part of files")
def _handle_tail(args, flags, piped_input, context):
    return _head_tail("tail", args, flags, piped_input, context)


def _head_tail(name, args, flags, piped_input, context):
    try:
        count, paths = _line_count(name, args, flags)
    except ValueError as exc:
        return CommandResult.error(str(exc), ErrorKind.INVALID_ARGUMENT)
    texts, errors, kinds = _read_inputs(name, paths, piped_input, context)
    out: List[str] = []
    for path, text in texts:
        lines = text.splitlines()
        chunk = lines[:count] if name == "head" else (lines[-count:] if count else [])
        if len(texts) > 1:
            out.append(f"==> {path} <==")
        out.extend(chunk)
    return _finish(out, errors, kinds)


@command("wc", "Count lines, words and characters")
def _handle_wc(args, flags, piped_input, context):
    texts, errors, kinds = _read_inputs("wc", list(args), piped_input, context)
    out: List[str] = []
    for path, text in texts:
        lines = len(text.splitlines())
        if flags.get("l"):
            counts = str(lines)
        else:
            counts = f"{lines} {len(text.split())} {len(text)}"
        out.append(f"{counts} {path}" if path else counts)
    return _finish(out, errors, kinds)


@command("sort", "Sort lines of text")
def _handle_sort(args, flags, piped_input, context):
    texts, errors, kinds = _read_inputs("sort", list(args), piped_input, context)
    lines: List[str] = []
    for _, text in texts:
        lines.extend(text.splitlines())
    lines.sort(reverse=bool(flags.get("r")))
    return _finish(lines, errors, kinds)


# ---------- Tree mutation ----------


@command("touch", "Create empty files or update timestamps")
def _handle_touch(args, flags, piped_input, context):
    if not args:
        return CommandResult.error("touch: missing file operand", ErrorKind.INVALID_ARGUMENT)
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for path in args:
        result = context.fs.create_file(path)
        if not result.success:
            errors.append(_fs_error("touch", result, "cannot touch", path))
            kinds.append(result.kind)
    return _finish([], errors, kinds)


@command("mkdir", "Create directories")
def _handle_mkdir(args, flags, piped_input, context):
    if not args:
        return CommandResult.error("mkdir: missing operand", ErrorKind.INVALID_ARGUMENT)
    parents = bool(flags.get("p") or flags.get("parents"))
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for path in args:
        result = context.fs.create_dir(path, parents=parents)
        if not result.success:
            errors.append(f"mkdir: {result.error}")
            kinds.append(result.kind)
    return _finish([], errors, kinds)


@command("rm", "Remove files or directories")
def _handle_rm(args, flags, piped_input, context):
    force = bool(flags.get("f") or flags.get("force"))
    if not args:
        if force:
            return CommandResult()
        return CommandResult.error("rm: missing operand", ErrorKind.INVALID_ARGUMENT)
    recursive = any(flags.get(f) for f in ("r", "R", "recursive"))
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for path in args:
        result = context.fs.remove(path, recursive=recursive)
        if result.success or (force and result.kind == ErrorKind.NOT_FOUND):
            continue
        errors.append(_fs_error("rm", result, "cannot remove", path))
        kinds.append(result.kind)
    return _finish([], errors, kinds)


@command("rmdir", "Remove empty directories")
def _handle_rmdir(args, flags, piped_input, context):
    if not args:
        return CommandResult.error("rmdir: missing operand", ErrorKind.INVALID_ARGUMENT)
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for path in args:
        result = context.fs.remove_dir(path)
        if not result.success:
            errors.append(_fs_error("rmdir", result, "failed to remove", path))
            kinds.append(result.kind)
    return _finish([], errors, kinds)


def _transfer(name: str, args, context: ExecutionContext, operation) -> CommandResult:
    """Shared operand handling for mv and cp (many sources into one directory)."""
    if len(args) < 2:
        if not args:
            return CommandResult.error(f"{name}: missing file operand", ErrorKind.INVALID_ARGUMENT)
        return CommandResult.error(
            f"{name}: missing destination file operand after '{args[0]}'",
            ErrorKind.INVALID_ARGUMENT,
        )
    *sources, dest = args
    if len(sources) > 1:
        target = context.fs.stat(dest)
        if not target.success or not target.value.is_dir:
            return CommandResult.error(
                f"{name}: target '{dest}' is not a directory", ErrorKind.NOT_A_DIRECTORY
            )
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for source in sources:
        result = operation(source, dest)
        if not result.success:
            verb = "cannot stat"
            errors.append(_fs_error(name, result, verb, source))
            kinds.append(result.kind)
    return _finish([], errors, kinds)


@command("mv", "Move or rename files")
def _handle_mv(args, flags, piped_input, context):
    return _transfer("mv", args, context, context.fs.move)


@command("cp", "Copy files and directories")
def _handle_cp(args, flags, piped_input, context):
    recursive = any(flags.get(f) for f in ("r", "R", "recursive"))
    return _transfer(
        "cp", args, context, lambda src, dst: context.fs.copy(src, dst, recursive=recursive)
    )


# ---------- Attributes ----------


@command("stat", "Display file status")
def _handle_stat(args, flags, piped_input, context):
    if not args:
        return CommandResult.error("stat: missing operand", ErrorKind.INVALID_ARGUMENT)
    blocks: List[str] = []
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for path in args:
        result = context.fs.stat(path)
        if not result.success:
            errors.append(_fs_error("stat", result, "cannot stat", path))
            kinds.append(result.kind)
            continue
        node = result.value
        modified = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(node.modified_at))
        octal = permissions_to_octal(node.permissions)
        blocks.append(
            "\n".join(
                [
                    f"  File: {path}",
                    f"  Size: {node.size:<10} {'directory' if node.is_dir else 'regular file'}",
                    f"Access: (0{octal}/{node.mode_string()})  Uid: {node.owner}  Gid: {node.group}",
                    f"Modify: {modified}",
                ]
            )
        )
    return _finish(blocks, errors, kinds)


@command("chmod", "Change file permissions")
def _handle_chmod(args, flags, piped_input, context):
    """chmod MODE FILE...; the mode is read raw so ``-w`` stays a mode."""
    words = _raw_args(context) if context.command is not None else list(args)
    if len(words) < 2:
        return CommandResult.error("chmod: missing operand", ErrorKind.INVALID_ARGUMENT)
    mode, paths = words[0], words[1:]
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for path in paths:
        result = context.fs.chmod(path, mode)
        if not result.success:
            errors.append(_fs_error("chmod", result, "cannot access", path))
            kinds.append(result.kind)
            if result.kind == ErrorKind.INVALID_MODE:
                break
    return _finish([], errors, kinds)


@command("chown", "Change file owner and group")
def _handle_chown(args, flags, piped_input, context):
    if len(args) < 2:
        return CommandResult.error("chown: missing operand", ErrorKind.INVALID_ARGUMENT)
    recursive = bool(flags.get("R") or flags.get("recursive"))
    spec, paths = args[0], args[1:]
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for path in paths:
        result = context.fs.chown(path, spec, recursive=recursive)
        if not result.success:
            errors.append(_fs_error("chown", result, "cannot access", path))
            kinds.append(result.kind)
    return _finish([], errors, kinds)


# ---------- Search ----------


@command("find", "Search for files in a directory hierarchy")
def _handle_find(args, flags, piped_input, context):
    """Predicates like ``-size`` are not parser flags, so read the raw words."""
    words = _raw_args(context) if context.command is not None else list(args)
    try:
        paths, filters = FindFilters.from_args(words)
    except ValueError as exc:
        return CommandResult.error(f"find: {exc}", ErrorKind.INVALID_ARGUMENT)
    found: List[str] = []
    errors: List[str] = []
    kinds: List[ErrorKind] = []
    for start in paths or ["."]:
        stat = context.fs.stat(start)
        if not stat.success:
            errors.append(_fs_error("find", stat, "cannot access", start))
            kinds.append(stat.kind)
            continue
        found.extend(find(context.fs, start, filters))
    return _finish(found, errors, kinds)


@command("grep", "Search for patterns in files")
def _handle_grep(args, flags, piped_input, context):
    """grep [-r] [-i] [-n] [-v] PATTERN [FILE...]"""
    if not args:
        return CommandResult.error("usage: grep [-rinv] PATTERN [FILE...]", ErrorKind.INVALID_ARGUMENT)
    pattern, paths = args[0], list(args[1:])
    recursive = any(flags.get(f) for f in ("r", "R", "recursive"))
    ignore_case = bool(flags.get("i") or flags.get("ignore-case"))
    invert = bool(flags.get("v") or flags.get("invert-match"))
    line_numbers = bool(flags.get("n") or flags.get("line-number"))

    if paths:
        report = grep(context.fs, pattern, paths, recursive, ignore_case, invert)
    elif piped_input is not None:
        report = grep_text(piped_input, pattern, ignore_case, invert)
    elif recursive:
        report = grep(context.fs, pattern, ["."], recursive, ignore_case, invert)
    else:
        return CommandResult.error("grep: missing file operand", ErrorKind.INVALID_ARGUMENT)

    if report.fatal:
        return CommandResult.error(report.errors[0], ErrorKind.INVALID_REGEX)

    as_html = context.html
    if as_html:
        output = report.render_html(compile_pattern(pattern, ignore_case), line_numbers)
        errors = [html.escape(e) for e in report.errors]
    else:
        output = report.render(line_numbers)
        errors = list(report.errors)
    if errors and not report.matches:
        return CommandResult("\n".join(errors), is_error=True, is_html=as_html, kind=report.error_kind)
    return CommandResult("\n".join(filter(None, [output] + errors)), is_html=as_html)


# ---------- Identity ----------


@command("whoami", "Print the current user name")
def _handle_whoami(args, flags, piped_input, context):
    return CommandResult(context.fs.username)


def _group_list(fs: FileSystem, username: str) -> List[str]:
    user = fs.get_user(username)
    return [user.primary_group] + sorted(user.supplemental_groups - {user.primary_group})


@command("id", "Print user and group identity")
def _handle_id(args, flags, piped_input, context):
    fs = context.fs
    username = args[0] if args else fs.username
    user = fs.get_user(username)
    if user is None:
        return CommandResult.error(f"id: '{username}': no such user", ErrorKind.NOT_FOUND)
    groups = ",".join(_group_list(fs, username))
    return CommandResult(f"uid={username} gid={user.primary_group} groups={groups}")


@command("groups", "Print the groups a user is in")
def _handle_groups(args, flags, piped_input, context):
    fs = context.fs
    username = args[0] if args else fs.username
    if fs.get_user(username) is None:
        return CommandResult.error(f"groups: '{username}': no such user", ErrorKind.NOT_FOUND)
    groups = " ".join(_group_list(fs, username))
    return CommandResult(f"{username} : {groups}" if args else groups)


@command("sudo", "Execute a command as the administrator")
def _handle_sudo(args, flags, piped_input, context):
    if context.command is None or not args:
        return CommandResult.error("usage: sudo command", ErrorKind.INVALID_ARGUMENT)
    inner = parse_single(strip_first_word(context.command.raw))
    if isinstance(inner, EmptyCommand):
        return CommandResult.error("usage: sudo command", ErrorKind.INVALID_ARGUMENT)

    metrics = get_metrics_collector()
    extra = context.config.security.sudo_denylist_extra
    if is_blocked_command(inner.name, list(inner.args), inner.flags, extra):
        LOGGER.warning("Blocked elevated command from %s: %s", context.fs.username, inner.raw)
        metrics.record_elevation(blocked=True)
        return CommandResult.error(
            f"sudo: {inner.name}: command blocked for safety", ErrorKind.BLOCKED
        )

    metrics.record_elevation(blocked=False)
    with context.fs.elevate():
        return run_stage(inner, piped_input, replace(context, command=inner))


@command("su", "Switch user")
def _handle_su(args, flags, piped_input, context):
    target = args[0] if args else "root"
    result = context.fs.switch_user(target)
    if not result.success:
        return CommandResult.error(f"su: {result.error}", result.kind)
    context.fs.cwd = context.fs.home if context.fs.get_node(context.fs.home) else "/"
    return CommandResult()


@command("groupadd", "Create a new group", admin_only=True)
def _handle_groupadd(args, flags, piped_input, context):
    if len(args) != 1:
        return CommandResult.error("usage: groupadd GROUP", ErrorKind.INVALID_ARGUMENT)
    result = context.fs.add_group(args[0])
    if not result.success:
        return CommandResult.error(f"groupadd: {result.error}", result.kind)
    return CommandResult()


@command("useradd", "Create a new user account", admin_only=True)
def _handle_useradd(args, flags, piped_input, context):
    """useradd [-m] [-g GROUP] [-G G1,G2] NAME"""
    try:
        options, positionals = _parse_options(_raw_args(context), takes_value="gG")
    except ValueError as exc:
        return CommandResult.error(f"useradd: {exc}", ErrorKind.INVALID_ARGUMENT)
    if len(positionals) != 1:
        return CommandResult.error("usage: useradd [-g GROUP] [-G GROUPS] NAME", ErrorKind.INVALID_ARGUMENT)
    groups = [g for g in str(options.get("G", "")).split(",") if g]
    primary = options.get("g")
    result = context.fs.add_user(positionals[0], groups, primary_group=primary)
    if not result.success:
        return CommandResult.error(f"useradd: {result.error}", result.kind)
    return CommandResult()


@command("usermod", "Modify a user account", admin_only=True)
def _handle_usermod(args, flags, piped_input, context):
    """usermod [-a] -G G1,G2 NAME"""
    try:
        options, positionals = _parse_options(_raw_args(context), takes_value="G")
    except ValueError as exc:
        return CommandResult.error(f"usermod: {exc}", ErrorKind.INVALID_ARGUMENT)
    if "G" not in options or len(positionals) != 1:
        return CommandResult.error("usage: usermod [-a] -G GROUPS NAME", ErrorKind.INVALID_ARGUMENT)
    groups = [g for g in str(options["G"]).split(",") if g]
    result = context.fs.modify_user_groups(positionals[0], groups, append=bool(options.get("a")))
    if not result.success:
        return CommandResult.error(f"usermod: {result.error}", result.kind)
    return CommandResult()


@command("userdel", "Delete a user account", admin_only=True)
def _handle_userdel(args, flags, piped_input, context):
    if len(args) != 1:
        return CommandResult.error("usage: userdel [-r] NAME", ErrorKind.INVALID_ARGUMENT)
    remove_home = bool(flags.get("r") or flags.get("remove"))
    result = context.fs.delete_user(args[0], remove_home=remove_home)
    if not result.success:
        return CommandResult.error(f"userdel: {result.error}", result.kind)
    return CommandResult()


# ---------- Manual ----------

MANUAL_PAGES: Dict[str, str] = {
    "man": """NAME
    man - an interface to the system reference manuals

SYNOPSIS
    man COMMAND

DESCRIPTION
    Shows the manual page of COMMAND. Try 'whatis' for a one-line summary
    or 'apropos' to search by keyword.""",
    "whatis": """NAME
    whatis - display one-line manual page descriptions

SYNOPSIS
    whatis COMMAND...

DESCRIPTION
    Prints the short description of each COMMAND, or
    'COMMAND: nothing appropriate.' when there is none.""",
    "apropos": """NAME
    apropos - search command descriptions by keyword

SYNOPSIS
    apropos KEYWORD

DESCRIPTION
    Lists every command whose name or description contains KEYWORD,
    ignoring case. Example: apropos permission""",
    "less": """NAME
    less - view file contents

SYNOPSIS
    less FILE
    COMMAND | less

DESCRIPTION
    Displays FILE, or the output of the previous command in a pipeline.""",
    "nano": """NAME
    nano - edit files in a simplified mode

SYNOPSIS
    nano FILE

DESCRIPTION
    Opens FILE in a line editor. Every line you type is added to the end
    of the buffer. A FILE that does not exist yet is created on save.

COMMANDS
    /save    write the buffer to FILE
    /show    print the buffer
    /exit    leave the editor; unsaved lines are lost""",
}


@command("man", "Display the manual page of a command")
def _handle_man(args, flags, piped_input, context):
    if not args:
        return CommandResult.error("What manual page do you want?", ErrorKind.INVALID_ARGUMENT)
    name = args[0]
    page = MANUAL_PAGES.get(name)
    if page is None:
        description = context.registry.description(name)
        if description is None:
            return CommandResult.error(f"No manual entry for {name}", ErrorKind.NOT_FOUND)
        page = f"NAME\n    {name} - {description}"
    return CommandResult(page)


@command("whatis", "Display one-line command descriptions")
def _handle_whatis(args, flags, piped_input, context):
    if not args:
        return CommandResult.error("whatis what?", ErrorKind.INVALID_ARGUMENT)
    lines: List[str] = []
    errors: List[str] = []
    for name in args:
        description = context.registry.description(name)
        if description is None:
            errors.append(f"{name}: nothing appropriate.")
        else:
            lines.append(f"{name} - {description}")
    return _finish(lines, errors, [ErrorKind.NOT_FOUND] * len(errors))


@command("apropos", "Search command descriptions by keyword")
def _handle_apropos(args, flags, piped_input, context):
    if not args:
        return CommandResult.error("apropos what?", ErrorKind.INVALID_ARGUMENT)
    keyword = args[0].lower()
    registry = context.registry
    lines = [
        f"{name} - {registry.description(name)}"
        for name in registry.names()
        if keyword in name.lower() or keyword in (registry.description(name) or "").lower()
    ]
    if not lines:
        return CommandResult.error(f"{args[0]}: nothing appropriate.", ErrorKind.NOT_FOUND)
    return CommandResult("\n".join(lines))
