#!/usr/bin/env python
"""ShellQuest CLI entry point.

Run the game with: python -m shellquest
Or after installation: shellquest

Usage:
    shellquest [OPTIONS]                   Start an interactive session
    shellquest -c "ls -la"                 Run one command line and exit

Options:
    --user USER         Start the session as USER (default: user)
    --load              Restore the filesystem from the save file
    --save              Save the filesystem to the save file on exit
    --save-path PATH    Save file location (default: data/save.json)
    --metrics-port PORT Expose Prometheus metrics on PORT
    --log-level LEVEL   Logging level (default: WARNING)
    --version           Show version and exit
    --help              Show this message and exit
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from colorama import Fore, Style, init as colorama_init

from .autocomplete import Autocomplete
from .command_handler import CommandResult, EditorRequest, get_registry, handle_command
from .config import Config, get_config
from .filesystem import FileSystem
from .metrics import start_metrics_server
from .storage import SaveStore, load_session, save_session

__version__ = "0.1.0"

colorama_init(autoreset=True)


def setup_logging(level: str, log_file: Optional[Path] = None) -> None:
    """Configure logging for the application."""
    numeric_level = getattr(logging, level.upper(), logging.WARNING)
    handlers: list = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=numeric_level,
        format=get_config().logging.format,
        handlers=handlers,
    )


def print_banner() -> None:
    """Print the ShellQuest startup banner."""
    banner = r"""
     ____  _          _ _  ___                  _
    / ___|| |__   ___| | |/ _ \ _   _  ___  ___| |_
    \___ \| '_ \ / _ \ | | | | | | | |/ _ \/ __| __|
     ___) | | | |  __/ | | |_| | |_| |  __/\__ \ |_
    |____/|_| |_|\___|_|_|\__\_\\__,_|\___||___/\__|
    Linux terminal training game v{}
    """.format(__version__)
    print(banner)
    print("Type 'whatis <command>' or 'apropos <keyword>' for help, 'exit' to quit.\n")


def format_prompt(fs: FileSystem, hostname: str) -> str:
    """Colored ``user@host:cwd$`` prompt (``~`` for the home directory)."""
    cwd = fs.cwd
    home = fs.home
    if cwd == home:
        cwd = "~"
    elif cwd.startswith(home + "/"):
        cwd = "~" + cwd[len(home):]
    sigil = "#" if fs.subject.is_admin else "$"
    return (
        Fore.GREEN + f"{fs.username}@{hostname}" + Style.RESET_ALL
        + ":" + Fore.BLUE + cwd + Style.RESET_ALL + f"{sigil} "
    )


def print_result(result: CommandResult) -> None:
    if not result.output:
        return
    if result.is_error:
        print(Fore.RED + result.output + Style.RESET_ALL)
    else:
        print(result.output)


def run_editor(fs: FileSystem, request: EditorRequest) -> None:
    """Line editor behind ``nano``: typed lines are appended to the buffer."""
    lines = request.content.splitlines()
    status = "[ New File ]" if request.new_file else f"[ Read {len(lines)} lines ]"
    print(Fore.CYAN + f"  nano  {request.path}  {status}" + Style.RESET_ALL)
    print(Fore.CYAN + "  /save to write, /show to print, /exit to quit" + Style.RESET_ALL)
    while True:
        try:
            line = input()
        except EOFError:
            return
        if line == "/exit":
            return
        if line == "/show":
            print("\n".join(lines))
        elif line == "/save":
            content = "\n".join(lines) + "\n" if lines else ""
            result = fs.write_file(request.path, content)
            if result.success:
                print(Fore.GREEN + f"[ Wrote {len(lines)} lines ]" + Style.RESET_ALL)
            else:
                print(Fore.RED + f"nano: {result.error}" + Style.RESET_ALL)
        else:
            lines.append(line)


def install_completion(fs: FileSystem) -> None:
    """Hook ``Autocomplete`` into readline when the platform has it."""
    try:
        import readline
    except ImportError:
        logging.debug("readline not available, tab completion disabled")
        return

    completer = Autocomplete(fs, get_registry())

    def complete(text: str, state: int) -> Optional[str]:
        line = readline.get_line_buffer()[: readline.get_endidx()]
        completion = completer.complete(line)
        candidates = [completion.completed] if completion.completed else []
        if not candidates:
            base = text[: text.rfind("/") + 1] if "/" in text else ""
            candidates = [base + option for option in completion.options]
        return candidates[state] if state < len(candidates) else None

    readline.set_completer_delims(" \t\n")
    readline.set_completer(complete)
    readline.parse_and_bind("tab: complete")


def run_interactive(fs: FileSystem, config: Config) -> None:
    """Read-eval-print loop; returns on ``exit`` or EOF."""
    install_completion(fs)
    hostname = config.session.hostname
    while True:
        try:
            line = input(format_prompt(fs, hostname))
        except EOFError:
            print()
            return
        except KeyboardInterrupt:
            print("^C")
            continue
        result = handle_command(line, fs, config=config)
        if result.exit:
            return
        print_result(result)
        if result.editor is not None:
            run_editor(fs, result.editor)


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="shellquest",
        description="ShellQuest - Linux terminal training game",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    shellquest                         Start a new game as 'user'
    shellquest --load --save           Continue a saved game and save on exit
    shellquest -c "ls -la ~"           Run a single command line

Environment variables:
    SHELLQUEST_USER          Starting user
    SHELLQUEST_SAVE_PATH     Save file location
    SHELLQUEST_LOG_LEVEL     Logging level
    SHELLQUEST_METRICS_PORT  Metrics port
        """,
    )
    parser.add_argument("--user", "-u", default=None, help="Starting user (default: user)")
    parser.add_argument(
        "--command",
        "-c",
        default=None,
        help="Run one command line and exit",
    )
    parser.add_argument("--load", action="store_true", help="Restore the saved game first")
    parser.add_argument("--save", action="store_true", help="Save the game on exit")
    parser.add_argument(
        "--save-path",
        type=Path,
        default=None,
        help="Save file (default: data/save.json, or SHELLQUEST_SAVE_PATH)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Expose Prometheus metrics on this port",
    )
    parser.add_argument(
        "--log-level",
        "-l",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: WARNING, or SHELLQUEST_LOG_LEVEL)",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"ShellQuest {__version__}",
    )
    args = parser.parse_args()

    config = get_config()
    setup_logging(args.log_level or config.logging.level, config.logging.file)

    metrics_port = args.metrics_port or (config.metrics.port if config.metrics.enabled else None)
    if metrics_port:
        start_metrics_server(metrics_port, config.metrics.host)

    try:
        fs = FileSystem(username=args.user or config.session.default_user)
    except ValueError as e:
        print(Fore.RED + f"shellquest: {e}" + Style.RESET_ALL, file=sys.stderr)
        return 2

    store = SaveStore(args.save_path or config.storage.save_path)
    if args.load:
        restored = load_session(store, fs)
        if restored is not None and not restored.success:
            print(Fore.YELLOW + f"[!] {restored.error}" + Style.RESET_ALL)

    if args.command is not None:
        result = handle_command(args.command, fs, config=config)
        print_result(result)
        status = 1 if result.is_error else 0
    else:
        print_banner()
        run_interactive(fs, config)
        status = 0

    if args.save:
        if save_session(store, fs):
            logging.info("Game saved to %s", store.path)
        else:
            print(Fore.YELLOW + "[!] Failed to save the game" + Style.RESET_ALL)
    return status


if __name__ == "__main__":
    sys.exit(main())
