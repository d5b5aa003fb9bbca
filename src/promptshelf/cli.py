"""promptshelf CLI - browse and download Copilot customization files.

Usage:
    promptshelf sources [list|add|remove|reset] [owner/repo]
    promptshelf list <category> [--source owner/repo]
    promptshelf preview <category> <name>
    promptshelf download <category> <name> [--force]
    promptshelf collections
    promptshelf install <collection> [--yes] [--force]
    promptshelf updates

Categories: collections, instructions, prompts, agents, skills.
"""

from __future__ import annotations

import argparse

from . import __version__
from .commands import add_commands, run_command
from .config import Settings
from .log import configure_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="promptshelf",
        description="Browse GitHub repositories of Copilot instructions, prompts, agents and skills",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--root", help="Download root (default: .github, or PROMPTSHELF_ROOT)")
    parser.add_argument("--log-level", help="Log level for diagnostics on stderr")

    sub = parser.add_subparsers(dest="subcmd")
    add_commands(sub)

    args = parser.parse_args()

    settings = Settings.load()
    configure_logging(args.log_level or settings.log_level)

    result = run_command(args)
    if result == -1:
        parser.print_help()
        raise SystemExit(0)
    raise SystemExit(result)


if __name__ == "__main__":
    main()
