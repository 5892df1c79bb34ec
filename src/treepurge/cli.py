"""Command-line interface for treepurge."""

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .deleter import TreeDeleter
from .logging import LOG_LEVELS, log_with_context
from .report import IOFailure

# Virtual filesystems and OS directories that must never be wiped
PROTECTED_PATHS = {
    "/",
    "/proc",
    "/sys",
    "/dev",
    "/run",
    "/var/run",
    "/boot",
    "/bin",
    "/sbin",
    "/lib",
    "/lib64",
    "/usr/bin",
    "/usr/sbin",
    "/usr/lib",
    "/etc",
}


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


def check_target(path: str) -> Path:
    """
    Resolve a CLI target and refuse protected system directories.

    Both the path as given and its symlink-resolved location are checked,
    since following a root symlink deletes the contents of its target.

    Raises:
        ValueError: If the path is or lies inside a protected directory
    """
    target = Path(path)
    if not target.is_absolute():
        target = Path.cwd() / target
    target_str = os.path.normpath(str(target))

    for candidate in (target_str, os.path.realpath(target_str)):
        for protected in PROTECTED_PATHS:
            if candidate == protected or (protected != "/" and candidate.startswith(protected + "/")):
                raise ValueError(
                    f"Refusing to delete protected system path: {target_str} "
                    f"(resolves inside '{protected}')"
                )
    return target


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="treepurge - Recursively delete a directory tree, retrying flaky deletes",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "path",
        help="File or directory to delete",
    )

    parser.add_argument(
        "--follow-symlinks",
        action="store_true",
        default=_env_flag("TREEPURGE_FOLLOW_SYMLINKS"),
        help="Delete the contents of symlinked directories instead of only the links",
    )

    parser.add_argument(
        "--gc-on-failed-delete",
        action="store_true",
        default=_env_flag("TREEPURGE_GC_ON_FAILED_DELETE"),
        help="Run the garbage collector before retrying a failed delete",
    )

    parser.add_argument(
        "--ensure-empty",
        action="store_true",
        default=_env_flag("TREEPURGE_ENSURE_EMPTY"),
        help="Keep the target as an empty directory instead of removing it",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("TREEPURGE_LOG_LEVEL", "INFO").upper(),
        choices=list(LOG_LEVELS),
        help="Logging level",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"treepurge {__version__}",
    )

    return parser.parse_args(argv)


async def async_main(
    path: str,
    follow_symlinks: bool = False,
    gc_on_failed_delete: bool = False,
    ensure_empty: bool = False,
    log_level: str = "INFO",
) -> bool:
    """
    Async entry point.

    Returns:
        Whether anything was deleted
    """
    target = check_target(path)
    deleter = TreeDeleter(run_gc_on_failed_delete=gc_on_failed_delete, log_level=log_level)

    log_with_context(
        deleter.logger,
        "info",
        "Starting deletion",
        {
            "version": __version__,
            "path": str(target),
            "follow_symlinks": follow_symlinks,
            "gc_on_failed_delete": gc_on_failed_delete,
            "ensure_empty": ensure_empty,
        },
    )

    if ensure_empty:
        deleted = await deleter.ensure_empty_directory(target, follow_symlinks)
    else:
        deleted = await deleter.delete_tree(target, follow_symlinks)

    if not deleted:
        log_with_context(deleter.logger, "info", "Nothing to delete", {"path": str(target)})
    return deleted


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        asyncio.run(
            async_main(
                path=args.path,
                follow_symlinks=args.follow_symlinks,
                gc_on_failed_delete=args.gc_on_failed_delete,
                ensure_empty=args.ensure_empty,
                log_level=args.log_level,
            )
        )
        sys.exit(0)

    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        sys.exit(130)
    except IOFailure as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
