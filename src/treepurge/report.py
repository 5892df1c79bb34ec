"""Failure reporting for tree deletion."""

from dataclasses import dataclass
from typing import Optional, Tuple

MAX_REPORTED_PATHS = 16

HELP_FAILED_DELETE_CHILDREN = (
    "Failed to delete some children. This might happen because a process has files open "
    "or has its working directory set in the target directory."
)
HELP_NEW_CHILDREN = "New files were found. This might happen because a process is still writing to the target directory."
HELP_INTERRUPTED = "Deletion retries were interrupted by cancellation."
AND_MORE = "and more ..."


@dataclass(frozen=True)
class DeletionReport:
    """
    Outcome of a tree deletion that did not fully succeed.

    Attributes:
        root: Root path as passed by the caller
        root_is_symlink: Whether the root is a symlink
        root_is_directory: Whether the root is (or points to) a directory
        descended: Whether the root was eligible to be walked into
        failed_paths: Absolute paths that could not be deleted, in order of failure
        more_failures: Traversal stopped early because the failure cap was reached
        new_paths: Absolute paths modified after the deletion started
        interrupted: A retry pause was cancelled during the walk
        max_reported_paths: Cap applied to both path lists
    """

    root: str
    root_is_symlink: bool
    root_is_directory: bool
    descended: bool
    failed_paths: Tuple[str, ...] = ()
    more_failures: bool = False
    new_paths: Tuple[str, ...] = ()
    interrupted: bool = False
    max_reported_paths: int = MAX_REPORTED_PATHS

    @property
    def new_paths_truncated(self) -> bool:
        return len(self.new_paths) >= self.max_reported_paths

    def render(self) -> str:
        """Build the human readable message shown to operators."""
        lines = []
        subject = "Unable to delete "
        if self.root_is_symlink:
            subject += "symlink to "
        subject += "directory " if self.root_is_directory else "file "
        lines.append(f"{subject}'{self.root}'")

        if self.descended:
            if self.failed_paths:
                lines.append(f"  {HELP_FAILED_DELETE_CHILDREN}")
                lines.extend(f"  - {path}" for path in self.failed_paths)
                if self.more_failures:
                    lines.append(f"  - {AND_MORE}")
            if self.new_paths:
                lines.append(f"  {HELP_NEW_CHILDREN}")
                lines.extend(f"  - {path}" for path in self.new_paths)
                if self.new_paths_truncated:
                    lines.append(f"  - {AND_MORE}")

        if self.interrupted:
            lines.append(f"  {HELP_INTERRUPTED}")

        return "\n".join(lines)


class IOFailure(OSError):
    """
    Deletion failed after the retry was exhausted.

    Raised with ``path`` set by single-node deletes and with ``report`` set
    by tree deletes.
    """

    def __init__(self, message: str, path: Optional[str] = None, report: Optional[DeletionReport] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.report = report

    def __str__(self) -> str:
        return self.message
