"""Recursive tree deletion for filesystems where removal can transiently fail."""

import asyncio
import gc
import os
import stat
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

import aiofiles.os

from .bounded import BoundedPathSet
from .logging import log_with_context, setup_logging
from .report import MAX_REPORTED_PATHS, DeletionReport, IOFailure

DELETE_RETRY_SLEEP_SECONDS = 0.01

PathLike = Union[str, os.PathLike]


async def async_scandir(path: Path) -> List[Path]:
    """Async wrapper for os.scandir, returning child paths in name order."""
    loop = asyncio.get_running_loop()

    def _scandir():
        with os.scandir(path) as entries:
            return sorted(entry.path for entry in entries)

    return [Path(child) for child in await loop.run_in_executor(None, _scandir)]


async def async_lstat(path: Path) -> Optional[os.stat_result]:
    """lstat a path, returning None if it does not exist."""
    try:
        return await aiofiles.os.stat(path, follow_symlinks=False)
    except (FileNotFoundError, NotADirectoryError):
        return None


class _DeletionRun:
    """State owned by a single tree deletion call."""

    def __init__(self, root: Path, start_time: float, follow_symlinks: bool, max_reported_paths: int):
        self.root = root
        self.start_time = start_time
        self.follow_symlinks = follow_symlinks
        self.failed = BoundedPathSet(max_reported_paths)
        self.interrupted = False
        self.stats = {
            "nodes_deleted": 0,
            "retries": 0,
            "failures": 0,
        }


class TreeDeleter:
    """
    Deletes files and directory trees, retrying once on failure.

    Built for platforms where a delete can fail for a short while after a
    handle is closed (antivirus scanners, lazy handle release). Failures are
    collected up to ``max_reported_paths`` and reported in a single
    ``IOFailure`` that also lists files written while the deletion ran.
    """

    def __init__(
        self,
        now: Callable[[], float] = time.time,
        is_symlink: Callable[[Path], bool] = os.path.islink,
        run_gc_on_failed_delete: bool = False,
        log_level: str = "INFO",
        max_reported_paths: int = MAX_REPORTED_PATHS,
    ):
        """
        Initialize the deleter.

        Args:
            now: Clock in epoch seconds, compared against file modification times
            is_symlink: Predicate telling whether a path is a symlink
            run_gc_on_failed_delete: Run gc.collect() before retrying a failed delete
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            max_reported_paths: Cap on failed and new paths collected per call

        Raises:
            ValueError: If invalid parameters are provided
        """
        if not callable(now):
            raise ValueError(f"now must be callable, got {now!r}")
        if not callable(is_symlink):
            raise ValueError(f"is_symlink must be callable, got {is_symlink!r}")
        if max_reported_paths < 1:
            raise ValueError(f"max_reported_paths must be >= 1, got {max_reported_paths}")

        self.now = now
        self.is_symlink = is_symlink
        self.run_gc_on_failed_delete = run_gc_on_failed_delete
        self.max_reported_paths = max_reported_paths

        self.logger = setup_logging("treepurge", log_level)

    async def delete_tree(self, root: PathLike, follow_symlinks: bool = False) -> bool:
        """
        Delete ``root`` and everything below it.

        Symlinked directories are removed as links unless ``follow_symlinks``
        is set, in which case their contents are deleted as well.

        Returns:
            False if root did not exist, True once it has been deleted

        Raises:
            IOFailure: If anything could not be deleted. ``report`` holds the details.
            asyncio.CancelledError: If a retry was cancelled. Raised after the walk
                completes, chained from the IOFailure.
        """
        root_path = Path(root)
        if await async_lstat(root_path) is None:
            self.logger.debug(f"Nothing to delete: {root_path}")
            return False

        run = self._start_run(root_path, follow_symlinks)
        await self._delete_recursively(run, root_path, include_root=True)
        await self._finish_run(run)
        return True

    async def ensure_empty_directory(self, target: PathLike, follow_symlinks: bool = False) -> bool:
        """
        Make sure ``target`` is an existing, empty directory.

        Contents of an existing directory are deleted while the directory is
        kept. Anything else at ``target`` is deleted and replaced by a
        directory.

        Returns:
            True if anything was removed

        Raises:
            IOFailure: If the contents could not be deleted
        """
        target_path = Path(target)
        if await async_lstat(target_path) is None:
            await aiofiles.os.makedirs(target_path, exist_ok=True)
            return False

        if not await self._should_follow(target_path, follow_symlinks):
            await self.delete_tree(target_path, follow_symlinks)
            await aiofiles.os.makedirs(target_path, exist_ok=True)
            return True

        run = self._start_run(target_path, follow_symlinks)
        await self._delete_recursively(run, target_path, include_root=False)
        await self._finish_run(run)
        return run.stats["nodes_deleted"] > 0

    async def delete(self, path: PathLike) -> bool:
        """
        Delete a single file, symlink or empty directory.

        Returns:
            True if something was deleted, False if the path did not exist

        Raises:
            IOFailure: If the delete failed twice
        """
        return await self._delete_with_retry(Path(path))

    def _start_run(self, root: Path, follow_symlinks: bool) -> _DeletionRun:
        run = _DeletionRun(root, self.now(), follow_symlinks, self.max_reported_paths)
        log_with_context(
            self.logger,
            "debug",
            "Deleting tree",
            {"root": str(root), "follow_symlinks": follow_symlinks, "start_time": run.start_time},
        )
        return run

    async def _should_follow(self, path: Path, follow_symlinks: bool) -> bool:
        return await aiofiles.os.path.isdir(path) and (follow_symlinks or not self.is_symlink(path))

    async def _list_children(self, directory: Path) -> Optional[List[Path]]:
        """
        List a directory.

        Returns None if the directory vanished. Other errors are logged and
        reported as no children, so the directory itself is still attempted
        and ends up in the failure report if it cannot be removed.
        """
        try:
            return await async_scandir(directory)
        except (FileNotFoundError, NotADirectoryError):
            self.logger.debug(f"Directory already gone: {directory}")
            return None
        except OSError as e:
            log_with_context(
                self.logger,
                "warning",
                "Unable to list directory",
                {"directory": str(directory), "error": str(e), "error_type": type(e).__name__},
            )
            return []

    async def _delete_recursively(self, run: _DeletionRun, start: Path, include_root: bool) -> None:
        """Post-order walk from ``start``, stopping once the failure set is full."""
        # (path, children already scheduled)
        stack = [(start, False)]
        while stack:
            node, expanded = stack.pop()

            if not expanded and await self._should_follow(node, run.follow_symlinks):
                children = await self._list_children(node)
                if children is None:
                    continue
                stack.append((node, True))
                stack.extend((child, False) for child in reversed(children))
                continue

            if node == start and not include_root:
                continue

            if await self._delete_node(run, node):
                self.logger.debug(f"Failure limit of {self.max_reported_paths} reached, aborting: {run.root}")
                return

    async def _delete_node(self, run: _DeletionRun, node: Path) -> bool:
        """Delete one node of a walk. Returns True if the failure set is now full."""
        try:
            if await self._delete_with_retry(node, run):
                run.stats["nodes_deleted"] += 1
            return False
        except IOFailure:
            run.stats["failures"] += 1
            return run.failed.add(os.path.abspath(node))

    async def _delete_with_retry(self, path: Path, run: Optional[_DeletionRun] = None) -> bool:
        try:
            return await self._delete_file(path)
        except OSError as first_error:
            self.logger.debug(f"Retrying removal of {os.path.abspath(path)} after {type(first_error).__name__}: {first_error}")
            if run is not None:
                run.stats["retries"] += 1
            try:
                await self._pause_before_retry()
            except asyncio.CancelledError:
                if run is None:
                    raise
                run.interrupted = True
                log_with_context(
                    self.logger,
                    "warning",
                    "Retry cancelled, continuing deletion",
                    {"path": os.path.abspath(path)},
                )
                raise IOFailure(f"Unable to delete '{path}'", path=os.path.abspath(path)) from first_error

        try:
            return await self._delete_file(path)
        except OSError as e:
            raise IOFailure(f"Unable to delete '{path}'", path=os.path.abspath(path)) from e

    async def _delete_file(self, path: Path) -> bool:
        """Remove a path without following links. A missing path is not an error."""
        st = await async_lstat(path)
        if st is None:
            return False
        try:
            if stat.S_ISDIR(st.st_mode):
                await aiofiles.os.rmdir(path)
            else:
                await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        return True

    async def _pause_before_retry(self) -> None:
        # Finalizers of unreachable file objects close their handles
        if self.run_gc_on_failed_delete:
            gc.collect()
        await asyncio.sleep(DELETE_RETRY_SLEEP_SECONDS)

    async def _finish_run(self, run: _DeletionRun) -> None:
        """Log the outcome and raise if anything could not be deleted."""
        context = {
            "root": str(run.root),
            **run.stats,
            "duration_seconds": round(self.now() - run.start_time, 3),
        }
        if not run.failed:
            log_with_context(self.logger, "info", "Tree deleted", context)
            return

        report = await self._build_report(run)
        context.update(
            {
                "failed_paths": len(report.failed_paths),
                "new_paths": len(report.new_paths),
                "more_failures": report.more_failures,
                "interrupted": report.interrupted,
            }
        )
        log_with_context(self.logger, "error", "Tree deletion failed", context)

        failure = IOFailure(report.render(), path=os.path.abspath(run.root), report=report)
        if run.interrupted:
            raise asyncio.CancelledError(f"Deletion of {run.root} was cancelled") from failure
        raise failure

    async def _build_report(self, run: _DeletionRun) -> DeletionReport:
        root = run.root
        descended = await self._should_follow(root, run.follow_symlinks)
        failed = list(run.failed)
        new_paths: List[str] = []
        if descended:
            # The root is the subject of the report, not one of its children
            root_abs = os.path.abspath(root)
            failed = [path for path in failed if path != root_abs]
            new_paths = await self._list_new_paths(run, failed)

        return DeletionReport(
            root=str(root),
            root_is_symlink=bool(self.is_symlink(root)),
            root_is_directory=await aiofiles.os.path.isdir(root),
            descended=descended,
            failed_paths=tuple(failed),
            more_failures=run.failed.full,
            new_paths=tuple(new_paths),
            interrupted=run.interrupted,
            max_reported_paths=self.max_reported_paths,
        )

    async def _list_new_paths(self, run: _DeletionRun, failed_paths: Iterable[str]) -> List[str]:
        """Find paths under the root modified at or after the start of the run."""
        excluded = set(failed_paths)
        root_abs = os.path.abspath(run.root)
        found = BoundedPathSet(self.max_reported_paths)

        stack = [run.root]
        while stack and not found.full:
            current = stack.pop()
            current_abs = os.path.abspath(current)
            if current_abs != root_abs and current_abs not in excluded:
                st = await async_lstat(current)
                if st is None:
                    continue
                if st.st_mtime >= run.start_time:
                    found.add(current_abs)

            if await self._should_follow(current, run.follow_symlinks):
                children = await self._list_children(current)
                if children:
                    stack.extend(reversed(children))

        return list(found)
