"""Tests for the single retry applied to failed deletes."""

import asyncio
import tempfile
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from treepurge import deleter as deleter_module
from treepurge.deleter import DELETE_RETRY_SLEEP_SECONDS, TreeDeleter
from treepurge.report import IOFailure


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def fail_first_attempt(deleter, target):
    """Make the first delete of ``target`` fail, recording call times."""
    original = deleter._delete_file
    calls = []

    async def flaky(path):
        calls.append((Path(path), time.monotonic()))
        if Path(path) == target and len([c for c in calls if c[0] == target]) == 1:
            raise PermissionError(13, "File in use", str(path))
        return await original(path)

    deleter._delete_file = flaky
    return calls


@pytest.mark.asyncio
async def test_retry_recovers_transient_failure(temp_dir):
    """A delete failing once succeeds on the retry and the tree is removed."""
    root = temp_dir / "tree"
    root.mkdir()
    target = root / "locked.txt"
    target.write_text("x")
    (root / "other.txt").write_text("y")

    deleter = TreeDeleter()
    calls = fail_first_attempt(deleter, target)

    assert await deleter.delete_tree(root) is True
    assert not root.exists()

    target_calls = [when for path, when in calls if path == target]
    assert len(target_calls) == 2
    # The loop can wake marginally before the deadline
    assert target_calls[1] - target_calls[0] >= DELETE_RETRY_SLEEP_SECONDS * 0.9


@pytest.mark.asyncio
async def test_standalone_delete_retries(temp_dir):
    target = temp_dir / "locked.txt"
    target.write_text("x")

    deleter = TreeDeleter()
    calls = fail_first_attempt(deleter, target)

    assert await deleter.delete(target) is True
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_no_third_attempt(temp_dir):
    """Deletes are attempted exactly twice before giving up."""
    target = temp_dir / "stuck.txt"
    target.write_text("x")
    attempts = []

    deleter = TreeDeleter()

    async def always_fail(path):
        attempts.append(path)
        raise PermissionError(13, "Access denied", str(path))

    deleter._delete_file = always_fail

    with pytest.raises(IOFailure) as exc_info:
        await deleter.delete(target)

    assert len(attempts) == 2
    assert "Unable to delete" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, PermissionError)


@pytest.mark.asyncio
async def test_missing_file_is_not_retried(temp_dir):
    deleter = TreeDeleter()
    pauses = []

    async def record_pause():
        pauses.append(True)

    deleter._pause_before_retry = record_pause

    assert await deleter.delete(temp_dir / "never-existed") is False
    assert pauses == []


@pytest.mark.asyncio
@pytest.mark.parametrize("enabled, expected_collections", [(True, 1), (False, 0)])
async def test_gc_hint(temp_dir, monkeypatch, enabled, expected_collections):
    """gc.collect() runs before the retry only when enabled."""
    target = temp_dir / "locked.txt"
    target.write_text("x")
    collections = []
    monkeypatch.setattr(deleter_module, "gc", SimpleNamespace(collect=lambda: collections.append(True)))

    deleter = TreeDeleter(run_gc_on_failed_delete=enabled)
    fail_first_attempt(deleter, target)

    assert await deleter.delete(target) is True
    assert len(collections) == expected_collections


@pytest.mark.asyncio
async def test_cancelled_pause_propagates_from_delete(temp_dir):
    """Standalone deletes do not hide a cancellation."""
    target = temp_dir / "locked.txt"
    target.write_text("x")

    deleter = TreeDeleter()
    fail_first_attempt(deleter, target)

    async def cancelled_pause():
        raise asyncio.CancelledError()

    deleter._pause_before_retry = cancelled_pause

    with pytest.raises(asyncio.CancelledError):
        await deleter.delete(target)
    assert target.exists()


@pytest.mark.asyncio
async def test_cancelled_pause_during_tree_walk(temp_dir):
    """A cancelled retry is recorded, the walk finishes, then the cancel surfaces."""
    root = temp_dir / "tree"
    root.mkdir()
    target = root / "a_locked.txt"
    target.write_text("x")
    sibling = root / "b_other.txt"
    sibling.write_text("y")

    deleter = TreeDeleter()
    fail_first_attempt(deleter, target)

    async def cancelled_pause():
        raise asyncio.CancelledError()

    deleter._pause_before_retry = cancelled_pause

    with pytest.raises(asyncio.CancelledError) as exc_info:
        await deleter.delete_tree(root)

    failure = exc_info.value.__cause__
    assert isinstance(failure, IOFailure)
    assert failure.report.interrupted is True
    assert failure.report.failed_paths == (str(target),)
    assert "interrupted" in str(failure)
    # The walk carried on past the interrupted node
    assert not sibling.exists()
    assert target.exists()
