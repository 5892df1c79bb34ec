"""treepurge - Reliable recursive deletion with actionable failure reports."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("treepurge")
except PackageNotFoundError:
    # Running from a source checkout, read the version from pyproject.toml
    import tomllib
    from pathlib import Path

    _pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
    try:
        with open(_pyproject_path, "rb") as f:
            __version__ = tomllib.load(f)["project"]["version"]
    except (OSError, KeyError, tomllib.TOMLDecodeError):
        __version__ = "unknown"

from .deleter import TreeDeleter  # noqa: E402
from .report import DeletionReport, IOFailure  # noqa: E402

__all__ = ["DeletionReport", "IOFailure", "TreeDeleter", "__version__"]
