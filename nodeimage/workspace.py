"""Isolated, ephemeral build workspaces.

Each build gets a fresh copy of the source tree in its own temporary
directory. Host build state (cargo target directories, VCS metadata, editor
files) never reaches the build context, and nothing mutable is shared
between two builds.
"""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

# Path components never copied into a build context, at any depth.
DEFAULT_IGNORE = (
    ".git",
    ".gitignore",
    ".hg",
    ".idea",
    ".vscode",
    "*.swp",
    ".DS_Store",
)

# Entries skipped only at the top of the tree. Cargo writes its output to
# <root>/target; a nested directory named target is ordinary source.
ROOT_IGNORE = ("target",)


def _ignored(name: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatch.fnmatch(name, pat) for pat in patterns)


def _skipped(directory: Path, root: str | Path, name: str, patterns: tuple[str, ...]) -> bool:
    if _ignored(name, patterns):
        return True
    return Path(root) == directory and _ignored(name, ROOT_IGNORE)


def _walk_files(directory: Path, patterns: tuple[str, ...]) -> list[str]:
    files: list[str] = []
    for root, dirs, filenames in os.walk(directory):
        dirs[:] = [d for d in dirs if not _skipped(directory, root, d, patterns)]
        for fname in filenames:
            if _skipped(directory, root, fname, patterns):
                continue
            full = Path(root) / fname
            files.append(full.relative_to(directory).as_posix())
    files.sort()
    return files


def _dirhash(directory: Path, patterns: tuple[str, ...]) -> str:
    """Compute a content hash of a directory tree.

    Algorithm:
        1. List all files, skipping ignored path components and the root target/
        2. Sort relative paths lexicographically
        3. For each file: sha256(relative_path + "\\0" + file_contents)
        4. sha256 the concatenation of all per-file hashes

    The result is independent of timestamps, permissions and VCS history.
    """
    outer = hashlib.sha256()
    for relpath in _walk_files(directory, patterns):
        inner = hashlib.sha256()
        inner.update(relpath.encode("utf-8"))
        inner.update(b"\0")
        inner.update((directory / relpath).read_bytes())
        outer.update(inner.digest())
    return outer.hexdigest()


def hash_dir(directory: str | Path, ignore: tuple[str, ...] = DEFAULT_IGNORE) -> str:
    """Compute the content hash of a source tree.

    Returns:
        Hash string in "sha256:<hex>" format.
    """
    path = Path(directory)
    if not path.is_dir():
        raise ValueError(f"Not a directory: {str(directory)!r}")
    return f"sha256:{_dirhash(path, ignore)}"


def stage_context(
    source: str | Path,
    dest: str | Path,
    ignore: tuple[str, ...] = DEFAULT_IGNORE,
) -> Path:
    """Copy a source tree into dest, leaving out ignored path components.

    dest must not exist yet.
    """
    src = Path(source)
    if not src.is_dir():
        raise ValueError(f"Source tree {str(source)!r} is not a directory")

    def _skip(directory: str, names: list[str]) -> set[str]:
        return {n for n in names if _skipped(src, directory, n, ignore)}

    shutil.copytree(src, dest, ignore=_skip, symlinks=True)
    return Path(dest)


class Workspace:
    """A temporary directory owning one build's context.

    Usage:
        with Workspace("acala") as ws:
            stage_context(source, ws.context)
            ...
    """

    def __init__(self, name: str, keep: bool = False):
        self.name = name
        self.keep = keep
        self.root: Path | None = None

    @property
    def context(self) -> Path:
        if self.root is None:
            raise RuntimeError("Workspace is not open")
        return self.root / "context"

    def __enter__(self) -> Workspace:
        parent = os.environ.get("NODEIMAGE_WORKDIR")
        if parent:
            Path(parent).mkdir(parents=True, exist_ok=True)
        self.root = Path(tempfile.mkdtemp(prefix=f"nodeimage-{self.name}-", dir=parent))
        logger.debug("Opened workspace %s", self.root)
        return self

    def __exit__(self, *exc: object) -> None:
        if self.root is None:
            return
        if self.keep:
            logger.info("Keeping workspace %s", self.root)
        else:
            shutil.rmtree(self.root, ignore_errors=True)
        self.root = None
