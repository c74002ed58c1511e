"""Gitignore-style rules for directory walks."""

import os
from typing import Awaitable, Callable, Dict, Optional

import aiofiles
from loguru import logger
from pathspec import GitIgnoreSpec

IGNORE_FILE = ".gitignore"
VCS_DIRS = frozenset({".git", ".hg", ".svn"})

Loader = Callable[[str], Awaitable[Optional[str]]]


async def read_local(path: str) -> Optional[str]:
    """Read an ignore file from disk, None when it is missing or unreadable."""
    try:
        async with aiofiles.open(path, "r", errors="replace") as f:
            return await f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug(f"Cannot read ignore file {path}: {e}")
        return None


class IgnoreRules:
    """
    Ignore files found while walking below ``root``.

    Each directory's ignore file applies to the paths below it. Rules are
    loaded lazily through ``loader`` when the walk enters a directory.
    """

    def __init__(self, root: str, loader: Loader = read_local):
        self.root = root
        self.loader = loader
        self._specs: Dict[str, Optional[GitIgnoreSpec]] = {}

    async def load(self, directory: str) -> None:
        """Load the ignore file of ``directory`` once."""
        key = _key(directory)
        if key in self._specs:
            return
        content = await self.loader(os.path.join(directory, IGNORE_FILE))
        if content is None:
            self._specs[key] = None
            return
        self._specs[key] = GitIgnoreSpec.from_lines(content.splitlines())
        logger.debug(f"Loaded ignore rules from {directory}")

    def is_ignored(self, path: str, is_dir: bool = False) -> bool:
        """Check ``path`` against every loaded ancestor's rules."""
        if os.path.basename(path) in VCS_DIRS:
            return True
        root = _key(self.root)
        directory = os.path.dirname(path)
        while True:
            key = _key(directory)
            spec = self._specs.get(key)
            if spec is not None:
                rel = os.path.relpath(path, key).replace(os.sep, "/")
                if is_dir:
                    rel += "/"
                if spec.match_file(rel):
                    return True
            if key == root or not directory or os.path.dirname(directory) == directory:
                return False
            directory = os.path.dirname(directory)


def _key(directory: str) -> str:
    return os.path.normpath(directory) if directory else "."
