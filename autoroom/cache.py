"""On-disk cache entries with a max-age freshness policy.

Each entry is a directory under the cache space. An entry is fresh when the
newest modification time among the directory and its files is within the
allowed age; stale entries are removed and rebuilt from scratch.
"""

from __future__ import annotations

import logging
import shutil
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


def newest_mtime(path: Path) -> float:
    """Return the newest modification time of ``path`` and its direct children."""
    mod_time = path.stat().st_mtime
    for child in path.iterdir():
        mod_time = max(mod_time, child.stat().st_mtime)
    return mod_time


def is_fresh(path: Path, max_age: timedelta, now: Optional[float] = None) -> bool:
    if not path.exists():
        return False
    now = time.time() if now is None else now
    return now - newest_mtime(path) <= max_age.total_seconds()


class CacheSpace:
    """A directory of cache entries belonging to one application."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.path.mkdir(mode=0o700, parents=True, exist_ok=True)

    def get_or_create(
        self,
        entry_id: str,
        max_age: timedelta,
        load: Callable[[Path], T],
        create: Callable[[Path], T],
    ) -> T:
        """Load entry ``entry_id`` if fresh, otherwise rebuild it with ``create``.

        ``create`` receives an empty directory to populate. If it raises,
        the partial entry is removed so the next run starts clean.
        """
        p = self.path / entry_id
        if is_fresh(p, max_age):
            logger.debug("Using cached %s", p)
            return load(p)
        logger.info("Rebuilding cache entry %s", entry_id)
        shutil.rmtree(p, ignore_errors=True)
        p.mkdir(mode=0o700, parents=True)
        try:
            return create(p)
        except BaseException:
            shutil.rmtree(p, ignore_errors=True)
            raise
