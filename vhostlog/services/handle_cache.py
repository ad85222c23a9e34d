import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_HANDLES = 100


def open_append(path: Path) -> IO[str]:
    # surrogateescape keeps undecodable input bytes intact on the way out.
    return open(path, "a", encoding="utf-8", errors="surrogateescape", newline="")


@dataclass
class CachedHandle:
    path: Path
    handle: IO[str]
    last_used: float = field(default_factory=time.monotonic)
    dirty: bool = False

    def write(self, data: str, flush: bool) -> None:
        self.handle.write(data)
        self.last_used = time.monotonic()
        if flush:
            self.handle.flush()
            self.dirty = False
        else:
            self.dirty = True

    def close(self) -> None:
        # close() flushes whatever is still buffered.
        self.handle.close()
        self.dirty = False

    @property
    def closed(self) -> bool:
        return self.handle.closed


class HandleCache:
    """Bounded pool of append-mode file handles with least-recently-used eviction.

    The cache is the only place that opens or closes log files. Callers must
    ask for the handle again before every write since it may have been
    evicted or closed in between.
    """

    def __init__(
        self,
        max_handles: int = DEFAULT_MAX_HANDLES,
        flush: bool = True,
        opener: Callable[[Path], IO[str]] = open_append,
    ):
        if max_handles <= 0:
            raise ValueError("max_handles must be positive")
        self._max_handles = max_handles
        self.flush = flush
        self._opener = opener
        self._handles: "OrderedDict[Path, CachedHandle]" = OrderedDict()
        self.evictions = 0

    @property
    def max_handles(self) -> int:
        return self._max_handles

    @max_handles.setter
    def max_handles(self, value: int) -> None:
        # Takes effect on the next open; nothing is evicted right away.
        if value <= 0:
            raise ValueError("max_handles must be positive")
        self._max_handles = value

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, path) -> bool:
        return Path(path) in self._handles

    def get(self, path) -> CachedHandle:
        path = Path(path)
        cached = self._handles.get(path)
        if cached is not None:
            self._handles.move_to_end(path)
            cached.last_used = time.monotonic()
            return cached

        while len(self._handles) >= self._max_handles:
            self._evict_oldest()

        cached = CachedHandle(path=path, handle=self._open(path))
        self._handles[path] = cached
        return cached

    def write(self, path, data: str) -> CachedHandle:
        cached = self.get(path)
        cached.write(data, self.flush)
        return cached

    def _open(self, path: Path) -> IO[str]:
        try:
            return self._opener(path)
        except FileNotFoundError:
            logger.debug(f"Creating missing directory {path.parent}")
            path.parent.mkdir(parents=True, exist_ok=True)
        # A second failure belongs to the caller.
        return self._opener(path)

    def _evict_oldest(self) -> None:
        path, cached = self._handles.popitem(last=False)
        self.evictions += 1
        logger.debug(f"Evicting {path} to stay within {self._max_handles} open files")
        self._close(cached)

    def close(self, path) -> bool:
        """Close a single path if it is cached. Returns whether it was."""
        cached = self._handles.pop(Path(path), None)
        if cached is None:
            return False
        self._close(cached)
        return True

    def close_all(self) -> None:
        count = len(self._handles)
        while self._handles:
            _, cached = self._handles.popitem(last=False)
            self._close(cached)
        if count:
            logger.info(f"Closed {count} open log file(s)")

    def _close(self, cached: CachedHandle) -> None:
        try:
            cached.close()
        except OSError as e:
            logger.error(f"Failed to close {cached.path}: {e}")
