"""
Per-process memoization of topology discovery.

Discovery is expensive and the topology does not change during one CLI
invocation, so entries are never invalidated. Failures are cached as well:
asking again for a source that failed re-raises the same error without
running discovery a second time.
"""
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from infrasynth.detect import can_import
from infrasynth.errors import DiscoveryCancelledError
from infrasynth.models.topology import Topology
from infrasynth.parsers.manifest import discover

T = TypeVar("T")

Loader = Callable[[str, Optional[threading.Event]], Any]


@dataclass
class CacheEntry(Generic[T]):
    value: Optional[T] = None
    error: Optional[Exception] = None
    created: float = field(default_factory=time.monotonic)

    def result(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


class DiscoveryCache(Generic[T]):
    """
    Memoizes ``loader(path, cancel)`` per absolute path.

    A single lock is held for the whole miss, including the loader call, so
    one key is never loaded twice. Distinct keys are loaded one at a time.
    """

    def __init__(self, loader: Loader):
        self._loader = loader
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(path: str) -> str:
        return os.path.abspath(path)

    def get(self, path: str, cancel: Optional[threading.Event] = None) -> T:
        key = self.key(path)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._load(key, cancel)
                self._entries[key] = entry
        return entry.result()

    def _load(self, key: str, cancel: Optional[threading.Event]) -> CacheEntry[T]:
        if cancel is not None and cancel.is_set():
            raise DiscoveryCancelledError(key)
        try:
            return CacheEntry(value=self._loader(key, cancel))
        except DiscoveryCancelledError:
            # a cancelled miss leaves the key empty for the next caller
            raise
        except Exception as exc:
            return CacheEntry(error=exc)

    def peek(self, path: str) -> Optional[CacheEntry[T]]:
        with self._lock:
            return self._entries.get(self.key(path))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class TopologyCache(DiscoveryCache[Topology]):
    def __init__(self, loader: Loader = discover):
        super().__init__(loader)


class ProbeCache(DiscoveryCache[bool]):
    """Memoizes the cheap "is this a synthesizable source" check."""

    def __init__(self, loader: Loader = can_import):
        super().__init__(loader)
