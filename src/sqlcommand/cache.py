"""
Descriptor cache.

Keeps at most one live descriptor per CacheKey. Concurrent first requests
for a key serialize on a lock for that key, so a single build runs and every
requester gets the same instance. Invalidation can arrive from any thread;
a build that was in flight when its key was invalidated is handed to its
caller but not stored.
"""
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import cachetools
from sqlcommand.options import CommandOptions

__all__ = [
    'CacheKey',
    'DescriptorCache',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class CacheKey:
    """Identity of a declared command."""
    name: str
    text_identity: str
    connection_target: str
    config_file: str
    result_type: int
    single_row: bool
    all_parameters_optional: bool
    resolution_folder: str = ''

    @classmethod
    def create(cls, name: str, text_identity: str, connection_target: str,
               options: CommandOptions, resolution_folder: str = '') -> 'CacheKey':
        return cls(name, text_identity, connection_target.strip(), options.config_file,
                   int(options.result_type), options.single_row,
                   options.all_parameters_optional, resolution_folder)

    def __str__(self) -> str:
        return f'{self.name}[{self.text_identity[:40]!r}]'


class _KeySlot:
    """Build lock of one key, alive while some caller is building or waiting."""
    __slots__ = ('lock', 'users', 'generation')

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0
        self.generation = 0


class DescriptorCache:
    """Thread-safe cache of built descriptors.

    Backed by a cachetools LRUCache guarded by a lock. A key being built
    has a slot holding its build lock and a generation counter bumped on
    invalidation. The slot is dropped once its last user leaves, so only
    keys with a build in flight hold one.
    """

    _instance = None
    _instance_lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'DescriptorCache':
        """Get the process-wide cache."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def __init__(self, maxsize: int = 1024) -> None:
        self._entries: cachetools.LRUCache = cachetools.LRUCache(maxsize=maxsize)
        self._lock = threading.RLock()
        self._slots: dict[CacheKey, _KeySlot] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    @property
    def pending(self) -> int:
        """Number of keys with a build in flight."""
        with self._lock:
            return len(self._slots)

    def _enter(self, key: CacheKey) -> _KeySlot:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _KeySlot()
            slot.users += 1
            return slot

    def _leave(self, key: CacheKey, slot: _KeySlot) -> None:
        with self._lock:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    def get(self, key: CacheKey):
        with self._lock:
            return self._entries.get(key)

    def get_or_build(self, key: CacheKey, factory: Callable[[], T]) -> T:
        """Return the cached value for key, building it with factory on a miss.

        Errors from factory propagate and nothing is stored.
        """
        value = self.get(key)
        if value is not None:
            logger.debug(f'Descriptor cache hit for {key}')
            return value

        slot = self._enter(key)
        try:
            with slot.lock:
                value = self.get(key)
                if value is not None:
                    logger.debug(f'Descriptor cache hit for {key} after wait')
                    return value

                with self._lock:
                    generation = slot.generation
                logger.debug(f'Descriptor cache miss for {key}')
                value = factory()

                with self._lock:
                    if slot.generation == generation:
                        self._entries[key] = value
                    else:
                        logger.debug(f'Key {key} invalidated during build, result not cached')
                return value
        finally:
            self._leave(key, slot)

    def invalidate(self, key: CacheKey) -> bool:
        """Evict key. Returns True if an entry was removed."""
        with self._lock:
            slot = self._slots.get(key)
            if slot is not None:
                slot.generation += 1
            removed = self._entries.pop(key, None) is not None
        logger.debug(f'Invalidated {key} (removed={removed})')
        return removed

    def clear(self) -> None:
        """Evict everything."""
        with self._lock:
            for slot in self._slots.values():
                slot.generation += 1
            self._entries.clear()
