"""
Command provider: cached descriptors for declared commands.

The provider is the entry point for declaring commands. It builds
descriptors on first request, caches them by CacheKey and, for commands
whose text lives in a ``.sql`` file, watches the file so that a change
invalidates the cached descriptor. The next request rebuilds.

Usage:
    with CommandProvider(resolution_folder='queries') as provider:
        GetUsers = provider.provide_type('GetUsers', '@users.sql', 'name=Main')
        for user in GetUsers().execute(minAge=30):
            ...
"""
import logging
import pathlib
import threading
from collections.abc import Callable
from typing import Self

from sqlcommand.builder import build, validate_connection_target
from sqlcommand.cache import CacheKey, DescriptorCache
from sqlcommand.catalog import CatalogRegistry
from sqlcommand.command import emit
from sqlcommand.connection import ConnectionGateway
from sqlcommand.descriptor import CommandDescriptor
from sqlcommand.options import CommandOptions, ResultType
from sqlcommand.source import FileWatcher, PollingFileWatcher, TextOrigin, TextSource
from sqlcommand.source import WatchHandle

__all__ = ['CommandProvider']

logger = logging.getLogger(__name__)


class CommandProvider:
    """Builds, caches and invalidates command descriptors.

    Owns the watch handles it registers and releases them on ``close()``.
    A watcher passed in by the caller is not closed by the provider.
    """

    def __init__(self, resolution_folder: str | pathlib.Path = '.',
                 watcher: FileWatcher | None = None,
                 cache: DescriptorCache | None = None,
                 gateway_factory: Callable[[str], ConnectionGateway] = ConnectionGateway,
                 registry: CatalogRegistry | None = None) -> None:
        self.resolution_folder = pathlib.Path(resolution_folder)
        self.cache = cache if cache is not None else DescriptorCache.get_instance()
        self.gateway_factory = gateway_factory
        self.registry = registry
        self._owns_watcher = watcher is None
        self._watcher = watcher
        self._watches: dict[CacheKey, WatchHandle] = {}
        self._lock = threading.RLock()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def watcher(self) -> FileWatcher:
        with self._lock:
            if self._watcher is None:
                self._watcher = PollingFileWatcher()
            return self._watcher

    def key(self, type_name: str, command_text: str, connection_string_or_name: str,
            options: CommandOptions) -> CacheKey:
        return CacheKey.create(type_name, command_text, connection_string_or_name, options,
                               resolution_folder=str(self.resolution_folder.resolve()))

    def provide(self, type_name: str, command_text: str, connection_string_or_name: str,
                result_type: ResultType | str | int = ResultType.RECORDS,
                single_row: bool = False,
                config_file: str = '',
                all_parameters_optional: bool = False) -> CommandDescriptor:
        """Get the descriptor of a declared command, building it on first use.

        Raises
            EmptyConnectionTargetError: for a blank connection target, before any lookup
            DescriptorError: any build failure; nothing is cached
        """
        target = validate_connection_target(connection_string_or_name)
        options = CommandOptions(result_type, single_row, all_parameters_optional, config_file)
        key = self.key(type_name, command_text, target, options)

        def factory() -> CommandDescriptor:
            descriptor = build(
                command_text, target, options,
                name=type_name,
                resolution_folder=self.resolution_folder,
                gateway_factory=self.gateway_factory,
                registry=self.registry,
                )
            if descriptor.source.origin is TextOrigin.FILE:
                self._watch(key, descriptor.source)
            return descriptor

        return self.cache.get_or_build(key, factory)

    def provide_type(self, type_name: str, command_text: str, connection_string_or_name: str,
                     **kwargs) -> type:
        """Like ``provide``, returning the emitted command type."""
        return emit(self.provide(type_name, command_text, connection_string_or_name, **kwargs))

    def _watch(self, key: CacheKey, source: TextSource) -> None:
        path = source.path

        def on_change() -> None:
            logger.info(f'{path} changed, invalidating {key}')
            self.invalidate(key)

        handle = self.watcher.watch(path, on_change, source.signature)
        with self._lock:
            previous = self._watches.pop(key, None)
            self._watches[key] = handle
        if previous is not None:
            previous.close()

    def invalidate(self, key: CacheKey) -> bool:
        """Evict a descriptor. The next request for key rebuilds it."""
        return self.cache.invalidate(key)

    def close(self) -> None:
        """Release every watch handle, and the watcher if the provider created it."""
        with self._lock:
            handles = list(self._watches.values())
            self._watches.clear()
            watcher = self._watcher if self._owns_watcher else None
            if self._owns_watcher:
                self._watcher = None
        for handle in handles:
            handle.close()
        if watcher is not None:
            watcher.close()
