"""
Command text sources and file watching.

Command text is either an inline literal or a reference to an external
``.sql`` file, written as ``@path/to/query.sql`` or as a bare path ending in
``.sql``. File references are resolved against a resolution folder and can
be watched so that a change invalidates whatever was built from them.
"""
import enum
import logging
import pathlib
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from sqlcommand.exceptions import ConfigurationError

__all__ = [
    'TextOrigin',
    'TextSource',
    'resolve_text',
    'FileWatcher',
    'WatchHandle',
    'PollingFileWatcher',
]

logger = logging.getLogger(__name__)

FILE_PREFIX = '@'
SQL_SUFFIX = '.sql'


class TextOrigin(enum.Enum):
    LITERAL = 'literal'
    FILE = 'file'


@dataclass(frozen=True)
class TextSource:
    """Resolved command text and where it came from.

    ``reference`` is the text as declared: the statement itself for a
    literal, the file reference for a file. It identifies the source in
    cache keys. ``signature`` is the file's (mtime, size) taken before the
    text was read.
    """
    text: str
    origin: TextOrigin
    reference: str
    path: pathlib.Path | None = None
    signature: tuple[int, int] | None = field(default=None, compare=False, repr=False)

    @property
    def identity(self) -> str:
        return self.reference

    def to_dict(self) -> dict[str, str | None]:
        return {
            'origin': self.origin.value,
            'reference': self.reference,
            'path': str(self.path) if self.path else None,
            }


def _file_reference(command_text: str) -> str | None:
    """Return the path part of a file reference, or None for a literal."""
    stripped = command_text.strip()
    if stripped.startswith(FILE_PREFIX) and stripped.lower().endswith(SQL_SUFFIX):
        return stripped[len(FILE_PREFIX):].strip()
    if stripped.lower().endswith(SQL_SUFFIX) and '\n' not in stripped and ' ' not in stripped:
        return stripped
    return None


def resolve_text(command_text: str, resolution_folder: str | pathlib.Path = '.') -> TextSource:
    """Resolve command text to a TextSource.

    Args:
        command_text: Inline statement, ``@file.sql`` or ``file.sql``
        resolution_folder: Folder relative file references are resolved against

    Returns
        TextSource

    Raises
        ConfigurationError: if a file reference names a missing file
    """
    reference = _file_reference(command_text)
    if reference is None:
        return TextSource(text=command_text, origin=TextOrigin.LITERAL, reference=command_text)

    path = pathlib.Path(reference).expanduser()
    if not path.is_absolute():
        path = pathlib.Path(resolution_folder) / path
    path = path.resolve()
    if not path.is_file():
        raise ConfigurationError(f'Command text file not found: {path}')

    signature = _stat_signature(path)
    text = path.read_text(encoding='utf-8-sig')
    logger.debug(f'Read command text from {path}')
    return TextSource(text=text, origin=TextOrigin.FILE, reference=command_text, path=path,
                      signature=signature)


class WatchHandle(Protocol):
    def close(self) -> None: ...


class FileWatcher(Protocol):
    """Notification source for file changes.

    ``watch`` registers a callback that runs, possibly on another thread,
    when the file changes. ``signature`` is the state the caller last saw;
    when given, a file that differs from it already counts as changed.
    Closing the returned handle stops the watch.
    """

    def watch(self, path: pathlib.Path, callback: Callable[[], None],
              signature: tuple[int, int] | None = None) -> WatchHandle: ...

    def close(self) -> None: ...


class _PollingHandle:

    def __init__(self, watcher: 'PollingFileWatcher', token: int) -> None:
        self._watcher = watcher
        self._token = token

    def close(self) -> None:
        self._watcher._unwatch(self._token)


def _stat_signature(path: pathlib.Path) -> tuple[int, int] | None:
    try:
        stat = path.stat()
    except OSError:
        return None
    return stat.st_mtime_ns, stat.st_size


class PollingFileWatcher:
    """FileWatcher that polls modification time and size on a daemon thread.

    The thread starts with the first watch and stops on ``close()``.
    A callback fires once per detected change.
    """

    def __init__(self, interval: float = 1.0) -> None:
        self.interval = interval
        self._watches: dict[int, tuple[pathlib.Path, Callable[[], None], tuple[int, int] | None]] = {}
        self._lock = threading.RLock()
        self._next_token = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def watch(self, path: pathlib.Path, callback: Callable[[], None],
              signature: tuple[int, int] | None = None) -> WatchHandle:
        path = pathlib.Path(path)
        if signature is None:
            signature = _stat_signature(path)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._watches[token] = (path, callback, signature)
            if self._thread is None:
                self._stop.clear()
                self._thread = threading.Thread(target=self._run, name='sqlcommand-watcher', daemon=True)
                self._thread.start()
        logger.debug(f'Watching {path}')
        return _PollingHandle(self, token)

    def _unwatch(self, token: int) -> None:
        with self._lock:
            entry = self._watches.pop(token, None)
        if entry:
            logger.debug(f'Stopped watching {entry[0]}')

    def poll(self) -> int:
        """Check every watched file once and fire callbacks for changes.

        Returns
            Number of callbacks fired
        """
        with self._lock:
            snapshot = list(self._watches.items())

        changed = []
        for token, (path, callback, signature) in snapshot:
            current = _stat_signature(path)
            if current == signature:
                continue
            with self._lock:
                if token not in self._watches:
                    continue
                self._watches[token] = (path, callback, current)
            changed.append((path, callback))

        for path, callback in changed:
            logger.debug(f'Detected change in {path}')
            try:
                callback()
            except Exception as e:
                logger.warning(f'Watch callback for {path} failed: {e}')
        return len(changed)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.poll()

    def close(self) -> None:
        """Stop the polling thread and drop every watch."""
        self._stop.set()
        with self._lock:
            thread, self._thread = self._thread, None
            self._watches.clear()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.interval * 2, 1.0))
