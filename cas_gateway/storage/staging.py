"""
Ephemeral staging buffers for in-flight uploads and downloads.

Each staged payload lives in a uniquely named file under a shared staging
directory, or in an in-memory buffer when configured. Handles are released
exactly once; later releases are no-ops. A release that fails (for example
the file vanished or the disk is read-only) is logged and swallowed so it can
never replace the result of the operation that used the handle.
"""
import asyncio
import io
import itertools
import logging
import os
import re
import tempfile
import threading
import time
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Dict, Iterator, Optional

logger = logging.getLogger(__name__)

DEFAULT_STAGING_DIRNAME = "cas-gateway"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _sanitize(name: str) -> str:
    base = Path(name or "payload").name
    return _UNSAFE_CHARS.sub("_", base)[:100] or "payload"


class StagingHandle:
    """
    Ownership token for one staged resource.

    The handle keeps a single file object open (a BytesIO when staged in
    memory) until it is released. Only the TempFileManager that created a
    handle may release it.
    """

    def __init__(self, key: str, path: Optional[Path] = None, file: Optional[BinaryIO] = None):
        self.key = key
        self.path = path
        self._file: Optional[BinaryIO] = file if file is not None else io.BytesIO()
        self.released = False

    @property
    def in_memory(self) -> bool:
        return self.path is None

    def _open_file(self) -> BinaryIO:
        if self.released or self._file is None:
            raise RuntimeError(f"Staging handle {self.key} has already been released")
        return self._file

    def write(self, data: bytes) -> None:
        """Append bytes to the staged resource."""
        f = self._open_file()
        f.seek(0, os.SEEK_END)
        f.write(data)

    def reset(self) -> None:
        """Discard any staged bytes (used before a download attempt is retried)."""
        f = self._open_file()
        f.seek(0)
        f.truncate()

    def read_bytes(self) -> bytes:
        f = self._open_file()
        f.flush()
        f.seek(0)
        return f.read()

    @property
    def size(self) -> int:
        f = self._open_file()
        return f.seek(0, os.SEEK_END)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __repr__(self) -> str:
        where = "memory" if self.in_memory else str(self.path)
        return f"StagingHandle(key={self.key!r}, location={where!r}, released={self.released})"


class TempFileManager:
    """
    Scoped owner of staging resources.

    Uniqueness comes from a process-wide counter plus a nanosecond timestamp,
    so concurrent operations staging the same file name never collide.
    """

    _counter = itertools.count(1)

    def __init__(self, directory: Optional[Path] = None, in_memory: bool = False):
        self.in_memory = in_memory
        self.directory = Path(directory) if directory else Path(tempfile.gettempdir()) / DEFAULT_STAGING_DIRNAME
        self._active: Dict[str, StagingHandle] = {}
        self._lock = threading.Lock()

    @property
    def active_count(self) -> int:
        """Number of handles that have been staged and not yet released."""
        with self._lock:
            return len(self._active)

    def _next_key(self, name: str) -> str:
        return f"stage_{time.time_ns()}_{next(self._counter)}_{_sanitize(name)}"

    def stage(self, data: bytes = b"", name: str = "payload") -> StagingHandle:
        """
        Write ``data`` to a new uniquely named staging resource.

        Args:
            data: Initial contents (empty for a download destination)
            name: Original file name, used only as a readable suffix

        Returns:
            The handle owning the new resource

        Raises:
            OSError: If the staging directory or file cannot be written
        """
        key = self._next_key(name)
        if self.in_memory:
            handle = StagingHandle(key)
            handle.write(data)
        else:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self.directory / key
            # "x" fails instead of clobbering if the name was somehow taken
            f = open(path, "x+b")
            try:
                f.write(data)
                f.flush()
            except OSError:
                f.close()
                path.unlink(missing_ok=True)
                raise
            handle = StagingHandle(key, path, f)

        with self._lock:
            self._active[key] = handle
        logger.debug(f"Staged {len(data)} bytes as {key}")
        return handle

    def release(self, handle: StagingHandle) -> None:
        """Release a staged resource. Idempotent; failures are only logged."""
        with self._lock:
            if handle.released:
                return
            handle.released = True
            self._active.pop(handle.key, None)

        try:
            handle.close()
        except OSError as e:
            logger.warning(f"Failed to close staged resource {handle.key}: {e}")

        if handle.in_memory:
            return

        try:
            handle.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to clean up staged file {handle.path}: {e}")

    @contextmanager
    def staged(self, data: bytes = b"", name: str = "payload") -> Iterator[StagingHandle]:
        """Stage ``data`` for the duration of the ``with`` block, releasing on every exit path."""
        handle = self.stage(data, name)
        try:
            yield handle
        finally:
            self.release(handle)

    @asynccontextmanager
    async def staged_async(self, data: bytes = b"", name: str = "payload") -> AsyncIterator[StagingHandle]:
        """
        Async form of ``staged`` for use on the event loop.

        The initial write runs in a worker thread. If the caller is cancelled
        while that write is in flight, the handle it produces is still released.
        """
        pending = asyncio.ensure_future(asyncio.to_thread(self.stage, data, name))
        try:
            handle = await asyncio.shield(pending)
        except asyncio.CancelledError:
            pending.add_done_callback(self._release_staged)
            raise
        try:
            yield handle
        finally:
            self.release(handle)

    def _release_staged(self, pending: "asyncio.Future[StagingHandle]") -> None:
        if not pending.cancelled() and pending.exception() is None:
            self.release(pending.result())
