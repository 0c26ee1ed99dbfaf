"""
Output cache and writer for GeoJSON artifacts.

Each :class:`ResolutionRequest` maps to exactly one file in its output
directory. Existence is checked with a stat on every lookup; nothing is kept in
memory except the locks of computations currently in flight. Writes go to a
temporary file in the same directory and are renamed into place, so readers see
either the previous artifact or the complete new one.
"""

import asyncio
import os
import re
import stat
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, Optional, Tuple

from shared.errors import InvalidInputError, StorageUnavailableError
from shared.metrics import MetricsCollector

from ..context import Context, ResolutionRequest
from ..osm.models import SubArea
from .geojson import dumps

ARTIFACT_SUFFIX = ".geojson"
_ARTIFACT_RE = re.compile(r"^(\d+)(-raw)?(-separated)?\.geojson$")


def artifact_name(root_id: int, raw: bool, separated: bool) -> str:
    """File name for a request: ``<id>[-raw][-separated].geojson``."""
    name = str(root_id)
    if raw:
        name += "-raw"
    if separated:
        name += "-separated"
    return name + ARTIFACT_SUFFIX


def write_path(request: ResolutionRequest) -> str:
    """Deterministic artifact path; a pure function of the request fields."""
    return os.path.join(request.out_dir, artifact_name(request.root_id, request.raw, request.separated))


def parse_artifact(name: str, out_dir: str) -> ResolutionRequest:
    """Inverse of :func:`artifact_name`; rejects anything else."""
    match = _ARTIFACT_RE.match(name)
    if not match or int(match.group(1)) <= 0:
        raise InvalidInputError("unknown artifact", {"artifact": name})
    return ResolutionRequest(
        root_id=int(match.group(1)),
        raw=bool(match.group(2)),
        separated=bool(match.group(3)),
        out_dir=out_dir,
    )


@dataclass
class _KeyLock:
    lock: asyncio.Lock
    holders: int = 0


class OutputStore:
    """Artifact lookup and atomic writes with one computation per key."""

    def __init__(self, ctx: Context, metrics: Optional[MetricsCollector] = None):
        self.ctx = ctx
        self.logger = ctx.logger
        self.metrics = metrics
        self._locks: Dict[str, _KeyLock] = {}

    def lookup(self, request: ResolutionRequest) -> Tuple[str, bool]:
        """Return ``(path, found)``.

        A missing artifact is not an error. A missing or unreadable output
        directory raises :class:`StorageUnavailableError`.
        """
        self._check_directory(request.out_dir, writable=False)
        path = write_path(request)
        try:
            found = stat.S_ISREG(os.stat(path).st_mode)
        except FileNotFoundError:
            found = False
        except OSError as exc:
            raise StorageUnavailableError(
                f"cannot access artifact: {exc.strerror}", {"path": path}
            ) from exc

        if self.metrics is not None:
            self.metrics.increment_counter("artifact_lookups_total", result="hit" if found else "miss")
        return path, found

    async def write(self, request: ResolutionRequest, subareas: Iterable[SubArea]) -> str:
        """Serialize and atomically store sub-areas; returns the artifact path.

        Serialization happens before anything touches the disk, so a
        :class:`SerializationError` leaves any existing artifact untouched.
        """
        self._check_directory(request.out_dir, writable=True)
        payload = dumps(subareas)
        path = write_path(request)
        await asyncio.to_thread(self._write_atomic, path, payload)
        if self.metrics is not None:
            self.metrics.increment_counter("artifact_writes_total")
        self.logger.info("Artifact written", path=path, size=len(payload))
        return path

    async def get_or_create(
        self,
        request: ResolutionRequest,
        compute: Callable[[], Awaitable[Iterable[SubArea]]],
        *,
        force: bool = False,
    ) -> Tuple[str, bool]:
        """Return ``(path, created)`` for a request, computing it at most once.

        Concurrent callers for the same key wait for the first one and then
        find its artifact instead of recomputing. ``force`` recomputes even when
        an artifact exists.
        """
        async with self._key_lock(request.key):
            if not force:
                path, found = self.lookup(request)
                if found:
                    self.logger.debug("Artifact reused", path=path)
                    return path, False
            else:
                self._check_directory(request.out_dir, writable=True)
            subareas = await compute()
            return await self.write(request, subareas), True

    def in_flight(self) -> int:
        """Number of keys with a computation running or waiting."""
        return len(self._locks)

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock(asyncio.Lock())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._locks.pop(key, None)

    def _check_directory(self, out_dir: str, *, writable: bool) -> None:
        if not out_dir:
            raise StorageUnavailableError("no output directory configured")
        try:
            st = os.stat(out_dir)
        except FileNotFoundError as exc:
            raise StorageUnavailableError("output directory does not exist", {"out_dir": out_dir}) from exc
        except OSError as exc:
            raise StorageUnavailableError(
                f"cannot access output directory: {exc.strerror}", {"out_dir": out_dir}
            ) from exc
        if not stat.S_ISDIR(st.st_mode):
            raise StorageUnavailableError("output path is not a directory", {"out_dir": out_dir})
        mode = os.R_OK | os.X_OK | (os.W_OK if writable else 0)
        if not os.access(out_dir, mode):
            raise StorageUnavailableError("output directory is not accessible", {"out_dir": out_dir})

    @staticmethod
    def _write_atomic(path: str, payload: bytes) -> None:
        directory, name = os.path.split(path)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory or ".", prefix=f".{name}.", suffix=".tmp")
        except OSError as exc:
            raise StorageUnavailableError(
                f"cannot create file in output directory: {exc.strerror}", {"path": path}
            ) from exc
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, path)
        except BaseException as exc:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            if isinstance(exc, OSError):
                raise StorageUnavailableError(
                    f"cannot write artifact: {exc.strerror}", {"path": path}
                ) from exc
            raise
