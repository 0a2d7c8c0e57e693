"""Cross-process build lock.

A lock file in the cache directory, created with ``O_CREAT | O_EXCL``, holds
the owner's pid, hostname and a random token. Waiters poll until the owner
releases it or the lock turns out to be stale: its owner on this host is no
longer running, or (when the owner cannot be checked) it is older than
``stale_after_seconds``. Only the token holder ever removes a live lock.
"""

from __future__ import annotations

import json
import os
import secrets
import socket
import sys
import time
from contextlib import contextmanager, suppress
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import structlog

from isgkit.config import LOCK_FILENAME, LockSettings
from isgkit.errors import BuildLockError, ErrorCode
from isgkit.ttl import format_timestamp, parse_safe_date

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

log = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class LockInfo:
    pid: int
    hostname: str
    token: str
    timestamp: str


def _hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


def _process_running(pid: int) -> bool:
    if sys.platform == "win32":
        return True  # os.kill would terminate the process; fall back to lock age
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # Exists, owned by another user
    except OSError:
        return True
    return True


class BuildLock:
    """File lock guarding one project's cache and output directories."""

    def __init__(self, cache_dir: str | Path, *, settings: LockSettings | None = None) -> None:
        self.lock_path = Path(cache_dir) / LOCK_FILENAME
        self._settings = settings or LockSettings()
        self._token: str | None = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def acquire(self, *, force: bool = False, timeout: float | None = None) -> None:
        """Block until the lock is ours.

        Raises ``BuildLockError`` when ``timeout`` (default from settings)
        elapses first. ``timeout=0`` fails immediately on contention.
        ``force=True`` removes an existing lock without checking its owner.
        """
        if self._token is not None:
            raise BuildLockError(
                ErrorCode.BUILD_LOCK_FAILED,
                f"Build lock at {self.lock_path} is already held by this process.",
            )

        wait = self._settings.timeout_seconds if timeout is None else timeout
        deadline = time.monotonic() + wait
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        if force and self.lock_path.exists():
            log.warning("build_lock_forced", path=str(self.lock_path), owner=self.owner())
            with suppress(OSError):
                self.lock_path.unlink()

        while True:
            try:
                self._create()
                log.debug("build_lock_acquired", path=str(self.lock_path))
                return
            except FileExistsError:
                pass
            except OSError as exc:
                raise BuildLockError(
                    ErrorCode.BUILD_LOCK_FAILED,
                    f"Failed to acquire build lock at {self.lock_path}: {exc}",
                ) from exc

            stale = self._find_stale()
            if stale is not None:
                self._remove_stale(stale)
                continue

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BuildLockError(
                    ErrorCode.BUILD_LOCK_TIMEOUT,
                    f"Build lock acquisition timed out after {wait}s. "
                    f"Another build may be running (lock file: {self.lock_path}).",
                )
            time.sleep(min(self._settings.poll_interval_seconds, remaining))

    def release(self) -> None:
        """Remove the lock file if we own it. Never raises."""
        if self._token is None:
            return
        try:
            current = self._read()
            if current is not None and current.token == self._token:
                self.lock_path.unlink()
                log.debug("build_lock_released", path=str(self.lock_path))
            else:
                log.warning("build_lock_lost", path=str(self.lock_path))
        except OSError:
            log.warning("build_lock_release_failed", path=str(self.lock_path), exc_info=True)
        finally:
            self._token = None

    def owner(self) -> LockInfo | None:
        """Information about the current holder, if any."""
        return self._read()

    def is_locked(self) -> bool:
        """True when some live process holds the lock."""
        return self.lock_path.exists() and self._find_stale() is None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create(self) -> None:
        token = secrets.token_hex(16)
        info = LockInfo(
            pid=os.getpid(),
            hostname=_hostname(),
            token=token,
            timestamp=format_timestamp(datetime.now(UTC)),
        )
        fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
            json.dump(asdict(info), file_obj)
            file_obj.flush()
            os.fsync(file_obj.fileno())
        self._token = token

    def _read(self) -> LockInfo | None:
        return _read_lock_file(self.lock_path)

    def _find_stale(self) -> StaleLock | None:
        """The current lock file if it is stale, ``None`` while it is live or gone."""
        try:
            stat = self.lock_path.stat()
        except FileNotFoundError:
            return None  # Released meanwhile; the next create attempt will tell
        info = self._read()
        max_age = self._settings.stale_after_seconds
        candidate = StaleLock(info=info, inode=stat.st_ino, mtime_ns=stat.st_mtime_ns)

        if info is None:
            return candidate if time.time() - stat.st_mtime > max_age else None

        if info.hostname == _hostname():
            return None if _process_running(info.pid) else candidate

        locked_at = parse_safe_date(info.timestamp)
        if locked_at is None or (datetime.now(UTC) - locked_at).total_seconds() > max_age:
            return candidate
        return None

    def _remove_stale(self, stale: StaleLock) -> None:
        """Delete the lock file judged stale, leaving any lock created since in place.

        The file is renamed out of the way before it is checked, so another
        waiter cannot create a lock that this call then deletes. A file that
        turns out not to be the stale one is linked back under the lock name.
        """
        try:
            if not stale.matches(self.lock_path):
                return
            graveyard = self.lock_path.with_name(f"{LOCK_FILENAME}.stale-{secrets.token_hex(8)}")
            os.rename(self.lock_path, graveyard)
        except FileNotFoundError:
            return  # Another waiter removed it first

        try:
            if not stale.matches(graveyard):
                try:
                    os.link(graveyard, self.lock_path)
                except FileExistsError:
                    log.error("build_lock_restore_failed", path=str(self.lock_path))
                return
            log.warning(
                "build_lock_stale_removed",
                path=str(self.lock_path),
                pid=stale.info.pid if stale.info else None,
                hostname=stale.info.hostname if stale.info else None,
            )
        finally:
            with suppress(OSError):
                graveyard.unlink()


@dataclass(frozen=True)
class StaleLock:
    """A lock file judged stale, identified by inode, mtime and content."""

    info: LockInfo | None
    inode: int
    mtime_ns: int

    def matches(self, path: Path) -> bool:
        stat = path.stat()
        if (stat.st_ino, stat.st_mtime_ns) != (self.inode, self.mtime_ns):
            return False
        return _read_lock_file(path) == self.info


def _read_lock_file(path: Path) -> LockInfo | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return LockInfo(
            pid=int(data["pid"]),
            hostname=str(data["hostname"]),
            token=str(data["token"]),
            timestamp=str(data["timestamp"]),
        )
    except (OSError, ValueError, KeyError, TypeError):
        return None


@contextmanager
def build_lock(
    cache_dir: str | Path,
    *,
    force: bool = False,
    timeout: float | None = None,
    settings: LockSettings | None = None,
) -> Iterator[BuildLock]:
    """Hold the build lock for the duration of the ``with`` block."""
    lock = BuildLock(cache_dir, settings=settings)
    lock.acquire(force=force, timeout=timeout)
    try:
        yield lock
    finally:
        lock.release()


def with_build_lock(
    cache_dir: str | Path,
    fn: Callable[[], T],
    *,
    force: bool = False,
    timeout: float | None = None,
    settings: LockSettings | None = None,
) -> T:
    """Run ``fn`` while holding the build lock; the lock is released on every exit path."""
    with build_lock(cache_dir, force=force, timeout=timeout, settings=settings):
        return fn()
