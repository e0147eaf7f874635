"""Host-exclusive update lock backed by a PID file."""

import fcntl
import logging
import os
import time
from pathlib import Path
from typing import IO, Optional

import psutil

from platconf.errors import LockContentionError

# An empty or unreadable lock file younger than this may belong to a process
# that has not written its PID yet.
STALE_GRACE_SECONDS = 10.0


class UpdateLock:
    """Non-blocking, PID-aware lock file.

    The owner holds an exclusive ``flock`` on the file for as long as it owns
    the lock and writes its PID into it. A file left behind by a process that
    is no longer running is stale and gets reclaimed. There is no waiting: if
    a live process owns the lock, ``try_acquire`` fails immediately.
    """

    def __init__(
        self,
        path: str = "/var/run/platconf.lock",
        stale_grace: float = STALE_GRACE_SECONDS,
    ):
        self.logger = logging.getLogger("platconf.lock")
        self.path = Path(path)
        self.pid = os.getpid()
        self.stale_grace = stale_grace
        self._handle: Optional[IO[str]] = None

    def try_acquire(self) -> None:
        """Take the lock or fail right away.

        Raises:
            LockContentionError: If another live process holds the lock
            OSError: If the lock file cannot be created
        """
        if self._handle is not None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(3):
            handle, created = self._open_locked()
            if handle is None:
                # the file was removed or replaced by a releasing owner
                time.sleep(0.05)
                continue

            try:
                if not created:
                    self._check_previous_owner(handle)
                handle.seek(0)
                handle.truncate()
                handle.write(f"{self.pid}\n")
                handle.flush()
            except BaseException:
                handle.close()
                raise

            self._handle = handle
            self.logger.info(f"Acquired update lock {self.path} (pid {self.pid})")
            return

        raise LockContentionError(str(self.path), self._owner_or_unknown())

    def release(self) -> None:
        """Release the lock. Safe to call more than once."""
        if self._handle is None:
            return
        handle, self._handle = self._handle, None

        try:
            # unlinked while still locked, so nobody locks a file about to vanish
            if self.read_owner() == self.pid:
                self.path.unlink(missing_ok=True)
                self.logger.info(f"Released update lock {self.path}")
            else:
                self.logger.warning(f"Update lock {self.path} no longer owned by us, leaving it")
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()

    def is_stale(self, owner_pid: int) -> bool:
        """True if the process that wrote the lock is gone."""
        if owner_pid == self.pid:
            return False
        if owner_pid <= 0:
            return True
        try:
            process = psutil.Process(owner_pid)
            return process.status() == psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return True
        except psutil.AccessDenied:
            # exists but belongs to someone else
            return False

    def read_owner(self) -> Optional[int]:
        """PID stored in the lock file, None if missing or unreadable."""
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError:
            return None
        return _parse_pid(content)

    def _open_locked(self) -> tuple[Optional[IO[str]], bool]:
        """Open the lock file and flock it.

        Returns:
            (handle, created), handle is None if the file changed under us
        """
        created = True
        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            created = False
            try:
                fd = os.open(self.path, os.O_RDWR)
            except FileNotFoundError:
                return None, False

        handle = os.fdopen(fd, "r+", encoding="utf-8")
        # a contender may be inspecting our fresh file, it backs off right away
        if not _flock(handle, retries=5 if created else 0):
            handle.close()
            raise LockContentionError(str(self.path), self._owner_or_unknown())

        # the previous owner unlinks the file before unlocking it
        try:
            on_disk = os.stat(self.path)
        except FileNotFoundError:
            handle.close()
            return None, False
        if not os.path.samestat(on_disk, os.fstat(handle.fileno())):
            handle.close()
            return None, False

        return handle, created

    def _check_previous_owner(self, handle: IO[str]) -> None:
        """Decide whether a lock file we did not create can be taken over.

        Raises:
            LockContentionError: If the recorded owner is alive, or the file
                is too young to tell
        """
        owner = _parse_pid(handle.read())

        if owner is None:
            age = time.time() - os.fstat(handle.fileno()).st_mtime
            if age < self.stale_grace:
                raise LockContentionError(str(self.path), -1)
            self.logger.warning(f"Taking over unreadable update lock {self.path}")
        elif owner == self.pid:
            self.logger.info(f"Update lock {self.path} already names pid {owner}, adopting it")
        elif not self.is_stale(owner):
            raise LockContentionError(str(self.path), owner)
        else:
            self.logger.warning(f"Taking over stale update lock {self.path} (owner pid {owner})")

    def _owner_or_unknown(self) -> int:
        owner = self.read_owner()
        return owner if owner is not None else -1

    def __enter__(self) -> "UpdateLock":
        self.try_acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def _parse_pid(content: str) -> Optional[int]:
    try:
        return int(content.strip())
    except ValueError:
        return None


def _flock(handle: IO[str], retries: int = 0) -> bool:
    for attempt in range(retries + 1):
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            return True
        except BlockingIOError:
            if attempt < retries:
                time.sleep(0.01)
    return False
