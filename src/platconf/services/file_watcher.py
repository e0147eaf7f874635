"""Passive status file ingester.

Another program maintains a JSON status file. Whenever it finishes writing,
the whole file is read back and replaces the status record.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiofiles
from pydantic import ValidationError
from watchdog.events import (
    FileClosedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from platconf.models.status import StatusRecord
from platconf.services.status_store import StatusStore


class _ForwardingHandler(FileSystemEventHandler):
    """Hands events from the observer thread over to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue, path: Path):
        self.loop = loop
        self.queue = queue
        self.path = str(path)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if isinstance(event, FileMovedEvent):
            target = event.dest_path
        elif isinstance(event, (FileModifiedEvent, FileClosedEvent)):
            target = event.src_path
        else:
            return
        if str(target) == self.path:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, event)


class StatusFileWatcher:
    """Watches one file and replaces the status record from it on every write."""

    def __init__(self, status_store: StatusStore, path: str, health_interval: float = 5.0):
        """Initialize status file watcher.

        Args:
            status_store: Store whose record the file replaces
            path: Status file to watch
            health_interval: Seconds between checks that the observer thread is alive
        """
        self.logger = logging.getLogger("platconf.file_watcher")
        self.status_store = status_store
        self.path = Path(path).resolve()
        self.stop_event = asyncio.Event()
        self.health_interval = health_interval

    async def ingest(self) -> bool:
        """Read the file and fully replace the record with its content.

        Fields missing from the file become unset. A file that cannot be read
        or decoded leaves the record untouched.

        Returns:
            True if the record was replaced
        """
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
            record = StatusRecord.model_validate_json(content)
        except (OSError, ValidationError) as e:
            self.logger.error(f"Failed to read status from {self.path}: {e}")
            return False

        self.status_store.replace(record)
        self.logger.debug(f"Status replaced from file: {record.model_dump()}")
        return True

    async def run(self) -> None:
        """Watch the file until ``stop()`` is called.

        Errors from the watcher itself, setup included, are logged and the
        observer is started again on the next health check.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        observer = self._start_observer(loop, queue)
        stop_waiter = asyncio.create_task(self.stop_event.wait())
        getter: Optional[asyncio.Task] = None
        try:
            while not self.stop_event.is_set():
                if getter is None:
                    getter = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait(
                    {getter, stop_waiter},
                    timeout=self.health_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if stop_waiter in done:
                    break

                if getter in done:
                    getter = None
                    try:
                        await self.ingest()
                    except Exception as e:
                        self.logger.error(
                            f"Failed while watching status file {self.path}: {e}",
                            exc_info=True,
                        )

                if observer is None or not observer.is_alive():
                    if observer is not None:
                        self.logger.error("Status file observer died, restarting it")
                    observer = self._start_observer(loop, queue)
        finally:
            if getter is not None:
                getter.cancel()
            stop_waiter.cancel()
            if observer is not None:
                observer.stop()
                observer.join(timeout=5)
            self.logger.info("Status file watcher stopped")

    def _start_observer(
        self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue
    ) -> Optional[Observer]:
        """Watch the parent directory, None if that is not possible right now."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # events carry the scheduled directory, symlinks resolved
            watch_dir = self.path.parent.resolve()
            observer = Observer()
            observer.schedule(
                _ForwardingHandler(loop, queue, watch_dir / self.path.name),
                str(watch_dir),
                recursive=False,
            )
            observer.start()
        except OSError as e:
            self.logger.error(f"Failed to watch status file {self.path}: {e}")
            return None

        self.logger.info(f"Status file watcher started on {watch_dir / self.path.name}")
        return observer

    def stop(self) -> None:
        self.stop_event.set()

    async def initial_load(self) -> Optional[StatusRecord]:
        """Ingest the file once at startup if it exists."""
        if not self.path.exists():
            self.logger.info(f"No status file at {self.path} yet")
            return None
        if await self.ingest():
            return self.status_store.snapshot()
        return None
