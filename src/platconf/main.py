"""FastAPI applications for the platconf status service."""

import asyncio
import logging
import os
import socket
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
import uvicorn

from platconf.api.routes import read_router, write_router
from platconf.config import StatusSettings
from platconf.errors import ConfigurationError
from platconf.services.file_watcher import StatusFileWatcher
from platconf.services.status_store import StatusStore
from platconf.utils.logging import setup_logger

logger = logging.getLogger("platconf.main")


def _log_watcher_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Status file watcher exited with an error: {error!r}", exc_info=error)


def create_app(
    status_store: StatusStore,
    watcher: Optional[StatusFileWatcher] = None,
) -> FastAPI:
    """Public read-only application (GET /json, GET /, GET /favicon.ico).

    Startup:
    - Ingest the status file once if it exists
    - Start the status file watcher task

    Shutdown:
    - Signal the watcher to stop and wait for it
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting platform-install-status")
        watch_task = None
        if watcher is not None:
            await watcher.initial_load()
            watch_task = asyncio.create_task(watcher.run())
            watch_task.add_done_callback(_log_watcher_exit)

        yield

        if watch_task is not None:
            watcher.stop()
            await asyncio.gather(watch_task, return_exceptions=True)
        logger.info("platform-install-status shutting down...")

    app = FastAPI(
        title="platconf status",
        description="Live progress of the platform update",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.status_store = status_store
    app.include_router(read_router)
    return app


def create_write_app(status_store: StatusStore) -> FastAPI:
    """Privileged application (PUT /status), only ever bound to a UNIX socket."""
    app = FastAPI(title="platconf status writer", version="1.0.0")
    app.state.status_store = status_store
    app.include_router(write_router)
    return app


def bind_status_socket(path: str) -> socket.socket:
    """Bind the write endpoint socket, readable and writable by its owner only."""
    socket_path = Path(path)
    socket_path.parent.mkdir(parents=True, exist_ok=True)
    socket_path.unlink(missing_ok=True)

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.bind(str(socket_path))
    os.chmod(socket_path, 0o600)
    return sock


async def serve(settings: StatusSettings) -> None:
    """Run the read server, the write server and the file watcher until stopped."""
    status_store = StatusStore()
    watcher = StatusFileWatcher(status_store, settings.status_file)

    read_server = uvicorn.Server(
        uvicorn.Config(
            create_app(status_store, watcher),
            host=settings.host,
            port=settings.port,
            log_level="info",
            access_log=True,
        )
    )
    write_server = uvicorn.Server(
        uvicorn.Config(
            create_write_app(status_store),
            lifespan="off",
            log_level="info",
            access_log=False,
        )
    )

    sock = bind_status_socket(settings.status_socket)
    logger.info(
        f"Status service on port {settings.port}, "
        f"write socket {settings.status_socket}, file {settings.status_file}"
    )

    tasks = [
        asyncio.create_task(read_server.serve()),
        asyncio.create_task(write_server.serve(sockets=[sock])),
    ]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        read_server.should_exit = True
        write_server.should_exit = True
        await asyncio.gather(*tasks, return_exceptions=True)
        sock.close()
        Path(settings.status_socket).unlink(missing_ok=True)


def main():
    """Main entry point for ``platconf-status``."""
    try:
        settings = StatusSettings.from_env()
    except ConfigurationError as e:
        raise SystemExit(str(e))

    setup_logger("platconf", settings.log_file, level=logging.INFO)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
