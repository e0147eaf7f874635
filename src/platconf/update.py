"""``platconf-update``: run one platform update on this host."""

import asyncio
import logging
import sys
from typing import Optional

from platconf.config import UpdateSettings
from platconf.errors import ConfigurationError, LockContentionError, PlatconfError
from platconf.models.status import PhaseEnum
from platconf.services.lock import UpdateLock
from platconf.services.pipeline import UpdatePipeline
from platconf.services.process import ButtonColor
from platconf.services.reporter import ReportService
from platconf.services.status_store import StatusStore
from platconf.utils.logging import setup_logger

logger = logging.getLogger("platconf.update")


async def execute(
    settings: UpdateSettings,
    status_store: Optional[StatusStore] = None,
    pipeline: Optional[UpdatePipeline] = None,
    lock: Optional[UpdateLock] = None,
) -> int:
    """Validate, lock, run the pipeline and report the outcome.

    Args:
        settings: Resolved update settings
        status_store: Store for this run (a new one if None)
        pipeline: UpdatePipeline to run (built from settings if None)
        lock: UpdateLock guarding the run (built from settings if None)

    Returns:
        Process exit code, 0 on success and 1 on any failure
    """
    status_store = status_store or StatusStore()
    if pipeline is None:
        reporter = ReportService(settings.status_socket) if settings.status_socket else None
        pipeline = UpdatePipeline(settings, status_store, reporter=reporter)
    lock = lock or UpdateLock(settings.lock_path)

    try:
        pipeline.validate()
    except ConfigurationError as e:
        logger.error(str(e))
        print(e, file=sys.stderr)
        return 1

    try:
        lock.try_acquire()
    except LockContentionError as e:
        logger.error(f"another platconf instance is already running an update: {e}")
        return 1
    except OSError as e:
        logger.error(f"Failed to obtain lock {settings.lock_path}: {e}")
        return 1

    try:
        await pipeline.run()
    except PlatconfError as e:
        await _report_failure(pipeline, e)
        return 1
    except Exception as e:
        logger.error(f"Update failed unexpectedly: {e}", exc_info=True)
        await _report_failure(pipeline, e)
        return 1
    finally:
        lock.release()

    logger.info("Update finished")
    return 0


async def _report_failure(pipeline: UpdatePipeline, error: BaseException) -> None:
    message = str(error)
    logger.error(f"Update failed: {message}")
    await pipeline.process_manager.set_button(ButtonColor.ERROR)
    await pipeline.set_status(PhaseEnum.FAILED.value, what=message)
    print(message, file=sys.stderr)


def main() -> None:
    """Entry point for ``platconf-update``."""
    try:
        settings = UpdateSettings.from_env()
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        sys.exit(1)

    setup_logger("platconf", settings.log_file, level=logging.INFO)
    sys.exit(asyncio.run(execute(settings)))


if __name__ == "__main__":
    main()
