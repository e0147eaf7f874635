"""Bounded concurrent image puller with per-image retry."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from platconf.errors import ConfigurationError, PullExhaustedError
from platconf.models.manifest import ImageRef
from platconf.models.pull import PullJob, PullOutcome
from platconf.models.status import PhaseEnum

PullFunc = Callable[[str, str], Awaitable[None]]
StatusFunc = Callable[[str, Optional[float], Optional[str]], Awaitable[None]]


class ImagePuller:
    """Pulls a set of images with at most ``max_parallel`` pulls in flight.

    Each image is retried up to ``max_retries`` attempts. The first image to
    run out of attempts fails the whole batch: pulls already running are
    allowed to finish but their results are ignored, and images still waiting
    for a slot are not started.
    """

    def __init__(
        self,
        pull: PullFunc,
        on_status: Optional[StatusFunc] = None,
        retry_delay: float = 0.0,
    ):
        """Initialize image puller.

        Args:
            pull: Coroutine function pulling one image, called as pull(name, tag)
            on_status: Coroutine function called as on_status(status, progress, what)
                after every finished image
            retry_delay: Seconds to wait between two attempts of the same image
        """
        self.logger = logging.getLogger("platconf.puller")
        self._pull = pull
        self.on_status = on_status
        self.retry_delay = retry_delay

    async def pull_all(
        self,
        images: Sequence[ImageRef],
        max_parallel: int,
        max_retries: int,
    ) -> list[PullJob]:
        """Pull every image.

        Args:
            images: Images to pull
            max_parallel: Maximum concurrent pulls (>= 1)
            max_retries: Maximum attempts per image (>= 1)

        Returns:
            One PullJob per image, in input order

        Raises:
            ConfigurationError: If max_parallel or max_retries is below 1
            PullExhaustedError: If an image fails all its attempts
        """
        if max_parallel < 1:
            raise ConfigurationError("The maximum number of pullers must be > 0")
        if max_retries < 1:
            raise ConfigurationError("The maximum number of pull attempts must be > 0")

        jobs = [PullJob(image=image) for image in images]
        total = len(jobs)
        if total == 0:
            self.logger.info("No images to pull")
            return jobs

        self.logger.info(
            f"Pulling {total} images, {max_parallel} at once, "
            f"up to {max_retries} attempts each"
        )

        gate = asyncio.Semaphore(max_parallel)
        failed = asyncio.Event()
        done_count = 0

        async def worker(job: PullJob) -> None:
            nonlocal done_count
            async with gate:
                if failed.is_set():
                    return
                try:
                    await self._pull_with_retry(job, max_retries)
                except PullExhaustedError:
                    # set before the slot is released so no waiter starts
                    failed.set()
                    raise
                if failed.is_set():
                    return
                done_count += 1
                await self._report_progress(job, done_count, total)

        tasks = [asyncio.create_task(worker(job)) for job in jobs]
        first_error: Optional[BaseException] = None
        try:
            for next_done in asyncio.as_completed(tasks):
                try:
                    await next_done
                except PullExhaustedError as e:
                    if first_error is None:
                        first_error = e
                        self.logger.error(f"Pull stage failed: {e}")
        finally:
            # fan-in: nothing leaves this method still running
            await asyncio.gather(*tasks, return_exceptions=True)

        if first_error is not None:
            raise first_error

        self.logger.info(f"Pulled all {total} images")
        return jobs

    async def _pull_with_retry(self, job: PullJob, max_retries: int) -> None:
        image = job.image
        while True:
            job.attempt_count += 1
            try:
                await self._pull(image.name, image.tag)
            except Exception as e:
                if job.attempt_count >= max_retries:
                    job.outcome = PullOutcome.EXHAUSTED
                    raise PullExhaustedError(image.reference, job.attempt_count, e) from e

                job.outcome = PullOutcome.RETRYABLE_FAILURE
                self.logger.warning(
                    f"Pull of {image.reference} failed "
                    f"(attempt {job.attempt_count}/{max_retries}): {e}"
                )
                if self.retry_delay:
                    await asyncio.sleep(self.retry_delay)
                continue

            job.outcome = PullOutcome.SUCCESS
            self.logger.info(f"Pulled {image.reference} (attempt {job.attempt_count})")
            return

    async def _report_progress(self, job: PullJob, done: int, total: int) -> None:
        if self.on_status is None:
            return
        await self.on_status(
            PhaseEnum.PULLING.value, round(done / total * 100, 2), job.image.reference
        )
