"""Update pipeline: the ordered stages of one platform update."""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from platconf.config import UpdateSettings
from platconf.errors import ConfigurationError, StageError
from platconf.models.manifest import ReleaseManifestV2
from platconf.models.status import PhaseEnum, StatusRecord
from platconf.services.install import InstallService
from platconf.services.process import ButtonColor, ProcessManager
from platconf.services.puller import ImagePuller
from platconf.services.reporter import ReportService
from platconf.services.resolver import ReleaseResolver
from platconf.services.status_store import StatusStore

CONFIGURE_IMAGE = "quay.io/experimentalplatform/configure"


class UpdatePipeline:
    """Runs the update stages in order and stops at the first failure.

    The pipeline does not take the update lock itself, the caller holds it
    for the duration of ``run``.
    """

    def __init__(
        self,
        settings: UpdateSettings,
        status_store: StatusStore,
        resolver: Optional[ReleaseResolver] = None,
        process_manager: Optional[ProcessManager] = None,
        install_service: Optional[InstallService] = None,
        puller: Optional[ImagePuller] = None,
        reporter: Optional[ReportService] = None,
    ):
        """Initialize update pipeline.

        Args:
            settings: Resolved update settings
            status_store: Store receiving every status write of this run
            resolver: ReleaseResolver (built from settings if None)
            process_manager: ProcessManager for host commands (default if None)
            install_service: InstallService (built from settings if None)
            puller: ImagePuller (pulls through process_manager if None)
            reporter: Optional ReportService forwarding status to the status service
        """
        self.logger = logging.getLogger("platconf.pipeline")
        self.settings = settings
        self.status_store = status_store
        self.resolver = resolver or ReleaseResolver(
            root_dir=settings.root_dir,
            base_url=settings.manifest_base_url,
            timeout=settings.http_timeout,
        )
        self.process_manager = process_manager or ProcessManager()
        self.install_service = install_service or InstallService(settings.root_dir)
        self.puller = puller or ImagePuller(
            self.process_manager.pull_image,
            on_status=self.set_status,
            retry_delay=settings.pull_retry_delay,
        )
        self.reporter = reporter

    def validate(self) -> None:
        """Check settings before any work is done.

        Raises:
            ConfigurationError: If pullers or pull_retries is below 1
        """
        if self.settings.pullers < 1:
            raise ConfigurationError("The maximum number of pullers must be > 0")
        if self.settings.pull_retries < 1:
            raise ConfigurationError("The maximum number of pull attempts must be > 0")

    async def set_status(
        self,
        status: str,
        progress: Optional[float] = None,
        what: Optional[str] = None,
    ) -> None:
        self.status_store.set(status, progress, what)
        if self.reporter is not None:
            await self.reporter.report_status(
                StatusRecord(status=status, progress=progress, what=what)
            )

    async def run(self) -> ReleaseManifestV2:
        """Run every stage.

        Returns:
            The installed manifest

        Raises:
            PlatconfError: From the first failing stage
        """
        self.validate()

        # prepare
        await self.process_manager.set_button(ButtonColor.RAINBOW)
        await self.set_status(PhaseEnum.PREPARING.value)

        channel, source = self.resolver.resolve_channel(self.settings.channel)
        self.logger.info(f"Using channel '{channel}' (source: {source})")

        manifest = await self.resolver.fetch_manifest(channel)

        configure = manifest.get_image_by_name(CONFIGURE_IMAGE)
        if configure is None:
            raise StageError("configure image data not found in the manifest")

        extract_dir = await self._extract_configure(configure.tag)
        try:
            await self._install(manifest, channel, extract_dir)
        finally:
            shutil.rmtree(extract_dir, ignore_errors=True)

        await self.set_status(PhaseEnum.FINALIZING.value)
        await self._finalize(manifest, channel)
        await self.set_status(PhaseEnum.DONE.value)

        if self.settings.reboot:
            self.logger.info("Triggering a reboot")
            await self.process_manager.reboot()
        else:
            self.logger.info("Reboot disabled, skipping")

        return manifest

    async def _install(
        self, manifest: ReleaseManifestV2, channel: str, extract_dir: Path
    ) -> None:
        install = self.install_service

        self.logger.info("Creating folders in '/etc/systemd' in case they don't exist yet.")
        install.setup_paths()
        install.seed_hostname()

        try:
            await self.process_manager.perform_os_update()
        except StageError as e:
            # also raised on a "no update available" result
            self.logger.warning(f"update-engine returned error: {e}")

        install.setup_utility_scripts(extract_dir)
        install.setup_binaries(extract_dir)

        await self._pull_images(manifest)

        install.render_templates(extract_dir, manifest, channel)
        install.cleanup_systemd(extract_dir)
        install.setup_udev(extract_dir)
        install.setup_systemd(extract_dir)
        install.setup_channel_file(channel)

    async def _pull_images(self, manifest: ReleaseManifestV2) -> None:
        images = [image for image in manifest.images if image.pre_download]
        skipped = len(manifest.images) - len(images)
        if skipped:
            self.logger.info(f"Skipping {skipped} images not marked for pre-download")

        await self.set_status(PhaseEnum.PULLING.value, progress=0.0)
        await self.puller.pull_all(
            images,
            max_parallel=self.settings.pullers,
            max_retries=self.settings.pull_retries,
        )

    async def _extract_configure(self, tag: str) -> Path:
        extract_dir = Path(tempfile.mkdtemp(prefix="platconf_"))
        try:
            self.logger.info("Pulling configure image")
            await self.process_manager.pull_image(CONFIGURE_IMAGE, tag)

            self.logger.info("Extracting configure image")
            await self.process_manager.extract_image(CONFIGURE_IMAGE, tag, str(extract_dir))
        except Exception:
            shutil.rmtree(extract_dir, ignore_errors=True)
            raise
        return extract_dir

    async def _finalize(self, manifest: ReleaseManifestV2, channel: str) -> None:
        path = self.install_service.write_release_file(manifest, channel)
        self.logger.info(f"Recorded release build {manifest.build} in {path}")
        await self.process_manager.reload_systemd()
