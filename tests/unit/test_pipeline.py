"""Unit tests for UpdatePipeline."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from platconf.config import UpdateSettings
from platconf.errors import (
    ConfigurationError,
    NoSuchChannelError,
    PullExhaustedError,
    StageError,
)
from platconf.models.manifest import ReleaseManifestV2
from platconf.services.install import InstallService
from platconf.services.pipeline import CONFIGURE_IMAGE, UpdatePipeline
from platconf.services.process import ButtonColor


# -----------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    return UpdateSettings(
        root_dir=str(tmp_path / "root"),
        pull_retry_delay=0,
        status_socket=None,
        log_file=None,
    )


@pytest.fixture
def resolver(manifest):
    resolver = MagicMock()
    resolver.resolve_channel.return_value = ("stable", "explicit")
    resolver.fetch_manifest = AsyncMock(return_value=manifest)
    return resolver


@pytest.fixture
def make_pipeline(settings, status_store, resolver, mock_process_manager):
    def factory(**overrides):
        kwargs = dict(
            settings=settings,
            status_store=status_store,
            resolver=resolver,
            process_manager=mock_process_manager,
            install_service=InstallService(settings.root_dir),
        )
        kwargs.update(overrides)
        return UpdatePipeline(**kwargs)

    return factory


@pytest.mark.unit
class TestUpdatePipeline:
    """Test the stage sequence with host commands mocked out."""

    @pytest.mark.asyncio
    async def test_successful_run(self, make_pipeline, mock_process_manager, status_store, settings):
        pipeline = make_pipeline()

        manifest = await pipeline.run()

        assert manifest.build == 1234
        assert status_store.snapshot().status == "done"
        mock_process_manager.set_button.assert_awaited_once_with(ButtonColor.RAINBOW)
        mock_process_manager.extract_image.assert_awaited_once()
        assert mock_process_manager.extract_image.await_args.args[:2] == (
            CONFIGURE_IMAGE,
            "1.4.2",
        )
        mock_process_manager.perform_os_update.assert_awaited_once()
        mock_process_manager.reload_systemd.assert_awaited_once()
        mock_process_manager.reboot.assert_awaited_once()

        root = settings.root_dir
        assert open(f"{root}/etc/protonet/system/channel").read() == "stable\n"
        assert open(f"{root}/etc/protonet/hostname").read() == "protonet"

    @pytest.mark.asyncio
    async def test_only_pre_download_images_pulled(self, make_pipeline, mock_process_manager):
        await make_pipeline().run()

        pulled = [c.args for c in mock_process_manager.pull_image.await_args_list]
        # configure once for extraction, then every pre_download image
        assert pulled.count((CONFIGURE_IMAGE, "1.4.2")) == 2
        assert ("quay.io/experimentalplatform/skvs", "2.0.1") in pulled
        assert ("quay.io/experimentalplatform/monitoring", "0.9.0") not in pulled

    @pytest.mark.asyncio
    async def test_status_sequence(self, make_pipeline):
        reporter = MagicMock()
        reporter.report_status = AsyncMock(return_value=True)
        pipeline = make_pipeline(reporter=reporter)

        await pipeline.run()

        records = [c.args[0] for c in reporter.report_status.await_args_list]
        statuses = [r.status for r in records]
        assert statuses[0] == "preparing"
        assert statuses[-2:] == ["finalizing", "done"]
        pulling = [r for r in records if r.status == "pulling"]
        assert pulling[0].progress == 0.0
        assert pulling[-1].progress == 100.0
        assert pulling[-1].what is not None

    @pytest.mark.asyncio
    async def test_no_reboot_when_disabled(self, make_pipeline, settings, mock_process_manager):
        pipeline = make_pipeline(settings=settings.model_copy(update={"reboot": False}))

        await pipeline.run()

        mock_process_manager.reboot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_os_update_failure_is_not_fatal(self, make_pipeline, mock_process_manager, status_store):
        mock_process_manager.perform_os_update.side_effect = StageError("no update available")

        await make_pipeline().run()

        assert status_store.snapshot().status == "done"

    @pytest.mark.asyncio
    async def test_missing_configure_image(self, make_pipeline, resolver, mock_process_manager):
        resolver.fetch_manifest.return_value = ReleaseManifestV2(build=1, images=[])

        with pytest.raises(StageError, match="configure image data not found"):
            await make_pipeline().run()

        mock_process_manager.extract_image.assert_not_awaited()
        mock_process_manager.reboot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_manifest_error_aborts(self, make_pipeline, resolver, mock_process_manager):
        resolver.fetch_manifest.side_effect = NoSuchChannelError("nightly")

        with pytest.raises(NoSuchChannelError):
            await make_pipeline().run()

        mock_process_manager.pull_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pull_failure_aborts_before_later_stages(
        self, make_pipeline, mock_process_manager, settings
    ):
        async def pull(name, tag):
            if name.endswith("/skvs"):
                raise StageError("manifest unknown")

        mock_process_manager.pull_image.side_effect = pull

        with pytest.raises(PullExhaustedError):
            await make_pipeline().run()

        mock_process_manager.reload_systemd.assert_not_awaited()
        mock_process_manager.reboot.assert_not_awaited()
        # the channel file is written after the pull stage
        assert not (
            InstallService(settings.root_dir).root / "etc/protonet/system/channel"
        ).exists()

    @pytest.mark.asyncio
    async def test_extract_dir_removed(self, make_pipeline, mock_process_manager, tmp_path):
        await make_pipeline().run()

        extract_dir = mock_process_manager.extract_image.await_args.args[2]
        assert not (tmp_path / extract_dir).exists()

    def test_validate_rejects_zero_pullers(self, make_pipeline, settings):
        pipeline = make_pipeline(settings=settings.model_copy(update={"pullers": 0}))

        with pytest.raises(ConfigurationError):
            pipeline.validate()

    def test_validate_rejects_zero_retries(self, make_pipeline, settings):
        pipeline = make_pipeline(settings=settings.model_copy(update={"pull_retries": 0}))

        with pytest.raises(ConfigurationError):
            pipeline.validate()
