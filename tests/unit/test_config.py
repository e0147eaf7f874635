"""Unit tests for settings loading."""

import pytest

from platconf.config import (
    DEFAULT_MANIFEST_BASE_URL,
    DEFAULT_STATUS_FILE,
    StatusSettings,
    UpdateSettings,
)
from platconf.errors import ConfigurationError


@pytest.mark.unit
class TestUpdateSettings:

    def test_defaults(self):
        settings = UpdateSettings.from_env(environ={})

        assert settings.channel is None
        assert settings.pullers == 4
        assert settings.pull_retries == 5
        assert settings.manifest_base_url == DEFAULT_MANIFEST_BASE_URL
        assert settings.reboot is True

    def test_environment(self):
        settings = UpdateSettings.from_env(
            environ={
                "PLATCONF_CHANNEL": "beta",
                "PLATCONF_PULLERS": "8",
                "PLATCONF_REBOOT": "false",
                "UNRELATED": "x",
            }
        )

        assert settings.channel == "beta"
        assert settings.pullers == 8
        assert settings.reboot is False

    def test_overrides_win(self):
        settings = UpdateSettings.from_env(
            environ={"PLATCONF_CHANNEL": "beta"}, channel="alpha", pullers=None
        )

        assert settings.channel == "alpha"
        assert settings.pullers == 4

    def test_invalid_value(self):
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            UpdateSettings.from_env(environ={"PLATCONF_PULLERS": "many"})

    def test_invalid_base_url(self):
        with pytest.raises(ConfigurationError):
            UpdateSettings.from_env(environ={"PLATCONF_MANIFEST_BASE_URL": "ftp://x"})

    def test_zero_pullers_is_accepted_here(self):
        # rejected by the pipeline before any work, not at load time
        assert UpdateSettings.from_env(environ={"PLATCONF_PULLERS": "0"}).pullers == 0


@pytest.mark.unit
class TestStatusSettings:

    def test_defaults(self):
        settings = StatusSettings.from_env(environ={})

        assert settings.port == 7887
        assert settings.status_file == DEFAULT_STATUS_FILE

    def test_port_range(self):
        with pytest.raises(ConfigurationError):
            StatusSettings.from_env(environ={"PLATCONF_PORT": "70000"})
