"""Settings for the update command and the status service.

Values arrive already resolved (flags or environment). ``from_env`` reads
``PLATCONF_<FIELD>`` variables, anything missing keeps its default.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from platconf.errors import ConfigurationError

DEFAULT_MANIFEST_BASE_URL = "https://raw.githubusercontent.com/protonet/builds/master"
DEFAULT_STATUS_SOCKET = "/run/platconf/status.sock"
DEFAULT_STATUS_FILE = "/etc/protonet/system/configure-script-status"


class _EnvSettings(BaseModel):
    @classmethod
    def from_env(cls, environ: Optional[dict] = None, **overrides):
        """Build settings from PLATCONF_* variables plus explicit overrides.

        Raises:
            ConfigurationError: If a value fails validation
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = f"PLATCONF_{name.upper()}"
            if key in environ:
                values[name] = environ[key]
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


class UpdateSettings(_EnvSettings):
    """Inputs of ``platconf-update``."""

    channel: Optional[str] = Field(None, description="Channel to be installed")
    pullers: int = Field(4, description="Maximum images being pulled at once")
    pull_retries: int = Field(5, description="Maximum number of attempts to pull an image")
    pull_retry_delay: float = Field(2.0, ge=0, description="Seconds between pull attempts")
    root_dir: str = Field("/", description="Root prefix for every installed file")
    lock_path: str = Field("/var/run/platconf.lock")
    manifest_base_url: str = Field(DEFAULT_MANIFEST_BASE_URL, pattern=r"^https?://.+")
    http_timeout: float = Field(30.0, gt=0)
    status_socket: Optional[str] = Field(
        DEFAULT_STATUS_SOCKET,
        description="Status service socket to report to, empty to disable",
    )
    reboot: bool = Field(True, description="Reboot the host after a successful update")
    log_file: Optional[str] = Field("./logs/platconf.log")


class StatusSettings(_EnvSettings):
    """Inputs of ``platconf-status``."""

    host: str = Field("0.0.0.0")
    port: int = Field(7887, ge=1, le=65535, description="Port on which to listen")
    status_socket: str = Field(DEFAULT_STATUS_SOCKET)
    status_file: str = Field(DEFAULT_STATUS_FILE)
    log_file: Optional[str] = Field("./logs/platconf-status.log")
