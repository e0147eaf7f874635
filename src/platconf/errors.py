"""Exception types raised by the update pipeline."""


class PlatconfError(Exception):
    """Base class for every error the update command reports as fatal."""


class ConfigurationError(PlatconfError):
    """Invalid settings, detected before any work is done."""


class LockContentionError(PlatconfError):
    """The update lock is held by another live process."""

    def __init__(self, path: str, owner_pid: int):
        super().__init__(f"update lock {path} is held by running process {owner_pid}")
        self.path = path
        self.owner_pid = owner_pid


class ManifestFetchError(PlatconfError):
    """The release manifest could not be downloaded."""


class NoSuchChannelError(ManifestFetchError):
    """The manifest server answered 404 for the channel."""

    def __init__(self, channel: str):
        super().__init__(f"no such channel: '{channel}'")
        self.channel = channel


class SchemaError(PlatconfError):
    """A manifest document does not have the expected shape."""


class PullExhaustedError(PlatconfError):
    """An image failed every pull attempt it was allowed."""

    def __init__(self, image: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"failed to pull {image} after {attempts} attempts: {last_error}"
        )
        self.image = image
        self.attempts = attempts
        self.last_error = last_error


class StageError(PlatconfError):
    """A pipeline stage failed."""
