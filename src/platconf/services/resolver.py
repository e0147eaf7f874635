"""Release resolver: channel selection and manifest download."""

import logging
from pathlib import Path
from typing import Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from platconf.config import DEFAULT_MANIFEST_BASE_URL
from platconf.errors import ManifestFetchError, NoSuchChannelError, SchemaError
from platconf.models.manifest import (
    ReleaseManifestV1,
    ReleaseManifestV2,
    upgrade_manifest,
)

DEFAULT_CHANNEL = "stable"
CHANNEL_FILE = "etc/protonet/system/channel"

_V1_DOCUMENT = TypeAdapter(list[ReleaseManifestV1])


class ReleaseResolver:
    """Resolves the update channel and fetches its release manifest."""

    def __init__(
        self,
        root_dir: str = "/",
        base_url: str = DEFAULT_MANIFEST_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize release resolver.

        Args:
            root_dir: Root prefix the channel file lives under
            base_url: Manifest server base URL
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.logger = logging.getLogger("platconf.resolver")
        self.channel_file = Path(root_dir) / CHANNEL_FILE
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def resolve_channel(self, explicit: Optional[str] = None) -> tuple[str, str]:
        """Pick the channel to install.

        Precedence: explicit value, then the on-disk channel file, then the
        built-in default.

        Returns:
            (channel, source) where source is "explicit", "file" or "default"
        """
        if explicit:
            return explicit, "explicit"

        try:
            channel = self.channel_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            channel = ""
        except OSError as e:
            self.logger.warning(f"Failed to read channel file {self.channel_file}: {e}")
            channel = ""

        if channel:
            return channel, "file"
        return DEFAULT_CHANNEL, "default"

    def v2_url(self, channel: str) -> str:
        return f"{self.base_url}/manifest-v2/{channel}.json"

    def v1_url(self, channel: str) -> str:
        return f"{self.base_url}/{channel}.json"

    async def fetch_manifest(self, channel: str) -> ReleaseManifestV2:
        """Fetch the release manifest of a channel.

        The V2 document is tried first. Any failure there causes exactly one
        attempt at the legacy V1 document, which is upgraded to V2.

        Raises:
            NoSuchChannelError: If the V1 endpoint answers 404
            ManifestFetchError: If the V1 request fails otherwise
            SchemaError: If the V1 document cannot be decoded
        """
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                return await self._fetch_v2(client, channel)
            except (httpx.HTTPError, ManifestFetchError, SchemaError) as e:
                self.logger.warning(f"Couldn't fetch manifest v2: {e}")
                self.logger.info("Trying manifest v1")

            manifest_v1 = await self._fetch_v1(client, channel)

        manifest = upgrade_manifest(manifest_v1)
        self.logger.info(
            f"Upgraded v1 manifest: build={manifest.build}, images={len(manifest.images)}"
        )
        return manifest

    async def _fetch_v2(self, client: httpx.AsyncClient, channel: str) -> ReleaseManifestV2:
        data = await self._fetch_json(client, self.v2_url(channel), channel)
        try:
            manifest = ReleaseManifestV2.model_validate_json(data)
        except ValidationError as e:
            raise SchemaError(f"Invalid v2 manifest for channel '{channel}': {e}") from e

        self.logger.info(
            f"Fetched v2 manifest: channel={channel}, build={manifest.build}, "
            f"codename={manifest.codename}, images={len(manifest.images)}"
        )
        return manifest

    async def _fetch_v1(self, client: httpx.AsyncClient, channel: str) -> ReleaseManifestV1:
        try:
            data = await self._fetch_json(client, self.v1_url(channel), channel)
        except httpx.HTTPError as e:
            raise ManifestFetchError(f"Failed to fetch v1 manifest: {e}") from e

        try:
            manifests = _V1_DOCUMENT.validate_json(data)
        except ValidationError as e:
            raise SchemaError(f"Invalid v1 manifest for channel '{channel}': {e}") from e

        if len(manifests) != 1:
            raise SchemaError(f"the length of the manifest array is {len(manifests)}")

        return manifests[0]

    async def _fetch_json(self, client: httpx.AsyncClient, url: str, channel: str) -> bytes:
        self.logger.debug(f"GET {url}")
        response = await client.get(url)

        if response.status_code == httpx.codes.NOT_FOUND:
            raise NoSuchChannelError(channel)
        if not response.is_success:
            raise ManifestFetchError(f"response status code was {response.status_code}")

        return response.content
