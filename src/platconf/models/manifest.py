"""Release manifest models.

Two document versions are published by the build server:

    V1  [{"build": 1, "codename": "...", "url": "...", "published_at": "...",
          "images": {"quay.io/org/name": "tag", ...}}]
    V2  {"build": 1, "codename": "...", "url": "...", "published_at": "...",
         "images": [{"name": "quay.io/org/name", "tag": "tag", "pre_download": true}]}

The rest of the pipeline only ever sees V2; ``upgrade_manifest`` is the single
place where a V1 document is turned into one.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ImageRef(BaseModel):
    """Image entry in a V2 manifest."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ..., description="Full image name with registry, without tag",
        examples=["quay.io/experimentalplatform/configure"],
    )
    tag: str = Field(..., description="Image tag", examples=["stable", "1.4.2"])
    pre_download: bool = Field(
        default=False,
        description="Should the image be pulled pre-emptively by the update",
    )

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"


class ReleaseManifestV1(BaseModel):
    """Legacy build manifest (one element of a JSON array)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_version: Literal[1] = Field(default=1, exclude=True)
    build: int = Field(..., description="Build number")
    codename: str = Field(default="", description="Release codename")
    release_notes_url: str = Field(default="", alias="url")
    published_at: str = Field(default="", description="Publication timestamp")
    images: dict[str, str] = Field(
        default_factory=dict, description="Image name to tag mapping"
    )


class ReleaseManifestV2(BaseModel):
    """Current build manifest format."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_version: Literal[2] = Field(default=2, exclude=True)
    build: int = Field(..., description="Build number")
    codename: str = Field(default="", description="Release codename")
    release_notes_url: str = Field(default="", alias="url")
    published_at: str = Field(default="", description="Publication timestamp")
    images: list[ImageRef] = Field(default_factory=list)

    def get_image_by_name(self, name: str) -> Optional[ImageRef]:
        """Return the image with exactly this name, or None if the manifest has none."""
        for image in self.images:
            if image.name == name:
                return image
        return None


ReleaseManifest = Union[ReleaseManifestV1, ReleaseManifestV2]


def upgrade_manifest(manifest: ReleaseManifest) -> ReleaseManifestV2:
    """Convert any manifest version to V2.

    V1 image maps become one ImageRef per entry, all marked for pre-download.
    """
    if isinstance(manifest, ReleaseManifestV2):
        return manifest
    if isinstance(manifest, ReleaseManifestV1):
        return ReleaseManifestV2(
            build=manifest.build,
            codename=manifest.codename,
            release_notes_url=manifest.release_notes_url,
            published_at=manifest.published_at,
            images=[
                ImageRef(name=name, tag=tag, pre_download=True)
                for name, tag in manifest.images.items()
            ],
        )
    raise TypeError(f"Unsupported manifest type: {type(manifest).__name__}")


def get_image_by_name(manifest: ReleaseManifest, name: str) -> Optional[ImageRef]:
    """Look up an image by exact name in a manifest of either version."""
    return upgrade_manifest(manifest).get_image_by_name(name)
