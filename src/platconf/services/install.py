"""Installs the files shipped in the configure image onto the host."""

import json
import logging
import os
import shutil
from pathlib import Path
from string import Template
from typing import Optional

from platconf.errors import StageError
from platconf.models.manifest import ReleaseManifestV2

REQUIRED_PATHS = [
    "etc/protonet",
    "etc/systemd/journald.conf.d",
    "etc/systemd/system",
    "etc/systemd/system/docker.service.d",
    "etc/systemd/system/scripts",
    "etc/udev/rules.d",
    "opt/bin",
]

HOSTNAME_FILE = "etc/protonet/hostname"
DEFAULT_HOSTNAME = "protonet"
RELEASE_FILE = "etc/protonet/system/release"
SYSTEMD_DIR = "etc/systemd/system"
UNIT_PREFIX = "platform-"
UNIT_SUFFIXES = (".service", ".timer", ".path", ".socket")
TEMPLATE_SUFFIX = ".tmpl"


class ConfigTemplate(Template):
    """``{{ name }}`` placeholders; ``$VAR`` in shell-style files is left alone."""

    delimiter = "{{"
    pattern = r"""
    \{\{\s*(?:
        (?P<named>[_a-z][_a-z0-9]*)\s*\}\}  |
        (?P<braced>(?!))                   |
        (?P<escaped>(?!))                  |
        (?P<invalid>)
    )
    """


class InstallService:
    """File-level install steps run by the pipeline.

    Every copy goes through a temporary file followed by a rename, so a
    crash never leaves a half-written file at the destination.
    """

    def __init__(self, root_dir: str = "/"):
        """Initialize install service.

        Args:
            root_dir: Root prefix for all destination paths
        """
        self.logger = logging.getLogger("platconf.install")
        self.root = Path(root_dir)

    def setup_paths(self) -> None:
        """Create the directory structure the release expects."""
        for relative in REQUIRED_PATHS:
            path = self.root / relative
            path.mkdir(mode=0o755, parents=True, exist_ok=True)
            self.logger.debug(f"Ensured directory exists: {path}")

    def seed_hostname(self) -> bool:
        """Write the default hostname file unless one exists.

        Returns:
            True if the file was created
        """
        path = self.root / HOSTNAME_FILE
        if path.exists():
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        self._write_atomic(path, DEFAULT_HOSTNAME.encode(), 0o644)
        self.logger.info(f"Seeded default hostname in {path}")
        return True

    def setup_utility_scripts(self, extract_dir: Path) -> list[Path]:
        return self._install_dir(
            extract_dir / "scripts", self.root / SYSTEMD_DIR / "scripts", 0o755
        )

    def setup_binaries(self, extract_dir: Path) -> list[Path]:
        return self._install_dir(extract_dir / "binaries", self.root / "opt/bin", 0o755)

    def setup_udev(self, extract_dir: Path) -> list[Path]:
        return self._install_dir(extract_dir / "udev", self.root / "etc/udev/rules.d", 0o644)

    def setup_systemd(self, extract_dir: Path) -> list[Path]:
        return self._install_dir(extract_dir / "services", self.root / SYSTEMD_DIR, 0o644)

    def render_templates(
        self, extract_dir: Path, manifest: ReleaseManifestV2, channel: str
    ) -> list[Path]:
        """Render ``config/**/*.tmpl`` into the same relative path under root.

        Placeholders use ``{{ name }}`` syntax, anything else (shell
        ``$VAR`` included) is copied as is. Available names: build, codename,
        channel, published_at, release_notes_url, plus one ``tag_<image>``
        entry per manifest image (image basename, dashes as underscores).

        Raises:
            StageError: If a template references an unknown placeholder
        """
        source_dir = extract_dir / "config"
        if not source_dir.is_dir():
            self.logger.info(f"No templates in {source_dir}")
            return []

        variables = self._template_variables(manifest, channel)
        rendered = []
        for template_path in sorted(source_dir.rglob(f"*{TEMPLATE_SUFFIX}")):
            relative = template_path.relative_to(source_dir).with_suffix("")
            destination = self.root / relative
            template = ConfigTemplate(template_path.read_text(encoding="utf-8"))
            try:
                content = template.substitute(variables)
            except KeyError as e:
                raise StageError(f"template {template_path}: unknown placeholder {e}") from e
            except ValueError as e:
                raise StageError(f"template {template_path}: {e}") from e
            destination.parent.mkdir(parents=True, exist_ok=True)
            self._write_atomic(destination, content.encode("utf-8"), 0o644)
            rendered.append(destination)
            self.logger.debug(f"Rendered {template_path.name} to {destination}")

        self.logger.info(f"Rendered {len(rendered)} templates")
        return rendered

    def cleanup_systemd(self, extract_dir: Path) -> list[Path]:
        """Remove platform units that the new release no longer ships."""
        shipped = self._names(extract_dir / "services")
        removed = []
        for unit in sorted((self.root / SYSTEMD_DIR).glob(f"{UNIT_PREFIX}*")):
            if not unit.is_file() or unit.suffix not in UNIT_SUFFIXES:
                continue
            if unit.name in shipped:
                continue
            unit.unlink()
            removed.append(unit)
            self.logger.info(f"Removed obsolete unit {unit.name}")
        return removed

    def setup_channel_file(self, channel: str, path: Optional[Path] = None) -> Path:
        path = path or self.root / "etc/protonet/system/channel"
        path.parent.mkdir(parents=True, exist_ok=True)
        self._write_atomic(path, f"{channel}\n".encode(), 0o644)
        self.logger.info(f"Persisted channel '{channel}' to {path}")
        return path

    def write_release_file(self, manifest: ReleaseManifestV2, channel: str) -> Path:
        """Record what was installed, used by finalize."""
        path = self.root / RELEASE_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "build": manifest.build,
            "codename": manifest.codename,
            "channel": channel,
            "published_at": manifest.published_at,
        }
        self._write_atomic(path, json.dumps(payload, indent=2).encode(), 0o644)
        return path

    def _template_variables(self, manifest: ReleaseManifestV2, channel: str) -> dict:
        variables = {
            "build": str(manifest.build),
            "codename": manifest.codename,
            "channel": channel,
            "published_at": manifest.published_at,
            "release_notes_url": manifest.release_notes_url,
        }
        for image in manifest.images:
            key = image.name.rsplit("/", 1)[-1].replace("-", "_").replace(".", "_")
            variables[f"tag_{key}"] = image.tag
        return variables

    @staticmethod
    def _names(directory: Path) -> set[str]:
        if not directory.is_dir():
            return set()
        return {p.name for p in directory.iterdir() if p.is_file()}

    def _install_dir(self, source_dir: Path, target_dir: Path, mode: int) -> list[Path]:
        if not source_dir.is_dir():
            self.logger.warning(f"Nothing to install, {source_dir} does not exist")
            return []

        target_dir.mkdir(parents=True, exist_ok=True)
        installed = []
        for source in sorted(p for p in source_dir.iterdir() if p.is_file()):
            destination = target_dir / source.name
            self._copy_atomic(source, destination, mode)
            installed.append(destination)

        self.logger.info(f"Installed {len(installed)} files into {target_dir}")
        return installed

    def _copy_atomic(self, source: Path, destination: Path, mode: int) -> None:
        tmp_path = destination.parent / f"{destination.name}.tmp"
        try:
            shutil.copyfile(source, tmp_path)
            os.chmod(tmp_path, mode)
            tmp_path.replace(destination)
            self.logger.debug(f"Installed {source.name} to {destination}")
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

    def _write_atomic(self, destination: Path, content: bytes, mode: int) -> None:
        tmp_path = destination.parent / f"{destination.name}.tmp"
        try:
            tmp_path.write_bytes(content)
            os.chmod(tmp_path, mode)
            tmp_path.replace(destination)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
