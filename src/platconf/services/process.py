"""Host commands used by the update pipeline (docker, update engine, reboot)."""

import asyncio
import logging
from typing import Optional

from platconf.errors import StageError


class ButtonColor:
    """Front-panel indicator states."""

    RAINBOW = "rainbow"
    ERROR = "error"


class ProcessManager:
    """Runs the external programs the update relies on."""

    def __init__(self, docker_binary: str = "docker"):
        """Initialize process manager.

        Args:
            docker_binary: Docker CLI used for pulls and image extraction
        """
        self.logger = logging.getLogger("platconf.process")
        self.docker = docker_binary

    async def run(self, *command: str) -> str:
        """Run a command and return its stdout.

        Raises:
            StageError: If the command exits non-zero or cannot be started
        """
        self.logger.debug(f"Running: {' '.join(command)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise StageError(f"Failed to run {command[0]}: {e}") from e

        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            raise StageError(
                f"{' '.join(command)} failed: "
                f"exit code {process.returncode}, "
                f"stderr: {stderr.decode(errors='replace').strip()}"
            )

        return stdout.decode(errors="replace")

    async def pull_image(self, name: str, tag: str) -> None:
        """Pull one image (a single attempt, retries are the caller's business)."""
        await self.run(self.docker, "pull", f"{name}:{tag}")

    async def extract_image(self, name: str, tag: str, target_dir: str) -> None:
        """Unpack the filesystem of an image into target_dir."""
        container_id = (
            await self.run(self.docker, "create", f"{name}:{tag}", "/bin/true")
        ).strip()
        try:
            await self.run(self.docker, "cp", f"{container_id}:/.", target_dir)
        finally:
            try:
                await self.run(self.docker, "rm", "--force", container_id)
            except StageError as e:
                self.logger.warning(f"Failed to remove container {container_id}: {e}")

    async def perform_os_update(self) -> None:
        """Ask the OS update engine to install a pending update.

        The engine also exits non-zero when there is nothing to update.
        """
        await self.run("update_engine_client", "-update")

    async def reload_systemd(self) -> None:
        await self.run("systemctl", "daemon-reload")

    async def reboot(self, delay_minutes: int = 1) -> None:
        await self.run("/usr/sbin/shutdown", "--reboot", str(delay_minutes))

    async def set_button(self, color: str) -> Optional[str]:
        """Set the front-panel indicator. Failure is logged and ignored."""
        try:
            return await self.run("/usr/bin/button", color)
        except StageError as e:
            self.logger.warning(f"Failed to set button to {color}: {e}")
            return None
