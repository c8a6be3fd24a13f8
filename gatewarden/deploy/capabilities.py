"""External capabilities the deploy coordinator drives: VCS, build, process manager."""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path

from loguru import logger

from gatewarden.errors import ExternalCommandError

MAX_OUTPUT_CHARS = 10000


class DeployCapabilities(ABC):
    """What the coordinator needs from the outside world.

    Every method raises ExternalCommandError (with captured output) when the
    underlying command fails.
    """

    @abstractmethod
    async def working_tree_status(self) -> str:
        """Uncommitted changes, one per line; empty when the tree is clean."""

    @abstractmethod
    async def head_commit(self) -> str:
        """Current commit hash."""

    @abstractmethod
    async def build(self) -> str:
        """Run the build; returns its output."""

    @abstractmethod
    async def checkout(self, commit: str) -> None:
        """Restore the working tree files of ``commit``."""

    @abstractmethod
    async def restart(self) -> None:
        """Ask the process manager to restart the gateway (normally kills this process)."""

    @abstractmethod
    async def restart_count(self) -> int:
        """Process manager's restart counter for the gateway."""


class ShellDeployCapabilities(DeployCapabilities):
    """Capabilities backed by configured shell commands run in the project directory."""

    def __init__(self, config, project_dir: Path | None = None):
        self.config = config
        self.project_dir = Path(project_dir or config.project_dir).expanduser()
        self.timeout = config.command_timeout_s

    @classmethod
    def from_config(cls, config) -> "ShellDeployCapabilities":
        """Build from the root ``Config``."""
        return cls(config.deploy, project_dir=config.project_path)

    async def _run(self, command: str) -> str:
        logger.debug(f"Deploy: running '{command}' in {self.project_dir}")
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.project_dir),
            )
        except OSError as e:
            raise ExternalCommandError(command, None, str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ExternalCommandError(command, None, f"timed out after {self.timeout:g}s")

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")

        if process.returncode != 0:
            parts = [p for p in (out.strip(), err.strip()) if p]
            output = "\n".join(parts)
            if len(output) > MAX_OUTPUT_CHARS:
                output = output[-MAX_OUTPUT_CHARS:]
            raise ExternalCommandError(command, process.returncode, output)
        return out

    async def working_tree_status(self) -> str:
        return await self._run(self.config.status_command)

    async def head_commit(self) -> str:
        return (await self._run(self.config.head_command)).strip()

    async def build(self) -> str:
        return await self._run(self.config.build_command)

    async def checkout(self, commit: str) -> None:
        await self._run(self.config.checkout_command.format(commit=commit))

    async def restart(self) -> None:
        await self._run(self.config.restart_command.format(app=self.config.app_name))

    async def restart_count(self) -> int:
        """Read ``restart_time`` of our app from the process manager's JSON list (0 if unknown)."""
        try:
            raw = await self._run(self.config.process_list_command)
            processes = json.loads(raw)
        except (ExternalCommandError, json.JSONDecodeError) as e:
            logger.warning(f"Deploy: could not read process list: {e}")
            return 0

        if not isinstance(processes, list):
            return 0
        for proc in processes:
            if isinstance(proc, dict) and proc.get("name") == self.config.app_name:
                count = (proc.get("pm2_env") or {}).get("restart_time", 0)
                return count if isinstance(count, int) else 0
        return 0
