"""Tests for shell-backed deploy capabilities."""

import json
import shlex

import pytest

from gatewarden.config.schema import DeployConfig
from gatewarden.deploy.capabilities import ShellDeployCapabilities
from gatewarden.errors import ExternalCommandError


def _caps(tmp_path, **overrides) -> ShellDeployCapabilities:
    return ShellDeployCapabilities(DeployConfig(**overrides), project_dir=tmp_path)


class TestShellDeployCapabilities:
    @pytest.mark.asyncio
    async def test_runs_in_project_dir(self, tmp_path):
        caps = _caps(tmp_path, head_command="pwd")
        assert await caps.head_commit() == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_failure_carries_output_and_code(self, tmp_path):
        caps = _caps(tmp_path, build_command="echo 'error TS2304' >&2; exit 2")
        with pytest.raises(ExternalCommandError) as exc_info:
            await caps.build()
        assert exc_info.value.returncode == 2
        assert "TS2304" in exc_info.value.output
        assert "exited with code 2" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        caps = _caps(tmp_path, build_command="sleep 5", command_timeout_s=0.1)
        with pytest.raises(ExternalCommandError, match="could not be run"):
            await caps.build()

    @pytest.mark.asyncio
    async def test_checkout_and_restart_templates(self, tmp_path):
        log = tmp_path / "calls.log"
        caps = _caps(
            tmp_path,
            checkout_command=f"echo checkout {{commit}} >> {log}",
            restart_command=f"echo restart {{app}} >> {log}",
            app_name="ai-assistant",
        )
        await caps.checkout("abc123")
        await caps.restart()
        assert log.read_text().splitlines() == ["checkout abc123", "restart ai-assistant"]

    @pytest.mark.asyncio
    async def test_restart_count_from_process_list(self, tmp_path):
        processes = [
            {"name": "other", "pm2_env": {"restart_time": 9}},
            {"name": "gateway", "pm2_env": {"restart_time": 4}},
        ]
        listing = tmp_path / "jlist.json"
        listing.write_text(json.dumps(processes))
        caps = _caps(tmp_path, process_list_command=f"cat {shlex.quote(str(listing))}")
        assert await caps.restart_count() == 4

    @pytest.mark.asyncio
    async def test_restart_count_unknown_is_zero(self, tmp_path):
        assert await _caps(tmp_path, process_list_command="echo not-json").restart_count() == 0
        assert await _caps(tmp_path, process_list_command="exit 1").restart_count() == 0
        assert await _caps(tmp_path, process_list_command="echo '[]'").restart_count() == 0
