#!/usr/bin/env python3
"""
Docker CLI wrapper tests (subprocess mocked).
"""

from pathlib import Path
from unittest.mock import MagicMock, patch
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from n8nstack.errors import CommandError  # noqa: E402
from n8nstack.runtime import DockerRuntime, run_cmd  # noqa: E402


def _result(returncode=0, stdout="", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


class TestRunCmd:
    def test_raises_on_failure(self):
        with patch("subprocess.run", return_value=_result(1, stderr="no such image")):
            with pytest.raises(CommandError, match="no such image") as excinfo:
                run_cmd(["docker", "pull", "x"])

        assert excinfo.value.returncode == 1
        assert excinfo.value.cmd == ["docker", "pull", "x"]

    def test_no_raise_when_unchecked(self):
        with patch("subprocess.run", return_value=_result(3)):
            assert run_cmd(["false"], check=False).returncode == 3


class TestContainerHealth:
    def _health(self, *results):
        with patch("subprocess.run", side_effect=list(results)):
            return DockerRuntime("/tmp").container_health("n8n")

    def test_missing_container(self):
        assert self._health(_result(1)) == (False, "Not found")

    def test_stopped_container(self):
        assert self._health(_result(0, "exited\n")) == (False, "Status: exited")

    def test_healthy(self):
        assert self._health(_result(0, "running\n"), _result(0, "healthy\n")) == (True, "Running (healthy)")

    def test_starting(self):
        assert self._health(_result(0, "running\n"), _result(0, "starting\n")) == (None, "Running (starting)")

    def test_unhealthy(self):
        assert self._health(_result(0, "running\n"), _result(0, "unhealthy\n")) == (False, "Running (unhealthy)")

    def test_running_without_healthcheck(self):
        assert self._health(_result(0, "running\n"), _result(0, "\n")) == (True, "Running")


class TestNetwork:
    def test_creates_missing_network(self):
        with patch("subprocess.run", side_effect=[_result(1), _result(0)]) as mock_run:
            DockerRuntime("/tmp").ensure_network("n8n_network")

        create = mock_run.call_args_list[1].args[0]
        assert create == ["docker", "network", "create", "--driver", "bridge", "n8n_network"]

    def test_existing_network_left_alone(self):
        with patch("subprocess.run", return_value=_result(0)) as mock_run:
            DockerRuntime("/tmp").ensure_network("n8n_network")

        assert mock_run.call_count == 1

    def test_network_name_required(self):
        with pytest.raises(ValueError, match="network_name"):
            DockerRuntime("/tmp").ensure_network("")


class TestInspection:
    def test_container_names(self):
        with patch("subprocess.run", return_value=_result(0, "n8n\ncaddy\n\n")):
            assert DockerRuntime("/tmp").container_names() == ["n8n", "caddy"]

    def test_volume_names(self):
        with patch("subprocess.run", return_value=_result(0, "n8n_data\n")) as mock_run:
            assert DockerRuntime("/tmp").volume_names() == ["n8n_data"]

        assert mock_run.call_args.args[0] == ["docker", "volume", "ls", "--format", "{{.Name}}"]


class TestCompose:
    def test_prefers_compose_plugin(self, tmp_path):
        with patch("subprocess.run", return_value=_result(0)) as mock_run:
            runtime = DockerRuntime(tmp_path)
            runtime.up("n8n")

        cmd = mock_run.call_args.args[0]
        assert cmd == ["docker", "compose", "-f", "docker-compose.yml", "up", "-d", "--no-deps", "n8n"]
        assert mock_run.call_args.kwargs["cwd"] == tmp_path

    def test_falls_back_to_legacy_binary(self, tmp_path):
        with patch("subprocess.run", side_effect=[_result(1), _result(0)]), \
                patch("shutil.which", return_value="/usr/bin/docker-compose"):
            assert DockerRuntime(tmp_path).compose_command() == ["docker-compose"]

    def test_no_compose_available(self, tmp_path):
        with patch("subprocess.run", return_value=_result(1)), patch("shutil.which", return_value=None):
            with pytest.raises(CommandError, match="not available"):
                DockerRuntime(tmp_path).compose_command()

    def test_down_with_volumes(self, tmp_path):
        with patch("subprocess.run", return_value=_result(0)) as mock_run:
            DockerRuntime(tmp_path).down(remove_volumes=True)

        assert mock_run.call_args.args[0][-3:] == ["down", "--remove-orphans", "--volumes"]

    def test_pull_skips_empty_list(self, tmp_path):
        with patch("subprocess.run", return_value=_result(0)) as mock_run:
            DockerRuntime(tmp_path).pull([])

        mock_run.assert_not_called()

    def test_fix_volume_permissions(self, tmp_path):
        with patch("subprocess.run", return_value=_result(0)) as mock_run:
            DockerRuntime(tmp_path).fix_volume_permissions("n8n_data", "1000:1000")

        commands = [call.args[0] for call in mock_run.call_args_list]
        assert commands[0] == ["docker", "volume", "create", "n8n_data"]
        assert commands[1][-4:] == ["chown", "-R", "1000:1000", "/data"]
        assert "n8n_data:/data" in commands[1]
