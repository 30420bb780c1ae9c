"""
Container runtime access through the docker CLI.

All calls go through ``subprocess.run`` with captured text output so tests can
patch a single function. Failing commands raise ``CommandError`` when
``check`` is set; the retry engine treats that as a transient failure.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Optional

from . import log
from .config_constants import COMPOSE_FILE
from .errors import CommandError


def run_cmd(cmd: list[str], cwd=None, check: bool = True, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run a command and return the result."""
    log.debug(f"Running: {' '.join(cmd)}")
    result = subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    if check and result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stderr or "")
    return result


def _lines(output: str | None) -> list[str]:
    return [line.strip() for line in (output or "").splitlines() if line.strip()]


class DockerRuntime:
    """Thin wrapper over the docker and compose CLIs."""

    def __init__(self, project_dir: Path | str) -> None:
        self.project_dir = Path(project_dir)
        self._compose_cmd: Optional[list[str]] = None

    # ------------------------------------------------------------------
    # Daemon and tooling
    # ------------------------------------------------------------------

    def installed(self) -> bool:
        return shutil.which("docker") is not None

    def daemon_ready(self) -> bool:
        result = run_cmd(["docker", "info"], check=False)
        return result.returncode == 0

    def compose_command(self) -> list[str]:
        """Prefer ``docker compose`` (v2); fall back to legacy ``docker-compose``."""
        if self._compose_cmd is not None:
            return self._compose_cmd

        result = run_cmd(["docker", "compose", "version"], check=False)
        if result.returncode == 0:
            self._compose_cmd = ["docker", "compose"]
        elif shutil.which("docker-compose"):
            legacy = run_cmd(["docker-compose", "version"], check=False)
            if legacy.returncode != 0:
                raise CommandError(["docker-compose", "version"], legacy.returncode, legacy.stderr or "")
            self._compose_cmd = ["docker-compose"]
        else:
            raise CommandError(["docker", "compose", "version"], result.returncode, "Docker Compose is not available")
        log.debug(f"Using compose command: {' '.join(self._compose_cmd)}")
        return self._compose_cmd

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def container_names(self) -> list[str]:
        result = run_cmd(["docker", "ps", "-a", "--format", "{{.Names}}"])
        return _lines(result.stdout)

    def volume_names(self) -> list[str]:
        result = run_cmd(["docker", "volume", "ls", "--format", "{{.Name}}"])
        return _lines(result.stdout)

    def network_exists(self, name: str) -> bool:
        result = run_cmd(["docker", "network", "inspect", name], check=False)
        return result.returncode == 0

    def container_health(self, container_name: str) -> tuple[Optional[bool], str]:
        """
        Check if a container is running and healthy.

        Returns (True, msg) when healthy or running without a healthcheck,
        (None, msg) while the healthcheck is still starting and (False, msg)
        otherwise.
        """
        result = run_cmd(["docker", "inspect", "--format={{.State.Status}}", container_name], check=False)
        if result.returncode != 0:
            return False, "Not found"

        status = result.stdout.strip()
        if status != "running":
            return False, f"Status: {status}"

        result = run_cmd(
            ["docker", "inspect", "--format={{if .State.Health}}{{.State.Health.Status}}{{end}}", container_name],
            check=False,
        )
        if result.returncode == 0 and result.stdout.strip():
            health = result.stdout.strip()
            if health == "healthy":
                return True, "Running (healthy)"
            if health == "starting":
                return None, "Running (starting)"
            return False, f"Running ({health})"

        return True, "Running"

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def ensure_network(self, network_name: str) -> None:
        """Ensure the shared bridge network exists."""
        if not network_name:
            raise ValueError("network_name is required")

        if self.network_exists(network_name):
            log.info(f"Network '{network_name}' already exists")
            return
        log.info(f"Creating Docker network '{network_name}'...")
        run_cmd(["docker", "network", "create", "--driver", "bridge", network_name])
        log.success(f"Network '{network_name}' created")

    def remove_container(self, name: str) -> None:
        run_cmd(["docker", "rm", "-f", name])

    def remove_volume(self, name: str) -> None:
        run_cmd(["docker", "volume", "rm", "-f", name])

    def remove_network(self, name: str) -> None:
        if self.network_exists(name):
            run_cmd(["docker", "network", "rm", name])

    def fix_volume_permissions(self, volume: str, owner: str) -> None:
        """Create ``volume`` if needed and chown its root with a throwaway container."""
        run_cmd(["docker", "volume", "create", volume])
        run_cmd([
            "docker", "run", "--rm",
            "-v", f"{volume}:/data",
            "alpine",
            "chown", "-R", owner, "/data",
        ])

    # ------------------------------------------------------------------
    # Compose
    # ------------------------------------------------------------------

    def compose(self, *args: str, check: bool = True, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        cmd = [*self.compose_command(), "-f", COMPOSE_FILE, *args]
        return run_cmd(cmd, cwd=self.project_dir, check=check, timeout=timeout)

    def compose_file_exists(self) -> bool:
        return (self.project_dir / COMPOSE_FILE).is_file()

    def pull(self, services: list[str]) -> None:
        if services:
            self.compose("pull", *services)

    def build(self, service: str) -> None:
        self.compose("build", "--pull", service)

    def up(self, service: str) -> None:
        self.compose("up", "-d", "--no-deps", service)

    def down(self, remove_volumes: bool = False) -> None:
        args = ["down", "--remove-orphans"]
        if remove_volumes:
            args.append("--volumes")
        self.compose(*args)
