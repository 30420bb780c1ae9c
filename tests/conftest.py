"""
Shared fakes for the n8n-stack tests.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from n8nstack.config import DEFAULTS  # noqa: E402
from n8nstack.config import StackConfig  # noqa: E402
from n8nstack.config_constants import COMPOSE_FILE, KNOWN_CONTAINERS  # noqa: E402
from n8nstack.errors import CommandError  # noqa: E402


class FakeRuntime:
    """In-memory stand-in for DockerRuntime."""

    def __init__(self, project_dir, containers=(), volumes=(), networks=(), installed=True):
        self.project_dir = Path(project_dir)
        self.containers = set(containers)
        self.volumes = set(volumes)
        self.networks = set(networks)
        self._installed = installed
        self.calls = []
        self.health = {}
        self.fail_up = set()

    def installed(self):
        return self._installed

    def daemon_ready(self):
        return True

    def compose_command(self):
        return ["docker", "compose"]

    def container_names(self):
        return sorted(self.containers)

    def volume_names(self):
        return sorted(self.volumes)

    def network_exists(self, name):
        return name in self.networks

    def container_health(self, name):
        return self.health.get(name, (True, "Running (healthy)"))

    def ensure_network(self, name):
        self.calls.append(("ensure_network", name))
        self.networks.add(name)

    def remove_container(self, name):
        self.calls.append(("remove_container", name))
        self.containers.discard(name)

    def remove_volume(self, name):
        self.calls.append(("remove_volume", name))
        self.volumes.discard(name)

    def remove_network(self, name):
        self.calls.append(("remove_network", name))
        self.networks.discard(name)

    def fix_volume_permissions(self, volume, owner):
        self.calls.append(("fix_volume_permissions", volume, owner))
        self.volumes.add(volume)

    def compose_file_exists(self):
        return (self.project_dir / COMPOSE_FILE).is_file()

    def pull(self, services):
        self.calls.append(("pull", tuple(services)))

    def build(self, service):
        self.calls.append(("build", service))

    def up(self, service):
        self.calls.append(("up", service))
        if service in self.fail_up:
            raise CommandError(["docker", "compose", "up", "-d", service], 1, "boom")
        self.containers.add(service)

    def down(self, remove_volumes=False):
        self.calls.append(("down", remove_volumes))
        self.containers -= set(KNOWN_CONTAINERS)

    @property
    def started(self):
        return [call[1] for call in self.calls if call[0] == "up"]


class ScriptedPrompter:
    """Prompter that replays canned answers, falling back to defaults."""

    def __init__(self, choices=(), answers=(), confirms=()):
        self.choices = list(choices)
        self.answers = list(answers)
        self.confirms = list(confirms)
        self.questions = []

    def choose(self, question, options):
        self.questions.append(question)
        choice = self.choices.pop(0)
        assert choice in options
        return choice

    def ask(self, question, default=""):
        self.questions.append(question)
        return self.answers.pop(0) if self.answers else default

    def confirm(self, question, default=True):
        self.questions.append(question)
        return self.confirms.pop(0) if self.confirms else default


def make_config(setup_dir, **overrides) -> StackConfig:
    settings = dict(DEFAULTS)
    settings.update({
        "STACK_SETUP_DIR": str(setup_dir),
        "STACK_RETRY_DELAY": "0",
        "STACK_HEALTH_TIMEOUT": "0",
        "STACK_HEALTH_INTERVAL": "0",
        "INSTALL_QDRANT": "no",
        "INSTALL_PORTAINER": "no",
        "INSTALL_WATCHTOWER": "no",
    })
    settings.update({key: str(value) for key, value in overrides.items()})
    return StackConfig.from_settings(settings)


@pytest.fixture
def setup_dir(tmp_path):
    return tmp_path / "n8n-stack"


@pytest.fixture
def fake_runtime(setup_dir):
    return FakeRuntime(setup_dir)
