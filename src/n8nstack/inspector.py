"""
Installation state detection and cleanup.

Each resource kind the stack creates has one ``ResourceInspector``. An
inspector answers which of the conventionally named resources exist on the
host and knows how to remove them. ``InstallationDetector`` aggregates the
inspectors into an ``InstallationState`` snapshot and drives cleanup.
"""

from __future__ import annotations

import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from . import log
from .config_constants import KNOWN_CONTAINERS, KNOWN_VOLUMES, SHARED_NETWORK
from .errors import CommandError
from .models import InstallationState
from .runtime import DockerRuntime


class ResourceInspector(ABC):
    kind: str = ""

    @abstractmethod
    def present(self) -> tuple[str, ...]:
        """Names of matching resources currently on the host."""

    @abstractmethod
    def remove(self, names: Iterable[str]) -> None:
        """Remove the named resources. Missing ones are ignored."""


class ContainerInspector(ResourceInspector):
    kind = "containers"

    def __init__(self, runtime: DockerRuntime, names: Iterable[str] = KNOWN_CONTAINERS) -> None:
        self.runtime = runtime
        self.names = tuple(names)

    def present(self) -> tuple[str, ...]:
        if not self.runtime.installed():
            return ()
        existing = set(self.runtime.container_names())
        return tuple(name for name in self.names if name in existing)

    def remove(self, names: Iterable[str]) -> None:
        for name in names:
            log.cleanup(f"Removing container {name}")
            self.runtime.remove_container(name)


class VolumeInspector(ResourceInspector):
    kind = "volumes"

    def __init__(self, runtime: DockerRuntime, names: Iterable[str] = KNOWN_VOLUMES) -> None:
        self.runtime = runtime
        self.names = tuple(names)

    def present(self) -> tuple[str, ...]:
        if not self.runtime.installed():
            return ()
        existing = set(self.runtime.volume_names())
        return tuple(name for name in self.names if name in existing)

    def remove(self, names: Iterable[str]) -> None:
        for name in names:
            log.cleanup(f"Removing volume {name}")
            self.runtime.remove_volume(name)


class NetworkInspector(ResourceInspector):
    kind = "network"

    def __init__(self, runtime: DockerRuntime, name: str = SHARED_NETWORK) -> None:
        self.runtime = runtime
        self.name = name

    def present(self) -> tuple[str, ...]:
        if not self.runtime.installed():
            return ()
        return (self.name,) if self.runtime.network_exists(self.name) else ()

    def remove(self, names: Iterable[str]) -> None:
        for name in names:
            log.cleanup(f"Removing network {name}")
            self.runtime.remove_network(name)


class ConfigDirInspector(ResourceInspector):
    kind = "config_dir"

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def present(self) -> tuple[str, ...]:
        return (str(self.path),) if self.path.is_dir() else ()

    def remove(self, names: Iterable[str]) -> None:
        for name in names:
            log.cleanup(f"Removing configuration directory {name}")
            shutil.rmtree(name, ignore_errors=True)


def default_inspectors(runtime: DockerRuntime, setup_dir: Path | str, network: str = SHARED_NETWORK) -> list[ResourceInspector]:
    """Inspectors in removal order: containers before the volumes and network they use."""
    return [
        ContainerInspector(runtime),
        VolumeInspector(runtime),
        NetworkInspector(runtime, network),
        ConfigDirInspector(setup_dir),
    ]


class InstallationDetector:
    def __init__(self, runtime: DockerRuntime, inspectors: list[ResourceInspector]) -> None:
        self.runtime = runtime
        self.inspectors = inspectors

    def detect(self) -> InstallationState:
        """Read-only snapshot of every conventionally named resource."""
        resources = {inspector.kind: inspector.present() for inspector in self.inspectors}
        state = InstallationState(resources)
        if state.any_present:
            log.warn("Existing installation detected:")
            for line in state.describe():
                log.warn(f"  {line}")
        else:
            log.info("No existing installation found")
        return state

    def cleanup(self) -> bool:
        """
        Remove every matching resource, including generated credentials.

        Idempotent: each run re-inspects the host, so a partial earlier
        cleanup simply continues.
        """
        log.cleanup("Removing existing installation...")
        if self.runtime.installed() and self.runtime.compose_file_exists():
            try:
                self.runtime.down(remove_volumes=True)
            except CommandError as exc:
                log.warn(f"compose down failed, removing resources individually: {exc}")

        for inspector in self.inspectors:
            names = inspector.present()
            if names:
                inspector.remove(names)

        leftovers = self.detect()
        if leftovers.any_present:
            log.error("Cleanup left resources behind")
            return False
        log.success("Existing installation removed")
        return True
