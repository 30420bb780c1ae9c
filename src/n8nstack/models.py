"""
Value types shared by the installer components.

Everything here is immutable or built fresh per run. No module keeps
configuration in globals; these records are passed explicitly instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional


class Escalation(str, Enum):
    """What the retry loop does once automatic attempts are exhausted."""

    ASK = "ask"      # prompt when attended, fatal when unattended
    FAIL = "fail"    # always fatal
    SKIP = "skip"    # always degrade and continue


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay: float = 5.0
    escalation: Escalation = Escalation.ASK

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")


class Disposition(str, Enum):
    """Decision taken when a previous installation is detected."""

    KEEP = "keep"
    CLEAN = "clean"
    REUSE = "reuse"
    EXIT = "exit"


class RunState(str, Enum):
    IDLE = "Idle"
    DETECTING = "Detecting"
    KEEPING = "Keeping"
    CLEANING_UP = "CleaningUp"
    CONFIGURING = "Configuring"
    GENERATING_MANIFEST = "GeneratingManifest"
    PROVISIONING = "Provisioning"
    DEPLOYING = "Deploying"
    HEALTH_CHECKING = "HealthChecking"
    DONE = "Done"
    DEGRADED = "Degraded"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.KEEPING, RunState.DONE, RunState.DEGRADED, RunState.FAILED)


@dataclass(frozen=True)
class DomainConfig:
    """Root domain plus per-component subdomain labels."""

    root: str
    labels: dict[str, str] = field(default_factory=dict)

    def hostname(self, component_id: str, default_label: str) -> str:
        return f"{self.labels.get(component_id, default_label)}.{self.root}"


@dataclass(frozen=True)
class InstallationTarget:
    """Everything the manifest generator needs for one run."""

    components: tuple[str, ...]
    domain: Optional[DomainConfig] = None
    admin_user: str = "admin@example.com"
    media_tools: bool = False
    versions: dict[str, str] = field(default_factory=dict)
    timezone: str = "UTC"
    watchtower_poll_interval: int = 86400
    watchtower_cleanup: bool = True

    @property
    def domain_mode(self) -> bool:
        return self.domain is not None

    def version(self, component_id: str) -> str:
        return self.versions.get(component_id, "latest")


@dataclass(frozen=True)
class PortBinding:
    host: int
    container: int
    protocol: str = "tcp"

    def render(self) -> str:
        spec = f"{self.host}:{self.container}"
        return spec if self.protocol == "tcp" else f"{spec}/{self.protocol}"


@dataclass(frozen=True)
class HealthProbe:
    """Container healthcheck as the runtime understands it."""

    test: tuple[str, ...]
    interval: str = "30s"
    timeout: str = "10s"
    retries: int = 5
    start_period: str = "60s"


@dataclass(frozen=True)
class BuildRecipe:
    context: str
    dockerfile: str


@dataclass(frozen=True)
class ServiceDefinition:
    identifier: str
    image: str
    environment: tuple[tuple[str, str], ...] = ()
    volumes: tuple[str, ...] = ()
    ports: tuple[PortBinding, ...] = ()
    networks: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()
    healthcheck: Optional[HealthProbe] = None
    build: Optional[BuildRecipe] = None
    command: tuple[str, ...] = ()
    user: Optional[str] = None
    labels: tuple[tuple[str, str], ...] = ()
    restart: str = "unless-stopped"

    @property
    def container_name(self) -> str:
        return self.identifier


@dataclass(frozen=True)
class Route:
    hostname: str
    target: str
    port: int
    component_id: str
    health_uri: Optional[str] = None


@dataclass(frozen=True)
class RouteConfig:
    routes: tuple[Route, ...]

    @property
    def redirects(self) -> tuple[str, ...]:
        """Hostnames that get an HTTP to HTTPS redirect block."""
        return tuple(route.hostname for route in self.routes)


@dataclass(frozen=True)
class CredentialSet:
    """Generated secrets, keyed by the env variable that carries them."""

    values: dict[str, str]

    def get(self, key: str) -> str:
        return self.values[key]

    def __contains__(self, key: str) -> bool:
        return key in self.values


@dataclass(frozen=True)
class Manifest:
    services: tuple[ServiceDefinition, ...]
    routes: Optional[RouteConfig]
    credentials: CredentialSet

    def service(self, identifier: str) -> ServiceDefinition:
        for service in self.services:
            if service.identifier == identifier:
                return service
        raise KeyError(identifier)

    @property
    def order(self) -> tuple[str, ...]:
        return tuple(service.identifier for service in self.services)


@dataclass(frozen=True)
class InstallationState:
    """Resource kind -> names found on the host."""

    resources: dict[str, tuple[str, ...]]

    @property
    def any_present(self) -> bool:
        return any(self.resources.values())

    def present(self, kind: str) -> tuple[str, ...]:
        return self.resources.get(kind, ())

    def describe(self) -> list[str]:
        return [f"{kind}: {', '.join(names)}" for kind, names in self.resources.items() if names]


class Outcome(str, Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class AttemptResult:
    outcome: Outcome
    attempts: int

    @property
    def degraded(self) -> bool:
        return self.outcome is Outcome.DEGRADED


@dataclass
class Phase:
    """One idempotent step of the installation state machine."""

    name: str
    body: Callable[[], object]
    policy: RetryPolicy
    capability: str = ""
