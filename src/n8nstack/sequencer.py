"""
Phase sequencer: the installation state machine.

    Idle -> Detecting -> {Keeping | [CleaningUp ->] Configuring}
         -> GeneratingManifest -> Provisioning -> Deploying
         -> HealthChecking -> {Done | Degraded | Failed}

Every phase body runs through the retry engine. A skipped phase lets the run
continue but marks it Degraded; an abort or a validation error ends it in
Failed without running later phases.

A dry run stops after the manifest is written and never touches the runtime;
a `clean` disposition only reports what it would remove.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from . import host as host_ops
from . import log
from .components import CATALOG
from .config import StackConfig, collect_target
from .config_constants import ENV_FILE, SHARED_NETWORK
from .credentials import build_credentials, read_env_file
from .errors import RunAborted, StackError, ValidationError
from .health import container_probe, wait_until_ready
from .inspector import InstallationDetector, default_inspectors
from .manifest import ManifestGenerator, volume_owners
from .models import (
    Disposition,
    InstallationState,
    InstallationTarget,
    Manifest,
    Phase,
    RetryPolicy,
    RunState,
)
from .prompts import Prompter
from .render import write_artifacts
from .retry import RetryEngine
from .runtime import DockerRuntime

DISPOSITION_CHOICES = {
    "keep": "leave the installation untouched and exit",
    "clean": "remove everything, including credentials, and reinstall",
    "reuse": "reinstall over it, keeping data and credentials",
    "exit": "abort without changes",
}


@dataclass
class RunReport:
    state: RunState = RunState.IDLE
    transitions: list[RunState] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)
    target: Optional[InstallationTarget] = None
    manifest: Optional[Manifest] = None
    installation: Optional[InstallationState] = None
    error: Optional[str] = None
    error_code: int = 1
    started_at: float = field(default_factory=time.time)

    @property
    def exit_code(self) -> int:
        return self.error_code if self.state is RunState.FAILED else 0

    @property
    def duration_seconds(self) -> int:
        return int(time.time() - self.started_at)


class PhaseSequencer:
    def __init__(
        self,
        config: StackConfig,
        attended: bool,
        runtime: Optional[DockerRuntime] = None,
        prompter: Optional[Prompter] = None,
        retry_engine: Optional[RetryEngine] = None,
        detector: Optional[InstallationDetector] = None,
        generator: Optional[ManifestGenerator] = None,
        host=host_ops,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.attended = attended
        self.runtime = runtime or DockerRuntime(config.setup_dir)
        self.prompter = prompter or Prompter()
        self.retry_engine = retry_engine or RetryEngine(attended, self.prompter, sleep=sleep)
        self.detector = detector or InstallationDetector(
            self.runtime, default_inspectors(self.runtime, config.setup_dir, SHARED_NETWORK)
        )
        self.generator = generator or ManifestGenerator()
        self.host = host
        self.dry_run = dry_run
        self.sleep = sleep
        self.clock = clock
        self.report = RunReport()
        self.fresh_credentials = False

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _enter(self, state: RunState) -> None:
        self.report.state = state
        self.report.transitions.append(state)
        if not state.terminal:
            log.info(f"=== {state.value} ===")

    def _phase(self, name: str, body: Callable[[], object], capability: str = "", policy: Optional[RetryPolicy] = None) -> bool:
        """Run one phase body through the retry engine. False means it was skipped."""
        phase = Phase(name=name, body=body, policy=policy or self.config.retry, capability=capability or name)
        result = self.retry_engine.attempt(phase.name, phase.body, phase.policy)
        if result.degraded:
            self.report.degraded.append(phase.capability)
            return False
        return True

    def _finish(self) -> RunReport:
        self._enter(RunState.DEGRADED if self.report.degraded else RunState.DONE)
        return self.report

    def _fail(self, message: str, code: int = 1) -> RunReport:
        log.error(message)
        self.report.error = message
        self.report.error_code = code
        self._enter(RunState.FAILED)
        return self.report

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self) -> RunReport:
        self.report = RunReport(transitions=[RunState.IDLE])
        try:
            return self._run()
        except ValidationError as e:
            return self._fail(f"Validation error: {e}", e.exit_code)
        except StackError as e:
            return self._fail(str(e), e.exit_code)

    def cleanup_only(self) -> RunReport:
        """Remove an existing installation and stop."""
        self.report = RunReport(transitions=[RunState.IDLE])
        try:
            installation = self._detect()
            if installation is not None and not installation.any_present:
                log.info("Nothing to clean up")
                return self._finish()
            if self.attended and not self.prompter.confirm("Remove the installation, including data and credentials?", default=False):
                log.info("Cleanup cancelled")
                self._enter(RunState.KEEPING)
                return self.report
            self._enter(RunState.CLEANING_UP)
            self._clean(installation)
            return self._finish()
        except StackError as e:
            return self._fail(str(e), e.exit_code)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run(self) -> RunReport:
        installation = self._detect()

        if installation is not None and installation.any_present:
            disposition = self._resolve_disposition()
            if disposition is None:
                return self._fail("Existing installation found, running non-interactively and no disposition configured")
            if disposition is Disposition.KEEP:
                log.info("Keeping the existing installation; no changes made")
                self._enter(RunState.KEEPING)
                return self.report
            if disposition is Disposition.EXIT:
                return self._fail("Installation aborted by user; no changes made")
            if disposition is Disposition.CLEAN:
                self._enter(RunState.CLEANING_UP)
                self._clean(installation)
            else:
                log.info("Reusing the existing installation's data and credentials")

        self._enter(RunState.CONFIGURING)
        self._configure()
        if self.attended and not self._confirm_plan():
            log.info("Installation cancelled; no changes made")
            self._enter(RunState.KEEPING)
            return self.report

        self._enter(RunState.GENERATING_MANIFEST)
        self._phase("Manifest generation", self._generate, "Generated configuration files")
        if self.report.manifest is None:
            return self._fail("No manifest was generated; nothing to deploy")
        if self.dry_run:
            log.info(f"Dry run: artifacts written to {self.config.setup_dir}; runtime untouched")
            return self._finish()

        self._enter(RunState.PROVISIONING)
        self._provision(self.report.manifest)

        self._enter(RunState.DEPLOYING)
        started = self._deploy(self.report.manifest)

        self._enter(RunState.HEALTH_CHECKING)
        self._health_check(self.report.manifest, started)

        return self._finish()

    def _clean(self, installation: InstallationState) -> None:
        if self.dry_run:
            for line in (installation.describe() if installation is not None else ()):
                log.cleanup(f"Dry run: would remove {line}")
            self.fresh_credentials = True
            return
        self._phase("Cleanup", self.detector.cleanup, "Removal of the previous installation")

    def _detect(self) -> Optional[InstallationState]:
        self._enter(RunState.DETECTING)

        def body() -> None:
            self.report.installation = self.detector.detect()

        self._phase("Installation state detection", body, "Detection of a previous installation")
        return self.report.installation

    def _resolve_disposition(self) -> Optional[Disposition]:
        if self.config.existing is not None:
            log.info(f"Existing installation disposition: {self.config.existing.value}")
            return self.config.existing
        if self.attended:
            return Disposition(self.prompter.choose("An installation already exists. What should happen?", DISPOSITION_CHOICES))
        if self.config.unattended_fallback == "fail":
            return None
        log.warn(f"No disposition configured; using unattended fallback '{self.config.unattended_fallback}'")
        return Disposition(self.config.unattended_fallback)

    def _configure(self) -> None:
        def body() -> None:
            self.report.target = collect_target(self.config.settings, self.prompter if self.attended else None)

        self._phase("Configuration collection", body, "Configuration collection")
        if self.report.target is None:
            raise RunAborted("Configuration could not be collected")

        target = self.report.target
        mode = f"domain {target.domain.root}" if target.domain else "IP/port mode"
        log.info(f"Components: {', '.join(target.components)}; {mode}; admin {target.admin_user}")

    def _confirm_plan(self) -> bool:
        return self.prompter.confirm("Proceed with the installation?", default=True)

    def _generate(self) -> None:
        target = self.report.target
        existing = {} if self.fresh_credentials else read_env_file(self.config.setup_dir / ENV_FILE)
        credentials = build_credentials(self.generator.required_credentials(target), existing)
        manifest = self.generator.generate(target, credentials)
        write_artifacts(self.config.setup_dir, target, manifest)
        self.report.manifest = manifest

    def _provision(self, manifest: Manifest) -> None:
        host = self.host
        runtime = self.runtime
        built = [service.identifier for service in manifest.services if service.build is not None]
        pulled = [service.identifier for service in manifest.services if service.build is None]

        def fix_permissions() -> None:
            for volume, owner in volume_owners(manifest):
                runtime.fix_volume_permissions(volume, owner)

        def fetch_images() -> None:
            runtime.pull(pulled)
            for service in built:
                runtime.build(service)

        def check_sizing() -> None:
            host.check_requirements(self.config.setup_dir)

        self._phase("System requirements check", check_sizing, "Host sizing check")
        self._phase("Prerequisite packages", host.install_packages, "Prerequisite packages")
        self._phase("Docker installation", lambda: host.install_docker(runtime), "Docker engine")
        self._phase("Docker Compose detection", runtime.compose_command, "Docker Compose")
        self._phase("Firewall configuration", lambda: host.configure_firewall(manifest), "Firewall rules")
        self._phase("Network setup", lambda: runtime.ensure_network(SHARED_NETWORK), f"Network {SHARED_NETWORK}")
        self._phase("Volume permissions", fix_permissions, "Volume ownership")
        self._phase("Image download", fetch_images, "Container images")

    def _deploy(self, manifest: Manifest) -> list[str]:
        started = []
        for service in manifest.services:
            title = CATALOG[service.identifier].title if service.identifier in CATALOG else service.identifier
            if self._phase(f"Start {title}", lambda sid=service.identifier: self.runtime.up(sid), f"{title} service"):
                started.append(service.identifier)
        return started

    def _health_check(self, manifest: Manifest, started: list[str]) -> None:
        for service in manifest.services:
            if service.identifier not in started:
                continue
            title = CATALOG[service.identifier].title if service.identifier in CATALOG else service.identifier

            def body(name=service.container_name, title=title) -> bool:
                return wait_until_ready(
                    title,
                    container_probe(self.runtime, name),
                    max_wait=self.config.health_timeout,
                    check_interval=self.config.health_interval,
                    clock=self.clock,
                    sleep=self.sleep,
                ).ready

            self._phase(f"{title} health check", body, f"{title} readiness")
