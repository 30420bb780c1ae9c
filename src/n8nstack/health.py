"""
Health gate: bounded readiness polling for deployed services.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Optional

from . import log
from .runtime import DockerRuntime

Probe = Callable[[], tuple[Optional[bool], str]]


class HealthResult(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"

    @property
    def ready(self) -> bool:
        return self is HealthResult.READY


def container_probe(runtime: DockerRuntime, container_name: str) -> Probe:
    """Probe backed by the container's own healthcheck status."""
    def check() -> tuple[Optional[bool], str]:
        return runtime.container_health(container_name)
    return check


def wait_until_ready(
    service_name: str,
    probe: Probe,
    max_wait: float = 300,
    check_interval: float = 5,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> HealthResult:
    """
    Poll ``probe`` until it reports healthy or ``max_wait`` seconds pass.

    The probe returns ``(ok, message)``; ``ok`` is True when healthy, None
    while still starting and False when unhealthy. A probe that raises
    counts as not ready yet.

    Returns:
        HealthResult.READY on the first healthy answer, otherwise TIMED_OUT
    """
    log.info(f"Waiting for {service_name} to become healthy (timeout: {max_wait:g}s)...")
    start = clock()

    while True:
        try:
            ok, msg = probe()
        except Exception as e:
            ok, msg = False, f"Error checking health: {e}"

        if ok:
            log.success(f"{service_name} is healthy: {msg}")
            return HealthResult.READY

        elapsed = clock() - start
        if elapsed >= max_wait:
            break
        delay = min(check_interval, max_wait - elapsed)
        log.info(f"  [{int(elapsed)}s] {msg}, retrying in {delay:g}s...")
        sleep(delay)

    log.error(f"{service_name} did not become healthy within {max_wait:g}s. Check logs: docker logs {service_name}")
    return HealthResult.TIMED_OUT
