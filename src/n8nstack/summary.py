"""Final run summary shown to the operator."""

from __future__ import annotations

from typing import Callable

from . import log
from .components import CATALOG
from .config import StackConfig
from .config_constants import ENV_FILE, MANAGE_SCRIPT
from .models import Manifest, RunState
from .sequencer import RunReport

HEADLINES = {
    RunState.DONE: "INSTALLATION COMPLETE",
    RunState.DEGRADED: "INSTALLATION DEGRADED",
    RunState.KEEPING: "EXISTING INSTALLATION KEPT",
    RunState.FAILED: "INSTALLATION FAILED",
}


def access_urls(manifest: Manifest, ip_lookup: Callable[[], str]) -> list[tuple[str, str]]:
    """(title, url) for every service reachable from outside."""
    urls = []
    if manifest.routes is not None:
        for route in manifest.routes.routes:
            urls.append((CATALOG[route.component_id].title, f"https://{route.hostname}"))
        return urls

    ip = None
    for service in manifest.services:
        spec = CATALOG.get(service.identifier)
        if spec is None or spec.internal_port is None or not service.ports:
            continue
        if ip is None:
            ip = ip_lookup()
        urls.append((spec.title, f"http://{ip}:{service.ports[0].host}"))
    return urls


def summary_lines(report: RunReport, config: StackConfig, ip_lookup: Callable[[], str]) -> list[str]:
    lines = [
        f"[{HEADLINES.get(report.state, report.state.value.upper())}]",
        f"  Final state: {report.state.value}",
        f"  Duration: {report.duration_seconds}s",
    ]
    if report.error:
        lines.append(f"  Error: {report.error}")

    if report.manifest is not None and report.state in (RunState.DONE, RunState.DEGRADED):
        lines.append("  Access:")
        for title, url in access_urls(report.manifest, ip_lookup):
            lines.append(f"    {title}: {url}")
        lines.append(f"  Credentials: {config.setup_dir / ENV_FILE} (root only)")
        lines.append(f"  Manage: {config.setup_dir / MANAGE_SCRIPT} {{start|stop|restart|status|logs|update}}")
        if report.manifest.routes is not None:
            lines.append("  DNS: point these hostnames at this server:")
            for hostname in report.manifest.routes.redirects:
                lines.append(f"    {hostname}")

    if report.degraded:
        lines.append("  Missing capabilities (skipped):")
        for capability in report.degraded:
            lines.append(f"    - {capability}")
    return lines


def print_summary(report: RunReport, config: StackConfig, ip_lookup: Callable[[], str]) -> None:
    lines = summary_lines(report, config, ip_lookup)
    if report.state is RunState.FAILED:
        emit = log.error
    elif report.state is RunState.DEGRADED:
        emit = log.warn
    else:
        emit = log.success
    emit(lines[0])
    for line in lines[1:]:
        print(line, flush=True)
