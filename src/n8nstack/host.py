"""
Host preparation: privileges, requirements, packages, Docker and firewall.

Every mutating step is idempotent so the retry engine can rerun it. Package
management and firewall changes go through the distribution tools (apt-get,
ufw); when a tool is missing the step is skipped with a warning.
"""

from __future__ import annotations

import ipaddress
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Optional

import requests

from . import log
from .config_constants import (
    DOCKER_INSTALL_URL,
    IP_DETECT_URLS,
    IP_FALLBACK,
    MIN_CPU_CORES,
    MIN_DISK_GB,
    MIN_RAM_GB,
    PREREQUISITE_PACKAGES,
)
from .errors import PrivilegeError
from .models import Manifest
from .runtime import DockerRuntime, run_cmd

MEMINFO = Path("/proc/meminfo")


def check_privileges(geteuid: Callable[[], int] = os.geteuid) -> None:
    if geteuid() != 0:
        raise PrivilegeError("This installer must be run as root (try: sudo n8n-stack)")


# ============================================================================
# System requirements
# ============================================================================

def total_memory_gb(meminfo: Path = MEMINFO) -> Optional[float]:
    try:
        for line in meminfo.read_text().splitlines():
            if line.startswith("MemTotal:"):
                return int(line.split()[1]) / (1024 * 1024)
    except (OSError, ValueError, IndexError):
        return None
    return None


def free_disk_gb(path: Path | str) -> float:
    probe = Path(path)
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    return shutil.disk_usage(probe).free / (1024 ** 3)


def check_requirements(setup_dir: Path | str, meminfo: Path = MEMINFO) -> list[str]:
    """
    Compare the host against the minimum sizing. Shortfalls are warnings only.

    Returns:
        The warning messages (empty when the host is big enough)
    """
    warnings = []
    ram = total_memory_gb(meminfo)
    if ram is not None and ram < MIN_RAM_GB:
        warnings.append(f"Only {ram:.1f} GB RAM available; {MIN_RAM_GB} GB recommended")
    disk = free_disk_gb(setup_dir)
    if disk < MIN_DISK_GB:
        warnings.append(f"Only {disk:.1f} GB free disk space; {MIN_DISK_GB} GB recommended")
    cpus = os.cpu_count() or 0
    if cpus < MIN_CPU_CORES:
        warnings.append(f"Only {cpus} CPU cores detected; {MIN_CPU_CORES} recommended")

    for message in warnings:
        log.warn(message)
    if not warnings:
        log.success(f"System requirements met (RAM {ram or 0:.1f} GB, disk {disk:.1f} GB free, {cpus} CPUs)")
    return warnings


# ============================================================================
# Packages and Docker
# ============================================================================

def install_packages(packages: Iterable[str] = PREREQUISITE_PACKAGES) -> bool:
    if shutil.which("apt-get") is None:
        log.warn("apt-get not found; skipping prerequisite package installation")
        return True

    missing = [pkg for pkg in packages if run_cmd(["dpkg", "-s", pkg], check=False).returncode != 0]
    if not missing:
        log.info("Prerequisite packages already installed")
        return True

    log.info(f"Installing packages: {', '.join(missing)}")
    run_cmd(["apt-get", "update", "-qq"])
    run_cmd(["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "-y", "-qq", *missing])
    return True


def install_docker(runtime: DockerRuntime, url: str = DOCKER_INSTALL_URL) -> bool:
    """Install Docker with the upstream convenience script unless already present."""
    if runtime.installed():
        log.info("Docker already installed")
    else:
        log.info(f"Downloading Docker install script from {url}")
        response = requests.get(url, timeout=60)
        response.raise_for_status()
        with tempfile.NamedTemporaryFile("w", suffix=".sh", delete=False) as f:
            f.write(response.text)
            script = f.name
        try:
            run_cmd(["sh", script], timeout=900)
        finally:
            os.unlink(script)
        if shutil.which("systemctl"):
            run_cmd(["systemctl", "enable", "--now", "docker"])
        log.success("Docker installed")

    if not runtime.daemon_ready():
        log.warn("Docker daemon is not responding yet")
        return False
    return True


# ============================================================================
# Firewall
# ============================================================================

def firewall_rules(manifest: Manifest) -> list[str]:
    """ufw rules: ssh plus every port the manifest publishes."""
    rules = ["OpenSSH"]
    for service in manifest.services:
        for port in service.ports:
            rule = f"{port.host}/{port.protocol}"
            if rule not in rules:
                rules.append(rule)
    return rules


def configure_firewall(manifest: Manifest) -> bool:
    if shutil.which("ufw") is None:
        log.warn("ufw not found; skipping firewall configuration")
        return True

    run_cmd(["ufw", "default", "deny", "incoming"])
    run_cmd(["ufw", "default", "allow", "outgoing"])
    for rule in firewall_rules(manifest):
        result = run_cmd(["ufw", "allow", rule], check=False)
        if result.returncode != 0 and rule == "OpenSSH":
            # No application profile on minimal images
            run_cmd(["ufw", "allow", "22/tcp"])
        elif result.returncode != 0:
            log.warn(f"ufw allow {rule} failed: {result.stderr.strip()}")
            return False
    run_cmd(["ufw", "--force", "enable"])
    log.success(f"Firewall configured: {', '.join(firewall_rules(manifest))}")
    return True


# ============================================================================
# Public IP
# ============================================================================

def detect_urls() -> list[str]:
    urls = os.environ.get("STACK_IP_DETECT_URLS")
    if urls:
        return [u.strip() for u in urls.split(",") if u.strip()]
    return list(IP_DETECT_URLS)


def public_ip(urls: Optional[list[str]] = None, timeout: float = 5) -> str:
    """First address any discovery endpoint returns, else a placeholder."""
    for url in urls if urls is not None else detect_urls():
        try:
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
            candidate = response.text.strip()
            ipaddress.ip_address(candidate)
            return candidate
        except (requests.RequestException, ValueError) as e:
            log.debug(f"IP discovery via {url} failed: {e}")
            continue
    log.warn(f"Could not determine the public IP; using '{IP_FALLBACK}'")
    return IP_FALLBACK
