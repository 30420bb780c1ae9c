"""
Serializers for the generated installation artifacts.

The manifest is a structured record; every output format has its own
serializer here:

- docker-compose.yml via PyYAML
- Caddyfile, manage-stack.sh and the media Dockerfile via Jinja2 templates
- .env as plain KEY=VALUE lines
- stack-state.toml via tomli_w

``write_artifacts`` writes the whole set, credentials first, and removes files
that belong to the other exposure mode so regeneration always replaces
rather than patches.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w
import yaml
from jinja2 import Template, TemplateError

from . import __version__, log
from .components import CATALOG, CORE, PORTAINER, ComponentSpec
from .config_constants import (
    CADDY_FILE,
    COMPOSE_FILE,
    ENV_FILE,
    MANAGE_SCRIPT,
    MEDIA_DOCKERFILE,
    PORTAINER_PASSWORD_FILE,
    SECRETS_DIR,
    SHARED_NETWORK,
    STATE_FILE,
)
from .credentials import fingerprint, write_private_file
from .errors import ValidationError
from .manifest import named_volumes
from .models import InstallationTarget, Manifest, ServiceDefinition

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

COMPOSE_PROJECT = "n8n-stack"
EMAIL_MARKER = "@"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def render_jinja2(template_name: str, context: dict) -> str:
    """Render a packaged Jinja2 template with ``context``."""
    template_file = TEMPLATE_DIR / template_name
    if not template_file.exists():
        raise FileNotFoundError(f"Template file not found: {template_file}")

    template_content = template_file.read_text(encoding="utf-8")
    log.debug(f"Rendering Jinja2 template: {template_name}")
    try:
        template = Template(template_content, trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
        return template.render(**context)
    except TemplateError as e:
        raise TemplateError(f"Failed to render template {template_name}: {e}") from e


# ============================================================================
# docker-compose.yml
# ============================================================================

def _service_block(service: ServiceDefinition, manifest: Manifest) -> dict:
    block: dict = {"image": service.image}
    if service.build is not None:
        block["build"] = {"context": service.build.context, "dockerfile": service.build.dockerfile}
    block["container_name"] = service.container_name
    block["restart"] = service.restart
    if service.user:
        block["user"] = service.user
    if service.command:
        block["command"] = list(service.command)
    if service.environment:
        block["environment"] = {key: value for key, value in service.environment}
    if service.volumes:
        block["volumes"] = list(service.volumes)
    if service.ports:
        block["ports"] = [port.render() for port in service.ports]
    block["networks"] = list(service.networks)
    if service.labels:
        block["labels"] = {key: value for key, value in service.labels}
    if service.depends_on:
        depends = {}
        for dep in service.depends_on:
            healthy = manifest.service(dep).healthcheck is not None
            depends[dep] = {"condition": "service_healthy" if healthy else "service_started"}
        block["depends_on"] = depends
    if service.healthcheck is not None:
        probe = service.healthcheck
        block["healthcheck"] = {
            "test": list(probe.test),
            "interval": probe.interval,
            "timeout": probe.timeout,
            "retries": probe.retries,
            "start_period": probe.start_period,
        }
    return block


def compose_document(manifest: Manifest, catalog: dict[str, ComponentSpec] = CATALOG, network: str = SHARED_NETWORK) -> dict:
    services = {service.identifier: _service_block(service, manifest) for service in manifest.services}
    volumes = {name: {"name": name} for name in named_volumes(manifest, catalog)}
    document: dict = {"name": COMPOSE_PROJECT, "services": services}
    if volumes:
        document["volumes"] = volumes
    document["networks"] = {network: {"name": network, "external": True}}
    return document


def render_compose(manifest: Manifest, catalog: dict[str, ComponentSpec] = CATALOG, network: str = SHARED_NETWORK) -> str:
    header = "# Generated by n8n-stack. Regenerated on every install; do not edit.\n"
    body = yaml.safe_dump(
        compose_document(manifest, catalog, network),
        default_flow_style=False,
        sort_keys=False,
    )
    return header + body


# ============================================================================
# Caddyfile, manage script, media Dockerfile
# ============================================================================

def render_caddyfile(manifest: Manifest, target: InstallationTarget, generated_at: str) -> str:
    if manifest.routes is None:
        raise ValidationError("Caddyfile requested without routes")
    acme_email = target.admin_user if EMAIL_MARKER in target.admin_user else None
    return render_jinja2("Caddyfile.j2", {
        "generated_at": generated_at,
        "acme_email": acme_email,
        "routes": manifest.routes.routes,
    })


def render_manage_script(manifest: Manifest, generated_at: str) -> str:
    return render_jinja2("manage-stack.sh.j2", {
        "generated_at": generated_at,
        "compose_file": COMPOSE_FILE,
        "services": manifest.order,
        "built_services": [service.identifier for service in manifest.services if service.build is not None],
    })


def render_media_dockerfile(target: InstallationTarget) -> str:
    return render_jinja2("Dockerfile.n8n-media.j2", {"version": target.version(CORE)})


# ============================================================================
# .env
# ============================================================================

def env_values(target: InstallationTarget, manifest: Manifest) -> dict[str, str]:
    values = {
        "TZ": target.timezone,
        "N8N_BASIC_AUTH_USER": target.admin_user,
        "N8N_LOG_LEVEL": "warn",
        "N8N_METRICS": "false",
    }
    if target.domain is not None:
        values["MAIN_DOMAIN"] = target.domain.root
    for service in manifest.services:
        values[f"{service.identifier.upper()}_VERSION"] = target.version(service.identifier)
    values.update(manifest.credentials.values)
    return values


def render_env_file(values: dict[str, str], generated_at: str) -> str:
    lines = [
        "# n8n stack environment",
        f"# Generated: {generated_at}",
        "# Contains credentials; keep this file private.",
    ]
    lines += [f"{key}={value}" for key, value in values.items()]
    return "\n".join(lines) + "\n"


# ============================================================================
# stack-state.toml
# ============================================================================

def state_document(target: InstallationTarget, manifest: Manifest, setup_dir: Path, generated_at: str) -> dict:
    document: dict = {
        "stack": {
            "version": __version__,
            "generated_at": generated_at,
            "setup_dir": str(setup_dir),
            "domain_mode": target.domain_mode,
            "media_tools": target.media_tools,
            "components": list(manifest.order),
        },
    }
    if target.domain is not None and manifest.routes is not None:
        document["domain"] = {
            "root": target.domain.root,
            "routes": {route.component_id: route.hostname for route in manifest.routes.routes},
        }
    document["credentials"] = {key: fingerprint(value) for key, value in manifest.credentials.values.items()}
    return document


def write_rendered_toml(output_path: Path, config: dict) -> None:
    """Write rendered TOML to disk using tomli_w."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "wb") as f:
        tomli_w.dump(config, f)


# ============================================================================
# Writing
# ============================================================================

def _write_text(path: Path, content: str, mode: Optional[int] = None) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    if mode is not None:
        os.chmod(tmp, mode)
    os.replace(tmp, path)


def _remove_stale(path: Path) -> None:
    if path.exists():
        log.info(f"Removing stale {path.name}")
        path.unlink()


def write_artifacts(
    setup_dir: Path | str,
    target: InstallationTarget,
    manifest: Manifest,
    generated_at: Optional[str] = None,
) -> list[Path]:
    """
    Write every artifact for ``manifest`` into ``setup_dir``.

    Credential files are written (mode 600) before any file referencing them.
    """
    setup_dir = Path(setup_dir)
    generated_at = generated_at or utc_timestamp()
    setup_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []

    env_path = setup_dir / ENV_FILE
    write_private_file(env_path, render_env_file(env_values(target, manifest), generated_at))
    written.append(env_path)

    secret_path = setup_dir / SECRETS_DIR / PORTAINER_PASSWORD_FILE
    if PORTAINER in manifest.order:
        write_private_file(secret_path, manifest.credentials.get("PORTAINER_ADMIN_PASSWORD"))
        os.chmod(secret_path.parent, 0o700)
        written.append(secret_path)
    else:
        _remove_stale(secret_path)

    compose_path = setup_dir / COMPOSE_FILE
    _write_text(compose_path, render_compose(manifest))
    written.append(compose_path)

    caddy_path = setup_dir / CADDY_FILE
    if manifest.routes is not None:
        _write_text(caddy_path, render_caddyfile(manifest, target, generated_at))
        written.append(caddy_path)
    else:
        _remove_stale(caddy_path)

    dockerfile_path = setup_dir / MEDIA_DOCKERFILE
    if target.media_tools:
        _write_text(dockerfile_path, render_media_dockerfile(target))
        written.append(dockerfile_path)
    else:
        _remove_stale(dockerfile_path)

    manage_path = setup_dir / MANAGE_SCRIPT
    _write_text(manage_path, render_manage_script(manifest, generated_at), mode=0o755)
    written.append(manage_path)

    state_path = setup_dir / STATE_FILE
    write_rendered_toml(state_path, state_document(target, manifest, setup_dir, generated_at))
    written.append(state_path)

    for path in written:
        log.info(f"Wrote {path}")
    return written
