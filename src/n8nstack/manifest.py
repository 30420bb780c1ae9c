"""
Conditional manifest generation.

Turns an ``InstallationTarget`` plus a ``CredentialSet`` into service
definitions in dependency order and, in domain mode, the reverse-proxy route
table. Generation is pure: the same target always yields the same manifest,
and any inconsistency is a ``ValidationError`` before a file is written.

Domain mode and port mode are exclusive. With a domain only the reverse proxy
publishes ports; without one the proxy is dropped and every web-facing
service publishes its own ports.
"""

from __future__ import annotations

from typing import Iterable

from . import log
from .components import CATALOG, CORE, MEDIA_IMAGE, WATCHTOWER, WATCHTOWER_LABEL, ComponentSpec
from .config_constants import MEDIA_DOCKERFILE, SHARED_NETWORK
from .errors import ValidationError
from .models import (
    BuildRecipe,
    CredentialSet,
    InstallationTarget,
    Manifest,
    Route,
    RouteConfig,
    ServiceDefinition,
)


def resolve_selection(
    requested: Iterable[str],
    domain_mode: bool,
    catalog: dict[str, ComponentSpec] = CATALOG,
) -> tuple[str, ...]:
    """
    Normalize a requested component set.

    The core is always present exactly once. Components that need a domain
    are forced on in domain mode and dropped otherwise. Result follows
    catalog order.
    """
    requested = set(requested)
    unknown = sorted(requested - set(catalog))
    if unknown:
        raise ValidationError(f"Unknown component(s): {', '.join(unknown)}")

    selected = set(requested) | {CORE}
    for cid, spec in catalog.items():
        if not spec.requires_domain:
            continue
        if domain_mode:
            selected.add(cid)
        elif cid in selected:
            log.warn(f"{spec.title} requires a domain; skipping it in IP mode")
            selected.discard(cid)

    return tuple(cid for cid in catalog if cid in selected)


def topological_order(edges: dict[str, tuple[str, ...]]) -> list[str]:
    """
    Order nodes so each comes after everything it depends on.

    Ties keep the insertion order of ``edges`` so the result is stable.

    Raises:
        ValidationError: on a dependency cycle or an unknown dependency.
    """
    for node, deps in edges.items():
        missing = [dep for dep in deps if dep not in edges]
        if missing:
            raise ValidationError(f"{node} depends on unselected component(s): {', '.join(missing)}")

    remaining = {node: set(deps) for node, deps in edges.items()}
    ordered: list[str] = []
    while remaining:
        ready = [node for node, deps in remaining.items() if not deps]
        if not ready:
            cycle = ', '.join(sorted(remaining))
            raise ValidationError(f"Dependency cycle between: {cycle}")
        for node in ready:
            ordered.append(node)
            del remaining[node]
        for deps in remaining.values():
            deps.difference_update(ready)
    return ordered


class ManifestGenerator:
    def __init__(self, catalog: dict[str, ComponentSpec] = CATALOG, network: str = SHARED_NETWORK) -> None:
        self.catalog = catalog
        self.network = network

    def required_credentials(self, target: InstallationTarget) -> list[str]:
        """Secret keys the target's components need, in catalog order."""
        wanted = set(target.components) | {CORE}
        return [key for cid, spec in self.catalog.items() if cid in wanted for key in spec.credentials]

    def generate(self, target: InstallationTarget, credentials: CredentialSet) -> Manifest:
        selection = resolve_selection(target.components, target.domain_mode, self.catalog)

        missing = [key for cid in selection for key in self.catalog[cid].credentials if key not in credentials]
        if missing:
            raise ValidationError(f"Missing credentials: {', '.join(missing)}")

        edges = {}
        for cid in selection:
            deps = self.catalog[cid].dependencies(selection, self.catalog)
            edges[cid] = tuple(dict.fromkeys(dep for dep in deps if dep != cid))
        order = topological_order(edges)

        services = tuple(self._service(self.catalog[cid], target, selection, edges[cid]) for cid in order)
        routes = self._routes(target, selection) if target.domain_mode else None

        manifest = Manifest(services=services, routes=routes, credentials=credentials)
        self._validate(manifest, target)
        log.debug(f"Manifest order: {', '.join(manifest.order)}")
        return manifest

    def _service(
        self,
        spec: ComponentSpec,
        target: InstallationTarget,
        selection: tuple[str, ...],
        depends_on: tuple[str, ...],
    ) -> ServiceDefinition:
        version = target.version(spec.identifier)
        image = f"{spec.image}:{version}"
        build = None
        if spec.identifier == CORE and target.media_tools:
            image = f"{MEDIA_IMAGE}:{version}"
            build = BuildRecipe(context='.', dockerfile=MEDIA_DOCKERFILE)

        if target.domain_mode:
            ports = spec.domain_ports
        else:
            ports = spec.direct_ports

        labels = ()
        if WATCHTOWER in selection:
            updatable = spec.self_updating and build is None
            labels = ((WATCHTOWER_LABEL, 'true' if updatable else 'false'),)

        return ServiceDefinition(
            identifier=spec.identifier,
            image=image,
            environment=tuple(spec.environment(target)),
            volumes=spec.volumes,
            ports=ports,
            networks=(self.network,),
            depends_on=depends_on,
            healthcheck=spec.healthcheck,
            build=build,
            command=spec.command,
            user=spec.user,
            labels=labels,
        )

    def _routes(self, target: InstallationTarget, selection: tuple[str, ...]) -> RouteConfig:
        routes = []
        for cid in selection:
            spec = self.catalog[cid]
            if not spec.proxied:
                continue
            routes.append(Route(
                hostname=target.domain.hostname(cid, spec.default_label or cid),
                target=spec.identifier,
                port=spec.internal_port,
                component_id=cid,
                health_uri=spec.health_uri,
            ))
        return RouteConfig(routes=tuple(routes))

    def _validate(self, manifest: Manifest, target: InstallationTarget) -> None:
        identifiers = [service.identifier for service in manifest.services]
        if len(identifiers) != len(set(identifiers)):
            raise ValidationError("Duplicate service identifiers in manifest")
        if identifiers.count(CORE) != 1:
            raise ValidationError("Manifest must contain the core service exactly once")

        if manifest.routes is not None:
            hostnames = [route.hostname for route in manifest.routes.routes]
            if len(hostnames) != len(set(hostnames)):
                raise ValidationError(f"Duplicate route hostnames: {', '.join(hostnames)}")
            for route in manifest.routes.routes:
                if route.target not in identifiers:
                    raise ValidationError(f"Route {route.hostname} targets missing service {route.target}")

        exposed = [service.identifier for service in manifest.services if service.ports]
        if target.domain_mode:
            stray = [sid for sid in exposed if not self.catalog[sid].requires_domain]
            if stray:
                raise ValidationError(f"Services publish ports in domain mode: {', '.join(stray)}")
        elif manifest.routes is not None:
            raise ValidationError("Routes generated without a domain")


def named_volumes(manifest: Manifest, catalog: dict[str, ComponentSpec] = CATALOG) -> list[str]:
    """Named volumes used by the manifest, in service order, without duplicates."""
    names: list[str] = []
    for service in manifest.services:
        for name in catalog[service.identifier].named_volumes:
            if name not in names:
                names.append(name)
    return names


def volume_owners(manifest: Manifest, catalog: dict[str, ComponentSpec] = CATALOG) -> list[tuple[str, str]]:
    """(volume, uid:gid) pairs whose ownership must be fixed before start."""
    pairs = []
    for service in manifest.services:
        spec = catalog[service.identifier]
        if spec.volume_owner:
            for name in spec.named_volumes:
                pairs.append((name, spec.volume_owner))
    return pairs
