"""
Declarative catalog of the components the stack can install.

Each entry describes one service kind: image, ports, volumes, healthcheck and
the fixed per-kind environment and dependency rules. The manifest generator
turns a selection of entries into service definitions; nothing here touches
the host.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .config_constants import DATA_VOLUME_OWNER, PORTAINER_PASSWORD_FILE, SECRETS_DIR
from .models import HealthProbe, InstallationTarget, PortBinding

CORE = 'n8n'
REVERSE_PROXY = 'caddy'
QDRANT = 'qdrant'
PORTAINER = 'portainer'
WATCHTOWER = 'watchtower'
DOZZLE = 'dozzle'

MEDIA_IMAGE = 'n8n-stack/n8n-media'
WATCHTOWER_LABEL = 'com.centurylinklabs.watchtower.enable'

EnvBuilder = Callable[[InstallationTarget], list]
DependencyRule = Callable[[tuple, "dict[str, ComponentSpec]"], tuple]


def _no_env(_target: InstallationTarget) -> list:
    return []


def _no_dependencies(_selection: tuple, _catalog: dict) -> tuple:
    return ()


@dataclass(frozen=True)
class ComponentSpec:
    identifier: str
    title: str
    image: str
    internal_port: Optional[int] = None
    default_label: Optional[str] = None
    proxied: bool = False
    direct_ports: tuple[PortBinding, ...] = ()
    domain_ports: tuple[PortBinding, ...] = ()
    volumes: tuple[str, ...] = ()
    healthcheck: Optional[HealthProbe] = None
    health_uri: Optional[str] = None
    environment: EnvBuilder = _no_env
    dependencies: DependencyRule = _no_dependencies
    command: tuple[str, ...] = ()
    user: Optional[str] = None
    volume_owner: Optional[str] = None
    credentials: tuple[str, ...] = ()
    default_selected: bool = True
    requires_domain: bool = False
    self_updating: bool = True

    @property
    def named_volumes(self) -> tuple[str, ...]:
        """Volume sources that are named volumes rather than bind mounts."""
        names = []
        for mount in self.volumes:
            source = mount.split(':', 1)[0]
            if not source.startswith(('/', '.')):
                names.append(source)
        return tuple(names)


def _n8n_environment(target: InstallationTarget) -> list:
    env = [
        ('DB_TYPE', 'sqlite'),
        ('DB_SQLITE_VACUUM_ON_STARTUP', 'true'),
        ('DB_SQLITE_POOL_SIZE', '5'),
        ('N8N_ENFORCE_SETTINGS_FILE_PERMISSIONS', 'true'),
        ('N8N_RUNNERS_ENABLED', 'true'),
        ('N8N_BASIC_AUTH_ACTIVE', 'true'),
        ('N8N_BASIC_AUTH_USER', '${N8N_BASIC_AUTH_USER}'),
        ('N8N_BASIC_AUTH_PASSWORD', '${N8N_BASIC_AUTH_PASSWORD}'),
        ('N8N_ENCRYPTION_KEY', '${N8N_ENCRYPTION_KEY}'),
        ('N8N_LOG_LEVEL', '${N8N_LOG_LEVEL}'),
        ('N8N_METRICS', '${N8N_METRICS}'),
        ('GENERIC_TIMEZONE', '${TZ}'),
        ('TZ', '${TZ}'),
        ('N8N_PORT', '5678'),
    ]
    if target.domain is not None:
        host = target.domain.hostname(CORE, 'n8n')
        env += [
            ('N8N_HOST', host),
            ('N8N_PROTOCOL', 'https'),
            ('WEBHOOK_URL', f'https://{host}/'),
            ('N8N_PROXY_HOPS', '1'),
            ('N8N_SECURE_COOKIE', 'true'),
        ]
    else:
        env += [
            ('N8N_HOST', '0.0.0.0'),
            ('N8N_PROTOCOL', 'http'),
            ('N8N_SECURE_COOKIE', 'false'),
        ]
    if target.media_tools:
        env.append(('N8N_MEDIA_TOOLS', 'ffmpeg'))
    return env


def _qdrant_environment(_target: InstallationTarget) -> list:
    return [('QDRANT__SERVICE__API_KEY', '${QDRANT_API_KEY}')]


def _watchtower_environment(target: InstallationTarget) -> list:
    return [
        ('WATCHTOWER_CLEANUP', 'true' if target.watchtower_cleanup else 'false'),
        ('WATCHTOWER_POLL_INTERVAL', str(target.watchtower_poll_interval)),
        ('WATCHTOWER_LABEL_ENABLE', 'true'),
        ('WATCHTOWER_INCLUDE_STOPPED', 'false'),
        ('WATCHTOWER_LOG_LEVEL', 'info'),
        ('TZ', '${TZ}'),
    ]


def _dozzle_environment(_target: InstallationTarget) -> list:
    return [('DOZZLE_NO_ANALYTICS', 'true')]


def _proxy_dependencies(selection: tuple, catalog: dict) -> tuple:
    # The proxy starts after every service it routes to.
    return tuple(cid for cid in selection if catalog[cid].proxied)


DOCKER_SOCKET = '/var/run/docker.sock'

CATALOG: dict[str, ComponentSpec] = {
    CORE: ComponentSpec(
        identifier=CORE,
        title='n8n',
        image='n8nio/n8n',
        internal_port=5678,
        default_label='n8n',
        proxied=True,
        direct_ports=(PortBinding(5678, 5678),),
        volumes=('n8n_data:/home/node/.n8n',),
        healthcheck=HealthProbe(
            test=('CMD-SHELL', 'wget --no-verbose --tries=1 --spider http://localhost:5678/healthz || exit 1'),
            interval='30s',
            timeout='10s',
            retries=5,
            start_period='120s',
        ),
        health_uri='/healthz',
        environment=_n8n_environment,
        user=DATA_VOLUME_OWNER,
        volume_owner=DATA_VOLUME_OWNER,
        credentials=('N8N_BASIC_AUTH_PASSWORD', 'N8N_ENCRYPTION_KEY'),
    ),
    QDRANT: ComponentSpec(
        identifier=QDRANT,
        title='Qdrant',
        image='qdrant/qdrant',
        internal_port=6333,
        default_label='qdrant',
        proxied=True,
        direct_ports=(PortBinding(6333, 6333), PortBinding(6334, 6334)),
        volumes=('qdrant_data:/qdrant/storage',),
        healthcheck=HealthProbe(
            test=('CMD-SHELL', "bash -c ':> /dev/tcp/127.0.0.1/6333' || exit 1"),
            interval='30s',
            timeout='10s',
            retries=5,
            start_period='30s',
        ),
        environment=_qdrant_environment,
        volume_owner=DATA_VOLUME_OWNER,
        credentials=('QDRANT_API_KEY',),
    ),
    PORTAINER: ComponentSpec(
        identifier=PORTAINER,
        title='Portainer',
        image='portainer/portainer-ce',
        internal_port=9000,
        default_label='portainer',
        proxied=True,
        direct_ports=(PortBinding(9000, 9000),),
        volumes=(
            f'{DOCKER_SOCKET}:{DOCKER_SOCKET}',
            'portainer_data:/data',
            f'./{SECRETS_DIR}/{PORTAINER_PASSWORD_FILE}:/run/secrets/{PORTAINER_PASSWORD_FILE}:ro',
        ),
        command=('--admin-password-file', f'/run/secrets/{PORTAINER_PASSWORD_FILE}'),
        credentials=('PORTAINER_ADMIN_PASSWORD',),
    ),
    DOZZLE: ComponentSpec(
        identifier=DOZZLE,
        title='Dozzle',
        image='amir20/dozzle',
        internal_port=8080,
        default_label='logs',
        proxied=True,
        direct_ports=(PortBinding(8080, 8080),),
        volumes=(f'{DOCKER_SOCKET}:{DOCKER_SOCKET}:ro',),
        healthcheck=HealthProbe(
            test=('CMD', '/dozzle', 'healthcheck'),
            interval='30s',
            timeout='10s',
            retries=3,
            start_period='10s',
        ),
        environment=_dozzle_environment,
        default_selected=False,
    ),
    WATCHTOWER: ComponentSpec(
        identifier=WATCHTOWER,
        title='Watchtower',
        image='containrrr/watchtower',
        volumes=(f'{DOCKER_SOCKET}:{DOCKER_SOCKET}',),
        environment=_watchtower_environment,
        self_updating=False,
    ),
    REVERSE_PROXY: ComponentSpec(
        identifier=REVERSE_PROXY,
        title='Caddy',
        image='caddy',
        domain_ports=(PortBinding(80, 80), PortBinding(443, 443), PortBinding(443, 443, 'udp')),
        volumes=(
            './Caddyfile:/etc/caddy/Caddyfile:ro',
            'caddy_data:/data',
            'caddy_config:/config',
            'caddy_logs:/var/log/caddy',
        ),
        healthcheck=HealthProbe(
            test=('CMD', 'caddy', 'version'),
            interval='30s',
            timeout='10s',
            retries=3,
            start_period='10s',
        ),
        dependencies=_proxy_dependencies,
        requires_domain=True,
    ),
}


def default_selection(catalog: dict[str, ComponentSpec] = CATALOG) -> tuple[str, ...]:
    return tuple(cid for cid, spec in catalog.items() if spec.default_selected and not spec.requires_domain)
