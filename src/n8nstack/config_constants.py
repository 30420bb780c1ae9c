#!/usr/bin/env python3
"""
Naming constants for the n8n stack installation.

CRITICAL: This is the SINGLE SOURCE OF TRUTH for resource names and generated
filenames. Detection and cleanup rely on these names matching what the
manifest generator emits.
"""

# ============================================================================
# Host layout
# ============================================================================

SETUP_DIR = '/opt/n8n-stack'
SHARED_NETWORK = 'n8n_network'

# Generated artifacts (inside SETUP_DIR)
ENV_FILE = '.env'
COMPOSE_FILE = 'docker-compose.yml'
CADDY_FILE = 'Caddyfile'
MANAGE_SCRIPT = 'manage-stack.sh'
MEDIA_DOCKERFILE = 'Dockerfile.n8n-media'
STATE_FILE = 'stack-state.toml'
SECRETS_DIR = 'secrets'
PORTAINER_PASSWORD_FILE = 'portainer_admin_password'

# ============================================================================
# Resource naming convention
# ============================================================================

# Containers that any historical layout of the stack may have created.
KNOWN_CONTAINERS = (
    'n8n',
    'caddy',
    'qdrant',
    'portainer',
    'watchtower',
    'dozzle',
    'n8n-init',
    'qdrant-init',
)

KNOWN_VOLUMES = (
    'n8n_data',
    'caddy_data',
    'caddy_config',
    'caddy_logs',
    'qdrant_data',
    'portainer_data',
)

# ============================================================================
# Host requirements
# ============================================================================

MIN_RAM_GB = 2
MIN_DISK_GB = 8
MIN_CPU_CORES = 1

PREREQUISITE_PACKAGES = ('curl', 'wget', 'ufw', 'openssl')
DOCKER_INSTALL_URL = 'https://get.docker.com'

IP_DETECT_URLS = (
    'https://ifconfig.me',
    'https://ipv4.icanhazip.com',
    'https://api.ipify.org',
)
IP_FALLBACK = 'your-server-ip'

# ============================================================================
# Retry / health defaults
# ============================================================================

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 5
DEFAULT_HEALTH_TIMEOUT = 300
DEFAULT_HEALTH_INTERVAL = 5

# Owner uid:gid of the n8n and qdrant data volumes
DATA_VOLUME_OWNER = '1000:1000'
