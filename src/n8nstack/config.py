"""
Configuration loading and validation.

Settings are flat ENV_STYLE keys. Sources, lowest precedence first:

1. built-in defaults (``DEFAULTS``)
2. an optional TOML file; nested tables are flattened, so
   ``[install] qdrant = false`` becomes ``INSTALL_QDRANT=false``
3. the process environment
4. command-line flags

``StackConfig`` holds the run-level options. The ``InstallationTarget`` is
built later, during the configuration phase, by ``collect_target``.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from . import log
from .components import CATALOG, CORE, default_selection
from .config_constants import (
    DEFAULT_HEALTH_INTERVAL,
    DEFAULT_HEALTH_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    SETUP_DIR,
)
from .errors import ValidationError
from .models import Disposition, DomainConfig, InstallationTarget, RetryPolicy
from .prompts import Prompter

DOMAIN_RE = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9.-]*[a-zA-Z0-9]$')
LABEL_RE = re.compile(r'^[a-z0-9]([a-z0-9-]*[a-z0-9])?$')
EMAIL_RE = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
IDENTIFIER_RE = re.compile(r'^[a-zA-Z0-9_-]+$')

TRUE_VALUES = {'1', 'true', 'yes', 'y', 'on'}
FALSE_VALUES = {'0', 'false', 'no', 'n', 'off', ''}

UNATTENDED_FALLBACKS = ('keep', 'reuse', 'fail')
NO_DOMAIN_ANSWERS = ('none', '-')

DEFAULTS: dict[str, str] = {
    'MAIN_DOMAIN': '',
    'N8N_USER': 'admin@example.com',
    'INSTALL_QDRANT': 'yes',
    'INSTALL_PORTAINER': 'yes',
    'INSTALL_WATCHTOWER': 'yes',
    'INSTALL_DOZZLE': 'no',
    'INSTALL_CADDY': '',
    'N8N_MEDIA_TOOLS': 'no',
    'TZ': 'UTC',
    'STACK_SETUP_DIR': SETUP_DIR,
    'STACK_MAX_RETRIES': str(DEFAULT_MAX_RETRIES),
    'STACK_RETRY_DELAY': str(DEFAULT_RETRY_DELAY),
    'STACK_HEALTH_TIMEOUT': str(DEFAULT_HEALTH_TIMEOUT),
    'STACK_HEALTH_INTERVAL': str(DEFAULT_HEALTH_INTERVAL),
    'STACK_EXISTING_INSTALL': '',
    'STACK_UNATTENDED_FALLBACK': 'keep',
    'FORCE_INTERACTIVE': 'no',
    'STACK_LOG_LEVEL': 'INFO',
    'WATCHTOWER_POLL_INTERVAL': '86400',
    'WATCHTOWER_CLEANUP': 'true',
}
for _cid, _spec in CATALOG.items():
    DEFAULTS[f'{_cid.upper()}_VERSION'] = 'latest'
    if _spec.default_label:
        DEFAULTS[f'{_cid.upper()}_SUBDOMAIN'] = _spec.default_label


# ============================================================================
# Loading
# ============================================================================

def parse_toml(file_path: Path | str) -> dict:
    """Parse TOML file using tomllib."""
    path = Path(file_path)
    if not path.is_file():
        raise ValidationError(f"Configuration file not found: {path}")
    try:
        with open(path, 'rb') as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValidationError(f"Invalid TOML in {path}: {e}") from e


def _stringify_env_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def flatten_dict(data: dict, parent_key: str = "", sep: str = "_") -> dict:
    """Flatten nested dict into ENV_VAR-style keys (uppercased)."""
    items: dict[str, str] = {}
    for key, value in data.items():
        new_key = f"{parent_key}{sep}{key}" if parent_key else str(key)
        if isinstance(value, dict):
            items.update(flatten_dict(value, new_key, sep=sep))
        elif isinstance(value, list):
            items[new_key.upper()] = ",".join(_stringify_env_value(item) for item in value)
        else:
            items[new_key.upper()] = _stringify_env_value(value)
    return items


def load_settings(config_file: Optional[Path | str] = None, environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    environ = os.environ if environ is None else environ
    settings = dict(DEFAULTS)

    if config_file:
        from_file = flatten_dict(parse_toml(config_file))
        unknown = sorted(set(from_file) - set(DEFAULTS))
        if unknown:
            log.warn(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
        settings.update({key: value for key, value in from_file.items() if key in DEFAULTS})
        log.debug(f"Loaded configuration file {config_file}")

    for key in DEFAULTS:
        if key in environ:
            settings[key] = environ[key]
    return settings


def apply_cli_overrides(settings: dict[str, str], args) -> dict[str, str]:
    """Fold command-line flags into the settings (flags win)."""
    settings = dict(settings)
    if getattr(args, 'minimal', False):
        for cid in CATALOG:
            if cid != CORE:
                settings[f'INSTALL_{cid.upper()}'] = 'no'
    if getattr(args, 'no_domain', False):
        settings['MAIN_DOMAIN'] = ''
    if getattr(args, 'force_interactive', False):
        settings['FORCE_INTERACTIVE'] = 'yes'
    if getattr(args, 'setup_dir', None):
        settings['STACK_SETUP_DIR'] = str(args.setup_dir)
    if getattr(args, 'existing', None):
        settings['STACK_EXISTING_INSTALL'] = args.existing
    if getattr(args, 'log_level', None):
        settings['STACK_LOG_LEVEL'] = args.log_level
    return settings


# ============================================================================
# Parsing helpers
# ============================================================================

def parse_bool(value: str, key: str) -> bool:
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValidationError(f"{key} must be yes or no, got '{value}'")


def _parse_number(settings: Mapping[str, str], key: str, kind=int, minimum: float = 0):
    raw = settings.get(key, DEFAULTS.get(key, ''))
    try:
        value = kind(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number, got '{raw}'") from None
    if value < minimum:
        raise ValidationError(f"{key} must be at least {minimum}, got {value}")
    return value


def validate_domain(domain: str) -> str:
    domain = domain.strip().lower()
    if not DOMAIN_RE.match(domain) or '.' not in domain or '..' in domain:
        raise ValidationError(f"Invalid domain name: '{domain}'")
    return domain


def validate_label(label: str, component_id: str) -> str:
    label = label.strip().lower()
    if not LABEL_RE.match(label):
        raise ValidationError(f"Invalid subdomain label for {component_id}: '{label}'")
    return label


def validate_admin_user(user: str) -> str:
    user = user.strip()
    if EMAIL_RE.match(user) or IDENTIFIER_RE.match(user):
        return user
    raise ValidationError(f"Invalid admin user '{user}': use an email address or letters, digits, '_' and '-'")


# ============================================================================
# Run-level configuration
# ============================================================================

@dataclass(frozen=True)
class StackConfig:
    settings: dict[str, str]
    setup_dir: Path
    retry: RetryPolicy
    health_timeout: float
    health_interval: float
    existing: Optional[Disposition]
    unattended_fallback: str
    force_interactive: bool
    log_level: str

    @classmethod
    def from_settings(cls, settings: dict[str, str]) -> "StackConfig":
        raw_existing = settings.get('STACK_EXISTING_INSTALL', '').strip().lower()
        existing = None
        if raw_existing:
            try:
                existing = Disposition(raw_existing)
            except ValueError:
                choices = ', '.join(d.value for d in Disposition)
                raise ValidationError(f"STACK_EXISTING_INSTALL must be one of {choices}, got '{raw_existing}'") from None

        fallback = settings.get('STACK_UNATTENDED_FALLBACK', 'keep').strip().lower()
        if fallback not in UNATTENDED_FALLBACKS:
            raise ValidationError(f"STACK_UNATTENDED_FALLBACK must be one of {', '.join(UNATTENDED_FALLBACKS)}, got '{fallback}'")

        return cls(
            settings=settings,
            setup_dir=Path(settings.get('STACK_SETUP_DIR') or SETUP_DIR),
            retry=RetryPolicy(
                max_attempts=_parse_number(settings, 'STACK_MAX_RETRIES', int, 1),
                delay=_parse_number(settings, 'STACK_RETRY_DELAY', float, 0),
            ),
            health_timeout=_parse_number(settings, 'STACK_HEALTH_TIMEOUT', float, 0),
            health_interval=_parse_number(settings, 'STACK_HEALTH_INTERVAL', float, 0),
            existing=existing,
            unattended_fallback=fallback,
            force_interactive=parse_bool(settings.get('FORCE_INTERACTIVE', 'no'), 'FORCE_INTERACTIVE'),
            log_level=settings.get('STACK_LOG_LEVEL', 'INFO'),
        )


# ============================================================================
# Installation target
# ============================================================================

def _selected_components(settings: Mapping[str, str]) -> list[str]:
    selected = [CORE]
    defaults = default_selection()
    for cid, spec in CATALOG.items():
        if cid == CORE:
            continue
        raw = settings.get(f'INSTALL_{cid.upper()}', '')
        if raw == '' and spec.requires_domain:
            # Follows the domain; resolved by the manifest generator
            continue
        enabled = parse_bool(raw, f'INSTALL_{cid.upper()}') if raw != '' else cid in defaults
        if enabled:
            selected.append(cid)
    return selected


def _ask_valid(prompter: Prompter, question: str, default: str, validator) -> str:
    while True:
        answer = prompter.ask(question, default)
        try:
            return validator(answer)
        except ValidationError as e:
            log.warn(str(e))


def _ask_domain(prompter: Prompter, current: str) -> str:
    """Ask for the root domain; an empty answer without default or 'none' means IP mode."""
    question = "Domain for HTTPS access ('none' for IP mode)"
    answer = prompter.ask(question, current)
    while answer and answer.lower() not in NO_DOMAIN_ANSWERS:
        try:
            return validate_domain(answer)
        except ValidationError as e:
            log.warn(str(e))
            answer = prompter.ask(question, "")
    return ''


def _warn_forced_components(settings: Mapping[str, str]) -> None:
    for cid, spec in CATALOG.items():
        key = f'INSTALL_{cid.upper()}'
        raw = settings.get(key, '')
        if spec.requires_domain and raw != '' and not parse_bool(raw, key):
            log.warn(f"{spec.title} is required in domain mode; ignoring {key}={raw}")


def collect_target(settings: Mapping[str, str], prompter: Optional[Prompter] = None) -> InstallationTarget:
    """
    Build the installation target from settings, asking the operator when a
    prompter is given. Invalid settings and an invalid admin user are fatal;
    an invalid domain or subdomain answer is asked again.
    """
    admin_user = validate_admin_user(settings.get('N8N_USER', DEFAULTS['N8N_USER']))
    root = settings.get('MAIN_DOMAIN', '').strip()
    domain_root = validate_domain(root) if root else ''
    components = _selected_components(settings)
    media_tools = parse_bool(settings.get('N8N_MEDIA_TOOLS', 'no'), 'N8N_MEDIA_TOOLS')

    if prompter is not None:
        domain_root = _ask_domain(prompter, domain_root)

        chosen = [CORE]
        for cid, spec in CATALOG.items():
            if cid == CORE or spec.requires_domain:
                continue
            if prompter.confirm(f"Install {spec.title}?", default=cid in components):
                chosen.append(cid)
        components = chosen
        admin_user = validate_admin_user(prompter.ask("n8n admin user (email or username)", admin_user))

    if domain_root:
        _warn_forced_components(settings)

    labels: dict[str, str] = {}
    domain = None
    if domain_root:
        for cid in components:
            spec = CATALOG[cid]
            if not spec.proxied:
                continue
            label = validate_label(settings.get(f'{cid.upper()}_SUBDOMAIN', spec.default_label), cid)
            if prompter is not None:
                label = _ask_valid(
                    prompter,
                    f"Subdomain for {spec.title}",
                    label,
                    lambda value, cid=cid: validate_label(value, cid),
                )
            labels[cid] = label
        domain = DomainConfig(root=domain_root, labels=labels)

    versions = {cid: settings.get(f'{cid.upper()}_VERSION', 'latest') or 'latest' for cid in CATALOG}

    return InstallationTarget(
        components=tuple(components),
        domain=domain,
        admin_user=admin_user,
        media_tools=media_tools,
        versions=versions,
        timezone=settings.get('TZ', 'UTC') or 'UTC',
        watchtower_poll_interval=_parse_number(settings, 'WATCHTOWER_POLL_INTERVAL', int, 60),
        watchtower_cleanup=parse_bool(settings.get('WATCHTOWER_CLEANUP', 'true'), 'WATCHTOWER_CLEANUP'),
    )
