"""
Generated secrets for the stack.

Secrets live in the ``.env`` file of the configuration directory. A re-run
reuses whatever is already there, so credentials only change after the
installation was cleaned.
"""

from __future__ import annotations

import hashlib
import os
import secrets
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import log
from .errors import ValidationError
from .models import CredentialSet


@dataclass(frozen=True)
class SecretSpec:
    length: int
    floor: int


SECRET_SPECS: dict[str, SecretSpec] = {
    'N8N_BASIC_AUTH_PASSWORD': SecretSpec(length=16, floor=8),
    'N8N_ENCRYPTION_KEY': SecretSpec(length=32, floor=24),
    'QDRANT_API_KEY': SecretSpec(length=32, floor=16),
    'PORTAINER_ADMIN_PASSWORD': SecretSpec(length=16, floor=12),
}

# Regeneration attempts for a secret that comes out below its floor
MAX_GENERATION_ATTEMPTS = 5


def gen_pw(length: int = 16) -> str:
    """
    Generate a secure random password of letters and digits.

    Raises:
        ValueError: If length is less than 1
    """
    if length < 1:
        raise ValueError("Password length must be at least 1")
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def read_env_file(env_file: Path | str) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines, ignoring blanks and comments."""
    values: dict[str, str] = {}
    path = Path(env_file)
    if not path.is_file():
        return values
    for raw in path.read_text(encoding='utf-8').splitlines():
        line = raw.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        values[key.strip()] = value.strip()
    return values


def write_private_file(path: Path | str, content: str) -> None:
    """Write ``content`` atomically with owner-only permissions."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + '.tmp')
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        f.write(content)
    os.chmod(tmp, 0o600)
    os.replace(tmp, path)


def fingerprint(value: str) -> str:
    return hashlib.sha256(value.encode('utf-8')).hexdigest()[:12]


def generate_secret(key: str, generator: Callable[[int], str] = gen_pw) -> str:
    spec = SECRET_SPECS[key]
    for attempt in range(1, MAX_GENERATION_ATTEMPTS + 1):
        value = generator(spec.length)
        if len(value) >= spec.floor:
            return value
        log.warn(f"Generated {key} too short ({len(value)} < {spec.floor}), regenerating ({attempt}/{MAX_GENERATION_ATTEMPTS})")
    raise ValidationError(f"Could not generate {key} with at least {spec.floor} characters")


def build_credentials(
    keys: Iterable[str],
    existing: Optional[dict[str, str]] = None,
    generator: Callable[[int], str] = gen_pw,
) -> CredentialSet:
    """
    Reuse existing secrets where present and valid, generate the rest.

    An existing value below its floor is replaced rather than trusted.
    """
    existing = existing or {}
    values: dict[str, str] = {}
    generated = []
    for key in keys:
        current = existing.get(key, '')
        if current and len(current) >= SECRET_SPECS[key].floor:
            values[key] = current
            continue
        values[key] = generate_secret(key, generator)
        generated.append(key)

    if generated:
        log.info(f"Generated credentials: {', '.join(generated)}")
    reused = [key for key in values if key not in generated]
    if reused:
        log.info(f"Reusing existing credentials: {', '.join(reused)}")
    return CredentialSet(values)
