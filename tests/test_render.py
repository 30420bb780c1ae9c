#!/usr/bin/env python3
"""
Artifact serializer tests.
"""

import stat
import tomllib
from pathlib import Path
import sys

import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from n8nstack.credentials import SECRET_SPECS  # noqa: E402
from n8nstack.manifest import ManifestGenerator  # noqa: E402
from n8nstack.models import CredentialSet, DomainConfig, InstallationTarget  # noqa: E402
from n8nstack.render import (  # noqa: E402
    compose_document,
    env_values,
    render_caddyfile,
    render_compose,
    render_env_file,
    render_manage_script,
    render_media_dockerfile,
    write_artifacts,
)

GENERATED_AT = "2026-01-01T00:00:00Z"


def _build(components=("n8n",), domain=None, **kwargs):
    target = InstallationTarget(components=tuple(components), domain=domain, **kwargs)
    credentials = CredentialSet({key: f"{key.lower()}-secret-value-0123456789" for key in SECRET_SPECS})
    return target, ManifestGenerator().generate(target, credentials)


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


class TestComposeSerializer:
    def test_domain_mode_document(self):
        _, manifest = _build(("n8n", "qdrant"), DomainConfig("example.com"))

        document = compose_document(manifest)

        assert list(document["services"]) == ["n8n", "qdrant", "caddy"]
        caddy = document["services"]["caddy"]
        assert caddy["ports"] == ["80:80", "443:443", "443:443/udp"]
        assert caddy["depends_on"] == {
            "n8n": {"condition": "service_healthy"},
            "qdrant": {"condition": "service_healthy"},
        }
        assert "ports" not in document["services"]["n8n"]
        assert document["networks"] == {"n8n_network": {"name": "n8n_network", "external": True}}
        assert document["volumes"]["n8n_data"] == {"name": "n8n_data"}

    def test_ip_mode_ports_and_secrets_by_reference(self):
        _, manifest = _build(("n8n", "qdrant"))

        document = compose_document(manifest)

        n8n = document["services"]["n8n"]
        assert n8n["ports"] == ["5678:5678"]
        assert n8n["container_name"] == "n8n"
        assert n8n["environment"]["N8N_BASIC_AUTH_PASSWORD"] == "${N8N_BASIC_AUTH_PASSWORD}"
        assert document["services"]["qdrant"]["environment"]["QDRANT__SERVICE__API_KEY"] == "${QDRANT_API_KEY}"
        assert n8n["healthcheck"]["start_period"] == "120s"

    def test_yaml_round_trips(self):
        _, manifest = _build(("n8n", "portainer", "watchtower"))

        parsed = yaml.safe_load(render_compose(manifest))

        assert parsed["name"] == "n8n-stack"
        assert set(parsed["services"]) == {"n8n", "portainer", "watchtower"}
        assert parsed["services"]["portainer"]["command"] == [
            "--admin-password-file",
            "/run/secrets/portainer_admin_password",
        ]

    def test_no_secret_values_in_compose(self):
        _, manifest = _build(("n8n", "qdrant", "portainer"))

        rendered = render_compose(manifest)

        for value in manifest.credentials.values.values():
            assert value not in rendered

    def test_media_build_recipe(self):
        _, manifest = _build(("n8n",), media_tools=True)

        n8n = compose_document(manifest)["services"]["n8n"]

        assert n8n["build"] == {"context": ".", "dockerfile": "Dockerfile.n8n-media"}


class TestCaddyfile:
    def test_site_and_redirect_blocks(self):
        target, manifest = _build(("n8n", "qdrant"), DomainConfig("example.com"))

        caddyfile = render_caddyfile(manifest, target, GENERATED_AT)

        assert "n8n.example.com {" in caddyfile
        assert "qdrant.example.com {" in caddyfile
        assert "reverse_proxy n8n:5678" in caddyfile
        assert "reverse_proxy qdrant:6333" in caddyfile
        assert "health_uri /healthz" in caddyfile
        assert "http://n8n.example.com {" in caddyfile
        assert "http://qdrant.example.com {" in caddyfile
        assert caddyfile.count("redir https://{host}{uri} permanent") == 2
        assert "protocols tls1.2 tls1.3" in caddyfile
        assert "email admin@example.com" in caddyfile

    def test_no_acme_email_for_plain_username(self):
        target, manifest = _build(("n8n",), DomainConfig("example.com"), admin_user="admin")

        assert "email" not in render_caddyfile(manifest, target, GENERATED_AT)


class TestEnvFile:
    def test_values(self):
        target, manifest = _build(("n8n", "qdrant"), DomainConfig("example.com"), admin_user="ops")

        values = env_values(target, manifest)

        assert values["N8N_BASIC_AUTH_USER"] == "ops"
        assert values["MAIN_DOMAIN"] == "example.com"
        assert values["TZ"] == "UTC"
        assert values["N8N_VERSION"] == "latest"
        assert values["CADDY_VERSION"] == "latest"
        assert values["QDRANT_API_KEY"] == manifest.credentials.get("QDRANT_API_KEY")

    def test_rendering(self):
        text = render_env_file({"A": "1", "B": "two"}, GENERATED_AT)

        assert text.endswith("A=1\nB=two\n")
        assert f"# Generated: {GENERATED_AT}" in text


class TestScripts:
    def test_manage_script_lists_components(self):
        _, manifest = _build(("n8n", "qdrant"), DomainConfig("example.com"))

        script = render_manage_script(manifest, GENERATED_AT)

        assert script.startswith("#!/usr/bin/env bash")
        assert 'COMPONENTS=("n8n" "qdrant" "caddy")' in script
        for action in ("start)", "stop)", "restart)", "status)", "logs)", "update)"):
            assert action in script
        assert "build --pull" not in script

    def test_manage_script_rebuilds_media_image(self):
        _, manifest = _build(("n8n",), media_tools=True)

        assert "build --pull n8n" in render_manage_script(manifest, GENERATED_AT)

    def test_media_dockerfile(self):
        target, _ = _build(("n8n",), media_tools=True, versions={"n8n": "1.2.3"})

        dockerfile = render_media_dockerfile(target)

        assert "FROM n8nio/n8n:1.2.3" in dockerfile
        assert "apk add --no-cache ffmpeg" in dockerfile


class TestWriteArtifacts:
    def test_domain_mode_files(self, tmp_path):
        target, manifest = _build(("n8n", "portainer"), DomainConfig("example.com"))

        written = write_artifacts(tmp_path, target, manifest, GENERATED_AT)

        names = [path.name for path in written]
        assert names[0] == ".env"
        assert "Caddyfile" in names
        assert "docker-compose.yml" in names
        assert _mode(tmp_path / ".env") == 0o600
        assert _mode(tmp_path / "secrets" / "portainer_admin_password") == 0o600
        assert _mode(tmp_path / "manage-stack.sh") == 0o755
        assert (tmp_path / "secrets" / "portainer_admin_password").read_text() == manifest.credentials.get(
            "PORTAINER_ADMIN_PASSWORD"
        )

    def test_state_file_has_fingerprints_only(self, tmp_path):
        target, manifest = _build(("n8n", "qdrant"), DomainConfig("example.com"))

        write_artifacts(tmp_path, target, manifest, GENERATED_AT)

        with open(tmp_path / "stack-state.toml", "rb") as f:
            state = tomllib.load(f)
        assert state["stack"]["components"] == ["n8n", "qdrant", "caddy"]
        assert state["stack"]["domain_mode"] is True
        assert state["domain"]["routes"] == {"n8n": "n8n.example.com", "qdrant": "qdrant.example.com"}
        for key, value in manifest.credentials.values.items():
            assert state["credentials"][key] != value
            assert len(state["credentials"][key]) == 12

    def test_switching_to_ip_mode_removes_stale_files(self, tmp_path):
        target, manifest = _build(("n8n", "portainer"), DomainConfig("example.com"), media_tools=True)
        write_artifacts(tmp_path, target, manifest, GENERATED_AT)
        assert (tmp_path / "Caddyfile").exists()
        assert (tmp_path / "Dockerfile.n8n-media").exists()

        target, manifest = _build(("n8n",))
        write_artifacts(tmp_path, target, manifest, GENERATED_AT)

        assert not (tmp_path / "Caddyfile").exists()
        assert not (tmp_path / "Dockerfile.n8n-media").exists()
        assert not (tmp_path / "secrets" / "portainer_admin_password").exists()
        assert "caddy" not in (tmp_path / "docker-compose.yml").read_text()

    def test_regeneration_replaces_compose(self, tmp_path):
        target, manifest = _build(("n8n", "qdrant"))
        write_artifacts(tmp_path, target, manifest, GENERATED_AT)
        first = (tmp_path / "docker-compose.yml").read_text()

        write_artifacts(tmp_path, target, manifest, GENERATED_AT)

        assert (tmp_path / "docker-compose.yml").read_text() == first
        assert not list(tmp_path.glob("*.tmp"))
