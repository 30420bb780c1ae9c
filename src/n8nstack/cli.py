#!/usr/bin/env python3
"""
n8n-stack: install an n8n automation stack on a single Docker host.

Examples:
    sudo n8n-stack                         # Interactive install
    sudo n8n-stack --auto                  # Unattended, settings from env
    sudo MAIN_DOMAIN=example.com n8n-stack --auto
    sudo n8n-stack --minimal --no-domain   # n8n only, reachable on :5678
    sudo n8n-stack --cleanup               # Remove the installation
    n8n-stack --dry-run --setup-dir ./out  # Render files only
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

from . import host, log
from .config import StackConfig, apply_cli_overrides, load_settings
from .config_constants import IP_FALLBACK
from .errors import StackError
from .prompts import Prompter, is_attended
from .sequencer import PhaseSequencer
from .summary import print_summary


def get_cli_version() -> str:
    try:
        from importlib.metadata import version as package_version

        return package_version("n8n-stack")
    except Exception:
        from . import __version__

        return __version__


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="n8n-stack",
        description="Install and manage an n8n stack (n8n, Qdrant, Portainer, Dozzle, Watchtower, Caddy)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--auto", "--non-interactive",
        dest="auto",
        action="store_true",
        help="Unattended run: never prompt; exhausted retries are fatal",
    )
    parser.add_argument(
        "--force-interactive",
        action="store_true",
        help="Prompt even when stdin is not a terminal",
    )
    parser.add_argument(
        "--minimal",
        action="store_true",
        help="Install n8n only",
    )
    parser.add_argument(
        "--no-domain",
        action="store_true",
        help="Ignore MAIN_DOMAIN and publish service ports directly",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Remove the existing installation (containers, volumes, network, configuration) and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="TOML configuration file",
    )
    parser.add_argument(
        "--setup-dir",
        type=Path,
        default=None,
        help="Configuration directory (default: /opt/n8n-stack)",
    )
    parser.add_argument(
        "--existing",
        choices=["keep", "clean", "reuse", "exit"],
        default=None,
        help="What to do with an existing installation",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Generate the configuration files only; do not touch Docker or the host",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO or STACK_LOG_LEVEL)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {get_cli_version()}",
    )

    args = parser.parse_args(argv)
    if args.auto and args.force_interactive:
        parser.error("--auto and --force-interactive are mutually exclusive")
    if args.cleanup and args.dry_run:
        parser.error("--cleanup cannot be combined with --dry-run")
    return args


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)

    try:
        settings = apply_cli_overrides(load_settings(args.config), args)
        config = StackConfig.from_settings(settings)
    except StackError as e:
        log.configure_logging(args.log_level or "INFO")
        log.error(str(e))
        return e.exit_code

    log.configure_logging(config.log_level)

    if not args.dry_run:
        try:
            host.check_privileges()
        except StackError as e:
            log.error(str(e))
            return e.exit_code

    attended = False if args.auto else is_attended(config.force_interactive)
    log.info(f"n8n-stack {get_cli_version()} ({'interactive' if attended else 'unattended'})")

    sequencer = PhaseSequencer(config, attended=attended, prompter=Prompter(), dry_run=args.dry_run)
    try:
        if args.cleanup:
            report = sequencer.cleanup_only()
        else:
            report = sequencer.run()
    except KeyboardInterrupt:
        log.error("Interrupted")
        return 130

    ip_lookup = (lambda: IP_FALLBACK) if args.dry_run else host.public_ip
    print_summary(report, config, ip_lookup)
    return report.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
