#!/usr/bin/env python3
"""CLI for the alerting stack installer."""

import argparse
import logging
import signal
import sys
import threading
from typing import Callable, Optional

from .config import Settings, get_settings
from .installer import AlertingInstaller, format_summary, post_install_info
from .models import RunSummary

logger = logging.getLogger(__name__)

COMMANDS_HELP = """\
commands:
  install        install or refresh AlertManager (default)
  apply-secrets  push the credentials from the secret template
  test           run the alerting validation probe
  uninstall      remove AlertManager and local artifacts
  help           show this help
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alertstack",
        description="Install and configure AlertManager next to an existing Prometheus",
        epilog=COMMANDS_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("command", nargs="?", default="install", help="command to run")
    parser.add_argument("--kubeconfig", help="path to kubeconfig file")
    parser.add_argument("--context", help="kubeconfig context to use")
    parser.add_argument("--namespace", help="namespace running Prometheus")
    parser.add_argument("--work-dir", help="directory for the secret template and backups")
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="do not wait for AlertManager to become available",
    )
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    updates: dict = {}
    if args.kubeconfig:
        updates["kubeconfig_path"] = args.kubeconfig
    if args.context:
        updates["kube_context"] = args.context
    if args.namespace:
        updates["metrics_namespace"] = args.namespace
    if args.work_dir:
        updates["work_dir"] = args.work_dir
    if args.no_wait:
        updates["health_wait_timeout_seconds"] = 0
    if not updates:
        return settings
    return Settings.model_validate({**settings.model_dump(), **updates})


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    commands: dict[str, Callable[[AlertingInstaller], RunSummary]] = {
        "install": AlertingInstaller.install,
        "apply-secrets": AlertingInstaller.apply_secrets,
        "test": AlertingInstaller.test,
        "uninstall": AlertingInstaller.uninstall,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 0

    settings = apply_overrides(get_settings(), args)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    cancel = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())

    try:
        installer = AlertingInstaller.connect(settings, cancel=cancel)
    except ValueError as e:
        logger.error(str(e))
        return 1

    with installer:
        summary = command(installer)
    print(format_summary(summary))
    if args.command == "install" and summary.exit_code == 0:
        print(post_install_info(settings))
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
