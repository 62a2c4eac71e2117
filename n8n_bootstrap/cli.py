"""
Command line entry point.

Usage:
  n8n-bootstrap secrets --domain n8n.example.com --email admin@example.com
  n8n-bootstrap secrets --overwrite          # rotate every secret
  n8n-bootstrap certs --domain n8n.example.com --validity 730
  n8n-bootstrap compose-file
  n8n-bootstrap deploy --domain n8n.example.com
  n8n-bootstrap compose ps
  n8n-bootstrap compose logs n8n --lines 200
  n8n-bootstrap compose backup
  n8n-bootstrap compose restore backups/n8n_backup_20240101_120000.tar.gz
  n8n-bootstrap tui

Every command works on --base-dir (default: current directory), which holds
bootstrap.yaml, .env, docker-compose.yml, secrets/ and certs/.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .core.cert_generator import CertificateManager
from .core.compose import write_compose
from .core.config_loader import BootstrapSettings, get_config_loader
from .core.deployer import deploy
from .core.docker_manager import DockerManager
from .core.errors import BootstrapError
from .core.pipeline import RunStatus, run_bootstrap

logger = logging.getLogger(__name__)

COMPOSE_ACTIONS = (
    "up", "down", "start", "stop", "restart", "status", "ps", "logs", "pull", "update",
    "backup", "restore", "reset", "clean",
)


def _add_identity_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-d", "--domain", help="Public domain name (default: n8n.yourdomain.com)")
    parser.add_argument("-e", "--email", help="Contact email for certificates (default: n8n@localdomain.com)")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="n8n-bootstrap",
        description="Bootstrap secrets, certificates and configuration for an n8n queue-mode deployment.",
    )
    parser.add_argument("--base-dir", default=".", help="Deployment directory (default: current directory)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("secrets", help="Generate secrets, .env and the secrets summary")
    _add_identity_args(p)
    p.add_argument("-p", "--path", help="Secrets directory relative to the base dir (default: secrets)")
    p.add_argument("--overwrite", action="store_true", help="Regenerate secrets that already exist")
    p.add_argument("--best-effort", action="store_true", help="Keep going after a secret fails to write")
    p.add_argument("--require-fresh", action="store_true", help="Fail if any secret already exists")
    p.add_argument("--save", action="store_true", help="Persist the given options to bootstrap.yaml")

    p = sub.add_parser("certs", help="Generate self-signed CA and server certificates")
    p.add_argument("-d", "--domain", help="Domain for the server certificate")
    p.add_argument("-p", "--path", help="Certificates directory relative to the base dir (default: certs)")
    p.add_argument("--validity", type=int, help="Validity in days (default: 365)")
    p.add_argument("--overwrite", action="store_true", help="Replace existing certificates")

    p = sub.add_parser("compose-file", help="Write docker-compose.yml")
    p.add_argument("--overwrite", action="store_true", help="Replace an existing docker-compose.yml")

    p = sub.add_parser("deploy", help="Prepare all artifacts and start the stack")
    _add_identity_args(p)
    p.add_argument("--overwrite", action="store_true", help="Regenerate existing secrets and certificates")
    p.add_argument("--no-start", action="store_true", help="Prepare artifacts without running docker compose")

    p = sub.add_parser("compose", help="Manage the running stack")
    p.add_argument("action", choices=COMPOSE_ACTIONS)
    p.add_argument("service", nargs="?", help="Service name for logs/restart (n8n, n8n-worker-1, postgres, redis, traefik), or the archive for restore")
    p.add_argument("-n", "--lines", type=int, default=100, help="Number of log lines (default: 100)")
    p.add_argument("-f", "--follow", action="store_true", help="Follow log output")
    p.add_argument("--volumes", action="store_true", help="With down: also remove data volumes")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask before restore, reset or clean")

    sub.add_parser("tui", help="Start the interactive terminal UI")
    return parser


def confirm(prompt: str, assume_yes: bool = False) -> bool:
    """Ask a yes/no question on the terminal. Anything but yes means no."""
    if assume_yes:
        return True
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )


def resolve_settings(args: argparse.Namespace) -> BootstrapSettings:
    """Load bootstrap.yaml and apply command line overrides."""
    loader = get_config_loader(Path(args.base_dir))
    data = loader.load_settings().model_dump()

    if getattr(args, "domain", None):
        data["domain"] = args.domain
    if getattr(args, "email", None):
        data["email"] = args.email
    if getattr(args, "overwrite", False):
        data["overwrite_existing"] = True
    if getattr(args, "best_effort", False):
        data["best_effort"] = True
    if args.command == "secrets" and args.path:
        data["secrets_dir"] = args.path
    if args.command == "certs":
        if args.path:
            data["certificates"]["certs_dir"] = args.path
        if args.validity:
            data["certificates"]["validity_days"] = args.validity

    settings = BootstrapSettings(**data)
    if getattr(args, "save", False):
        loader.save_settings(settings)
    return settings


def cmd_secrets(args: argparse.Namespace, settings: BootstrapSettings) -> int:
    report = run_bootstrap(Path(args.base_dir), settings, require_fresh=args.require_fresh)
    for line in report.summary_lines():
        print(line)
    if report.status == RunStatus.SUCCESS:
        print("Keep these secrets secure and never commit them to version control.")
        print(f"Admin password is in {report.summary_path}")
        return 0
    return 1


def cmd_certs(args: argparse.Namespace, settings: BootstrapSettings) -> int:
    certs = CertificateManager(
        settings.certs_path(Path(args.base_dir)),
        overwrite_existing=settings.overwrite_existing,
    )
    bundle = certs.generate(settings.domain, settings.certificates.validity_days)
    for path in bundle.all_paths():
        print(f"written      {path}")
    print("For production use, replace with certificates from a trusted CA.")
    return 0


def cmd_compose_file(args: argparse.Namespace, settings: BootstrapSettings) -> int:
    path = write_compose(Path(args.base_dir), settings, overwrite=args.overwrite)
    print(f"written      {path}")
    return 0


def cmd_deploy(args: argparse.Namespace, settings: BootstrapSettings) -> int:
    result = deploy(Path(args.base_dir), settings, start=not args.no_start, progress_callback=print)
    if result.report is not None and result.report.status != RunStatus.SUCCESS:
        for line in result.report.summary_lines():
            print(line)
    print(result.message)
    return 0 if result.success else 1


def cmd_compose(args: argparse.Namespace, settings: BootstrapSettings) -> int:
    docker = DockerManager(Path(args.base_dir))
    docker.check_prerequisites()

    if args.action in ("up", "start", "restart", "update"):
        missing = docker.check_project_setup(settings)
        if missing:
            for path in missing:
                print(f"missing      {path}")
            print("Run 'n8n-bootstrap deploy --no-start' first.")
            return 1

    action = args.action
    if action in ("status", "ps"):
        containers = docker.compose_ps()
        if not containers:
            print("No containers")
        for c in containers:
            state = "running" if c.running else "stopped"
            print(f"{c.service:<14} {c.name:<30} {state:<8} {c.status}")
        if action == "status" and any(c.running for c in containers):
            print()
            print(docker.stats())
        return 0
    if action in ("backup", "restore", "reset", "clean"):
        return _maintenance(docker, args, settings)
    if action == "logs":
        output = docker.compose_logs(tail=args.lines, service=args.service, follow=args.follow)
        if output:
            print(output)
        return 0

    if action == "up":
        success, output = docker.compose_up()
    elif action == "down":
        success, output = docker.compose_down(remove_volumes=args.volumes)
    elif action == "start":
        success, output = docker.compose_start()
    elif action == "stop":
        success, output = docker.compose_stop()
    elif action == "restart":
        success, output = docker.compose_restart(args.service)
    elif action == "pull":
        success, output = docker.compose_pull()
    else:
        success, output = docker.update()

    if output:
        print(output)
    return 0 if success else 1


def _maintenance(docker: DockerManager, args: argparse.Namespace, settings: BootstrapSettings) -> int:
    action = args.action
    if action == "backup":
        success, output = docker.backup(settings)
        if success:
            output = f"Backup created: {output}"
    elif action == "restore":
        if not args.service:
            print("Usage: n8n-bootstrap compose restore <backup-file>", file=sys.stderr)
            return 2
        archive = Path(args.service)
        if not archive.is_file():
            print(f"Backup file not found: {archive}", file=sys.stderr)
            return 1
        if not confirm("This will replace the current configuration. Continue?", args.yes):
            print("Restore cancelled")
            return 1
        success, output = docker.restore(archive)
    elif action == "reset":
        print("This deletes all containers, volumes, secrets and certificates.")
        if not (confirm("Are you sure?", args.yes) and confirm("Really reset everything?", args.yes)):
            print("Reset cancelled")
            return 1
        success, output = docker.reset(settings)
    else:
        if not confirm("Remove unused containers, images, volumes and networks?", args.yes):
            print("Cleanup cancelled")
            return 1
        success, output = docker.clean()

    if output:
        print(output)
    return 0 if success else 1


COMMANDS = {
    "secrets": cmd_secrets,
    "certs": cmd_certs,
    "compose-file": cmd_compose_file,
    "deploy": cmd_deploy,
    "compose": cmd_compose,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.command in (None, "tui"):
        get_config_loader(Path(args.base_dir))
        from .tui import run_app
        run_app(Path(args.base_dir))
        return 0

    try:
        settings = resolve_settings(args)
        return COMMANDS[args.command](args, settings)
    except ValidationError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return 2
    except BootstrapError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
