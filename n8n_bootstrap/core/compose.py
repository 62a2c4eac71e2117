"""docker-compose.yml generation for the n8n queue-mode stack."""

import logging
from pathlib import Path
from typing import Iterable

import yaml

from .config_loader import BootstrapSettings
from .credential_store import atomic_write_text
from .environment import ENV_FILE_MODE
from .errors import ArtifactAlreadyExists
from .secret_generator import DEFAULT_SECRET_SPECS, SecretSpec

logger = logging.getLogger(__name__)

COMPOSE_FILENAME = "docker-compose.yml"

N8N_IMAGE = "n8nio/n8n:latest"
POSTGRES_IMAGE = "postgres:16"
REDIS_IMAGE = "redis:7-alpine"
TRAEFIK_IMAGE = "traefik:v3.0"

BASE_SERVICES = ("traefik", "postgres", "redis", "n8n")


def worker_names(settings: BootstrapSettings) -> list[str]:
    """Compose service names of the queue workers, numbered from 1."""
    return [f"n8n-worker-{i}" for i in range(1, settings.queue.workers + 1)]


def service_names(settings: BootstrapSettings) -> list[str]:
    """All compose service names in the order they are declared."""
    return list(BASE_SERVICES) + worker_names(settings)


def _n8n_environment() -> list[str]:
    """Environment shared by the n8n main process and its workers."""
    return [
        "NODE_ENV=production",
        "GENERIC_TIMEZONE=${GENERIC_TIMEZONE:-UTC}",
        "TZ=${TZ:-UTC}",
        "N8N_HOST=${N8N_HOST}",
        "N8N_PROTOCOL=${N8N_PROTOCOL:-https}",
        "WEBHOOK_URL=${WEBHOOK_URL}",
        "N8N_EDITOR_BASE_URL=${N8N_EDITOR_BASE_URL}",
        "N8N_PORT=5678",
        "N8N_ENCRYPTION_KEY_FILE=${N8N_ENCRYPTION_KEY_FILE}",
        "N8N_USER_MANAGEMENT_JWT_SECRET_FILE=${N8N_USER_MANAGEMENT_JWT_SECRET_FILE}",
        "N8N_SECURE_COOKIE=${N8N_SECURE_COOKIE:-true}",
        "N8N_BASIC_AUTH_ACTIVE=true",
        "N8N_BASIC_AUTH_USER=${N8N_USER:-admin}",
        "N8N_BASIC_AUTH_PASSWORD_FILE=${N8N_BASIC_AUTH_PASSWORD_FILE}",
        "DB_TYPE=postgresdb",
        "DB_POSTGRESDB_HOST=postgres",
        "DB_POSTGRESDB_PORT=5432",
        "DB_POSTGRESDB_DATABASE=${POSTGRES_DB}",
        "DB_POSTGRESDB_USER=${POSTGRES_USER}",
        "DB_POSTGRESDB_PASSWORD_FILE=${POSTGRES_PASSWORD_FILE}",
        "EXECUTIONS_MODE=${EXECUTIONS_MODE:-queue}",
        "QUEUE_HEALTH_CHECK_ACTIVE=${QUEUE_HEALTH_CHECK_ACTIVE:-true}",
        "QUEUE_BULL_REDIS_HOST=redis",
        "QUEUE_BULL_REDIS_PORT=6379",
        "QUEUE_BULL_REDIS_PASSWORD_FILE=${REDIS_PASSWORD_FILE}",
        "OFFLOAD_MANUAL_EXECUTIONS_TO_WORKERS=${OFFLOAD_MANUAL_EXECUTIONS_TO_WORKERS:-false}",
        "N8N_RUNNERS_ENABLED=${N8N_RUNNERS_ENABLED:-false}",
        "EXECUTIONS_DATA_PRUNE=${EXECUTIONS_DATA_PRUNE:-true}",
        "EXECUTIONS_DATA_PRUNE_MAX_COUNT=${EXECUTIONS_DATA_PRUNE_MAX_COUNT:-10000}",
        "EXECUTIONS_TIMEOUT=${EXECUTIONS_TIMEOUT:-3600}",
        "N8N_GRACEFUL_SHUTDOWN_TIMEOUT=${N8N_GRACEFUL_SHUTDOWN_TIMEOUT:-30}",
        "N8N_ENFORCE_SETTINGS_FILE_PERMISSIONS=true",
        "N8N_LOG_LEVEL=${N8N_LOG_LEVEL:-info}",
        "N8N_LOG_OUTPUT=${N8N_LOG_OUTPUT:-console}",
    ]


def build_compose(
    settings: BootstrapSettings,
    specs: Iterable[SecretSpec] = DEFAULT_SECRET_SPECS,
) -> dict:
    """Build the compose document as a dict."""
    specs = tuple(specs)
    secrets_dir = Path(settings.secrets_dir).as_posix().rstrip("/")
    certs_dir = Path(settings.certificates.certs_dir).as_posix().rstrip("/")

    # Fresh objects per service so yaml.dump does not emit anchors
    def n8n_service() -> dict:
        return {
            "image": N8N_IMAGE,
            "restart": "unless-stopped",
            "user": "1000:1000",
            "security_opt": ["no-new-privileges:true"],
            "environment": _n8n_environment(),
            "volumes": ["n8n_data:/home/node/.n8n", f"./{certs_dir}:/home/node/certs:ro"],
            "networks": ["n8n-backend", "n8n-database"],
            "secrets": [spec.name for spec in specs],
            "depends_on": {
                "postgres": {"condition": "service_healthy"},
                "redis": {"condition": "service_healthy"},
            },
        }

    n8n_main = n8n_service()
    n8n_main["networks"] = ["web", "n8n-backend", "n8n-database"]
    n8n_main["labels"] = [
        "traefik.enable=true",
        "traefik.docker.network=${TRAEFIK_WEB_NETWORK:-web}",
        "traefik.http.routers.n8n.rule=Host(`${N8N_HOST}`)",
        "traefik.http.routers.n8n.entrypoints=websecure",
        "traefik.http.routers.n8n.tls.certresolver=letsencrypt",
        "traefik.http.services.n8n.loadbalancer.server.port=5678",
    ]

    workers = {}
    for name in worker_names(settings):
        worker = n8n_service()
        worker["command"] = f"worker --concurrency={settings.queue.worker_concurrency}"
        worker["depends_on"]["n8n"] = {"condition": "service_started"}
        workers[name] = worker

    return {
        "volumes": {
            name: {"driver": "local"}
            for name in ("postgres_data", "redis_data", "n8n_data", "traefik_data")
        },
        "networks": {
            "web": {"external": True, "name": "${TRAEFIK_WEB_NETWORK:-web}"},
            "n8n-backend": {"driver": "bridge"},
            "n8n-database": {"driver": "bridge", "internal": True},
        },
        "secrets": {
            spec.name: {"file": f"./{secrets_dir}/{spec.filename}"}
            for spec in specs
        },
        "services": {
            "traefik": {
                "image": TRAEFIK_IMAGE,
                "restart": "unless-stopped",
                "security_opt": ["no-new-privileges:true"],
                "command": [
                    "--api=false",
                    "--providers.docker=true",
                    "--providers.docker.exposedbydefault=false",
                    "--providers.docker.network=${TRAEFIK_WEB_NETWORK:-web}",
                    "--entrypoints.web.address=:80",
                    "--entrypoints.websecure.address=:443",
                    "--certificatesresolvers.letsencrypt.acme.tlschallenge=true",
                    "--certificatesresolvers.letsencrypt.acme.email=${SSL_EMAIL}",
                    "--certificatesresolvers.letsencrypt.acme.storage=/letsencrypt/acme.json",
                    "--entrypoints.web.http.redirections.entrypoint.to=websecure",
                    "--entrypoints.web.http.redirections.entrypoint.scheme=https",
                    "--log.level=INFO",
                    "--accesslog=true",
                ],
                "ports": ["80:80", "443:443"],
                "volumes": [
                    "/var/run/docker.sock:/var/run/docker.sock:ro",
                    "traefik_data:/letsencrypt",
                    f"./{certs_dir}:/certs:ro",
                ],
                "networks": ["web"],
            },
            "postgres": {
                "image": POSTGRES_IMAGE,
                "restart": "unless-stopped",
                "security_opt": ["no-new-privileges:true"],
                "environment": [
                    "POSTGRES_DB=${POSTGRES_DB}",
                    "POSTGRES_USER=${POSTGRES_USER}",
                    "POSTGRES_PASSWORD_FILE=${POSTGRES_PASSWORD_FILE}",
                    "POSTGRES_INITDB_ARGS=--auth-host=scram-sha-256",
                ],
                "volumes": ["postgres_data:/var/lib/postgresql/data"],
                "networks": ["n8n-database"],
                "secrets": ["postgres_password"],
                "healthcheck": {
                    "test": ["CMD-SHELL", "pg_isready -U ${POSTGRES_USER} -d ${POSTGRES_DB}"],
                    "interval": "10s",
                    "timeout": "5s",
                    "retries": 5,
                },
            },
            "redis": {
                "image": REDIS_IMAGE,
                "restart": "unless-stopped",
                "security_opt": ["no-new-privileges:true"],
                "command": [
                    "sh", "-c",
                    'exec redis-server --appendonly yes --requirepass "$$(cat /run/secrets/redis_password)"',
                ],
                "volumes": ["redis_data:/data"],
                "networks": ["n8n-backend"],
                "secrets": ["redis_password"],
                "healthcheck": {
                    "test": [
                        "CMD-SHELL",
                        'redis-cli -a "$$(cat /run/secrets/redis_password)" --no-auth-warning ping | grep PONG',
                    ],
                    "interval": "10s",
                    "timeout": "5s",
                    "retries": 5,
                },
            },
            "n8n": n8n_main,
            **workers,
        },
    }


def generate_compose(
    settings: BootstrapSettings,
    specs: Iterable[SecretSpec] = DEFAULT_SECRET_SPECS,
) -> str:
    """Generate docker-compose.yml content."""
    header = "# n8n queue mode: Traefik, PostgreSQL, Redis, n8n main and workers\n"
    body = yaml.dump(build_compose(settings, specs), default_flow_style=False, sort_keys=False)
    return header + body


def write_compose(
    base_dir: Path,
    settings: BootstrapSettings,
    overwrite: bool = False,
) -> Path:
    """Write docker-compose.yml into ``base_dir``."""
    path = Path(base_dir) / COMPOSE_FILENAME
    if path.exists() and not overwrite:
        raise ArtifactAlreadyExists(path)
    atomic_write_text(path, generate_compose(settings), ENV_FILE_MODE)
    logger.info("Wrote %s", path)
    return path
