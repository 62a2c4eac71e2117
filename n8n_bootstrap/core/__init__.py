"""Core modules for the n8n deployment bootstrap."""

from .config_loader import (
    BootstrapSettings,
    CertificateConfig,
    ConfigLoader,
    DatabaseConfig,
    PerformanceConfig,
    QueueConfig,
    get_config_loader,
)
from .errors import (
    ArtifactAlreadyExists,
    BootstrapError,
    BootstrapLocked,
    CertificateError,
    CommandError,
    GenerationUnavailable,
    InvalidSecret,
    PathUnwritable,
)
from .secret_generator import (
    DEFAULT_SECRET_SPECS,
    GeneratedSecret,
    SecretGenerator,
    SecretKind,
    SecretSpec,
    generate_hex_key,
    generate_password,
)
from .credential_store import CredentialArtifact, CredentialStore
from .environment import EnvironmentDocument, materialize, render
from .pipeline import BootstrapPipeline, RunReport, RunStatus, SecretStatus, run_bootstrap
from .cert_generator import CertificateBundle, CertificateManager
from .docker_manager import ContainerStatus, DockerManager
from .deployer import DeployResult, deploy

__all__ = [
    "BootstrapSettings",
    "CertificateConfig",
    "ConfigLoader",
    "DatabaseConfig",
    "PerformanceConfig",
    "QueueConfig",
    "get_config_loader",
    "ArtifactAlreadyExists",
    "BootstrapError",
    "BootstrapLocked",
    "CertificateError",
    "CommandError",
    "GenerationUnavailable",
    "InvalidSecret",
    "PathUnwritable",
    "DEFAULT_SECRET_SPECS",
    "GeneratedSecret",
    "SecretGenerator",
    "SecretKind",
    "SecretSpec",
    "generate_hex_key",
    "generate_password",
    "CredentialArtifact",
    "CredentialStore",
    "EnvironmentDocument",
    "materialize",
    "render",
    "BootstrapPipeline",
    "RunReport",
    "RunStatus",
    "SecretStatus",
    "run_bootstrap",
    "CertificateBundle",
    "CertificateManager",
    "ContainerStatus",
    "DockerManager",
    "DeployResult",
    "deploy",
]
