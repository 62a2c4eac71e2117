"""Self-signed CA and server certificate generation."""

import ipaddress
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .credential_store import PRIVATE_DIR_MODE, PRIVATE_FILE_MODE, atomic_write_text
from .errors import ArtifactAlreadyExists, CertificateError, PathUnwritable

logger = logging.getLogger(__name__)

PUBLIC_FILE_MODE = 0o644
CA_KEY_SIZE = 4096
SERVER_KEY_SIZE = 2048
ORGANIZATION = "n8n-deployment"


@dataclass
class CertificateBundle:
    """Paths of a generated certificate set."""
    ca_key: Path
    ca_cert: Path
    server_key: Path
    server_cert: Path
    fullchain: Path
    info: Path

    def all_paths(self) -> list[Path]:
        return [self.ca_key, self.ca_cert, self.server_key, self.server_cert, self.fullchain, self.info]


def _private_pem(key: rsa.RSAPrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('ascii')


def _cert_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode('ascii')


class CertificateManager:
    """Generates and stores the self-signed certificates Traefik and PostgreSQL mount."""

    def __init__(self, certs_dir: Path, overwrite_existing: bool = False):
        """Initialize with the certificates directory."""
        self.certs_dir = Path(certs_dir)
        self.overwrite_existing = overwrite_existing

    def _ensure_certs_dir(self) -> None:
        """Ensure certs directory exists."""
        if self.certs_dir.is_dir():
            return
        try:
            self.certs_dir.mkdir(parents=True, exist_ok=True)
            self.certs_dir.chmod(PRIVATE_DIR_MODE)
        except OSError as e:
            raise PathUnwritable(self.certs_dir, e.strerror or str(e))

    def bundle_paths(self) -> CertificateBundle:
        """Get the file layout of the certificate set."""
        return CertificateBundle(
            ca_key=self.certs_dir / "ca.key",
            ca_cert=self.certs_dir / "ca.crt",
            server_key=self.certs_dir / "server.key",
            server_cert=self.certs_dir / "server.crt",
            fullchain=self.certs_dir / "fullchain.pem",
            info=self.certs_dir / "CERTIFICATE_INFO.md",
        )

    def exists(self) -> bool:
        """Check if a server certificate and key are already present."""
        bundle = self.bundle_paths()
        return bundle.server_cert.is_file() and bundle.server_key.is_file()

    def generate_ca(self, validity_days: int) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
        """Generate a self-signed CA key and certificate."""
        key = rsa.generate_private_key(public_exponent=65537, key_size=CA_KEY_SIZE)
        name = x509.Name([
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
            x509.NameAttribute(NameOID.COMMON_NAME, "n8n-CA"),
        ])
        now = datetime.now(timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(key, hashes.SHA256())
        )
        return key, cert

    def generate_server(
        self,
        domain: str,
        ca_key: rsa.RSAPrivateKey,
        ca_cert: x509.Certificate,
        validity_days: int
    ) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
        """Generate a server key and a certificate for ``domain`` signed by the CA."""
        key = rsa.generate_private_key(public_exponent=65537, key_size=SERVER_KEY_SIZE)
        subject = x509.Name([
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
            x509.NameAttribute(NameOID.COMMON_NAME, domain),
        ])
        alt_names = x509.SubjectAlternativeName([
            x509.DNSName(domain),
            x509.DNSName("localhost"),
            x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
        ])
        now = datetime.now(timezone.utc)
        ca_ski = ca_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=True,
                    key_encipherment=True,
                    data_encipherment=True,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=False,
            )
            .add_extension(alt_names, critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ca_ski),
                critical=False,
            )
            .sign(ca_key, hashes.SHA256())
        )
        return key, cert

    def generate(self, domain: str, validity_days: int = 365) -> CertificateBundle:
        """Generate the full certificate set for ``domain``.

        Raises ``ArtifactAlreadyExists`` when certificates are present and
        overwriting is off.
        """
        if not domain:
            raise CertificateError("Domain is required for certificate generation")
        if validity_days <= 0:
            raise CertificateError("Validity must be at least one day")

        bundle = self.bundle_paths()
        if self.exists() and not self.overwrite_existing:
            raise ArtifactAlreadyExists(bundle.server_cert)

        self._ensure_certs_dir()
        try:
            ca_key, ca_cert = self.generate_ca(validity_days)
            server_key, server_cert = self.generate_server(domain, ca_key, ca_cert, validity_days)
        except ValueError as e:
            raise CertificateError(f"Certificate generation failed: {e}")

        written = []
        try:
            for path, content, mode in (
                (bundle.ca_key, _private_pem(ca_key), PRIVATE_FILE_MODE),
                (bundle.server_key, _private_pem(server_key), PRIVATE_FILE_MODE),
                (bundle.ca_cert, _cert_pem(ca_cert), PUBLIC_FILE_MODE),
                (bundle.server_cert, _cert_pem(server_cert), PUBLIC_FILE_MODE),
                (bundle.fullchain, _cert_pem(server_cert) + _cert_pem(ca_cert), PUBLIC_FILE_MODE),
                (bundle.info, self.render_info(domain, validity_days), PUBLIC_FILE_MODE),
            ):
                atomic_write_text(path, content, mode)
                written.append(path)
        except PathUnwritable:
            # A half-written set would pair keys with the wrong certificates
            for path in written:
                path.unlink(missing_ok=True)
            raise

        logger.info("Generated certificates for %s in %s", domain, self.certs_dir)
        return bundle

    def get_or_create(self, domain: str, validity_days: int = 365) -> CertificateBundle:
        """Return existing certificates or generate new ones."""
        if self.exists() and not self.overwrite_existing:
            logger.info("Keeping existing certificates in %s", self.certs_dir)
            return self.bundle_paths()
        return self.generate(domain, validity_days)

    def load_server_certificate(self) -> Optional[x509.Certificate]:
        """Load the server certificate if present."""
        path = self.bundle_paths().server_cert
        if not path.is_file():
            return None
        return x509.load_pem_x509_certificate(path.read_bytes())

    def render_info(self, domain: str, validity_days: int) -> str:
        """Render CERTIFICATE_INFO.md."""
        return f"""# SSL Certificate Information
Generated on: {datetime.now():%Y-%m-%d %H:%M:%S}

## Certificate Details
Domain: {domain}
Validity: {validity_days} days
Algorithm: RSA
Key Length: {SERVER_KEY_SIZE} bits (server), {CA_KEY_SIZE} bits (CA)

## Files Generated
- ca.crt: Certificate Authority certificate
- ca.key: Certificate Authority private key
- server.crt: Server certificate for {domain}
- server.key: Server private key
- fullchain.pem: Combined certificate chain (server + CA)

## Security Notes
- These are self-signed certificates for development/testing
- For production, use certificates from a trusted CA
- Keep private keys secure and never commit to version control

## Trust the CA Certificate
### Linux (Ubuntu/Debian):
sudo cp ca.crt /usr/local/share/ca-certificates/n8n-ca.crt
sudo update-ca-certificates

### macOS:
sudo security add-trusted-cert -d -r trustRoot -k /Library/Keychains/System.keychain ca.crt
"""
