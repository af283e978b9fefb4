"""
Self-signed certificate authority and webhook serving certificate.

The API server inside the ephemeral cluster calls the host-side webhook
server over TLS, so every environment issues its own CA and a leaf
certificate covering the names the cluster may reach the host through. The
base64 encoded CA certificate is embedded as ``caBundle`` into every patched
client-config, and the readiness probe trusts only that CA.
"""

import base64
import ipaddress
import logging
import os
import ssl
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from k3s_envtest.constants import (
    CA_CERT_FILE_NAME,
    CA_COMMON_NAME,
    CERT_DIR_PERMISSION,
    CERT_FILE_NAME,
    CERT_FILE_PERMISSION,
    CERTIFICATE_SANS,
    KEY_FILE_NAME,
    KEY_FILE_PERMISSION,
)
from k3s_envtest.errors import IssuanceError

logger = logging.getLogger(__name__)

# Tolerate small clock differences between the host and the cluster node
CLOCK_SKEW = timedelta(minutes=1)

LEAF_COMMON_NAME = "k3senv-webhook"


@dataclass(frozen=True)
class CertificateBundle:
    """PEM encoded CA certificate, leaf certificate and leaf key."""

    path: Path
    ca_cert: bytes
    cert: bytes
    key: bytes

    @property
    def ca_bundle(self) -> str:
        """Base64 encoded CA certificate, as expected by ``caBundle`` fields."""
        return base64.b64encode(self.ca_cert).decode("ascii")

    @property
    def ca_cert_file(self) -> Path:
        return self.path / CA_CERT_FILE_NAME

    @property
    def cert_file(self) -> Path:
        return self.path / CERT_FILE_NAME

    @property
    def key_file(self) -> Path:
        return self.path / KEY_FILE_NAME

    def ssl_context(self) -> ssl.SSLContext:
        """Client context that trusts only the issued CA."""
        context = ssl.create_default_context(cadata=self.ca_cert.decode("ascii"))
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        return context

    def server_ssl_context(self) -> ssl.SSLContext:
        """Server context presenting the leaf certificate, for a host-side webhook server."""
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.load_cert_chain(certfile=self.cert_file, keyfile=self.key_file)
        return context


def _subject_alternative_names(sans: tuple[str, ...] | list[str]) -> x509.SubjectAlternativeName:
    names: list[x509.GeneralName] = []
    for san in sans:
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(san)))
        except ValueError:
            names.append(x509.DNSName(san))
    return x509.SubjectAlternativeName(names)


def _generate(validity: timedelta, sans: tuple[str, ...] | list[str]) -> tuple[bytes, bytes, bytes]:
    now = datetime.now(UTC)
    not_before = now - CLOCK_SKEW
    not_after = now + validity

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, CA_COMMON_NAME)])
    ca_ski = x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key())

    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(ca_name)
        .issuer_name(ca_name)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(ca_ski, critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ca_ski),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    leaf_key = ec.generate_private_key(ec.SECP256R1())
    leaf_cert = (
        x509.CertificateBuilder()
        .subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, LEAF_COMMON_NAME)])
        )
        .issuer_name(ca_name)
        .public_key(leaf_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
        )
        .add_extension(_subject_alternative_names(sans), critical=False)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(leaf_key.public_key()),
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ca_ski),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    return (
        ca_cert.public_bytes(serialization.Encoding.PEM),
        leaf_cert.public_bytes(serialization.Encoding.PEM),
        leaf_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ),
    )


def _write_file(path: Path, content: bytes, mode: int) -> None:
    """Write ``content`` to ``path``, which never holds data under a wider mode."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as f:
        # os.open only applies mode on creation; a reissued key keeps the old one
        os.fchmod(f.fileno(), mode)
        f.write(content)


def issue_certificates(
    path: str | os.PathLike[str],
    validity: timedelta,
    sans: tuple[str, ...] | list[str] = CERTIFICATE_SANS,
) -> CertificateBundle:
    """
    Issue a CA and a CA-signed serving certificate into ``path``.

    Writes ``cert-ca.pem``, ``cert-tls.pem`` and ``key-tls.pem`` and reads
    them back, so the returned bundle reflects what is on disk. Issuance is
    local and deterministic, so failures are not retried.

    Args:
        path: Certificate directory, created with mode 0750 if missing
        validity: How long the certificates are valid
        sans: Hostnames and IP addresses for the serving certificate

    Returns:
        The issued certificate bundle

    Raises:
        IssuanceError: With ``stage`` set to ``directory``, ``generate``,
            ``write`` or ``read`` depending on the failing step
    """
    cert_dir = Path(path)

    try:
        cert_dir.mkdir(mode=CERT_DIR_PERMISSION, parents=True, exist_ok=True)
    except OSError as e:
        raise IssuanceError(
            f"failed to create certificate directory {cert_dir}: {e}",
            stage="directory",
            path=str(cert_dir),
            cause=e,
        ) from e

    if validity <= timedelta(0):
        raise IssuanceError(
            f"certificate validity must be positive, got {validity}",
            stage="generate",
            path=str(cert_dir),
        )

    try:
        ca_pem, cert_pem, key_pem = _generate(validity, sans)
    except (ValueError, TypeError) as e:
        raise IssuanceError(
            f"failed to generate certificates: {e}",
            stage="generate",
            path=str(cert_dir),
            cause=e,
        ) from e

    files = {
        CA_CERT_FILE_NAME: ca_pem,
        CERT_FILE_NAME: cert_pem,
        KEY_FILE_NAME: key_pem,
    }

    try:
        for name, content in files.items():
            mode = KEY_FILE_PERMISSION if name == KEY_FILE_NAME else CERT_FILE_PERMISSION
            _write_file(cert_dir / name, content, mode)
    except OSError as e:
        raise IssuanceError(
            f"failed to write certificates to {cert_dir}: {e}",
            stage="write",
            path=str(cert_dir),
            cause=e,
        ) from e

    try:
        bundle = CertificateBundle(
            path=cert_dir,
            ca_cert=(cert_dir / CA_CERT_FILE_NAME).read_bytes(),
            cert=(cert_dir / CERT_FILE_NAME).read_bytes(),
            key=(cert_dir / KEY_FILE_NAME).read_bytes(),
        )
    except OSError as e:
        raise IssuanceError(
            f"failed to read back certificates from {cert_dir}: {e}",
            stage="read",
            path=str(cert_dir),
            cause=e,
        ) from e

    logger.info(
        f"Issued webhook certificates in {cert_dir} "
        f"(valid for {validity}, {len(sans)} SANs)"
    )
    return bundle
