# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/cert/issuer.py

from __future__ import annotations

import ipaddress
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol, Sequence, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from dockmachine.errors import CertificateError

log = logging.getLogger("dockmachine")

CERT_VALIDITY_DAYS = 1080
KEY_SIZE = 2048

CA_CERT = "ca.pem"
CA_KEY = "ca-key.pem"
SERVER_CERT = "server-cert.pem"
SERVER_KEY = "server-key.pem"
CLIENT_CERT = "cert.pem"
CLIENT_KEY = "key.pem"


@dataclass(frozen=True)
class PemBlock:
    """A named PEM buffer destined for a file of the same name."""
    name: str
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


class CertificateIssuer(Protocol):
    def issue_server_certificate(self, hostnames: Sequence[str]) -> Tuple[PemBlock, PemBlock, PemBlock]: ...


def _validity() -> Tuple[datetime, datetime]:
    not_before = datetime.now(timezone.utc).replace(second=0, microsecond=0) - timedelta(minutes=5)
    return not_before, not_before + timedelta(days=CERT_VALIDITY_DAYS)


def _new_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)


def _key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _subject_alt_names(hostnames: Sequence[str]) -> x509.SubjectAlternativeName:
    names = []
    for h in hostnames:
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(h)))
        except ValueError:
            names.append(x509.DNSName(h))
    return x509.SubjectAlternativeName(names)


def _load_ca(certpath: Path):
    try:
        ca_pem = (certpath / CA_CERT).read_bytes()
        ca_cert = x509.load_pem_x509_certificate(ca_pem)
        ca_key = serialization.load_pem_private_key((certpath / CA_KEY).read_bytes(), password=None)
    except (OSError, ValueError) as exc:
        raise CertificateError(f"Unable to load CA from {certpath}: {exc}") from exc
    return ca_pem, ca_cert, ca_key


def _issue(certpath: Path, org: str, hostnames: Sequence[str], usages) -> Tuple[bytes, bytes, bytes]:
    ca_pem, ca_cert, ca_key = _load_ca(certpath)
    key = _new_key()
    not_before, not_after = _validity()

    builder = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, org)]))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.ExtendedKeyUsage(usages), critical=False)
    )
    if hostnames:
        builder = builder.add_extension(_subject_alt_names(hostnames), critical=False)

    try:
        cert = builder.sign(ca_key, hashes.SHA256())
    except (TypeError, ValueError) as exc:
        raise CertificateError(f"Unable to sign certificate: {exc}") from exc
    return ca_pem, cert.public_bytes(serialization.Encoding.PEM), _key_pem(key)


def generate_server_certificate(
    certpath: str | Path,
    org: str,
    hostnames: Sequence[str],
) -> Tuple[PemBlock, PemBlock, PemBlock]:
    """
    Issue a CA-signed leaf for ``hostnames`` (IPs become IP SANs, the
    rest DNS SANs). Returns (ca, cert, key) blocks.
    """
    ca, cert, key = _issue(
        Path(certpath).expanduser(),
        org,
        hostnames,
        [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH],
    )
    return PemBlock(CA_CERT, ca), PemBlock(SERVER_CERT, cert), PemBlock(SERVER_KEY, key)


def generate_client_certificate(certpath: str | Path, org: str) -> Tuple[PemBlock, PemBlock, PemBlock]:
    ca, cert, key = _issue(Path(certpath).expanduser(), org, (), [ExtendedKeyUsageOID.CLIENT_AUTH])
    return PemBlock(CA_CERT, ca), PemBlock(CLIENT_CERT, cert), PemBlock(CLIENT_KEY, key)


def generate_ca_certificate(certpath: str | Path, org: str) -> Path:
    """Create a self-signed CA (ca.pem / ca-key.pem) under ``certpath``."""
    certpath = Path(certpath).expanduser()
    certpath.mkdir(mode=0o700, parents=True, exist_ok=True)

    key = _new_key()
    name = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, org)])
    not_before, not_after = _validity()
    ca = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=True,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(key, hashes.SHA256())
    )

    (certpath / CA_CERT).write_bytes(ca.public_bytes(serialization.Encoding.PEM))
    key_file = certpath / CA_KEY
    fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(_key_pem(key))

    log.info("CA saved to: %s", certpath / CA_CERT)
    return certpath / CA_CERT


class LocalCAIssuer:
    """CertificateIssuer backed by a CA stored on local disk."""

    def __init__(self, certpath: str | Path, organization: str):
        self.certpath = Path(certpath).expanduser()
        self.organization = organization

    def issue_server_certificate(self, hostnames: Sequence[str]) -> Tuple[PemBlock, PemBlock, PemBlock]:
        return generate_server_certificate(self.certpath, self.organization, hostnames)
