"""
Signing identity extraction from password-protected PKCS#12 containers.

Issuers do not all lay out their containers the same way: the signer
certificate may sit in a bag that is not associated with the key, or
only in unencrypted safe contents next to an encrypted key. Extraction
tries these layouts in order before giving up:

1. the certificate the container associates with the private key
2. any other certificate carried by the container
3. certificate bags read directly from unencrypted safe contents

A certificate is accepted only if its public key matches the private key.

Failure kinds are distinct and user-facing:
- ConfigurationError: file missing or unreadable
- CorruptContainer: not a PKCS#12 structure
- WrongPassword: well-formed but cannot be decrypted
- NoPrivateKeyFound: no key, or no certificate matching it
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from asn1crypto import pem
from asn1crypto import pkcs12 as asn1_pkcs12
from asn1crypto import x509 as asn1_x509
from cryptography import x509 as crypto_x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import (
    PrivateKeyTypes,
)
from cryptography.hazmat.primitives.serialization import pkcs12

from casesign.app.core.errors import (
    ConfigurationError,
    CorruptContainer,
    NoPrivateKeyFound,
    WrongPassword,
)

logger = logging.getLogger("casesign.key_material")

PathLike = Union[str, Path]


# ----------------------------------------------------------------------
# Data model
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class SigningIdentity:
    """
    Private key, signer certificate and the chain embedded alongside.

    Lives for the duration of one signing call only.
    """

    private_key: PrivateKeyTypes
    certificate: asn1_x509.Certificate
    embedded_chain: Tuple[asn1_x509.Certificate, ...] = ()

    def private_key_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def certificate_pem(self) -> bytes:
        return pem.armor("CERTIFICATE", self.certificate.dump())

    @property
    def common_name(self) -> Optional[str]:
        return self.certificate.subject.native.get("common_name")


@dataclass(frozen=True)
class ContainerContents:
    """Decrypted container contents, associated certificate first."""

    private_key: Optional[PrivateKeyTypes]
    certificates: Tuple[asn1_x509.Certificate, ...]
    plain_certificates: Tuple[asn1_x509.Certificate, ...]


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _to_asn1(cert: crypto_x509.Certificate) -> asn1_x509.Certificate:
    return asn1_x509.Certificate.load(
        cert.public_bytes(serialization.Encoding.DER)
    )


def _spki(private_key: PrivateKeyTypes) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def certificate_matches_key(
    certificate: asn1_x509.Certificate,
    private_key: PrivateKeyTypes,
) -> bool:
    """
    Compare the certificate's public key with the private key's.

    Both sides are re-encoded by the same library so that equivalent
    encodings (e.g. compressed EC points) compare equal.
    """
    try:
        cert_key = crypto_x509.load_der_x509_certificate(
            certificate.dump()
        ).public_key()
        cert_spki = cert_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    except (ValueError, UnsupportedAlgorithm):
        return False
    return cert_spki == _spki(private_key)


def _read_container(path: PathLike) -> bytes:
    container_path = Path(path)

    if not container_path.is_file():
        raise ConfigurationError(
            f"Certificate not found: {container_path}. "
            "Check the certificate path in the configuration."
        )

    try:
        data = container_path.read_bytes()
    except OSError as exc:
        raise ConfigurationError(
            "The certificate file could not be read. "
            "Check the file permissions.",
            detail=str(exc),
        ) from exc

    if not data:
        raise CorruptContainer(
            "The certificate file is empty.",
            detail=str(container_path),
        )

    return data


def _parse_pfx(data: bytes) -> asn1_pkcs12.Pfx:
    """
    Structural parse only. No decryption happens here.

    Separates 'not a container at all' from 'cannot be decrypted',
    which the decrypting loader reports identically.
    """
    try:
        pfx = asn1_pkcs12.Pfx.load(data)
        pfx.native
        pfx.authenticated_safe.native
    except (ValueError, TypeError, KeyError) as exc:
        raise CorruptContainer(
            "The certificate file is not a valid PKCS#12 (.p12/.pfx) "
            "container.",
            detail=f"{type(exc).__name__}: {exc}",
        ) from exc
    return pfx


def _certificates_from_bags(
    safe_contents: asn1_pkcs12.SafeContents,
) -> Iterator[asn1_x509.Certificate]:
    for bag in safe_contents:
        bag_id = bag["bag_id"].native
        if bag_id == "cert_bag":
            cert_bag = bag["bag_value"]
            if cert_bag["cert_id"].native != "x509":
                continue
            yield cert_bag["cert_value"].parsed
        elif bag_id == "safe_contents":
            yield from _certificates_from_bags(bag["bag_value"])


def plain_certificates(pfx: asn1_pkcs12.Pfx) -> List[asn1_x509.Certificate]:
    """
    Certificates stored in unencrypted safe contents.

    Encrypted sections are skipped; malformed bags are logged and
    ignored rather than failing the whole container.
    """
    found: List[asn1_x509.Certificate] = []

    for content_info in pfx.authenticated_safe:
        if content_info["content_type"].native != "data":
            continue
        try:
            safe_contents = asn1_pkcs12.SafeContents.load(
                content_info["content"].native
            )
            for cert in _certificates_from_bags(safe_contents):
                cert.native
                found.append(cert)
        except (ValueError, TypeError) as exc:
            logger.warning(
                "pkcs12_safe_contents_unreadable",
                extra={"error_type": type(exc).__name__},
            )

    return found


def _dedupe(
    certificates: Iterable[asn1_x509.Certificate],
) -> Tuple[asn1_x509.Certificate, ...]:
    seen = set()
    unique = []
    for cert in certificates:
        if cert.sha256 in seen:
            continue
        seen.add(cert.sha256)
        unique.append(cert)
    return tuple(unique)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def load_container(path: PathLike, password: Optional[str]) -> ContainerContents:
    """
    Read and decrypt a PKCS#12 container.

    Raises:
        ConfigurationError, CorruptContainer, WrongPassword
    """
    data = _read_container(path)
    pfx = _parse_pfx(data)

    passphrase = password.encode("utf-8") if password else None

    try:
        loaded = pkcs12.load_pkcs12(data, passphrase)
    except UnsupportedAlgorithm as exc:
        raise CorruptContainer(
            "The certificate container uses an unsupported encryption "
            "scheme.",
            detail=str(exc),
        ) from exc
    except (ValueError, TypeError) as exc:
        logger.info(
            "pkcs12_decrypt_failed",
            extra={"error_type": type(exc).__name__},
        )
        raise WrongPassword(
            "Incorrect certificate password. "
            "Check the password in the configuration.",
            detail=str(exc),
        ) from exc

    certificates: List[asn1_x509.Certificate] = []
    if loaded.cert is not None:
        certificates.append(_to_asn1(loaded.cert.certificate))
    certificates.extend(
        _to_asn1(extra.certificate) for extra in loaded.additional_certs
    )

    return ContainerContents(
        private_key=loaded.key,
        certificates=_dedupe(certificates),
        plain_certificates=_dedupe(plain_certificates(pfx)),
    )


def select_signer_certificate(
    contents: ContainerContents,
) -> Tuple[Optional[asn1_x509.Certificate], Optional[str]]:
    """
    Run the extraction strategies in order.

    Returns the matching certificate and the name of the strategy that
    found it, or ``(None, None)``.
    """
    key = contents.private_key
    if key is None:
        return None, None

    strategies = (
        ("associated_certificate", contents.certificates[:1]),
        ("container_scan", contents.certificates[1:]),
        ("plain_safe_contents", contents.plain_certificates),
    )

    for name, candidates in strategies:
        for cert in candidates:
            if certificate_matches_key(cert, key):
                return cert, name

    return None, None


def extract_signing_identity(
    path: PathLike,
    password: Optional[str],
) -> SigningIdentity:
    """
    Extract the private key, signer certificate and embedded chain.

    Raises:
        ConfigurationError, CorruptContainer, WrongPassword,
        NoPrivateKeyFound
    """
    contents = load_container(path, password)

    if contents.private_key is None:
        raise NoPrivateKeyFound(
            "No private key was found in the certificate container."
        )

    signer_cert, strategy = select_signer_certificate(contents)

    if signer_cert is None:
        raise NoPrivateKeyFound(
            "No certificate matching the private key was found in the "
            "certificate container.",
            detail=(
                f"candidates={len(contents.certificates)} "
                f"plain={len(contents.plain_certificates)}"
            ),
        )

    embedded_chain = tuple(
        cert
        for cert in _dedupe(contents.certificates + contents.plain_certificates)
        if cert.sha256 != signer_cert.sha256
    )

    logger.info(
        "signing_identity_extracted",
        extra={
            "strategy": strategy,
            "embedded_chain_count": len(embedded_chain),
            "key_type": type(contents.private_key).__name__,
        },
    )

    return SigningIdentity(
        private_key=contents.private_key,
        certificate=signer_cert,
        embedded_chain=embedded_chain,
    )
