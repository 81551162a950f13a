"""
CA chain assembly from certificate files next to the signing container.

No path building or ordering happens here: PDF validators reconstruct
the chain themselves from whatever certificates the CMS structure
carries. What matters is that every relevant CA certificate is present
exactly once and that the signer certificate is not duplicated.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple, Union

from asn1crypto import x509
from pyhanko.keys import load_certs_from_pemder_data

logger = logging.getLogger("casesign.chain_loader")

TrustChain = Tuple[x509.Certificate, ...]

DEFAULT_EXTENSIONS = (".cer", ".crt", ".pem", ".der")


def _candidate_files(
    directory: Path,
    extensions: Sequence[str],
) -> List[Path]:
    wanted = {ext.lower() for ext in extensions}
    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        logger.warning(
            "chain_directory_unreadable",
            extra={
                "directory": str(directory),
                "error_type": type(exc).__name__,
            },
        )
        return []

    return [
        entry
        for entry in entries
        if entry.suffix.lower() in wanted and entry.is_file()
    ]


def _load_file(path: Path) -> List[x509.Certificate]:
    """
    Load every certificate in a PEM bundle or a single DER file.

    Unparseable files are skipped with a warning.
    """
    try:
        certs = list(load_certs_from_pemder_data(path.read_bytes()))
        for cert in certs:
            # asn1crypto parses lazily; force it so bad files fail here
            cert.native
        return certs
    except (OSError, ValueError, TypeError) as exc:
        logger.warning(
            "chain_certificate_skipped",
            extra={
                "file": path.name,
                "error_type": type(exc).__name__,
            },
        )
        return []


def load_trust_chain(
    directory: Union[str, Path],
    signer_certificate: x509.Certificate,
    *,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    embedded: Iterable[x509.Certificate] = (),
) -> TrustChain:
    """
    Collect CA certificates for inclusion in the signed structure.

    Args:
        directory:
            Directory scanned (non-recursively) for certificate files.
        signer_certificate:
            Excluded from the result wherever it appears.
        extensions:
            File suffixes considered certificate files.
        embedded:
            Certificates carried by the signing container itself.

    Returns:
        Deduplicated certificates (by SHA-256 fingerprint). Directory
        certificates come first, in file-name order.
    """
    signer_fingerprint = signer_certificate.sha256
    seen = {signer_fingerprint}
    chain: List[x509.Certificate] = []

    def _add(cert: x509.Certificate) -> None:
        fingerprint = cert.sha256
        if fingerprint in seen:
            return
        seen.add(fingerprint)
        chain.append(cert)

    files = _candidate_files(Path(directory), extensions)
    for path in files:
        for cert in _load_file(path):
            _add(cert)

    for cert in embedded:
        _add(cert)

    logger.info(
        "trust_chain_assembled",
        extra={
            "files_scanned": len(files),
            "certificate_count": len(chain),
        },
    )

    return tuple(chain)
