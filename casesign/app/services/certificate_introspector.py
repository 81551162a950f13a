"""
Read-only inspection of a PKCS#12 signing container.

Uses the same container loading as signing, so the failure kinds are
identical (missing file, corrupt container, wrong password). The external
toolkit is never invoked.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from asn1crypto import x509

from casesign.app.core.errors import NoPrivateKeyFound
from casesign.app.schemas.certificate import CertificateInfo
from casesign.app.services.key_material import (
    PathLike,
    load_container,
    select_signer_certificate,
)

logger = logging.getLogger("casesign.certificate_introspector")

_SECONDS_PER_DAY = 86400


def _name_attribute(name: x509.Name, attribute: str) -> Optional[str]:
    value = name.native.get(attribute)
    if isinstance(value, list):
        value = value[0] if value else None
    return value or None


def _days_until(moment: datetime, now: datetime) -> int:
    return math.ceil((moment - now).total_seconds() / _SECONDS_PER_DAY)


def describe_certificate(
    certificate: x509.Certificate,
    *,
    now: Optional[datetime] = None,
) -> CertificateInfo:
    """Summarize an asn1crypto certificate."""
    now = now or datetime.now(timezone.utc)

    validity = certificate["tbs_certificate"]["validity"]
    valid_from = validity["not_before"].native
    valid_to = validity["not_after"].native

    issuer = certificate.issuer
    issuer_name = _name_attribute(issuer, "common_name") or _name_attribute(
        issuer, "organization_name"
    )

    return CertificateInfo(
        common_name=_name_attribute(certificate.subject, "common_name"),
        organization=_name_attribute(certificate.subject, "organization_name"),
        issuer=issuer_name,
        serial_number=format(certificate.serial_number, "x"),
        fingerprint_sha256=certificate.sha256.hex(),
        valid_from=valid_from,
        valid_to=valid_to,
        is_expired=now > valid_to,
        is_not_yet_valid=now < valid_from,
        days_until_expiry=_days_until(valid_to, now),
    )


def inspect_certificate(
    path: PathLike,
    password: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> CertificateInfo:
    """
    Describe the signing certificate held in a PKCS#12 container.

    The certificate matching the private key is preferred. A container
    without a key is described by its first certificate.

    Raises:
        ConfigurationError, CorruptContainer, WrongPassword,
        NoPrivateKeyFound (container carries no certificate at all)
    """
    contents = load_container(path, password)

    certificate, strategy = select_signer_certificate(contents)

    if certificate is None:
        candidates = contents.certificates + contents.plain_certificates
        if not candidates:
            raise NoPrivateKeyFound(
                "The certificate container does not hold any certificate."
            )
        certificate = candidates[0]
        strategy = "first_certificate"

    info = describe_certificate(certificate, now=now)

    logger.info(
        "certificate_inspected",
        extra={
            "strategy": strategy,
            "fingerprint": info.fingerprint_sha256,
            "days_until_expiry": info.days_until_expiry,
        },
    )
    return info
