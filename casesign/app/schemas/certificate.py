"""
Certificate introspection schema.

Read-only summary of a signing certificate, shown to operators when they
configure or rotate the PKCS#12 container.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class CertificateInfo(BaseModel):
    common_name: Optional[str] = None
    organization: Optional[str] = None
    issuer: Optional[str] = None
    serial_number: str
    fingerprint_sha256: str = Field(
        ...,
        description="Lowercase hex SHA-256 of the DER certificate",
    )
    valid_from: datetime
    valid_to: datetime
    is_expired: bool
    is_not_yet_valid: bool
    days_until_expiry: int

    model_config = ConfigDict(frozen=True)


class CertificateInspectRequest(BaseModel):
    """
    Body of ``POST /certificate/inspect``.

    ``path`` defaults to the configured container. Other paths must sit
    in the configured container's directory.
    """

    path: Optional[str] = Field(None, min_length=1)
    password: SecretStr

    model_config = ConfigDict(extra="forbid")
