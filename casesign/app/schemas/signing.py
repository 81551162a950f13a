"""
Signing request and result schemas.

These models are the contract between the signing subsystem and its
collaborators (document generation upstream, persistence and email
delivery downstream). None of them persist beyond a single call.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SignatureKind(str, Enum):
    """Which strategy produced (or will produce) a signature."""

    VISUAL = "visual"
    CRYPTOGRAPHIC = "cryptographic"


class SignatureErrorKind(str, Enum):
    """
    Machine-readable failure kinds.

    Values are part of the external contract and MUST remain stable.
    """

    CONFIGURATION_ERROR = "configuration_error"
    WRONG_PASSWORD = "wrong_password"
    CORRUPT_CONTAINER = "corrupt_container"
    NO_PRIVATE_KEY_FOUND = "no_private_key_found"
    TOOLKIT_UNAVAILABLE = "toolkit_unavailable"
    SIGNING_FAILED = "signing_failed"
    OVERSIZE_SIGNATURE = "oversize_signature"
    MALFORMED_PDF = "malformed_pdf"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


class SignatureMetadata(BaseModel):
    """
    Display metadata written into the signature dictionary.

    Unset values are filled from configuration (and, for the signer
    name, from the signing certificate) at signing time.
    """

    reason: Optional[str] = Field(None, max_length=256)
    signer_name: Optional[str] = Field(None, max_length=256)
    location: Optional[str] = Field(None, max_length=256)
    contact: Optional[str] = Field(None, max_length=256)

    model_config = ConfigDict(frozen=True)


class SignatureRequest(BaseModel):
    """An unsigned PDF buffer plus its display metadata."""

    pdf_bytes: bytes
    metadata: SignatureMetadata = Field(default_factory=SignatureMetadata)

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class SigningFailure(BaseModel):
    """Uniform discriminated failure result."""

    kind: SignatureErrorKind
    message: str
    retryable: bool

    model_config = ConfigDict(frozen=True)


class SigningOutcome(BaseModel):
    """Either a fully signed buffer or a failure, never both."""

    pdf_bytes: Optional[bytes] = None
    failure: Optional[SigningFailure] = None

    model_config = ConfigDict(frozen=True)

    @property
    def ok(self) -> bool:
        return self.failure is None


class SignatureInfo(BaseModel):
    """Operator-facing description of the active strategy."""

    type: SignatureKind
    details: str

    model_config = ConfigDict(frozen=True)
