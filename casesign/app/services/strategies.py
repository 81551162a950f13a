"""
Signature strategies.

- VisualSignatureStrategy: visible text box, no cryptography
- CryptoSignatureStrategy: PKCS#12-backed PDF signature
  (``/adbe.pkcs7.detached``) built by the external toolkit

Pipeline of the cryptographic strategy:

    extract identity -> assemble chain -> visible box (optional)
    -> reserve placeholder -> hash byte range -> external signer
    -> strip embedded content -> verify message digest -> fill placeholder

Any failure aborts the call. A partially signed PDF is never returned.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from casesign.app.core.config import Settings
from casesign.app.core.errors import SigningFailed
from casesign.app.schemas.signing import (
    SignatureInfo,
    SignatureKind,
    SignatureMetadata,
    SignatureRequest,
)
from casesign.app.services.chain_loader import load_trust_chain
from casesign.app.services.cms_detach import extract_message_digest, make_detached
from casesign.app.services.external_signer import ExternalSigner, OpenSslCmsSigner
from casesign.app.services.key_material import extract_signing_identity
from casesign.app.services.placeholder import fill_placeholder, reserve_placeholder
from casesign.app.services.visual_stamp import (
    CRYPTO_STYLE,
    VISUAL_STYLE,
    stamp_signature_box,
)
from casesign.app.utils.hashing import compute_byte_range_digest

logger = logging.getLogger("casesign.strategies")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_signing_time(moment: datetime, timezone_name: str = "UTC") -> str:
    """Render ``moment`` as dd/mm/YYYY HH:MM in an IANA time zone."""
    return moment.astimezone(ZoneInfo(timezone_name)).strftime("%d/%m/%Y %H:%M")


# ----------------------------------------------------------------------
# Strategy interface
# ----------------------------------------------------------------------

class SignatureStrategy(ABC):
    """Base class for signature strategies."""

    kind: SignatureKind

    def __init__(self, settings: Settings, clock: Optional[Clock] = None):
        self.settings = settings
        self._clock = clock or _utcnow

    @abstractmethod
    def sign(self, request: SignatureRequest) -> bytes:
        """Return the signed PDF bytes or raise a SigningError."""

    @abstractmethod
    def describe(self) -> SignatureInfo:
        """Operator-facing description of the strategy."""

    def display_time(self, moment: datetime) -> str:
        return format_signing_time(moment, self.settings.display_timezone)

    def resolve_metadata(
        self,
        metadata: SignatureMetadata,
        certificate_name: Optional[str] = None,
    ) -> SignatureMetadata:
        """Fill unset display values from the certificate and configuration."""
        return SignatureMetadata(
            reason=metadata.reason or self.settings.signature_reason,
            signer_name=(
                metadata.signer_name
                or certificate_name
                or self.settings.signer_name
            ),
            location=metadata.location or self.settings.signer_location or None,
            contact=(
                metadata.contact
                or self.settings.signer_contact
                or certificate_name
                or None
            ),
        )


# ----------------------------------------------------------------------
# Visual
# ----------------------------------------------------------------------

class VisualSignatureStrategy(SignatureStrategy):
    """
    Visual signature: a text box on the last page.

    This is NOT a cryptographic signature, only an indicator.
    """

    kind = SignatureKind.VISUAL

    def sign(self, request: SignatureRequest) -> bytes:
        metadata = self.resolve_metadata(request.metadata)
        lines = [
            f"Documento firmado digitalmente por: {metadata.signer_name}",
            f"Fecha de firma: {self.display_time(self._clock())}",
        ]

        signed = stamp_signature_box(
            request.pdf_bytes,
            lines,
            style=VISUAL_STYLE,
        )

        logger.info(
            "visual_signature_applied",
            extra={"output_length": len(signed)},
        )
        return signed

    def describe(self) -> SignatureInfo:
        return SignatureInfo(
            type=self.kind,
            details="Visual signature (text indicator, not cryptographic)",
        )


# ----------------------------------------------------------------------
# Cryptographic
# ----------------------------------------------------------------------

class CryptoSignatureStrategy(SignatureStrategy):
    """
    Cryptographic signature using a PKCS#12 (.p12/.pfx) container.

    CA certificates (``.cer``, ``.crt``, ``.pem``, ``.der``) placed in the
    same directory as the container are embedded alongside the
    container's own chain.
    """

    kind = SignatureKind.CRYPTOGRAPHIC

    def __init__(
        self,
        certificate_path: Union[str, Path],
        certificate_password: str,
        settings: Settings,
        *,
        external_signer: Optional[ExternalSigner] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(settings, clock)
        self.certificate_path = Path(str(certificate_path).strip())
        self._certificate_password = certificate_password
        self.external_signer = external_signer or OpenSslCmsSigner(
            binary=settings.toolkit_binary,
            timeout_seconds=settings.toolkit_timeout_seconds,
            temp_root=settings.temp_root,
        )

    def describe(self) -> SignatureInfo:
        return SignatureInfo(
            type=self.kind,
            details=f"PKCS#12 cryptographic signature ({self.certificate_path})",
        )

    def sign(self, request: SignatureRequest) -> bytes:
        # ------------------------------------------------------------------
        # Identity and chain
        # ------------------------------------------------------------------
        identity = extract_signing_identity(
            self.certificate_path,
            self._certificate_password,
        )

        chain = load_trust_chain(
            self.certificate_path.parent,
            identity.certificate,
            extensions=self.settings.chain_file_extensions,
            embedded=identity.embedded_chain,
        )

        signing_time = self._clock()
        metadata = self.resolve_metadata(
            request.metadata,
            certificate_name=identity.common_name,
        )

        pdf_bytes = request.pdf_bytes
        if self.settings.stamp_visible_box:
            lines = [
                f"Firmado digitalmente por: {metadata.signer_name}",
                f"Fecha de firma: {self.display_time(signing_time)}",
            ]
            pdf_bytes = stamp_signature_box(pdf_bytes, lines, style=CRYPTO_STYLE)

        # ------------------------------------------------------------------
        # Placeholder and digest
        # ------------------------------------------------------------------
        prepared, placeholder = reserve_placeholder(
            pdf_bytes,
            reserved_size=self.settings.signature_size_bytes,
            metadata=metadata,
            signing_time=signing_time,
        )

        covered = placeholder.covered_bytes(prepared)
        expected_digest = compute_byte_range_digest(
            prepared, placeholder.byte_range
        )

        # ------------------------------------------------------------------
        # External construction and detached conversion
        # ------------------------------------------------------------------
        attached = self.external_signer.sign(covered, identity, chain)
        detached = make_detached(attached)

        embedded_digest = extract_message_digest(detached)
        if embedded_digest != expected_digest:
            logger.error(
                "message_digest_mismatch",
                extra={
                    "expected": expected_digest.hex(),
                    "embedded": embedded_digest.hex() if embedded_digest else None,
                },
            )
            raise SigningFailed(
                "The signature does not match the document contents.",
                detail="messageDigest attribute differs from byte range digest",
            )

        signed = fill_placeholder(prepared, placeholder, detached)

        logger.info(
            "cryptographic_signature_applied",
            extra={
                "field_name": placeholder.field_name,
                "structure_length": len(detached),
                "reserved_size": placeholder.reserved_size,
                "chain_count": len(chain),
            },
        )
        return signed
