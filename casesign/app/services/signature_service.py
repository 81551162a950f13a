"""
Signature service.

Selects the signing strategy once, at construction, from configuration:

- certificate path AND password configured -> CryptoSignatureStrategy
- anything else                             -> VisualSignatureStrategy

The same configuration always yields the same strategy and the strategy
never changes during the lifetime of the service.

Calls are independent and stateless. ``async_sign`` runs the blocking
pipeline (which waits on the external toolkit) on a worker thread so
that request handlers are not blocked.
"""

import functools
import logging
from pathlib import Path
from typing import Optional, Union

import anyio
import anyio.lowlevel

from casesign.app.core.config import Settings
from casesign.app.core.errors import SigningError
from casesign.app.schemas.signing import (
    SignatureInfo,
    SignatureMetadata,
    SignatureRequest,
    SigningOutcome,
)
from casesign.app.services.external_signer import ExternalSigner
from casesign.app.services.strategies import (
    CryptoSignatureStrategy,
    SignatureStrategy,
    VisualSignatureStrategy,
)

logger = logging.getLogger("casesign.signature_service")


class SignatureService:
    """Entry point used by document workflows."""

    def __init__(
        self,
        certificate_path: Optional[Union[str, Path]] = None,
        certificate_password: Optional[str] = None,
        *,
        settings: Optional[Settings] = None,
        external_signer: Optional[ExternalSigner] = None,
    ):
        self.settings = settings or Settings()
        self.certificate_path = str(certificate_path or "").strip()
        self._certificate_password = certificate_password or ""

        if self.certificate_path and self._certificate_password.strip():
            self.strategy: SignatureStrategy = CryptoSignatureStrategy(
                self.certificate_path,
                self._certificate_password,
                self.settings,
                external_signer=external_signer,
            )
        else:
            self.strategy = VisualSignatureStrategy(self.settings)

        logger.info(
            "signature_strategy_selected",
            extra={"strategy": self.strategy.kind.value},
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        external_signer: Optional[ExternalSigner] = None,
    ) -> "SignatureService":
        return cls(
            settings.certificate_path,
            settings.password_value,
            settings=settings,
            external_signer=external_signer,
        )

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(
        self,
        pdf_bytes: bytes,
        metadata: Optional[SignatureMetadata] = None,
    ) -> bytes:
        """
        Sign a PDF buffer with the configured strategy.

        Raises:
            SigningError: any subclass, see ``casesign.app.core.errors``.
        """
        request = SignatureRequest(
            pdf_bytes=pdf_bytes,
            metadata=metadata or SignatureMetadata(),
        )
        try:
            return self.strategy.sign(request)
        except SigningError as exc:
            logger.warning(
                "signing_failed",
                extra={
                    "kind": exc.kind.value,
                    "retryable": exc.retryable,
                    "detail": exc.detail,
                },
            )
            raise

    def try_sign(
        self,
        pdf_bytes: bytes,
        metadata: Optional[SignatureMetadata] = None,
    ) -> SigningOutcome:
        """Like ``sign`` but returns failures as a uniform result."""
        try:
            return SigningOutcome(pdf_bytes=self.sign(pdf_bytes, metadata))
        except SigningError as exc:
            return SigningOutcome(failure=exc.to_failure())

    async def async_sign(
        self,
        pdf_bytes: bytes,
        metadata: Optional[SignatureMetadata] = None,
    ) -> bytes:
        """
        Run ``sign`` on a worker thread.

        The worker is not abandoned on cancellation: the call waits for
        the in-flight toolkit invocation (bounded by its timeout) so its
        temporary directory is removed, then raises the cancellation
        instead of returning a result or a signing error.
        """
        try:
            return await anyio.to_thread.run_sync(
                functools.partial(self.sign, pdf_bytes, metadata)
            )
        finally:
            await anyio.lowlevel.checkpoint_if_cancelled()

    def sign_file(
        self,
        pdf_path: Union[str, Path],
        metadata: Optional[SignatureMetadata] = None,
    ) -> Path:
        """
        Sign a PDF on disk and write ``<name>_signed.pdf`` next to it.

        Returns the path of the signed copy.
        """
        source = Path(pdf_path)
        signed = self.sign(source.read_bytes(), metadata)
        target = source.with_name(f"{source.stem}_signed{source.suffix or '.pdf'}")
        target.write_bytes(signed)
        return target

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_signature_info(self) -> SignatureInfo:
        return self.strategy.describe()

    def verify_certificate(self) -> bool:
        """Whether the configured container exists and is not empty."""
        if not self.certificate_path:
            return False
        path = Path(self.certificate_path)
        try:
            return path.is_file() and path.stat().st_size > 0
        except OSError:
            return False

    def is_crypto_configured(self) -> bool:
        return (
            isinstance(self.strategy, CryptoSignatureStrategy)
            and self.verify_certificate()
        )
