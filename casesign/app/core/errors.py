"""
Error taxonomy for the signing subsystem.

Every failure aborts the signing call that raised it. The subsystem
never returns a partially signed PDF, and it never retries internally:
retry policy belongs to the calling workflow, which can inspect
``kind`` and ``retryable``.

``message`` is safe to show to end users. ``detail`` carries diagnostic
context (toolkit stderr, parser errors) and is meant for logs only.
"""

from typing import ClassVar, Optional

from casesign.app.schemas.signing import SignatureErrorKind, SigningFailure


class SigningError(RuntimeError):
    """Base class for all signing failures."""

    kind: ClassVar[SignatureErrorKind] = SignatureErrorKind.SIGNING_FAILED
    retryable: ClassVar[bool] = False

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_failure(self) -> SigningFailure:
        return SigningFailure(
            kind=self.kind,
            message=self.message,
            retryable=self.retryable,
        )


class ConfigurationError(SigningError):
    """The signing container is missing or unreadable."""

    kind = SignatureErrorKind.CONFIGURATION_ERROR


class WrongPassword(SigningError):
    """The container is well-formed but cannot be decrypted."""

    kind = SignatureErrorKind.WRONG_PASSWORD


class CorruptContainer(SigningError):
    """The container is not a parseable PKCS#12 structure."""

    kind = SignatureErrorKind.CORRUPT_CONTAINER


class NoPrivateKeyFound(SigningError):
    """No private key (or no certificate matching it) in the container."""

    kind = SignatureErrorKind.NO_PRIVATE_KEY_FOUND


class ToolkitUnavailable(SigningError):
    """The external toolkit is missing, unusable or timed out."""

    kind = SignatureErrorKind.TOOLKIT_UNAVAILABLE


class SigningFailed(SigningError):
    """The toolkit rejected its inputs or produced an unusable structure."""

    kind = SignatureErrorKind.SIGNING_FAILED


class OversizeSignature(SigningError):
    """
    The signed structure does not fit the reserved placeholder.

    Retryable: increase the reserved size and sign again.
    """

    kind = SignatureErrorKind.OVERSIZE_SIGNATURE
    retryable = True

    def __init__(self, *, required_bytes: int, reserved_bytes: int):
        super().__init__(
            "The signature does not fit in the space reserved in the "
            f"document ({required_bytes} bytes needed, "
            f"{reserved_bytes} reserved).",
            detail=f"required={required_bytes} reserved={reserved_bytes}",
        )
        self.required_bytes = required_bytes
        self.reserved_bytes = reserved_bytes


class MalformedPdf(SigningError):
    """The input buffer is not a usable PDF document."""

    kind = SignatureErrorKind.MALFORMED_PDF
