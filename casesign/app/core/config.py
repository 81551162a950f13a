"""
Centralized configuration management for the signing subsystem.

Values come from ``CASESIGN_*`` environment variables (or a local
``.env``). Invalid values fail at startup, and the container password
is held as a SecretStr so it never shows up in reprs or logs.

The presence of BOTH a certificate path and a certificate password is
what enables cryptographic signing. Anything less falls back to the
visual (non-cryptographic) signature box.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

SensitiveEnv = Annotated[
    Optional[SecretStr],
    Field(
        default=None,
        description="Sensitive credential, redacted from logs",
    ),
]

DisplayText = Annotated[
    str,
    Field(max_length=256),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Values are read once and are immutable afterwards.
    """

    # ---------------------------------------------------------------------
    # Signing credentials (PKCS#12 container)
    # ---------------------------------------------------------------------

    certificate_path: Annotated[
        Optional[Path],
        Field(
            default=None,
            description="Path to the .p12/.pfx signing container",
        ),
    ]
    certificate_password: SensitiveEnv

    # ---------------------------------------------------------------------
    # Signature display metadata
    # ---------------------------------------------------------------------

    signer_name: DisplayText = "Firmante"
    signer_location: DisplayText = ""
    signer_contact: DisplayText = ""
    signature_reason: DisplayText = "Documento firmado digitalmente"

    display_timezone: Annotated[
        str,
        Field(
            default="UTC",
            min_length=1,
            description=(
                "IANA time zone for the date shown in the visible "
                "signature box (e.g. Europe/Madrid)"
            ),
        ),
    ]

    stamp_visible_box: Annotated[
        bool,
        Field(
            default=True,
            description=(
                "Draw the visible signature box on the last page "
                "in cryptographic mode as well"
            ),
        ),
    ]

    # ---------------------------------------------------------------------
    # Cryptographic toolkit
    # ---------------------------------------------------------------------

    signature_size_bytes: Annotated[
        int,
        Field(
            default=16384,
            ge=2048,
            le=1024 * 1024,
            description=(
                "Bytes reserved for the CMS structure. Must fit the signer "
                "certificate plus the full CA chain."
            ),
        ),
    ]

    toolkit_binary: Annotated[
        str,
        Field(
            default="openssl",
            min_length=1,
            description="External CMS toolkit executable (name or path)",
        ),
    ]

    toolkit_timeout_seconds: Annotated[
        float,
        Field(
            default=10.0,
            gt=0,
            le=120,
            description="Upper bound on a single toolkit invocation",
        ),
    ]

    temp_root: Annotated[
        Optional[Path],
        Field(
            default=None,
            description=(
                "Parent directory for per-call temporary directories. "
                "System default when unset."
            ),
        ),
    ]

    chain_file_extensions: Tuple[str, ...] = (".cer", ".crt", ".pem", ".der")

    # ---------------------------------------------------------------------
    # Operational Boundaries
    # ---------------------------------------------------------------------

    max_pdf_size_mb: Annotated[
        int,
        Field(
            default=25,
            ge=1,
            le=100,
            description="OOM protection limit for uploaded PDFs",
        ),
    ]

    model_config = SettingsConfigDict(
        env_prefix="CASESIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    # ---------------------------------------------------------------------
    # Validators (Pydantic v2)
    # ---------------------------------------------------------------------

    @field_validator("display_timezone")
    @classmethod
    def validate_display_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown time zone '{v}'.") from exc
        return v

    # ---------------------------------------------------------------------
    # Derived values
    # ---------------------------------------------------------------------

    @property
    def password_value(self) -> str:
        if self.certificate_password is None:
            return ""
        return self.certificate_password.get_secret_value()

    @property
    def crypto_configured(self) -> bool:
        """True when both the container path and its password are set."""
        path = str(self.certificate_path or "").strip()
        return bool(path) and bool(self.password_value.strip())


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.
    """
    return Settings()  # singleton within process
