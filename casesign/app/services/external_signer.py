"""
CMS signed-data construction delegated to the OpenSSL command-line tool.

Signed attributes are a DER SET OF and must be emitted in canonical
order; the structure is built by ``openssl cms`` rather than encoded
here.

HARD GUARANTEES:
- The toolkit receives exactly the byte-range bytes, never the whole file
- Arguments are passed as a list, never through a shell
- Key material only touches disk inside a fresh, uniquely named
  temporary directory (0700), in a 0600 file
- The directory is removed on every exit path, including timeouts
- The invocation is bounded by a timeout
- No network access

Callers depend on the ``ExternalSigner`` protocol only (bytes, identity
and chain in, structure bytes out).
"""

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Protocol, Sequence, Union

from asn1crypto import pem, x509

from casesign.app.core.errors import SigningFailed, ToolkitUnavailable
from casesign.app.services.key_material import SigningIdentity

logger = logging.getLogger("casesign.external_signer")

DIGEST_ALGORITHM = "sha256"

_STDERR_LOG_LIMIT = 2000


class ExternalSigner(Protocol):
    """Builds an attached CMS signed-data structure over ``data``."""

    def sign(
        self,
        data: bytes,
        identity: SigningIdentity,
        chain: Sequence[x509.Certificate],
    ) -> bytes:
        ...


# ----------------------------------------------------------------------
# File helpers
# ----------------------------------------------------------------------

def _write_private(path: Path, content: bytes) -> None:
    """Create ``path`` with owner-only permissions and write ``content``."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(content)


def chain_pem(chain: Sequence[x509.Certificate]) -> bytes:
    return b"".join(pem.armor("CERTIFICATE", cert.dump()) for cert in chain)


# ----------------------------------------------------------------------
# OpenSSL implementation
# ----------------------------------------------------------------------

class OpenSslCmsSigner:
    """
    ``openssl cms -sign`` wrapper.

    The output is attached (``-nodetach``) because that is the toolkit's
    standard path for this structure; the caller strips the embedded
    content afterwards.
    """

    def __init__(
        self,
        *,
        binary: str = "openssl",
        timeout_seconds: float = 10.0,
        temp_root: Optional[Union[str, Path]] = None,
        temp_prefix: str = "casesign-",
    ):
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self.temp_root = temp_root
        self.temp_prefix = temp_prefix

    # ------------------------------------------------------------------
    # Toolkit discovery
    # ------------------------------------------------------------------

    def resolve_executable(self) -> str:
        executable = shutil.which(self.binary)
        if executable is None:
            logger.error(
                "toolkit_not_found",
                extra={"binary": self.binary},
            )
            raise ToolkitUnavailable(
                "OpenSSL is not installed on this system. It is required "
                "for cryptographic document signing.",
                detail=f"executable not found: {self.binary}",
            )
        return executable

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def build_arguments(
        self,
        executable: str,
        workdir: Path,
        *,
        with_chain: bool,
    ) -> list[str]:
        args = [
            executable,
            "cms",
            "-sign",
            "-binary",
            "-nodetach",
            "-md",
            DIGEST_ALGORITHM,
            "-signer",
            str(workdir / "cert.pem"),
            "-inkey",
            str(workdir / "key.pem"),
            "-in",
            str(workdir / "data.bin"),
            "-outform",
            "DER",
            "-out",
            str(workdir / "signature.der"),
        ]
        if with_chain:
            args.extend(["-certfile", str(workdir / "chain.pem")])
        return args

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(
        self,
        data: bytes,
        identity: SigningIdentity,
        chain: Sequence[x509.Certificate],
    ) -> bytes:
        """
        Produce an attached CMS signed-data structure (DER).

        Raises:
            ToolkitUnavailable:
                Executable missing or unusable, or the call timed out.
            SigningFailed:
                Non-zero exit (e.g. key/certificate mismatch) or no output.
        """
        executable = self.resolve_executable()

        with tempfile.TemporaryDirectory(
            prefix=self.temp_prefix,
            dir=self.temp_root,
        ) as tmp:
            workdir = Path(tmp)

            _write_private(workdir / "key.pem", identity.private_key_pem())
            (workdir / "cert.pem").write_bytes(identity.certificate_pem())
            (workdir / "data.bin").write_bytes(data)

            with_chain = bool(chain)
            if with_chain:
                (workdir / "chain.pem").write_bytes(chain_pem(chain))

            args = self.build_arguments(
                executable,
                workdir,
                with_chain=with_chain,
            )

            try:
                process = subprocess.run(
                    args,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    timeout=self.timeout_seconds,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                logger.error(
                    "toolkit_timeout",
                    extra={"timeout_seconds": self.timeout_seconds},
                )
                raise ToolkitUnavailable(
                    "The cryptographic toolkit did not respond in time.",
                    detail=f"timeout after {self.timeout_seconds}s",
                ) from exc
            except OSError as exc:
                logger.error(
                    "toolkit_invocation_failed",
                    extra={"error_type": type(exc).__name__},
                )
                raise ToolkitUnavailable(
                    "The cryptographic toolkit could not be started.",
                    detail=str(exc),
                ) from exc

            stderr = process.stderr.decode("utf-8", errors="replace")

            if process.returncode != 0:
                logger.error(
                    "toolkit_signing_failed",
                    extra={
                        "returncode": process.returncode,
                        "stderr": stderr[:_STDERR_LOG_LIMIT],
                    },
                )
                raise SigningFailed(
                    "The cryptographic toolkit rejected the signing request.",
                    detail=stderr[:_STDERR_LOG_LIMIT],
                )

            output = workdir / "signature.der"
            if not output.is_file() or output.stat().st_size == 0:
                raise SigningFailed(
                    "The cryptographic toolkit produced no signature.",
                    detail=stderr[:_STDERR_LOG_LIMIT],
                )

            structure = output.read_bytes()

        logger.info(
            "toolkit_signature_created",
            extra={
                "covered_length": len(data),
                "structure_length": len(structure),
                "chain_count": len(chain),
            },
        )
        return structure
