import functools
import logging
import uuid
from pathlib import Path
from typing import Annotated, Optional

import anyio
from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import ORJSONResponse, Response

from casesign.app.core.config import Settings
from casesign.app.core.errors import SigningError
from casesign.app.schemas.certificate import (
    CertificateInfo,
    CertificateInspectRequest,
)
from casesign.app.schemas.signing import (
    SignatureErrorKind,
    SignatureInfo,
    SignatureMetadata,
    SigningFailure,
)
from casesign.app.services.certificate_introspector import inspect_certificate
from casesign.app.services.signature_service import SignatureService

logger = logging.getLogger("casesign.api")

router = APIRouter(tags=["Document Signing"])

# Container and toolkit problems on the signing path are server-side
# configuration faults; only a bad upload is the caller's fault.
SIGN_STATUS_BY_KIND = {
    SignatureErrorKind.CONFIGURATION_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    SignatureErrorKind.WRONG_PASSWORD: status.HTTP_503_SERVICE_UNAVAILABLE,
    SignatureErrorKind.CORRUPT_CONTAINER: status.HTTP_503_SERVICE_UNAVAILABLE,
    SignatureErrorKind.NO_PRIVATE_KEY_FOUND: status.HTTP_503_SERVICE_UNAVAILABLE,
    SignatureErrorKind.TOOLKIT_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    SignatureErrorKind.SIGNING_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    SignatureErrorKind.OVERSIZE_SIGNATURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    SignatureErrorKind.MALFORMED_PDF: status.HTTP_422_UNPROCESSABLE_ENTITY,
}

# ---------------------------------------------------------------------------
# Dependency providers
# ---------------------------------------------------------------------------

def get_correlation_id(
    x_correlation_id: Annotated[
        Optional[str],
        Header(description="Audit trace ID"),
    ] = None,
) -> str:
    """Extract or generate a correlation ID for end-to-end traceability."""
    if x_correlation_id and len(x_correlation_id) > 128:
        return str(uuid.uuid4())
    return x_correlation_id or str(uuid.uuid4())


def get_signature_service(request: Request) -> SignatureService:
    service = getattr(request.app.state, "signature_service", None)
    if service is None:
        raise RuntimeError("signature service not initialized")
    return service


def failure_response(
    failure: SigningFailure,
    status_code: int,
    correlation_id: str,
) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content=failure.model_dump(mode="json"),
        headers={"X-Correlation-ID": correlation_id},
    )


def _safe_filename(filename: Optional[str]) -> str:
    if not filename:
        return "document_signed.pdf"
    cleaned = (
        filename.replace('"', "")
        .replace("\n", "")
        .replace("\r", "")
        .replace("/", "_")
        .replace("\\", "_")
    )
    stem = cleaned[:-4] if cleaned.lower().endswith(".pdf") else cleaned
    return f"{stem}_signed.pdf"


# ---------------------------------------------------------------------------
# GET /signature/info
# ---------------------------------------------------------------------------

@router.get(
    "/signature/info",
    summary="Describe the active signature strategy",
    response_model=SignatureInfo,
)
async def signature_info(
    service: Annotated[SignatureService, Depends(get_signature_service)],
) -> SignatureInfo:
    return service.get_signature_info()


# ---------------------------------------------------------------------------
# POST /sign
# ---------------------------------------------------------------------------

@router.post(
    "/sign",
    summary="Sign a PDF document",
    response_class=Response,
    responses={
        200: {
            "content": {"application/pdf": {}},
            "description": "Signed PDF document",
        },
        413: {"description": "Payload too large"},
        415: {"description": "Unsupported media type"},
        422: {"model": SigningFailure, "description": "Invalid PDF input"},
        500: {"model": SigningFailure, "description": "Signing failure"},
        503: {"model": SigningFailure, "description": "Signing unavailable"},
    },
)
async def sign_document(
    request: Request,
    file: Annotated[
        UploadFile,
        File(description="Unsigned PDF document"),
    ],
    service: Annotated[SignatureService, Depends(get_signature_service)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
    reason: Annotated[Optional[str], Form()] = None,
    signer_name: Annotated[Optional[str], Form()] = None,
    location: Annotated[Optional[str], Form()] = None,
    contact: Annotated[Optional[str], Form()] = None,
) -> Response:
    """
    Sign an uploaded PDF with the configured strategy.

    Failures are returned as a ``SigningFailure`` body whose ``kind`` is
    stable and machine-readable.
    """
    settings: Settings = request.app.state.settings

    if file.content_type != "application/pdf":
        logger.warning(
            "invalid_media_type",
            extra={
                "content_type": file.content_type,
                "trace_id": correlation_id,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Only 'application/pdf' files are accepted.",
            headers={"X-Correlation-ID": correlation_id},
        )

    max_bytes = settings.max_pdf_size_mb * 1024 * 1024

    try:
        input_pdf_bytes = await file.read(max_bytes + 1)

        if not input_pdf_bytes:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Empty PDF payload.",
                headers={"X-Correlation-ID": correlation_id},
            )

        if len(input_pdf_bytes) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File exceeds the {settings.max_pdf_size_mb}MB limit.",
                headers={"X-Correlation-ID": correlation_id},
            )

        metadata = SignatureMetadata(
            reason=reason or None,
            signer_name=signer_name or None,
            location=location or None,
            contact=contact or None,
        )

        logger.info(
            "signing_requested",
            extra={
                "trace_id": correlation_id,
                "strategy": service.strategy.kind.value,
                "input_length": len(input_pdf_bytes),
            },
        )

        try:
            signed_pdf_bytes = await service.async_sign(input_pdf_bytes, metadata)
        except SigningError as exc:
            logger.warning(
                "signing_request_failed",
                extra={
                    "trace_id": correlation_id,
                    "kind": exc.kind.value,
                },
            )
            return failure_response(
                exc.to_failure(),
                SIGN_STATUS_BY_KIND.get(
                    exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR
                ),
                correlation_id,
            )

        logger.info(
            "signing_request_complete",
            extra={
                "trace_id": correlation_id,
                "output_length": len(signed_pdf_bytes),
            },
        )

        return Response(
            content=signed_pdf_bytes,
            media_type="application/pdf",
            headers={
                "Content-Disposition": (
                    f'attachment; filename="{_safe_filename(file.filename)}"'
                ),
                "X-Correlation-ID": correlation_id,
                "X-Signature-Type": service.strategy.kind.value,
            },
        )

    finally:
        await file.close()


# ---------------------------------------------------------------------------
# POST /certificate/inspect
# ---------------------------------------------------------------------------

CONTAINER_NOT_FOUND = SigningFailure(
    kind=SignatureErrorKind.CONFIGURATION_ERROR,
    message="Certificate not found.",
    retryable=False,
)


def resolve_inspection_target(
    settings: Settings,
    requested: Optional[str],
) -> Optional[Path]:
    """
    Map a requested container path onto the configured container directory.

    Relative paths are taken from that directory. Returns ``None`` when
    no container is configured or the path resolves outside it.
    """
    if settings.certificate_path is None:
        return None

    configured = settings.certificate_path.expanduser()
    if not requested:
        return configured

    directory = configured.parent.resolve()
    candidate = Path(requested).expanduser()
    if not candidate.is_absolute():
        candidate = directory / candidate

    resolved = candidate.resolve()
    if resolved == directory or not resolved.is_relative_to(directory):
        return None
    return resolved


@router.post(
    "/certificate/inspect",
    summary="Inspect a PKCS#12 signing container",
    response_model=CertificateInfo,
    responses={
        404: {"model": SigningFailure, "description": "Container not found"},
        422: {"model": SigningFailure, "description": "Unusable container"},
    },
)
async def certificate_inspect(
    request: Request,
    body: CertificateInspectRequest,
    correlation_id: Annotated[str, Depends(get_correlation_id)],
):
    """
    Describe the configured container, or another container kept in the
    same directory.

    Paths outside that directory are answered with the same 404 whether
    or not they exist, and are never opened.
    """
    settings: Settings = request.app.state.settings

    target = resolve_inspection_target(settings, body.path)
    if target is None:
        logger.warning(
            "certificate_inspection_rejected",
            extra={"trace_id": correlation_id},
        )
        return failure_response(
            CONTAINER_NOT_FOUND,
            status.HTTP_404_NOT_FOUND,
            correlation_id,
        )

    try:
        return await anyio.to_thread.run_sync(
            functools.partial(
                inspect_certificate,
                target,
                body.password.get_secret_value(),
            )
        )
    except SigningError as exc:
        status_code = (
            status.HTTP_404_NOT_FOUND
            if exc.kind == SignatureErrorKind.CONFIGURATION_ERROR
            else status.HTTP_422_UNPROCESSABLE_ENTITY
        )
        logger.info(
            "certificate_inspection_failed",
            extra={"trace_id": correlation_id, "kind": exc.kind.value},
        )
        return failure_response(exc.to_failure(), status_code, correlation_id)
