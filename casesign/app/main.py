import sys
import logging
from contextlib import asynccontextmanager
from importlib.metadata import version, PackageNotFoundError
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from casesign.app.api.routes import router as sign_router
from casesign.app.core.config import Settings
from casesign.app.core.logging import configure_logging
from casesign.app.services.external_signer import OpenSslCmsSigner
from casesign.app.services.signature_service import SignatureService

logger = logging.getLogger("casesign.main")


def get_app_version() -> str:
    """
    Resolve application version deterministically.

    Falls back to the source version when the package is not installed.
    """
    try:
        return version("casesign")
    except PackageNotFoundError:
        return "1.0.0"


def _build_lifespan(override: Optional[Settings]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Guarantees:
        - Fail-fast startup if configuration is invalid
        - Strategy selected once, before the first request
        """
        logger.info(
            "signing_service_startup_begin",
            extra={"service": "casesign", "version": get_app_version()},
        )

        try:
            settings = override or Settings()
        except Exception:
            logger.exception("invalid_signing_configuration")
            raise

        app.state.settings = settings
        app.state.signature_service = SignatureService.from_settings(settings)

        if settings.crypto_configured and not app.state.signature_service.verify_certificate():
            # Not fatal: the container may be mounted later. Signing
            # calls report ConfigurationError until it is.
            logger.warning(
                "signing_container_missing",
                extra={"certificate_path": str(settings.certificate_path)},
            )

        try:
            yield
        finally:
            logger.info("signing_service_shutdown")

    return lifespan


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory for the document signing sidecar.
    """
    configure_logging()

    app = FastAPI(
        title="casesign",
        description="PDF signing service for case documents.",
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        default_response_class=ORJSONResponse,
        lifespan=_build_lifespan(settings),
    )

    app.include_router(sign_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness and readiness probe",
    )
    async def health_check():
        """
        Verifies that the runtime is alive and correctly initialized.

        NOTE:
        - Does NOT perform cryptographic operations
        - Does NOT invoke the toolkit, only looks it up on PATH
        """
        current: Settings = app.state.settings
        toolkit = OpenSslCmsSigner(binary=current.toolkit_binary)
        return ORJSONResponse(
            content={
                "status": "ok",
                "service": "casesign",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
                "signature_type": app.state.signature_service.strategy.kind.value,
                "toolkit_available": toolkit.is_available(),
            }
        )

    return app


app = create_app()
