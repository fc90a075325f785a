"""FastAPI entrypoint and HTTP routes."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, File, HTTPException, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.background import BackgroundTask

from signature_formatter.config.settings import get_settings
from signature_formatter.imgproc.encoder import SizeConstrainedEncoder
from signature_formatter.imgproc.envelope import TargetEnvelope
from signature_formatter.imgproc.normalize import PixelNormalizer
from signature_formatter.metrics.prometheus_exporter import signature_requests_total
from signature_formatter.monitoring.logging import configure_logging
from signature_formatter.storage.files import FileRole, RequestFiles
from signature_formatter.workers.cleanup import FileLifecycleManager

logger = logging.getLogger(__name__)

DOWNLOAD_NAME = "formatted_signature.jpg"
GENERIC_FAILURE = "Error processing image"


def _upload_suffix(filename: str | None) -> str:
    suffix = Path(filename or "").suffix.lower()
    if 1 < len(suffix) <= 6 and suffix[1:].isalnum():
        return suffix
    return ""


async def _store_upload(upload: UploadFile, destination: Path) -> None:
    try:
        data = await upload.read()
    finally:
        await upload.close()
    await asyncio.to_thread(destination.write_bytes, data)


def create_app() -> FastAPI:
    """Initialise the FastAPI application."""

    settings = get_settings()
    envelope = TargetEnvelope.from_settings(settings)
    encoder = SizeConstrainedEncoder(PixelNormalizer(envelope))
    lifecycle = FileLifecycleManager.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        lifecycle.start()
        logger.info(
            "Formatting signatures to %sx%s px, %d-%d bytes",
            envelope.pixel_width,
            envelope.pixel_height,
            envelope.min_bytes,
            envelope.max_bytes,
        )
        try:
            yield
        finally:
            await lifecycle.stop()

    app = FastAPI(
        title="Signature Formatter API",
        version="0.1.0",
        docs_url="/docs" if settings.environment != "prod" else None,
        redoc_url="/redoc" if settings.environment != "prod" else None,
        lifespan=lifespan,
    )
    app.state.lifecycle = lifecycle
    app.state.encoder = encoder
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_origin],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Simple health endpoint used for readiness probes."""

        return {"status": "ok"}

    @app.get("/metrics", tags=["system"])
    async def metrics() -> Response:
        """Expose Prometheus counters."""

        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/upload", tags=["signature"])
    async def upload_signature(file: UploadFile = File(...)) -> FileResponse:
        """Resize an uploaded signature and return it as a size-bounded JPEG.

        Every file written for the request is released to the lifecycle
        manager exactly once: after the download finishes on success, or
        immediately on failure.
        """

        files: RequestFiles = lifecycle.new_scope()
        try:
            source = files.allocate(FileRole.SOURCE, "upload", _upload_suffix(file.filename))
            await _store_upload(file, source)
            result = await asyncio.to_thread(encoder.encode, source, files)
        except Exception as exc:
            logger.exception("Failed to format uploaded signature")
            signature_requests_total.labels(outcome="failed").inc()
            await lifecycle.release(files)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=GENERIC_FAILURE,
            ) from exc

        signature_requests_total.labels(outcome="ok").inc()
        return FileResponse(
            result.path,
            media_type="image/jpeg",
            filename=DOWNLOAD_NAME,
            background=BackgroundTask(lifecycle.release, files),
        )

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""

    uvicorn.run("signature_formatter.api.main:app", host="0.0.0.0", port=5000)


if __name__ == "__main__":
    run()
