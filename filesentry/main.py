import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from filesentry.api.middleware.logging import RequestLoggingMiddleware
from filesentry.api.routes.scan import router as scan_router
from filesentry.bootstrap import build_orchestrator
from filesentry.config import settings
from filesentry.services.uploads import UploadStager

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="FileSentry API",
    description="File inspection service: hashing, antivirus, code heuristics and hash reputation",
    version="1.0.0",
    docs_url="/v1/docs",
    openapi_url="/v1/openapi.json",
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(scan_router)

# Scan stack stored on app state so it can be accessed by routes and replaced in tests
app.state.orchestrator = None
app.state.upload_stager = None


@app.get("/healthz", tags=["health"])
async def health_check() -> JSONResponse:
    return JSONResponse({"status": "ok"})


@app.get("/readyz", tags=["health"])
async def readiness_check() -> JSONResponse:
    """Report whether the scan stack is wired and the AV daemon answers.

    An unreachable AV engine does not fail readiness: scans still complete
    with the antivirus stage degraded, so the flag is informational.
    """
    orchestrator = app.state.orchestrator
    if orchestrator is None:
        return JSONResponse({"status": "starting", "antivirus": None}, status_code=503)
    antivirus = await orchestrator.antivirus_ready()
    status = "ready" if antivirus is not False else "degraded"
    return JSONResponse({"status": status, "antivirus": antivirus})


@app.on_event("startup")
async def startup_event() -> None:
    logger.info("FileSentry API starting up (environment=%s)", settings.environment)
    if app.state.orchestrator is None:
        app.state.orchestrator = build_orchestrator(settings)
    if app.state.upload_stager is None:
        app.state.upload_stager = UploadStager(
            upload_dir=settings.upload_dir,
            max_bytes=settings.max_upload_bytes,
        )
    logger.info("Scan orchestrator initialised")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if app.state.orchestrator is not None:
        await app.state.orchestrator.aclose()
        app.state.orchestrator = None
        logger.info("Scan orchestrator closed")
    logger.info("FileSentry API shutting down")
