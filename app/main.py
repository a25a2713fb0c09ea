import logging

from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import router
from app.core.config import settings
from app.core.exceptions import AssemblyError
from app.core.exceptions import ConfigurationError
from app.core.exceptions import DocumentUploadError
from app.core.exceptions import EnhancementBatchFailure
from app.core.exceptions import PipelineError
from app.core.exceptions import RunAlreadyActive
from app.core.exceptions import TooManyPhotos
from app.core.logging import setup_logging

setup_logging()

app = FastAPI(title="Inspection Report Builder")

logger = logging.getLogger(__name__)

ASSEMBLY_STATUS_CODES: dict[type[AssemblyError], int] = {
    TooManyPhotos: 413,
    DocumentUploadError: 502,
}


@app.on_event("startup")
async def startup_event() -> None:
    logger.info("Application started (template: %s)", settings.template_path)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.error("HTTP exception: %s (status: %s)", exc.detail, exc.status_code)
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    # Log the detailed Pydantic validation errors to the server console
    logger.error("Request validation failed: %s", exc.errors(), exc_info=False)
    return JSONResponse(
        {"error": "Input validation failed", "details": exc.errors()},
        status_code=422,
    )


@app.exception_handler(AssemblyError)
async def assembly_exception_handler(_request: Request, exc: AssemblyError) -> JSONResponse:
    status_code = ASSEMBLY_STATUS_CODES.get(type(exc), 500)
    logger.error("Assembly error (%s): %s", exc.kind, str(exc))
    return JSONResponse({"error": str(exc), "kind": exc.kind}, status_code=status_code)


@app.exception_handler(RunAlreadyActive)
async def run_active_exception_handler(_request: Request, exc: RunAlreadyActive) -> JSONResponse:
    logger.warning("Rejected concurrent run: %s", str(exc))
    return JSONResponse({"error": str(exc), "kind": "run_already_active"}, status_code=409)


@app.exception_handler(EnhancementBatchFailure)
async def batch_exception_handler(_request: Request, exc: EnhancementBatchFailure) -> JSONResponse:
    logger.error("Enhancement batch failure: %s", str(exc))
    return JSONResponse({"error": str(exc), "kind": "enhancement_batch_failure"}, status_code=500)


@app.exception_handler(ConfigurationError)
async def configuration_exception_handler(_request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s", str(exc))
    return JSONResponse({"error": str(exc), "kind": "configuration_error"}, status_code=500)


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(_request: Request, exc: PipelineError) -> JSONResponse:
    logger.error("Pipeline error: %s", str(exc))
    return JSONResponse({"error": str(exc), "kind": "pipeline_error"}, status_code=500)


@app.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    logger.info("Health check endpoint called")
    return {"status": "ok"}


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Photos-Truncated", "X-Unresolved-Placeholders"],
)
app.include_router(router)
