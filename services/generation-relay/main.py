from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import structlog

# Internal Imports
from core.config import settings
from core.dependencies import get_catalog, get_chat_provider, get_relay, verify_provider_tables
from core.exceptions import (
    ConfigurationError,
    ProductNotFoundError,
    ProviderRejection,
    ProviderTransportError,
    ValidationException,
)
from core.logging import configure_logging
from core.telemetry import setup_telemetry
from domain.interfaces import ChatCompletionProvider
from domain.models import ChatRequest, GenerateModelBody, SizingRequest, SizingResult, TaskSnapshot
from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# MCP Imports
from fastmcp import FastMCP
from services.catalog_service import CatalogService
from services.image_validator import request_from_bytes, request_from_payload
from services.relay_service import GenerationRelay
from services.sizing_service import estimate_size

# 1. Configure Logging
configure_logging(json_logs=(settings.ENV == "production"), log_level=settings.LOG_LEVEL)
logger = structlog.get_logger()

# 2. MCP Server Setup
mcp = FastMCP(settings.APP_NAME)


@mcp.tool(name="generate_3d_model")
async def generate_3d_model_tool(image_url: str) -> str:
    """
    Starts image-to-3D generation from an http(s) or data URL. Returns the task ID.
    """
    logger.info("mcp_tool_called", tool="generate_3d_model")
    handle = await get_relay().submit(request_from_payload(image_url))
    return f"Task submitted. ID: {handle.task_id}"


@mcp.tool(name="get_generation_status")
async def get_generation_status_tool(task_id: str) -> Dict[str, Any]:
    """
    Returns the current status of a generation task, with the model URL once it succeeded.
    """
    logger.info("mcp_tool_called", tool="get_generation_status", task_id=task_id)
    snapshot = await get_relay().poll(task_id)
    return snapshot.model_dump(mode="json", exclude_none=True)


# 3. Lifespan (Startup/Shutdown)
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("startup_initiated", env=settings.ENV, provider=settings.GENERATION_PROVIDER)

    setup_telemetry()
    # Fail fast if a backend's status table is incomplete
    verify_provider_tables()

    yield

    logger.info("shutdown_initiated")


# 4. Create Main App
app = FastAPI(title=settings.APP_NAME, lifespan=lifespan, version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


# 5. Exception Handlers
@app.exception_handler(ValidationException)
async def validation_error_handler(request: Request, exc: ValidationException):
    return JSONResponse(status_code=400, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "Invalid request body.", "details": details})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("configuration_error", error=exc.message, path=request.url.path)
    return JSONResponse(status_code=500, content={"error": exc.message})


@app.exception_handler(ProductNotFoundError)
async def product_not_found_handler(request: Request, exc: ProductNotFoundError):
    return JSONResponse(status_code=404, content={"error": exc.message})


@app.exception_handler(ProviderRejection)
async def provider_rejection_handler(request: Request, exc: ProviderRejection):
    logger.warning(
        "provider_rejection", provider=exc.provider, code=exc.code, trace_id=exc.trace_id, task_id=exc.task_id
    )
    return JSONResponse(
        status_code=500,
        content=_compact(
            {
                "error": exc.message,
                "code": exc.code,
                "suggestion": exc.suggestion,
                "traceId": exc.trace_id,
                "taskId": exc.task_id,
                "retryable": False,
            }
        ),
    )


@app.exception_handler(ProviderTransportError)
async def provider_transport_handler(request: Request, exc: ProviderTransportError):
    logger.error(
        "provider_transport_error",
        provider=exc.provider,
        error=exc.message,
        trace_id=exc.trace_id,
        task_id=exc.task_id,
    )
    return JSONResponse(
        status_code=500,
        content=_compact(
            {
                "error": "Internal server error: the generation provider is unavailable. Please retry.",
                "traceId": exc.trace_id,
                "taskId": exc.task_id,
                "retryable": True,
            }
        ),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred.",
        },
    )


# 6. Mount MCP
app.mount("/mcp", mcp.http_app())


def snapshot_response(snapshot: TaskSnapshot) -> JSONResponse:
    """Maps a relay result onto the 200 / 202 / 500 contract the browser expects."""
    if snapshot.succeeded:
        return JSONResponse(
            status_code=200,
            content=_compact(
                {"modelUrl": snapshot.result_url, "taskId": snapshot.task_id, "traceId": snapshot.trace_id}
            ),
        )

    if not snapshot.is_terminal:
        return JSONResponse(
            status_code=202,
            content=_compact(
                {
                    "status": "processing",
                    "taskId": snapshot.task_id,
                    "progress": snapshot.progress,
                    "traceId": snapshot.trace_id,
                }
            ),
        )

    error = snapshot.error
    return JSONResponse(
        status_code=500,
        content=_compact(
            {
                "error": error.message if error else f"Task ended with status {snapshot.status.value}",
                "code": error.code if error else snapshot.status.value,
                "suggestion": error.suggestion if error else None,
                "status": snapshot.status.value,
                "taskId": snapshot.task_id,
                "traceId": (error.trace_id if error else None) or snapshot.trace_id,
            }
        ),
    )


# 7. REST Endpoints
@app.post("/generate-model")
async def generate_model_endpoint(
    body: GenerateModelBody, relay: GenerationRelay = Depends(get_relay)
) -> JSONResponse:
    """
    Start a generation from an image, or resume waiting on a taskId.
    Waits as long as the host allows, then answers 200 (done) or 202 (come back).
    """
    if body.task_id:
        snapshot = await relay.await_completion(body.task_id)
        return snapshot_response(snapshot)

    if not body.image:
        raise ValidationException("Missing or invalid image_url.")

    generation_request = request_from_payload(body.image, body.mime_type, body.model_version)
    snapshot = await relay.generate(generation_request)
    return snapshot_response(snapshot)


@app.get("/api/v1/tasks/{task_id}")
async def task_status_endpoint(task_id: str, relay: GenerationRelay = Depends(get_relay)) -> Dict[str, Any]:
    """
    One poll of the provider, normalized.
    """
    snapshot = await relay.poll(task_id)
    return snapshot.model_dump(mode="json", exclude_none=True)


@app.post("/api/upload")
async def upload_endpoint(file: Optional[UploadFile] = File(default=None)) -> Dict[str, Any]:
    if file is None:
        raise ValidationException("No file uploaded")

    data = await file.read()
    request_from_bytes(data, file.content_type)
    logger.info("image_uploaded", filename=file.filename, size_bytes=len(data))

    return {"success": True, "name": file.filename, "size": len(data), "mimeType": file.content_type}


@app.get("/api/products")
async def products_endpoint(catalog: CatalogService = Depends(get_catalog)) -> Dict[str, Any]:
    return {"products": [p.model_dump() for p in catalog.list_products()]}


@app.get("/api/products/{product_id}")
async def product_endpoint(product_id: str, catalog: CatalogService = Depends(get_catalog)) -> Dict[str, Any]:
    product = catalog.get_product(product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found")
    return product.model_dump()


@app.post("/api/sizing")
async def sizing_endpoint(body: SizingRequest) -> SizingResult:
    return estimate_size(body)


@app.post("/api/chat")
async def chat_endpoint(
    body: ChatRequest, chat: ChatCompletionProvider = Depends(get_chat_provider)
) -> Dict[str, str]:
    reply = await chat.complete(body.message, body.context)
    return {"reply": reply}


@app.get("/health")
def health_check():
    return {"status": "ok", "env": settings.ENV, "provider": settings.GENERATION_PROVIDER}
