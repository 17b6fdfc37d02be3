from typing import Any, Dict, Optional, Tuple

import httpx
import structlog
from connections.error_catalog import meshy_rejection
from core.config import Settings
from core.exceptions import ConfigurationError, ProviderTransportError
from domain.interfaces import GenerationProvider
from domain.models import (
    ErrorDetails,
    GenerationRequest,
    TaskHandle,
    TaskSnapshot,
    TaskStatus,
    clamp_progress,
)
from services.image_validator import to_data_url

logger = structlog.get_logger()


class MeshyAPIGenerator(GenerationProvider):
    """
    Image-to-3D through Meshy. The image travels inside the job request,
    either as a data URL or as a URL Meshy fetches.
    """

    name = "meshy"
    TRACE_HEADER = "X-Request-Id"

    DOCUMENTED_STATUSES = frozenset({"PENDING", "IN_PROGRESS", "SUCCEEDED", "FAILED", "CANCELED"})
    STATUS_MAP = {
        "PENDING": TaskStatus.QUEUED,
        "IN_PROGRESS": TaskStatus.RUNNING,
        "SUCCEEDED": TaskStatus.SUCCEEDED,
        "FAILED": TaskStatus.FAILED,
        "CANCELED": TaskStatus.CANCELLED,
    }

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not settings.MESHY_API_KEY or not settings.MESHY_API_KEY.strip():
            raise ConfigurationError("Server configuration error: Missing Meshy API key")
        self.verify_status_map()

        self.api_key = settings.MESHY_API_KEY.strip()
        self.base_url = settings.MESHY_BASE_URL.rstrip("/")
        self.timeout = settings.HTTP_TIMEOUT
        self.default_ai_model = settings.MESHY_AI_MODEL
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _call(self, method: str, path: str, **kwargs: Any) -> Tuple[Dict[str, Any], Optional[str]]:
        async with self._client() as client:
            try:
                resp = await client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                logger.error("meshy_unreachable", path=path, error=str(e))
                raise ProviderTransportError("Could not reach Meshy.", provider=self.name, original_error=e)

        trace_id = resp.headers.get(self.TRACE_HEADER)

        if resp.status_code >= 500:
            raise ProviderTransportError(
                f"Meshy returned HTTP {resp.status_code}.", trace_id=trace_id, provider=self.name
            )

        try:
            body = resp.json()
        except ValueError as e:
            body = None
            if not resp.is_client_error:
                raise ProviderTransportError(
                    "Meshy returned a malformed response.", trace_id=trace_id, provider=self.name, original_error=e
                )

        if resp.is_client_error:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning("meshy_rejected", path=path, status=resp.status_code, message=message)
            raise meshy_rejection(resp.status_code, message, trace_id)

        if not isinstance(body, dict):
            raise ProviderTransportError("Meshy returned a malformed response.", trace_id=trace_id, provider=self.name)

        return body, trace_id

    async def submit(self, request: GenerationRequest) -> TaskHandle:
        image_url = request.source_url or to_data_url(request)
        payload: Dict[str, Any] = {"image_url": image_url}

        ai_model = request.model_version or self.default_ai_model
        if ai_model:
            payload["ai_model"] = ai_model

        logger.info(
            "submitting_generation_task",
            provider=self.name,
            route="direct_url" if request.source_url else "data_url",
            size_bytes=request.size_bytes,
        )
        body, trace_id = await self._call("POST", "/openapi/v1/image-to-3d", json=payload)

        task_id = body.get("result")
        if not task_id or not isinstance(task_id, str):
            raise ProviderTransportError(
                "No task id returned from Meshy image-to-3d", trace_id=trace_id, provider=self.name
            )
        return TaskHandle(task_id=task_id, provider=self.name, trace_id=trace_id)

    async def poll(self, task_id: str) -> TaskSnapshot:
        body, trace_id = await self._call("GET", f"/openapi/v1/image-to-3d/{task_id}")

        raw_status = body.get("status")
        key = raw_status.upper() if isinstance(raw_status, str) else raw_status
        status, recognized = self.normalize_status(key)

        model_urls = body.get("model_urls")
        if not isinstance(model_urls, dict):
            model_urls = {}

        error = None
        if status.is_terminal and status is not TaskStatus.SUCCEEDED:
            task_error = body.get("task_error")
            detail = task_error.get("message") if isinstance(task_error, dict) else None
            message = f"Meshy task failed: {raw_status}"
            error = ErrorDetails(
                code=str(raw_status),
                message=f"{message} ({detail})" if detail else message,
                trace_id=trace_id,
            )

        return TaskSnapshot(
            task_id=task_id,
            status=status,
            progress=clamp_progress(body.get("progress")),
            result_url=model_urls.get("glb") if status is TaskStatus.SUCCEEDED else None,
            error=error,
            raw_status=str(raw_status) if raw_status is not None else None,
            recognized=recognized,
            trace_id=trace_id,
        )
