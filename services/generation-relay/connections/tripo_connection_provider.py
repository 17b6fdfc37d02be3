from typing import Any, Dict, Optional, Tuple

import httpx
import structlog
from connections.error_catalog import tripo_rejection
from core.config import Settings
from core.exceptions import ConfigurationError, ProviderRejection, ProviderTransportError
from domain.interfaces import GenerationProvider, ObjectUploader
from domain.models import (
    ErrorDetails,
    GenerationRequest,
    TaskHandle,
    TaskSnapshot,
    TaskStatus,
    clamp_progress,
)

logger = structlog.get_logger()


class TripoAPIGenerator(GenerationProvider):
    """
    Image-to-3D through Tripo's task API.

    Small images are uploaded for a file token, large ones go through an STS
    object-storage upload, and http(s) URLs are handed over as-is.
    """

    name = "tripo"
    TRACE_HEADER = "X-Tripo-Trace-ID"

    DOCUMENTED_STATUSES = frozenset(
        {"queued", "running", "success", "failed", "cancelled", "unknown", "banned", "expired"}
    )
    STATUS_MAP = {
        "queued": TaskStatus.QUEUED,
        "running": TaskStatus.RUNNING,
        "success": TaskStatus.SUCCEEDED,
        "failed": TaskStatus.FAILED,
        "banned": TaskStatus.FAILED,
        "cancelled": TaskStatus.CANCELLED,
        "expired": TaskStatus.EXPIRED,
        "unknown": TaskStatus.UNKNOWN,
    }

    def __init__(
        self,
        settings: Settings,
        uploader: ObjectUploader,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not settings.TRIPO_API_KEY or not settings.TRIPO_API_KEY.strip():
            raise ConfigurationError("Server configuration error: Missing Tripo API key")
        self.verify_status_map()

        self.api_key = settings.TRIPO_API_KEY.strip()
        self.base_url = settings.TRIPO_BASE_URL.rstrip("/")
        self.timeout = settings.HTTP_TIMEOUT
        self.inline_limit = settings.INLINE_UPLOAD_LIMIT_BYTES
        self.default_model_version = settings.TRIPO_MODEL_VERSION
        self.uploader = uploader
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _call(
        self, client: httpx.AsyncClient, method: str, path: str, **kwargs: Any
    ) -> Tuple[Dict[str, Any], Optional[str]]:
        """Sends one request and unwraps Tripo's {code, data} envelope."""
        try:
            resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("tripo_unreachable", path=path, error=str(e))
            raise ProviderTransportError("Could not reach Tripo.", provider=self.name, original_error=e)

        trace_id = resp.headers.get(self.TRACE_HEADER)

        if resp.status_code >= 500:
            raise ProviderTransportError(
                f"Tripo returned HTTP {resp.status_code}.", trace_id=trace_id, provider=self.name
            )

        try:
            body = resp.json()
        except ValueError as e:
            if resp.is_client_error:
                raise ProviderRejection(
                    f"Tripo rejected the request (HTTP {resp.status_code}): {resp.text[:200]}",
                    code=str(resp.status_code),
                    trace_id=trace_id,
                    provider=self.name,
                )
            raise ProviderTransportError(
                "Tripo returned a malformed response.", trace_id=trace_id, provider=self.name, original_error=e
            )

        if not isinstance(body, dict):
            raise ProviderTransportError("Tripo returned a malformed response.", trace_id=trace_id, provider=self.name)

        if body.get("code") != 0:
            logger.warning("tripo_rejected", path=path, code=body.get("code"), trace_id=trace_id)
            raise tripo_rejection(body, trace_id)

        data = body.get("data")
        if not isinstance(data, dict):
            raise ProviderTransportError("Tripo response has no data.", trace_id=trace_id, provider=self.name)

        return data, trace_id

    async def _upload_inline(self, client: httpx.AsyncClient, request: GenerationRequest) -> str:
        files = {"file": (f"upload.{request.extension}", request.image, request.mime_type)}
        data, trace_id = await self._call(client, "POST", "/upload", files=files)

        image_token = data.get("image_token")
        if not image_token:
            raise ProviderTransportError(
                "No image_token returned from Tripo upload", trace_id=trace_id, provider=self.name
            )
        return image_token

    async def _upload_via_sts(self, client: httpx.AsyncClient, request: GenerationRequest) -> Dict[str, str]:
        data, trace_id = await self._call(client, "POST", "/upload/sts/token", json={"format": request.extension})

        required = ("s3_host", "resource_bucket", "resource_uri", "session_token", "sts_ak", "sts_sk")
        if any(not data.get(k) for k in required):
            raise ProviderTransportError(
                "Tripo STS token response is incomplete.", trace_id=trace_id, provider=self.name
            )

        await self.uploader.upload(request.image or b"", request.mime_type or "", data)
        return {"bucket": data["resource_bucket"], "key": data["resource_uri"]}

    async def submit(self, request: GenerationRequest) -> TaskHandle:
        """
        Orchestrates upload + task creation. Returns as soon as Tripo has
        accepted the job; polling happens separately.
        """
        body: Dict[str, Any] = {"type": "image_to_model"}

        async with self._client() as client:
            if request.source_url:
                route = "direct_url"
                body["url"] = request.source_url
            elif request.size_bytes > self.inline_limit:
                route = "sts_upload"
                body["object"] = await self._upload_via_sts(client, request)
            else:
                route = "inline_upload"
                token = await self._upload_inline(client, request)
                body["file"] = {"type": request.extension, "file_token": token}

            version = request.model_version or self.default_model_version
            if version:
                body["model_version"] = version

            logger.info("submitting_generation_task", provider=self.name, route=route)
            data, trace_id = await self._call(client, "POST", "/task", json=body)

        task_id = data.get("task_id")
        if not task_id:
            raise ProviderTransportError(
                "No task_id returned from Tripo create task", trace_id=trace_id, provider=self.name
            )
        return TaskHandle(task_id=task_id, provider=self.name, trace_id=trace_id)

    async def poll(self, task_id: str) -> TaskSnapshot:
        async with self._client() as client:
            data, trace_id = await self._call(client, "GET", f"/task/{task_id}")

        raw_status = data.get("status")
        status, recognized = self.normalize_status(raw_status)
        output = data.get("output")
        if not isinstance(output, dict):
            output = {}

        error = None
        if status.is_terminal and status is not TaskStatus.SUCCEEDED:
            error = ErrorDetails(
                code=str(raw_status),
                message=f"Tripo task failed: {raw_status}",
                trace_id=trace_id,
            )

        return TaskSnapshot(
            task_id=task_id,
            status=status,
            progress=clamp_progress(data.get("progress")),
            result_url=output.get("model") if status is TaskStatus.SUCCEEDED else None,
            error=error,
            raw_status=str(raw_status) if raw_status is not None else None,
            recognized=recognized,
            trace_id=trace_id,
        )
