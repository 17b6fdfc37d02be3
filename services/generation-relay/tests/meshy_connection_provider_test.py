import base64

import httpx
import pytest

from conftest import RecordingTransport
from connections.meshy_connection_provider import MeshyAPIGenerator
from core.exceptions import ConfigurationError, ProviderRejection, ProviderTransportError
from domain.models import TaskStatus
from services.image_validator import request_from_bytes, request_from_payload


def make_generator(settings, handler):
    transport = RecordingTransport(handler)
    return MeshyAPIGenerator(settings, transport=transport), transport


def test_missing_api_key_is_a_configuration_error(test_settings):
    settings = test_settings.model_copy(update={"MESHY_API_KEY": None})

    with pytest.raises(ConfigurationError, match="Missing Meshy API key"):
        MeshyAPIGenerator(settings)


def test_status_table_covers_documented_statuses():
    MeshyAPIGenerator.verify_status_map()


def test_incomplete_status_table_is_refused():
    class Incomplete(MeshyAPIGenerator):
        STATUS_MAP = {k: v for k, v in MeshyAPIGenerator.STATUS_MAP.items() if k != "CANCELED"}

    with pytest.raises(ConfigurationError, match="CANCELED"):
        Incomplete.verify_status_map()


@pytest.mark.asyncio
async def test_submit_inlines_image_as_data_url(test_settings, png_bytes):
    generator, transport = make_generator(
        test_settings, lambda request: httpx.Response(202, json={"result": "0192-meshy-task"})
    )

    handle = await generator.submit(request_from_bytes(png_bytes, "image/png"))

    assert handle.task_id == "0192-meshy-task"
    assert transport.paths() == ["/openapi/v1/image-to-3d"]
    (body,) = transport.json_bodies("/image-to-3d")
    assert body["image_url"] == "data:image/png;base64," + base64.b64encode(png_bytes).decode()
    assert transport.requests[0].headers["Authorization"] == "Bearer msy_test"


@pytest.mark.asyncio
async def test_submit_passes_http_url_and_model_hint(test_settings):
    generator, transport = make_generator(test_settings, lambda request: httpx.Response(200, json={"result": "t-1"}))

    await generator.submit(request_from_payload("https://cdn.example.com/me.png", model_version="meshy-5"))

    assert transport.json_bodies("/image-to-3d") == [
        {"image_url": "https://cdn.example.com/me.png", "ai_model": "meshy-5"}
    ]


@pytest.mark.asyncio
async def test_poll_success_is_normalized(test_settings):
    generator, transport = make_generator(
        test_settings,
        lambda request: httpx.Response(
            200,
            json={"id": "t-1", "status": "SUCCEEDED", "progress": 100, "model_urls": {"glb": "https://x/m.glb"}},
        ),
    )

    snapshot = await generator.poll("t-1")

    assert transport.paths() == ["/openapi/v1/image-to-3d/t-1"]
    assert snapshot.status is TaskStatus.SUCCEEDED
    assert snapshot.result_url == "https://x/m.glb"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw, expected",
    [
        ("PENDING", TaskStatus.QUEUED),
        ("IN_PROGRESS", TaskStatus.RUNNING),
        ("FAILED", TaskStatus.FAILED),
        ("CANCELED", TaskStatus.CANCELLED),
    ],
)
async def test_poll_maps_every_vendor_status(test_settings, raw, expected):
    generator, _ = make_generator(test_settings, lambda request: httpx.Response(200, json={"status": raw}))

    snapshot = await generator.poll("t-1")

    assert snapshot.status is expected
    assert snapshot.recognized is True


@pytest.mark.asyncio
async def test_failed_task_carries_provider_reason(test_settings):
    generator, _ = make_generator(
        test_settings,
        lambda request: httpx.Response(
            200, json={"status": "FAILED", "task_error": {"message": "No subject detected in image"}}
        ),
    )

    snapshot = await generator.poll("t-1")

    assert snapshot.error.code == "FAILED"
    assert "No subject detected" in snapshot.error.message


@pytest.mark.asyncio
async def test_unauthorized_is_mapped(test_settings):
    generator, _ = make_generator(
        test_settings, lambda request: httpx.Response(401, json={"message": "Invalid API key."})
    )

    with pytest.raises(ProviderRejection) as exc_info:
        await generator.poll("t-1")

    assert "Authentication failed" in exc_info.value.message
    assert "MESHY_API_KEY" in exc_info.value.suggestion
    assert exc_info.value.code == "401"


@pytest.mark.asyncio
async def test_unmapped_client_error_uses_body_message(test_settings):
    generator, _ = make_generator(
        test_settings, lambda request: httpx.Response(422, json={"message": "image too small"})
    )

    with pytest.raises(ProviderRejection, match="image too small"):
        await generator.poll("t-1")


@pytest.mark.asyncio
async def test_server_error_is_a_transport_error(test_settings):
    generator, _ = make_generator(test_settings, lambda request: httpx.Response(503))

    with pytest.raises(ProviderTransportError):
        await generator.poll("t-1")


@pytest.mark.asyncio
async def test_non_json_success_is_a_transport_error(test_settings):
    generator, _ = make_generator(test_settings, lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(ProviderTransportError, match="malformed"):
        await generator.poll("t-1")
