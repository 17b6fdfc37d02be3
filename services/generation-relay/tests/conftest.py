import io
import json
import os
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from PIL import Image

from core.config import Settings
from domain.interfaces import GenerationProvider
from domain.models import GenerationRequest, TaskHandle, TaskSnapshot


# --- Images ---


def _encode(img: Image.Image, fmt: str) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return _encode(Image.new("RGB", (60, 30), color="red"), "PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return _encode(Image.new("RGB", (60, 30), color="blue"), "JPEG")


@pytest.fixture
def large_png_bytes() -> bytes:
    # Random noise does not compress, so this lands well above 100KB
    noise = Image.frombytes("RGB", (300, 300), os.urandom(300 * 300 * 3))
    data = _encode(noise, "PNG")
    assert len(data) > 100 * 1024
    return data


# --- Settings ---


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        TRIPO_API_KEY="tsk_test",
        MESHY_API_KEY="msy_test",
        OPENROUTER_API_KEY="or_test",
        MAX_RETRIES=2,
        RETRY_BACKOFF_BASE=0.5,
        POLLING_INTERVAL=1.0,
        GENERATION_TIME_BUDGET=5.0,
        PLATFORM_EXECUTION_CEILING=None,
    )


# --- Time ---


class FakeClock:
    """Monotonic clock that only moves when someone sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# --- HTTP fakes ---


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def json_bodies(self, path_suffix: str) -> List[Dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith(path_suffix)]


@pytest.fixture
def recording_transport():
    return RecordingTransport


def tripo_envelope(data: Optional[Dict] = None, code: int = 0, status_code: int = 200, **extra) -> httpx.Response:
    body = {"code": code, "data": data or {}, **extra}
    return httpx.Response(status_code, json=body, headers={"X-Tripo-Trace-ID": "trace-abc"})


# --- Provider fakes ---


class ScriptedProvider(GenerationProvider):
    """
    Hands out pre-baked poll results in order; the last one repeats forever.
    Entries may be exceptions, which are raised instead.
    """

    name = "scripted"
    DOCUMENTED_STATUSES = frozenset()
    STATUS_MAP = {}

    def __init__(self, polls=None, submit_results=None):
        self.polls = list(polls or [])
        self.submit_results = list(submit_results or [TaskHandle(task_id="task-1", provider="scripted")])
        self.poll_calls = 0
        self.submit_calls = 0

    async def submit(self, request: GenerationRequest) -> TaskHandle:
        self.submit_calls += 1
        result = self.submit_results[min(self.submit_calls, len(self.submit_results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result

    async def poll(self, task_id: str) -> TaskSnapshot:
        self.poll_calls += 1
        result = self.polls[min(self.poll_calls, len(self.polls)) - 1]
        if isinstance(result, Exception):
            raise result
        return result.model_copy(update={"task_id": task_id})
