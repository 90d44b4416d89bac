"""Shared fixtures: settings, a stub REST backend and fake client sockets."""
import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
from starlette.websockets import WebSocketState

from palpation_bridge.backend.http_client import ApiResult, BackendClient
from palpation_bridge.config import Settings

PATIENT_ID = "8001011234567"


class StubBackend:
    """In-memory stand-in for the patient REST API, used as an httpx.MockTransport handler."""

    def __init__(self, password: Optional[str] = "secret", token: str = "tok-123") -> None:
        self.password = password
        self.token = token
        self.requests: List[httpx.Request] = []
        self.patients: Dict[str, Dict[str, Any]] = {
            PATIENT_ID: {"id": PATIENT_ID, "name": "Test Patient"},
        }
        self.results: Dict[str, Any] = {}
        self.fail_status: Optional[int] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/auth/token":
            body = json.loads(request.content or b"{}")
            if self.password is None or body.get("password") != self.password:
                return httpx.Response(401, json={"error": "invalid password"})
            return httpx.Response(200, json={"token": self.token})

        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"error": "unauthorized"})
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": "backend failure"})

        if request.method == "GET" and path == "/patient":
            return httpx.Response(200, json=list(self.patients.values()))
        if request.method == "GET" and path.startswith("/patient/"):
            patient_id = path.rsplit("/", 1)[-1]
            if patient_id not in self.patients:
                return httpx.Response(404, json={"error": "not found"})
            record = dict(self.patients[patient_id])
            if patient_id in self.results:
                record["palpation"] = self.results[patient_id]
            return httpx.Response(200, json=record)
        if request.method == "POST" and path.startswith("/patient/data/"):
            patient_id = path.rsplit("/", 1)[-1]
            self.results[patient_id] = json.loads(request.content)
            return httpx.Response(201, json={"success": True})
        return httpx.Response(404, json={"error": "no route"})

    def paths(self) -> List[str]:
        return [f"{r.method} {r.url.path}" for r in self.requests]


class FakeWebSocket:
    """Minimal object with the parts of starlette's WebSocket the hub touches."""

    def __init__(self, *, open_: bool = True, fail: bool = False) -> None:
        state = WebSocketState.CONNECTED if open_ else WebSocketState.DISCONNECTED
        self.client_state = state
        self.application_state = state
        self.fail = fail
        self.sent: List[str] = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    def json_messages(self) -> List[Any]:
        return [json.loads(s) for s in self.sent]


class RecordingSink:
    """Async result sink that records each flush."""

    def __init__(self, result: Optional[ApiResult] = None, error: Optional[Exception] = None) -> None:
        self.calls: List[tuple] = []
        self.result = result or ApiResult(ok=True, data={"success": True}, status=201)
        self.error = error

    async def __call__(self, patient_id: str, payload: Dict[str, Any]) -> ApiResult:
        self.calls.append((patient_id, payload))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, rest_api_url="http://backend.test/", password="secret")


@pytest.fixture
def stub_backend() -> StubBackend:
    return StubBackend()


@pytest.fixture
def backend(settings, stub_backend) -> BackendClient:
    return BackendClient(settings, transport=httpx.MockTransport(stub_backend))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


class GatedSink(RecordingSink):
    """Result sink whose post stays pending until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def __call__(self, patient_id: str, payload: Dict[str, Any]) -> ApiResult:
        self.calls.append((patient_id, payload))
        await self.release.wait()
        return self.result
