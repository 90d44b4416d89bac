"""FastAPI entry-point for the palpation bridge."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .backend.http_client import BackendClient
from .clients import ClientHub
from .config import Settings, get_settings
from .device.serial_link import ConnectionFactory, DeviceLink
from .palpation import PalpationSession

logger = logging.getLogger(__name__)


class DeviceLineRequest(BaseModel):
    line: str


def create_app(
    settings: Optional[Settings] = None,
    *,
    backend_transport: Optional[httpx.AsyncBaseTransport] = None,
    serial_connection_factory: Optional[ConnectionFactory] = None,
) -> FastAPI:
    """Wire session, backend client, serial link and client hub into an app."""
    settings = settings or get_settings()

    backend = BackendClient(settings, transport=backend_transport)
    session = PalpationSession.from_settings(settings, result_sink=backend.post_result)
    hub = ClientHub(session=session, backend=backend)
    device_link = DeviceLink.from_settings(
        settings, session, hub.broadcast, connection_factory=serial_connection_factory
    )
    hub.attach_device(device_link.send_to_device)

    if session.patient_id is None:
        logger.warning(
            "No default patient configured (PALPATION__PATIENT_ID); palpation data will be "
            "dropped until a client selects a patient"
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            await device_link.start()
            logger.info(
                "Bridge started (policy=%s, serial=%s, patient=%s)",
                session.policy.value,
                settings.serial_port_path,
                session.patient_id,
            )
        except Exception as e:
            logger.exception(f"Failed to start serial link: {e}")
            logger.error("Bridge startup incomplete - device features may not work")
        yield
        try:
            await device_link.stop()
            if session.pending_posts:
                logger.info("Waiting for %d palpation post(s) to finish", session.pending_posts)
            await session.wait_for_posts()
            await backend.aclose()
            logger.info("Bridge shutdown complete")
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    app = FastAPI(title="palpation-bridge", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.backend = backend
    app.state.session = session
    app.state.hub = hub
    app.state.device_link = device_link

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Unhandled route errors answer in the same failure shape clients get over the socket."""
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return JSONResponse(
            {"success": False, "error": "Internal server error"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning(f"Validation error in {request.url.path}: {exc}")
        return JSONResponse(
            {"success": False, "error": "Invalid request", "detail": jsonable_encoder(exc.errors())},
            status_code=422,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root() -> JSONResponse:
        return JSONResponse({"message": "Palpation bridge is running!"})

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({
            "status": "ok",
            "device_connected": device_link.connected,
            "clients": len(hub),
            "policy": session.policy.value,
            "pending_posts": session.pending_posts,
        })

    @app.get("/debug/session")
    async def debug_session() -> JSONResponse:
        return JSONResponse({
            "patient_id": session.patient_id,
            "cursor": session.cursor,
            "pain_cursor": session.pain_cursor,
            "regions": session.snapshot(),
        })

    @app.post("/debug/device-line")
    async def debug_device_line(payload: DeviceLineRequest) -> JSONResponse:
        """Feed a raw line through the device pipeline as if the rig had sent it."""
        line = payload.line.strip()
        if not line:
            return JSONResponse({"status": "error", "message": "Empty line"}, status_code=400)
        await device_link.handle_line(line)
        logger.info(f"🔧 Mock device line: {line}")
        return JSONResponse({"status": "ok", "regions": session.snapshot()})

    async def client_socket(ws: WebSocket) -> None:
        # broadcast skips this socket until accept() completes
        hub.register(ws)
        try:
            await ws.accept()
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                if raw is None:
                    continue
                await hub.on_client_message(ws, raw)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"Unexpected error in client websocket: {e}")
        finally:
            hub.unregister(ws)

    app.add_api_websocket_route("/", client_socket)
    app.add_api_websocket_route("/ws", client_socket)

    return app


__all__ = ["create_app"]
