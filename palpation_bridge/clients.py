"""Connected WebSocket clients: raw broadcast and inbound message dispatch."""
from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from .backend.http_client import BackendClient
from .messages import (
    DeviceCommand,
    InvalidPain,
    PainUpdate,
    PatientRequest,
    PatientsRequest,
    TokenRequest,
    decode_client_message,
)
from .palpation import PalpationSession

logger = logging.getLogger(__name__)

DeviceSender = Callable[[str], Awaitable[bool]]


def _is_open(ws: WebSocket) -> bool:
    return ws.client_state == WebSocketState.CONNECTED and ws.application_state == WebSocketState.CONNECTED


class ClientHub:
    """Tracks open client sockets and routes what they send."""

    def __init__(
        self,
        *,
        session: PalpationSession,
        backend: BackendClient,
        device_sender: Optional[DeviceSender] = None,
    ) -> None:
        self.session = session
        self.backend = backend
        self._device_sender = device_sender
        self._clients: Set[WebSocket] = set()

    def __len__(self) -> int:
        return len(self._clients)

    def attach_device(self, sender: DeviceSender) -> None:
        self._device_sender = sender

    def register(self, ws: WebSocket) -> None:
        self._clients.add(ws)
        logger.info("Client joined. (%d connected)", len(self._clients))

    def unregister(self, ws: WebSocket) -> None:
        self._clients.discard(ws)
        logger.info("Client left. (%d connected)", len(self._clients))

    async def broadcast(self, text: str) -> None:
        """Send text verbatim to every open client; closed sockets are skipped."""
        for ws in list(self._clients):
            if not _is_open(ws):
                continue
            try:
                await ws.send_text(text)
            except Exception as e:
                logger.warning("Failed to broadcast to client: %s", e)

    async def on_client_message(self, ws: WebSocket, raw: str) -> None:
        message = decode_client_message(raw)
        try:
            if isinstance(message, PainUpdate):
                key = await self.session.on_pain_reading(message.value)
                if key is None:
                    await self._reply(ws, {"success": False, "error": "No force reading for the current region"})
                else:
                    await self._reply(ws, {"success": True, "region": key, "pain": message.value})
            elif isinstance(message, InvalidPain):
                logger.warning("Invalid pain value from client: %r", message.raw)
                await self._reply(ws, {"success": False, "error": "Invalid pain value"})
            elif isinstance(message, TokenRequest):
                token = await self.backend.authenticate()
                if token:
                    await self._reply(ws, {"success": True, "token": token})
                else:
                    await self._reply(ws, {"success": False, "error": "Failed to obtain token"})
            elif isinstance(message, PatientsRequest):
                result = await self.backend.get_all_patients()
                await self._reply(ws, result.to_reply())
            elif isinstance(message, PatientRequest):
                result = await self.backend.get_patient(message.patient_id)
                if result.ok:
                    self.session.select_patient(message.patient_id)
                await self._reply(ws, result.to_reply())
            elif isinstance(message, DeviceCommand):
                await self._forward_to_device(message.text)
        except Exception as e:
            logger.exception("Error handling client message %r: %s", raw, e)

    async def _forward_to_device(self, text: str) -> None:
        if self._device_sender is None:
            logger.error("Error on write: no device attached")
            return
        await self._device_sender(text)

    async def _reply(self, ws: WebSocket, payload: Any) -> None:
        if not _is_open(ws):
            logger.debug("Reply dropped: client disconnected")
            return
        try:
            await ws.send_text(json.dumps(payload))
        except Exception as e:
            logger.warning("Failed to reply to client: %s", e)


__all__ = ["ClientHub", "DeviceSender"]
