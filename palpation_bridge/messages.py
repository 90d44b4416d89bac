"""Decoding of serial device frames and WebSocket client messages.

Both transports carry loosely shaped text. Each line or frame is decoded
exactly once into one of the small dataclasses below, and the handlers
dispatch on the resulting type instead of poking at raw JSON fields.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

PATIENT_ID_PATTERN = re.compile(r"[0-9]{13}")


# ============================================================
# Device -> bridge
# ============================================================

@dataclass(frozen=True)
class DeviceReady:
    """{"ack": "ready"}"""


@dataclass(frozen=True)
class DeviceReset:
    """{"ack": "reset"}"""


@dataclass(frozen=True)
class ForceData:
    value: int


@dataclass(frozen=True)
class InvalidForce:
    raw: Any


@dataclass(frozen=True)
class UnrecognizedFrame:
    text: str
    reason: str


DeviceFrame = Union[DeviceReady, DeviceReset, ForceData, InvalidForce, UnrecognizedFrame]


# ============================================================
# Client -> bridge
# ============================================================

@dataclass(frozen=True)
class PainUpdate:
    value: int


@dataclass(frozen=True)
class InvalidPain:
    raw: Any


@dataclass(frozen=True)
class TokenRequest:
    pass


@dataclass(frozen=True)
class PatientsRequest:
    pass


@dataclass(frozen=True)
class PatientRequest:
    patient_id: str


@dataclass(frozen=True)
class DeviceCommand:
    text: str


ClientMessage = Union[PainUpdate, InvalidPain, TokenRequest, PatientsRequest, PatientRequest, DeviceCommand]


def _as_int(value: Any) -> Optional[int]:
    """Integer value of a JSON number or numeric string, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _load_object(text: str) -> Optional[dict]:
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return payload if isinstance(payload, dict) else None


def decode_device_frame(text: str) -> DeviceFrame:
    payload = _load_object(text)
    if payload is None:
        return UnrecognizedFrame(text, "not a JSON object")

    ack = payload.get("ack")
    if ack == "ready":
        return DeviceReady()
    if ack == "reset":
        return DeviceReset()

    if payload.get("data") is not None:
        raw = payload["data"]
        value = _as_int(raw)
        if value is None:
            return InvalidForce(raw)
        return ForceData(value)

    return UnrecognizedFrame(text, "'ack' or 'data' key missing")


def decode_client_message(raw: str) -> ClientMessage:
    """Classify a client frame; first matching shape wins."""
    payload = _load_object(raw)
    if payload is not None and "pain" in payload:
        pain = payload["pain"]
        # numeric strings are not pain readings
        value = None if isinstance(pain, str) else _as_int(pain)
        if value is None:
            return InvalidPain(pain)
        return PainUpdate(value)

    if raw == "token":
        return TokenRequest()
    if raw == "patients":
        return PatientsRequest()
    if PATIENT_ID_PATTERN.fullmatch(raw):
        return PatientRequest(raw)
    return DeviceCommand(raw)


__all__ = [
    "ClientMessage",
    "DeviceCommand",
    "DeviceFrame",
    "DeviceReady",
    "DeviceReset",
    "ForceData",
    "InvalidForce",
    "InvalidPain",
    "PainUpdate",
    "PatientRequest",
    "PatientsRequest",
    "TokenRequest",
    "UnrecognizedFrame",
    "decode_client_message",
    "decode_device_frame",
]
