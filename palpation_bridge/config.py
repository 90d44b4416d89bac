"""Central configuration for the palpation bridge service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class PalpationSettings(BaseModel):
    """Palpation session behaviour."""
    completion_policy: Literal["reset", "circular"] = Field(
        "reset", description="Flush on device reset signal, or automatically when a fixed region set fills"
    )
    region_prefix: str = Field("R", description="Prefix for region keys (R1, R2, ...)")
    region_count: int = Field(4, ge=1, description="Number of regions tracked by the circular policy")
    patient_id: Optional[str] = Field(None, description="Patient used for flushes until a client selects one")

    @field_validator("patient_id", mode="before")
    @classmethod
    def _coerce_patient_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Settings(BaseSettings):
    """Environment-driven settings for the bridge subsystems."""

    # Backend & API
    rest_api_url: str = Field(..., description="Backend REST base URL (e.g. https://api.example.org)")
    password: Optional[str] = Field(None, description="Shared password exchanged for a bearer token")
    backend_timeout_seconds: float = Field(15.0, description="Timeout applied to every backend request")

    # Serial device
    serial_port_path: str = Field("/dev/cu.usbmodem1101", description="Serial device path")
    serial_baud_rate: int = Field(115200, description="Serial baud rate")
    serial_reconnect_seconds: float = Field(2.0, description="Delay before reopening a failed serial port")

    # HTTP / WebSocket server
    host: str = Field("0.0.0.0", description="Host interface for the FastAPI server")
    port: int = Field(3000, description="Port for the FastAPI server")
    cors_allow_origins: List[str] = Field(["*"], description="Origins allowed to call the HTTP routes")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")
    log_device_traffic: bool = Field(True, description="Write every serial line to device-traffic.log")

    palpation: PalpationSettings = Field(default_factory=PalpationSettings, description="Palpation session settings")

    @field_validator("rest_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
