"""Logging bootstrap for the bridge service.

Two log files are written under ``log_dir``:

- ``bridge-runtime.log``: everything the service reports at ``level`` and above
- ``device-traffic.log``: every line read from or written to the serial rig
  (``RX``/``TX``)
"""
from __future__ import annotations

from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

DEVICE_TRAFFIC_LOGGER = "palpation_bridge.device.traffic"


def _rotating_file(path: Path, level: str, retention_days: int) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "formatter": "default",
        "level": level,
        "filename": str(path),
        "when": "midnight",
        "backupCount": max(int(retention_days), 1),
        "utc": True,
        "delay": True,
        "encoding": "utf-8",
    }


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    retention_days: int = 14,
    *,
    device_traffic: bool = True,
) -> None:
    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[1] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    level = level.upper()

    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": level,
        },
        "runtime_file": _rotating_file(log_dir / "bridge-runtime.log", level, retention_days),
    }
    loggers: Dict[str, Any] = {
        "httpx": {"level": "WARNING"},
        "uvicorn.access": {"level": "WARNING"},
    }
    if device_traffic:
        handlers["device_file"] = _rotating_file(log_dir / "device-traffic.log", "DEBUG", retention_days)
        loggers[DEVICE_TRAFFIC_LOGGER] = {
            "level": "DEBUG",
            "handlers": ["device_file"],
            "propagate": False,
        }
    else:
        loggers[DEVICE_TRAFFIC_LOGGER] = {"level": "WARNING", "propagate": False}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": handlers,
            "loggers": loggers,
            "root": {"level": level, "handlers": ["console", "runtime_file"]},
        }
    )


__all__ = ["DEVICE_TRAFFIC_LOGGER", "configure_logging"]
