"""Tests for environment-driven settings and logging bootstrap."""
import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from pydantic import ValidationError

from palpation_bridge.config import Settings
from palpation_bridge.logging_config import DEVICE_TRAFFIC_LOGGER, configure_logging


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("REST_API_URL", "https://api.example.org/")
    monkeypatch.setenv("PASSWORD", "hunter2")
    monkeypatch.setenv("PORT", "4000")
    monkeypatch.setenv("SERIAL_PORT_PATH", "/dev/ttyACM0")
    monkeypatch.setenv("PALPATION__COMPLETION_POLICY", "circular")
    monkeypatch.setenv("PALPATION__REGION_COUNT", "5")

    settings = Settings(_env_file=None)

    assert settings.rest_api_url == "https://api.example.org"
    assert settings.password == "hunter2"
    assert settings.port == 4000
    assert settings.serial_port_path == "/dev/ttyACM0"
    assert settings.palpation.completion_policy == "circular"
    assert settings.palpation.region_count == 5


def test_defaults(monkeypatch):
    monkeypatch.delenv("PASSWORD", raising=False)
    settings = Settings(_env_file=None, rest_api_url="http://backend.test")
    assert settings.port == 3000
    assert settings.serial_baud_rate == 115200
    assert settings.password is None
    assert settings.palpation.completion_policy == "reset"
    assert settings.palpation.patient_id is None
    assert settings.cors_allow_origins == ["*"]
    assert settings.log_device_traffic is True


def test_env_file(tmp_path, monkeypatch):
    monkeypatch.delenv("REST_API_URL", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("REST_API_URL=http://from-file.test\nPALPATION__PATIENT_ID=8001011234567\n")
    settings = Settings(_env_file=str(env_file))
    assert settings.rest_api_url == "http://from-file.test"
    assert settings.palpation.patient_id == "8001011234567"


def test_rejects_unknown_policy(monkeypatch):
    monkeypatch.setenv("PALPATION__COMPLETION_POLICY", "sometimes")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, rest_api_url="http://backend.test")


@pytest.fixture
def restore_logging():
    yield
    for name in (None, DEVICE_TRAFFIC_LOGGER):
        target = logging.getLogger(name)
        for handler in target.handlers[:]:
            target.removeHandler(handler)
            handler.close()
    logging.getLogger(DEVICE_TRAFFIC_LOGGER).propagate = True


def _file_names(target: logging.Logger):
    return sorted(
        h.baseFilename.rsplit("/", 1)[-1]
        for h in target.handlers
        if isinstance(h, TimedRotatingFileHandler)
    )


def test_configure_logging_creates_directory(tmp_path, restore_logging):
    log_dir = tmp_path / "logs"
    configure_logging("debug", log_dir, retention_days=0)
    assert log_dir.is_dir()
    assert _file_names(logging.getLogger()) == ["bridge-runtime.log"]


def test_device_traffic_goes_to_its_own_file(tmp_path, restore_logging):
    configure_logging("info", tmp_path)
    traffic = logging.getLogger(DEVICE_TRAFFIC_LOGGER)

    assert _file_names(traffic) == ["device-traffic.log"]
    assert traffic.level == logging.DEBUG
    assert traffic.propagate is False

    traffic.debug("RX hello")
    for handler in traffic.handlers:
        handler.flush()
    assert "RX hello" in (tmp_path / "device-traffic.log").read_text(encoding="utf-8")


def test_device_traffic_disabled(tmp_path, restore_logging):
    configure_logging("info", tmp_path, device_traffic=False)
    traffic = logging.getLogger(DEVICE_TRAFFIC_LOGGER)

    assert traffic.handlers == []
    assert not traffic.isEnabledFor(logging.DEBUG)
    assert not (tmp_path / "device-traffic.log").exists()
