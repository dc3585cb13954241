# tests/config/test_loader.py
"""
Tests of the configuration loader.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from src.config.loader import (
    DatabaseSettings,
    DeploymentSettings,
    RabbitMQSettings,
    Settings,
    get_config_path,
    get_project_root,
    load_config_json,
)

OVERRIDABLE_ENV = (
    "ENVIRONMENT", "COMPONENT_MODE", "ORDER_SERVICE_HOST", "ORDER_SERVICE_PORT",
    "DB_HOST", "DB_NAME", "DB_USER", "RABBITMQ_HOST", "RABBITMQ_PASSWORD",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in OVERRIDABLE_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestPaths:
    def test_project_root(self) -> None:
        root = get_project_root()

        assert isinstance(root, Path)
        assert (root / "src").is_dir()
        assert (root / "migrations" / "init.sql").exists()

    def test_config_path(self) -> None:
        assert get_config_path() == get_project_root() / "config" / "config.json"

    def test_load_config_json(self) -> None:
        data = load_config_json()

        assert data["API_PREFIX"] == "/api/v1"
        assert "TAX_RATE" in data

    def test_missing_config_file(self, tmp_path: Path) -> None:
        with patch("src.config.loader.get_config_path", return_value=tmp_path / "absent.json"):
            with pytest.raises(FileNotFoundError):
                load_config_json()

    def test_temp_config_file(self, temp_config_file: Path) -> None:
        with patch("src.config.loader.get_config_path", return_value=temp_config_file):
            assert load_config_json()["PROJECT_NAME"] == "food_delivery_test"


class TestFromDict:
    def test_sections(self, clean_env: pytest.MonkeyPatch, mock_config: dict[str, Any]) -> None:
        settings = Settings.from_dict(mock_config)

        assert settings.system.PROJECT_NAME == "food_delivery_test"
        assert settings.system.COMPONENT_MODE == "order_service"
        assert settings.logging.LOG_FORMAT == "json"
        assert settings.rabbitmq.RABBITMQ_ENABLED is False
        assert settings.orders.TAX_RATE == 0.2
        assert settings.orders.AMOUNT_TOLERANCE == 0.05
        assert settings.delivery.ESTIMATED_DELIVERY_MINUTES == 30
        assert settings.reconciliation.RECONCILIATION_BATCH_SIZE == 10

    def test_defaults_for_missing_keys(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = Settings.from_dict({})

        assert settings.orders.TAX_RATE == 0.15
        assert settings.http.BEST_EFFORT_TIMEOUT_SECONDS == 5.0
        assert settings.reconciliation.RECONCILIATION_INTERVAL == 60

    def test_environment_overrides(self, clean_env: pytest.MonkeyPatch, mock_config: dict[str, Any]) -> None:
        clean_env.setenv("ORDER_SERVICE_HOST", "orders.internal")
        clean_env.setenv("ORDER_SERVICE_PORT", "7000")
        clean_env.setenv("INTERNAL_SERVICE_TOKEN", "from-env")

        settings = Settings.from_dict(mock_config)

        assert settings.deployment.order_service_url == "http://orders.internal:7000/api/v1"
        assert settings.security.INTERNAL_SERVICE_TOKEN == "from-env"

    def test_comment_keys_ignored(self, clean_env: pytest.MonkeyPatch, mock_config: dict[str, Any]) -> None:
        mock_config["_comment_extra"] = {"not": "a setting"}
        assert Settings.from_dict(mock_config).system.ENVIRONMENT == "test"


class TestSections:
    def test_service_urls(self) -> None:
        deployment = DeploymentSettings(DELIVERY_SERVICE_HOST="deliveries", DELIVERY_SERVICE_PORT=9002)

        assert deployment.delivery_service_url == "http://deliveries:9002/api/v1"
        assert deployment.base_url("RESTAURANT") == "http://restaurant_service:8104/api/v1"

    def test_database_dsn(self) -> None:
        database = DatabaseSettings(DB_HOST="db", DB_USER="app", DB_PASSWORD="pw", DB_NAME="food")
        assert database.dsn == "postgresql://app:pw@db:5432/food"

    def test_database_password_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_PASSWORD", "secret")
        assert DatabaseSettings(DB_PASSWORD="").DB_PASSWORD == "secret"

    def test_rabbitmq_url(self, clean_env: pytest.MonkeyPatch) -> None:
        rabbitmq = RabbitMQSettings(RABBITMQ_HOST="mq", RABBITMQ_PASSWORD="pw")
        assert rabbitmq.url == "amqp://guest:pw@mq:5672/"

    def test_from_config_json(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = Settings.from_config_json()
        assert settings.deployment.API_PREFIX == json.loads(get_config_path().read_text())["API_PREFIX"]
